import asyncio
import logging
from datetime import datetime, timezone

import stripe
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.config import Settings
from app.dependencies import (
    ErrorResponse,
    get_settings,
    get_stripe_billing,
    http_error,
    parse_body,
)
from app.models import ErrorCode
from app.services import accounts as accounts_service
from app.services import subscriptions as subscription_service
from app.services.plans import calculate_per_account_total
from app.services.stripe_billing import StripeBilling

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

HISTORY_LIMIT = 5


class UsageReportRequest(BaseModel):
    user_id: int = Field(alias="userId")


def _next_billing_date(gateway: StripeBilling, customer_id: str | None) -> str | None:
    if not customer_id:
        return None
    try:
        invoice = gateway.retrieve_upcoming_invoice(customer_id)
    except stripe.error.StripeError as exc:
        # no upcoming invoice for customers without an active subscription
        logger.info("No upcoming invoice for %s: %s", customer_id, exc)
        return None
    if not invoice or not invoice.get("next_payment_attempt"):
        return None
    return datetime.fromtimestamp(
        invoice["next_payment_attempt"], timezone.utc
    ).isoformat()


@router.get("/accounts", responses={400: {"model": ErrorResponse}})
async def billing_summary(
    user_id: int = Query(..., alias="userId"),
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    def _db_call() -> dict:
        accounts = accounts_service.list_accounts(user_id)
        return {
            "accounts": accounts,
            "active": sum(1 for a in accounts if a["status"] == "active"),
            "subscriptions": subscription_service.count_active_subscriptions(user_id),
            "history": subscription_service.billing_history(user_id, HISTORY_LIMIT),
            "customer_id": subscription_service.customer_id_for(user_id),
        }

    data = await asyncio.to_thread(_db_call)
    next_date = await asyncio.to_thread(
        _next_billing_date, gateway, data["customer_id"]
    )
    price = settings.price_per_account
    return {
        "success": True,
        "totalAccounts": data["active"],
        "activeSubscriptions": data["subscriptions"],
        "pricePerAccount": price,
        "nextCharge": calculate_per_account_total(data["active"], price),
        "nextBillingDate": next_date,
        "billingHistory": data["history"],
        "accounts": data["accounts"],
    }


@router.post(
    "/accounts",
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def report_account_usage(
    request: Request, gateway: StripeBilling = Depends(get_stripe_billing)
):
    body = await parse_body(request, UsageReportRequest)
    try:
        report = await asyncio.to_thread(
            subscription_service.report_usage, gateway, body.user_id
        )
    except stripe.error.StripeError as exc:
        logger.error("Usage report for user %s failed: %s", body.user_id, exc)
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, f"Failed to report usage: {exc}"
        ) from exc

    if report is None:
        return {
            "success": True,
            "reported": None,
            "message": "No active Stripe subscription to report usage against",
        }
    return {
        "success": True,
        "reported": report.quantity,
        "subscriptionItemId": report.subscription_item_id,
        "reportedAt": report.reported_at.isoformat(),
    }
