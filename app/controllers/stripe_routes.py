import asyncio
import json
import logging

import stripe
from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings
from app.controllers.subscriptions import AdAccountItem, resolve_customer, resolve_plan
from app.dependencies import (
    ErrorResponse,
    get_settings,
    get_stripe_billing,
    http_error,
    parse_body,
)
from app.metrics import stripe_webhook_events_total
from app.models import ErrorCode
from app.services import subscriptions as subscription_service
from app.services.stripe_billing import StripeBilling, WebhookVerificationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])


class CheckoutRequest(BaseModel):
    user_id: int = Field(alias="userId")
    plan_id: str = Field("basic", alias="planId")
    billing_cycle: str = Field("monthly", alias="billingCycle")
    ad_accounts: list[AdAccountItem] = Field(alias="adAccounts", min_length=1)
    success_url: str | None = Field(None, alias="successUrl")
    cancel_url: str | None = Field(None, alias="cancelUrl")


@router.post(
    "/create-checkout-session",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_checkout_session(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    body = await parse_body(request, CheckoutRequest)
    plan = resolve_plan(body.plan_id, body.billing_cycle, settings)
    customer_id = await resolve_customer(gateway, body.user_id, None)

    metadata = {
        "userId": str(body.user_id),
        "planId": plan.plan_id,
        "billingCycle": plan.billing_cycle,
        "adAccountIds": json.dumps([a.id for a in body.ad_accounts]),
        "adAccountNames": json.dumps([a.name for a in body.ad_accounts]),
        "type": "per_account",
    }
    base = settings.base_url.rstrip("/")
    try:
        session = await asyncio.to_thread(
            gateway.create_checkout_session,
            customer_id,
            plan.stripe_price_id,
            len(body.ad_accounts),
            body.success_url
            or f"{base}/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            body.cancel_url or f"{base}/billing?canceled=true",
            metadata,
        )
    except stripe.error.StripeError as exc:
        logger.error("Checkout session for user %s failed: %s", body.user_id, exc)
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, f"Failed to create checkout session: {exc}"
        ) from exc
    if session is None:
        raise http_error(503, ErrorCode.SERVICE_UNAVAILABLE, "Stripe is not configured")
    return {"success": True, "sessionId": session["id"], "url": session.get("url")}


def _dispatch(event, gateway: StripeBilling, settings: Settings) -> None:
    event_type = event["type"]
    obj = event["data"]["object"]
    if event_type == "checkout.session.completed":
        subscription_service.apply_checkout_completed(gateway, obj, settings)
    elif event_type in (
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
    ):
        subscription_service.sync_subscription_status(obj)
    elif event_type == "invoice.payment_succeeded":
        subscription_service.record_invoice_paid(obj)
    elif event_type == "invoice.payment_failed":
        subscription_service.mark_invoice_failed(obj)
    else:
        logger.debug("Unhandled Stripe event type: %s", event_type)


@router.post(
    "/webhook",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    payload = await request.body()
    try:
        event = gateway.construct_event(payload, stripe_signature)
    except WebhookVerificationError as exc:
        logger.warning("audit: rejected Stripe webhook: %s", exc)
        raise http_error(400, ErrorCode.BAD_REQUEST, str(exc)) from exc

    stripe_webhook_events_total.labels(type=event["type"]).inc()
    try:
        await asyncio.to_thread(_dispatch, event, gateway, settings)
    except (SQLAlchemyError, stripe.error.StripeError) as exc:
        logger.exception("Stripe webhook %s handling failed", event["type"])
        raise http_error(
            500, ErrorCode.INTERNAL_ERROR, "Webhook handler failed"
        ) from exc
    return {"received": True}


class PortalRequest(BaseModel):
    user_id: int | None = Field(None, alias="userId")
    customer_id: str | None = Field(None, alias="customerId")
    customer_email: str | None = Field(None, alias="customerEmail")
    return_url: str | None = Field(None, alias="returnUrl")


def _portal_customer(gateway: StripeBilling, body: PortalRequest) -> str | None:
    """Explicit id first, then the stored customer, then a Stripe email lookup."""
    if body.customer_id:
        return body.customer_id
    if body.user_id is not None:
        stored = subscription_service.customer_id_for(body.user_id)
        if stored:
            return stored
    if body.customer_email:
        return gateway.find_customer_by_email(body.customer_email)
    return None


@router.post(
    "/customer-portal",
    responses={
        400: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def create_customer_portal(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    body = await parse_body(request, PortalRequest)
    if not gateway.configured:
        raise http_error(503, ErrorCode.SERVICE_UNAVAILABLE, "Stripe is not configured")
    return_url = body.return_url or f"{settings.base_url.rstrip('/')}/billing"
    try:
        customer_id = await asyncio.to_thread(_portal_customer, gateway, body)
        if not customer_id:
            raise http_error(
                400, ErrorCode.BAD_REQUEST, "Customer ID or email is required"
            )
        session = await asyncio.to_thread(
            gateway.create_portal_session, customer_id, return_url
        )
    except stripe.error.InvalidRequestError as exc:
        logger.warning("Portal session rejected for %s: %s", body.customer_id, exc)
        raise http_error(
            400, ErrorCode.BAD_REQUEST, "Invalid customer information"
        ) from exc
    except stripe.error.StripeError as exc:
        logger.error("Portal session failed: %s", exc)
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, "Failed to create customer portal session"
        ) from exc
    return {"success": True, "url": session["url"]}
