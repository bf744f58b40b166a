import asyncio
import logging

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
from app.services import subscriptions as subscription_service
from app.services.plans import PlanPricing, get_per_account_plan
from app.services.stripe_billing import StripeBilling
from app.services.subscriptions import (
    STATUS_ERROR,
    STATUS_EXISTS,
    AccountRef,
    CheckoutIncomplete,
    StripeUnavailable,
    SubscriptionNotFound,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"])


class SubscriptionCreateRequest(BaseModel):
    user_id: int = Field(alias="userId")
    ad_account_id: str = Field(alias="adAccountId", min_length=1)
    ad_account_name: str = Field(alias="adAccountName", min_length=1)
    plan_id: str = Field(alias="planId", min_length=1)
    billing_cycle: str = Field(alias="billingCycle", min_length=1)
    stripe_customer_id: str | None = Field(None, alias="stripeCustomerId")


class SubscriptionUpdateRequest(BaseModel):
    subscription_id: int = Field(alias="subscriptionId")
    plan_id: str = Field(alias="planId", min_length=1)
    billing_cycle: str = Field(alias="billingCycle", min_length=1)


class AdAccountItem(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)


class BatchCreateRequest(BaseModel):
    user_id: int = Field(alias="userId")
    ad_accounts: list[AdAccountItem] = Field(alias="adAccounts")
    stripe_customer_id: str | None = Field(None, alias="stripeCustomerId")
    plan_id: str = Field("basic", alias="planId")
    billing_cycle: str = Field("monthly", alias="billingCycle")


def resolve_plan(plan_id: str, billing_cycle: str, settings: Settings) -> PlanPricing:
    plan = get_per_account_plan(plan_id, billing_cycle, settings)
    if plan is None:
        raise http_error(
            400,
            ErrorCode.BAD_REQUEST,
            "Invalid plan or Stripe price ID not configured",
        )
    return plan


async def resolve_customer(
    gateway: StripeBilling, user_id: int, customer_id: str | None
) -> str:
    if customer_id:
        return customer_id
    try:
        resolved = await asyncio.to_thread(
            subscription_service.ensure_customer, gateway, user_id
        )
    except LookupError as exc:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    except stripe.error.StripeError as exc:
        logger.error("Stripe customer creation failed for %s: %s", user_id, exc)
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, f"Failed to create Stripe customer: {exc}"
        ) from exc
    if resolved is None:
        raise http_error(503, ErrorCode.SERVICE_UNAVAILABLE, "Stripe is not configured")
    return resolved


@router.get("/per-account-subscriptions", responses={400: {"model": ErrorResponse}})
async def list_subscriptions(
    user_id: int = Query(..., alias="userId"),
    include_history: bool = Query(False, alias="includeHistory"),
):
    def _db_call() -> tuple[list[dict], list[dict]]:
        subs = subscription_service.list_subscriptions(user_id)
        history = (
            subscription_service.billing_history(user_id) if include_history else []
        )
        return subs, history

    subs, history = await asyncio.to_thread(_db_call)
    return {"success": True, "subscriptions": subs, "billingHistory": history}


@router.post(
    "/per-account-subscriptions",
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def create_subscription(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    body = await parse_body(request, SubscriptionCreateRequest)
    plan = resolve_plan(body.plan_id, body.billing_cycle, settings)
    customer_id = await resolve_customer(gateway, body.user_id, body.stripe_customer_id)

    outcome = await subscription_service.create_subscription(
        gateway,
        body.user_id,
        customer_id,
        AccountRef(body.ad_account_id, body.ad_account_name),
        plan,
    )
    if outcome.status == STATUS_EXISTS:
        raise http_error(
            409, ErrorCode.CONFLICT, "Subscription already exists for this ad account"
        )
    if outcome.status == STATUS_ERROR:
        raise http_error(
            502,
            ErrorCode.UPSTREAM_ERROR,
            f"Failed to create Stripe subscription: {outcome.error}",
        )
    return {
        "success": True,
        "subscription": outcome.subscription,
        "stripeSubscription": outcome.stripe_subscription,
    }


@router.put(
    "/per-account-subscriptions",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def update_subscription(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    body = await parse_body(request, SubscriptionUpdateRequest)
    plan = resolve_plan(body.plan_id, body.billing_cycle, settings)
    try:
        updated = await subscription_service.update_subscription(
            gateway, body.subscription_id, plan
        )
    except SubscriptionNotFound as exc:
        raise http_error(404, ErrorCode.NOT_FOUND, "Subscription not found") from exc
    except StripeUnavailable as exc:
        raise http_error(503, ErrorCode.SERVICE_UNAVAILABLE, str(exc)) from exc
    except stripe.error.StripeError as exc:
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, f"Failed to update Stripe subscription: {exc}"
        ) from exc
    return {"success": True, "subscription": updated}


@router.delete(
    "/per-account-subscriptions",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def cancel_subscription(
    subscription_id: int = Query(..., alias="subscriptionId"),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    try:
        canceled = await subscription_service.cancel_subscription(
            gateway, subscription_id
        )
    except SubscriptionNotFound as exc:
        raise http_error(404, ErrorCode.NOT_FOUND, "Subscription not found") from exc
    except StripeUnavailable as exc:
        raise http_error(503, ErrorCode.SERVICE_UNAVAILABLE, str(exc)) from exc
    except stripe.error.StripeError as exc:
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, f"Failed to cancel Stripe subscription: {exc}"
        ) from exc
    return {
        "success": True,
        "subscription": canceled,
        "message": "Subscription canceled successfully",
    }


@router.post(
    "/create-per-account-subscriptions",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def create_subscriptions_batch(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    body = await parse_body(request, BatchCreateRequest)
    plan = resolve_plan(body.plan_id, body.billing_cycle, settings)
    customer_id = await resolve_customer(gateway, body.user_id, body.stripe_customer_id)

    batch = await subscription_service.create_for_accounts(
        gateway,
        body.user_id,
        customer_id,
        [AccountRef(a.id, a.name) for a in body.ad_accounts],
        plan,
        concurrency=settings.subscription_batch_concurrency,
    )
    return {
        "success": True,
        "message": f"Processed {len(batch.outcomes)} ad accounts",
        "results": [o.as_dict() for o in batch.outcomes if o.status != STATUS_ERROR],
        "errors": [o.as_dict() for o in batch.outcomes if o.status == STATUS_ERROR],
        "summary": batch.summary(),
    }


class VerifyRequest(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1)


@router.post(
    "/subscription/verify",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def verify_subscription(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: StripeBilling = Depends(get_stripe_billing),
):
    body = await parse_body(request, VerifyRequest)
    try:
        result = await asyncio.to_thread(
            subscription_service.verify_checkout, gateway, body.session_id, settings
        )
    except CheckoutIncomplete as exc:
        raise http_error(
            400, ErrorCode.BAD_REQUEST, "No subscription found in session"
        ) from exc
    except LookupError as exc:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    except stripe.error.InvalidRequestError as exc:
        raise http_error(400, ErrorCode.BAD_REQUEST, "Invalid checkout session") from exc
    except stripe.error.StripeError as exc:
        logger.error("Verifying checkout %s failed: %s", body.session_id, exc)
        raise http_error(
            502, ErrorCode.UPSTREAM_ERROR, f"Failed to verify subscription: {exc}"
        ) from exc
    if result is None:
        raise http_error(503, ErrorCode.SERVICE_UNAVAILABLE, "Stripe is not configured")
    return {"success": True, **result}
