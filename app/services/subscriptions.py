"""Per-ad-account subscription lifecycle.

Stripe is the source of truth for status and billing periods; the
``ad_account_subscriptions`` table mirrors it so that billing totals can be
derived locally. There is no compensation when a local write fails after a
successful Stripe call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import stripe
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app import db as db_module
from app.config import Settings
from app.metrics import stripe_subscription_errors_total, usage_reports_total
from app.models import (
    AdAccountSubscription,
    PerAccountBillingHistory,
    StripeCustomer,
    User,
)
from app.services.plans import PlanPricing, plan_for_price
from app.services.stripe_billing import StripeBilling

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")

STATUS_CREATED = "created"
STATUS_EXISTS = "already_exists"
STATUS_ERROR = "error"


class SubscriptionNotFound(Exception):
    pass


class StripeUnavailable(Exception):
    """Stripe is not configured, so the operation cannot proceed."""


@dataclass
class AccountRef:
    ad_account_id: str
    ad_account_name: str


@dataclass
class AccountOutcome:
    ad_account_id: str
    ad_account_name: str
    status: str
    subscription: dict | None = None
    stripe_subscription: dict | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        data: dict[str, Any] = {
            "adAccountId": self.ad_account_id,
            "adAccountName": self.ad_account_name,
            "status": self.status,
        }
        if self.subscription is not None:
            data["subscription"] = self.subscription
        if self.stripe_subscription is not None:
            data["stripeSubscription"] = self.stripe_subscription
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BatchResult:
    outcomes: list[AccountOutcome] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.outcomes),
            "created": sum(o.status == STATUS_CREATED for o in self.outcomes),
            "alreadyExists": sum(o.status == STATUS_EXISTS for o in self.outcomes),
            "errors": sum(o.status == STATUS_ERROR for o in self.outcomes),
        }


@dataclass
class UsageReport:
    user_id: int
    quantity: int
    subscription_item_id: str
    reported_at: datetime


def from_timestamp(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_subscription(row: AdAccountSubscription) -> dict:
    return {
        "id": row.id,
        "userId": row.user_id,
        "adAccountId": row.ad_account_id,
        "adAccountName": row.ad_account_name,
        "stripeSubscriptionId": row.stripe_subscription_id,
        "stripePriceId": row.stripe_price_id,
        "stripeCustomerId": row.stripe_customer_id,
        "planId": row.plan_id,
        "billingCycle": row.billing_cycle,
        "amountCents": row.amount_cents,
        "currency": row.currency,
        "status": row.status,
        "currentPeriodStart": _iso(row.current_period_start),
        "currentPeriodEnd": _iso(row.current_period_end),
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
    }


def serialize_history(row: PerAccountBillingHistory) -> dict:
    return {
        "id": row.id,
        "subscriptionId": row.subscription_id,
        "adAccountId": row.ad_account_id,
        "stripeInvoiceId": row.stripe_invoice_id,
        "amountCents": row.amount_cents,
        "currency": row.currency,
        "status": row.status,
        "billingPeriodStart": _iso(row.billing_period_start),
        "billingPeriodEnd": _iso(row.billing_period_end),
        "paidAt": _iso(row.paid_at),
        "createdAt": _iso(row.created_at),
    }


def _stripe_summary(sub: Any) -> dict:
    return {
        "id": sub["id"],
        "status": sub.get("status"),
        "current_period_start": sub.get("current_period_start"),
        "current_period_end": sub.get("current_period_end"),
        "latest_invoice": sub.get("latest_invoice"),
    }


# --- queries -----------------------------------------------------------------


def list_subscriptions(user_id: int) -> list[dict]:
    with db_module.SessionLocal() as db:
        rows = (
            db.query(AdAccountSubscription)
            .filter_by(user_id=user_id)
            .order_by(AdAccountSubscription.created_at.desc())
            .all()
        )
        return [serialize_subscription(r) for r in rows]


def billing_history(user_id: int, limit: int | None = None) -> list[dict]:
    with db_module.SessionLocal() as db:
        query = (
            db.query(PerAccountBillingHistory)
            .filter_by(user_id=user_id)
            .order_by(
                PerAccountBillingHistory.created_at.desc(),
                PerAccountBillingHistory.id.desc(),
            )
        )
        if limit:
            query = query.limit(limit)
        return [serialize_history(r) for r in query.all()]


def count_active_subscriptions(user_id: int) -> int:
    with db_module.SessionLocal() as db:
        return (
            db.query(func.count(AdAccountSubscription.id))
            .filter(AdAccountSubscription.user_id == user_id)
            .filter(AdAccountSubscription.status.in_(ACTIVE_STATUSES))
            .scalar()
            or 0
        )


def customer_id_for(user_id: int) -> str | None:
    with db_module.SessionLocal() as db:
        row = db.query(StripeCustomer).filter_by(user_id=user_id).first()
        return row.stripe_customer_id if row else None


def _find_existing(user_id: int, ad_account_id: str) -> AdAccountSubscription | None:
    with db_module.SessionLocal() as db:
        return (
            db.query(AdAccountSubscription)
            .filter_by(user_id=user_id, ad_account_id=ad_account_id)
            .first()
        )


def ensure_customer(gateway: StripeBilling, user_id: int) -> str | None:
    """Return the user's Stripe customer id, creating it on first use."""
    existing = customer_id_for(user_id)
    if existing:
        return existing
    with db_module.SessionLocal() as db:
        user = db.get(User, user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        email = user.email
    customer = gateway.create_customer(email, user_id)
    if customer is None:
        return None
    with db_module.SessionLocal() as db:
        db.add(StripeCustomer(user_id=user_id, stripe_customer_id=customer["id"]))
        try:
            db.commit()
        except IntegrityError:
            # concurrent checkout created it first
            db.rollback()
            logger.warning("Stripe customer for user %s already stored", user_id)
            return customer_id_for(user_id)
    logger.info("Created Stripe customer for user %s", user_id)
    return customer["id"]


# --- lifecycle ---------------------------------------------------------------


def _insert_subscription(
    user_id: int,
    account: AccountRef,
    plan: PlanPricing,
    customer_id: str,
    sub: Any,
) -> dict | None:
    with db_module.SessionLocal() as db:
        row = AdAccountSubscription(
            user_id=user_id,
            ad_account_id=account.ad_account_id,
            ad_account_name=account.ad_account_name,
            stripe_subscription_id=sub["id"],
            stripe_price_id=plan.stripe_price_id,
            stripe_customer_id=customer_id,
            plan_id=plan.plan_id,
            billing_cycle=plan.billing_cycle,
            amount_cents=plan.amount_cents,
            currency=plan.currency,
            status=sub.get("status") or "incomplete",
            current_period_start=from_timestamp(sub.get("current_period_start")),
            current_period_end=from_timestamp(sub.get("current_period_end")),
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        db.refresh(row)
        return serialize_subscription(row)


async def create_subscription(
    gateway: StripeBilling,
    user_id: int,
    customer_id: str,
    account: AccountRef,
    plan: PlanPricing,
) -> AccountOutcome:
    """Create one per-account subscription unless the pair already has one."""
    existing = await asyncio.to_thread(
        _find_existing, user_id, account.ad_account_id
    )
    if existing is not None:
        return AccountOutcome(
            account.ad_account_id,
            account.ad_account_name,
            STATUS_EXISTS,
            subscription=serialize_subscription(existing),
        )

    metadata = {
        "userId": str(user_id),
        "adAccountId": account.ad_account_id,
        "adAccountName": account.ad_account_name,
        "planId": plan.plan_id,
        "billingCycle": plan.billing_cycle,
        "type": "per_account",
    }
    try:
        sub = await asyncio.to_thread(
            gateway.create_subscription, customer_id, plan.stripe_price_id, metadata
        )
    except stripe.error.StripeError as exc:
        stripe_subscription_errors_total.labels(operation="create").inc()
        logger.error(
            "Stripe subscription create failed for account %s: %s",
            account.ad_account_id,
            exc,
        )
        return AccountOutcome(
            account.ad_account_id,
            account.ad_account_name,
            STATUS_ERROR,
            error=getattr(exc, "user_message", None) or str(exc),
        )
    if sub is None:
        return AccountOutcome(
            account.ad_account_id,
            account.ad_account_name,
            STATUS_ERROR,
            error="Stripe is not configured",
        )

    saved = await asyncio.to_thread(
        _insert_subscription, user_id, account, plan, customer_id, sub
    )
    if saved is None:
        # lost a race with a concurrent request for the same pair
        existing = await asyncio.to_thread(
            _find_existing, user_id, account.ad_account_id
        )
        return AccountOutcome(
            account.ad_account_id,
            account.ad_account_name,
            STATUS_EXISTS,
            subscription=serialize_subscription(existing) if existing else None,
        )
    logger.info(
        "Created per-account subscription %s for account %s",
        sub["id"],
        account.ad_account_id,
    )
    return AccountOutcome(
        account.ad_account_id,
        account.ad_account_name,
        STATUS_CREATED,
        subscription=saved,
        stripe_subscription=_stripe_summary(sub),
    )


async def create_for_accounts(
    gateway: StripeBilling,
    user_id: int,
    customer_id: str,
    accounts: list[AccountRef],
    plan: PlanPricing,
    concurrency: int = 4,
) -> BatchResult:
    """Subscribe several ad accounts; one failure never aborts the batch.

    An account listed more than once is subscribed once; its repeats are
    reported as ``already_exists`` (or ``error`` when the first attempt
    failed) so the summary covers every input item.
    """
    unique: dict[str, AccountRef] = {}
    for account in accounts:
        unique.setdefault(account.ad_account_id, account)
    sem = asyncio.Semaphore(max(concurrency, 1))

    async def _one(account: AccountRef) -> AccountOutcome:
        async with sem:
            return await create_subscription(
                gateway, user_id, customer_id, account, plan
            )

    results = await asyncio.gather(
        *(_one(a) for a in unique.values()), return_exceptions=True
    )
    first: dict[str, AccountOutcome] = {}
    for account, result in zip(unique.values(), results):
        if isinstance(result, BaseException):
            logger.error(
                "Subscription for account %s failed: %s",
                account.ad_account_id,
                result,
                exc_info=result,
            )
            result = AccountOutcome(
                account.ad_account_id,
                account.ad_account_name,
                STATUS_ERROR,
                error=str(result),
            )
        first[account.ad_account_id] = result

    outcomes = []
    reported: set[str] = set()
    for account in accounts:
        outcome = first[account.ad_account_id]
        if account.ad_account_id in reported:
            failed = outcome.status == STATUS_ERROR
            outcome = AccountOutcome(
                account.ad_account_id,
                account.ad_account_name,
                STATUS_ERROR if failed else STATUS_EXISTS,
                subscription=outcome.subscription,
                error=outcome.error,
            )
        reported.add(account.ad_account_id)
        outcomes.append(outcome)
    return BatchResult(outcomes)


def _load(subscription_id: int) -> AdAccountSubscription:
    with db_module.SessionLocal() as db:
        row = db.get(AdAccountSubscription, subscription_id)
        if row is None:
            raise SubscriptionNotFound(subscription_id)
        return row


def _apply_stripe_state(
    subscription_id: int, sub: Any, plan: PlanPricing | None = None
) -> dict:
    with db_module.SessionLocal() as db:
        row = db.get(AdAccountSubscription, subscription_id)
        if row is None:
            raise SubscriptionNotFound(subscription_id)
        row.status = sub.get("status") or row.status
        row.current_period_start = (
            from_timestamp(sub.get("current_period_start")) or row.current_period_start
        )
        row.current_period_end = (
            from_timestamp(sub.get("current_period_end")) or row.current_period_end
        )
        if plan is not None:
            row.plan_id = plan.plan_id
            row.billing_cycle = plan.billing_cycle
            row.stripe_price_id = plan.stripe_price_id
            row.amount_cents = plan.amount_cents
        db.commit()
        db.refresh(row)
        return serialize_subscription(row)


async def update_subscription(
    gateway: StripeBilling, subscription_id: int, plan: PlanPricing
) -> dict:
    row = await asyncio.to_thread(_load, subscription_id)
    try:
        sub = await asyncio.to_thread(
            gateway.update_subscription_price,
            row.stripe_subscription_id,
            plan.stripe_price_id,
        )
    except stripe.error.StripeError:
        stripe_subscription_errors_total.labels(operation="update").inc()
        raise
    if sub is None:
        raise StripeUnavailable("Stripe is not configured")
    return await asyncio.to_thread(_apply_stripe_state, subscription_id, sub, plan)


def _mark_canceled(subscription_id: int) -> dict:
    with db_module.SessionLocal() as db:
        row = db.get(AdAccountSubscription, subscription_id)
        if row is None:
            raise SubscriptionNotFound(subscription_id)
        row.status = "canceled"
        db.commit()
        db.refresh(row)
        return serialize_subscription(row)


async def cancel_subscription(gateway: StripeBilling, subscription_id: int) -> dict:
    row = await asyncio.to_thread(_load, subscription_id)
    try:
        sub = await asyncio.to_thread(
            gateway.cancel_subscription, row.stripe_subscription_id
        )
    except stripe.error.StripeError:
        stripe_subscription_errors_total.labels(operation="cancel").inc()
        raise
    if sub is None:
        raise StripeUnavailable("Stripe is not configured")
    return await asyncio.to_thread(_mark_canceled, subscription_id)


def report_usage(gateway: StripeBilling, user_id: int) -> UsageReport | None:
    """Push the count of active per-account subscriptions as metered usage.

    Uses ``action="set"`` so repeated reports within a period replace the
    quantity instead of adding to it. Returns ``None`` when there is nothing
    to report against.
    """
    customer_id = customer_id_for(user_id)
    if not customer_id:
        logger.info("No Stripe customer for user %s, usage not reported", user_id)
        return None
    item_id = gateway.first_active_subscription_item(customer_id)
    if not item_id:
        logger.info("No active subscription item for user %s", user_id)
        return None
    quantity = count_active_subscriptions(user_id)
    now = datetime.now(timezone.utc)
    gateway.set_usage(item_id, quantity, int(now.timestamp()))
    usage_reports_total.inc()
    logger.info("Reported usage %d for user %s", quantity, user_id)
    return UsageReport(user_id, quantity, item_id, now)


# --- webhook reconciliation --------------------------------------------------


def _loads_list(raw: str | None) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return value if isinstance(value, list) else []


class CheckoutIncomplete(Exception):
    """The checkout session has not produced a subscription yet."""


def checkout_user_id(session: Any) -> int | None:
    metadata = session.get("metadata") or {}
    try:
        return int(metadata.get("userId"))
    except (TypeError, ValueError):
        return None


def apply_checkout_completed(
    gateway: StripeBilling, session: Any, settings: Settings
) -> int:
    """Record one local subscription row per ad account bought at checkout."""
    user_id = checkout_user_id(session)
    if user_id is None:
        logger.warning("checkout session %s without userId", session.get("id"))
        return 0
    subscription_id = session.get("subscription")
    sub = gateway.retrieve_subscription(subscription_id) if subscription_id else None
    if sub is None:
        logger.warning("checkout session %s has no subscription", session.get("id"))
        return 0
    return _record_checkout(user_id, session, sub, settings)


def _record_checkout(user_id: int, session: Any, sub: Any, settings: Settings) -> int:
    metadata = session.get("metadata") or {}
    account_ids = _loads_list(metadata.get("adAccountIds"))
    account_names = _loads_list(metadata.get("adAccountNames"))
    customer_id = session.get("customer")

    items = sub.get("items", {}).get("data", [])
    price = items[0].get("price", {}) if items else {}
    plan = plan_for_price(price.get("id"), settings) if price else None
    created = 0
    with db_module.SessionLocal() as db:
        if customer_id and not db.query(StripeCustomer).filter_by(user_id=user_id).first():
            db.add(StripeCustomer(user_id=user_id, stripe_customer_id=customer_id))
        for idx, account_id in enumerate(account_ids):
            exists = (
                db.query(AdAccountSubscription)
                .filter_by(user_id=user_id, ad_account_id=str(account_id))
                .first()
            )
            if exists:
                continue
            db.add(
                AdAccountSubscription(
                    user_id=user_id,
                    ad_account_id=str(account_id),
                    ad_account_name=account_names[idx] if idx < len(account_names) else None,
                    stripe_subscription_id=sub["id"],
                    stripe_price_id=price.get("id"),
                    stripe_customer_id=customer_id,
                    plan_id=plan.plan_id if plan else metadata.get("planId", "unknown"),
                    billing_cycle=metadata.get("billingCycle")
                    or (plan.billing_cycle if plan else "monthly"),
                    amount_cents=price.get("unit_amount") or 0,
                    currency=price.get("currency") or "usd",
                    status=sub.get("status") or "active",
                    current_period_start=from_timestamp(sub.get("current_period_start")),
                    current_period_end=from_timestamp(sub.get("current_period_end")),
                )
            )
            created += 1
        user = db.get(User, user_id)
        if user is not None:
            user.current_plan_id = metadata.get("planId") or user.current_plan_id
            user.current_plan_name = plan.name if plan else user.current_plan_name
            user.current_billing_cycle = (
                metadata.get("billingCycle") or user.current_billing_cycle
            )
            user.subscription_status = sub.get("status") or "active"
        db.commit()
    logger.info("Checkout completed for user %s, %d accounts recorded", user_id, created)
    return created


def verify_checkout(
    gateway: StripeBilling, session_id: str, settings: Settings
) -> dict | None:
    """Reconcile a finished checkout from the success page.

    Safe to repeat and to race with the ``checkout.session.completed``
    webhook: accounts already recorded are skipped. Returns ``None`` when
    Stripe is not configured.
    """
    session = gateway.retrieve_checkout_session(session_id)
    if session is None:
        return None
    subscription_id = session.get("subscription")
    if not subscription_id:
        raise CheckoutIncomplete(session_id)
    user_id = checkout_user_id(session)
    with db_module.SessionLocal() as db:
        if user_id is None or db.get(User, user_id) is None:
            raise LookupError(f"User {user_id} not found")

    sub = gateway.retrieve_subscription(subscription_id)
    recorded = _record_checkout(user_id, session, sub, settings)
    with db_module.SessionLocal() as db:
        user = db.get(User, user_id)
        accounts = (
            db.query(func.count(AdAccountSubscription.id))
            .filter(AdAccountSubscription.user_id == user_id)
            .filter(AdAccountSubscription.stripe_subscription_id == subscription_id)
            .scalar()
        )
        return {
            "status": sub.get("status"),
            "planId": user.current_plan_id,
            "planName": user.current_plan_name,
            "billingCycle": user.current_billing_cycle,
            "currentPeriodEnd": _iso(from_timestamp(sub.get("current_period_end"))),
            "cancelAtPeriodEnd": bool(sub.get("cancel_at_period_end")),
            "accountsRecorded": recorded,
            "accounts": accounts or 0,
        }


def sync_subscription_status(sub: Any) -> int:
    """Mirror Stripe status and periods onto every row of the subscription."""
    with db_module.SessionLocal() as db:
        rows = (
            db.query(AdAccountSubscription)
            .filter_by(stripe_subscription_id=sub["id"])
            .all()
        )
        for row in rows:
            row.status = sub.get("status") or row.status
            row.current_period_start = (
                from_timestamp(sub.get("current_period_start"))
                or row.current_period_start
            )
            row.current_period_end = (
                from_timestamp(sub.get("current_period_end")) or row.current_period_end
            )
        user_ids = {r.user_id for r in rows}
        for user_id in user_ids:
            user = db.get(User, user_id)
            if user is not None:
                user.subscription_status = sub.get("status") or user.subscription_status
        db.commit()
        return len(rows)


def _append_history(invoice: Any, status: str, paid: bool) -> int:
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        return 0
    period = ((invoice.get("lines") or {}).get("data") or [{}])[0].get("period") or {}
    with db_module.SessionLocal() as db:
        rows = (
            db.query(AdAccountSubscription)
            .filter_by(stripe_subscription_id=subscription_id)
            .all()
        )
        for row in rows:
            if not paid:
                row.status = "past_due"
            db.add(
                PerAccountBillingHistory(
                    subscription_id=row.id,
                    user_id=row.user_id,
                    ad_account_id=row.ad_account_id,
                    stripe_invoice_id=invoice.get("id"),
                    amount_cents=row.amount_cents,
                    currency=invoice.get("currency") or row.currency,
                    status=status,
                    billing_period_start=from_timestamp(period.get("start")),
                    billing_period_end=from_timestamp(period.get("end")),
                    paid_at=datetime.now(timezone.utc) if paid else None,
                )
            )
        db.commit()
        return len(rows)


def record_invoice_paid(invoice: Any) -> int:
    return _append_history(invoice, "paid", paid=True)


def mark_invoice_failed(invoice: Any) -> int:
    return _append_history(invoice, "failed", paid=False)
