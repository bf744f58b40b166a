"""Stripe gateway for per-ad-account billing.

All calls are blocking; async callers run them through ``asyncio.to_thread``.
Without a configured secret key every call is a no-op returning ``None``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import stripe

from app.config import Settings

logger = logging.getLogger(__name__)


class WebhookVerificationError(Exception):
    """Raised when a webhook payload cannot be authenticated."""


class StripeBilling:
    def __init__(self, secret_key: str | None, webhook_secret: str | None = None):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeBilling":
        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    @property
    def configured(self) -> bool:
        return bool(self._secret_key)

    def _skip(self, operation: str) -> bool:
        if not self._secret_key:
            logger.warning("Stripe not configured, skipping %s", operation)
            return True
        return False

    def create_customer(self, email: str, user_id: int) -> Any | None:
        if self._skip("customer creation"):
            return None
        return stripe.Customer.create(
            email=email,
            metadata={"userId": str(user_id)},
            api_key=self._secret_key,
        )

    def create_subscription(
        self, customer_id: str, price_id: str, metadata: dict[str, str]
    ) -> Any | None:
        if self._skip("subscription creation"):
            return None
        return stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": price_id}],
            metadata=metadata,
            expand=["latest_invoice.payment_intent"],
            api_key=self._secret_key,
        )

    def retrieve_subscription(self, subscription_id: str) -> Any | None:
        if self._skip("subscription lookup"):
            return None
        return stripe.Subscription.retrieve(
            subscription_id, expand=["items.data"], api_key=self._secret_key
        )

    def update_subscription_price(self, subscription_id: str, price_id: str) -> Any | None:
        """Swap the subscription's price, prorating the current period."""
        if self._skip("subscription update"):
            return None
        current = self.retrieve_subscription(subscription_id)
        items = current.get("items", {}).get("data", [])
        item: dict[str, Any] = {"price": price_id}
        if items:
            item["id"] = items[0]["id"]
        return stripe.Subscription.modify(
            subscription_id,
            items=[item],
            proration_behavior="create_prorations",
            api_key=self._secret_key,
        )

    def cancel_subscription(self, subscription_id: str) -> Any | None:
        if self._skip("subscription cancel"):
            return None
        return stripe.Subscription.cancel(subscription_id, api_key=self._secret_key)

    def first_active_subscription_item(self, customer_id: str) -> str | None:
        if self._skip("subscription item lookup"):
            return None
        subs = stripe.Subscription.list(
            customer=customer_id, status="active", limit=1, api_key=self._secret_key
        )
        for sub in subs.get("data", []):
            items = sub.get("items", {}).get("data", [])
            if items:
                return items[0]["id"]
        return None

    def set_usage(
        self, item_id: str, quantity: int, timestamp: int | None = None
    ) -> Any | None:
        """Replace the period's metered quantity with ``quantity``."""
        if self._skip("usage record"):
            return None
        return stripe.SubscriptionItem.create_usage_record(
            item_id,
            quantity=quantity,
            timestamp=timestamp or int(time.time()),
            action="set",
            api_key=self._secret_key,
        )

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> Any | None:
        if self._skip("checkout session"):
            return None
        return stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": quantity}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
            api_key=self._secret_key,
        )

    def retrieve_checkout_session(self, session_id: str) -> Any | None:
        if self._skip("checkout session lookup"):
            return None
        return stripe.checkout.Session.retrieve(session_id, api_key=self._secret_key)

    def find_customer_by_email(self, email: str) -> str | None:
        if self._skip("customer lookup"):
            return None
        customers = stripe.Customer.list(email=email, limit=1, api_key=self._secret_key)
        data = customers.get("data", [])
        return data[0]["id"] if data else None

    def create_portal_session(self, customer_id: str, return_url: str) -> Any | None:
        if self._skip("customer portal"):
            return None
        return stripe.billing_portal.Session.create(
            customer=customer_id, return_url=return_url, api_key=self._secret_key
        )

    def retrieve_upcoming_invoice(self, customer_id: str) -> Any | None:
        if self._skip("upcoming invoice"):
            return None
        return stripe.Invoice.upcoming(customer=customer_id, api_key=self._secret_key)

    def construct_event(self, payload: bytes, signature: str | None) -> Any:
        if not self._webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        try:
            return stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self._webhook_secret,
                api_key=self._secret_key,
            )
        except ValueError as exc:
            raise WebhookVerificationError("Invalid payload") from exc
        except stripe.error.SignatureVerificationError as exc:
            raise WebhookVerificationError("Invalid signature") from exc
