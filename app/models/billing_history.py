from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.models.base import Base


class PerAccountBillingHistory(Base):
    """Append-only ledger of invoices charged for a per-account subscription."""

    __tablename__ = "per_account_billing_history"

    id = Column(Integer, primary_key=True)
    subscription_id = Column(
        Integer, ForeignKey("ad_account_subscriptions.id"), nullable=False, index=True
    )
    user_id = Column(Integer, nullable=False, index=True)
    ad_account_id = Column(String, nullable=False)
    stripe_invoice_id = Column(String)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    status = Column(String, nullable=False)
    billing_period_start = Column(DateTime)
    billing_period_end = Column(DateTime)
    paid_at = Column(DateTime)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


__all__ = ["PerAccountBillingHistory"]
