from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)

from app.models.base import Base


class AdAccountSubscription(Base):
    __tablename__ = "ad_account_subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "ad_account_id", name="uq_ad_account_subscriptions_user_account"
        ),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    ad_account_id = Column(String, nullable=False)
    ad_account_name = Column(String)
    stripe_subscription_id = Column(String, index=True)
    stripe_price_id = Column(String)
    stripe_customer_id = Column(String)
    plan_id = Column(String, nullable=False)
    billing_cycle = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="usd")
    status = Column(String, nullable=False, default="incomplete")
    current_period_start = Column(DateTime)
    current_period_end = Column(DateTime)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


__all__ = ["AdAccountSubscription"]
