from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.models.base import Base


class AdAccount(Base):
    """Ad account connected by a user; each active row is billed."""

    __tablename__ = "ad_accounts"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    account_name = Column(String, nullable=False)
    account_id = Column(String, unique=True)
    platform = Column(String, nullable=False, default="facebook")
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


__all__ = ["AdAccount"]
