from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String

from app.models.base import Base


class CreativeScore(Base):
    __tablename__ = "creative_scores"

    id = Column(Integer, primary_key=True)
    creative_id = Column(String, nullable=False, unique=True)
    ad_account_id = Column(String, nullable=False, index=True)
    image_hash = Column(String, index=True)
    model = Column(String, nullable=False)
    score_overall = Column(Float, nullable=False)
    scores_json = Column(JSON, nullable=False)
    insights_json = Column(JSON, nullable=False)
    compliance_flags = Column(JSON, nullable=False, default=list)
    processing_time_ms = Column(Integer)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


__all__ = ["CreativeScore"]
