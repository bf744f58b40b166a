from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func

from app import db as db_module
from app.metrics import creative_scores_saved_total
from app.models import CreativeScore

logger = logging.getLogger(__name__)

DIMENSIONS = (
    "clarity",
    "text_density",
    "brand",
    "value_prop",
    "cta",
    "contrast",
    "thumbnail",
)

LOW_SCORE = 60
HIGH_SCORE = 80


class ScoreDimensions(BaseModel):
    clarity: float = Field(ge=0, le=100)
    text_density: float = Field(ge=0, le=100)
    brand: float = Field(ge=0, le=100)
    value_prop: float = Field(ge=0, le=100)
    cta: float = Field(ge=0, le=100)
    contrast: float = Field(ge=0, le=100)
    thumbnail: float = Field(ge=0, le=100)


class Score(BaseModel):
    overall: float = Field(ge=0, le=100)
    dimensions: ScoreDimensions


class Insights(BaseModel):
    strengths: list[str]
    weaknesses: list[str]
    recommendations: list[str]


class CreativeScorePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    creative_id: str = Field(alias="creativeId", min_length=1)
    ad_account_id: str = Field(alias="adAccountId", min_length=1)
    image_hash: str | None = Field(None, alias="imageHash")
    model: str = Field(min_length=1)
    score: Score
    insights: Insights
    compliance_flags: list[str] = Field(alias="complianceFlags")
    processing_time_ms: int | None = Field(None, alias="processingTimeMs", ge=0)


def serialize_score(row: CreativeScore) -> dict:
    return {
        "id": row.id,
        "creativeId": row.creative_id,
        "adAccountId": row.ad_account_id,
        "imageHash": row.image_hash,
        "model": row.model,
        "score": {"overall": row.score_overall, "dimensions": row.scores_json},
        "insights": row.insights_json,
        "complianceFlags": row.compliance_flags or [],
        "processingTimeMs": row.processing_time_ms,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def save_score(payload: CreativeScorePayload) -> tuple[dict, bool]:
    """Insert or replace the score for ``creative_id``.

    Returns the stored row and whether it was newly created.
    """
    with db_module.SessionLocal() as db:
        row = db.query(CreativeScore).filter_by(creative_id=payload.creative_id).first()
        created = row is None
        if created:
            row = CreativeScore(creative_id=payload.creative_id)
            db.add(row)
        row.ad_account_id = payload.ad_account_id
        row.image_hash = payload.image_hash
        row.model = payload.model
        row.score_overall = payload.score.overall
        row.scores_json = payload.score.dimensions.model_dump()
        row.insights_json = payload.insights.model_dump()
        row.compliance_flags = list(payload.compliance_flags)
        row.processing_time_ms = payload.processing_time_ms
        if not created:
            row.updated_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(row)
        creative_scores_saved_total.inc()
        logger.info(
            "Stored creative score for %s (overall=%s)",
            payload.creative_id,
            payload.score.overall,
        )
        return serialize_score(row), created


def get_score(creative_id: str | None, image_hash: str | None = None) -> dict | None:
    with db_module.SessionLocal() as db:
        query = db.query(CreativeScore)
        if creative_id:
            query = query.filter_by(creative_id=creative_id)
        if image_hash:
            query = query.filter_by(image_hash=image_hash)
        row = query.order_by(CreativeScore.updated_at.desc()).first()
        return serialize_score(row) if row else None


def get_scores(creative_ids: list[str]) -> dict[str, dict]:
    """Scores keyed by creative id; unknown ids are simply absent."""
    if not creative_ids:
        return {}
    with db_module.SessionLocal() as db:
        rows = (
            db.query(CreativeScore)
            .filter(CreativeScore.creative_id.in_(creative_ids))
            .all()
        )
        return {row.creative_id: serialize_score(row) for row in rows}


def score_stats(ad_account_id: str | None, days_back: int) -> dict:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_back)
    with db_module.SessionLocal() as db:
        query = db.query(CreativeScore).filter(CreativeScore.created_at >= cutoff)
        if ad_account_id:
            query = query.filter(CreativeScore.ad_account_id == ad_account_id)
        sub = query.subquery()
        total, avg, low, high, avg_ms = db.query(
            func.count(sub.c.id),
            func.avg(sub.c.score_overall),
            func.min(sub.c.score_overall),
            func.max(sub.c.score_overall),
            func.avg(sub.c.processing_time_ms),
        ).one()
        low_count = (
            db.query(func.count(sub.c.id))
            .filter(sub.c.score_overall < LOW_SCORE)
            .scalar()
        )
        high_count = (
            db.query(func.count(sub.c.id))
            .filter(sub.c.score_overall >= HIGH_SCORE)
            .scalar()
        )
    total = total or 0
    return {
        "totalScores": total,
        "avgScore": round(float(avg or 0), 1),
        "minScore": round(float(low or 0), 1),
        "maxScore": round(float(high or 0), 1),
        "distribution": {
            "lowScores": low_count or 0,
            "mediumScores": total - (low_count or 0) - (high_count or 0),
            "highScores": high_count or 0,
        },
        "avgProcessingTimeMs": int(avg_ms or 0),
        "period": {
            "daysBack": days_back,
            "adAccountId": ad_account_id or "all_accounts",
        },
    }
