from __future__ import annotations

import logging
from datetime import datetime, timezone

from app import db as db_module
from app.models import FacebookSession, User
from app.services.accounts import UnknownUser

logger = logging.getLogger(__name__)


def serialize_session(row: FacebookSession) -> dict:
    return {
        "userId": row.user_id,
        "accessToken": row.access_token,
        "adAccountId": row.ad_account_id,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
        "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
    }


def get_session(user_id: int) -> dict | None:
    with db_module.SessionLocal() as db:
        row = db.query(FacebookSession).filter_by(user_id=user_id).first()
        return serialize_session(row) if row else None


def save_session(user_id: int, access_token: str, ad_account_id: str | None) -> dict:
    """Create or replace the stored token for ``user_id``."""
    with db_module.SessionLocal() as db:
        if db.get(User, user_id) is None:
            raise UnknownUser(user_id)
        row = db.query(FacebookSession).filter_by(user_id=user_id).first()
        if row is None:
            row = FacebookSession(user_id=user_id)
            db.add(row)
        row.access_token = access_token
        row.ad_account_id = ad_account_id
        row.updated_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(row)
        logger.info("Facebook session stored for user %s", user_id)
        return serialize_session(row)


def update_session(
    user_id: int, access_token: str | None, ad_account_id: str | None
) -> dict | None:
    with db_module.SessionLocal() as db:
        row = db.query(FacebookSession).filter_by(user_id=user_id).first()
        if row is None:
            return None
        if access_token:
            row.access_token = access_token
        if ad_account_id is not None:
            row.ad_account_id = ad_account_id
        row.updated_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(row)
        return serialize_session(row)


def delete_session(user_id: int) -> bool:
    with db_module.SessionLocal() as db:
        deleted = db.query(FacebookSession).filter_by(user_id=user_id).delete()
        db.commit()
        if deleted:
            logger.info("Facebook session removed for user %s", user_id)
        return bool(deleted)
