from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app import db as db_module
from app.models import AdAccount, User

logger = logging.getLogger(__name__)


class DuplicateAccount(Exception):
    pass


class UnknownUser(Exception):
    pass


def serialize_account(row: AdAccount) -> dict:
    return {
        "id": row.id,
        "userId": row.user_id,
        "accountName": row.account_name,
        "accountId": row.account_id,
        "platform": row.platform,
        "status": row.status,
        "createdAt": row.created_at.isoformat() if row.created_at else None,
    }


def list_accounts(user_id: int) -> list[dict]:
    with db_module.SessionLocal() as db:
        rows = (
            db.query(AdAccount)
            .filter_by(user_id=user_id)
            .order_by(AdAccount.created_at.desc(), AdAccount.id.desc())
            .all()
        )
        return [serialize_account(r) for r in rows]


def active_count(user_id: int) -> int:
    with db_module.SessionLocal() as db:
        return (
            db.query(func.count(AdAccount.id))
            .filter(AdAccount.user_id == user_id, AdAccount.status == "active")
            .scalar()
            or 0
        )


def add_account(
    user_id: int, account_name: str, account_id: str | None, platform: str
) -> dict:
    with db_module.SessionLocal() as db:
        if db.get(User, user_id) is None:
            raise UnknownUser(user_id)
        row = AdAccount(
            user_id=user_id,
            account_name=account_name,
            account_id=account_id,
            platform=platform,
            status="active",
        )
        db.add(row)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateAccount(account_id) from exc
        db.refresh(row)
        logger.info("Ad account %s connected for user %s", row.id, user_id)
        return serialize_account(row)


def remove_account(user_id: int, account_row_id: int) -> dict | None:
    """Delete the user's ad account; ``None`` when it does not exist."""
    with db_module.SessionLocal() as db:
        row = (
            db.query(AdAccount)
            .filter_by(id=account_row_id, user_id=user_id)
            .first()
        )
        if row is None:
            return None
        data = serialize_account(row)
        db.delete(row)
        db.commit()
        logger.info("Ad account %s removed for user %s", account_row_id, user_id)
        return data
