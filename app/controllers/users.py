import asyncio
import logging

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from app import db as db_module
from app.dependencies import ErrorResponse, http_error, parse_body
from app.models import ErrorCode, User
from app.services import subscriptions as subscription_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


class UserCreateRequest(BaseModel):
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    company: str | None = None


def _serialize(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "company": user.company,
        "currentPlanId": user.current_plan_id,
        "currentPlanName": user.current_plan_name,
        "currentBillingCycle": user.current_billing_cycle,
        "subscriptionStatus": user.subscription_status,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


@router.post(
    "/users",
    status_code=201,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_user(request: Request):
    body = await parse_body(request, UserCreateRequest)

    def _db_call() -> dict | None:
        with db_module.SessionLocal() as db:
            user = User(
                email=body.email.lower(),
                first_name=body.first_name,
                last_name=body.last_name,
                company=body.company,
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return None
            db.refresh(user)
            return _serialize(user)

    user = await asyncio.to_thread(_db_call)
    if user is None:
        raise http_error(409, ErrorCode.CONFLICT, "User with this email already exists")
    logger.info("User %s created", user["id"])
    return {"success": True, "user": user}


@router.get("/users/{user_id}", responses={404: {"model": ErrorResponse}})
async def get_user(user_id: int):
    def _db_call() -> dict | None:
        with db_module.SessionLocal() as db:
            user = db.get(User, user_id)
            return _serialize(user) if user else None

    user = await asyncio.to_thread(_db_call)
    if user is None:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found")
    return {"success": True, "user": user}


class UserUpdateRequest(BaseModel):
    first_name: str | None = Field(None, alias="firstName")
    last_name: str | None = Field(None, alias="lastName")
    company: str | None = None


@router.put(
    "/users/{user_id}",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_user(user_id: int, request: Request):
    body = await parse_body(request, UserUpdateRequest)
    changes = body.model_dump(exclude_unset=True)

    def _db_call() -> dict | None:
        with db_module.SessionLocal() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            for field, value in changes.items():
                setattr(user, field, value)
            db.commit()
            db.refresh(user)
            return _serialize(user)

    user = await asyncio.to_thread(_db_call)
    if user is None:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found")
    return {"success": True, "user": user}


@router.get("/users/{user_id}/subscription", responses={404: {"model": ErrorResponse}})
async def get_user_subscription(user_id: int):
    """Plan fields of the user with the ad-account subscriptions behind them."""

    def _db_call() -> dict | None:
        with db_module.SessionLocal() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            profile = _serialize(user)
        subs = subscription_service.list_subscriptions(user_id)
        return {
            "planId": profile["currentPlanId"],
            "planName": profile["currentPlanName"],
            "billingCycle": profile["currentBillingCycle"],
            "status": profile["subscriptionStatus"],
            "activeAccounts": subscription_service.count_active_subscriptions(user_id),
            "subscriptions": subs,
        }

    summary = await asyncio.to_thread(_db_call)
    if summary is None:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found")
    return {"success": True, "subscription": summary}


@router.get("/users/{user_id}/invoices")
async def get_user_invoices(user_id: int):
    invoices = await asyncio.to_thread(subscription_service.billing_history, user_id)
    return {"success": True, "invoices": invoices}
