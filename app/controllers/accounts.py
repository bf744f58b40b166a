import asyncio

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from app.config import Settings
from app.dependencies import ErrorResponse, get_settings, http_error, parse_body
from app.models import ErrorCode
from app.services import accounts as accounts_service
from app.services.plans import calculate_per_account_total

router = APIRouter(prefix="/accounts", tags=["accounts"])


class AccountCreateRequest(BaseModel):
    user_id: int = Field(alias="userId")
    account_name: str = Field(alias="accountName", min_length=1)
    account_id: str | None = Field(None, alias="accountId")
    platform: str = "facebook"


@router.get("", responses={400: {"model": ErrorResponse}})
async def list_accounts(
    user_id: int = Query(..., alias="userId"),
    settings: Settings = Depends(get_settings),
):
    accounts = await asyncio.to_thread(accounts_service.list_accounts, user_id)
    active = sum(1 for a in accounts if a["status"] == "active")
    return {
        "success": True,
        "accounts": accounts,
        "totalAccounts": active,
        "pricePerAccount": settings.price_per_account,
        "nextCharge": calculate_per_account_total(active, settings.price_per_account),
    }


@router.post(
    "",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def create_account(request: Request, settings: Settings = Depends(get_settings)):
    body = await parse_body(request, AccountCreateRequest)

    def _db_call() -> tuple[dict, int]:
        account = accounts_service.add_account(
            body.user_id, body.account_name, body.account_id, body.platform
        )
        return account, accounts_service.active_count(body.user_id)

    try:
        account, active = await asyncio.to_thread(_db_call)
    except accounts_service.UnknownUser as exc:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    except accounts_service.DuplicateAccount as exc:
        raise http_error(
            409, ErrorCode.CONFLICT, "Ad account is already connected"
        ) from exc

    price = settings.price_per_account
    return {
        "success": True,
        "account": account,
        "totalAccounts": active,
        "nextCharge": calculate_per_account_total(active, price),
        "message": (
            f'Account "{body.account_name}" added successfully. You\'ll be charged '
            f"${price:.2f} for this account on your next billing cycle."
        ),
    }


@router.delete("", responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})
async def delete_account(
    account_id: int = Query(..., alias="accountId"),
    user_id: int = Query(..., alias="userId"),
    settings: Settings = Depends(get_settings),
):
    def _db_call() -> tuple[dict | None, int]:
        deleted = accounts_service.remove_account(user_id, account_id)
        return deleted, accounts_service.active_count(user_id)

    deleted, active = await asyncio.to_thread(_db_call)
    if deleted is None:
        raise http_error(404, ErrorCode.NOT_FOUND, "Ad account not found")
    return {
        "success": True,
        "deletedAccount": deleted,
        "totalAccounts": active,
        "nextCharge": calculate_per_account_total(active, settings.price_per_account),
        "message": "Account removed successfully. Billing will be adjusted for your next cycle.",
    }
