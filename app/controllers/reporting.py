import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field

from app.dependencies import (
    ErrorResponse,
    get_graph_client,
    graph_http_error,
    http_error,
    parse_body,
)
from app.models import ErrorCode
from app.services import facebook_sessions as session_service
from app.services import reporting
from app.services.accounts import UnknownUser
from app.services.graph import GraphAPIError, GraphClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/facebook", tags=["facebook"])

_GRAPH_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
}


class AccountReportRequest(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_account_id: str = Field(alias="adAccountId", min_length=1)
    date_range: str = Field(reporting.DEFAULT_RANGE, alias="dateRange")
    compare: bool = False
    user_id: int | None = Field(None, alias="userId")


class CreativeRequest(BaseModel):
    access_token: str | None = Field(None, alias="accessToken")


@router.post("/ads", responses=_GRAPH_ERRORS)
async def account_ads(request: Request, graph: GraphClient = Depends(get_graph_client)):
    body = await parse_body(request, AccountReportRequest)
    try:
        report = await reporting.campaign_report(
            graph,
            body.access_token,
            body.ad_account_id,
            body.date_range,
            compare=body.compare,
        )
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc

    if body.user_id is not None:
        try:
            await asyncio.to_thread(
                session_service.save_session,
                body.user_id,
                body.access_token,
                body.ad_account_id,
            )
        except UnknownUser as exc:
            raise http_error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    return report


@router.post("/insights", responses=_GRAPH_ERRORS)
async def account_insights(
    request: Request, graph: GraphClient = Depends(get_graph_client)
):
    body = await parse_body(request, AccountReportRequest)
    try:
        return await reporting.insights_report(
            graph,
            body.access_token,
            body.ad_account_id,
            body.date_range,
            compare=body.compare,
        )
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc


@router.post("/creatives", responses=_GRAPH_ERRORS)
async def account_creatives(
    request: Request, graph: GraphClient = Depends(get_graph_client)
):
    body = await parse_body(request, AccountReportRequest)
    try:
        return await reporting.creatives_report(
            graph, body.access_token, body.ad_account_id, body.date_range
        )
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc


async def _creative(graph: GraphClient, creative_id: str, token: str) -> dict:
    try:
        result = await reporting.fetch_creative(graph, token, creative_id)
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc
    return {
        "success": True,
        **result,
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/creatives/{creative_id}", responses=_GRAPH_ERRORS)
async def get_creative(
    creative_id: str,
    access_token: str | None = Query(None),
    authorization: str | None = Header(None),
    graph: GraphClient = Depends(get_graph_client),
):
    token = access_token
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise http_error(
            401, ErrorCode.UNAUTHORIZED, "Facebook access token is required"
        )
    return await _creative(graph, creative_id, token)


@router.post("/creatives/{creative_id}", responses=_GRAPH_ERRORS)
async def post_creative(
    creative_id: str, request: Request, graph: GraphClient = Depends(get_graph_client)
):
    body = await parse_body(request, CreativeRequest)
    if not body.access_token:
        raise http_error(
            400, ErrorCode.BAD_REQUEST, "Facebook access token is required"
        )
    return await _creative(graph, creative_id, body.access_token)
