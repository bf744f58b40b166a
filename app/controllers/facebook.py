import asyncio
import logging
import math

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from app.dependencies import (
    ErrorResponse,
    get_graph_client,
    graph_http_error,
    http_error,
    parse_body,
)
from app.models import ErrorCode
from app.services import ads_library
from app.services import facebook_sessions as session_service
from app.services import marketing
from app.services.accounts import UnknownUser
from app.services.ads_library import AdsLibraryFilters
from app.services.graph import GraphAPIError, GraphClient
from app.services.graph_health import run_health_checks
from app.services.previews import (
    DEFAULT_FORMAT,
    fetch_ad_preview,
    fetch_creative_preview_html,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/facebook", tags=["facebook"])

AUTH_ME_TIMEOUT = 6
AUTH_ACCOUNTS_TIMEOUT = 8

_GRAPH_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
}


class AdsLibraryRequest(BaseModel):
    search_query: str | None = Field(None, alias="searchQuery")
    access_token: str | None = Field(None, alias="accessToken")
    filters: AdsLibraryFilters | None = None
    page: int = Field(1, ge=1)
    page_size: int = Field(20, alias="pageSize", ge=1, le=100)


class AdsExportRequest(BaseModel):
    search_query: str | None = Field(None, alias="searchQuery")
    access_token: str | None = Field(None, alias="accessToken")
    filters: AdsLibraryFilters | None = None
    format: str = "json"


class AdPreviewRequest(BaseModel):
    ad_id: str = Field(alias="adId", min_length=1)
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_format: str = Field(DEFAULT_FORMAT, alias="adFormat")


class CreativePreviewRequest(BaseModel):
    creative_id: str = Field(alias="creativeId", min_length=1)
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_format: str = Field(DEFAULT_FORMAT, alias="adFormat")


class DateRange(BaseModel):
    since: str | None = None
    until: str | None = None


class MarketingRequest(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    data_type: str = Field(alias="dataType", min_length=1)
    limit: int = Field(25, ge=1, le=500)
    offset: int = Field(0, ge=0)
    status: str | None = None
    date_range: DateRange | None = Field(None, alias="dateRange")


class HealthRequest(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_account_id: str | None = Field(None, alias="adAccountId")


class AuthRequest(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    user_id: int | None = Field(None, alias="userId")
    ad_account_id: str | None = Field(None, alias="adAccountId")


class SessionRequest(BaseModel):
    user_id: int = Field(alias="userId")
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_account_id: str | None = Field(None, alias="adAccountId")


class SessionUpdateRequest(BaseModel):
    user_id: int = Field(alias="userId")
    access_token: str | None = Field(None, alias="accessToken")
    ad_account_id: str | None = Field(None, alias="adAccountId")


def _method_not_allowed():
    return http_error(405, ErrorCode.METHOD_NOT_ALLOWED, "Method not allowed. Use POST.")


def _require_search(search_query: str | None, access_token: str | None) -> None:
    if not search_query or not search_query.strip():
        raise http_error(400, ErrorCode.BAD_REQUEST, "Search query is required")
    if not access_token:
        raise http_error(
            400, ErrorCode.BAD_REQUEST, "Facebook access token is required"
        )


@router.post("/ads-library", responses=_GRAPH_ERRORS)
async def search_ads_library(
    request: Request, graph: GraphClient = Depends(get_graph_client)
):
    body = await parse_body(request, AdsLibraryRequest)
    _require_search(body.search_query, body.access_token)

    offset = (body.page - 1) * body.page_size
    params = ads_library.build_search_params(
        body.search_query, body.filters, body.page_size, offset
    )
    try:
        await ads_library.verify_ads_read(graph, body.access_token)
        ads, raw = await ads_library.search_ads(graph, body.access_token, params)
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc

    has_next = bool((raw.get("paging") or {}).get("next"))
    total = offset + len(ads) + (body.page_size if has_next else 0)
    return {
        "success": True,
        "data": ads,
        "pagination": {
            "page": body.page,
            "pageSize": body.page_size,
            "totalPages": max(1, math.ceil(total / body.page_size)),
            "totalResults": total,
            "hasNextPage": has_next,
            "hasPreviousPage": body.page > 1,
        },
        "searchParams": params,
    }


@router.get("/ads-library", include_in_schema=False)
async def search_ads_library_get():
    raise _method_not_allowed()


@router.post("/ads-library/export", responses=_GRAPH_ERRORS)
async def export_ads_library(
    request: Request, graph: GraphClient = Depends(get_graph_client)
):
    body = await parse_body(request, AdsExportRequest)
    _require_search(body.search_query, body.access_token)

    params = ads_library.build_search_params(
        body.search_query, body.filters, ads_library.EXPORT_LIMIT
    )
    try:
        await ads_library.verify_ads_read(graph, body.access_token)
        ads, _ = await ads_library.search_ads(graph, body.access_token, params)
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc

    logger.info("Exported %d ads as %s", len(ads), body.format)
    if body.format.lower() == "csv":
        filename = ads_library.export_filename(body.search_query)
        return Response(
            content=ads_library.ads_to_csv(ads),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return {
        "success": True,
        "data": ads,
        "totalExported": len(ads),
        "searchQuery": body.search_query,
        "filters": body.filters.model_dump(by_alias=True) if body.filters else None,
    }


@router.get("/ads-library/export", include_in_schema=False)
async def export_ads_library_get():
    raise _method_not_allowed()


@router.get("/ads-library/{ad_id}", responses=_GRAPH_ERRORS | {404: {"model": ErrorResponse}})
async def get_library_ad(
    ad_id: str,
    access_token: str = Query(..., min_length=1),
    graph: GraphClient = Depends(get_graph_client),
):
    try:
        ad = await ads_library.fetch_ad(graph, access_token, ad_id)
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc
    return {"success": True, "data": ad}


async def _ad_preview(graph: GraphClient, ad_id: str, token: str, ad_format: str):
    try:
        result = await fetch_ad_preview(graph, token, ad_id, ad_format)
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc
    return {
        "success": True,
        "adId": ad_id,
        "adFormat": result.format,
        "fallback": result.fallback,
        "previewHtml": result.preview.get("body"),
        "preview": result.preview,
    }


@router.post("/ad-preview", responses=_GRAPH_ERRORS | {404: {"model": ErrorResponse}})
async def ad_preview(request: Request, graph: GraphClient = Depends(get_graph_client)):
    body = await parse_body(request, AdPreviewRequest)
    return await _ad_preview(graph, body.ad_id, body.access_token, body.ad_format)


@router.get("/ad-preview", responses=_GRAPH_ERRORS | {404: {"model": ErrorResponse}})
async def ad_preview_get(
    ad_id: str = Query(..., alias="adId", min_length=1),
    access_token: str = Query(..., alias="accessToken", min_length=1),
    ad_format: str = Query(DEFAULT_FORMAT, alias="adFormat"),
    graph: GraphClient = Depends(get_graph_client),
):
    return await _ad_preview(graph, ad_id, access_token, ad_format)


@router.post("/creative-preview", responses=_GRAPH_ERRORS | {404: {"model": ErrorResponse}})
async def creative_preview(
    request: Request, graph: GraphClient = Depends(get_graph_client)
):
    body = await parse_body(request, CreativePreviewRequest)
    try:
        html = await fetch_creative_preview_html(
            graph, body.access_token, body.creative_id, body.ad_format
        )
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc
    return {"success": True, "creativeId": body.creative_id, "previewHtml": html}


@router.post("/marketing-api", responses=_GRAPH_ERRORS)
async def marketing_api(request: Request, graph: GraphClient = Depends(get_graph_client)):
    body = await parse_body(request, MarketingRequest)
    if body.data_type not in marketing.DATASETS:
        raise http_error(
            400,
            ErrorCode.BAD_REQUEST,
            f"Invalid dataType. Must be one of: {', '.join(marketing.DATASETS)}",
        )
    try:
        result = await marketing.fetch_dataset(
            graph,
            body.access_token,
            body.data_type,
            limit=body.limit,
            offset=body.offset,
            status=body.status,
            date_range=body.date_range.model_dump() if body.date_range else None,
        )
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc
    return {"success": True, "dataType": body.data_type, **result}


@router.get("/marketing-api", include_in_schema=False)
async def marketing_api_get():
    raise _method_not_allowed()


@router.post("/health")
async def graph_health(request: Request, graph: GraphClient = Depends(get_graph_client)):
    body = await parse_body(request, HealthRequest)
    return await run_health_checks(graph, body.access_token, body.ad_account_id)


@router.get("/health")
async def graph_health_get(
    access_token: str = Query(..., alias="accessToken", min_length=1),
    ad_account_id: str | None = Query(None, alias="adAccountId"),
    graph: GraphClient = Depends(get_graph_client),
):
    return await run_health_checks(graph, access_token, ad_account_id)


@router.post("/auth", responses=_GRAPH_ERRORS | {404: {"model": ErrorResponse}})
async def facebook_auth(request: Request, graph: GraphClient = Depends(get_graph_client)):
    body = await parse_body(request, AuthRequest)
    try:
        me = await graph.get(
            "me",
            body.access_token,
            {"fields": "id,name,email"},
            timeout=AUTH_ME_TIMEOUT,
        )
        accounts = await graph.get(
            "me/adaccounts",
            body.access_token,
            {"fields": "id,name,account_status,currency,timezone_name"},
            timeout=AUTH_ACCOUNTS_TIMEOUT,
        )
    except GraphAPIError as exc:
        raise graph_http_error(exc) from exc

    ad_accounts = [
        {
            "id": a.get("id"),
            "name": a.get("name"),
            "accountStatus": a.get("account_status"),
            "currency": a.get("currency"),
            "timezoneName": a.get("timezone_name"),
        }
        for a in accounts.get("data") or []
    ]

    session = None
    if body.user_id is not None:
        ad_account_id = body.ad_account_id or (
            ad_accounts[0]["id"] if ad_accounts else None
        )
        try:
            session = await asyncio.to_thread(
                session_service.save_session,
                body.user_id,
                body.access_token,
                ad_account_id,
            )
        except UnknownUser as exc:
            raise http_error(404, ErrorCode.NOT_FOUND, "User not found") from exc

    return {
        "success": True,
        "user": {"id": me.get("id"), "name": me.get("name"), "email": me.get("email")},
        "adAccounts": ad_accounts,
        "sessionSaved": session is not None,
    }


@router.get("/session", responses={404: {"model": ErrorResponse}})
async def get_facebook_session(user_id: int = Query(..., alias="userId")):
    session = await asyncio.to_thread(session_service.get_session, user_id)
    if session is None:
        raise http_error(404, ErrorCode.NOT_FOUND, "No Facebook session found")
    return {"success": True, "session": session}


@router.post("/session", responses={404: {"model": ErrorResponse}})
async def save_facebook_session(request: Request):
    body = await parse_body(request, SessionRequest)
    try:
        session = await asyncio.to_thread(
            session_service.save_session,
            body.user_id,
            body.access_token,
            body.ad_account_id,
        )
    except UnknownUser as exc:
        raise http_error(404, ErrorCode.NOT_FOUND, "User not found") from exc
    return {"success": True, "session": session}


@router.put("/session", responses={404: {"model": ErrorResponse}})
async def update_facebook_session(request: Request):
    body = await parse_body(request, SessionUpdateRequest)
    session = await asyncio.to_thread(
        session_service.update_session,
        body.user_id,
        body.access_token,
        body.ad_account_id,
    )
    if session is None:
        raise http_error(404, ErrorCode.NOT_FOUND, "No Facebook session found")
    return {"success": True, "session": session}


@router.delete("/session")
async def delete_facebook_session(user_id: int = Query(..., alias="userId")):
    deleted = await asyncio.to_thread(session_service.delete_session, user_id)
    return {"success": True, "deleted": deleted}
