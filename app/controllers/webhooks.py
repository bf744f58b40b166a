import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from app.dependencies import ErrorResponse, get_n8n_client, http_error, parse_body
from app.models import ErrorCode
from app.services.n8n import (
    SOURCE_BATCH,
    SOURCE_SINGLE,
    N8nClient,
    N8nError,
    N8nNotConfigured,
    build_envelope,
    new_request_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])


class AnalyzeCreativesRequest(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_account_id: str = Field(alias="adAccountId", min_length=1)
    date_range: Any = Field(alias="dateRange")
    selected_creative_ids: list[str] = Field(alias="selectedCreativeIds", min_length=1)
    batch_size: int | None = Field(None, alias="batchSize", ge=1)


class AnalyzeCreativeRequest(BaseModel):
    access_token: str = Field(alias="accessToken", min_length=1)
    ad_account_id: str = Field(alias="adAccountId", min_length=1)
    date_range: Any = Field(None, alias="dateRange")
    creative_id: str = Field(alias="creativeId", min_length=1)


async def _forward(client: N8nClient, envelope: dict) -> dict:
    try:
        result = await client.forward(envelope)
    except N8nNotConfigured as exc:
        logger.error("n8n forwarding requested without a webhook URL")
        raise http_error(500, ErrorCode.INTERNAL_ERROR, str(exc)) from exc
    except N8nError as exc:
        code = ErrorCode.BAD_REQUEST if exc.status_code < 500 else ErrorCode.UPSTREAM_ERROR
        raise http_error(exc.status_code, code, exc.message) from exc
    return {
        "success": True,
        "requestId": result.request_id,
        "timestamp": result.timestamp,
        "responseTimeMs": result.response_time_ms,
        "result": result.result,
    }


@router.post(
    "/analyze-creatives",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def analyze_creatives(
    request: Request, client: N8nClient = Depends(get_n8n_client)
):
    body = await parse_body(request, AnalyzeCreativesRequest)
    envelope = build_envelope(
        body.access_token,
        body.ad_account_id,
        body.date_range,
        body.selected_creative_ids,
        SOURCE_BATCH,
        new_request_id("batch"),
        batch_size=body.batch_size,
    )
    logger.info(
        "Forwarding %d creatives for %s as %s",
        len(body.selected_creative_ids),
        body.ad_account_id,
        envelope["requestId"],
    )
    return await _forward(client, envelope)


@router.post(
    "/analyze-creative",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def analyze_creative(
    request: Request, client: N8nClient = Depends(get_n8n_client)
):
    body = await parse_body(request, AnalyzeCreativeRequest)
    envelope = build_envelope(
        body.access_token,
        body.ad_account_id,
        body.date_range,
        [body.creative_id],
        SOURCE_SINGLE,
        new_request_id("single"),
        batch_size=1,
    )
    return await _forward(client, envelope)
