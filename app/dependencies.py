from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import TypeVar

from fastapi import Depends, HTTPException, Request
from pydantic import BaseModel, ValidationError

from app.config import Settings
from app.models import ErrorCode
from app.services.graph import GraphAPIError, GraphClient
from app.services.image_proxy import ImageFetcher
from app.services.n8n import N8nClient
from app.services.stripe_billing import StripeBilling

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_GRAPH_CODES = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    429: ErrorCode.RATE_LIMITED,
}


class ErrorResponse(BaseModel):
    code: str
    message: str


def http_error(status_code: int, code: ErrorCode, message: str) -> HTTPException:
    err = ErrorResponse(code=code, message=message)
    return HTTPException(status_code=status_code, detail=err.model_dump())


def graph_http_error(exc: GraphAPIError) -> HTTPException:
    code = _GRAPH_CODES.get(exc.status_code, ErrorCode.UPSTREAM_ERROR)
    return http_error(exc.status_code, code, exc.message)


def validation_message(exc: ValidationError) -> str:
    """Describe the first validation error, naming the field path."""
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    if first.get("type") == "missing":
        return f"Missing required field: {loc}"
    if not loc:
        return first.get("msg", "Invalid payload")
    return f"Invalid field {loc}: {first.get('msg')}"


async def parse_body(request: Request, model: type[M]) -> M:
    """Read the JSON body and validate it against ``model``."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise http_error(400, ErrorCode.BAD_REQUEST, "Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise http_error(400, ErrorCode.BAD_REQUEST, "JSON object expected")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        message = validation_message(exc)
        logger.info("Rejected %s: %s", model.__name__, message)
        raise http_error(400, ErrorCode.BAD_REQUEST, message) from exc


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_graph_client(settings: Settings = Depends(get_settings)) -> GraphClient:
    return GraphClient.from_settings(settings)


def get_stripe_billing(settings: Settings = Depends(get_settings)) -> StripeBilling:
    return StripeBilling.from_settings(settings)


def get_image_fetcher(settings: Settings = Depends(get_settings)) -> ImageFetcher:
    return ImageFetcher.from_settings(settings)


def get_n8n_client(settings: Settings = Depends(get_settings)) -> N8nClient:
    return N8nClient.from_settings(settings)
