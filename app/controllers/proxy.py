import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from app.dependencies import ErrorResponse, get_image_fetcher, http_error
from app.models import ErrorCode
from app.services.image_proxy import ImageFetcher, ImageProxyError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_STATUS_CODES = {
    400: ErrorCode.BAD_REQUEST,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    422: ErrorCode.UNPROCESSABLE,
}


@router.get(
    "/proxy-image",
    response_class=Response,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def proxy_image(
    url: str | None = Query(None),
    token: str | None = Query(None),
    fetcher: ImageFetcher = Depends(get_image_fetcher),
):
    if not url or not token:
        raise http_error(
            400, ErrorCode.BAD_REQUEST, "Missing required parameters: url and token"
        )
    try:
        image = await fetcher.fetch(url, token)
    except ImageProxyError as exc:
        code = _STATUS_CODES.get(exc.status_code, ErrorCode.UPSTREAM_ERROR)
        raise http_error(exc.status_code, code, exc.message) from exc

    return Response(
        content=image.content,
        media_type=image.content_type,
        headers={"Cache-Control": "public, max-age=3600", **CORS_HEADERS},
    )


@router.options("/proxy-image", include_in_schema=False)
async def proxy_image_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)
