from __future__ import annotations

import logging
from dataclasses import dataclass

from app.metrics import ad_preview_fallback_total
from app.services.graph import GraphAPIError, GraphClient

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "DESKTOP_FEED_STANDARD"

FALLBACK_FORMATS = (
    "MOBILE_FEED_STANDARD",
    "RIGHT_COLUMN_STANDARD",
    "DESKTOP_FEED_STANDARD",
    "MOBILE_BANNER",
    "MOBILE_INTERSTITIAL",
)

# these fail the same way for every format
_FATAL_STATUSES = {401, 429}


@dataclass
class PreviewResult:
    preview: dict
    format: str
    fallback: bool


async def _first_preview(
    graph: GraphClient, access_token: str, object_id: str, ad_format: str
) -> dict | None:
    data = await graph.get(
        f"{object_id}/previews", access_token, {"ad_format": ad_format}
    )
    previews = data.get("data") or []
    return previews[0] if previews else None


async def fetch_ad_preview(
    graph: GraphClient, access_token: str, ad_id: str, ad_format: str = DEFAULT_FORMAT
) -> PreviewResult:
    """Preview ``ad_id`` in ``ad_format``, falling back to other formats.

    The alternates are tried in a fixed order when the requested format
    errors or comes back empty; the first hit is flagged ``fallback``.
    """
    primary_error: GraphAPIError | None = None
    try:
        preview = await _first_preview(graph, access_token, ad_id, ad_format)
    except GraphAPIError as exc:
        if exc.status_code in _FATAL_STATUSES:
            raise
        primary_error = exc
        preview = None
    if preview:
        return PreviewResult(preview, ad_format, False)

    for alt in FALLBACK_FORMATS:
        if alt == ad_format:
            continue
        try:
            preview = await _first_preview(graph, access_token, ad_id, alt)
        except GraphAPIError as exc:
            logger.info("Preview format %s failed for ad %s: %s", alt, ad_id, exc.message)
            continue
        if preview:
            ad_preview_fallback_total.inc()
            logger.info("Ad %s preview served as %s", ad_id, alt)
            return PreviewResult(preview, alt, True)

    if primary_error is not None:
        raise primary_error
    raise GraphAPIError(404, "No preview data returned from Facebook")


async def fetch_creative_preview_html(
    graph: GraphClient,
    access_token: str,
    creative_id: str,
    ad_format: str = DEFAULT_FORMAT,
) -> str:
    preview = await _first_preview(graph, access_token, creative_id, ad_format)
    if not preview or not preview.get("body"):
        raise GraphAPIError(404, "No preview data available for this creative")
    return preview["body"]
