from __future__ import annotations

import csv
import io
import logging
import re
from datetime import date

from pydantic import BaseModel, Field

from app.services.graph import GraphAPIError, GraphClient, date_window

logger = logging.getLogger(__name__)

AD_FIELDS = (
    "id,ad_creative_body,ad_creative_link_title,ad_creative_link_description,"
    "ad_creative_link_caption,ad_snapshot_url,page_id,page_name,"
    "ad_delivery_start_time,ad_delivery_stop_time,currency,ad_spend,"
    "ad_reached_count,publisher_platforms,ad_type,ad_status,"
    "ad_reached_countries,disclaimer,ad_category"
)

EXPORT_LIMIT = 1000

_AD_TYPE_FILTERS = {
    "political": "POLITICAL_AND_ISSUE_AD",
    "issue": "ISSUE_AD",
    "election": "ELECTION_AD",
}

CSV_HEADERS = [
    "ID",
    "Page Name",
    "Page ID",
    "Ad Title",
    "Ad Description",
    "Ad Caption",
    "Media Type",
    "Status",
    "Region",
    "Currency",
    "Min Spend",
    "Max Spend",
    "Min Impressions",
    "Max Impressions",
    "Publisher Platforms",
    "Start Date",
    "End Date",
    "Ad Snapshot URL",
    "Disclaimer",
]


class AdsLibraryFilters(BaseModel):
    region: str | None = None
    media_type: str | None = Field(None, alias="mediaType")
    ad_type: str | None = Field(None, alias="adType")
    date_range: str | None = Field(None, alias="dateRange")
    min_spend: int | None = Field(None, alias="minSpend", ge=0)
    max_spend: int | None = Field(None, alias="maxSpend", ge=0)
    publisher_platforms: list[str] = Field(
        default_factory=list, alias="publisherPlatforms"
    )


def _active(value: str | None) -> bool:
    return bool(value) and value != "all"


def build_search_params(
    search_query: str,
    filters: AdsLibraryFilters | None,
    limit: int,
    offset: int | None = None,
    today: date | None = None,
) -> dict:
    """Map UI filters to ``ads_archive`` query parameters.

    Spend bounds arrive in dollars and are sent in cents.
    """
    params: dict = {"search_terms": search_query.strip(), "limit": limit}
    if offset is not None:
        params["offset"] = offset
    if filters is None:
        return params

    if _active(filters.region):
        params["ad_reached_countries"] = f'["{filters.region}"]'
    if _active(filters.media_type):
        params["ad_type"] = filters.media_type.upper()
    if _active(filters.ad_type) and filters.ad_type in _AD_TYPE_FILTERS:
        params["ad_type"] = _AD_TYPE_FILTERS[filters.ad_type]
    if _active(filters.date_range):
        window = date_window(filters.date_range, today)
        if window:
            params["ad_delivery_date_min"], params["ad_delivery_date_max"] = window
    if filters.min_spend:
        params["ad_spend_min"] = filters.min_spend * 100
    if filters.max_spend:
        params["ad_spend_max"] = filters.max_spend * 100
    if filters.publisher_platforms:
        params["publisher_platforms"] = ",".join(
            p.upper() for p in filters.publisher_platforms
        )
    return params


def transform_ad(ad: dict) -> dict:
    snapshot = ad.get("ad_snapshot_url") or ""
    spend = ad.get("ad_spend") or {}
    reach = ad.get("ad_reached_count") or {}
    countries = ad.get("ad_reached_countries") or []
    ad_type = ad.get("ad_type")
    return {
        "id": ad.get("id"),
        "adCreativeBody": ad.get("ad_creative_body") or "",
        "adCreativeLinkTitle": ad.get("ad_creative_link_title") or "",
        "adCreativeLinkDescription": ad.get("ad_creative_link_description") or "",
        "adCreativeLinkCaption": ad.get("ad_creative_link_caption") or "",
        "imageUrl": f"{snapshot}/image" if snapshot else None,
        "videoUrl": f"{snapshot}/video" if snapshot else None,
        "thumbnailUrl": f"{snapshot}/thumbnail" if snapshot else None,
        "pageName": ad.get("page_name") or "Unknown Page",
        "pageId": ad.get("page_id") or "",
        "adDeliveryStartTime": ad.get("ad_delivery_start_time") or "",
        "adDeliveryStopTime": ad.get("ad_delivery_stop_time"),
        "adSnapshotUrl": snapshot,
        "currency": ad.get("currency") or "USD",
        "spend": {
            "lowerBound": spend.get("lower_bound") or "0",
            "upperBound": spend.get("upper_bound") or "0",
        },
        "impressions": {
            "lowerBound": reach.get("lower_bound") or "0",
            "upperBound": reach.get("upper_bound") or "0",
        },
        "publisherPlatforms": ad.get("publisher_platforms") or [],
        "mediaType": ad_type.lower() if ad_type else "image",
        "status": ad.get("ad_status") or "ACTIVE",
        "region": countries[0] if countries else "US",
        "disclaimer": ad.get("disclaimer"),
        "adType": ad_type,
        "adCategory": ad.get("ad_category"),
    }


def ads_to_csv(ads: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for ad in ads:
        writer.writerow(
            [
                ad["id"],
                ad["pageName"],
                ad["pageId"],
                ad["adCreativeLinkTitle"],
                ad["adCreativeBody"],
                ad["adCreativeLinkCaption"],
                ad["mediaType"],
                ad["status"],
                ad["region"],
                ad["currency"],
                ad["spend"]["lowerBound"],
                ad["spend"]["upperBound"],
                ad["impressions"]["lowerBound"],
                ad["impressions"]["upperBound"],
                ", ".join(ad["publisherPlatforms"]),
                ad["adDeliveryStartTime"],
                ad["adDeliveryStopTime"] or "",
                ad["adSnapshotUrl"],
                ad["disclaimer"] or "",
            ]
        )
    return buf.getvalue()


def export_filename(search_query: str, today: date | None = None) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", search_query, flags=re.IGNORECASE)
    return f"ads-library-{slug}-{(today or date.today()).isoformat()}.csv"


async def verify_ads_read(graph: GraphClient, access_token: str) -> dict:
    """Check the token and that ``ads_read`` is granted.

    Raises :class:`GraphAPIError` with 401 for an unusable token and 403
    when the permission is missing.
    """
    try:
        me = await graph.get(
            "me", access_token, {"fields": "id,name,permissions"}
        )
    except GraphAPIError as exc:
        detail = (exc.details or {}).get("message") or "Invalid token"
        raise GraphAPIError(
            401, f"Access token validation failed: {detail}", exc.details
        ) from exc

    permissions = (me.get("permissions") or {}).get("data") or []
    granted = {
        p.get("permission") for p in permissions if p.get("status") == "granted"
    }
    if "ads_read" not in granted:
        logger.warning("audit: ads library search without ads_read")
        raise GraphAPIError(
            403,
            "Missing required permission: ads_read. Please reconnect your "
            "Facebook account with the necessary permissions.",
        )
    return me


async def search_ads(
    graph: GraphClient, access_token: str, params: dict
) -> tuple[list[dict], dict]:
    data = await graph.get("ads_archive", access_token, params)
    ads = [transform_ad(ad) for ad in data.get("data") or []]
    return ads, data


async def fetch_ad(graph: GraphClient, access_token: str, ad_id: str) -> dict:
    try:
        raw = await graph.get(ad_id, access_token, {"fields": AD_FIELDS})
    except GraphAPIError as exc:
        if exc.status_code == 404:
            raise GraphAPIError(404, "Ad not found", exc.details) from exc
        raise
    return transform_ad(raw)
