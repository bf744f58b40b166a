from __future__ import annotations

import json

from app.services.graph import GraphClient

DATASETS = {
    "campaigns": (
        "me/campaigns",
        "id,name,status,objective,created_time,updated_time,daily_budget,lifetime_budget",
    ),
    "adsets": (
        "me/adsets",
        "id,name,status,campaign_id,created_time,updated_time,daily_budget,targeting",
    ),
    "ads": (
        "me/ads",
        "id,name,status,adset_id,campaign_id,created_time,updated_time,creative",
    ),
    "insights": (
        "me/insights",
        "impressions,clicks,spend,reach,frequency,ctr,cpc,cpm,date_start,date_stop",
    ),
    "adaccounts": (
        "me/adaccounts",
        "id,name,account_status,currency,timezone_name,created_time",
    ),
    "pages": ("me/accounts", "id,name,category,fan_count,created_time"),
}


def build_query(
    data_type: str,
    limit: int = 25,
    offset: int = 0,
    status: str | None = None,
    date_range: dict | None = None,
) -> tuple[str, dict]:
    """Return the Graph path and parameters for ``data_type``.

    Raises ``KeyError`` for an unknown data type.
    """
    path, fields = DATASETS[data_type]
    params: dict = {"fields": fields, "limit": limit, "offset": offset}
    if status and status != "all":
        params["filtering"] = json.dumps(
            [{"field": "status", "operator": "EQUAL", "value": status.upper()}]
        )
    if date_range and date_range.get("since") and date_range.get("until"):
        params["time_range"] = json.dumps(
            {"since": date_range["since"], "until": date_range["until"]}
        )
    return path, params


_RENAMED = {"created_time": "createdTime", "updated_time": "updatedTime"}


def transform_item(item: dict) -> dict:
    """Graph row with defaults for name/status and camelCase timestamps."""
    row = {k: v for k, v in item.items() if k not in _RENAMED}
    row.update(
        id=item.get("id"),
        name=item.get("name") or "Unnamed",
        status=item.get("status") or "UNKNOWN",
    )
    for raw, renamed in _RENAMED.items():
        row[renamed] = item.get(raw)
    return row


async def fetch_dataset(
    graph: GraphClient,
    access_token: str,
    data_type: str,
    limit: int = 25,
    offset: int = 0,
    status: str | None = None,
    date_range: dict | None = None,
) -> dict:
    path, params = build_query(data_type, limit, offset, status, date_range)
    data = await graph.get(path, access_token, params)
    items = [transform_item(i) for i in data.get("data") or []]
    return {
        "data": items,
        "paging": data.get("paging"),
        "total": len(items),
        "hasMore": bool((data.get("paging") or {}).get("next")),
    }
