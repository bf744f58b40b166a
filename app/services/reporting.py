"""Account-scoped performance reports built from the Graph insights edge.

Windows are computed in the ad account's own timezone and end yesterday,
so every day in a report is complete.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.services.graph import GraphAPIError, GraphClient

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_RANGE = "last_30d"
RANGE_DAYS = {"last_7d": 7, "last_30d": 30, "last_90d": 90}

# parallel Graph calls when fanning out per campaign, ad or video
FANOUT_LIMIT = 5

ACCOUNT_FIELDS = "id,name,timezone_name,currency"
SUMMARY_FIELDS = "spend,impressions,clicks,reach,frequency,cpc,cpm,ctr,actions,action_values"
DAILY_FIELDS = "impressions,spend,clicks,actions,action_values,ctr,cpc,cpm"
OBJECT_INSIGHT_FIELDS = "impressions,clicks,spend,reach,frequency,cpc,cpm,ctr"
CAMPAIGN_FIELDS = (
    "id,name,status,objective,start_time,stop_time,daily_budget,"
    "lifetime_budget,budget_remaining"
)
ADSET_FIELDS = "id,name,status,daily_budget,lifetime_budget,targeting,optimization_goal"
AD_FIELDS = "id,name,status,creative,adset_id"
CREATIVE_AD_FIELDS = (
    "id,name,status,"
    "creative{id,name,title,body,image_url,video_id,object_story_spec,created_time},"
    "adset{id,name,campaign{id,name}}"
)
CREATIVE_FIELDS = (
    "id,name,image_url,thumbnail_url,video_id,object_story_spec,status"
)

EMPTY_INSIGHTS = {
    "impressions": 0,
    "clicks": 0,
    "spend": 0.0,
    "reach": 0,
    "cpc": 0.0,
    "cpm": 0.0,
    "ctr": 0.0,
}


@dataclass(frozen=True)
class ReportWindow:
    since: date
    until: date

    @property
    def days(self) -> int:
        return (self.until - self.since).days + 1

    def previous(self) -> "ReportWindow":
        """The window of equal length that ends the day before ``since``."""
        until = self.since - timedelta(days=1)
        return ReportWindow(until - timedelta(days=self.days - 1), until)

    def each_day(self):
        day = self.since
        while day <= self.until:
            yield day
            day += timedelta(days=1)

    def as_param(self) -> str:
        return json.dumps(
            {"since": self.since.isoformat(), "until": self.until.isoformat()}
        )

    def as_dict(self) -> dict:
        return {"since": self.since.isoformat(), "until": self.until.isoformat()}


def account_today(timezone_name: str | None, now: datetime | None = None) -> date:
    try:
        tz = ZoneInfo(timezone_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown account timezone %r, using %s", timezone_name, DEFAULT_TIMEZONE)
        tz = ZoneInfo(DEFAULT_TIMEZONE)
    return (now or datetime.now(tz)).astimezone(tz).date()


def reporting_window(range_name: str | None, today: date) -> ReportWindow:
    """Complete days ending yesterday; unknown names fall back to 30 days.

    ``last_12m`` covers the twelve complete calendar months before the
    current one.
    """
    yesterday = today - timedelta(days=1)
    if range_name == "last_12m":
        until = today.replace(day=1) - timedelta(days=1)
        month = until.month + 1
        since = date(until.year - 1 + month // 13, (month - 1) % 12 + 1, 1)
        return ReportWindow(since, until)
    days = RANGE_DAYS.get(range_name or DEFAULT_RANGE, RANGE_DAYS[DEFAULT_RANGE])
    return ReportWindow(yesterday - timedelta(days=days - 1), yesterday)


def _float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _int(value) -> int:
    return int(_float(value))


def percent_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def summarize_totals(row: dict | None) -> dict:
    """Account totals from one aggregated insights row.

    Graph omits cpc/cpm/ctr when there is no traffic; they are then derived
    from the summed values.
    """
    row = row or {}
    spent = _float(row.get("spend"))
    clicks = _int(row.get("clicks"))
    impressions = _int(row.get("impressions"))
    return {
        "totalSpent": spent,
        "totalClicks": clicks,
        "totalImpressions": impressions,
        "totalReach": _int(row.get("reach")),
        "avgCPC": _float(row["cpc"])
        if row.get("cpc") is not None
        else (spent / clicks if clicks else 0.0),
        "avgCPM": _float(row["cpm"])
        if row.get("cpm") is not None
        else (spent * 1000 / impressions if impressions else 0.0),
        "avgCTR": _float(row["ctr"])
        if row.get("ctr") is not None
        else (clicks * 100 / impressions if impressions else 0.0),
    }


def sum_daily_totals(rows: list[dict]) -> dict:
    return summarize_totals(
        {
            "spend": sum(_float(r.get("spend")) for r in rows),
            "clicks": sum(_int(r.get("clicks")) for r in rows),
            "impressions": sum(_int(r.get("impressions")) for r in rows),
            "reach": sum(_int(r.get("reach")) for r in rows),
        }
    )


def purchase_revenue(row: dict) -> float:
    for action in row.get("action_values") or []:
        if action.get("action_type") == "purchase":
            return _float(action.get("value"))
    return 0.0


def daily_point(row: dict) -> dict:
    spend = _float(row.get("spend"))
    revenue = purchase_revenue(row)
    return {
        "date": row.get("date_start"),
        "spend": spend,
        "revenue": revenue,
        "roas": revenue / spend if spend else 0.0,
        "clicks": _int(row.get("clicks")),
        "impressions": _int(row.get("impressions")),
        "ctr": _float(row.get("ctr")),
        "cpc": _float(row.get("cpc")),
        "cpm": _float(row.get("cpm")),
    }


def fill_days(rows: list[dict], window: ReportWindow) -> list[dict]:
    """One point per day of ``window``; days Graph skipped are zeros."""
    by_date = {p["date"]: p for p in (daily_point(r) for r in rows)}
    filled = []
    for day in window.each_day():
        key = day.isoformat()
        filled.append(
            by_date.get(key)
            or {
                "date": key,
                "spend": 0.0,
                "revenue": 0.0,
                "roas": 0.0,
                "clicks": 0,
                "impressions": 0,
                "ctr": 0.0,
                "cpc": 0.0,
                "cpm": 0.0,
            }
        )
    return filled


def compare_series(current: list[dict], previous: list[dict]) -> dict:
    def totals(points):
        spend = sum(p["spend"] for p in points)
        revenue = sum(p["revenue"] for p in points)
        return {
            "spend": spend,
            "revenue": revenue,
            "roas": revenue / spend if spend else 0.0,
            "clicks": sum(p["clicks"] for p in points),
            "impressions": sum(p["impressions"] for p in points),
        }

    now, before = totals(current), totals(previous)
    return {
        key: {
            "current": now[key],
            "previous": before[key],
            "change": percent_change(now[key], before[key]),
        }
        for key in now
    }


def account_info(account: dict, timezone_name: str) -> dict:
    return {
        "name": account.get("name"),
        "timezone": timezone_name,
        "currency": account.get("currency"),
    }


async def fetch_account(graph: GraphClient, access_token: str, ad_account_id: str) -> dict:
    return await graph.get(ad_account_id, access_token, {"fields": ACCOUNT_FIELDS})


async def _insights(
    graph: GraphClient,
    access_token: str,
    object_id: str,
    fields: str,
    window: ReportWindow,
    increment: str,
    level: str | None = None,
) -> list[dict]:
    data = await graph.get(
        f"{object_id}/insights",
        access_token,
        {
            "fields": fields,
            "level": level,
            "time_range": window.as_param(),
            "time_increment": increment,
        },
    )
    return data.get("data") or []


async def _optional(coro, what: str, default):
    """Await a secondary Graph call; its failure degrades the report only."""
    try:
        return await coro
    except GraphAPIError as exc:
        logger.warning("%s unavailable: %s", what, exc.message)
        return default


async def _bounded(items, fn, limit: int = FANOUT_LIMIT) -> list:
    sem = asyncio.Semaphore(limit)

    async def _one(item):
        async with sem:
            return await fn(item)

    return await asyncio.gather(*(_one(i) for i in items))


async def campaign_report(
    graph: GraphClient,
    access_token: str,
    ad_account_id: str,
    range_name: str | None = DEFAULT_RANGE,
    compare: bool = False,
    now: datetime | None = None,
) -> dict:
    """Campaigns with per-campaign insights plus account totals.

    Account lookup and the campaign list must succeed; every other call
    degrades to empty data.
    """
    account = await fetch_account(graph, access_token, ad_account_id)
    tz_name = account.get("timezone_name") or DEFAULT_TIMEZONE
    window = reporting_window(range_name, account_today(tz_name, now))

    summary_rows = await _optional(
        _insights(graph, access_token, ad_account_id, SUMMARY_FIELDS, window, "all", "account"),
        "summary insights",
        None,
    )
    campaigns = await graph.get(
        f"{ad_account_id}/campaigns", access_token, {"fields": CAMPAIGN_FIELDS}
    )

    async def _with_insights(campaign: dict) -> dict:
        rows = await _optional(
            _insights(
                graph, access_token, campaign["id"], SUMMARY_FIELDS, window, "all"
            ),
            f"insights for campaign {campaign['id']}",
            [],
        )
        return {**campaign, "insights": rows[0] if rows else dict(EMPTY_INSIGHTS)}

    enriched = await _bounded(campaigns.get("data") or [], _with_insights)

    daily = await _optional(
        _insights(graph, access_token, ad_account_id, SUMMARY_FIELDS, window, "1", "account"),
        "daily account insights",
        [],
    )
    if summary_rows:
        totals = summarize_totals(summary_rows[0])
    else:
        totals = sum_daily_totals(daily)

    comparison = None
    if compare:
        previous_window = window.previous()
        previous_rows = await _optional(
            _insights(
                graph,
                access_token,
                ad_account_id,
                SUMMARY_FIELDS,
                previous_window,
                "all",
                "account",
            ),
            "previous period insights",
            [],
        )
        previous = summarize_totals(previous_rows[0] if previous_rows else None)
        comparison = {
            "totals": previous,
            "dateRange": previous_window.as_dict(),
            "changes": {k: percent_change(totals[k], previous[k]) for k in totals},
        }

    adsets = await _optional(
        graph.get(f"{ad_account_id}/adsets", access_token, {"fields": ADSET_FIELDS}),
        "ad sets",
        {},
    )
    ads = await _optional(
        graph.get(f"{ad_account_id}/ads", access_token, {"fields": AD_FIELDS}),
        "ads",
        {},
    )
    logger.info(
        "Campaign report for %s: %d campaigns, %s..%s",
        ad_account_id,
        len(enriched),
        window.since,
        window.until,
    )
    return {
        "success": True,
        "campaigns": enriched,
        "insights": daily,
        "adSets": adsets.get("data") or [],
        "ads": ads.get("data") or [],
        "dateRange": window.as_dict(),
        "accountTotals": totals,
        "accountInfo": account_info(account, tz_name),
        "validation": {
            "expectedDays": window.days,
            "actualDays": len(daily),
            "dataComplete": len(daily) == window.days,
        },
        "comparison": comparison,
    }


async def insights_report(
    graph: GraphClient,
    access_token: str,
    ad_account_id: str,
    range_name: str | None = DEFAULT_RANGE,
    compare: bool = False,
    now: datetime | None = None,
) -> dict:
    """Daily spend/revenue/ROAS series, optionally against the prior period."""
    account = await fetch_account(graph, access_token, ad_account_id)
    tz_name = account.get("timezone_name") or DEFAULT_TIMEZONE
    window = reporting_window(range_name, account_today(tz_name, now))

    rows = await _insights(
        graph, access_token, ad_account_id, DAILY_FIELDS, window, "1", "account"
    )
    current = fill_days(rows, window)

    previous = None
    previous_window = window.previous()
    if compare:
        previous_rows = await _optional(
            _insights(
                graph,
                access_token,
                ad_account_id,
                DAILY_FIELDS,
                previous_window,
                "1",
                "account",
            ),
            "comparison insights",
            None,
        )
        if previous_rows is not None:
            previous = fill_days(previous_rows, previous_window)

    return {
        "success": True,
        "data": {"current": current, "previous": previous},
        "summaryStats": compare_series(current, previous) if previous is not None else None,
        "accountInfo": account_info(account, tz_name),
        "dateRange": {
            **window.as_dict(),
            "days": len(current),
            "comparison": previous_window.as_dict() if previous is not None else None,
        },
    }


# --- creatives ----------------------------------------------------------------


def creative_type(creative: dict) -> str:
    if creative.get("video_id"):
        return "video"
    if creative.get("image_url"):
        return "image"
    if ((creative.get("object_story_spec") or {}).get("link_data") or {}).get(
        "child_attachments"
    ):
        return "carousel"
    return "dynamic"


def performance_tier(ctr: float, cpc: float) -> str:
    if ctr >= 3.0 and cpc <= 1.5:
        return "excellent"
    if ctr >= 2.0 and cpc <= 2.5:
        return "good"
    if ctr >= 1.0 and cpc <= 3.5:
        return "average"
    return "poor"


def fatigue_level(frequency: float) -> str:
    if frequency <= 2.0:
        return "low"
    if frequency <= 5.0:
        return "medium"
    return "high"


def _ad_totals(rows: list[dict]) -> dict:
    impressions = sum(_int(r.get("impressions")) for r in rows)
    clicks = sum(_int(r.get("clicks")) for r in rows)
    spend = sum(_float(r.get("spend")) for r in rows)
    reach = sum(_int(r.get("reach")) for r in rows)
    return {
        "impressions": impressions,
        "clicks": clicks,
        "spend": spend,
        "reach": reach,
        "cpc": spend / clicks if clicks else 0.0,
        "cpm": spend * 1000 / impressions if impressions else 0.0,
        "ctr": clicks * 100 / impressions if impressions else 0.0,
        "frequency": impressions / reach if reach else 0.0,
    }


def _video_ids(creative: dict) -> list[str]:
    spec = creative.get("object_story_spec") or {}
    ids = []
    video_id = creative.get("video_id") or (spec.get("video_data") or {}).get("video_id")
    if video_id:
        ids.append(video_id)
    for att in (spec.get("link_data") or {}).get("child_attachments") or []:
        if att.get("video_id"):
            ids.append(att["video_id"])
    return ids


async def creatives_report(
    graph: GraphClient,
    access_token: str,
    ad_account_id: str,
    range_name: str | None = DEFAULT_RANGE,
    now: datetime | None = None,
) -> dict:
    """Unique creatives of the account's ads with their delivery metrics."""
    account = await fetch_account(graph, access_token, ad_account_id)
    tz_name = account.get("timezone_name") or DEFAULT_TIMEZONE
    window = reporting_window(range_name, account_today(tz_name, now))

    ads = await graph.get(
        f"{ad_account_id}/ads", access_token, {"fields": CREATIVE_AD_FIELDS}
    )
    unique: dict[str, dict] = {}
    for ad in ads.get("data") or []:
        creative = ad.get("creative") or {}
        if not creative.get("id"):
            logger.debug("Ad %s has no creative", ad.get("id"))
            continue
        unique.setdefault(creative["id"], ad)

    async def _metrics(ad: dict) -> dict:
        rows = await _optional(
            _insights(graph, access_token, ad["id"], OBJECT_INSIGHT_FIELDS, window, "all"),
            f"insights for ad {ad['id']}",
            [],
        )
        return _ad_totals(rows)

    ad_list = list(unique.values())
    metrics = await _bounded(ad_list, _metrics)

    video_ids = sorted({v for ad in ad_list for v in _video_ids(ad["creative"])})

    async def _source(video_id: str):
        data = await _optional(
            graph.get(video_id, access_token, {"fields": "source,picture"}),
            f"video {video_id}",
            {},
        )
        return video_id, data.get("source")

    sources = dict(await _bounded(video_ids, _source))

    creatives = []
    for ad, stats in zip(ad_list, metrics):
        creative = ad["creative"]
        kind = creative_type(creative)
        spec = creative.get("object_story_spec") or {}
        adset = ad.get("adset") or {}
        item = {
            "id": creative["id"],
            "adId": ad.get("id"),
            "name": ad.get("name") or f"Ad {ad.get('id')}",
            "description": creative.get("name")
            or creative.get("title")
            or creative.get("body"),
            "campaignName": (adset.get("campaign") or {}).get("name")
            or "Unknown Campaign",
            "adsetName": adset.get("name") or "Unknown Ad Set",
            "creativeType": kind,
            "thumbnailUrl": creative.get("image_url"),
            "imageUrl": creative.get("image_url"),
            "videoUrl": None,
            "assets": None,
            "status": ad.get("status") or "UNKNOWN",
            "createdAt": creative.get("created_time"),
            "performance": performance_tier(stats["ctr"], stats["cpc"]),
            "fatigueLevel": fatigue_level(stats["frequency"]),
            **stats,
        }
        if kind == "video":
            ids = _video_ids(creative)
            item["videoUrl"] = sources.get(ids[0]) if ids else None
        elif kind == "carousel":
            item["assets"] = [
                {
                    "imageUrl": (att.get("media") or {}).get("image_url")
                    or att.get("image_url"),
                    "videoUrl": sources.get(att.get("video_id")),
                }
                for att in (spec.get("link_data") or {}).get("child_attachments") or []
            ]
        creatives.append(item)

    return {
        "success": True,
        "creatives": creatives,
        "count": len(creatives),
        "dateRange": window.as_dict(),
    }


async def fetch_creative(graph: GraphClient, access_token: str, creative_id: str) -> dict:
    creative = await graph.get(creative_id, access_token, {"fields": CREATIVE_FIELDS})
    return {
        "creative": creative,
        "metadata": {
            "creativeType": creative_type(creative),
            "hasImage": bool(creative.get("image_url")),
            "hasThumbnail": bool(creative.get("thumbnail_url")),
        },
    }
