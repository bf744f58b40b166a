import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from app.services import reporting
from app.services.graph import GraphAPIError, GraphClient

# 11:00 in New York, so the account's "today" is 2026-03-10
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
ACCOUNT = {"id": "act_1", "name": "Shop", "timezone_name": "America/New_York", "currency": "USD"}


def _graph(handler):
    return GraphClient("https://graph.test", "v23.0", transport=httpx.MockTransport(handler))


def _since(request):
    return json.loads(request.url.params["time_range"])["since"]


def _graph_error(status=500, code=1, message="boom"):
    return httpx.Response(status, json={"error": {"code": code, "message": message}})


@pytest.mark.parametrize(
    "range_name,today,expected",
    [
        ("last_7d", date(2026, 3, 10), ("2026-03-03", "2026-03-09")),
        ("last_90d", date(2026, 3, 10), ("2025-12-10", "2026-03-09")),
        ("bogus", date(2026, 3, 10), ("2026-02-08", "2026-03-09")),
        (None, date(2026, 3, 10), ("2026-02-08", "2026-03-09")),
        ("last_12m", date(2025, 8, 10), ("2024-08-01", "2025-07-31")),
        ("last_12m", date(2026, 1, 1), ("2025-01-01", "2025-12-31")),
    ],
)
def test_reporting_window(range_name, today, expected):
    window = reporting.reporting_window(range_name, today)
    assert (window.since.isoformat(), window.until.isoformat()) == expected


def test_previous_window_has_same_length():
    window = reporting.reporting_window("last_7d", date(2026, 3, 10))
    previous = window.previous()
    assert previous.days == window.days == 7
    assert previous.until == window.since - timedelta(days=1)
    assert previous.as_dict() == {"since": "2026-02-24", "until": "2026-03-02"}


def test_account_today_uses_account_timezone():
    evening = datetime(2026, 3, 9, 20, 0, tzinfo=timezone.utc)
    assert reporting.account_today("Asia/Tokyo", evening) == date(2026, 3, 10)
    assert reporting.account_today("Not/AZone", evening) == date(2026, 3, 9)
    assert reporting.account_today(None, evening) == date(2026, 3, 9)


def test_percent_change_from_zero():
    assert reporting.percent_change(5, 0) == 100.0
    assert reporting.percent_change(0, 0) == 0.0
    assert reporting.percent_change(50, 200) == -75.0


def test_summarize_totals_derives_missing_rates():
    totals = reporting.summarize_totals({"spend": "30", "clicks": "15", "impressions": "3000"})
    assert totals["avgCPC"] == 2.0
    assert totals["avgCPM"] == 10.0
    assert totals["avgCTR"] == 0.5
    assert reporting.summarize_totals(None)["avgCPC"] == 0.0


def _campaign_graph(request):
    path = request.url.path.removeprefix("/v23.0/")
    params = request.url.params
    if path == "act_1":
        return httpx.Response(200, json=ACCOUNT)
    if path == "act_1/insights" and params["time_increment"] == "1":
        rows = [{"date_start": f"2026-03-0{d}", "spend": "10"} for d in range(3, 8)]
        return httpx.Response(200, json={"data": rows})
    if path == "act_1/insights" and _since(request) == "2026-02-24":
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "spend": "100",
                        "clicks": "50",
                        "impressions": "10000",
                        "reach": "4000",
                        "cpc": "2",
                        "cpm": "10",
                        "ctr": "0.5",
                    }
                ]
            },
        )
    if path == "act_1/insights":
        return httpx.Response(
            200,
            json={
                "data": [
                    {
                        "spend": "200",
                        "clicks": "100",
                        "impressions": "10000",
                        "reach": "5000",
                        "cpc": "2",
                        "cpm": "20",
                        "ctr": "1",
                    }
                ]
            },
        )
    if path == "act_1/campaigns":
        return httpx.Response(
            200, json={"data": [{"id": "c1", "name": "Spring"}, {"id": "c2", "name": "Summer"}]}
        )
    if path == "c1/insights":
        return httpx.Response(200, json={"data": [{"spend": "150"}]})
    if path == "c2/insights":
        return _graph_error()
    if path == "act_1/adsets":
        return _graph_error(403, 200, "no access")
    if path == "act_1/ads":
        return httpx.Response(200, json={"data": [{"id": "ad1", "name": "Ad"}]})
    return httpx.Response(404, json={"error": {"message": f"unexpected {path}"}})


def test_campaign_report_with_comparison():
    report = asyncio.run(
        reporting.campaign_report(
            _graph(_campaign_graph), "tok", "act_1", "last_7d", compare=True, now=NOW
        )
    )
    assert report["dateRange"] == {"since": "2026-03-03", "until": "2026-03-09"}
    assert report["accountTotals"]["totalSpent"] == 200.0
    assert report["accountInfo"] == {
        "name": "Shop",
        "timezone": "America/New_York",
        "currency": "USD",
    }
    campaigns = {c["id"]: c for c in report["campaigns"]}
    assert campaigns["c1"]["insights"] == {"spend": "150"}
    assert campaigns["c2"]["insights"] == reporting.EMPTY_INSIGHTS
    assert report["adSets"] == []
    assert report["ads"] == [{"id": "ad1", "name": "Ad"}]
    assert report["validation"] == {
        "expectedDays": 7,
        "actualDays": 5,
        "dataComplete": False,
    }

    comparison = report["comparison"]
    assert comparison["dateRange"] == {"since": "2026-02-24", "until": "2026-03-02"}
    assert comparison["totals"]["totalSpent"] == 100.0
    assert comparison["changes"] == {
        "totalSpent": 100.0,
        "totalClicks": 100.0,
        "totalImpressions": 0.0,
        "totalReach": 25.0,
        "avgCPC": 0.0,
        "avgCPM": 100.0,
        "avgCTR": 100.0,
    }


def test_campaign_report_totals_fall_back_to_daily_rows():
    def handler(request):
        path = request.url.path.removeprefix("/v23.0/")
        if path == "act_1/insights" and request.url.params["time_increment"] == "all":
            return _graph_error()
        return _campaign_graph(request)

    report = asyncio.run(
        reporting.campaign_report(_graph(handler), "tok", "act_1", "last_7d", now=NOW)
    )
    assert report["accountTotals"]["totalSpent"] == 50.0
    assert report["comparison"] is None


def test_campaign_report_requires_campaign_list():
    def handler(request):
        if request.url.path.endswith("/campaigns"):
            return _graph_error(400, 190, "expired")
        return _campaign_graph(request)

    with pytest.raises(GraphAPIError) as excinfo:
        asyncio.run(reporting.campaign_report(_graph(handler), "tok", "act_1", now=NOW))
    assert excinfo.value.status_code == 401


def _purchase(value):
    return [{"action_type": "link_click", "value": "1"}, {"action_type": "purchase", "value": value}]


def _insights_graph(fail_previous=False):
    def handler(request):
        path = request.url.path.removeprefix("/v23.0/")
        if path == "act_1":
            return httpx.Response(200, json=ACCOUNT)
        if _since(request) == "2026-02-24":
            if fail_previous:
                return _graph_error()
            rows = [
                {
                    "date_start": "2026-02-25",
                    "spend": "15",
                    "action_values": _purchase("15"),
                    "clicks": "10",
                    "impressions": "2000",
                }
            ]
            return httpx.Response(200, json={"data": rows})
        rows = [
            {
                "date_start": day,
                "spend": spend,
                "action_values": _purchase("30"),
                "clicks": "5",
                "impressions": "1000",
                "ctr": "0.5",
            }
            for day, spend in (("2026-03-03", "10"), ("2026-03-05", "20"))
        ]
        return httpx.Response(200, json={"data": rows})

    return handler


def test_insights_report_fills_missing_days_and_compares():
    report = asyncio.run(
        reporting.insights_report(
            _graph(_insights_graph()), "tok", "act_1", "last_7d", compare=True, now=NOW
        )
    )
    current = report["data"]["current"]
    assert [p["date"] for p in current] == [f"2026-03-0{d}" for d in range(3, 10)]
    assert current[0]["roas"] == 3.0
    assert current[1] == {
        "date": "2026-03-04",
        "spend": 0.0,
        "revenue": 0.0,
        "roas": 0.0,
        "clicks": 0,
        "impressions": 0,
        "ctr": 0.0,
        "cpc": 0.0,
        "cpm": 0.0,
    }
    assert len(report["data"]["previous"]) == 7
    assert report["dateRange"] == {
        "since": "2026-03-03",
        "until": "2026-03-09",
        "days": 7,
        "comparison": {"since": "2026-02-24", "until": "2026-03-02"},
    }
    stats = report["summaryStats"]
    assert stats["spend"] == {"current": 30.0, "previous": 15.0, "change": 100.0}
    assert stats["revenue"] == {"current": 60.0, "previous": 15.0, "change": 300.0}
    assert stats["roas"]["change"] == 100.0
    assert stats["clicks"]["change"] == 0.0


def test_insights_report_without_previous_period():
    report = asyncio.run(
        reporting.insights_report(
            _graph(_insights_graph(fail_previous=True)),
            "tok",
            "act_1",
            "last_7d",
            compare=True,
            now=NOW,
        )
    )
    assert report["data"]["previous"] is None
    assert report["summaryStats"] is None
    assert report["dateRange"]["comparison"] is None


def _creatives_graph(request):
    path = request.url.path.removeprefix("/v23.0/")
    if path == "act_1":
        return httpx.Response(200, json=ACCOUNT)
    if path == "act_1/ads":
        ads = [
            {
                "id": "ad1",
                "name": "Launch video",
                "status": "ACTIVE",
                "creative": {"id": "cr1", "video_id": "v1"},
                "adset": {"name": "Set", "campaign": {"name": "Camp"}},
            },
            {"id": "ad2", "creative": {"id": "cr1", "video_id": "v1"}},
            {"id": "ad3", "creative": {"id": "cr2", "image_url": "https://img.test/2.jpg"}},
            {"id": "ad4"},
            {
                "id": "ad5",
                "creative": {
                    "id": "cr3",
                    "object_story_spec": {
                        "link_data": {
                            "child_attachments": [
                                {"image_url": "https://img.test/a.jpg"},
                                {"video_id": "v2"},
                            ]
                        }
                    },
                },
            },
        ]
        return httpx.Response(200, json={"data": ads})
    if path == "ad1/insights":
        row = {"impressions": "1000", "clicks": "40", "spend": "40", "reach": "400"}
        return httpx.Response(200, json={"data": [row]})
    if path == "ad3/insights":
        return _graph_error()
    if path == "ad5/insights":
        return httpx.Response(200, json={"data": []})
    if path in ("v1", "v2"):
        return httpx.Response(200, json={"source": f"https://video.test/{path}.mp4"})
    return httpx.Response(404, json={"error": {"message": f"unexpected {path}"}})


def test_creatives_report():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return _creatives_graph(request)

    report = asyncio.run(
        reporting.creatives_report(_graph(handler), "tok", "act_1", "last_7d", now=NOW)
    )
    assert report["count"] == 3
    creatives = {c["id"]: c for c in report["creatives"]}
    assert list(creatives) == ["cr1", "cr2", "cr3"]

    video = creatives["cr1"]
    assert video["adId"] == "ad1"
    assert video["creativeType"] == "video"
    assert video["videoUrl"] == "https://video.test/v1.mp4"
    assert video["campaignName"] == "Camp"
    assert video["ctr"] == 4.0
    assert video["cpc"] == 1.0
    assert video["performance"] == "excellent"
    assert video["fatigueLevel"] == "medium"

    image = creatives["cr2"]
    assert image["creativeType"] == "image"
    assert image["imageUrl"] == "https://img.test/2.jpg"
    assert image["campaignName"] == "Unknown Campaign"
    assert image["status"] == "UNKNOWN"
    assert image["performance"] == "poor"
    assert image["fatigueLevel"] == "low"

    assert creatives["cr3"]["creativeType"] == "carousel"
    assert creatives["cr3"]["assets"] == [
        {"imageUrl": "https://img.test/a.jpg", "videoUrl": None},
        {"imageUrl": None, "videoUrl": "https://video.test/v2.mp4"},
    ]
    assert "/v23.0/ad2/insights" not in calls


@pytest.mark.parametrize(
    "ctr,cpc,expected",
    [(3.5, 1.0, "excellent"), (2.5, 2.0, "good"), (1.2, 3.0, "average"), (3.5, 5.0, "poor")],
)
def test_performance_tier(ctr, cpc, expected):
    assert reporting.performance_tier(ctr, cpc) == expected


def test_ads_route_saves_session(client, graph_handler, user):
    state = graph_handler(_campaign_graph)
    resp = client.post(
        "/api/facebook/ads",
        json={"accessToken": "tok", "adAccountId": "act_1", "userId": user.id, "compare": True},
    )
    assert resp.status_code == 200
    data = resp.json()
    since = date.fromisoformat(data["dateRange"]["since"])
    until = date.fromisoformat(data["dateRange"]["until"])
    assert (until - since).days + 1 == 30
    previous = data["comparison"]["dateRange"]
    assert date.fromisoformat(previous["until"]) == since - timedelta(days=1)
    assert all(r.url.params["access_token"] == "tok" for r in state.requests)

    session = client.get("/api/facebook/session", params={"userId": user.id}).json()["session"]
    assert session["adAccountId"] == "act_1"


def test_ads_route_unknown_user(client, graph_handler):
    graph_handler(_campaign_graph)
    resp = client.post(
        "/api/facebook/ads",
        json={"accessToken": "tok", "adAccountId": "act_1", "userId": 9999},
    )
    assert resp.status_code == 404


def test_ads_route_requires_account(client, graph_handler):
    graph_handler(_campaign_graph)
    resp = client.post("/api/facebook/ads", json={"accessToken": "tok"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["message"] == "Missing required field: adAccountId"


def test_insights_route_maps_graph_errors(client, graph_handler):
    def handler(request):
        if request.url.path.endswith("/insights"):
            return _graph_error(400, 190, "expired")
        return httpx.Response(200, json=ACCOUNT)

    graph_handler(handler)
    resp = client.post(
        "/api/facebook/insights", json={"accessToken": "tok", "adAccountId": "act_1"}
    )
    assert resp.status_code == 401


def test_creatives_route(client, graph_handler):
    graph_handler(_creatives_graph)
    resp = client.post(
        "/api/facebook/creatives",
        json={"accessToken": "tok", "adAccountId": "act_1", "dateRange": "last_7d"},
    )
    assert resp.status_code == 200
    assert resp.json()["count"] == 3


def _single_creative(request):
    return httpx.Response(
        200, json={"id": "cr9", "name": "Hero", "image_url": "https://img.test/9.jpg"}
    )


def test_get_creative_with_bearer_token(client, graph_handler):
    state = graph_handler(_single_creative)
    resp = client.get(
        "/api/facebook/creatives/cr9", headers={"Authorization": "Bearer tok"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["creative"]["name"] == "Hero"
    assert data["metadata"] == {
        "creativeType": "image",
        "hasImage": True,
        "hasThumbnail": False,
    }
    assert data["fetchedAt"]
    assert state.requests[0].url.path == "/v23.0/cr9"
    assert state.requests[0].url.params["access_token"] == "tok"


def test_get_creative_requires_token(client, graph_handler):
    graph_handler(_single_creative)
    resp = client.get("/api/facebook/creatives/cr9")
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "UNAUTHORIZED"


def test_post_creative(client, graph_handler):
    graph_handler(_single_creative)
    resp = client.post("/api/facebook/creatives/cr9", json={"accessToken": "tok"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    resp = client.post("/api/facebook/creatives/cr9", json={})
    assert resp.status_code == 400


def test_creative_not_found(client, graph_handler):
    graph_handler(lambda request: httpx.Response(404, json={"error": {"message": "gone"}}))
    resp = client.get("/api/facebook/creatives/cr0", params={"access_token": "tok"})
    assert resp.status_code == 404
