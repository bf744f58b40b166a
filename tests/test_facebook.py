import json
from datetime import date

import httpx
import pytest

from app.services.graph import date_window, map_graph_error
from app.services.previews import FALLBACK_FORMATS


@pytest.mark.parametrize(
    "status,error,expected_status,expected_message",
    [
        (401, {}, 401, "Invalid or expired access token"),
        (400, {"code": 190, "message": "expired"}, 401, "Invalid or expired access token"),
        (400, {"code": 17, "message": "too many"}, 429, "Rate limit exceeded. Please try again later."),
        (403, {"message": "nope"}, 403, "Insufficient permissions: nope"),
        (400, {"code": 200, "message": "nope"}, 403, "Insufficient permissions: nope"),
        (404, {}, 404, "Not found"),
        (500, {"message": "boom"}, 500, "Facebook API error: boom"),
        (200, {"message": "odd"}, 400, "Facebook API error: odd"),
    ],
)
def test_map_graph_error(status, error, expected_status, expected_message):
    mapped = map_graph_error(status, error)
    assert mapped.status_code == expected_status
    assert mapped.message == expected_message


def test_date_window_last_12m_leap_day():
    assert date_window("last_12m", date(2027, 6, 1)) == ("2026-06-01", "2027-06-01")
    assert date_window("last_12m", date(2028, 2, 29)) == ("2027-03-01", "2028-02-29")
    assert date_window("forever") is None


def _preview_handler(empty_formats=(), failing_formats=(), status=400):
    def handler(request):
        fmt = request.url.params.get("ad_format")
        if fmt in failing_formats:
            return httpx.Response(
                status, json={"error": {"code": 100, "message": f"{fmt} unsupported"}}
            )
        if fmt in empty_formats:
            return httpx.Response(200, json={"data": []})
        return httpx.Response(200, json={"data": [{"body": f"<iframe>{fmt}</iframe>"}]})

    return handler


def test_ad_preview_primary_format(client, graph_handler):
    state = graph_handler(_preview_handler())
    resp = client.post(
        "/api/facebook/ad-preview", json={"adId": "ad_1", "accessToken": "tok"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["fallback"] is False
    assert data["adFormat"] == "DESKTOP_FEED_STANDARD"
    assert data["previewHtml"] == "<iframe>DESKTOP_FEED_STANDARD</iframe>"
    assert len(state.requests) == 1


def test_ad_preview_falls_back_on_error(client, graph_handler):
    state = graph_handler(
        _preview_handler(failing_formats=("DESKTOP_FEED_STANDARD", "MOBILE_FEED_STANDARD"))
    )
    resp = client.post(
        "/api/facebook/ad-preview", json={"adId": "ad_1", "accessToken": "tok"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["fallback"] is True
    assert data["adFormat"] == "RIGHT_COLUMN_STANDARD"
    tried = [r.url.params["ad_format"] for r in state.requests]
    assert tried == ["DESKTOP_FEED_STANDARD", "MOBILE_FEED_STANDARD", "RIGHT_COLUMN_STANDARD"]


def test_ad_preview_falls_back_on_empty(client, graph_handler):
    graph_handler(_preview_handler(empty_formats=("MOBILE_BANNER",)))
    resp = client.get(
        "/api/facebook/ad-preview",
        params={"adId": "ad_1", "accessToken": "tok", "adFormat": "MOBILE_BANNER"},
    )
    assert resp.status_code == 200
    assert resp.json()["adFormat"] == "MOBILE_FEED_STANDARD"
    assert resp.json()["fallback"] is True


def test_ad_preview_all_formats_fail(client, graph_handler):
    formats = ("DESKTOP_FEED_STANDARD",) + FALLBACK_FORMATS
    graph_handler(_preview_handler(failing_formats=formats, status=500))
    resp = client.post(
        "/api/facebook/ad-preview", json={"adId": "ad_1", "accessToken": "tok"}
    )
    assert resp.status_code == 500
    assert "DESKTOP_FEED_STANDARD unsupported" in resp.json()["detail"]["message"]


def test_ad_preview_all_empty(client, graph_handler):
    formats = ("DESKTOP_FEED_STANDARD",) + FALLBACK_FORMATS
    graph_handler(_preview_handler(empty_formats=formats))
    resp = client.post(
        "/api/facebook/ad-preview", json={"adId": "ad_1", "accessToken": "tok"}
    )
    assert resp.status_code == 404


def test_ad_preview_expired_token_does_not_retry(client, graph_handler):
    state = graph_handler(
        lambda request: httpx.Response(401, json={"error": {"code": 190, "message": "expired"}})
    )
    resp = client.post(
        "/api/facebook/ad-preview", json={"adId": "ad_1", "accessToken": "tok"}
    )
    assert resp.status_code == 401
    assert len(state.requests) == 1


def test_creative_preview(client, graph_handler):
    graph_handler(_preview_handler())
    resp = client.post(
        "/api/facebook/creative-preview",
        json={"creativeId": "cr_1", "accessToken": "tok"},
    )
    assert resp.status_code == 200
    assert resp.json()["previewHtml"].startswith("<iframe>")


def test_creative_preview_without_body(client, graph_handler):
    graph_handler(lambda request: httpx.Response(200, json={"data": [{}]}))
    resp = client.post(
        "/api/facebook/creative-preview",
        json={"creativeId": "cr_1", "accessToken": "tok"},
    )
    assert resp.status_code == 404


def test_marketing_api_campaigns(client, graph_handler):
    def handler(request):
        return httpx.Response(
            200,
            json={
                "data": [{"id": "c1", "name": "Spring", "status": "ACTIVE"}, {"id": "c2"}],
                "paging": {"next": "https://graph.test/next"},
            },
        )

    state = graph_handler(handler)
    resp = client.post(
        "/api/facebook/marketing-api",
        json={
            "accessToken": "tok",
            "dataType": "campaigns",
            "status": "active",
            "dateRange": {"since": "2026-01-01", "until": "2026-01-31"},
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 2
    assert data["hasMore"] is True
    assert data["data"][1]["name"] == "Unnamed"
    assert data["data"][1]["status"] == "UNKNOWN"
    params = state.requests[0].url.params
    assert state.requests[0].url.path == "/v23.0/me/campaigns"
    assert json.loads(params["filtering"])[0]["value"] == "ACTIVE"
    assert json.loads(params["time_range"]) == {"since": "2026-01-01", "until": "2026-01-31"}


def test_marketing_api_null_fields_get_defaults(client, graph_handler):
    row = {
        "id": "c3",
        "name": None,
        "status": None,
        "objective": "SALES",
        "created_time": "2026-01-02T10:00:00+0000",
        "updated_time": None,
    }
    graph_handler(lambda request: httpx.Response(200, json={"data": [row]}))
    resp = client.post(
        "/api/facebook/marketing-api", json={"accessToken": "tok", "dataType": "campaigns"}
    )
    item = resp.json()["data"][0]
    assert item == {
        "id": "c3",
        "name": "Unnamed",
        "status": "UNKNOWN",
        "objective": "SALES",
        "createdTime": "2026-01-02T10:00:00+0000",
        "updatedTime": None,
    }


def test_marketing_api_pages_path(client, graph_handler):
    state = graph_handler(lambda request: httpx.Response(200, json={"data": []}))
    client.post(
        "/api/facebook/marketing-api", json={"accessToken": "tok", "dataType": "pages"}
    )
    assert state.requests[0].url.path == "/v23.0/me/accounts"


def test_marketing_api_unknown_type(client, graph_handler):
    graph_handler(lambda request: httpx.Response(200, json={"data": []}))
    resp = client.post(
        "/api/facebook/marketing-api", json={"accessToken": "tok", "dataType": "budgets"}
    )
    assert resp.status_code == 400
    assert "campaigns" in resp.json()["detail"]["message"]


def test_marketing_api_rate_limited(client, graph_handler):
    graph_handler(
        lambda request: httpx.Response(400, json={"error": {"code": 17, "message": "limit"}})
    )
    resp = client.post(
        "/api/facebook/marketing-api", json={"accessToken": "tok", "dataType": "ads"}
    )
    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "RATE_LIMITED"


def _healthy_graph(permissions=("ads_read", "ads_management", "read_insights", "pages_read_engagement")):
    def handler(request):
        path = request.url.path
        if path.endswith("/me/permissions"):
            return httpx.Response(
                200,
                json={"data": [{"permission": p, "status": "granted"} for p in permissions]},
            )
        if path.endswith("/me"):
            return httpx.Response(
                200,
                json={"id": "1", "name": "Ada"},
                headers={"x-app-usage": '{"call_count": 5}'},
            )
        if path.endswith("/act_1/ads"):
            return httpx.Response(200, json={"data": [{"id": "ad_1"}]})
        if path.endswith("/act_1"):
            return httpx.Response(200, json={"name": "Main", "account_status": 1})
        return httpx.Response(404, json={"error": {"message": "missing"}})

    return handler


def test_health_all_passed(client, graph_handler):
    graph_handler(_healthy_graph())
    resp = client.post(
        "/api/facebook/health", json={"accessToken": "tok", "adAccountId": "act_1"}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["overallStatus"] == "HEALTHY"
    tests = [c["test"] for c in data["healthChecks"]]
    assert tests == [
        "Token Validation",
        "Ad Account Access",
        "Ads Endpoint Access",
        "Permissions Check",
        "Rate Limit Status",
    ]
    rate = data["healthChecks"][-1]
    assert rate["details"]["appUsage"] == {"call_count": 5}
    assert data["summary"]["passed"] == 4


def test_health_missing_permission_warns(client, graph_handler):
    graph_handler(_healthy_graph(permissions=("ads_read",)))
    resp = client.get("/api/facebook/health", params={"accessToken": "tok"})
    data = resp.json()
    perms = next(c for c in data["healthChecks"] if c["test"] == "Permissions Check")
    assert perms["status"] == "WARNING"
    assert "ads_management" in perms["details"]["missing"]
    assert data["overallStatus"] == "HEALTHY"


def test_health_failed_account_degrades(client, graph_handler):
    graph_handler(_healthy_graph())
    data = client.post(
        "/api/facebook/health", json={"accessToken": "tok", "adAccountId": "act_gone"}
    ).json()
    assert data["overallStatus"] == "DEGRADED"
    assert data["summary"]["failed"] == 2


def test_health_network_error_is_critical(client, graph_handler):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    graph_handler(handler)
    data = client.post("/api/facebook/health", json={"accessToken": "tok"}).json()
    assert data["overallStatus"] == "CRITICAL"
    assert all(c["status"] == "ERROR" for c in data["healthChecks"])


def _auth_graph(request):
    if request.url.path.endswith("/me/adaccounts"):
        return httpx.Response(
            200, json={"data": [{"id": "act_9", "name": "Main", "account_status": 1}]}
        )
    return httpx.Response(200, json={"id": "fb_1", "name": "Ada", "email": "a@x.io"})


def test_auth_returns_user_and_accounts(client, graph_handler):
    graph_handler(_auth_graph)
    resp = client.post("/api/facebook/auth", json={"accessToken": "tok"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["name"] == "Ada"
    assert data["adAccounts"][0]["id"] == "act_9"
    assert data["sessionSaved"] is False


def test_auth_saves_session_for_user(client, graph_handler, user):
    graph_handler(_auth_graph)
    resp = client.post("/api/facebook/auth", json={"accessToken": "tok", "userId": user.id})
    assert resp.json()["sessionSaved"] is True

    session = client.get("/api/facebook/session", params={"userId": user.id}).json()["session"]
    assert session["accessToken"] == "tok"
    assert session["adAccountId"] == "act_9"


def test_auth_invalid_token(client, graph_handler):
    graph_handler(lambda request: httpx.Response(401, json={"error": {"message": "bad"}}))
    resp = client.post("/api/facebook/auth", json={"accessToken": "tok"})
    assert resp.status_code == 401


def test_session_lifecycle(client, user):
    assert client.get("/api/facebook/session", params={"userId": user.id}).status_code == 404
    assert (
        client.put(
            "/api/facebook/session", json={"userId": user.id, "accessToken": "new"}
        ).status_code
        == 404
    )

    resp = client.post(
        "/api/facebook/session",
        json={"userId": user.id, "accessToken": "first", "adAccountId": "act_1"},
    )
    assert resp.status_code == 200

    resp = client.put(
        "/api/facebook/session", json={"userId": user.id, "accessToken": "refreshed"}
    )
    assert resp.status_code == 200
    session = resp.json()["session"]
    assert session["accessToken"] == "refreshed"
    assert session["adAccountId"] == "act_1"

    resp = client.delete("/api/facebook/session", params={"userId": user.id})
    assert resp.json()["deleted"] is True
    assert client.get("/api/facebook/session", params={"userId": user.id}).status_code == 404


def test_session_unknown_user(client):
    resp = client.post("/api/facebook/session", json={"userId": 4242, "accessToken": "t"})
    assert resp.status_code == 404
