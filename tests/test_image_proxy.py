import httpx
import pytest

from app.services.image_proxy import is_allowed_host, with_access_token

IMAGE_URL = "https://scontent.xx.fbcdn.net/v/t45/123.jpg?oh=abc"


@pytest.mark.parametrize(
    "url,allowed",
    [
        ("https://scontent.xx.fbcdn.net/a.jpg", True),
        ("https://fbcdn.net/a.jpg", True),
        ("https://www.facebook.com/ads/image", True),
        ("https://scontent.cdninstagram.com/a.jpg", True),
        ("https://evilfbcdn.net/a.jpg", False),
        ("https://fbcdn.net.evil.com/a.jpg", False),
        ("https://example.com/?u=fbcdn.net", False),
        ("ftp://fbcdn.net/a.jpg", False),
    ],
)
def test_is_allowed_host(url, allowed):
    assert is_allowed_host(url) is allowed


def test_with_access_token_keeps_query():
    url = with_access_token(IMAGE_URL, "tok")
    assert "oh=abc" in url
    assert url.endswith("access_token=tok")


def test_proxy_streams_image(client, image_handler):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

    image_handler(handler)
    resp = client.get("/api/proxy-image", params={"url": IMAGE_URL, "token": "tok"})
    assert resp.status_code == 200
    assert resp.content == b"\x89PNG"
    assert resp.headers["content-type"] == "image/png"
    assert resp.headers["cache-control"] == "public, max-age=3600"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert seen[0].url.params["access_token"] == "tok"


def test_proxy_requires_params(client):
    resp = client.get("/api/proxy-image", params={"url": IMAGE_URL})
    assert resp.status_code == 400


def test_proxy_rejects_foreign_host(client, image_handler):
    seen = []
    image_handler(lambda request: seen.append(request) or httpx.Response(200))
    resp = client.get(
        "/api/proxy-image", params={"url": "https://example.com/a.png", "token": "t"}
    )
    assert resp.status_code == 400
    assert seen == []


def test_proxy_rejects_redirect_off_cdn(client, image_handler):
    seen = []

    def handler(request):
        seen.append(request.url.host)
        if request.url.host.endswith("fbcdn.net"):
            return httpx.Response(302, headers={"location": "https://example.com/x.png"})
        return httpx.Response(200, content=b"img", headers={"content-type": "image/png"})

    image_handler(handler)
    resp = client.get("/api/proxy-image", params={"url": IMAGE_URL, "token": "t"})
    assert resp.status_code == 400
    assert "example.com" not in seen


def test_proxy_passes_upstream_status(client, image_handler):
    image_handler(lambda request: httpx.Response(403, text="denied"))
    resp = client.get("/api/proxy-image", params={"url": IMAGE_URL, "token": "t"})
    assert resp.status_code == 403


def test_proxy_rejects_non_image(client, image_handler):
    image_handler(
        lambda request: httpx.Response(
            200, text="<html></html>", headers={"content-type": "text/html"}
        )
    )
    resp = client.get("/api/proxy-image", params={"url": IMAGE_URL, "token": "t"})
    assert resp.status_code == 422
    assert "text/html" in resp.json()["detail"]["message"]


def test_proxy_preflight(client):
    resp = client.options("/api/proxy-image")
    assert resp.status_code == 204
    assert "GET" in resp.headers["access-control-allow-methods"]
