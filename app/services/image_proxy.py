from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from app.config import Settings
from app.metrics import image_proxy_reject_total

logger = logging.getLogger(__name__)

ALLOWED_DOMAINS = (
    "fbcdn.net",
    "fbsbx.com",
    "facebook.com",
    "fb.com",
    "instagram.com",
    "cdninstagram.com",
    "igcdn.com",
)

PROXY_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; Intrend-Image-Proxy/1.0)",
    "Referer": "https://facebook.com/",
}


class ImageProxyError(Exception):
    def __init__(self, status_code: int, message: str, reason: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.reason = reason


@dataclass
class ProxiedImage:
    content: bytes
    content_type: str


def is_allowed_host(url: str) -> bool:
    """True when ``url`` is http(s) on an allow-listed domain or a subdomain."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    host = (parts.hostname or "").lower().rstrip(".")
    return any(host == d or host.endswith("." + d) for d in ALLOWED_DOMAINS)


def with_access_token(url: str, token: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("access_token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class ImageFetcher:
    def __init__(
        self,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "ImageFetcher":
        return cls(settings.image_proxy_timeout, transport)

    def _reject(self, status: int, message: str, reason: str) -> ImageProxyError:
        image_proxy_reject_total.labels(reason=reason).inc()
        logger.warning("audit: image proxy rejected (%s)", reason)
        return ImageProxyError(status, message, reason)

    async def _check_redirect(self, request: httpx.Request) -> None:
        # runs before every hop, so redirects never reach other hosts
        if not is_allowed_host(str(request.url)):
            raise self._reject(400, "Image redirected outside Facebook CDN", "redirect")

    async def fetch(self, url: str, token: str) -> ProxiedImage:
        if not is_allowed_host(url):
            raise self._reject(400, "Only Facebook CDN URLs are supported", "host")

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self.timeout,
                follow_redirects=True,
                event_hooks={"request": [self._check_redirect]},
            ) as client:
                resp = await client.get(
                    with_access_token(url, token), headers=PROXY_HEADERS
                )
        except httpx.HTTPError as exc:
            logger.error("Image fetch failed: %s", exc)
            raise ImageProxyError(
                502, f"Failed to fetch image: {exc}", "network"
            ) from exc

        if resp.is_error:
            raise self._reject(
                resp.status_code,
                f"Failed to fetch image: {resp.status_code}",
                "upstream",
            )
        content_type = resp.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            raise self._reject(
                422,
                f"Facebook returned non-image content: {content_type or 'unknown'}",
                "content_type",
            )
        return ProxiedImage(resp.content, content_type)
