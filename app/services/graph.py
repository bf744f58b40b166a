"""Thin async client for the Facebook Marketing Graph API.

Every proxy route goes through :class:`GraphClient` so that upstream
failures are mapped to one error type with a consistent status and message.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

import httpx

from app.config import Settings
from app.metrics import graph_api_errors_total

logger = logging.getLogger(__name__)

# Graph error codes that arrive with a 400 status
_TOKEN_ERROR_CODES = {190, 102}
_RATE_LIMIT_CODES = {4, 17, 32, 613, 80000, 80004}
_PERMISSION_CODES = {10} | set(range(200, 300))

DATE_RANGE_DAYS = {
    "last_7d": 7,
    "last_30d": 30,
    "last_90d": 90,
    "last_12m": 365,
}


class GraphAPIError(Exception):
    """Upstream failure already translated to an HTTP status."""

    def __init__(
        self, status_code: int, message: str, details: dict | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details or {}


def _error_payload(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError:
        return {}
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"]
    return {}


def map_graph_error(status: int, error: dict) -> GraphAPIError:
    """Translate a Graph API error response to :class:`GraphAPIError`."""
    code = error.get("code")
    message = error.get("message") or "Unknown error"
    if status == 401 or code in _TOKEN_ERROR_CODES:
        return GraphAPIError(401, "Invalid or expired access token", error)
    if status == 429 or code in _RATE_LIMIT_CODES:
        return GraphAPIError(
            429, "Rate limit exceeded. Please try again later.", error
        )
    if status == 403 or code in _PERMISSION_CODES:
        return GraphAPIError(403, f"Insufficient permissions: {message}", error)
    if status == 404:
        return GraphAPIError(404, "Not found", error)
    if status < 400:
        status = 400
    return GraphAPIError(status, f"Facebook API error: {message}", error)


def date_window(range_name: str, today: date | None = None) -> tuple[str, str] | None:
    """Return ``(since, until)`` ISO dates for a named range or ``None``."""
    days = DATE_RANGE_DAYS.get(range_name)
    if days is None:
        return None
    today = today or date.today()
    if range_name == "last_12m":
        try:
            start = today.replace(year=today.year - 1)
        except ValueError:
            # Feb 29
            start = today - timedelta(days=days)
    else:
        start = today - timedelta(days=days)
    return start.isoformat(), today.isoformat()


class GraphClient:
    def __init__(
        self,
        base_url: str,
        version: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = f"{base_url.rstrip('/')}/{version}"
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GraphClient":
        return cls(
            settings.facebook_graph_url,
            settings.facebook_graph_version,
            timeout=settings.facebook_timeout,
            transport=transport,
        )

    async def request(
        self,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Perform a GET and return the raw response without status checks."""
        query = {k: v for k, v in (params or {}).items() if v is not None}
        query["access_token"] = access_token
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=timeout or self.timeout
            ) as client:
                return await client.get(url, params=query)
        except httpx.TimeoutException as exc:
            logger.error("Graph API timeout for %s", path)
            graph_api_errors_total.labels(status="504").inc()
            raise GraphAPIError(504, "Facebook API request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Graph API request failed for %s: %s", path, exc)
            graph_api_errors_total.labels(status="502").inc()
            raise GraphAPIError(502, f"Facebook API unreachable: {exc}") from exc

    async def get(
        self,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict:
        resp = await self.request(path, access_token, params, timeout=timeout)
        error = _error_payload(resp)
        if resp.is_error or error:
            mapped = map_graph_error(resp.status_code, error)
            graph_api_errors_total.labels(status=str(mapped.status_code)).inc()
            logger.warning(
                "Graph API error on %s: status=%s code=%s",
                path,
                resp.status_code,
                error.get("code"),
            )
            raise mapped
        try:
            return resp.json()
        except ValueError as exc:
            raise GraphAPIError(502, "Facebook API returned invalid JSON") from exc

    async def granted_permissions(self, access_token: str) -> set[str]:
        data = await self.get("me/permissions", access_token)
        return {
            p.get("permission")
            for p in data.get("data", [])
            if p.get("status") == "granted"
        }
