from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from app.config import Settings
from app.metrics import n8n_forward_seconds

logger = logging.getLogger(__name__)

SOURCE_BATCH = "batch-creative-analysis"
SOURCE_SINGLE = "individual-creative-analysis"
MAX_BATCH_SIZE = 12


class N8nNotConfigured(Exception):
    pass


class N8nError(Exception):
    """Non-2xx answer from the workflow; status is passed through."""

    def __init__(self, status_code: int, message: str, body: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body


@dataclass
class ForwardResult:
    request_id: str
    timestamp: str
    response_time_ms: int
    result: Any


def new_request_id(prefix: str = "batch") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


def build_envelope(
    access_token: str,
    ad_account_id: str,
    date_range: Any,
    creative_ids: list[str],
    source: str,
    request_id: str,
    batch_size: int | None = None,
) -> dict:
    if batch_size is None:
        batch_size = min(len(creative_ids), MAX_BATCH_SIZE)
    return {
        "accessToken": access_token,
        "adAccountId": ad_account_id,
        "dateRange": date_range,
        "batchSize": batch_size,
        "selectedCreativeIds": creative_ids,
        "requestId": request_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": source,
    }


class N8nClient:
    def __init__(
        self,
        webhook_url: str | None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "N8nClient":
        return cls(settings.n8n_webhook_url, settings.n8n_timeout, transport)

    async def forward(self, envelope: dict) -> ForwardResult:
        """POST the envelope to the workflow and decode its answer.

        Non-JSON bodies come back as ``{"rawResponse": text}``.
        """
        if not self.webhook_url:
            raise N8nNotConfigured("N8N webhook URL not configured on server")

        headers = {
            "Accept": "application/json",
            "User-Agent": "Intrend-Creative-Analyzer/1.0",
            "X-Request-ID": envelope["requestId"],
            "X-Source": envelope["source"],
        }
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            ) as client:
                resp = await client.post(self.webhook_url, json=envelope, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(
                "n8n request %s failed: %s", envelope["requestId"], exc
            )
            raise N8nError(502, f"N8N webhook unreachable: {exc}", "") from exc
        finally:
            n8n_forward_seconds.observe(time.perf_counter() - start)
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        body = resp.text
        if resp.is_error:
            logger.warning(
                "n8n request %s returned %s", envelope["requestId"], resp.status_code
            )
            raise N8nError(
                resp.status_code,
                f"N8N webhook failed: {resp.status_code} {resp.reason_phrase}".strip(),
                body,
            )
        try:
            result = json.loads(body)
        except ValueError:
            result = {"rawResponse": body}
        logger.info(
            "n8n request %s accepted in %dms", envelope["requestId"], elapsed_ms
        )
        return ForwardResult(
            envelope["requestId"], envelope["timestamp"], elapsed_ms, result
        )
