from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from app.services.graph import GraphAPIError, GraphClient

logger = logging.getLogger(__name__)

REQUIRED_PERMISSIONS = (
    "ads_read",
    "ads_management",
    "read_insights",
    "pages_read_engagement",
)

PASSED = "PASSED"
FAILED = "FAILED"
WARNING = "WARNING"
ERROR = "ERROR"
INFO = "INFO"

# network failures rather than answers from Facebook
_TRANSPORT_STATUSES = {502, 504}


def _check(test: str, status: str, result: str, details=None) -> dict:
    check = {"test": test, "status": status, "result": result}
    if details is not None:
        check["details"] = details
    return check


def _failure(test: str, exc: GraphAPIError) -> dict:
    if exc.status_code in _TRANSPORT_STATUSES:
        return _check(test, ERROR, exc.message)
    message = (exc.details or {}).get("message") or exc.message
    return _check(test, FAILED, message, exc.details or None)


def _usage_header(value: str | None):
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return value


async def run_health_checks(
    graph: GraphClient, access_token: str, ad_account_id: str | None = None
) -> dict:
    checks = []

    try:
        me = await graph.get("me", access_token)
        checks.append(
            _check(
                "Token Validation",
                PASSED,
                f"Valid token for user: {me.get('name') or me.get('id')}",
            )
        )
    except GraphAPIError as exc:
        checks.append(_failure("Token Validation", exc))

    if ad_account_id:
        try:
            account = await graph.get(
                ad_account_id,
                access_token,
                {"fields": "id,name,timezone_name,currency,account_status"},
            )
            checks.append(
                _check(
                    "Ad Account Access",
                    PASSED,
                    f"Account: {account.get('name')} ({account.get('account_status')})",
                )
            )
        except GraphAPIError as exc:
            checks.append(_failure("Ad Account Access", exc))

        try:
            ads = await graph.get(
                f"{ad_account_id}/ads",
                access_token,
                {"limit": 1, "fields": "id,name,status"},
            )
            count = len(ads.get("data") or [])
            checks.append(
                _check("Ads Endpoint Access", PASSED, f"Found {count} ads", {"count": count})
            )
        except GraphAPIError as exc:
            checks.append(_failure("Ads Endpoint Access", exc))

    try:
        granted = await graph.granted_permissions(access_token)
        missing = [p for p in REQUIRED_PERMISSIONS if p not in granted]
        checks.append(
            _check(
                "Permissions Check",
                WARNING if missing else PASSED,
                f"Missing: {', '.join(missing)}" if missing else "All required permissions granted",
                {
                    "granted": sorted(granted),
                    "missing": missing,
                    "required": list(REQUIRED_PERMISSIONS),
                },
            )
        )
    except GraphAPIError as exc:
        checks.append(_failure("Permissions Check", exc))

    try:
        resp = await graph.request("me", access_token, {"fields": "id"})
        checks.append(
            _check(
                "Rate Limit Status",
                INFO,
                "Rate limit headers checked",
                {
                    "appUsage": _usage_header(resp.headers.get("x-app-usage")),
                    "adAccountUsage": _usage_header(
                        resp.headers.get("x-ad-account-usage")
                    ),
                },
            )
        )
    except GraphAPIError as exc:
        checks.append(_check("Rate Limit Status", ERROR, exc.message))

    failed = sum(c["status"] == FAILED for c in checks)
    errors = sum(c["status"] == ERROR for c in checks)
    if errors:
        overall = "CRITICAL"
    elif failed:
        overall = "DEGRADED"
    else:
        overall = "HEALTHY"
    logger.info("Graph health check finished: %s", overall)

    return {
        "success": True,
        "overallStatus": overall,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "healthChecks": checks,
        "summary": {
            "total": len(checks),
            "passed": sum(c["status"] == PASSED for c in checks),
            "failed": failed,
            "errors": errors,
            "warnings": sum(c["status"] == WARNING for c in checks),
        },
    }
