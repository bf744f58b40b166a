from __future__ import annotations

import tomllib
from pathlib import Path

from app.main import app

ROOT = Path(__file__).resolve().parent.parent


def get_project_version() -> str:
    with open(ROOT / "pyproject.toml", "rb") as f:
        return tomllib.load(f)["project"]["version"]


def test_app_version_matches_project():
    assert app.version == get_project_version()


def test_openapi_lists_api_routes():
    paths = app.openapi()["paths"]
    assert "/api/facebook/ads-library" in paths
    assert "/api/per-account-subscriptions" in paths
    assert "/api/ai/creative-score/stats" in paths
    assert "/api/facebook/creatives/{creative_id}" in paths
    assert "/api/subscription/verify" in paths
    assert "/api/stripe/customer-portal" in paths
    assert "/api/users/{user_id}/invoices" in paths
