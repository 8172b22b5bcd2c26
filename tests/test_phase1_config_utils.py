#!/usr/bin/env python3
"""
Phase 1: Configuration, Helpers and Utilities
Covers settings defaults, response helpers, chart sanitization and the
sliding-window rate limiter.
"""

import os
import sys
import asyncio
import json
import time

# CRITICAL: Set Windows event loop policy FIRST, before other imports
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Load environment variables early
from dotenv import load_dotenv

load_dotenv()

# Add project root to path
try:
    from pathlib import Path

    BASE_DIR = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(BASE_DIR))
except NameError:
    BASE_DIR = Path(os.getcwd()).parents[0]
    sys.path.insert(0, str(BASE_DIR))

import pytest

from api.config import settings
from api.helpers import cached_json_response, compute_etag, now_iso, traceback_json_response
from api.utils import rate_limiting
from api.utils.sanitizer import (
    PUBLIC_CHART_FIELDS,
    is_admin_headers,
    sanitize_chart_config,
    sanitize_chart_configs,
)


# ==============================================================================
# SETTINGS
# ==============================================================================


def test_settings_defaults():
    print("🔍 Checking settings defaults...")
    assert settings.RATE_LIMIT_WINDOW == 60, "Rate limit window should be 60 seconds"
    assert settings.RATE_LIMIT_BURST < settings.RATE_LIMIT_REQUESTS, "Burst must be below window limit"
    assert settings.PAGE_CHARTS_CACHE_TTL > 0, "Page charts TTL must be positive"
    assert settings.CHART_CACHE_TTL >= settings.PAGE_CHARTS_CACHE_TTL, "Single chart TTL is the longer one"
    assert settings.PUBLIC_DASHBOARD_SCAN_LIMIT == 1000, "Public dashboard scan limit"
    assert settings.SHARE_CHART_HEADER_VALUE == "share-chart-request", "Share-chart marker value"
    print("✅ Settings defaults look sane")


# ==============================================================================
# HELPERS
# ==============================================================================


def test_now_iso_has_millisecond_utc_format():
    value = now_iso()
    assert value.endswith("Z"), f"Timestamp should end in Z: {value}"
    assert len(value.split(".")[-1]) == 4, f"Expected 3 fraction digits plus Z: {value}"


def test_compute_etag_is_stable_for_key_order():
    assert compute_etag({"a": 1, "b": 2}) == compute_etag({"b": 2, "a": 1}), "ETag must ignore key order"
    assert compute_etag({"a": 1}) != compute_etag({"a": 2}), "Different bodies need different ETags"


def test_cached_json_response_headers():
    started = time.time()
    response = cached_json_response(
        {"charts": []}, "public, s-maxage=60", started_at=started, headers={"X-Extra": "1"}
    )
    assert response.headers["Cache-Control"] == "public, s-maxage=60", "Cache-Control is set"
    assert response.headers["ETag"].startswith('"'), "ETag is quoted"
    assert response.headers["X-Response-Time"].endswith("ms"), "Response time header present"
    assert response.headers["X-Extra"] == "1", "Extra headers are merged"
    assert json.loads(response.body) == {"charts": []}, "Body is the content"


def test_traceback_json_response_only_in_debug(monkeypatch):
    monkeypatch.delenv("DEBUG_TRACEBACK", raising=False)
    assert traceback_json_response(ValueError("boom")) is None, "No debug response without DEBUG_TRACEBACK"

    monkeypatch.setenv("DEBUG_TRACEBACK", "1")
    try:
        raise ValueError("boom")
    except ValueError as e:
        response = traceback_json_response(e, status_code=502, widget_id="chart-1")
    body = json.loads(response.body)
    assert response.status_code == 502, "Status code is passed through"
    assert body["detail"] == "boom", "Detail carries the message"
    assert "ValueError" in body["traceback"], "Traceback text is included"
    assert body["widget_id"] == "chart-1", "Widget id is echoed"


# ==============================================================================
# SANITIZER
# ==============================================================================


def test_sanitize_chart_config_drops_upstream_fields():
    config = {
        "id": "c1",
        "title": "Volume",
        "page": "dex",
        "chartType": "bar",
        "apiEndpoint": "https://secret.example/api",
        "apiKey": "k",
        "dataMapping": {"xAxis": "date"},
    }
    public = sanitize_chart_config(config)
    print(f"🔍 Sanitized keys: {sorted(public)}")
    assert "apiEndpoint" not in public and "apiKey" not in public, "Upstream details must be removed"
    assert public["dataMapping"] == {"xAxis": "date"}, "Presentation fields are kept"
    assert set(public) <= set(PUBLIC_CHART_FIELDS), "Only public fields survive"
    assert sanitize_chart_configs([config, config]) == [public, public], "List variant maps each config"


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"x-admin-auth": "true"}, True),
        ({"x-admin-auth": "share-chart-request"}, False),
        ({"referer": "https://example.com/admin/charts"}, True),
        ({"referer": "https://example.com/dex/summary"}, False),
        ({}, False),
    ],
)
def test_is_admin_headers(headers, expected):
    assert is_admin_headers(headers) is expected, f"Admin detection for {headers}"


# ==============================================================================
# RATE LIMITING
# ==============================================================================


def test_rate_limit_burst_then_block():
    ip = "10.0.0.1"
    for i in range(settings.RATE_LIMIT_BURST):
        assert rate_limiting.check_rate_limit(ip), f"Request {i + 1} should be allowed"
    info = rate_limiting.check_rate_limit_with_throttling(ip)
    print(f"📊 Throttle info after burst: {info}")
    assert info["allowed"] is False, "Burst limit reached"
    assert 0 < info["suggested_wait"] <= settings.RATE_LIMIT_MAX_WAIT, "Wait is capped"
    assert rate_limiting.check_rate_limit(ip) is False, "Blocked request is not recorded as allowed"


def test_rate_limit_prunes_old_timestamps():
    ip = "10.0.0.2"
    settings.rate_limit_storage[ip] = [time.time() - settings.RATE_LIMIT_WINDOW - 5] * 50
    assert rate_limiting.check_rate_limit(ip), "Expired timestamps do not count"
    assert len(settings.rate_limit_storage[ip]) == 1, "Expired timestamps are pruned"


def test_rate_limit_status_counts_clients():
    rate_limiting.check_rate_limit("10.0.0.3")
    settings.rate_limit_storage["10.0.0.4"] = [time.time() - 3600]
    status = rate_limiting.get_rate_limit_status()
    assert status["total_tracked_clients"] == 2, "Both clients are tracked"
    assert status["active_clients"] == 1, "Only the recent client is active"
    assert status["rate_limit_requests"] == settings.RATE_LIMIT_REQUESTS


@pytest.mark.asyncio
async def test_wait_for_rate_limit_admits_fresh_client():
    assert await rate_limiting.wait_for_rate_limit("10.0.0.5"), "Fresh client is admitted immediately"
    assert len(settings.rate_limit_storage["10.0.0.5"]) == 1, "Admitted request is recorded"
