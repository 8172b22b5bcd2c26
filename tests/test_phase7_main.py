#!/usr/bin/env python3
"""
Phase 7: Application Wiring
Lifespan startup/shutdown with the shared services, router registration,
middleware (CORS, Brotli, throttling) and the global exception handlers.
"""

import os
import sys
import asyncio

# CRITICAL: Set Windows event loop policy FIRST, before other imports
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from dotenv import load_dotenv

load_dotenv()

try:
    from pathlib import Path

    BASE_DIR = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(BASE_DIR))
except NameError:
    BASE_DIR = Path(os.getcwd()).parents[0]
    sys.path.insert(0, str(BASE_DIR))

import pytest
from fastapi.testclient import TestClient

from api.config import settings
from api.main import app
from api.nlp.analytics_tracker import AnalyticsTracker, set_analytics_tracker
from api.nlp.catalog import ApiCatalog, ApiSearchIndex, set_search_index
from api.nlp.metadata_cache import CACHE_FILE_NAME, MetadataCache, set_metadata_cache


@pytest.fixture
def services(tmp_path):
    cache = MetadataCache(cache_dir=tmp_path)
    set_search_index(ApiSearchIndex(ApiCatalog()))
    set_metadata_cache(cache)
    set_analytics_tracker(AnalyticsTracker(data_dir=tmp_path))
    yield tmp_path
    set_search_index(None)
    set_metadata_cache(None)
    set_analytics_tracker(None)


def test_lifespan_loads_and_persists_services(fake_s3, services):
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
    assert (services / CACHE_FILE_NAME).exists(), "Metadata cache is saved on shutdown"


def test_all_routers_registered():
    paths = {route.path for route in app.routes}
    for expected in (
        "/",
        "/health",
        "/api/charts",
        "/api/charts/{chart_id}",
        "/api/counters",
        "/api/tables/{table_id}",
        "/api/chart-data/{chart_id}",
        "/api/temp-data-aggregated/{page_id}",
        "/api/temp-data-compressed/{page_id}",
        "/api/update-temp-data",
        "/api/auto-update-temp-data",
        "/api/blogs/s3-list",
        "/api/blog-analytics/track",
        "/api/blog-analytics/{slug}",
        "/api/menu-config",
        "/api/user-data",
        "/api/public-dashboard/{dashboard_id}",
        "/api/nlp-chart",
        "/api/analytics/report",
        "/api/delete-batches",
    ):
        assert expected in paths, f"Missing route {expected}"


def test_cors_preflight():
    client = TestClient(app)
    response = client.options(
        "/api/charts",
        headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "GET"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_brotli_compression_for_large_responses():
    client = TestClient(app)
    response = client.get("/", headers={"Accept-Encoding": "br"})
    assert response.status_code == 200
    assert response.headers.get("content-encoding") == "br"
    assert response.json()["name"] == "State of Solana API"


def test_unknown_route_uses_detail_body():
    response = TestClient(app).get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}


def test_rate_limit_rejects_after_wait(monkeypatch):
    from api.utils import rate_limiting

    monkeypatch.setattr(rate_limiting, "RATE_LIMIT_MAX_WAIT", 0)
    client = TestClient(app)
    statuses = [client.get("/api/nlp-chart").status_code for _ in range(settings.RATE_LIMIT_BURST + 1)]
    assert statuses[:-1] == [200] * settings.RATE_LIMIT_BURST
    assert statuses[-1] == 429
    assert client.get("/health").status_code == 200, "Health routes are exempt"


def test_rate_limit_fast_path_skips_the_wait_loop(monkeypatch):
    from unittest.mock import AsyncMock

    from api.middleware import rate_limiting as throttling

    waiter = AsyncMock(return_value=True)
    monkeypatch.setattr(throttling, "wait_for_rate_limit", waiter)
    client = TestClient(app)

    assert client.get("/api/nlp-chart").status_code == 200
    waiter.assert_not_awaited()
    assert len(settings.rate_limit_storage["testclient"]) == 1, "Admitted request is recorded once"


def test_app_description_names_admin_header_detection():
    assert "x-admin-auth" in app.description
    assert "valid token" not in app.description
