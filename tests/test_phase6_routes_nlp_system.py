#!/usr/bin/env python3
"""
Phase 6: NLP, Health and Root Routes
The NLP chart endpoint with its metadata cache and analytics log (keyword
fallback, no OpenAI key), the analytics read routes, and the health and
root documents.
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

from api.main import app
from api.nlp.analytics_tracker import AnalyticsTracker, set_analytics_tracker
from api.nlp.catalog import ApiCatalog, ApiCatalogEntry, ApiSearchIndex, set_search_index
from api.nlp.metadata_cache import MetadataCache, set_metadata_cache


@pytest.fixture
def client(monkeypatch):
    monkeypatch.delenv("DEBUG_TRACEBACK", raising=False)
    return TestClient(app)


@pytest.fixture
def nlp_services(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    entry = ApiCatalogEntry(
        id="dex_volume",
        domain="dex",
        title="DEX Trading Volume",
        url="https://example.com/api/dex_volume.json",
        response_schema={"block_date": "time", "volume": "volume"},
        keywords=["dex", "volume"],
    )
    cache = MetadataCache(cache_dir=tmp_path)
    tracker = AnalyticsTracker(data_dir=tmp_path)
    set_search_index(ApiSearchIndex(ApiCatalog(entries=[entry], version="3.1.0")))
    set_metadata_cache(cache)
    set_analytics_tracker(tracker)
    yield cache, tracker
    set_search_index(None)
    set_metadata_cache(None)
    set_analytics_tracker(None)


# ==============================================================================
# NLP CHART
# ==============================================================================


def test_nlp_chart_miss_then_cache_hit(client, nlp_services):
    cache, tracker = nlp_services

    first = client.post("/api/nlp-chart", json={"query": "dex volume over time"})
    body = first.json()
    print(f"🤖 NLP response: {body['configuration']}")
    assert first.status_code == 200
    assert body["cached"] is False
    assert body["configuration"]["type"] == "line"
    assert body["configuration"]["xColumn"] == "block_date"
    assert body["matchingApis"][0]["id"] == "dex_volume"
    assert cache.size() == 1

    second = client.post("/api/nlp-chart", json={"query": "Show DEX volume over time"}).json()
    assert second["cached"] is True
    assert second["cacheId"] == cache.get("dex volume over time").id
    assert second["configuration"]["yColumns"] == ["volume"]

    logs = tracker._load_logs()
    assert [log["cacheHit"] for log in logs] == [False, True]
    assert all(log["success"] for log in logs)


def test_nlp_chart_without_matches(client, nlp_services):
    cache, tracker = nlp_services
    body = client.post("/api/nlp-chart", json={"query": "zzzz qqqq"}).json()
    assert body["configuration"]["type"] == "bar"
    assert body["matchingApis"] == []
    assert cache.size() == 0, "Failed queries are not cached"
    assert tracker._load_logs()[0]["errorMessage"] == "No relevant APIs found for query"


def test_nlp_chart_validation(client, nlp_services):
    assert client.post("/api/nlp-chart", json={"query": "   "}).status_code == 400
    assert client.post("/api/nlp-chart", json={"query": "x" * 2001}).status_code == 422
    assert client.get("/api/nlp-chart").json()["version"] == "2.0.0"


def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
        return True
    except RuntimeError:
        return False


class LoopRecordingCache(MetadataCache):
    """Metadata cache that notes whether each call ran on the event loop thread."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def get(self, query):
        self.calls.append(("get", _on_event_loop()))
        return super().get(query)

    def set(self, *args, **kwargs):
        self.calls.append(("set", _on_event_loop()))
        return super().set(*args, **kwargs)


class LoopRecordingTracker(AnalyticsTracker):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def log_query(self, **entry):
        self.calls.append(("log_query", _on_event_loop()))
        return super().log_query(**entry)


def test_nlp_chart_file_io_runs_off_the_event_loop(client, nlp_services, tmp_path):
    cache = LoopRecordingCache(cache_dir=tmp_path / "cache")
    tracker = LoopRecordingTracker(data_dir=tmp_path / "analytics")
    set_metadata_cache(cache)
    set_analytics_tracker(tracker)

    client.post("/api/nlp-chart", json={"query": "dex volume over time"})
    client.post("/api/nlp-chart", json={"query": "dex volume over time"})

    calls = cache.calls + tracker.calls
    print(f"🧵 Calls (name, on loop): {calls}")
    assert {name for name, _ in calls} == {"get", "set", "log_query"}
    assert not any(on_loop for _, on_loop in calls), "Cache and log I/O must run in worker threads"


def test_analytics_routes(client, nlp_services):
    cache, tracker = nlp_services
    client.post("/api/nlp-chart", json={"query": "dex volume"})
    query_id = tracker._load_logs()[0]["id"]

    report = client.get("/api/analytics/report", params={"days": 7}).json()
    assert report["summary"]["totalQueries"] == 1
    assert set(report) == {"summary", "topApis", "popularQueries", "suggestions", "timeRange"}
    assert client.get("/api/analytics/report", params={"days": 0}).status_code == 422

    metrics = client.get("/api/analytics/metrics").json()
    assert metrics["apiUsage"][0]["apiId"] == "dex_volume"

    stats = client.get("/api/analytics/cache-stats").json()
    assert stats["size"] == 1 and stats["totalEntries"] == 1

    response = client.post(
        "/api/analytics/feedback",
        json={"queryId": query_id, "feedback": "positive", "cacheQuery": "dex volume"},
    )
    assert response.json() == {
        "success": True,
        "message": "Feedback updated successfully",
        "logUpdated": True,
        "cacheUpdated": True,
    }
    assert client.post("/api/analytics/feedback", json={"queryId": "nope", "feedback": "negative"}).status_code == 404
    assert client.post("/api/analytics/feedback", json={"queryId": query_id, "feedback": "meh"}).status_code == 422
    assert client.post("/api/analytics/feedback", json={"feedback": "positive"}).status_code == 400


# ==============================================================================
# HEALTH AND ROOT
# ==============================================================================


def test_health_reports_storage_and_catalog(client, fake_s3, nlp_services):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["storage"]["configured"] is True
    assert body["catalog"] == {"entries": 1, "version": "3.1.0"}
    assert body["memory"]["rss_mb"] > 0


def test_health_degraded_without_s3(client, monkeypatch, nlp_services):
    from api.config import settings
    from api.storage.s3 import set_s3_client

    set_s3_client(None)
    monkeypatch.setattr(settings, "AWS_ACCESS_KEY_ID", "")
    monkeypatch.setattr(settings, "AWS_SECRET_ACCESS_KEY", "")
    assert client.get("/health").json()["status"] == "degraded"


def test_memory_and_rate_limit_health(client):
    memory = client.get("/health/memory").json()
    assert memory["status"] in ("healthy", "warning", "high_memory")
    assert "chart" in memory["cache_info"]["entries"]
    assert memory["cache_info"]["ttl_seconds"]["chart_data_stale"] == 24 * 60 * 60

    limits = client.get("/health/rate-limits").json()
    assert limits["status"] == "healthy"


def test_root_catalog(client):
    body = client.get("/").json()
    assert body["name"] == "State of Solana API"
    assert set(body["endpoints"]) == {"widgets", "chart_data", "content", "nlp", "system"}
    assert body["documentation"]["swagger_ui"] == "/docs"
