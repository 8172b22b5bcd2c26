#!/usr/bin/env python3
"""
Phase 4: Natural-language Chart Helper
Catalog keyword search, chart spec building, the query metadata cache, the
analytics log and the OpenAI tool-calling pipeline (mocked) with its keyword
fallback.
"""

import os
import sys
import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

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

from api.nlp import analytics_tracker as analytics_module
from api.nlp import metadata_cache as cache_module
from api.nlp import pipeline
from api.nlp.analytics_tracker import AnalyticsTracker, categorize_error
from api.nlp.catalog import ApiCatalog, ApiCatalogEntry, ApiSearchIndex, load_catalog, set_search_index
from api.nlp.chart_spec import (
    ChartSpecBuilder,
    create_chart_spec_from_search_results,
    format_column_label,
    get_column_type,
    suggest_chart_type,
    validate_chart_spec,
)
from api.nlp.metadata_cache import MetadataCache, normalize_query

DEX_VOLUME = ApiCatalogEntry(
    id="dex_volume",
    domain="dex",
    title="DEX Trading Volume",
    url="https://example.com/api/dex_volume.json",
    response_schema={"block_date": "time", "volume": "volume", "trades": "count"},
    keywords=["dex", "volume", "trading"],
    description="Daily DEX volume",
)
STABLE_SUPPLY = ApiCatalogEntry(
    id="stable_supply",
    domain="stablecoins",
    title="Stablecoin Supply",
    url="https://example.com/api/stable_supply.json",
    response_schema={"block_date": "time", "total_supply": "supply"},
    keywords=["stablecoin", "usdc", "supply"],
    chart_types=["area"],
)


@pytest.fixture
def search_index():
    index = ApiSearchIndex(ApiCatalog(entries=[DEX_VOLUME, STABLE_SUPPLY], version="9.9.9"))
    set_search_index(index)
    yield index
    set_search_index(None)


# ==============================================================================
# CATALOG SEARCH
# ==============================================================================


def test_search_ranks_matching_entry(search_index):
    result = search_index.search("dex volume", top_k=5)
    print(f"🔍 Search result ids: {[a.id for a in result['apis']]} scores {result['scores']}")
    assert [a.id for a in result["apis"]] == ["dex_volume"], "Only the DEX entry matches"
    assert result["scores"] == [1.55], "2 word hits + domain bonus + 2 keyword matches, over 2 words"
    assert search_index.search("stablecoin", domain_filter="dex")["total_results"] == 0, "Domain filter applies"
    assert search_index.search("a b")["apis"] == [], "Short words are ignored"


def test_index_lookups_and_stats(search_index):
    assert search_index.get_api_by_id("stable_supply") is STABLE_SUPPLY
    assert search_index.get_api_by_id("nope") is None
    assert search_index.get_apis_by_domain("dex") == [DEX_VOLUME]
    stats = search_index.get_stats()
    assert stats["totalApis"] == 2 and stats["version"] == "9.9.9"
    assert stats["domains"] == {"dex": 1, "stablecoins": 1}


def test_load_catalog_file(tmp_path):
    assert load_catalog(tmp_path / "missing.json").entries == [], "Missing file gives an empty catalog"
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"version": "2.0.0", "entries": [DEX_VOLUME.model_dump()]}), encoding="utf-8")
    catalog = load_catalog(path)
    assert catalog.version == "2.0.0"
    assert catalog.entries[0].columns == ["block_date", "volume", "trades"]


def test_bundled_catalog_is_valid():
    catalog = load_catalog(BASE_DIR / "data" / "api_catalog.json")
    assert catalog.entries, "The bundled catalog has entries"
    assert len({e.id for e in catalog.entries}) == len(catalog.entries), "Catalog ids are unique"


# ==============================================================================
# CHART SPEC
# ==============================================================================


@pytest.mark.parametrize(
    "column,expected",
    [
        ("block_date", "time"),
        ("volume", "volume"),
        ("trades", "count"),
        ("total_supply", "supply"),
        ("success_rate", "percentage"),
        ("label", "metric"),
    ],
)
def test_get_column_type(column, expected):
    assert get_column_type(column) == expected


def test_suggest_chart_type_intent_then_columns():
    columns = ["block_date", "volume", "trades"]
    assert suggest_chart_type("compare dexes", columns) == "bar"
    assert suggest_chart_type("volume trend", columns) == "line"
    assert suggest_chart_type(None, columns) == "line", "Time plus several metrics"
    assert suggest_chart_type(None, ["block_date", "volume"]) == "area", "Time plus a volume metric"
    assert suggest_chart_type(None, ["volume"]) == "area"
    assert suggest_chart_type(None, ["label"]) == "bar"


def test_format_column_label():
    assert format_column_label("block_date") == "Block Date"
    assert format_column_label("txCount") == "Tx Count"


def test_builder_produces_axes_series_and_confidence():
    spec = ChartSpecBuilder([DEX_VOLUME]).build(
        "DEX volume", "dex_volume", user_intent="dex volume over time"
    )
    print(f"📐 Spec: {json.dumps(spec)[:200]}")
    assert spec["chart_type"] == "line"
    assert spec["x_axis"] == {"column": "block_date", "type": "time", "label": "Block Date"}
    assert [s["column"] for s in spec["series"]] == ["volume", "trades"]
    assert spec["metadata"]["confidence_score"] == 1.0
    assert spec["metadata"]["suggested_columns"] == ["block_date", "volume", "trades"]

    with pytest.raises(ValueError):
        ChartSpecBuilder([DEX_VOLUME]).build("x", "unknown_api")


def test_spec_from_search_results_joins_runner_up():
    spec = create_chart_spec_from_search_results([STABLE_SUPPLY, DEX_VOLUME], "stablecoin supply")
    assert spec["title"] == "Stablecoin supply"
    assert spec["chart_type"] == "area", "Catalog chart type is preferred"
    assert spec["secondary_api"] == "dex_volume"
    assert spec["transform"].startswith("JOIN Stablecoin Supply AND DEX Trading Volume")
    with pytest.raises(ValueError):
        create_chart_spec_from_search_results([], "anything")


def test_validate_chart_spec():
    assert validate_chart_spec({"title": "t", "primary_api": "a", "chart_type": "line", "x_axis": {}})["valid"]
    result = validate_chart_spec({"title": "t", "primary_api": "a", "chart_type": "donut"})
    assert not result["valid"] and "Invalid chart type: donut" in result["errors"]
    assert "No axis specifications provided" in result["warnings"]


# ==============================================================================
# METADATA CACHE
# ==============================================================================


def test_normalize_query_collapses_wording():
    assert normalize_query("Show DEX volume over time") == "dex volume time_series"
    assert normalize_query("display  dex volume over time") == normalize_query("Show DEX volume over time")


def test_metadata_cache_roundtrip_and_persistence(tmp_path):
    cache = MetadataCache(cache_dir=tmp_path)
    cache.set("Show DEX volume", {"chart_type": "line"}, ["dex_volume"], 0.9)

    hit = cache.get("dex volume")
    assert hit is not None, "Equivalent wording hits the same entry"
    assert hit.hitCount == 1
    assert cache.update_feedback("dex volume", "positive")
    assert cache.update_feedback("unknown query", "negative") is False

    reloaded = MetadataCache(cache_dir=tmp_path)
    assert reloaded.load_cache() == 1, "Entries are persisted to disk"
    assert reloaded.get("dex volume").userFeedback == "positive"

    stats = reloaded.get_stats()
    assert stats["totalEntries"] == 1 and stats["apiUsageFrequency"] == {"dex_volume": 2}


def test_metadata_cache_expiry_and_eviction(tmp_path, monkeypatch):
    clock = [1_000_000]
    monkeypatch.setattr(cache_module, "_now_ms", lambda: clock[0])

    cache = MetadataCache(cache_dir=tmp_path, max_entries=10)
    cache.set("short lived", {}, [], 0.5, ttl_ms=100)
    clock[0] += 100
    assert cache.get("short lived") is None, "Entries expire at their TTL"

    for i in range(11):
        clock[0] += 1
        cache.set(f"query number {i}", {}, [], 0.5)
    assert cache.size() == 10, "Oldest tenth is evicted past max_entries"
    assert cache.get("query number 0") is None, "Least recently accessed entry went first"

    clock[0] += cache.default_ttl_ms
    assert cache.cleanup_expired() == 10


def test_metadata_cache_small_capacity_still_evicts(tmp_path, monkeypatch):
    clock = [1_000_000]
    monkeypatch.setattr(cache_module, "_now_ms", lambda: clock[0])

    cache = MetadataCache(cache_dir=tmp_path, max_entries=3)
    for query in ["dex volume", "stablecoin supply", "lending rates", "nft sales", "validator count"]:
        clock[0] += 1
        cache.set(query, {}, [], 0.5)

    assert cache.size() == 3, "A cache smaller than ten entries stays bounded"
    assert cache.get("dex volume") is None
    assert cache.get("validator count") is not None


# ==============================================================================
# ANALYTICS
# ==============================================================================


def test_categorize_error():
    assert categorize_error("insufficient_quota") == "quota_exceeded"
    assert categorize_error("Request timed out") == "api_error"
    assert categorize_error("JSON decode") == "parsing_error"
    assert categorize_error("boom") == "unknown_error"


def test_analytics_log_feedback_and_report(tmp_path):
    tracker = AnalyticsTracker(data_dir=tmp_path)
    first = tracker.log_query(
        originalQuery="dex volume", normalizedQuery="dex volume", selectedApis=["dex-volume"],
        confidence=0.9, processingTimeMs=100, cacheHit=True, success=True,
    )
    tracker.log_query(
        originalQuery="dex volume", normalizedQuery="dex volume", selectedApis=["dex-volume"],
        confidence=0.7, processingTimeMs=300, success=True,
    )
    tracker.log_query(originalQuery="broken", normalizedQuery="error", success=False, errorMessage="quota hit")

    assert tracker.update_query_feedback(first["id"], "positive")
    assert tracker.update_query_feedback("missing", "negative") is False

    report = tracker.generate_report(7)
    summary = report["summary"]
    print(f"📊 Analytics summary: {summary}")
    assert summary["totalQueries"] == 3
    assert summary["uniqueQueries"] == 2
    assert summary["cacheHitRate"] == pytest.approx(1 / 3)
    assert summary["popularDomains"] == {"dex": 2}
    assert summary["errorTypes"] == {"quota_exceeded": 1}
    assert report["topApis"][0]["apiId"] == "dex-volume"
    assert report["topApis"][0]["avgConfidence"] == pytest.approx(0.8)
    assert report["popularQueries"][0] == {
        "query": "dex volume", "count": 2, "avgConfidence": pytest.approx(0.8),
        "successRate": 1.0, "avgProcessingTime": 200.0,
    }
    assert any("Success rate below 90%" in s for s in report["suggestions"])


def test_analytics_cleanup_old_logs(tmp_path, monkeypatch):
    tracker = AnalyticsTracker(data_dir=tmp_path)
    clock = [10 * analytics_module.DAY_MS]
    monkeypatch.setattr(analytics_module, "_now_ms", lambda: clock[0])
    tracker.log_query(originalQuery="old")
    clock[0] += 31 * analytics_module.DAY_MS
    tracker.log_query(originalQuery="new")

    assert tracker.cleanup_old_logs(30) == 1
    assert [log["originalQuery"] for log in tracker._load_logs()] == ["new"]
    assert tracker.get_system_metrics(days=1)["totalQueries"] == 1


# ==============================================================================
# PIPELINE
# ==============================================================================


def _response(tool_calls=None, content=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=json.dumps(arguments)))


@pytest.mark.asyncio
async def test_pipeline_falls_back_without_api_key(search_index, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = await pipeline.process_nlp_query("dex volume over time")
    assert result["success"] and result["fallbackUsed"]
    assert result["searchResult"]["apis"][0]["id"] == "dex_volume"

    legacy = pipeline.convert_to_legacy_format(result)
    print(f"🔄 Legacy configuration: {legacy['configuration']}")
    assert legacy["configuration"]["type"] == "line"
    assert legacy["configuration"]["xColumn"] == "block_date"
    assert legacy["configuration"]["yColumns"] == ["volume", "trades"]
    assert legacy["configuration"]["suggestedApis"] == ["dex_volume"]
    assert legacy["matchingApis"][0]["endpoint"] == DEX_VOLUME.url
    assert legacy["matchingApis"][0]["suggestedColumns"] == {
        "xColumn": "block_date", "yColumns": ["volume", "trades"], "groupBy": "",
    }
    assert legacy["ragMetadata"]["fallbackUsed"] is True


@pytest.mark.asyncio
async def test_pipeline_without_matches_returns_default_configuration(search_index, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = await pipeline.process_nlp_query("zzzz qqqq")
    assert result["success"] is False
    legacy = pipeline.convert_to_legacy_format(result)
    assert legacy["configuration"]["type"] == "bar"
    assert legacy["configuration"]["reasoning"] == "No relevant APIs found for query"
    assert legacy["matchingApis"] == []


@pytest.mark.asyncio
async def test_pipeline_tool_rounds(search_index):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        side_effect=[
            _response([_tool_call("c1", "search_api_catalog", {"query": "dex volume", "top_k": 3})]),
            _response(
                [
                    _tool_call(
                        "c2",
                        "create_chart_spec",
                        {"title": "DEX volume", "primary_api": "dex_volume", "chart_type": "area"},
                    )
                ]
            ),
        ]
    )
    with patch.object(pipeline, "get_openai_client", return_value=client):
        result = await pipeline.process_nlp_query("dex volume")

    assert client.chat.completions.create.await_count == 2
    second_call_messages = client.chat.completions.create.await_args_list[1].kwargs["messages"]
    assert second_call_messages[-1]["role"] == "tool", "Tool results are fed back to the model"
    assert result["searchResult"]["apis"][0]["id"] == "dex_volume"
    assert result["chartSpec"]["chart_spec"]["chart_type"] == "area"
    assert "fallbackUsed" not in result


@pytest.mark.asyncio
async def test_pipeline_builds_spec_from_search_when_model_stops(search_index):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        side_effect=[
            _response([_tool_call("c1", "search_api_catalog", {"query": "stablecoin supply"})]),
            _response(None, content="Here you go"),
        ]
    )
    with patch.object(pipeline, "get_openai_client", return_value=client):
        result = await pipeline.process_nlp_query("stablecoin supply")
    assert result["chartSpec"]["chart_spec"]["primary_api"] == "stable_supply"


@pytest.mark.asyncio
async def test_pipeline_quota_error_uses_fallback(search_index):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=Exception("insufficient_quota"))
    with patch.object(pipeline, "get_openai_client", return_value=client):
        result = await pipeline.process_nlp_query("dex volume")
    assert result["fallbackUsed"] is True


def test_run_tool_unknown_name():
    assert pipeline.run_tool("drop_tables", {}) == {"success": False, "error": "Unknown function: drop_tables"}
