"""
MODULE_DESCRIPTION: NLP Chart Endpoints - Natural-language Chart Helper and Its Analytics

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

POST /api/nlp-chart turns a free-text request ("DEX volume over time") into a
chart configuration the admin chart builder understands. The work is done by
api.nlp.pipeline; this module adds the metadata cache in front of it and logs
every request to the analytics log.

Request flow:
    1. Metadata cache lookup on the normalized query
       - hit: re-run the catalog search for fresh API details, answer with
         the cached chart spec ("cached": true, "cacheId")
    2. process_nlp_query (OpenAI tool calling, keyword fallback)
    3. Successful chart specs are cached
    4. Analytics entry: cache hit/miss, success, timing, APIs, chart type

Analytics endpoints:
    GET  /api/analytics/report?days=7
    GET  /api/analytics/metrics?days=
    GET  /api/analytics/cache-stats
    POST /api/analytics/feedback {queryId, feedback, cacheQuery?}
===================================================================================
"""

# CRITICAL: Set Windows event loop policy FIRST, before any other imports
import os
import sys

if sys.platform == "win32":
    import asyncio

    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Load environment variables early
from dotenv import load_dotenv

load_dotenv()

# Constants
try:
    from pathlib import Path

    BASE_DIR = Path(__file__).resolve().parents[2]
except NameError:
    BASE_DIR = Path(os.getcwd()).parents[0]

# Standard imports
import asyncio
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.helpers import traceback_json_response
from api.models.requests import AnalyticsFeedbackRequest, NLPChartRequest
from api.nlp.analytics_tracker import get_analytics_tracker
from api.nlp.metadata_cache import get_metadata_cache
from api.nlp.pipeline import convert_to_legacy_format, process_nlp_query, search_api_catalog
from api.utils.debug import print__analytics_debug, print__nlp_debug

router = APIRouter()

DEFAULT_CONFIDENCE = 0.8


def _elapsed_ms(started_at: float) -> int:
    return int((time.time() - started_at) * 1000)


# ==============================================================================
# NLP CHART HELPER
# ==============================================================================


def _answer_from_cache(query: str, started_at: float, user_agent: Optional[str]) -> Optional[dict]:
    """Cached chart spec with fresh catalog details, or None on a cache miss."""
    cached = get_metadata_cache().get(query)
    if cached is None:
        return None

    print__nlp_debug(f"💾 Cache hit for query (id {cached.id})")
    chart_spec = cached.chartSpec or {}
    get_analytics_tracker().log_query(
        originalQuery=query,
        normalizedQuery=query.lower().strip(),
        selectedApis=cached.selectedApis,
        chartType=chart_spec.get("chart_type") or "bar",
        confidence=cached.confidence,
        processingTimeMs=_elapsed_ms(started_at),
        cacheHit=True,
        success=True,
        userAgent=user_agent,
    )
    search_result = search_api_catalog(query, top_k=5)
    legacy = convert_to_legacy_format(
        {
            "success": True,
            "searchResult": search_result,
            "chartSpec": {"success": True, "chart_spec": cached.chartSpec},
            "query": query,
        }
    )
    return {**legacy, "cached": True, "cacheId": cached.id}


def _record_result(query: str, result: dict, started_at: float, user_agent: Optional[str]) -> dict:
    """Cache a successful chart spec, log the query and build the response body."""
    selected_apis = []
    chart_type = "bar"
    confidence = DEFAULT_CONFIDENCE
    error_message = None
    if result.get("success"):
        selected_apis = [
            api.get("id") for api in (result.get("searchResult") or {}).get("apis") or []
        ]
        chart_spec = (result.get("chartSpec") or {}).get("chart_spec")
        if chart_spec:
            chart_type = chart_spec.get("chart_type") or "bar"
            confidence = (chart_spec.get("metadata") or {}).get(
                "confidence_score"
            ) or DEFAULT_CONFIDENCE
            get_metadata_cache().set(query, chart_spec, selected_apis, confidence)
    else:
        error_message = result.get("error") or "Unknown error occurred"

    legacy = convert_to_legacy_format(result)
    processing_time = _elapsed_ms(started_at)
    get_analytics_tracker().log_query(
        originalQuery=query,
        normalizedQuery=query.lower().strip(),
        selectedApis=selected_apis,
        chartType=chart_type,
        confidence=confidence,
        processingTimeMs=processing_time,
        cacheHit=False,
        success=bool(result.get("success")),
        errorMessage=error_message,
        userAgent=user_agent,
    )
    print__nlp_debug(
        f"✅ NLP query processed: {len(legacy['matchingApis'])} APIs in {processing_time}ms"
    )
    return {**legacy, "cached": False, "processingTimeMs": processing_time}


def _record_error(query: str, error: Exception, started_at: float, user_agent: Optional[str]) -> None:
    get_analytics_tracker().log_query(
        originalQuery=query,
        normalizedQuery="error",
        chartType="unknown",
        confidence=0,
        processingTimeMs=_elapsed_ms(started_at),
        cacheHit=False,
        success=False,
        errorMessage=str(error),
        userAgent=user_agent,
    )


@router.post("/api/nlp-chart")
async def nlp_chart(body: NLPChartRequest, request: Request):
    """Only the model call runs on the event loop; cache and log file I/O go to worker threads."""
    query = (body.query or "").strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")

    started_at = time.time()
    user_agent = request.headers.get("user-agent")
    print__nlp_debug(f"🔍 NLP chart request: {query}")

    try:
        cached_response = await asyncio.to_thread(_answer_from_cache, query, started_at, user_agent)
        if cached_response is not None:
            return cached_response

        result = await process_nlp_query(query)
        return await asyncio.to_thread(_record_result, query, result, started_at, user_agent)

    except Exception as e:
        print__nlp_debug(f"❌ NLP chart error: {e}")
        await asyncio.to_thread(_record_error, query, e, started_at, user_agent)
        resp = traceback_json_response(e)
        if resp:
            return resp
        return JSONResponse(
            status_code=500, content={"detail": "Failed to process natural language query"}
        )


@router.get("/api/nlp-chart")
async def nlp_chart_info():
    return {
        "message": "NLP Chart API is running with catalog search",
        "version": "2.0.0",
        "features": [
            "Keyword API catalog search",
            "OpenAI tool calls",
            "Intelligent chart specification",
            "Fallback pattern matching",
            "Metadata cache",
        ],
        "endpoints": {"POST": "Send natural language query to generate chart configuration"},
    }


# ==============================================================================
# ANALYTICS
# ==============================================================================


@router.get("/api/analytics/report")
def analytics_report(days: int = Query(7, ge=1, le=365)):
    try:
        report = get_analytics_tracker().generate_report(days)
        print__analytics_debug(f"📊 Report for {days} days: {report['summary'].get('totalQueries')} queries")
        return report
    except Exception as e:
        print__analytics_debug(f"❌ Failed to generate analytics report: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.get("/api/analytics/metrics")
def analytics_metrics(days: Optional[int] = Query(None, ge=1, le=365)):
    tracker = get_analytics_tracker()
    return {
        "systemMetrics": tracker.get_system_metrics(days),
        "apiUsage": tracker.get_api_usage_stats(days),
        "popularQueries": tracker.get_popular_queries(20, days),
    }


@router.get("/api/analytics/cache-stats")
def analytics_cache_stats():
    cache = get_metadata_cache()
    return {**cache.get_stats(), "size": cache.size()}


@router.post("/api/analytics/feedback")
def analytics_feedback(body: AnalyticsFeedbackRequest):
    if not body.queryId or not body.feedback:
        raise HTTPException(status_code=400, detail="Missing queryId or feedback")

    logged = get_analytics_tracker().update_query_feedback(body.queryId, body.feedback)
    cached = False
    if body.cacheQuery:
        cached = get_metadata_cache().update_feedback(body.cacheQuery, body.feedback)

    if not logged and not cached:
        raise HTTPException(status_code=404, detail=f"Query {body.queryId} not found")
    return {
        "success": True,
        "message": "Feedback updated successfully",
        "logUpdated": logged,
        "cacheUpdated": cached,
    }
