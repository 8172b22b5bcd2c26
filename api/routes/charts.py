"""
MODULE_DESCRIPTION: Chart Config Endpoints - Page Lookups, Admin Writes, Local Config Search

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Chart configs are JSON documents in S3 under charts/{id}.json. Dashboard pages
read them through the multi-tier page cache (memory -> batch file -> page index
-> full listing); admin writes save the document and refresh the page index
and batch file in the background.

===================================================================================
API ENDPOINTS
===================================================================================

GET /api/charts?page=&skipCache=
    Charts of one page (or every chart). Public reads are sanitized.

    Returns:
        {
            "charts": [...],
            "source": "page_optimized",   # memory_cache | page_optimized | full_s3
            "count": 12,
            "pageId": "dex-summary",
            "timestamp": "2024-10-01T12:00:00.000Z"
        }

POST /api/charts                (admin)
GET /api/charts/{id}
PUT /api/charts/{id}            (admin)
DELETE /api/charts/{id}         (admin)

GET /api/charts/list
    Every chart from the local config files in CHART_CONFIGS_DIR.

POST /api/charts/search {chartId}
    Find one chart in the local config files.

===================================================================================
CACHING
===================================================================================

    ALL_CHARTS_CACHE   single "all" entry, PAGE_CHARTS_CACHE_TTL (5 min)
    PAGE_CHARTS_CACHE  one entry per page, PAGE_CHARTS_CACHE_TTL (5 min)
    CHART_CACHE        one entry per chart id, CHART_CACHE_TTL (2 h)

Page and ALL entries are patched in place on writes so an admin sees the
change immediately; other instances pick it up when their entries expire.
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
import json
import time
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Request

from api.config import settings
from api.dependencies.auth import get_current_user, is_admin_request
from api.helpers import cached_json_response, now_iso, traceback_json_response
from api.models.requests import ChartSearchRequest
from api.storage.page_cache import (
    ALL_ITEMS_KEY,
    TTLCache,
    WidgetKind,
    get_widgets_for_page,
    list_all_documents,
    remove_widget_from_page,
    upsert_widget_in_page,
)
from api.storage.s3 import delete_from_s3, get_from_s3, save_to_s3
from api.utils.debug import print__charts_debug
from api.utils.sanitizer import sanitize_chart_config, sanitize_chart_configs

router = APIRouter()

ALL_CHARTS_CACHE = TTLCache(settings.PAGE_CHARTS_CACHE_TTL, name="all_charts")
PAGE_CHARTS_CACHE = TTLCache(settings.PAGE_CHARTS_CACHE_TTL, name="page_charts")
CHART_CACHE = TTLCache(settings.CHART_CACHE_TTL, name="chart")

ALL_KEY = ALL_ITEMS_KEY

LIST_CACHE_CONTROL = "public, max-age=30, s-maxage=60, stale-while-revalidate=300"
CHART_CACHE_CONTROL = "public, max-age=3600, s-maxage=7200, stale-while-revalidate=7200"


# ==============================================================================
# CACHE HELPERS
# ==============================================================================


def _replace_or_append(items: List[dict], config: dict) -> List[dict]:
    updated = [config if item.get("id") == config["id"] else item for item in items]
    if not any(item.get("id") == config["id"] for item in items):
        updated.append(config)
    return updated


def _remember_chart(config: dict, previous_page: Optional[str] = None) -> None:
    """Patch the in-memory caches after a chart was saved."""
    CHART_CACHE.set(config["id"], config)

    all_charts = ALL_CHARTS_CACHE.get(ALL_KEY)
    if all_charts is not None:
        ALL_CHARTS_CACHE.set(ALL_KEY, _replace_or_append(all_charts, config))

    page_charts = PAGE_CHARTS_CACHE.get(config["page"])
    if page_charts is not None:
        PAGE_CHARTS_CACHE.set(config["page"], _replace_or_append(page_charts, config))

    if previous_page and previous_page != config["page"]:
        _forget_chart_in_page(previous_page, config["id"])


def _forget_chart_in_page(page_id: str, chart_id: str) -> None:
    page_charts = PAGE_CHARTS_CACHE.get(page_id)
    if page_charts is not None:
        PAGE_CHARTS_CACHE.set(page_id, [c for c in page_charts if c.get("id") != chart_id])


def _forget_chart(chart_id: str, page_id: Optional[str]) -> None:
    CHART_CACHE.delete(chart_id)
    all_charts = ALL_CHARTS_CACHE.get(ALL_KEY)
    if all_charts is not None:
        ALL_CHARTS_CACHE.set(ALL_KEY, [c for c in all_charts if c.get("id") != chart_id])
    if page_id:
        _forget_chart_in_page(page_id, chart_id)


def get_chart_with_cache(chart_id: str) -> Optional[dict]:
    """CHART_CACHE first, then S3; found charts are cached."""
    chart = CHART_CACHE.get(chart_id)
    if chart is not None:
        print__charts_debug(f"Cache hit for chart {chart_id}")
        return chart

    print__charts_debug(f"Cache miss for chart {chart_id}, fetching from S3")
    chart = get_from_s3(WidgetKind.CHART.document_key(chart_id))
    if isinstance(chart, dict):
        CHART_CACHE.set(chart_id, chart)
        return chart
    return None


def _charts_for_page(page_id: str) -> List[dict]:
    cached = PAGE_CHARTS_CACHE.get(page_id)
    if cached is not None:
        print__charts_debug(f"Page cache hit for {page_id}: {len(cached)} charts")
        return cached

    charts, tier = get_widgets_for_page(
        WidgetKind.CHART, page_id, all_items_cache=ALL_CHARTS_CACHE
    )
    print__charts_debug(f"Resolved {len(charts)} charts for {page_id} from {tier}")
    PAGE_CHARTS_CACHE.set(page_id, charts)
    return charts


def _validate_chart(config: Dict[str, Any]) -> None:
    if not WidgetKind.CHART.is_valid(config):
        raise HTTPException(status_code=400, detail="Invalid chart configuration")


# ==============================================================================
# PAGE LISTING
# ==============================================================================


@router.get("/api/charts")
def get_charts(request: Request, page: Optional[str] = None, skipCache: bool = False):
    started_at = time.time()
    print__charts_debug(f"GET /api/charts - page: {page}, skipCache: {skipCache}")
    try:
        if page:
            if skipCache:
                PAGE_CHARTS_CACHE.delete(page)
            charts = _charts_for_page(page)
            source = "page_optimized"
        else:
            if skipCache:
                ALL_CHARTS_CACHE.clear()
            charts = ALL_CHARTS_CACHE.get(ALL_KEY)
            source = "memory_cache"
            if charts is None:
                charts = list_all_documents(WidgetKind.CHART)
                ALL_CHARTS_CACHE.set(ALL_KEY, charts)
                source = "full_s3"

        if not is_admin_request(request):
            charts = sanitize_chart_configs(charts)

        content = {
            "charts": charts,
            "source": source,
            "count": len(charts),
            "pageId": page,
            "timestamp": now_iso(),
        }
        print__charts_debug(f"Returning {len(charts)} charts ({source})")
        return cached_json_response(content, LIST_CACHE_CONTROL, started_at)
    except Exception as e:
        print__charts_debug(f"Error fetching charts: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/charts")
def create_chart(
    background_tasks: BackgroundTasks,
    config: Dict[str, Any] = Body(...),
    user=Depends(get_current_user),
):
    print__charts_debug(f"POST /api/charts by {user.get('email', 'unknown')}")
    try:
        _validate_chart(config)

        config = dict(config)
        config["id"] = config.get("id") or uuid.uuid4().hex
        timestamp = now_iso()
        config["updatedAt"] = timestamp
        if not config.get("createdAt"):
            config["createdAt"] = timestamp

        if not save_to_s3(WidgetKind.CHART.document_key(config["id"]), config):
            raise HTTPException(status_code=500, detail="Failed to save chart to S3")

        _remember_chart(config)
        background_tasks.add_task(upsert_widget_in_page, WidgetKind.CHART, config)

        print__charts_debug(f"Saved chart {config['id']} on page {config['page']}")
        return {"message": "Chart saved to S3 successfully", "chartId": config["id"]}
    except HTTPException:
        raise
    except Exception as e:
        print__charts_debug(f"Error saving chart: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


# ==============================================================================
# LOCAL CHART CONFIG FILES
# ==============================================================================


def _read_config_files() -> List[tuple]:
    """(file name, charts) for every readable config file; unreadable files are skipped."""
    configs_dir = Path(settings.CHART_CONFIGS_DIR)
    if not configs_dir.is_dir():
        return []

    files = []
    for path in sorted(configs_dir.glob("*.json")):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            print__charts_debug(f"Skipping unreadable chart config file {path.name}: {e}")
            continue
        charts = data.get("charts") if isinstance(data, dict) else None
        if isinstance(charts, list):
            files.append((path.name, charts))
    return files


@router.get("/api/charts/list")
def list_local_charts(request: Request):
    try:
        files = _read_config_files()
        charts = [
            {**chart, "sourceFile": name}
            for name, file_charts in files
            for chart in file_charts
            if isinstance(chart, dict)
        ]
        charts.sort(key=lambda c: c.get("title") or "")

        admin = is_admin_request(request)
        if not admin:
            charts = sanitize_chart_configs(charts)

        return {
            "charts": charts,
            "count": len(charts),
            "files": len(files),
            "message": f"Found {len(charts)} charts from {len(files)} config files",
            "sanitized": not admin,
        }
    except Exception as e:
        print__charts_debug(f"Error listing local charts: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/charts/search")
def search_local_chart(body: ChartSearchRequest):
    if not body.chartId:
        raise HTTPException(status_code=400, detail="Chart ID is required")
    try:
        for name, charts in _read_config_files():
            for chart in charts:
                if isinstance(chart, dict) and chart.get("id") == body.chartId:
                    return {"chart": chart, "foundIn": name}
    except Exception as e:
        print__charts_debug(f"Error searching chart configs: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise

    raise HTTPException(
        status_code=404,
        detail=f'Chart with ID "{body.chartId}" not found in any configuration',
    )


# ==============================================================================
# SINGLE CHART
# ==============================================================================


@router.get("/api/charts/{chart_id}")
def get_chart(chart_id: str, request: Request):
    started_at = time.time()
    try:
        chart = get_chart_with_cache(chart_id)
        if chart is None:
            raise HTTPException(status_code=404, detail="Chart not found")

        admin = is_admin_request(request)
        body = chart if admin else sanitize_chart_config(chart)
        return cached_json_response(
            {**body, "sanitized": not admin}, CHART_CACHE_CONTROL, started_at
        )
    except HTTPException:
        raise
    except Exception as e:
        print__charts_debug(f"Error fetching chart {chart_id}: {e}")
        resp = traceback_json_response(e, widget_id=chart_id)
        if resp:
            return resp
        raise


@router.put("/api/charts/{chart_id}")
def update_chart(
    chart_id: str,
    background_tasks: BackgroundTasks,
    config: Dict[str, Any] = Body(...),
    user=Depends(get_current_user),
):
    print__charts_debug(f"PUT /api/charts/{chart_id} by {user.get('email', 'unknown')}")
    try:
        _validate_chart(config)

        existing = get_chart_with_cache(chart_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Chart not found")

        config = dict(config)
        config["id"] = chart_id
        config["updatedAt"] = now_iso()
        config["createdAt"] = existing.get("createdAt") or config["updatedAt"]

        if not save_to_s3(WidgetKind.CHART.document_key(chart_id), config):
            raise HTTPException(status_code=500, detail="Failed to update chart in S3")

        previous_page = existing.get("page")
        _remember_chart(config, previous_page=previous_page)
        background_tasks.add_task(upsert_widget_in_page, WidgetKind.CHART, config)
        if previous_page and previous_page != config["page"]:
            background_tasks.add_task(
                remove_widget_from_page, WidgetKind.CHART, previous_page, chart_id
            )

        return {"message": "Chart updated in S3 successfully", "chartId": chart_id}
    except HTTPException:
        raise
    except Exception as e:
        print__charts_debug(f"Error updating chart {chart_id}: {e}")
        resp = traceback_json_response(e, widget_id=chart_id)
        if resp:
            return resp
        raise


@router.delete("/api/charts/{chart_id}")
def delete_chart(
    chart_id: str,
    background_tasks: BackgroundTasks,
    user=Depends(get_current_user),
):
    print__charts_debug(f"DELETE /api/charts/{chart_id} by {user.get('email', 'unknown')}")
    try:
        existing = get_chart_with_cache(chart_id)
        if existing is None:
            raise HTTPException(status_code=404, detail="Chart not found")

        if not delete_from_s3(WidgetKind.CHART.document_key(chart_id)):
            raise HTTPException(status_code=500, detail="Failed to delete chart from S3")

        page_id = existing.get("page")
        _forget_chart(chart_id, page_id)
        if page_id:
            background_tasks.add_task(remove_widget_from_page, WidgetKind.CHART, page_id, chart_id)

        return {"message": "Chart deleted successfully", "chartId": chart_id}
    except HTTPException:
        raise
    except Exception as e:
        print__charts_debug(f"Error deleting chart {chart_id}: {e}")
        resp = traceback_json_response(e, widget_id=chart_id)
        if resp:
            return resp
        raise
