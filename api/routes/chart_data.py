"""
MODULE_DESCRIPTION: Chart Data Endpoints - Upstream Proxy and Pre-aggregated Page Files

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Two ways of getting the rows behind a chart:

1. GET /api/chart-data/{chartId}
   Server-side proxy to the chart's upstream API. The chart config (with its
   apiEndpoint and apiKey) is read from S3, so the key never reaches the
   browser. Responses are cached for CHART_DATA_CACHE_TTL per chart and
   filter set; when the upstream call fails, the last good rows are served
   with "stale": true.

2. GET /api/temp-data-aggregated/{pageId}
   GET /api/temp-data-compressed/{pageId}
   Page data files under TEMP_DATA_DIR/chart-data, written by the refresh job
   (api.routes.data_refresh) and pre-aggregated by the optimizer.
   The aggregated route picks an aggregation level per chart
   (api.aggregation.levels) from ?level=, ?timeRange= and ?performance=.

===================================================================================
RESPONSE HEADERS
===================================================================================

    X-Data-Type           aggregated | original
    X-Aggregation-Info    JSON {optimized, originalPoints, optimizedPoints, optimizedAt}
    X-Compression-Info    JSON {compressed, originalSize, ...}
    X-Response-Time       milliseconds spent in the handler
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
import gzip
import json
import time
from typing import Any, List, Optional, Tuple

import requests
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from api.aggregation.fetcher import build_upstream_params, extract_rows
from api.aggregation.levels import apply_levels_to_page
from api.config import settings
from api.helpers import traceback_json_response
from api.storage.page_cache import TTLCache, WidgetKind
from api.storage.s3 import get_from_s3
from api.utils.debug import print__chart_data_debug

router = APIRouter()

CHART_DATA_CACHE = TTLCache(settings.CHART_DATA_CACHE_TTL, name="chart_data")
# Last good rows per chart, served when the upstream API is down
STALE_CHART_DATA = TTLCache(24 * 60 * 60, name="chart_data_stale")

COMPRESSED_CACHE_CONTROL = "public, max-age=1800, s-maxage=1800"


# ==============================================================================
# UPSTREAM PROXY
# ==============================================================================


def _rows_response(rows: List[Any], from_cache: bool, stale: bool = False) -> dict:
    content = {"query_result": {"data": {"rows": rows}}, "fromCache": from_cache}
    if stale:
        content["stale"] = True
    return content


@router.get("/api/chart-data/{chart_id}")
def get_chart_data(chart_id: str, request: Request):
    filters = {k: v for k, v in request.query_params.items() if k != "chartId"}
    cache_key = f"{chart_id}-{json.dumps(filters, sort_keys=True)}"
    print__chart_data_debug(f"📡 Chart data for {chart_id} with filters {filters}")

    chart = get_from_s3(WidgetKind.CHART.document_key(chart_id))
    if not isinstance(chart, dict):
        raise HTTPException(status_code=404, detail="Chart not found")
    if not chart.get("apiEndpoint"):
        raise HTTPException(status_code=400, detail="Chart has no API endpoint configured")

    cached_rows = CHART_DATA_CACHE.get(cache_key)
    if cached_rows is not None:
        print__chart_data_debug(f"✅ Using cached data for chart {chart_id}")
        return _rows_response(cached_rows, from_cache=True)

    try:
        response = requests.get(
            chart["apiEndpoint"],
            params=build_upstream_params(chart.get("apiKey"), filters),
            headers={
                "Accept": "application/json",
                "User-Agent": settings.CHART_DATA_USER_AGENT,
            },
            timeout=settings.CHART_DATA_TIMEOUT,
        )
        response.raise_for_status()
        rows = extract_rows(response.json())
    except (requests.RequestException, ValueError) as e:
        print__chart_data_debug(f"❌ Upstream call failed for chart {chart_id}: {e}")
        stale_rows = STALE_CHART_DATA.get(cache_key)
        if stale_rows is not None:
            print__chart_data_debug(f"Returning stale cached data for chart {chart_id}")
            return _rows_response(stale_rows, from_cache=True, stale=True)
        resp = traceback_json_response(e, status_code=502, widget_id=chart_id)
        if resp:
            return resp
        raise HTTPException(status_code=502, detail=f"Failed to fetch chart data: {e}")

    CHART_DATA_CACHE.set(cache_key, rows)
    STALE_CHART_DATA.set(cache_key, rows)
    print__chart_data_debug(f"✅ Fetched {len(rows)} rows for chart {chart_id}")
    return _rows_response(rows, from_cache=False)


# ==============================================================================
# PRE-AGGREGATED PAGE FILES
# ==============================================================================


def _chart_data_dir() -> Path:
    return Path(settings.TEMP_DATA_DIR) / "chart-data"


def _first_existing(candidates: List[Tuple[Path, bool]]) -> Optional[Tuple[Path, bool]]:
    for path, aggregated in candidates:
        if path.is_file():
            return path, aggregated
    return None


def _load_page_file(path: Path, page_id: str) -> Tuple[Any, int, int]:
    """Parsed page data plus (file size, decoded size); decode failures become 500s."""
    raw = path.read_bytes()
    if path.suffix == ".gz":
        try:
            raw_text = gzip.decompress(raw)
        except (OSError, EOFError) as e:
            print__chart_data_debug(f"❌ Failed to decompress data for page {page_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to decompress data")
    else:
        raw_text = raw

    try:
        data = json.loads(raw_text.decode("utf-8"))
    except ValueError as e:
        print__chart_data_debug(f"❌ Failed to parse JSON data for page {page_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to parse data")
    return data, len(raw), len(raw_text)


@router.get("/api/temp-data-aggregated/{page_id}")
def get_aggregated_page_data(
    page_id: str,
    level: Optional[str] = None,
    chartId: Optional[str] = None,
    timeRange: Optional[str] = None,
    performance: bool = False,
):
    started_at = time.time()
    data_dir = _chart_data_dir()
    found = _first_existing(
        [
            (data_dir / "aggregated" / f"{page_id}.json.gz", True),
            (data_dir / "aggregated" / f"{page_id}.json", True),
            (data_dir / f"{page_id}.json.gz", False),
            (data_dir / f"{page_id}.json", False),
        ]
    )
    if found is None:
        print__chart_data_debug(f"❌ No data found for page: {page_id}")
        raise HTTPException(status_code=404, detail="Page data not found")

    path, aggregated = found
    print__chart_data_debug(f"📦 Serving {path.name} ({'aggregated' if aggregated else 'original'}) for {page_id}")
    page_data, _, _ = _load_page_file(path, page_id)

    try:
        if aggregated and isinstance(page_data, dict) and page_data.get("aggregationOptimized"):
            page_data = apply_levels_to_page(
                page_data,
                level=level,
                chart_id=chartId,
                time_range=timeRange,
                performance=performance,
            )
    except Exception as e:
        print__chart_data_debug(f"❌ Level selection failed for page {page_id}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise

    headers = {
        "X-Data-Type": "aggregated" if aggregated else "original",
        "X-Response-Time": f"{(time.time() - started_at) * 1000:.0f}ms",
    }
    if aggregated and isinstance(page_data, dict):
        headers["X-Aggregation-Info"] = json.dumps(
            {
                "optimized": True,
                "originalPoints": page_data.get("totalOriginalPoints"),
                "optimizedPoints": page_data.get("totalOptimizedPoints"),
                "optimizedAt": page_data.get("optimizedAt"),
            }
        )
    return JSONResponse(content=page_data, headers=headers)


@router.get("/api/temp-data-compressed/{page_id}")
def get_compressed_page_data(page_id: str):
    started_at = time.time()
    data_dir = _chart_data_dir()
    found = _first_existing(
        [(data_dir / f"{page_id}.json.gz", True), (data_dir / f"{page_id}.json", False)]
    )
    if found is None:
        print__chart_data_debug(f"❌ TEMP API: No data found for page: {page_id}")
        raise HTTPException(status_code=404, detail="Page data not found")

    path, compressed = found
    page_data, file_size, decoded_size = _load_page_file(path, page_id)

    if compressed:
        compression_info = {
            "compressed": True,
            "originalSize": f"{file_size / 1024:.1f}KB",
            "decompressedSize": f"{decoded_size / 1024:.1f}KB",
            "compressionRatio": f"{(decoded_size - file_size) / decoded_size * 100:.1f}%" if decoded_size else "0.0%",
        }
    else:
        compression_info = {"compressed": False, "size": f"{file_size / 1024:.1f}KB"}

    print__chart_data_debug(f"✅ TEMP API: Served data for page {page_id}: {compression_info}")
    return JSONResponse(
        content=page_data,
        headers={
            "Cache-Control": COMPRESSED_CACHE_CONTROL,
            "X-Compression-Info": json.dumps(compression_info),
            "X-Response-Time": f"{(time.time() - started_at) * 1000:.0f}ms",
        },
    )
