"""
MODULE_DESCRIPTION: Chart Data Refresh - Page Data Files from the Upstream APIs

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Builds the page data files that /api/temp-data-compressed and
/api/temp-data-aggregated serve. For every per-page chart config file in
CHART_CONFIGS_DIR, each chart's upstream API is queried and the rows are
written to TEMP_DATA_DIR/chart-data/{pageId}.json, then the optimizer
pre-aggregates the file into chart-data/aggregated.

Processing Flow:
    1. Read {configs_dir}/{pageId}.json ({pageName, charts: [...]})
    2. Charts are fetched CHART_REFRESH_BATCH_SIZE at a time, in parallel
    3. Charts with additionalOptions.filters are fetched once per parameter
       combination (currency options, or time options when there is no
       currency filter)
    4. Write {pageId}.json and optimize it, then _summary.json

Upstream request:
    - api_key (and an inline "&max_age=") go to the query string
    - with filter parameters: POST {"parameters": {...}}
    - without: GET
    - CHART_REFRESH_TIMEOUT seconds per request

Response formats accepted by extract_rows:
    {"job": {"status": 3, "query_result": {"data": {"rows": [...]}}}}
    {"query_result": {"data": {"rows": [...]}}}
    [...], {"data": [...]}, {"rows": [...]}, {"results": [...]}
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
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from api.aggregation.optimizer import optimize_page_file
from api.config import settings
from api.utils.debug import print__chart_data_debug

TIME_FILTER_DAYS = {"D": "1", "W": "7", "M": "30", "Q": "90", "Y": "365"}

# Upstream job states
JOB_DONE = 3
JOB_FAILED = 4

SUMMARY_FILE = "_summary.json"


class UpstreamQueryError(ValueError):
    """The upstream API answered, but without usable rows."""


# ==============================================================================
# UPSTREAM REQUEST HELPERS
# ==============================================================================


def split_api_key(api_key: Optional[str]) -> Dict[str, str]:
    """api_key plus the extras stored inline after it ("key&max_age=86400")."""
    params: Dict[str, str] = {}
    if not api_key:
        return params
    api_key = api_key.strip()
    if "max_age=" not in api_key:
        params["api_key"] = api_key
        return params

    key, *extras = api_key.split("&")
    if key:
        params["api_key"] = key.strip()
    for extra in extras:
        name, _, value = extra.partition("=")
        if name:
            params[name] = value.strip()
    return params


def build_upstream_params(api_key: Optional[str], filters: Dict[str, str]) -> Dict[str, str]:
    """Query parameters for the upstream call: api_key (and its inline extras) plus filters."""
    params = split_api_key(api_key)
    for name, value in filters.items():
        if name == "timeFilter":
            params["days"] = TIME_FILTER_DAYS.get(value, value)
        else:
            params[name] = value
    return params


def extract_rows(payload: Any) -> List[Any]:
    """Rows from any of the upstream response shapes.

    Raises:
        UpstreamQueryError: for a failed or unfinished query job, or an
            explicit ``error`` in the payload
    """
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        print__chart_data_debug("⚠️ Unexpected upstream response format")
        return []

    job = payload.get("job")
    if isinstance(job, dict):
        status = job.get("status")
        if status == JOB_FAILED and job.get("error"):
            raise UpstreamQueryError(f"Query error: {job['error']}")
        if status != JOB_DONE:
            raise UpstreamQueryError(f"Query is still running (status: {status})")
        rows = ((job.get("query_result") or {}).get("data") or {}).get("rows")
        if not rows:
            raise UpstreamQueryError("Query completed but no data found")
        return rows

    query_result = payload.get("query_result")
    if isinstance(query_result, dict) and isinstance(query_result.get("data"), dict):
        return query_result["data"].get("rows") or []
    for field in ("data", "rows", "results"):
        if isinstance(payload.get(field), list):
            return payload[field]
    if payload.get("error"):
        raise UpstreamQueryError(f"API returned an error: {payload['error']}")

    print__chart_data_debug("⚠️ Unexpected upstream response format")
    return []


# ==============================================================================
# FILTER PARAMETERS
# ==============================================================================


def _filters(chart: dict) -> dict:
    return (chart.get("additionalOptions") or {}).get("filters") or {}


def _options(filter_config: Optional[dict]) -> List[Any]:
    return list((filter_config or {}).get("options") or [])


def _is_field_switcher(filter_config: Optional[dict]) -> bool:
    return (filter_config or {}).get("type") == "field_switcher"


def build_request_parameters(chart: dict, filter_params: Optional[dict] = None) -> Dict[str, Any]:
    """Named parameters for the POST body, falling back to each filter's first option.

    A field_switcher currency filter switches columns client-side and is never
    sent upstream.
    """
    filter_params = filter_params or {}
    filters = _filters(chart)
    parameters: Dict[str, Any] = {}

    for filter_name, param_key in (
        ("currencyFilter", "currency"),
        ("timeFilter", "timeFilter"),
        ("displayModeFilter", "displayMode"),
    ):
        config = filters.get(filter_name)
        if not config or not config.get("paramName"):
            continue
        if filter_name == "currencyFilter" and _is_field_switcher(config):
            continue
        value = filter_params.get(param_key)
        if value is None and _options(config):
            value = _options(config)[0]
        if value is not None:
            parameters[config["paramName"]] = value
    return parameters


def parameter_combinations(chart: dict) -> List[Dict[str, Any]]:
    """Every filter combination the refresh stores for a chart.

    Currency options multiply the combinations. Time options are only
    expanded when the chart has no currency filter, and time-aggregated
    charts only take the first one (the rows are rolled up client-side).
    """
    filters = _filters(chart)
    combinations: List[Dict[str, Any]] = [{}]

    currency = filters.get("currencyFilter")
    if _options(currency) and not _is_field_switcher(currency):
        combinations = [{**combo, "currency": option} for combo in combinations for option in _options(currency)]

    time_filter = filters.get("timeFilter")
    if _options(time_filter) and not currency:
        time_options = _options(time_filter)
        if (chart.get("additionalOptions") or {}).get("enableTimeAggregation"):
            time_options = time_options[:1]
        combinations = [{**combo, "timeFilter": option} for combo in combinations for option in time_options]

    return combinations


# ==============================================================================
# CHART FETCH
# ==============================================================================


def _error_detail(response: requests.Response) -> str:
    return f" Error details: {response.text}" if response.text else ""


def fetch_chart_data(chart: dict, filter_params: Optional[dict] = None) -> dict:
    """Fetch one chart with one filter combination. Failures are returned, not raised."""
    chart_id = chart.get("id")
    title = chart.get("title")
    parameters = build_request_parameters(chart, filter_params)

    try:
        if not chart.get("apiEndpoint"):
            raise UpstreamQueryError("Chart has no API endpoint configured")

        request_kwargs = {
            "params": split_api_key(chart.get("apiKey")),
            "headers": {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": settings.CHART_DATA_USER_AGENT,
            },
            "timeout": settings.CHART_REFRESH_TIMEOUT,
        }
        print__chart_data_debug(
            f"📡 Fetching {title} ({chart_id}) via {'POST' if parameters else 'GET'} {parameters or ''}"
        )
        if parameters:
            response = requests.post(chart["apiEndpoint"], json={"parameters": parameters}, **request_kwargs)
        else:
            response = requests.get(chart["apiEndpoint"], **request_kwargs)

        if not response.ok:
            raise UpstreamQueryError(
                f"API request failed with status {response.status_code}: {response.reason}.{_error_detail(response)}"
            )
        rows = extract_rows(response.json())
    except requests.Timeout:
        error = f"API request timed out after {settings.CHART_REFRESH_TIMEOUT} seconds"
    except requests.ConnectionError:
        error = "Network error: Unable to reach the API. Check if the endpoint is accessible."
    except (requests.RequestException, ValueError) as e:
        error = str(e)
    else:
        result = {
            "success": True,
            "data": rows,
            "timestamp": int(time.time() * 1000),
            "chartId": chart_id,
            "title": title,
        }
        if parameters:
            result["parameters"] = parameters
        return result

    print__chart_data_debug(f"❌ Error fetching data for {title}: {error}")
    return {
        "success": False,
        "error": error,
        "chartId": chart_id,
        "title": title,
        "parameters": filter_params or {},
    }


def fetch_chart_with_all_parameters(chart: dict) -> dict:
    """Fetch every parameter combination; the first non-empty result is the primary data."""
    if not _filters(chart):
        return fetch_chart_data(chart)

    combinations = parameter_combinations(chart)
    print__chart_data_debug(f"Will fetch {len(combinations)} parameter combinations for {chart.get('title')}")

    results = []
    datasets = []
    for index, params in enumerate(combinations):
        result = fetch_chart_data(chart, params)
        results.append(result)
        if result["success"] and result.get("data"):
            datasets.append(
                {"data": result["data"], "parameters": result.get("parameters"), "timestamp": result["timestamp"]}
            )
        if index < len(combinations) - 1:
            time.sleep(settings.CHART_REFRESH_REQUEST_DELAY)

    if not datasets:
        return results[-1]

    return {
        "success": True,
        "datasets": datasets,
        "data": datasets[0]["data"],
        "timestamp": int(time.time() * 1000),
        "chartId": chart.get("id"),
        "title": chart.get("title"),
        "parameters": datasets[0]["parameters"],
        "totalCombinations": len(combinations),
        "successfulCombinations": len(datasets),
        "failedCombinations": len(combinations) - len(datasets),
        "availableParameters": [d["parameters"] for d in datasets],
    }


# ==============================================================================
# PAGE AND FULL REFRESH
# ==============================================================================


def fetch_page_charts(charts: List[dict]) -> List[dict]:
    """Fetch a page's charts CHART_REFRESH_BATCH_SIZE at a time; results keep chart order."""
    width = max(1, settings.CHART_REFRESH_BATCH_SIZE)
    results: List[dict] = []
    with ThreadPoolExecutor(max_workers=width) as executor:
        for start in range(0, len(charts), width):
            batch = charts[start : start + width]
            print__chart_data_debug(
                f"🔄 Processing batch {start // width + 1}/{(len(charts) + width - 1) // width}"
            )
            futures = [executor.submit(fetch_chart_with_all_parameters, chart) for chart in batch]
            for chart, future in zip(batch, futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    print__chart_data_debug(f"❌ {chart.get('title')}: {e}")
                    results.append(
                        {"success": False, "error": str(e), "chartId": chart.get("id"), "title": chart.get("title")}
                    )
            if start + width < len(charts):
                time.sleep(settings.CHART_REFRESH_BATCH_DELAY)
    return results


def refresh_page(page_id: str, page_config: dict, data_dir: Path) -> Optional[dict]:
    """Fetch one page's charts and write ``{data_dir}/{page_id}.json``. None when it has no charts."""
    charts = page_config.get("charts") or []
    if not charts:
        print__chart_data_debug(f"⏭️ No charts found for {page_id}")
        return None

    results = fetch_page_charts(charts)
    successful = sum(1 for r in results if r.get("success"))
    page_data = {
        "pageId": page_id,
        "pageName": page_config.get("pageName"),
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
        "charts": results,
        "summary": {
            "totalCharts": len(charts),
            "successfulFetches": successful,
            "failedFetches": len(results) - successful,
        },
    }

    data_dir.mkdir(parents=True, exist_ok=True)
    with open(data_dir / f"{page_id}.json", "w", encoding="utf-8") as f:
        json.dump(page_data, f, indent=2, default=str)
    print__chart_data_debug(f"💾 Saved data for {page_id} ({successful}/{len(charts)} charts)")
    return page_data


def refresh_chart_data(
    configs_dir: Optional[Path] = None,
    data_dir: Optional[Path] = None,
    optimize: bool = True,
) -> dict:
    """Refresh every page data file, pre-aggregate it and write ``_summary.json``.

    Returns:
        The summary: fetchedAt, totalPages, totalCharts, successfulFetches,
        failedFetches, successRate, optimizedPages
    """
    configs_dir = Path(configs_dir or settings.CHART_CONFIGS_DIR)
    data_dir = Path(data_dir or Path(settings.TEMP_DATA_DIR) / "chart-data")
    config_files = sorted(
        p for p in configs_dir.glob("*.json") if p.is_file() and not p.name.startswith("_")
    )
    print__chart_data_debug(f"🚀 Refreshing chart data for {len(config_files)} pages from {configs_dir}")

    total_charts = successful = failed = 0
    optimized_pages = []
    for config_path in config_files:
        page_id = config_path.stem
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                page_config = json.load(f)
            page_data = refresh_page(page_id, page_config, data_dir)
            if page_data is None:
                continue
            total_charts += page_data["summary"]["totalCharts"]
            successful += page_data["summary"]["successfulFetches"]
            failed += page_data["summary"]["failedFetches"]
            if optimize and optimize_page_file(data_dir / f"{page_id}.json", data_dir / "aggregated", configs_dir):
                optimized_pages.append(page_id)
        except (OSError, ValueError) as e:
            print__chart_data_debug(f"❌ Error processing page {page_id}: {e}")

    summary = {
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
        "totalPages": len(config_files),
        "totalCharts": total_charts,
        "successfulFetches": successful,
        "failedFetches": failed,
        "successRate": f"{successful / total_charts * 100:.2f}%" if total_charts else "0%",
        "optimizedPages": optimized_pages,
    }
    data_dir.mkdir(parents=True, exist_ok=True)
    write_summary(data_dir, summary)
    print__chart_data_debug(
        f"🎉 Chart data refresh complete: {successful}/{total_charts} charts ({summary['successRate']})"
    )
    return summary


def read_summary(data_dir: Optional[Path] = None) -> Optional[dict]:
    path = Path(data_dir or Path(settings.TEMP_DATA_DIR) / "chart-data") / SUMMARY_FILE
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        print__chart_data_debug(f"⚠️ Could not read summary {path}: {e}")
        return None


def write_summary(data_dir: Path, summary: dict) -> None:
    with open(Path(data_dir) / SUMMARY_FILE, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)
