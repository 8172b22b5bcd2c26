"""
MODULE_DESCRIPTION: Chart Data Pre-aggregation - Multi-level Time Series Rollups

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Page data files (``{pageId, charts: [{chartId, success, data: [...]}, ...]}``)
can hold tens of thousands of rows per chart. This module pre-computes rollups
of every chart at several time granularities so the serving route can hand out
the coarsest level that still fits the request.

Processing Flow:
    1. analyze_dataset: find the x (date) field, y (value) fields, groupBy
       field and date range, from the chart's dataMapping or by inspection
    2. choose_strategy: pick which levels to build from the point count
         > 10000 points -> large  (yearly..daily, default monthly)
         > 1000 points  -> medium (yearly..weekly, default weekly)
         otherwise      -> small  (yearly..monthly, default raw)
    3. aggregate_rows: pandas groupby on (period start[, group]) with a value
       rule per field
    4. optimize_page_file: write aggregated/{pageId}.json and .json.gz

Period keys (emitted as YYYY-MM-DD):
    daily     calendar date
    weekly    ISO week start (Monday)
    monthly   first day of the month
    quarterly first day of the quarter
    yearly    January 1st

Value rules, by field:
    - name contains cumulative/total/supply/marketcap/market_cap -> max
    - configured percentage field -> sum(numerator) / sum(denominator) * 100,
      rounded to 2 decimals; 0 when the denominator sum is 0
    - unit "%" -> mean, rounded to 2 decimals
    - everything else -> sum
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

import gzip
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from api.config import settings
from api.utils.debug import print__aggregation_debug

# ==============================================================================
# CONSTANTS
# ==============================================================================

AGGREGATION_STRATEGY = {
    "large": {
        "threshold": 10000,
        "levels": ["yearly", "quarterly", "monthly", "weekly", "daily"],
        "defaultLevel": "monthly",
    },
    "medium": {
        "threshold": 1000,
        "levels": ["yearly", "quarterly", "monthly", "weekly"],
        "defaultLevel": "weekly",
    },
    "small": {
        "threshold": 0,
        "levels": ["yearly", "quarterly", "monthly"],
        "defaultLevel": "raw",
    },
}

CUMULATIVE_MARKERS = ("cumulative", "total", "supply", "marketcap", "market_cap")
DATE_VALUE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")
DATE_KEY_MARKERS = ("date", "time", "month")

_PERIOD_ALIASES = {"monthly": "M", "quarterly": "Q", "yearly": "Y"}


# ==============================================================================
# DATASET ANALYSIS
# ==============================================================================


def _looks_like_date_key(key: str, value: Any) -> bool:
    if any(marker in key for marker in DATE_KEY_MARKERS):
        return True
    return isinstance(value, str) and bool(DATE_VALUE_PATTERN.match(value))


def _field_name(spec: Any) -> Optional[str]:
    if isinstance(spec, dict):
        return spec.get("field")
    return spec if isinstance(spec, str) and spec else None


def _parse_dates(values: pd.Series) -> pd.Series:
    parsed = pd.to_datetime(values, errors="coerce", utc=True, format="mixed")
    return parsed.dt.tz_localize(None)


def analyze_dataset(rows: List[dict], mapping: Optional[dict] = None) -> dict:
    """Describe a chart's rows: x/y/groupBy fields, time-series flag and date range."""
    mapping = mapping or {}
    if not rows:
        return {
            "totalPoints": 0,
            "xField": None,
            "yFields": [],
            "groupBy": None,
            "isTimeSeries": False,
            "dateRange": None,
        }

    sample = rows[0]

    x_axis = mapping.get("xAxis")
    x_field = x_axis[0] if isinstance(x_axis, list) and x_axis else _field_name(x_axis)
    if not x_field:
        x_field = next((k for k, v in sample.items() if _looks_like_date_key(k, v)), None)
        if x_field is None and sample:
            x_field = next(iter(sample))

    y_axis = mapping.get("yAxis")
    if isinstance(y_axis, list):
        y_fields = [f for f in (_field_name(item) for item in y_axis) if f]
    else:
        y_fields = [f for f in [_field_name(y_axis)] if f]
    if not y_fields:
        y_fields = [
            k
            for k, v in sample.items()
            if k != x_field and isinstance(v, (int, float)) and not isinstance(v, bool)
        ]

    group_by = _field_name(mapping.get("groupBy"))

    date_range = None
    is_time_series = False
    if x_field:
        dates = _parse_dates(pd.Series([row.get(x_field) for row in rows])).dropna()
        is_time_series = not dates.empty
        if len(dates) > 1:
            start, end = dates.min(), dates.max()
            date_range = {
                "start": start.strftime("%Y-%m-%d"),
                "end": end.strftime("%Y-%m-%d"),
                "days": int((end - start).days),
            }

    return {
        "totalPoints": len(rows),
        "xField": x_field,
        "yFields": y_fields,
        "groupBy": group_by,
        "isTimeSeries": is_time_series,
        "dateRange": date_range,
    }


def choose_strategy(point_count: int) -> dict:
    """Strategy name, levels to build and default level for a dataset size."""
    for name in ("large", "medium"):
        if point_count > AGGREGATION_STRATEGY[name]["threshold"]:
            return {"name": name, **AGGREGATION_STRATEGY[name]}
    return {"name": "small", **AGGREGATION_STRATEGY["small"]}


def field_units(mapping: Optional[dict]) -> Dict[str, str]:
    """Map y field -> unit from a dataMapping (yAxisUnit or per-field unit)."""
    mapping = mapping or {}
    units: Dict[str, str] = {}
    y_axis = mapping.get("yAxis")
    if isinstance(y_axis, str) and mapping.get("yAxisUnit"):
        units[y_axis] = mapping["yAxisUnit"]
    elif isinstance(y_axis, dict) and y_axis.get("field") and y_axis.get("unit"):
        units[y_axis["field"]] = y_axis["unit"]
    elif isinstance(y_axis, list):
        for item in y_axis:
            if isinstance(item, dict) and item.get("field") and item.get("unit"):
                units[item["field"]] = item["unit"]
    return units


def percentage_field_map(chart_config: Optional[dict]) -> Dict[str, Dict[str, str]]:
    """additionalOptions.percentageFields -> {field: {numerator, denominator}}."""
    options = (chart_config or {}).get("additionalOptions") or {}
    result = {}
    for entry in options.get("percentageFields") or []:
        if entry.get("field"):
            result[entry["field"]] = {
                "numerator": entry.get("numeratorField"),
                "denominator": entry.get("denominatorField"),
            }
    return result


# ==============================================================================
# AGGREGATION
# ==============================================================================


def _period_start(dates: pd.Series, level: str) -> pd.Series:
    days = dates.dt.normalize()
    if level == "daily":
        return days
    if level == "weekly":
        return days - pd.to_timedelta(days.dt.weekday, unit="D")
    return dates.dt.to_period(_PERIOD_ALIASES[level]).dt.start_time


def _numeric(df: pd.DataFrame, field: Optional[str]) -> pd.Series:
    if not field or field not in df.columns:
        return pd.Series(float("nan"), index=df.index)
    return pd.to_numeric(df[field], errors="coerce")


def _is_cumulative(field: str) -> bool:
    lowered = field.lower()
    return any(marker in lowered for marker in CUMULATIVE_MARKERS)


def aggregate_rows(
    rows: List[dict],
    level: str,
    x_field: str,
    y_fields: List[str],
    group_by: Optional[str] = None,
    percentage_fields: Optional[Dict[str, Dict[str, str]]] = None,
    units: Optional[Dict[str, str]] = None,
) -> List[dict]:
    """Roll rows up to one level; ``raw`` returns the rows unchanged."""
    if not rows:
        return []
    if level == "raw":
        return list(rows)

    percentage_fields = percentage_fields or {}
    units = units or {}

    df = pd.DataFrame(rows)
    if x_field not in df.columns:
        return []
    df["_date"] = _parse_dates(df[x_field])
    df = df.dropna(subset=["_date"])
    if df.empty:
        return []

    work = pd.DataFrame({"_period": _period_start(df["_date"], level)}, index=df.index)
    keys = ["_period"]
    if group_by and group_by in df.columns:
        work[group_by] = df[group_by].astype(str)
        keys.append(group_by)

    agg: Dict[str, str] = {}
    for field in y_fields:
        ratio = percentage_fields.get(field)
        if _is_cumulative(field):
            work[field] = _numeric(df, field)
            agg[field] = "max"
        elif ratio:
            work[f"_{field}_num"] = _numeric(df, ratio.get("numerator")).fillna(0)
            work[f"_{field}_den"] = _numeric(df, ratio.get("denominator")).fillna(0)
            agg[f"_{field}_num"] = "sum"
            agg[f"_{field}_den"] = "sum"
        elif units.get(field) == "%":
            work[field] = _numeric(df, field)
            agg[field] = "mean"
        else:
            work[field] = _numeric(df, field).fillna(0)
            agg[field] = "sum"

    grouped = work.groupby(keys, sort=True)
    if agg:
        result = grouped.agg(agg).reset_index()
    else:
        result = grouped.size().reset_index()[keys]

    for field in y_fields:
        ratio = percentage_fields.get(field)
        if _is_cumulative(field):
            result[field] = result[field].fillna(0)
        elif ratio:
            num, den = result.pop(f"_{field}_num"), result.pop(f"_{field}_den")
            safe_den = den.where(den > 0, 1)
            result[field] = (num / safe_den * 100).round(2).where(den > 0, 0)
        elif units.get(field) == "%":
            result[field] = result[field].round(2).fillna(0)

    result[x_field] = result["_period"].dt.strftime("%Y-%m-%d")
    columns = [x_field] + [k for k in keys if k != "_period"] + [f for f in y_fields if f != x_field]
    return result[columns].to_dict(orient="records")


# ==============================================================================
# CHART AND PAGE OPTIMIZATION
# ==============================================================================


def optimize_chart(chart: dict, chart_config: Optional[dict] = None) -> dict:
    """Attach aggregatedData, aggregationMetadata and compressionStats to one chart entry."""
    rows = chart.get("data")
    if not chart.get("success", True) or not isinstance(rows, list):
        return chart

    mapping = (chart_config or {}).get("dataMapping") or {}
    analysis = analyze_dataset(rows, mapping)
    strategy = choose_strategy(analysis["totalPoints"])

    group_by = analysis["groupBy"] if (chart_config or {}).get("isStacked") else None
    percentages = percentage_field_map(chart_config)
    units = field_units(mapping)

    datasets: Dict[str, List[dict]] = {"raw": rows}
    if analysis["isTimeSeries"]:
        for level in strategy["levels"]:
            try:
                datasets[level] = aggregate_rows(
                    rows, level, analysis["xField"], analysis["yFields"], group_by, percentages, units
                )
            except Exception as e:
                print__aggregation_debug(f"❌ Failed to build {level} for {chart.get('chartId')}: {e}")

    optimized_points = {level: len(data) for level, data in datasets.items()}
    smallest = min(optimized_points.values()) if optimized_points else 0
    default_level = strategy["defaultLevel"] if strategy["defaultLevel"] in datasets else "raw"

    print__aggregation_debug(
        f"Chart {chart.get('chartId')}: {len(rows)} points, strategy {strategy['name']}, levels {optimized_points}"
    )

    return {
        **chart,
        "aggregatedData": datasets,
        "aggregationMetadata": {
            "analysis": analysis,
            "strategy": strategy["name"],
            "defaultLevel": default_level,
            "availableLevels": list(datasets.keys()),
            "dataMapping": {
                "xField": analysis["xField"],
                "yFields": analysis["yFields"],
                "groupByField": group_by,
            },
        },
        "originalDataLength": len(rows),
        "compressionStats": {
            "originalPoints": len(rows),
            "optimizedPoints": optimized_points,
            "compressionRatio": round((1 - smallest / len(rows)) * 100, 1) if rows else 0,
        },
        "data": datasets[default_level],
    }


def load_chart_config(page_id: str, chart_id: str, configs_dir: Optional[Path] = None) -> Optional[dict]:
    """Chart config from ``{configs_dir}/{page_id}.json`` ({charts: [...]}) by id."""
    config_path = Path(configs_dir or settings.CHART_CONFIGS_DIR) / f"{page_id}.json"
    if not config_path.exists():
        return None
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            charts = json.load(f).get("charts") or []
    except (OSError, json.JSONDecodeError) as e:
        print__aggregation_debug(f"Failed to load chart config {config_path}: {e}")
        return None
    return next((c for c in charts if c.get("id") == chart_id), None)


def read_page_file(path: Path) -> dict:
    """Read a page data file, gunzipping ``.gz`` files."""
    path = Path(path)
    if path.suffix == ".gz":
        with gzip.open(path, "rt", encoding="utf-8") as f:
            return json.load(f)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def optimize_page_file(src: Path, dest_dir: Path, configs_dir: Optional[Path] = None) -> Optional[dict]:
    """Optimize every chart of one page file and write ``{name}.json`` plus ``.json.gz`` into dest_dir.

    Returns:
        dict with file, originalSize, optimizedSize, sizeSavings, pointsReduction,
        or None when the file has no charts array
    """
    src = Path(src)
    dest_dir = Path(dest_dir)
    page_data = read_page_file(src)
    charts = page_data.get("charts")
    if not isinstance(charts, list):
        print__aggregation_debug(f"❌ No charts array found in {src}")
        return None

    page_id = page_data.get("pageId") or src.name.split(".")[0]
    processed = [
        optimize_chart(chart, load_chart_config(page_id, chart.get("chartId"), configs_dir))
        for chart in charts
    ]

    optimized = {
        **page_data,
        "charts": processed,
        "aggregationOptimized": True,
        "optimizedAt": datetime.now(timezone.utc).isoformat(),
        "totalOriginalPoints": sum(len(c.get("data") or []) for c in charts),
        "totalOptimizedPoints": sum(len(c.get("data") or []) for c in processed),
    }

    dest_dir.mkdir(parents=True, exist_ok=True)
    out_name = src.name[:-3] if src.name.endswith(".gz") else src.name
    out_path = dest_dir / out_name
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(optimized, f, indent=2, default=str)
    gz_path = dest_dir / f"{out_name}.gz"
    with gzip.open(gz_path, "wt", encoding="utf-8") as f:
        json.dump(optimized, f, default=str)

    original_size = src.stat().st_size
    optimized_size = gz_path.stat().st_size
    savings = round((original_size - optimized_size) / original_size * 100, 1) if original_size else 0.0

    print__aggregation_debug(
        f"✅ Optimized {src.name}: {original_size / 1024:.1f}KB → {optimized_size / 1024:.1f}KB ({savings}%)"
    )
    return {
        "file": out_name,
        "originalSize": original_size,
        "optimizedSize": optimized_size,
        "sizeSavings": savings,
        "pointsReduction": optimized["totalOriginalPoints"] - optimized["totalOptimizedPoints"],
    }


def optimize_directory(src_dir: Optional[Path] = None, configs_dir: Optional[Path] = None) -> dict:
    """Optimize every ``*.json`` / ``*.json.gz`` page file in src_dir into src_dir/aggregated."""
    src_dir = Path(src_dir or Path(settings.TEMP_DATA_DIR) / "chart-data")
    dest_dir = src_dir / "aggregated"

    files = sorted(
        p
        for p in src_dir.iterdir()
        if p.is_file()
        and (p.name.endswith(".json") or p.name.endswith(".json.gz"))
        and not p.name.startswith("_")
    )

    results = []
    for path in files:
        try:
            result = optimize_page_file(path, dest_dir, configs_dir)
        except (OSError, ValueError) as e:
            print__aggregation_debug(f"❌ Error processing {path}: {e}")
            continue
        if result:
            results.append(result)

    total_original = sum(r["originalSize"] for r in results)
    total_optimized = sum(r["optimizedSize"] for r in results)
    summary = {
        "optimizedAt": datetime.now(timezone.utc).isoformat(),
        "totalFiles": len(results),
        "totalSizeSavings": (
            f"{(total_original - total_optimized) / total_original * 100:.1f}%" if total_original else "0.0%"
        ),
        "originalSizeMB": f"{total_original / 1024 / 1024:.1f}",
        "optimizedSizeMB": f"{total_optimized / 1024 / 1024:.1f}",
        "totalPointsReduced": sum(r["pointsReduction"] for r in results),
        "results": sorted(results, key=lambda r: r["sizeSavings"], reverse=True),
    }

    if results:
        with open(dest_dir / "_optimization_summary.json", "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
    return summary
