"""Chart spec builder: turns catalog entries plus a query into a chart specification."""

import os
import sys

if sys.platform == "win32":
    import asyncio

    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from dotenv import load_dotenv

load_dotenv()

import re
from typing import Any, Dict, Iterable, List, Optional

from api.nlp.catalog import COLUMN_TYPES, ApiCatalogEntry
from api.utils.debug import print__nlp_debug

VALID_CHART_TYPES = ["line", "bar", "area", "scatter", "stacked_bar", "pie"]

METRIC_COLUMN_TYPES = ["volume", "price", "count", "percentage", "supply", "tvl", "metric"]

SERIES_COLORS = [
    "#3B82F6",
    "#EF4444",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#06B6D4",
    "#84CC16",
    "#F97316",
    "#6366F1",
]

HIGH_RELEVANCE_DOMAINS = ["dex", "stablecoins", "mev", "rev"]


# ============================================================
# COLUMN CLASSIFICATION
# ============================================================


def get_column_type(column: str) -> str:
    lower = column.lower()
    for column_type, patterns in COLUMN_TYPES.items():
        if any(pattern in lower for pattern in patterns):
            return column_type

    if "date" in lower or "time" in lower or "month" in lower:
        return "time"
    if "volume" in lower or "amount" in lower or "usd" in lower:
        return "volume"
    if "price" in lower or "rate" in lower:
        return "price"
    if "count" in lower or "number" in lower or "trades" in lower:
        return "count"
    if "pct" in lower or "percent" in lower:
        return "percentage"
    if "supply" in lower or "total" in lower:
        return "supply"
    if "tvl" in lower or "locked" in lower:
        return "tvl"
    return "metric"


def find_time_column(columns: Iterable[str]) -> Optional[str]:
    return next((c for c in columns if get_column_type(c) == "time"), None)


def find_metric_columns(columns: Iterable[str]) -> List[str]:
    # revenue and the avg_/max_ "metrics" family are not plotted by default
    return [c for c in columns if get_column_type(c) in METRIC_COLUMN_TYPES]


def suggest_chart_type(user_intent: Optional[str], columns: List[str]) -> str:
    """Pick a chart type from the wording of the query, then from the columns."""
    if user_intent:
        intent = user_intent.lower()
        if "compare" in intent or "vs" in intent:
            return "bar"
        if "trend" in intent or "over time" in intent:
            return "line"
        if "volume" in intent or "fill" in intent:
            return "area"
        if "correlation" in intent or "relationship" in intent:
            return "scatter"
        if "composition" in intent or "breakdown" in intent:
            return "stacked_bar"

    has_time = find_time_column(columns) is not None
    metrics = find_metric_columns(columns)
    has_volume = any(get_column_type(c) == "volume" for c in metrics)

    if has_time and len(metrics) > 1:
        return "line"
    if has_time and has_volume:
        return "area"
    if has_time:
        return "line"
    if len(metrics) > 1:
        return "bar"
    if has_volume:
        return "area"
    return "bar"


def format_column_label(column: str) -> str:
    """``block_date`` -> ``Block Date``, ``txCount`` -> ``Tx Count``."""
    label = column.replace("_", " ")
    label = re.sub(r"([A-Z])", r" \1", label)
    label = re.sub(r"\b\w", lambda m: m.group(0).upper(), label)
    return label.strip()


def confidence_score(
    domain: str, chart_type: str, time_column: Optional[str], metric_columns: List[str]
) -> float:
    score = 0.5
    if time_column:
        score += 0.2
    score += min(len(metric_columns) * 0.1, 0.3)

    if chart_type == "line" and time_column:
        score += 0.1
    if (
        chart_type == "area"
        and time_column
        and any(get_column_type(c) == "volume" for c in metric_columns)
    ):
        score += 0.1
    if chart_type == "bar" and metric_columns:
        score += 0.1

    if domain in HIGH_RELEVANCE_DOMAINS:
        score += 0.1

    return round(min(score, 1.0), 4)


# ============================================================
# BUILDER
# ============================================================


class ChartSpecBuilder:
    """Builds chart specs for APIs known to this builder."""

    def __init__(self, apis: Iterable[ApiCatalogEntry]):
        self.apis: Dict[str, ApiCatalogEntry] = {api.id: api for api in apis}

    def build(
        self,
        title: str,
        primary_api: str,
        secondary_api: Optional[str] = None,
        transform: Optional[str] = None,
        chart_type: Optional[str] = None,
        user_intent: Optional[str] = None,
    ) -> Dict[str, Any]:
        primary = self.apis.get(primary_api)
        if primary is None:
            raise ValueError(f"Primary API {primary_api} not found")

        columns = primary.columns
        final_chart_type = chart_type or suggest_chart_type(user_intent, columns)
        time_column = find_time_column(columns)
        metric_columns = find_metric_columns(columns)

        spec: Dict[str, Any] = {
            "title": title,
            "primary_api": primary_api,
            "chart_type": final_chart_type,
        }
        if secondary_api:
            spec["secondary_api"] = secondary_api
        if transform:
            spec["transform"] = transform

        if time_column:
            spec["x_axis"] = {
                "column": time_column,
                "type": "time",
                "label": format_column_label(time_column),
            }
        if metric_columns:
            first = metric_columns[0]
            spec["y_axis"] = {
                "column": first,
                "type": get_column_type(first),
                "label": format_column_label(first),
            }
            spec["series"] = [
                {
                    "column": col,
                    "type": get_column_type(col),
                    "label": format_column_label(col),
                    "color": SERIES_COLORS[index % len(SERIES_COLORS)],
                }
                for index, col in enumerate(metric_columns)
            ]

        suggested = ([time_column] if time_column else []) + metric_columns[:5]
        spec["metadata"] = {
            "description": f"{final_chart_type} chart showing {primary.title}",
            "domain": primary.domain,
            "keywords": list(primary.keywords),
            "suggested_columns": suggested,
            "confidence_score": confidence_score(
                primary.domain, final_chart_type, time_column, metric_columns
            ),
        }
        print__nlp_debug(
            f"📐 Built {final_chart_type} spec for {primary_api} "
            f"(confidence {spec['metadata']['confidence_score']})"
        )
        return spec


def create_chart_spec(
    apis: Iterable[ApiCatalogEntry],
    title: str,
    primary_api: str,
    secondary_api: Optional[str] = None,
    transform: Optional[str] = None,
    chart_type: Optional[str] = None,
    user_intent: Optional[str] = None,
) -> Dict[str, Any]:
    return ChartSpecBuilder(apis).build(
        title, primary_api, secondary_api, transform, chart_type, user_intent
    )


def create_chart_spec_from_search_results(
    apis: List[ApiCatalogEntry], query: str, preferred_chart_type: Optional[str] = None
) -> Dict[str, Any]:
    """Spec for the best search hit, joined with the runner-up when there is one.

    Raises:
        ValueError: no APIs given
    """
    if not apis:
        raise ValueError("No APIs provided for chart specification")

    primary = apis[0]
    secondary = apis[1] if len(apis) > 1 else None
    title = query[:1].upper() + query[1:]
    transform = (
        f"JOIN {primary.title} AND {secondary.title} ON date/time column" if secondary else None
    )
    chart_type = preferred_chart_type or (primary.chart_types or [None])[0]

    return create_chart_spec(
        apis,
        title=title,
        primary_api=primary.id,
        secondary_api=secondary.id if secondary else None,
        transform=transform,
        chart_type=chart_type,
        user_intent=query,
    )


def validate_chart_spec(spec: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    warnings: List[str] = []

    if not spec.get("title"):
        errors.append("Title is required")
    if not spec.get("primary_api"):
        errors.append("Primary API is required")
    if not spec.get("chart_type"):
        errors.append("Chart type is required")
    if spec.get("chart_type") not in VALID_CHART_TYPES:
        errors.append(f"Invalid chart type: {spec.get('chart_type')}")

    confidence = (spec.get("metadata") or {}).get("confidence_score")
    if confidence and confidence < 0.5:
        warnings.append("Low confidence score - chart spec may need refinement")

    if not spec.get("x_axis") and not spec.get("y_axis"):
        warnings.append("No axis specifications provided")

    return {"valid": not errors, "errors": errors, "warnings": warnings}
