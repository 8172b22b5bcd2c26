"""Aggregation level selection for pre-aggregated chart data.

A pre-aggregated page file holds, per chart, ``aggregatedData`` keyed by level
(raw, daily, weekly, monthly, quarterly, yearly). At request time one level is
picked per chart, either the level the client asked for (or its nearest
available neighbour) or a level chosen from the request context.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from api.utils.debug import print__aggregation_debug

AGGREGATION_PRIORITY = ["raw", "daily", "weekly", "monthly", "quarterly", "yearly"]

# Most aggregated first
PERFORMANCE_ORDER = list(reversed(AGGREGATION_PRIORITY))

TIME_RANGE_PREFERENCES: Dict[str, List[str]] = {
    "D": ["raw", "daily"],
    "W": ["daily", "raw"],
    "M": ["weekly", "daily"],
    "Q": ["monthly", "weekly"],
    "Y": ["quarterly", "monthly"],
    "ALL": ["yearly", "quarterly"],
}
DEFAULT_TIME_RANGE_PREFERENCE = ["monthly", "weekly"]


def select_specific_level(requested: str, available: Sequence[str]) -> Optional[str]:
    """The requested level, else its nearest available neighbour, else the first available.

    At each distance the finer (lower priority index) neighbour is tried first.
    """
    if not available:
        return None
    if requested in available:
        return requested

    if requested in AGGREGATION_PRIORITY:
        index = AGGREGATION_PRIORITY.index(requested)
        for offset in range(1, len(AGGREGATION_PRIORITY)):
            lower, higher = index - offset, index + offset
            if lower >= 0 and AGGREGATION_PRIORITY[lower] in available:
                return AGGREGATION_PRIORITY[lower]
            if higher < len(AGGREGATION_PRIORITY) and AGGREGATION_PRIORITY[higher] in available:
                return AGGREGATION_PRIORITY[higher]

    return available[0]


def _default_or_first(available: Sequence[str], default_level: Optional[str]) -> str:
    if default_level and default_level in available:
        return default_level
    return available[0]


def select_level_by_context(
    available: Sequence[str],
    default_level: Optional[str] = None,
    time_range: Optional[str] = None,
    performance: bool = False,
) -> Tuple[Optional[str], str]:
    """Pick a level from the request context.

    Returns:
        (level, reason) with reason performance-optimized, time-range-optimized
        or default. Level is None only when nothing is available.
    """
    if not available:
        return None, "default"

    if performance:
        level = next((lvl for lvl in PERFORMANCE_ORDER if lvl in available), available[0])
        return level, "performance-optimized"

    if time_range:
        preferences = TIME_RANGE_PREFERENCES.get(time_range, DEFAULT_TIME_RANGE_PREFERENCE)
        for level in preferences:
            if level in available:
                return level, "time-range-optimized"
        return _default_or_first(available, default_level), "time-range-optimized"

    return _default_or_first(available, default_level), "default"


def _is_intelligent(level: Optional[str]) -> bool:
    return not level or level == "auto"


def apply_level_to_chart(
    chart: dict,
    level: Optional[str] = None,
    time_range: Optional[str] = None,
    performance: bool = False,
) -> dict:
    """Return a copy of the chart whose ``data`` is the selected level's rows."""
    aggregated = chart.get("aggregatedData")
    if not aggregated:
        return chart

    available = list(aggregated.keys())
    result = dict(chart)

    if _is_intelligent(level):
        metadata = chart.get("aggregationMetadata")
        if not metadata:
            return chart
        selected, reason = select_level_by_context(
            available, metadata.get("defaultLevel"), time_range, performance
        )
        result["selectionReason"] = reason
    else:
        selected = select_specific_level(level, available)

    result["data"] = aggregated[selected]
    result["selectedAggregationLevel"] = selected
    result["availableAggregationLevels"] = available
    print__aggregation_debug(
        f"Chart {chart.get('chartId')}: selected '{selected}' ({len(result['data'])} points) from {available}"
    )
    return result


def apply_levels_to_page(
    page_data: dict,
    level: Optional[str] = None,
    chart_id: Optional[str] = None,
    time_range: Optional[str] = None,
    performance: bool = False,
) -> dict:
    """Apply level selection to every chart of a page file (only chart_id when given)."""
    charts = []
    for chart in page_data.get("charts", []):
        if chart_id and chart.get("chartId") != chart_id:
            charts.append(chart)
        else:
            charts.append(apply_level_to_chart(chart, level, time_range, performance))

    if _is_intelligent(level):
        response_metadata = {
            "levelSelection": "intelligent",
            "context": {"timeRange": time_range, "preferPerformance": performance},
        }
    else:
        response_metadata = {"requestedLevel": level, "levelSelection": "specific"}

    return {**page_data, "charts": charts, "responseMetadata": response_metadata}
