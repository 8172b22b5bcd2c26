"""Pre-aggregated chart data: level selection at request time, the offline optimizer and the upstream refresh."""

from .fetcher import refresh_chart_data
from .levels import (
    AGGREGATION_PRIORITY,
    apply_level_to_chart,
    apply_levels_to_page,
    select_level_by_context,
    select_specific_level,
)

__all__ = [
    "AGGREGATION_PRIORITY",
    "select_specific_level",
    "select_level_by_context",
    "apply_level_to_chart",
    "apply_levels_to_page",
    "refresh_chart_data",
]
