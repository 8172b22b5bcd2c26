"""Natural-language chart helper: catalog search, chart specs, metadata cache and analytics."""

from .analytics_tracker import AnalyticsTracker, get_analytics_tracker
from .catalog import ApiCatalog, ApiCatalogEntry, ApiSearchIndex, get_search_index, load_catalog
from .chart_spec import (
    ChartSpecBuilder,
    create_chart_spec_from_search_results,
    validate_chart_spec,
)
from .metadata_cache import MetadataCache, get_metadata_cache, normalize_query
from .pipeline import convert_to_legacy_format, fallback_pattern_matching, process_nlp_query

__all__ = [
    "ApiCatalog",
    "ApiCatalogEntry",
    "ApiSearchIndex",
    "load_catalog",
    "get_search_index",
    "ChartSpecBuilder",
    "create_chart_spec_from_search_results",
    "validate_chart_spec",
    "MetadataCache",
    "get_metadata_cache",
    "normalize_query",
    "AnalyticsTracker",
    "get_analytics_tracker",
    "process_nlp_query",
    "fallback_pattern_matching",
    "convert_to_legacy_format",
]
