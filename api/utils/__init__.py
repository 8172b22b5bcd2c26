"""
Utility functions package for the API server.

This package contains debug utilities, memory management, rate limiting,
and chart sanitization for the State of Solana dashboard API.
"""

# Debug utilities
from .debug import (
    print__aggregation_debug,
    print__analytics_debug,
    print__api_debug,
    print__blogs_debug,
    print__cache_debug,
    print__chart_data_debug,
    print__charts_debug,
    print__counters_debug,
    print__dashboards_debug,
    print__debug,
    print__memory_monitoring,
    print__menu_debug,
    print__nlp_debug,
    print__s3_debug,
    print__startup_debug,
    print__tables_debug,
    print__token_debug,
)

# Memory management utilities
from .memory import (
    check_memory_and_gc,
    cleanup_expired_caches,
    log_comprehensive_error,
    log_memory_usage,
)

# Rate limiting utilities
from .rate_limiting import (
    check_rate_limit,
    check_rate_limit_with_throttling,
    get_rate_limit_status,
    wait_for_rate_limit,
)

# Chart sanitization
from .sanitizer import (
    PUBLIC_CHART_FIELDS,
    is_admin_headers,
    sanitize_chart_config,
    sanitize_chart_configs,
)

# Export all utilities for easy access
__all__ = [
    # Debug utilities
    "print__debug",
    "print__startup_debug",
    "print__memory_monitoring",
    "print__token_debug",
    "print__api_debug",
    "print__s3_debug",
    "print__cache_debug",
    "print__charts_debug",
    "print__counters_debug",
    "print__tables_debug",
    "print__chart_data_debug",
    "print__aggregation_debug",
    "print__blogs_debug",
    "print__dashboards_debug",
    "print__menu_debug",
    "print__nlp_debug",
    "print__analytics_debug",
    # Memory management utilities
    "check_memory_and_gc",
    "cleanup_expired_caches",
    "log_memory_usage",
    "log_comprehensive_error",
    # Rate limiting utilities
    "check_rate_limit_with_throttling",
    "wait_for_rate_limit",
    "check_rate_limit",
    "get_rate_limit_status",
    # Chart sanitization
    "PUBLIC_CHART_FIELDS",
    "sanitize_chart_config",
    "sanitize_chart_configs",
    "is_admin_headers",
]
