"""
Configuration package for the API server.

This package contains settings, constants, and configuration management
for the State of Solana dashboard API.
"""

# Import key configuration items for easier access
from .settings import (  # Storage; Cache TTLs; Local data; Rate limiting; JWT settings
    API_CATALOG_PATH,
    AWS_REGION,
    BASE_DIR,
    CHART_CACHE_TTL,
    CHART_CONFIGS_DIR,
    CHART_DATA_CACHE_TTL,
    GOOGLE_JWK_URL,
    METADATA_CACHE_DIR,
    NAVIGATION_CONFIG_PATH,
    PAGE_CHARTS_CACHE_TTL,
    RATE_LIMIT_BURST,
    RATE_LIMIT_MAX_WAIT,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW,
    S3_BUCKET_NAME,
    S3_LIST_BATCH_SIZE,
    TEMP_DATA_DIR,
    rate_limit_storage,
    start_time,
    throttle_semaphores,
)

__all__ = [
    "BASE_DIR",
    "start_time",
    "S3_BUCKET_NAME",
    "AWS_REGION",
    "S3_LIST_BATCH_SIZE",
    "PAGE_CHARTS_CACHE_TTL",
    "CHART_CACHE_TTL",
    "CHART_DATA_CACHE_TTL",
    "TEMP_DATA_DIR",
    "CHART_CONFIGS_DIR",
    "NAVIGATION_CONFIG_PATH",
    "API_CATALOG_PATH",
    "METADATA_CACHE_DIR",
    "rate_limit_storage",
    "RATE_LIMIT_REQUESTS",
    "RATE_LIMIT_WINDOW",
    "RATE_LIMIT_BURST",
    "RATE_LIMIT_MAX_WAIT",
    "throttle_semaphores",
    "GOOGLE_JWK_URL",
]
