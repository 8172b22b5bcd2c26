"""
MODULE_DESCRIPTION: API Configuration Settings - Global State and Application Constants

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

This module is the central configuration hub for the State of Solana dashboard
API. It defines the constants and shared state that the storage layer, the
cache tiers, the chart data routes and the natural-language chart helper read
at import time.

The module manages:
    - Application startup tracking (uptime)
    - S3 bucket, region and credentials
    - Cache TTLs for the in-memory widget caches
    - Local directories for pre-aggregated data, chart configs, navigation
      config, API catalog and NLP metadata cache
    - OpenAI settings for the natural-language helper
    - Rate limiting and per-IP throttling
    - JWT authentication settings

===================================================================================
KEY SETTINGS
===================================================================================

Storage:
    S3_BUCKET_NAME (str)
        - Bucket holding every JSON document (charts/, tables/, counters/,
          blog-articles/, user-data/)
        - Default: tl-state-of-solana

    AWS_REGION (str)
        - Default: us-east-1

    S3_ENDPOINT_URL (str | None)
        - Optional custom endpoint for S3-compatible stores (MinIO, R2)

    S3_LIST_BATCH_SIZE (int)
        - How many documents are fetched in parallel when a page index or a
          full listing is resolved into configs

Cache TTLs (seconds):
    PAGE_CHARTS_CACHE_TTL   = 300   (per-page and all-charts caches)
    CHART_CACHE_TTL         = 7200  (single chart by id)
    CHART_DATA_CACHE_TTL    = 300   (proxied chart data rows)

Local data:
    TEMP_DATA_DIR            - pre-aggregated / compressed chart data files
    CHART_CONFIGS_DIR        - local chart config JSON files (list/search)
    NAVIGATION_CONFIG_PATH   - menus and pages JSON document
    API_CATALOG_PATH         - static API catalog for the NLP helper
    METADATA_CACHE_DIR       - NLP metadata cache and analytics JSONL log

Chart data refresh:
    CHART_REFRESH_TIMEOUT (15 s per upstream request), CHART_REFRESH_BATCH_SIZE
    charts fetched in parallel, and AUTO_UPDATE_INTERVAL seconds (600) between
    two automatic refreshes.

Rate limiting:
    Sliding window of RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW seconds with a
    RATE_LIMIT_BURST allowance per 10 seconds; requests wait up to
    RATE_LIMIT_MAX_WAIT seconds before a 429 is returned.

===================================================================================
CONFIGURATION PATTERNS
===================================================================================

Environment Variable Loading:
    - Load .env file early (before other imports)
    - Use os.environ.get() with defaults
    - Type casting for numeric values

Example:
    PAGE_CHARTS_CACHE_TTL = int(os.environ.get("PAGE_CHARTS_CACHE_TTL", "300"))

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

import asyncio

# Standard imports
import time
from collections import defaultdict

# ============================================================
# CONFIGURATION AND CONSTANTS
# ============================================================

# Application startup time for uptime tracking
start_time = time.time()

# Memory growth (MB) above which the health endpoint reports high_memory
GC_MEMORY_THRESHOLD = int(os.environ.get("GC_MEMORY_THRESHOLD", "1900"))

# =======================================================================
# S3 STORAGE
# =======================================================================

S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME", "tl-state-of-solana")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
AWS_ACCESS_KEY_ID = os.environ.get("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.environ.get("AWS_SECRET_ACCESS_KEY")
S3_ENDPOINT_URL = os.environ.get("S3_ENDPOINT_URL") or None

# Parallel fetch width when resolving page indexes / full listings
S3_LIST_BATCH_SIZE = int(os.environ.get("S3_LIST_BATCH_SIZE", "10"))

# Upper bound of user-data files scanned for a public dashboard
PUBLIC_DASHBOARD_SCAN_LIMIT = 1000

# =======================================================================
# CACHE TTLS
# =======================================================================

PAGE_CHARTS_CACHE_TTL = int(os.environ.get("PAGE_CHARTS_CACHE_TTL", "300"))
CHART_CACHE_TTL = int(os.environ.get("CHART_CACHE_TTL", "7200"))
CHART_DATA_CACHE_TTL = int(os.environ.get("CHART_DATA_CACHE_TTL", "300"))

# =======================================================================
# LOCAL DATA LOCATIONS
# =======================================================================

TEMP_DATA_DIR = Path(os.environ.get("TEMP_DATA_DIR", str(BASE_DIR / "public" / "temp")))
CHART_CONFIGS_DIR = Path(
    os.environ.get("CHART_CONFIGS_DIR", str(BASE_DIR / "data" / "chart-configs"))
)
NAVIGATION_CONFIG_PATH = Path(
    os.environ.get("NAVIGATION_CONFIG_PATH", str(BASE_DIR / "data" / "navigation.json"))
)
API_CATALOG_PATH = Path(
    os.environ.get("API_CATALOG_PATH", str(BASE_DIR / "data" / "api_catalog.json"))
)
METADATA_CACHE_DIR = Path(os.environ.get("METADATA_CACHE_DIR", str(BASE_DIR / ".cache")))

# =======================================================================
# NATURAL-LANGUAGE CHART HELPER
# =======================================================================

OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4.1")
OPENAI_MAX_TOKENS = 1000
OPENAI_TEMPERATURE = 0.3

# Analytics log entries older than this are dropped on startup
ANALYTICS_RETENTION_DAYS = int(os.environ.get("ANALYTICS_RETENTION_DAYS", "30"))

# =======================================================================
# CHART DATA PROXY
# =======================================================================

CHART_DATA_USER_AGENT = "TopLedger-Charts/1.0"
CHART_DATA_TIMEOUT = int(os.environ.get("CHART_DATA_TIMEOUT", "30"))

# =======================================================================
# CHART DATA REFRESH
# =======================================================================

CHART_REFRESH_TIMEOUT = int(os.environ.get("CHART_REFRESH_TIMEOUT", "15"))
CHART_REFRESH_BATCH_SIZE = 3  # charts fetched in parallel per batch
CHART_REFRESH_REQUEST_DELAY = 0.2  # seconds between parameter combinations
CHART_REFRESH_BATCH_DELAY = 1.0  # seconds between batches
# Minimum seconds between two automatic refreshes
AUTO_UPDATE_INTERVAL = int(os.environ.get("AUTO_UPDATE_INTERVAL", "600"))

# =======================================================================
# RATE LIMITING
# =======================================================================

# Key: Client IP address, Value: List of Unix timestamps
rate_limit_storage = defaultdict(list)
RATE_LIMIT_REQUESTS = 100  # requests per window
RATE_LIMIT_WINDOW = 60  # 60 seconds window
RATE_LIMIT_BURST = 20  # burst limit for rapid requests
RATE_LIMIT_MAX_WAIT = 5  # maximum seconds to wait before giving up

# Throttling semaphores per IP to limit concurrent requests
throttle_semaphores = defaultdict(
    lambda: asyncio.Semaphore(8)
)  # Max 8 concurrent requests per IP

# =======================================================================
# AUTHENTICATION
# =======================================================================

GOOGLE_JWK_URL = "https://www.googleapis.com/oauth2/v3/certs"

# x-admin-auth value used by the share-chart flow; never counts as admin
SHARE_CHART_HEADER_VALUE = "share-chart-request"

# Global counter for tracking JWT 'kid' missing events to reduce log spam
_JWT_KID_MISSING_COUNT = 0
