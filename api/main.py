"""State of Solana FastAPI Backend Application

This module is the entry point of the backend behind the State of Solana
dashboards. It wires together:

- S3-backed widget storage (charts, counters, tables) with per-page batch files
- the chart-data proxy and the pre-aggregated / compressed page data files
- blog articles, the navigation menu and personal/public dashboards
- the natural-language chart helper with its metadata cache and analytics log

Startup sequence (lifespan):
    1. Record startup time and log the memory baseline
    2. Create the S3 client (when credentials are configured)
    3. Load the API catalog search index
    4. Load the NLP metadata cache from disk and drop expired entries
    5. Drop analytics log entries older than the retention window

Shutdown sequence:
    1. Persist the NLP metadata cache
    2. Log final memory statistics

Middleware (outermost first): CORS, Brotli compression, throttling.

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

# ==============================================================================
# CRITICAL WINDOWS COMPATIBILITY SETUP
# ==============================================================================
# MUST BE FIRST: Set Windows event loop policy before ANY other imports
import os
import sys

if sys.platform == "win32":
    import asyncio

    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# ==============================================================================
# ENVIRONMENT VARIABLES LOADING
# ==============================================================================
from dotenv import load_dotenv

load_dotenv()

# ==============================================================================
# PROJECT ROOT DIRECTORY CONFIGURATION
# ==============================================================================
try:
    from pathlib import Path

    BASE_DIR = Path(__file__).resolve().parents[1]
except NameError:
    BASE_DIR = Path(os.getcwd())

if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

# ==============================================================================
# STANDARD LIBRARY AND THIRD-PARTY IMPORTS
# ==============================================================================
from contextlib import asynccontextmanager
from datetime import datetime

import psutil
from fastapi import FastAPI

from api.middleware.cors import setup_brotli_middleware, setup_cors_middleware
from api.middleware.rate_limiting import setup_throttling_middleware
from api.exceptions.handlers import register_exception_handlers

# ==============================================================================
# CONFIGURATION AND UTILITIES
# ==============================================================================
from api.config.settings import ANALYTICS_RETENTION_DAYS, GC_MEMORY_THRESHOLD
from api.utils.debug import print__memory_monitoring, print__startup_debug
from api.utils.memory import log_memory_usage

# ==============================================================================
# DOMAIN SERVICES
# ==============================================================================
from api.nlp.analytics_tracker import get_analytics_tracker
from api.nlp.catalog import get_search_index
from api.nlp.metadata_cache import get_metadata_cache
from api.storage.s3 import get_s3_client, s3_configured

# ==============================================================================
# ROUTE MODULES
# ==============================================================================
from api.routes import (
    blogs_router,
    chart_data_router,
    charts_router,
    counters_router,
    dashboards_router,
    data_refresh_router,
    health_router,
    maintenance_router,
    menu_router,
    nlp_router,
    root_router,
    tables_router,
)

_APP_STARTUP_TIME = None
_MEMORY_BASELINE = None


# ==============================================================================
# APPLICATION LIFESPAN MANAGEMENT
# ==============================================================================
@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Load the shared services on startup and persist the NLP cache on shutdown."""
    # pylint: disable=global-statement
    global _APP_STARTUP_TIME, _MEMORY_BASELINE
    _APP_STARTUP_TIME = datetime.now()

    print__startup_debug("🚀 FastAPI application starting up...")
    log_memory_usage("app_startup")

    if s3_configured():
        get_s3_client()
        print__startup_debug("✅ S3 client ready")
    else:
        print__startup_debug("⚠️ S3 credentials not configured, S3-backed routes will be empty")

    catalog_stats = get_search_index().get_stats()
    print__startup_debug(f"📚 API catalog loaded: {catalog_stats['totalApis']} entries")

    cache = get_metadata_cache()
    cache.load_cache()
    expired = cache.cleanup_expired()
    print__startup_debug(f"💾 Metadata cache loaded: {cache.size()} entries ({expired} expired removed)")

    removed_logs = get_analytics_tracker().cleanup_old_logs(ANALYTICS_RETENTION_DAYS)
    if removed_logs:
        print__startup_debug(f"🧹 Removed {removed_logs} analytics entries older than {ANALYTICS_RETENTION_DAYS} days")

    try:
        _MEMORY_BASELINE = psutil.Process().memory_info().rss / 1024 / 1024
        print__memory_monitoring(f"Memory baseline established: {_MEMORY_BASELINE:.1f}MB RSS")
    except psutil.Error as e:
        print__memory_monitoring(f"⚠️ Could not read memory baseline: {e}")

    log_memory_usage("app_ready")
    print__startup_debug("✅ FastAPI application ready to serve requests")

    yield

    print__startup_debug("🛑 FastAPI application shutting down...")
    print__memory_monitoring(f"Application ran for {datetime.now() - _APP_STARTUP_TIME}")

    get_metadata_cache().save_cache()

    if _MEMORY_BASELINE:
        final_memory = psutil.Process().memory_info().rss / 1024 / 1024
        total_growth = final_memory - _MEMORY_BASELINE
        print__memory_monitoring(
            f"Final memory stats: Started={_MEMORY_BASELINE:.1f}MB, "
            f"Final={final_memory:.1f}MB, Growth={total_growth:.1f}MB"
        )
        if total_growth > GC_MEMORY_THRESHOLD:
            print__memory_monitoring("🚨 SIGNIFICANT MEMORY GROWTH DETECTED - investigate for leaks!")


# ==============================================================================
# FASTAPI APPLICATION INITIALIZATION
# ==============================================================================
app = FastAPI(
    title="State of Solana API",
    description="""Backend for the State of Solana analytics dashboards.

## Features
- 📊 Chart, counter and table widgets stored in S3 with per-page batches
- ⚡ Pre-aggregated time series (daily to yearly) and compressed page data
- 🔄 Page data refresh from the upstream chart APIs
- 📝 Blog articles with hero selection and view tracking
- 🤖 Natural-language chart helper backed by an API catalog

## Authentication
Write routes (and the personal dashboards) require a Bearer token. Chart
reads are sanitized to the public fields unless the request comes from the
admin UI (an `x-admin-auth` header other than the share-chart marker, or a
referer under `/admin/`).
    """,
    version="1.0.0",
    lifespan=lifespan,
    responses={
        401: {
            "description": "Unauthorized - Invalid or missing authentication token",
            "content": {"application/json": {"example": {"detail": "Missing Authorization header"}}},
        },
        429: {
            "description": "Rate Limit Exceeded - Too many requests",
            "content": {
                "application/json": {
                    "example": {
                        "detail": "Rate limit exceeded. Please wait 5.0s before retrying.",
                        "retry_after": 5,
                    }
                }
            },
        },
        500: {
            "description": "Internal Server Error",
            "content": {"application/json": {"example": {"detail": "Internal server error"}}},
        },
    },
)

# ==============================================================================
# MIDDLEWARE REGISTRATION
# ==============================================================================
setup_cors_middleware(app)
setup_brotli_middleware(app)
setup_throttling_middleware(app)

# ==============================================================================
# EXCEPTION HANDLERS
# ==============================================================================
register_exception_handlers(app)

# ==============================================================================
# ROUTE REGISTRATION
# ==============================================================================
print__memory_monitoring("[ROUTES] Registering route routers...")

app.include_router(root_router, tags=["Root"])
app.include_router(health_router, tags=["Health & Monitoring"])
app.include_router(charts_router, tags=["Charts"])
app.include_router(counters_router, tags=["Counters"])
app.include_router(tables_router, tags=["Tables"])
app.include_router(chart_data_router, tags=["Chart Data"])
app.include_router(data_refresh_router, tags=["Chart Data"])
app.include_router(blogs_router, tags=["Blogs"])
app.include_router(menu_router, tags=["Navigation"])
app.include_router(dashboards_router, tags=["Dashboards"])
app.include_router(nlp_router, tags=["NLP & Analytics"])
app.include_router(maintenance_router, tags=["Maintenance"])

print__memory_monitoring("[SUCCESS] All route routers registered successfully")
