"""
MODULE_DESCRIPTION: API Root Endpoint - Self-documenting Entry Point

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

GET / returns a structured catalog of every route of the State of Solana
dashboard API, grouped by the part of the site it serves:

- Dashboard widgets: charts, counters and tables placed on pages
- Chart data: upstream proxy plus the pre-aggregated and compressed page files
- Content: blog articles, navigation menu and personal/public dashboards
- NLP: the natural-language chart helper and its analytics
- System: health checks and cache maintenance

Interactive documentation lives at /docs (Swagger UI), /redoc and
/openapi.json. Routes marked "admin" require a Bearer token.
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
from datetime import datetime

from fastapi import APIRouter

router = APIRouter()


@router.get("/", tags=["root"])
async def api_root():
    """Welcome document with the categorized endpoint catalog."""
    return {
        "name": "State of Solana API",
        "version": "1.0.0",
        "description": "Backend for the State of Solana dashboards: widget configuration, "
        "chart data, blog content and a natural-language chart helper",
        "status": "operational",
        "timestamp": datetime.now().isoformat(),
        # ==============================================================================
        # DOCUMENTATION
        # ==============================================================================
        "documentation": {
            "swagger_ui": "/docs",
            "redoc": "/redoc",
            "openapi_spec": "/openapi.json",
        },
        # ==============================================================================
        # ENDPOINTS
        # ==============================================================================
        "endpoints": {
            "widgets": {
                "charts": {
                    "list": "GET /api/charts?page={pageId}&skipCache=",
                    "create": "POST /api/charts (admin)",
                    "config_files": "GET /api/charts/list",
                    "search": "POST /api/charts/search",
                    "get": "GET /api/charts/{chartId}",
                    "update": "PUT /api/charts/{chartId} (admin)",
                    "delete": "DELETE /api/charts/{chartId} (admin)",
                },
                "counters": {
                    "list": "GET /api/counters?page={pageId}&batch=",
                    "create": "POST /api/counters (admin)",
                    "delete": "DELETE /api/counters?id={counterId} (admin)",
                },
                "tables": {
                    "list": "GET /api/tables?page={pageId}",
                    "create": "POST /api/tables (admin)",
                    "get": "GET /api/tables/{tableId}",
                    "delete": "DELETE /api/tables/{tableId} (admin)",
                },
            },
            "chart_data": {
                "upstream": "GET /api/chart-data/{chartId}?{filters}",
                "aggregated": "GET /api/temp-data-aggregated/{pageId}?level=&chartId=&timeRange=",
                "compressed": "GET /api/temp-data-compressed/{pageId}",
                "refresh": "POST /api/update-temp-data (admin)",
                "auto_refresh": "GET|POST /api/auto-update-temp-data",
            },
            "content": {
                "blogs": {
                    "save": "POST /api/blogs/s3-save (admin)",
                    "list": "GET /api/blogs/s3-list",
                    "get": "GET /api/blogs/{slug}",
                    "toggle_hero": "POST /api/blogs/toggle-hero (admin)",
                    "delete": "DELETE /api/blogs/s3-delete (admin)",
                },
                "blog_analytics": {
                    "track": "POST /api/blog-analytics/track",
                    "get": "GET /api/blog-analytics/{slug}",
                },
                "navigation": {
                    "get": "GET /api/menu-config",
                    "update": "POST /api/update-menu-config (admin)",
                    "delete_page": "POST /api/delete-page (admin)",
                    "delete_menu": "POST /api/delete-menu (admin)",
                },
                "dashboards": {
                    "user_data": "GET|POST /api/user-data (signed in)",
                    "public": "GET /api/public-dashboard/{dashboardId}",
                },
            },
            "nlp": {
                "chart": "POST /api/nlp-chart",
                "info": "GET /api/nlp-chart",
                "report": "GET /api/analytics/report?days=7",
                "metrics": "GET /api/analytics/metrics?days=",
                "cache_stats": "GET /api/analytics/cache-stats",
                "feedback": "POST /api/analytics/feedback",
            },
            "system": {
                "health": "GET /health",
                "memory": "GET /health/memory",
                "rate_limits": "GET /health/rate-limits",
                "delete_batches": "DELETE /api/delete-batches (admin)",
                "clear_caches": "POST /api/cache/clear (admin)",
            },
        },
        # ==============================================================================
        # GETTING STARTED
        # ==============================================================================
        "getting_started": {
            "1": "Read the navigation with GET /api/menu-config",
            "2": "Load a page's widgets with GET /api/charts?page={pageId}",
            "3": "Fetch chart rows with GET /api/chart-data/{chartId}",
            "4": "Admin routes need Authorization: Bearer <token>",
        },
        "features": [
            "Per-page widget batch files in S3",
            "In-memory TTL caches with admin invalidation",
            "Time-series aggregation levels (daily/weekly/monthly/quarterly/yearly)",
            "Brotli compressed responses",
            "Output sanitization for public visitors",
            "Sliding-window rate limiting",
        ],
    }
