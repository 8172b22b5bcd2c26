"""
Routes package for the API server.

This package contains FastAPI route handlers for health checks, dashboard
widgets (charts, counters, tables), chart data and its refresh, blog articles, navigation,
user dashboards and the NLP chart helper of the State of Solana backend.
"""

# CRITICAL: Set Windows event loop policy FIRST, before any other imports
import sys
import os

if sys.platform == "win32":
    import asyncio

    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Load environment variables early
from dotenv import load_dotenv

load_dotenv()

# Routes module initialization
from .health import router as health_router
from .root import router as root_router
from .charts import router as charts_router
from .counters import router as counters_router
from .tables import router as tables_router
from .maintenance import router as maintenance_router
from .chart_data import router as chart_data_router
from .data_refresh import router as data_refresh_router
from .blogs import router as blogs_router
from .dashboards import router as dashboards_router
from .menu import router as menu_router
from .nlp import router as nlp_router

# Export all routers for easy import
__all__ = [
    "health_router",
    "root_router",
    "charts_router",
    "counters_router",
    "tables_router",
    "maintenance_router",
    "chart_data_router",
    "data_refresh_router",
    "blogs_router",
    "dashboards_router",
    "menu_router",
    "nlp_router",
]
