"""
MODULE_DESCRIPTION: Health Check Endpoints - System Monitoring and Diagnostics

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Health endpoints for load balancers and uptime monitoring of the State of
Solana dashboard API. None of them need authentication and all of them are
exempt from rate limiting.

1. /health             - overall status, memory, storage and catalog
2. /health/memory      - RSS against GC_MEMORY_THRESHOLD plus TTL cache sizes
3. /health/rate-limits - tracked clients and configured limits

===================================================================================
API ENDPOINTS
===================================================================================

GET /health
    Returns:
        {
            "status": "healthy",          # or "degraded" without S3 credentials
            "timestamp": "2024-10-01T12:00:00",
            "uptime_seconds": 3600.5,
            "memory": {"rss_mb": 210.5, "vms_mb": 900.0, "percent": 1.2},
            "storage": {"bucket": "tl-state-of-solana", "configured": true},
            "catalog": {"entries": 42, "version": "1.0.0"},
            "garbage_collector": {"objects_collected": 150, "gc_run": true},
            "version": "1.0.0"
        }

    A missing S3 configuration still answers 200: the public chart-data and
    NLP routes keep working, only S3-backed widgets are unavailable.

GET /health/memory
    Status levels:
        healthy:     < 80% of threshold
        warning:     80-100% of threshold
        high_memory: > threshold

    Expired TTL cache entries are swept on every call.

GET /health/rate-limits
    Sliding-window limiter state (see api.utils.rate_limiting).
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
import gc
import time
from datetime import datetime

import psutil
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.config import settings
from api.helpers import traceback_json_response
from api.nlp.catalog import get_search_index
from api.storage.page_cache import CACHE_REGISTRY
from api.storage.s3 import s3_configured
from api.utils.memory import cleanup_expired_caches
from api.utils.rate_limiting import get_rate_limit_status

# Create router for health endpoints
router = APIRouter()

API_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Overall health: memory, storage configuration and catalog size."""
    try:
        process = psutil.Process()
        memory_info = process.memory_info()
        memory_percent = process.memory_percent()

        storage_configured = s3_configured()
        catalog_stats = get_search_index().get_stats()

        health_data = {
            "status": "healthy" if storage_configured else "degraded",
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": time.time() - settings.start_time,
            "memory": {
                "rss_mb": round(memory_info.rss / 1024 / 1024, 2),
                "vms_mb": round(memory_info.vms / 1024 / 1024, 2),
                "percent": round(memory_percent, 2),
            },
            "storage": {
                "bucket": settings.S3_BUCKET_NAME,
                "configured": storage_configured,
            },
            "catalog": {
                "entries": catalog_stats["totalApis"],
                "version": catalog_stats["version"],
            },
            "version": API_VERSION,
        }

        collected = gc.collect()
        health_data["garbage_collector"] = {
            "objects_collected": collected,
            "gc_run": True,
        }
        return health_data

    except Exception as e:
        resp = traceback_json_response(e)
        if resp:
            return resp
        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "error": str(e),
                "timestamp": datetime.now().isoformat(),
            },
        )


@router.get("/health/memory")
async def memory_health_check():
    """Memory status with a sweep of the in-memory TTL caches."""
    try:
        rss_mb = psutil.Process().memory_info().rss / 1024 / 1024
        cleaned = cleanup_expired_caches()
        threshold = settings.GC_MEMORY_THRESHOLD

        status = "healthy"
        if rss_mb > threshold:
            status = "high_memory"
        elif rss_mb > (threshold * 0.8):
            status = "warning"

        return {
            "status": status,
            "memory_rss_mb": round(rss_mb, 1),
            "memory_threshold_mb": threshold,
            "memory_usage_percent": round((rss_mb / threshold) * 100, 1),
            "over_threshold": rss_mb > threshold,
            "cache_info": {
                "entries": {name: len(cache) for name, cache in CACHE_REGISTRY.items()},
                "cleaned_expired_entries": sum(cleaned.values()),
                "ttl_seconds": {name: cache.ttl_seconds for name, cache in CACHE_REGISTRY.items()},
            },
            "timestamp": datetime.now().isoformat(),
        }
    except Exception as e:
        resp = traceback_json_response(e)
        if resp:
            return resp
        return {
            "status": "error",
            "error": str(e),
            "timestamp": datetime.now().isoformat(),
        }


@router.get("/health/rate-limits")
async def rate_limit_health_check():
    """Rate limiting health check."""
    try:
        return {
            "status": "healthy",
            **get_rate_limit_status(),
            "timestamp": datetime.now().isoformat(),
        }
    except Exception as e:
        resp = traceback_json_response(e)
        if resp:
            return resp
        return {
            "status": "error",
            "error": str(e),
            "timestamp": datetime.now().isoformat(),
        }
