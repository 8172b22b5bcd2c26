"""Memory Monitoring and Cache Housekeeping

This module provides the memory helpers used by the dashboard API:

1. **Memory logging**: current RSS via psutil, tagged with a context string.
2. **Threshold check**: when RSS passes 80% of GC_MEMORY_THRESHOLD the expired
   entries of every in-memory TTL cache are swept; above the threshold a full
   garbage collection is forced.
3. **Error logging**: structured JSON error reports, optionally enriched with
   request method, URL and client IP.

The TTL caches themselves live in api.storage.page_cache and register
themselves by name, so this module can sweep them without knowing which routes
created them.
"""

# ============================================================
# IMPORTS
# ============================================================
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

import gc
import json
from datetime import datetime

# ============================================================
# THIRD-PARTY IMPORTS
# ============================================================
import psutil
from fastapi import Request

# ============================================================
# INTERNAL IMPORTS
# ============================================================
from api.config.settings import GC_MEMORY_THRESHOLD
from api.utils.debug import print__memory_monitoring


# ============================================================
# UTILITY FUNCTIONS - MEMORY MANAGEMENT
# ============================================================


def get_rss_mb() -> float:
    """Current resident set size of this process in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


def cleanup_expired_caches() -> dict:
    """Remove expired entries from every registered TTL cache.

    Returns:
        dict: cache name -> number of entries removed
    """
    from api.storage.page_cache import CACHE_REGISTRY

    removed = {}
    for name, cache in list(CACHE_REGISTRY.items()):
        removed[name] = cache.cleanup()

    total = sum(removed.values())
    if total:
        print__memory_monitoring(f"🧹 Removed {total} expired cache entries: {removed}")
    return removed


def check_memory_and_gc():
    """Memory check with cache cleanup and GC.

    - At 80% of GC_MEMORY_THRESHOLD: sweep expired TTL cache entries
    - Above the threshold: force garbage collection

    Returns:
        float: RSS in MB after cleanup, 0 if the check failed
    """
    try:
        rss_mb = get_rss_mb()

        if rss_mb > (GC_MEMORY_THRESHOLD * 0.8):
            print__memory_monitoring(
                f"📊 Memory at {rss_mb:.1f}MB (80% of {GC_MEMORY_THRESHOLD}MB threshold) - cleaning caches"
            )
            removed = cleanup_expired_caches()
            if sum(removed.values()) > 0:
                rss_mb = get_rss_mb()

        if rss_mb > GC_MEMORY_THRESHOLD:
            print__memory_monitoring(
                f"🚨 MEMORY THRESHOLD EXCEEDED: {rss_mb:.1f}MB > {GC_MEMORY_THRESHOLD}MB - forcing GC"
            )
            collected = gc.collect()
            new_rss = get_rss_mb()
            print__memory_monitoring(
                f"🧹 GC collected {collected} objects | {rss_mb:.1f}MB → {new_rss:.1f}MB"
            )
            rss_mb = new_rss

        return rss_mb

    except Exception as e:
        print__memory_monitoring(f"❌ Could not check memory: {e}")
        return 0


def log_memory_usage(context: str = ""):
    """Simplified memory logging with optional context.

    Logs current memory usage (RSS) to the debug output. If memory
    exceeds the configured threshold, automatically triggers memory
    check and cleanup operations.

    Args:
        context (str, optional): Descriptive context for the log entry
                               (e.g., "startup", "shutdown")
    """
    try:
        rss_mb = get_rss_mb()

        print__memory_monitoring(
            f"📊 Memory usage{f' [{context}]' if context else ''}: {rss_mb:.1f}MB RSS"
        )

        if rss_mb > GC_MEMORY_THRESHOLD:
            check_memory_and_gc()

    except Exception as e:
        print__memory_monitoring(f"❌ Could not check memory usage: {e}")


def log_comprehensive_error(context: str, error: Exception, request: Request = None):
    """Log comprehensive error information with context.

    Creates a detailed error report including error type, message,
    timestamp, and optional request information, dumped as JSON through
    api.utils.debug.print__debug.

    Args:
        context (str): Description of where/when the error occurred
        error (Exception): The exception that was raised
        request (Request, optional): FastAPI request object for additional context
    """
    from api.utils.debug import print__debug

    error_details = {
        "context": context,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "timestamp": datetime.now().isoformat(),
    }

    if request:
        error_details.update(
            {
                "method": request.method,
                "url": str(request.url),
                "client_ip": request.client.host if request.client else "unknown",
            }
        )

    print__debug(f"🚨 ERROR: {json.dumps(error_details, indent=2)}")
