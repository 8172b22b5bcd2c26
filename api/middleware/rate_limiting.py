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
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.config.settings import throttle_semaphores
from api.utils.debug import print__memory_monitoring
from api.utils.memory import log_comprehensive_error
from api.utils.rate_limiting import (
    check_rate_limit,
    check_rate_limit_with_throttling,
    wait_for_rate_limit,
)

# Monitoring and docs must stay reachable under load
EXEMPT_PATHS = ("/health", "/docs", "/openapi.json")


def _is_exempt(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in EXEMPT_PATHS)


# ==============================================================================
# RATE LIMITING MIDDLEWARE
# ==============================================================================
async def throttling_middleware(request: Request, call_next):
    """Throttle per client IP: wait for capacity first, reject with 429 only after that.

    Concurrency per IP is capped by a semaphore (8); the sliding-window limiter
    allows 100 requests per 60 s with bursts of 20 per 10 s.

    Rate Limit Response (429):
        {
            "detail": "Rate limit exceeded. Please wait Xs before retrying.",
            "retry_after": X,
            "burst_usage": "Y/Z",
            "window_usage": "A/B"
        }
    """
    if _is_exempt(request.url.path):
        return await call_next(request)

    client_ip = request.client.host if request.client else "unknown"

    semaphore = throttle_semaphores[client_ip]
    async with semaphore:
        # Under the limits: admit at once, otherwise wait for capacity
        if not (check_rate_limit(client_ip) or await wait_for_rate_limit(client_ip)):
            rate_info = check_rate_limit_with_throttling(client_ip)
            error_msg = (
                f"Rate limit exceeded for IP: {client_ip} after waiting. "
                f"Burst: {rate_info['burst_count']}/{rate_info['burst_limit']}, "
                f"Window: {rate_info['window_count']}/{rate_info['window_limit']}"
            )
            log_comprehensive_error(
                "rate_limit_exceeded_after_wait", Exception(error_msg), request
            )

            retry_after = max(rate_info["suggested_wait"], 1)
            return JSONResponse(
                status_code=429,
                content={
                    "detail": (
                        f"Rate limit exceeded. Please wait "
                        f"{rate_info['suggested_wait']:.1f}s before retrying."
                    ),
                    "retry_after": retry_after,
                    "burst_usage": f"{rate_info['burst_count']}/{rate_info['burst_limit']}",
                    "window_usage": f"{rate_info['window_count']}/{rate_info['window_limit']}",
                },
                headers={"Retry-After": str(max(int(rate_info["suggested_wait"]), 1))},
            )

        return await call_next(request)


# ==============================================================================
# MIDDLEWARE SETUP FUNCTION
# ==============================================================================
def setup_throttling_middleware(app: FastAPI):
    """Register the throttling middleware (health and docs routes are exempt)."""
    print__memory_monitoring("📋 Registering rate limiting middleware...")
    app.middleware("http")(throttling_middleware)
    print__memory_monitoring("✅ Rate limiting middleware registered successfully")
