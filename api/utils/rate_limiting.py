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
import asyncio
import time

from api.config.settings import (
    RATE_LIMIT_BURST,
    RATE_LIMIT_MAX_WAIT,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW,
    rate_limit_storage,
)
from api.utils.debug import print__debug

# Seconds covered by the burst limit
BURST_WINDOW = 10


def _prune(client_ip: str, now: float) -> list:
    """Drop timestamps older than the rate limit window and return the rest."""
    timestamps = [t for t in rate_limit_storage[client_ip] if now - t < RATE_LIMIT_WINDOW]
    rate_limit_storage[client_ip] = timestamps
    return timestamps


def check_rate_limit_with_throttling(client_ip: str) -> dict:
    """Check rate limits and return throttling information instead of boolean."""
    now = time.time()
    window = _prune(client_ip, now)
    burst = [t for t in window if now - t < BURST_WINDOW]

    suggested_wait = 0
    if len(burst) >= RATE_LIMIT_BURST:
        # Wait until the oldest burst request leaves the burst window
        suggested_wait = max(0, BURST_WINDOW - (now - min(burst)))
    elif len(window) >= RATE_LIMIT_REQUESTS:
        suggested_wait = max(0, RATE_LIMIT_WINDOW - (now - min(window)))

    return {
        "allowed": len(burst) < RATE_LIMIT_BURST and len(window) < RATE_LIMIT_REQUESTS,
        "suggested_wait": min(suggested_wait, RATE_LIMIT_MAX_WAIT),
        "burst_count": len(burst),
        "window_count": len(window),
        "burst_limit": RATE_LIMIT_BURST,
        "window_limit": RATE_LIMIT_REQUESTS,
    }


async def wait_for_rate_limit(client_ip: str, max_attempts: int = 3) -> bool:
    """Wait for the rate limiter to admit a request, giving up after max_attempts."""
    for attempt in range(max_attempts):
        rate_info = check_rate_limit_with_throttling(client_ip)

        if rate_info["allowed"]:
            rate_limit_storage[client_ip].append(time.time())
            return True

        if rate_info["suggested_wait"] <= 0:
            await asyncio.sleep(0.1)
            continue

        print__debug(
            f"⏳ Throttling request from {client_ip}: waiting {rate_info['suggested_wait']:.1f}s "
            f"(burst: {rate_info['burst_count']}/{rate_info['burst_limit']}, "
            f"window: {rate_info['window_count']}/{rate_info['window_limit']}, attempt {attempt + 1})"
        )
        await asyncio.sleep(rate_info["suggested_wait"])

    print__debug(f"❌ Rate limit exceeded after {max_attempts} attempts for {client_ip}")
    return False


def check_rate_limit(client_ip: str) -> bool:
    """Check if client IP is within rate limits, recording the request when it is."""
    if not check_rate_limit_with_throttling(client_ip)["allowed"]:
        return False
    rate_limit_storage[client_ip].append(time.time())
    return True


def get_rate_limit_status() -> dict:
    """Summary of tracked clients and configured limits for the health route."""
    now = time.time()
    active = {ip: len(_prune(ip, now)) for ip in list(rate_limit_storage.keys())}
    return {
        "total_tracked_clients": len(active),
        "active_clients": sum(1 for count in active.values() if count > 0),
        "rate_limit_window": RATE_LIMIT_WINDOW,
        "rate_limit_requests": RATE_LIMIT_REQUESTS,
        "rate_limit_burst": RATE_LIMIT_BURST,
        "rate_limit_max_wait": RATE_LIMIT_MAX_WAIT,
    }
