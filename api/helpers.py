"""
MODULE_DESCRIPTION: API Helper Functions - Error Responses, Cached JSON Responses, Timestamps

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Small helpers shared by the route modules:

    - traceback_json_response(e, status_code=500, widget_id=None)
        Debug-mode error response with the full traceback. Returns None unless
        DEBUG_TRACEBACK=1 so the caller falls back to its production error.

    - cached_json_response(content, cache_control, started_at=None)
        JSONResponse carrying Cache-Control, an md5 ETag of the body and, when
        a start time is given, X-Response-Time in milliseconds.

    - now_iso()
        UTC timestamp in the ISO-8601 "Z" form stored in createdAt/updatedAt.

Security Warning:
    Only enable DEBUG_TRACEBACK=1 in development environments. Tracebacks
    expose internal code structure and file paths.
===================================================================================
"""

import hashlib
import json
import os
import time
import traceback
from datetime import datetime, timezone

from fastapi.responses import JSONResponse


# ==============================================================================
# ERROR RESPONSE HELPERS
# ==============================================================================


def traceback_json_response(e, status_code=500, widget_id=None):
    """Create a JSON response with traceback information when in debug mode.

    Args:
        e: The exception that occurred
        status_code: HTTP status code for the response (default: 500)
        widget_id: Optional chart/table/counter id to echo back for correlation

    Returns:
        JSONResponse with error details and traceback if DEBUG_TRACEBACK=1,
        None otherwise (caller should handle fallback to production error response)

    Example:
        try:
            chart = load_chart(chart_id)
        except Exception as e:
            resp = traceback_json_response(e)
            if resp:
                return resp
            raise
    """
    if os.environ.get("DEBUG_TRACEBACK") == "1":
        tb_str = "".join(traceback.format_exception(type(e), e, e.__traceback__))

        response_content = {
            "detail": str(e),
            "traceback": tb_str,
        }
        if widget_id:
            response_content["widget_id"] = widget_id

        return JSONResponse(status_code=status_code, content=response_content)

    return None


# ==============================================================================
# CACHED RESPONSE HELPERS
# ==============================================================================


def compute_etag(content) -> str:
    """md5 of the JSON-serialized body, quoted as an HTTP entity tag."""
    body = json.dumps(content, sort_keys=True, default=str).encode("utf-8")
    return f'"{hashlib.md5(body).hexdigest()}"'


def cached_json_response(content, cache_control: str, started_at: float = None, headers=None):
    """JSONResponse with Cache-Control, ETag and optional X-Response-Time headers."""
    response_headers = {
        "Cache-Control": cache_control,
        "ETag": compute_etag(content),
    }
    if started_at is not None:
        elapsed_ms = (time.time() - started_at) * 1000
        response_headers["X-Response-Time"] = f"{elapsed_ms:.0f}ms"
    if headers:
        response_headers.update(headers)
    return JSONResponse(content=content, headers=response_headers)


def now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
