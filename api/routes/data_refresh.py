"""
MODULE_DESCRIPTION: Chart Data Refresh Endpoints - Manual and Interval-guarded Updates

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Triggers the refresh job in api.aggregation.fetcher, which re-fetches every
chart's upstream API, rewrites TEMP_DATA_DIR/chart-data/{pageId}.json and
pre-aggregates it.

API ENDPOINTS:
    POST /api/update-temp-data        (admin)  refresh now
    POST /api/auto-update-temp-data            refresh unless the last
                                               automatic refresh is younger
                                               than AUTO_UPDATE_INTERVAL;
                                               {"force": true} skips the
                                               interval and needs a token
    GET  /api/auto-update-temp-data            status of the automatic refresh

Only one refresh runs at a time; a second request while one is running is
answered with "Update already in progress".
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
import math
import threading
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from api.aggregation.fetcher import read_summary, refresh_chart_data, write_summary
from api.config import settings
from api.dependencies.auth import get_current_user
from api.helpers import traceback_json_response
from api.models.requests import AutoUpdateRequest
from api.utils.debug import print__chart_data_debug

router = APIRouter()

# One refresh at a time across both trigger routes
_refresh_lock = threading.Lock()
# Unix time of the last successful automatic refresh (0 = never)
_auto_update_state = {"last_update": 0.0}

IN_PROGRESS = "Update already in progress"


def _iso(timestamp: float) -> Optional[str]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


def _schedule() -> dict:
    last_update = _auto_update_state["last_update"]
    return {
        "lastUpdate": _iso(last_update),
        "nextUpdate": _iso(last_update + settings.AUTO_UPDATE_INTERVAL) if last_update else None,
    }


def _failure(e: Exception, message: str) -> JSONResponse:
    resp = traceback_json_response(e)
    if resp:
        return resp
    return JSONResponse(status_code=500, content={"success": False, "message": message, "error": str(e)})


# ==============================================================================
# MANUAL REFRESH
# ==============================================================================


@router.post("/api/update-temp-data")
def update_temp_data(user=Depends(get_current_user)):
    print__chart_data_debug(f"🔄 Manual chart data refresh requested by {user.get('email', 'unknown')}")
    if not _refresh_lock.acquire(blocking=False):
        return JSONResponse(status_code=409, content={"success": False, "message": IN_PROGRESS})

    try:
        summary = refresh_chart_data()
    except Exception as e:
        print__chart_data_debug(f"❌ Error updating chart data: {e}")
        return _failure(e, "Failed to update chart data")
    finally:
        _refresh_lock.release()

    return {
        "success": True,
        "message": "Chart data updated successfully",
        "details": {"timestamp": datetime.now(timezone.utc).isoformat(), "summary": summary},
    }


# ==============================================================================
# AUTOMATIC REFRESH
# ==============================================================================


@router.post("/api/auto-update-temp-data")
def auto_update_temp_data(
    body: Optional[AutoUpdateRequest] = None,
    authorization: str = Header(None),
):
    force = bool(body and body.force)
    if force:
        get_current_user(authorization)

    if _refresh_lock.locked():
        return {"success": False, "message": IN_PROGRESS, **_schedule()}

    elapsed = time.time() - _auto_update_state["last_update"]
    if not force and elapsed < settings.AUTO_UPDATE_INTERVAL:
        remaining = settings.AUTO_UPDATE_INTERVAL - elapsed
        return {
            "success": False,
            "message": f"Too soon to update. Next update in {math.ceil(remaining / 60)} minutes",
            "timeRemainingMs": int(remaining * 1000),
            **_schedule(),
        }

    if not _refresh_lock.acquire(blocking=False):
        return {"success": False, "message": IN_PROGRESS, **_schedule()}

    print__chart_data_debug("🔄 Starting automatic chart data update...")
    try:
        summary = refresh_chart_data()
        _auto_update_state["last_update"] = time.time()
        schedule = _schedule()
        summary.update(
            {
                "autoUpdateEnabled": True,
                "lastAutoUpdate": schedule["lastUpdate"],
                "nextScheduledUpdate": schedule["nextUpdate"],
            }
        )
        write_summary(Path(settings.TEMP_DATA_DIR) / "chart-data", summary)
    except Exception as e:
        print__chart_data_debug(f"❌ Error in automatic chart data update: {e}")
        return _failure(e, "Failed to update chart data automatically")
    finally:
        _refresh_lock.release()

    return {"success": True, "message": "Chart data updated automatically", "summary": summary, **schedule}


@router.get("/api/auto-update-temp-data")
def auto_update_status():
    last_update = _auto_update_state["last_update"]
    until_next = max(0.0, settings.AUTO_UPDATE_INTERVAL - (time.time() - last_update)) if last_update else 0.0
    return {
        "isUpdating": _refresh_lock.locked(),
        **_schedule(),
        "timeUntilNextMs": int(until_next * 1000),
        "timeUntilNextMinutes": math.ceil(until_next / 60),
        "updateIntervalMinutes": settings.AUTO_UPDATE_INTERVAL / 60,
        "lastSummary": read_summary(),
    }
