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
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from api.config import settings
from api.dependencies.auth import get_current_user
from api.helpers import now_iso, traceback_json_response
from api.models.requests import UserDataUpdateRequest
from api.models.responses import UserDataResponse
from api.storage.s3 import get_from_s3, list_from_s3, s3_configured, save_to_s3
from api.utils.debug import print__dashboards_debug

router = APIRouter()

USER_DATA_PREFIX = "user-data/"


def user_data_key(user_id: str) -> str:
    return f"{USER_DATA_PREFIX}{user_id}.json"


def default_user_data(user: dict) -> dict:
    """Empty personal dashboards document for a first-time user."""
    timestamp = now_iso()
    return {
        "userId": user["email"],
        "email": user["email"],
        "name": user.get("name") or "",
        "dashboards": [],
        "charts": [],
        "textboxes": [],
        "explorerData": {
            "savedVisualizations": [],
            "selectedColumns": {},
            "preferences": {},
        },
        "createdAt": timestamp,
        "lastModified": timestamp,
    }


def _require_email(user: dict) -> str:
    email = user.get("email")
    if not email:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return email


# ==============================================================================
# PERSONAL DASHBOARDS
# ==============================================================================


@router.get("/api/user-data", response_model=UserDataResponse)
def get_user_data(user=Depends(get_current_user)):
    email = _require_email(user)
    print__dashboards_debug(f"GET /api/user-data for {email}")
    try:
        stored = get_from_s3(user_data_key(email))
        if isinstance(stored, dict):
            return {"success": True, "userData": stored, "isNewUser": False}
        print__dashboards_debug(f"No stored data for {email}, returning defaults")
        return {"success": True, "userData": default_user_data(user), "isNewUser": True}
    except Exception as e:
        print__dashboards_debug(f"Error reading user data for {email}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/user-data", response_model=UserDataResponse)
def update_user_data(body: UserDataUpdateRequest, user=Depends(get_current_user)):
    """Replace the provided collections; everything else in the document is kept."""
    email = _require_email(user)
    try:
        stored = get_from_s3(user_data_key(email))
        user_data = stored if isinstance(stored, dict) else default_user_data(user)

        updates = body.model_dump(exclude_none=True)
        user_data.update(updates)
        user_data["lastModified"] = now_iso()

        if not save_to_s3(user_data_key(email), user_data):
            raise HTTPException(status_code=500, detail="Failed to save user data")

        print__dashboards_debug(f"Saved user data for {email}: updated {sorted(updates)}")
        return {"success": True, "userData": user_data}
    except HTTPException:
        raise
    except Exception as e:
        print__dashboards_debug(f"Error saving user data for {email}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


# ==============================================================================
# PUBLIC DASHBOARDS
# ==============================================================================


def find_public_dashboard(dashboard_id: str) -> Optional[dict]:
    """Scan user documents for a dashboard that is not explicitly private."""
    keys = [k for k in list_from_s3(USER_DATA_PREFIX) if k.endswith(".json")]
    keys = keys[: settings.PUBLIC_DASHBOARD_SCAN_LIMIT]
    print__dashboards_debug(f"Searching {len(keys)} user data files for dashboard {dashboard_id}")

    for key in keys:
        user_data = get_from_s3(key)
        if not isinstance(user_data, dict):
            continue
        dashboard = next(
            (d for d in user_data.get("dashboards") or [] if d.get("id") == dashboard_id),
            None,
        )
        if dashboard is None:
            continue
        if dashboard.get("isPublic") is False:
            print__dashboards_debug(f"Dashboard {dashboard_id} found but not public")
            return None

        def _for_dashboard(items):
            matching = [i for i in items or [] if i.get("dashboardId") == dashboard_id]
            return sorted(matching, key=lambda i: i.get("order") or 0)

        return {
            **dashboard,
            "charts": _for_dashboard(user_data.get("charts")),
            "textboxes": _for_dashboard(user_data.get("textboxes")),
            "createdBy": user_data.get("name") or user_data.get("email") or "Anonymous",
        }
    return None


@router.get("/api/public-dashboard/{dashboard_id}")
def get_public_dashboard(dashboard_id: str):
    if not s3_configured():
        raise HTTPException(status_code=503, detail="Dashboard service unavailable")

    try:
        dashboard = find_public_dashboard(dashboard_id)
    except Exception as e:
        print__dashboards_debug(f"Error searching public dashboard {dashboard_id}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise

    if dashboard is None:
        raise HTTPException(status_code=404, detail="Dashboard not found")
    return {"success": True, "dashboard": dashboard, "message": "Public dashboard found"}
