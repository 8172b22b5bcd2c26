"""Admin maintenance: batch file reset and in-memory cache flush."""

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

from fastapi import APIRouter, Depends

from api.dependencies.auth import get_current_user
from api.helpers import traceback_json_response
from api.models.responses import DeleteBatchesResponse
from api.storage.page_cache import clear_all_caches, delete_all_batches
from api.utils.debug import print__cache_debug

router = APIRouter()


@router.delete("/api/delete-batches", response_model=DeleteBatchesResponse)
def delete_batches(user=Depends(get_current_user)):
    """Delete every page batch file so the next reads rebuild them from the indexes."""
    print__cache_debug(f"🗑️ Batch reset requested by {user.get('email', 'unknown')}")
    try:
        details = delete_all_batches()
        return {
            "success": details["failed"] == 0,
            "message": f"Deleted {details['deleted']} of {details['found']} batch files",
            "details": details,
        }
    except Exception as e:
        print__cache_debug(f"❌ Batch reset failed: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/cache/clear")
def clear_caches(user=Depends(get_current_user)):
    cleared = clear_all_caches()
    print__cache_debug(f"🧹 Cleared in-memory caches: {cleared}")
    return {"success": True, "cleared": cleared}
