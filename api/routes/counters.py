"""Counter widget configs: page lookup, admin save and delete."""

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
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from api.dependencies.auth import get_current_user
from api.helpers import now_iso, traceback_json_response
from api.models.responses import CountersResponse, SuccessMessageResponse
from api.storage.page_cache import (
    WidgetKind,
    get_widgets_for_page,
    list_all_documents,
    remove_widget_from_page,
    upsert_widget_in_page,
)
from api.storage.s3 import delete_from_s3, get_from_s3, save_to_s3
from api.utils.debug import print__counters_debug

router = APIRouter()


@router.get("/api/counters", response_model=CountersResponse)
def get_counters(page: Optional[str] = None, batch: bool = True):
    print__counters_debug(f"GET /api/counters - page: {page}, batch: {batch}")
    try:
        if not page:
            counters = list_all_documents(WidgetKind.COUNTER)
            return {"counters": counters, "source": "fallback", "pageId": None}

        counters, source = get_widgets_for_page(WidgetKind.COUNTER, page, use_batch=batch)
        print__counters_debug(f"Returning {len(counters)} counters for {page} ({source})")
        return {"counters": counters, "source": source, "pageId": page}
    except Exception as e:
        print__counters_debug(f"Error fetching counters: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/counters")
def save_counter(config: Dict[str, Any] = Body(...), user=Depends(get_current_user)):
    print__counters_debug(f"POST /api/counters - id: {config.get('id')}, title: {config.get('title')}")
    try:
        if not WidgetKind.COUNTER.is_valid(config):
            raise HTTPException(status_code=400, detail="Invalid counter configuration")

        counter = dict(config)
        counter["id"] = counter.get("id") or uuid.uuid4().hex
        counter["updatedAt"] = now_iso()
        if not counter.get("createdAt"):
            counter["createdAt"] = counter["updatedAt"]

        if not save_to_s3(WidgetKind.COUNTER.document_key(counter["id"]), counter):
            raise HTTPException(status_code=500, detail="Failed to save counter to S3")

        upsert_widget_in_page(WidgetKind.COUNTER, counter)
        print__counters_debug(f"Counter {counter['id']} saved on page {counter['page']}")
        return {"success": True, "counter": counter}
    except HTTPException:
        raise
    except Exception as e:
        print__counters_debug(f"Error saving counter: {e}")
        resp = traceback_json_response(e, widget_id=config.get("id"))
        if resp:
            return resp
        raise


@router.delete("/api/counters", response_model=SuccessMessageResponse)
def delete_counter(id: Optional[str] = None, user=Depends(get_current_user)):
    if not id:
        raise HTTPException(status_code=400, detail="Counter ID is required")
    print__counters_debug(f"DELETE /api/counters - id: {id}")
    try:
        counter = get_from_s3(WidgetKind.COUNTER.document_key(id))
        if not isinstance(counter, dict):
            raise HTTPException(status_code=404, detail=f"Counter with ID {id} not found")

        if not delete_from_s3(WidgetKind.COUNTER.document_key(id)):
            raise HTTPException(status_code=500, detail="Failed to delete counter from S3")

        remove_widget_from_page(WidgetKind.COUNTER, counter.get("page"), id)
        return {"success": True, "message": f"Counter {id} deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        print__counters_debug(f"Error deleting counter {id}: {e}")
        resp = traceback_json_response(e, widget_id=id)
        if resp:
            return resp
        raise
