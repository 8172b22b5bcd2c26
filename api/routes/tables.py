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
from api.models.responses import TablesResponse
from api.storage.page_cache import (
    WidgetKind,
    get_widgets_for_page,
    list_all_documents,
    remove_widget_from_page,
    upsert_widget_in_page,
)
from api.storage.s3 import delete_from_s3, get_from_s3, save_to_s3
from api.utils.debug import print__tables_debug

router = APIRouter()


# ==============================================================================
# PAGE LOOKUP AND SAVE
# ==============================================================================


@router.get("/api/tables", response_model=TablesResponse)
def get_tables(page: Optional[str] = None, batch: bool = True):
    """Tables of one page through the batch/index tiers, or every table without a page."""
    print__tables_debug(f"GET /api/tables - page: {page}, batch: {batch}")
    try:
        if not page:
            return {"tables": list_all_documents(WidgetKind.TABLE), "source": "fallback"}

        tables, source = get_widgets_for_page(WidgetKind.TABLE, page, use_batch=batch)
        print__tables_debug(f"Returning {len(tables)} tables for {page} ({source})")
        return {"tables": tables, "source": source}
    except Exception as e:
        print__tables_debug(f"Error fetching tables: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/tables")
def save_table(config: Dict[str, Any] = Body(...), user=Depends(get_current_user)):
    try:
        if not WidgetKind.TABLE.is_valid(config):
            raise HTTPException(status_code=400, detail="Invalid table configuration")

        table = dict(config)
        table["id"] = table.get("id") or uuid.uuid4().hex
        table["updatedAt"] = now_iso()
        if not table.get("createdAt"):
            table["createdAt"] = table["updatedAt"]

        if not save_to_s3(WidgetKind.TABLE.document_key(table["id"]), table):
            raise HTTPException(status_code=500, detail="Failed to save table to S3")

        upsert_widget_in_page(WidgetKind.TABLE, table)
        print__tables_debug(f"Table {table['id']} saved on page {table['page']}")
        return {"success": True, "table": table}
    except HTTPException:
        raise
    except Exception as e:
        print__tables_debug(f"Error saving table: {e}")
        resp = traceback_json_response(e, widget_id=config.get("id"))
        if resp:
            return resp
        raise


# ==============================================================================
# SINGLE TABLE
# ==============================================================================


@router.get("/api/tables/{table_id}")
def get_table(table_id: str):
    try:
        table = get_from_s3(WidgetKind.TABLE.document_key(table_id))
        if not isinstance(table, dict):
            raise HTTPException(status_code=404, detail=f"Table with ID {table_id} not found")
        return table
    except HTTPException:
        raise
    except Exception as e:
        print__tables_debug(f"Error fetching table {table_id}: {e}")
        resp = traceback_json_response(e, widget_id=table_id)
        if resp:
            return resp
        raise


@router.delete("/api/tables/{table_id}")
def delete_table(table_id: str, user=Depends(get_current_user)):
    try:
        table = get_from_s3(WidgetKind.TABLE.document_key(table_id))
        if not isinstance(table, dict):
            raise HTTPException(status_code=404, detail=f"Table with ID {table_id} not found")

        if not delete_from_s3(WidgetKind.TABLE.document_key(table_id)):
            raise HTTPException(status_code=500, detail="Failed to delete table from S3")

        # Index and batch are updated inline; an emptied batch file is removed
        remove_widget_from_page(WidgetKind.TABLE, table.get("page"), table_id)
        print__tables_debug(f"Deleted table {table_id}")
        return {
            "success": True,
            "message": f"Table {table_id} deleted successfully",
            "tableId": table_id,
        }
    except HTTPException:
        raise
    except Exception as e:
        print__tables_debug(f"Error deleting table {table_id}: {e}")
        resp = traceback_json_response(e, widget_id=table_id)
        if resp:
            return resp
        raise
