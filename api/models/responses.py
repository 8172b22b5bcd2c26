"""
MODULE_DESCRIPTION: Response Models - Pydantic Schemas for API Response Serialization

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Response schemas for the routes that return plain JSON bodies (the cached
chart and data routes build JSONResponse objects with headers directly).

Response Models:
    1. WidgetListResponse: counters/tables for a page plus the cache tier used
    2. SuccessMessageResponse: generic {success, message} acknowledgement
    3. DeleteBatchesResponse: result of the batch reset maintenance task
    4. MenuConfigResponse: navigation document
    5. UserDataResponse: personal dashboards document
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
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# ==============================================================================
# RESPONSE MODELS - PYDANTIC SCHEMAS FOR API SERIALIZATION
# ==============================================================================


class CountersResponse(BaseModel):
    """Counters of one page (or all counters) and the cache tier that served them.

    Example Response:
        {"counters": [...], "source": "batch", "pageId": "dex-summary"}
    """

    counters: List[Dict[str, Any]]
    source: str = Field(
        description="batch, index, memory_cache or fallback", examples=["batch"]
    )
    pageId: Optional[str] = None


class TablesResponse(BaseModel):
    tables: List[Dict[str, Any]]
    source: str = Field(description="batch, index, memory_cache or fallback")


class SuccessMessageResponse(BaseModel):
    success: bool = True
    message: str


class BatchDeleteDetail(BaseModel):
    success: int = 0
    failed: int = 0


class DeleteBatchesDetails(BaseModel):
    found: int
    deleted: int
    failed: int
    results: Dict[str, BatchDeleteDetail]


class DeleteBatchesResponse(BaseModel):
    """Outcome of deleting every page batch file.

    Example Response:
        {
            "success": true,
            "message": "Deleted 12 of 12 batch files",
            "details": {"found": 12, "deleted": 12, "failed": 0,
                        "results": {"charts": {"success": 8, "failed": 0}, ...}}
        }
    """

    success: bool
    message: str
    details: DeleteBatchesDetails


class MenuEntry(BaseModel):
    id: str
    name: str
    icon: str
    description: Optional[str] = ""


class MenuPageEntry(BaseModel):
    id: str
    name: str
    path: str


class MenuConfigResponse(BaseModel):
    menus: List[MenuEntry]
    pages: Dict[str, List[MenuPageEntry]]
    availableIcons: List[str] = Field(default_factory=list)


class UserDataResponse(BaseModel):
    success: bool = True
    userData: Dict[str, Any]
    isNewUser: Optional[bool] = None
