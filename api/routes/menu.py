"""Navigation maintenance: read and edit the menu/page document.

Removing a page (or a whole menu) also deletes the page's widget batch files
in S3, so a page id reused later does not serve stale widgets.
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

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies.auth import get_current_user
from api.helpers import traceback_json_response
from api.models.requests import DeleteMenuRequest, DeletePageRequest, UpdateMenuConfigRequest
from api.models.responses import MenuConfigResponse, SuccessMessageResponse
from api.storage import menu_config
from api.storage.page_cache import delete_page_batches
from api.utils.debug import print__menu_debug

router = APIRouter()


@router.get("/api/menu-config", response_model=MenuConfigResponse)
def get_menu_config():
    try:
        config = menu_config.load_navigation()
        return {**config, "availableIcons": menu_config.AVAILABLE_ICONS}
    except Exception as e:
        print__menu_debug(f"Error reading navigation: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/update-menu-config", response_model=SuccessMessageResponse)
def update_menu_config(body: UpdateMenuConfigRequest, user=Depends(get_current_user)):
    if not body.menuId or not body.menuName or not body.menuIcon or body.pages is None:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: menuId, menuName, menuIcon, and pages are required",
        )

    try:
        menu_config.upsert_menu(
            body.menuId,
            body.menuName,
            body.menuIcon,
            description=body.menuDescription or "",
            pages=[page.model_dump() for page in body.pages],
        )
        print__menu_debug(f"Menu {body.menuId} saved with {len(body.pages)} pages")
        return {"success": True, "message": f'Menu "{body.menuName}" has been added successfully'}
    except Exception as e:
        print__menu_debug(f"Error updating menu {body.menuId}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.post("/api/delete-page")
def delete_page(body: DeletePageRequest, user=Depends(get_current_user)):
    if not body.menuId or not body.pageId:
        raise HTTPException(status_code=400, detail="Menu ID and Page ID are required")

    try:
        result = menu_config.delete_page(body.menuId, body.pageId)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))

    delete_page_batches(body.pageId)
    return {
        "success": True,
        "message": f'Page "{body.pageId}" has been deleted from menu "{body.menuId}" successfully',
        "menuRemoved": result["menuRemoved"],
    }


@router.post("/api/delete-menu", response_model=SuccessMessageResponse)
def delete_menu(body: DeleteMenuRequest, user=Depends(get_current_user)):
    if not body.menuId:
        raise HTTPException(status_code=400, detail="Menu ID is required")

    try:
        removed_pages = menu_config.delete_menu(body.menuId)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))

    for page_id in removed_pages:
        delete_page_batches(page_id)
    return {"success": True, "message": f'Menu "{body.menuId}" has been deleted successfully'}
