"""Navigation config (menus and their pages) stored as one JSON document.

Layout::

    {
      "menus": [{"id", "name", "icon", "description"}],
      "pages": {"<menuId>": [{"id", "name", "path"}]}
    }
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

import json
import tempfile
import threading
from typing import Dict, List, Optional

from api.config import settings
from api.utils.debug import print__menu_debug

AVAILABLE_ICONS = ["home", "chart-bar", "currency-dollar", "coin", "chart-pie", "document", "cog"]

_nav_lock = threading.Lock()


def _config_path(path: Optional[Path] = None) -> Path:
    return Path(path) if path else Path(settings.NAVIGATION_CONFIG_PATH)


def load_navigation(path: Optional[Path] = None) -> Dict:
    """Read the navigation document; a missing file gives an empty config."""
    config_path = _config_path(path)
    if not config_path.exists():
        return {"menus": [], "pages": {}}
    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    data.setdefault("menus", [])
    data.setdefault("pages", {})
    return data


def save_navigation(config: Dict, path: Optional[Path] = None) -> None:
    """Write atomically: temp file in the same directory, then os.replace."""
    config_path = _config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(config_path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, ensure_ascii=False)
        os.replace(tmp_name, config_path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def upsert_menu(
    menu_id: str,
    name: str,
    icon: str,
    description: str = "",
    pages: Optional[List[Dict]] = None,
    path: Optional[Path] = None,
) -> Dict:
    """Add or update a menu and merge its pages by id. Returns the saved config."""
    with _nav_lock:
        config = load_navigation(path)

        menu = next((m for m in config["menus"] if m.get("id") == menu_id), None)
        if menu is None:
            config["menus"].append(
                {"id": menu_id, "name": name, "icon": icon, "description": description or ""}
            )
            print__menu_debug(f"Added menu {menu_id}")
        else:
            menu.update({"name": name, "icon": icon})
            if description:
                menu["description"] = description
            print__menu_debug(f"Updated menu {menu_id}")

        existing = config["pages"].setdefault(menu_id, [])
        for page in pages or []:
            page_entry = {
                "id": page["id"],
                "name": page.get("name", page["id"]),
                "path": page.get("path") or f"/{menu_id}/{page['id']}",
            }
            for position, current in enumerate(existing):
                if current.get("id") == page_entry["id"]:
                    existing[position] = page_entry
                    break
            else:
                existing.append(page_entry)

        save_navigation(config, path)
        return config


def delete_page(menu_id: str, page_id: str, path: Optional[Path] = None) -> Dict:
    """Remove one page; the menu goes too when it is left without pages.

    Raises:
        KeyError: unknown menu or page
    """
    with _nav_lock:
        config = load_navigation(path)
        pages = config["pages"].get(menu_id)
        if pages is None:
            raise KeyError(f"Menu '{menu_id}' not found")
        remaining = [p for p in pages if p.get("id") != page_id]
        if len(remaining) == len(pages):
            raise KeyError(f"Page '{page_id}' not found in menu '{menu_id}'")

        menu_removed = not remaining
        if menu_removed:
            del config["pages"][menu_id]
            config["menus"] = [m for m in config["menus"] if m.get("id") != menu_id]
        else:
            config["pages"][menu_id] = remaining

        save_navigation(config, path)
        print__menu_debug(f"Deleted page {page_id} from {menu_id} (menu removed: {menu_removed})")
        return {"menuRemoved": menu_removed}


def delete_menu(menu_id: str, path: Optional[Path] = None) -> List[str]:
    """Remove a menu and its pages; returns the removed page ids.

    Raises:
        KeyError: unknown menu
    """
    with _nav_lock:
        config = load_navigation(path)
        known = any(m.get("id") == menu_id for m in config["menus"]) or menu_id in config["pages"]
        if not known:
            raise KeyError(f"Menu '{menu_id}' not found")

        removed_pages = [p.get("id") for p in config["pages"].pop(menu_id, [])]
        config["menus"] = [m for m in config["menus"] if m.get("id") != menu_id]
        save_navigation(config, path)
        print__menu_debug(f"Deleted menu {menu_id} with {len(removed_pages)} pages")
        return removed_pages
