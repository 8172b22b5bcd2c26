"""
MODULE_DESCRIPTION: Multi-tier Widget Cache - Batch Files, Page Indexes, TTL Caches

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Dashboard pages show many widgets (charts, counters, tables). Fetching each
widget config from S3 separately costs one GET per widget, so reads for a page
go through a read-through chain that stops at the first tier with data:

    1. Batch file   {collection}/batches/page_{pageId}.json
                    JSON array with every config of the page (1 GET)
    2. Page index   {collection}/indexes/page_{pageId}.json
                    JSON array of ids; configs fetched in parallel, then the
                    batch file is rebuilt
    3. All-items    an in-memory list of every config, if the caller holds a
                    fresh one; filtered by page, then index and batch rebuilt
    4. Full listing every key under {collection}/ (indexes/ and batches/
                    skipped) fetched in parallel; index and batch rebuilt

Table indexes use the historical name tables/indexes/tables_{pageId}.json.

Writes keep the tiers consistent: the document is saved first, then the page
index gains the id and the batch gets the config replaced or appended. Deletes
drop the id from the index and the config from the batch; an emptied batch
file is deleted rather than saved empty.

===================================================================================
TTL CACHES
===================================================================================

TTLCache is a dict of key -> (value, stored_at). Entries older than the TTL
are never returned and are evicted on access. Every named cache registers in
CACHE_REGISTRY so memory housekeeping and the cache-clear route can reach the
caches created by the route modules.
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

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from api.config import settings
from api.storage.s3 import delete_from_s3, get_from_s3, list_from_s3, save_to_s3
from api.utils.debug import print__cache_debug

# ==============================================================================
# WIDGET KINDS AND KEY LAYOUT
# ==============================================================================


class WidgetKind(str, Enum):
    CHART = "chart"
    COUNTER = "counter"
    TABLE = "table"

    @property
    def collection(self) -> str:
        return f"{self.value}s"

    @property
    def prefix(self) -> str:
        return f"{self.collection}/"

    def document_key(self, widget_id: str) -> str:
        return f"{self.collection}/{widget_id}.json"

    def batch_key(self, page_id: str) -> str:
        return f"{self.collection}/batches/page_{page_id}.json"

    def index_key(self, page_id: str) -> str:
        if self is WidgetKind.TABLE:
            return f"tables/indexes/tables_{page_id}.json"
        return f"{self.collection}/indexes/page_{page_id}.json"

    @property
    def required_fields(self) -> Tuple[str, ...]:
        if self is WidgetKind.CHART:
            return ("title", "page", "chartType")
        return ("title", "page", "apiEndpoint")

    def is_valid(self, config: Any) -> bool:
        """True when every required field is present and non-empty."""
        return isinstance(config, dict) and all(config.get(f) for f in self.required_fields)


# ==============================================================================
# TTL CACHE
# ==============================================================================

CACHE_REGISTRY: Dict[str, "TTLCache"] = {}

# Key under which a TTL cache holds the full listing of one widget kind
ALL_ITEMS_KEY = "all"


class TTLCache:
    """In-memory cache whose entries expire ttl_seconds after being stored."""

    def __init__(self, ttl_seconds: float, name: Optional[str] = None):
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._data: Dict[Any, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        if name:
            CACHE_REGISTRY[name] = self

    def _expired(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self.ttl_seconds

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._expired(stored_at, time.time()):
                del self._data[key]
                return None
            return value

    def set(self, key, value) -> None:
        with self._lock:
            self._data[key] = (value, time.time())

    def delete(self, key) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._data)
            self._data.clear()
            return count

    def cleanup(self) -> int:
        """Remove expired entries and return how many were removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, (_, stored_at) in self._data.items() if self._expired(stored_at, now)]
            for key in expired:
                del self._data[key]
            return len(expired)

    def age(self, key) -> Optional[float]:
        """Seconds since the entry was stored, None when absent."""
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None
        return time.time() - entry[1]

    def keys(self) -> List[Any]:
        with self._lock:
            return list(self._data.keys())

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key) -> bool:
        return self.get(key) is not None


def clear_all_caches() -> Dict[str, int]:
    """Empty every registered TTL cache; returns name -> entries dropped."""
    return {name: cache.clear() for name, cache in CACHE_REGISTRY.items()}


# ==============================================================================
# BATCH AND INDEX FILES
# ==============================================================================


def get_batch(kind: WidgetKind, page_id: str) -> Optional[List[dict]]:
    batch = get_from_s3(kind.batch_key(page_id))
    return batch if isinstance(batch, list) else None


def save_batch(kind: WidgetKind, page_id: str, items: List[dict]) -> bool:
    return save_to_s3(kind.batch_key(page_id), items)


def delete_batch(kind: WidgetKind, page_id: str) -> bool:
    return delete_from_s3(kind.batch_key(page_id))


def get_page_index(kind: WidgetKind, page_id: str) -> Optional[List[str]]:
    index = get_from_s3(kind.index_key(page_id))
    return index if isinstance(index, list) else None


def save_page_index(kind: WidgetKind, page_id: str, ids: List[str]) -> bool:
    return save_to_s3(kind.index_key(page_id), ids)


# ==============================================================================
# PARALLEL FETCH
# ==============================================================================


def _fetch_keys(keys: List[str]) -> List[Any]:
    """Fetch keys S3_LIST_BATCH_SIZE at a time; results keep the key order, misses dropped."""
    if not keys:
        return []
    width = max(1, settings.S3_LIST_BATCH_SIZE)
    results: List[Any] = []
    with ThreadPoolExecutor(max_workers=width) as executor:
        for start in range(0, len(keys), width):
            chunk = keys[start : start + width]
            results.extend(doc for doc in executor.map(get_from_s3, chunk) if doc is not None)
    return results


def fetch_documents(kind: WidgetKind, ids: List[str]) -> List[dict]:
    return _fetch_keys([kind.document_key(widget_id) for widget_id in ids])


def _is_document_key(kind: WidgetKind, key: str) -> bool:
    return (
        key.startswith(kind.prefix)
        and key.endswith(".json")
        and not key.startswith(f"{kind.collection}/indexes/")
        and not key.startswith(f"{kind.collection}/batches/")
    )


def list_all_documents(kind: WidgetKind) -> List[dict]:
    """Every config of a kind from a full bucket listing."""
    keys = [key for key in list_from_s3(kind.prefix) if _is_document_key(kind, key)]
    documents = _fetch_keys(keys)

    if kind is WidgetKind.CHART:
        valid = [
            doc
            for doc in documents
            if isinstance(doc, dict) and all(doc.get(f) for f in ("id", "title", "page", "chartType"))
        ]
    else:
        valid = [doc for doc in documents if isinstance(doc, dict) and doc.get("id")]

    print__cache_debug(f"Full listing of {kind.collection}: {len(keys)} keys, {len(valid)} valid")
    return valid


# ==============================================================================
# READ-THROUGH LOOKUP
# ==============================================================================


def _rebuild_page(kind: WidgetKind, page_id: str, items: List[dict]) -> None:
    save_page_index(kind, page_id, [item["id"] for item in items if item.get("id")])
    save_batch(kind, page_id, items)


def get_widgets_for_page(
    kind: WidgetKind,
    page_id: str,
    all_items: Optional[List[dict]] = None,
    use_batch: bool = True,
    all_items_cache: Optional[TTLCache] = None,
) -> Tuple[List[dict], str]:
    """Resolve the widgets of one page.

    Args:
        kind: widget kind
        page_id: dashboard page id
        all_items: a fresh in-memory list of every config of this kind, if the
            caller holds one
        use_batch: False skips the batch and index tiers
        all_items_cache: TTL cache holding every config under ALL_ITEMS_KEY;
            read when all_items is not given and seeded by the full listing

    Returns:
        (items, source) where source is batch, index, memory_cache or fallback
    """
    if all_items is None and all_items_cache is not None:
        all_items = all_items_cache.get(ALL_ITEMS_KEY)

    if use_batch:
        batch = get_batch(kind, page_id)
        if batch:
            print__cache_debug(f"{kind.collection} page {page_id}: {len(batch)} from batch")
            return batch, "batch"

        ids = get_page_index(kind, page_id)
        if ids:
            items = fetch_documents(kind, ids)
            if items:
                save_batch(kind, page_id, items)
            print__cache_debug(f"{kind.collection} page {page_id}: {len(items)} of {len(ids)} from index")
            return items, "index"

        if all_items:
            items = [item for item in all_items if item.get("page") == page_id]
            if items:
                _rebuild_page(kind, page_id, items)
            print__cache_debug(f"{kind.collection} page {page_id}: {len(items)} from memory cache")
            return items, "memory_cache"

    listing = list_all_documents(kind)
    if all_items_cache is not None:
        all_items_cache.set(ALL_ITEMS_KEY, listing)
    items = [item for item in listing if item.get("page") == page_id]
    if items and use_batch:
        _rebuild_page(kind, page_id, items)
    print__cache_debug(f"{kind.collection} page {page_id}: {len(items)} from fallback listing")
    return items, "fallback"


# ==============================================================================
# WRITE-SIDE MAINTENANCE
# ==============================================================================


def upsert_widget_in_page(kind: WidgetKind, config: dict) -> bool:
    """Add a saved config to its page index and batch file."""
    page_id = config.get("page")
    widget_id = config.get("id")
    if not page_id or not widget_id:
        return False

    ids = get_page_index(kind, page_id) or []
    if widget_id not in ids:
        ids.append(widget_id)
        save_page_index(kind, page_id, ids)

    batch = get_batch(kind, page_id)
    if batch is None:
        # No batch yet: build it from the index so it holds the whole page
        others = fetch_documents(kind, [i for i in ids if i != widget_id])
        batch = others + [config]
        batch.sort(key=lambda item: ids.index(item.get("id")) if item.get("id") in ids else len(ids))
    else:
        for position, item in enumerate(batch):
            if item.get("id") == widget_id:
                batch[position] = config
                break
        else:
            batch.append(config)

    print__cache_debug(f"Upserted {kind.value} {widget_id} into page {page_id} ({len(batch)} in batch)")
    return save_batch(kind, page_id, batch)


def remove_widget_from_page(kind: WidgetKind, page_id: str, widget_id: str) -> None:
    """Drop a widget from its page index and batch; an emptied batch is deleted."""
    if not page_id:
        return

    ids = get_page_index(kind, page_id)
    if ids is not None and widget_id in ids:
        save_page_index(kind, page_id, [i for i in ids if i != widget_id])

    batch = get_batch(kind, page_id)
    if batch is None:
        return
    remaining = [item for item in batch if item.get("id") != widget_id]
    if remaining:
        if len(remaining) != len(batch):
            save_batch(kind, page_id, remaining)
    else:
        delete_batch(kind, page_id)
    print__cache_debug(f"Removed {kind.value} {widget_id} from page {page_id} ({len(remaining)} left)")


def evict_page_caches(page_id: str) -> int:
    """Drop a page's entries from every registered TTL cache; returns how many went."""
    removed = sum(1 for cache in list(CACHE_REGISTRY.values()) if cache.delete(page_id))
    if removed:
        print__cache_debug(f"Evicted page {page_id} from {removed} in-memory caches")
    return removed


def delete_page_batches(page_id: str) -> Dict[str, bool]:
    """Delete the batch file of every widget kind for one page."""
    results = {kind.collection: delete_batch(kind, page_id) for kind in WidgetKind}
    evict_page_caches(page_id)
    return results


def delete_all_batches() -> Dict[str, Any]:
    """Delete every batch file of every widget kind.

    Pages whose batch files are deleted are also evicted from the in-memory
    caches.

    Returns:
        {found, deleted, failed, results: {tables|charts|counters: {success, failed}}}
    """
    results: Dict[str, Dict[str, int]] = {}
    found = deleted = failed = 0
    pages = set()

    for collection in ("tables", "charts", "counters"):
        prefix = f"{collection}/batches/"
        keys = list_from_s3(prefix)
        found += len(keys)
        ok = sum(1 for key in keys if delete_from_s3(key))
        results[collection] = {"success": ok, "failed": len(keys) - ok}
        deleted += ok
        failed += len(keys) - ok
        for key in keys:
            name = key[len(prefix):]
            if name.startswith("page_") and name.endswith(".json"):
                pages.add(name[len("page_") : -len(".json")])

    for page_id in pages:
        evict_page_caches(page_id)

    print__cache_debug(f"Deleted {deleted}/{found} batch files ({failed} failed)")
    return {"found": found, "deleted": deleted, "failed": failed, "results": results}
