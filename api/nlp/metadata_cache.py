"""
MODULE_DESCRIPTION: NLP Metadata Cache - Chart Specs Keyed by Normalized Query

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Natural-language chart requests repeat a lot with small wording changes
("show DEX volume over time" vs "dex trading volume by time"). Successful chart
specs are cached under the md5 of a normalized form of the query so those
variants share one entry.

Normalization (applied in order):
    1. lowercase, trim, collapse whitespace
    2. drop filler verbs: show, display, chart, graph, plot
    3. over time / across time / by time / vs time -> time_series
    4. compare / comparison / vs / versus -> compare
    5. volume / trading volume / trade volume -> volume
    6. price / pricing / cost -> price
    7. drop stopwords: the and or but in on at to for of with by
    8. collapse whitespace, trim

===================================================================================
PERSISTENCE AND EVICTION
===================================================================================

Entries live in memory and are written to metadata-cache.json in the cache
directory after every change. Expired entries (older than their ttl) are
skipped on load and deleted when read. When the cache grows past max_entries,
the 10% least recently accessed entries are evicted.

Timestamps and ttl are milliseconds since the epoch, so the file stays
compatible with the JSONL analytics log.
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

import hashlib
import json
import re
import threading
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from api.config import settings
from api.utils.debug import print__nlp_debug

DEFAULT_TTL_MS = 24 * 60 * 60 * 1000
DEFAULT_MAX_ENTRIES = 1000
CACHE_FILE_NAME = "metadata-cache.json"

_NORMALIZATION_RULES = [
    (re.compile(r"\b(show|display|chart|graph|plot)\b"), ""),
    (re.compile(r"\b(over time|across time|by time|vs time)\b"), "time_series"),
    (re.compile(r"\b(compare|comparison|vs|versus)\b"), "compare"),
    (re.compile(r"\b(volume|trading volume|trade volume)\b"), "volume"),
    (re.compile(r"\b(price|pricing|cost)\b"), "price"),
    (re.compile(r"\b(the|and|or|but|in|on|at|to|for|of|with|by)\b"), ""),
]


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_query(query: str) -> str:
    normalized = re.sub(r"\s+", " ", query.lower().strip())
    for pattern, replacement in _NORMALIZATION_RULES:
        normalized = pattern.sub(replacement, normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def cache_key(normalized_query: str) -> str:
    return hashlib.md5(normalized_query.encode("utf-8")).hexdigest()


class CacheEntry(BaseModel):
    id: str
    normalizedQuery: str
    originalQuery: str
    chartSpec: Any = None
    selectedApis: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    timestamp: int
    ttl: int = DEFAULT_TTL_MS
    hitCount: int = 0
    lastAccessed: int
    userFeedback: Optional[str] = None

    def is_valid(self, now_ms: Optional[int] = None) -> bool:
        return (now_ms or _now_ms()) - self.timestamp < self.ttl


class MetadataCache:
    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl_ms: int = DEFAULT_TTL_MS,
    ):
        self.cache_dir = Path(cache_dir) if cache_dir else Path(settings.METADATA_CACHE_DIR)
        self.cache_file = self.cache_dir / CACHE_FILE_NAME
        self.max_entries = max_entries
        self.default_ttl_ms = default_ttl_ms
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    # --------------------------------------------------------
    # persistence
    # --------------------------------------------------------

    def load_cache(self) -> int:
        """Load valid entries from disk. Returns how many were loaded."""
        with self._lock:
            self._entries.clear()
            if not self.cache_file.exists():
                print__nlp_debug("💾 No existing metadata cache found, starting fresh")
                return 0
            try:
                with open(self.cache_file, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except (OSError, ValueError) as e:
                print__nlp_debug(f"⚠️ Could not read metadata cache: {e}")
                return 0

            now = _now_ms()
            for key, value in raw.items():
                entry = CacheEntry.model_validate(value)
                if entry.is_valid(now):
                    self._entries[key] = entry
            print__nlp_debug(f"💾 Loaded {len(self._entries)} valid cache entries")
            return len(self._entries)

    def save_cache(self) -> None:
        with self._lock:
            try:
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                payload = {key: entry.model_dump() for key, entry in self._entries.items()}
                with open(self.cache_file, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
            except OSError as e:
                print__nlp_debug(f"❌ Failed to save metadata cache: {e}")

    # --------------------------------------------------------
    # lookups
    # --------------------------------------------------------

    def get(self, query: str) -> Optional[CacheEntry]:
        key = cache_key(normalize_query(query))
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_valid():
                del self._entries[key]
                return None
            entry.hitCount += 1
            entry.lastAccessed = _now_ms()
            return entry

    def set(
        self,
        query: str,
        chart_spec: Any,
        selected_apis: List[str],
        confidence: float,
        ttl_ms: Optional[int] = None,
    ) -> CacheEntry:
        normalized = normalize_query(query)
        key = cache_key(normalized)
        now = _now_ms()
        entry = CacheEntry(
            id=key,
            normalizedQuery=normalized,
            originalQuery=query,
            chartSpec=chart_spec,
            selectedApis=list(selected_apis),
            confidence=confidence,
            timestamp=now,
            ttl=ttl_ms or self.default_ttl_ms,
            hitCount=0,
            lastAccessed=now,
        )
        with self._lock:
            self._entries[key] = entry
            if len(self._entries) > self.max_entries:
                self._evict_oldest()
            self.save_cache()
        return entry

    def update_feedback(self, query: str, feedback: str) -> bool:
        key = cache_key(normalize_query(query))
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.userFeedback = feedback
            self.save_cache()
            return True

    def _evict_oldest(self) -> None:
        ordered = sorted(self._entries.items(), key=lambda item: item[1].lastAccessed)
        for key, _ in ordered[: max(1, int(self.max_entries * 0.1))]:
            del self._entries[key]

    def cleanup_expired(self) -> int:
        with self._lock:
            now = _now_ms()
            expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
            for key in expired:
                del self._entries[key]
            if expired:
                self.save_cache()
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.save_cache()

    def size(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._entries.values())

        if entries:
            hit_rate = len([e for e in entries if e.hitCount > 0]) / len(entries)
            avg_confidence = sum(e.confidence for e in entries) / len(entries)
        else:
            hit_rate = 0
            avg_confidence = 0

        popular = sorted((e for e in entries if e.hitCount > 0), key=lambda e: -e.hitCount)[:10]

        api_usage: Dict[str, int] = {}
        for entry in entries:
            for api_id in entry.selectedApis:
                api_usage[api_id] = api_usage.get(api_id, 0) + entry.hitCount

        return {
            "totalEntries": len(entries),
            "hitRate": hit_rate,
            "avgConfidence": avg_confidence,
            "popularQueries": [{"query": e.originalQuery, "hits": e.hitCount} for e in popular],
            "apiUsageFrequency": api_usage,
        }


_metadata_cache: Optional[MetadataCache] = None
_singleton_lock = threading.Lock()


def get_metadata_cache() -> MetadataCache:
    global _metadata_cache
    with _singleton_lock:
        if _metadata_cache is None:
            _metadata_cache = MetadataCache()
        return _metadata_cache


def set_metadata_cache(cache: Optional[MetadataCache]) -> None:
    global _metadata_cache
    with _singleton_lock:
        _metadata_cache = cache
