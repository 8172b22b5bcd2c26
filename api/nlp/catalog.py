"""Static API catalog and keyword search for the natural-language chart helper.

The catalog is a JSON document (``API_CATALOG_PATH``) listing the analytics
endpoints a chart can be built from. Each entry is compact: a title, the
response columns with a short type hint, search keywords and suggested chart
types. Search is keyword based; no embeddings are computed.
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
import threading
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from api.config import settings
from api.utils.debug import print__nlp_debug

# ============================================================
# CATALOG VOCABULARY
# ============================================================

API_DOMAINS = {
    "OVERVIEW": "overview",
    "DEX": "dex",
    "REVENUE": "rev",
    "MEV": "mev",
    "STABLECOINS": "stablecoins",
    "PROTOCOL_REVENUE": "protocol-revenue",
    "SF_DASHBOARDS": "sf-dashboards",
    "LAUNCHPADS": "launchpads",
    "XSTOCKS": "xstocks",
    "COMPUTE_UNITS": "compute-units",
    "WRAPPED_BTC": "wrapped-btc",
    "RAYDIUM": "raydium",
    "METAPLEX": "metaplex",
    "HELIUM": "helium",
    "ORCA": "orca",
    "TEST": "test",
}

# Order matters: the first type whose pattern matches a column wins
COLUMN_TYPES: Dict[str, List[str]] = {
    "time": ["date", "block_date", "month", "week", "quarter", "year", "partition_0"],
    "volume": ["volume", "transfer_volume", "trading_volume", "swap_volume"],
    "price": ["price", "avg_price", "median_price", "token_price"],
    "count": ["count", "trades", "transactions", "holders", "traders", "users"],
    "percentage": ["pct", "percentage", "ratio", "rate"],
    "supply": ["supply", "circulating_supply", "total_supply", "minted", "burned"],
    "tvl": ["tvl", "total_value_locked", "liquidity"],
    "revenue": ["revenue", "fees", "earnings", "profit"],
    "metrics": ["avg_", "median_", "max_", "min_", "sum_", "total_"],
}

CHART_RECOMMENDATIONS = {
    "TIME_SERIES": ["line", "area"],
    "COMPARISONS": ["bar", "column"],
    "DISTRIBUTIONS": ["scatter", "histogram"],
    "COMPOSITION": ["stacked_bar", "pie"],
    "CORRELATION": ["scatter", "line"],
}


# ============================================================
# MODELS
# ============================================================


class ApiCatalogEntry(BaseModel):
    """One analytics endpoint that charts can be built from."""

    id: str
    domain: str
    title: str
    url: str
    method: str = "GET"
    params: Optional[Dict[str, str]] = None
    response_schema: Dict[str, str] = Field(default_factory=dict)
    sample_call: Optional[str] = None
    sample_response: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    aggregation_types: Optional[List[str]] = None
    chart_types: Optional[List[str]] = None

    @property
    def columns(self) -> List[str]:
        return list(self.response_schema.keys())


class ApiCatalog(BaseModel):
    entries: List[ApiCatalogEntry] = Field(default_factory=list)
    version: str = "1.0.0"
    last_updated: Optional[str] = None


def load_catalog(path: Optional[Path] = None) -> ApiCatalog:
    """Load and validate the catalog file; a missing file gives an empty catalog."""
    catalog_path = Path(path) if path else Path(settings.API_CATALOG_PATH)
    if not catalog_path.exists():
        print__nlp_debug(f"⚠️ API catalog not found at {catalog_path}")
        return ApiCatalog()
    with open(catalog_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    catalog = ApiCatalog.model_validate(data)
    print__nlp_debug(f"📊 Loaded API catalog with {len(catalog.entries)} entries")
    return catalog


# ============================================================
# KEYWORD SEARCH
# ============================================================


def _entry_text(entry: ApiCatalogEntry) -> str:
    parts = [entry.title, entry.description or "", entry.domain]
    parts.extend(entry.keywords)
    parts.extend(entry.response_schema.keys())
    parts.extend(entry.aggregation_types or [])
    parts.extend(entry.chart_types or [])
    return " ".join(parts).lower()


def keyword_similarity(query: str, entry: ApiCatalogEntry) -> float:
    """Score an entry against a query, normalised by the number of query words."""
    query_words = [w for w in query.lower().split() if len(w) > 2]
    if not query_words:
        return 0.0

    text = _entry_text(entry)
    text_words = [w for w in text.split() if w]

    score = 0.0
    for word in query_words:
        if word in text:
            score += 1.0
        else:
            partial = [tw for tw in text_words if word in tw or tw in word]
            score += len(partial) * 0.5

    if any(word in entry.domain for word in query_words):
        score += 0.5

    keyword_matches = [k for k in entry.keywords if any(word in k for word in query_words)]
    score += len(keyword_matches) * 0.3

    return score / len(query_words)


class ApiSearchIndex:
    """In-memory keyword index over the catalog entries."""

    def __init__(self, catalog: Optional[ApiCatalog] = None):
        self.catalog = catalog or ApiCatalog()
        self._by_id = {entry.id: entry for entry in self.catalog.entries}

    @property
    def entries(self) -> List[ApiCatalogEntry]:
        return self.catalog.entries

    def search(
        self, query: str, top_k: int = 5, domain_filter: Optional[str] = None
    ) -> Dict[str, Any]:
        started = time.time()

        candidates = self.catalog.entries
        if domain_filter:
            candidates = [e for e in candidates if e.domain == domain_filter]

        scored = [(keyword_similarity(query, entry), entry) for entry in candidates]
        scored = [item for item in scored if item[0] > 0]
        scored.sort(key=lambda item: item[0], reverse=True)
        top = scored[:top_k]

        elapsed_ms = int((time.time() - started) * 1000)
        print__nlp_debug(
            f"🔍 Search '{query}' -> {len(top)} APIs ({[e.id for _, e in top]}) in {elapsed_ms}ms"
        )
        return {
            "apis": [entry for _, entry in top],
            "scores": [round(score, 4) for score, _ in top],
            "total_results": len(top),
            "execution_time_ms": elapsed_ms,
            "query": query,
        }

    def get_api_by_id(self, api_id: str) -> Optional[ApiCatalogEntry]:
        return self._by_id.get(api_id)

    def get_apis_by_domain(self, domain: str) -> List[ApiCatalogEntry]:
        return [e for e in self.catalog.entries if e.domain == domain]

    def get_stats(self) -> Dict[str, Any]:
        domains: Dict[str, int] = {}
        for entry in self.catalog.entries:
            domains[entry.domain] = domains.get(entry.domain, 0) + 1
        return {
            "totalApis": len(self.catalog.entries),
            "domains": domains,
            "version": self.catalog.version,
            "lastUpdated": self.catalog.last_updated,
        }


_search_index: Optional[ApiSearchIndex] = None
_index_lock = threading.Lock()


def get_search_index() -> ApiSearchIndex:
    """Process-wide index, loaded from API_CATALOG_PATH on first use."""
    global _search_index
    with _index_lock:
        if _search_index is None:
            _search_index = ApiSearchIndex(load_catalog())
        return _search_index


def set_search_index(index: Optional[ApiSearchIndex]) -> None:
    """Replace the process-wide index (None forces a reload on next use)."""
    global _search_index
    with _index_lock:
        _search_index = index
