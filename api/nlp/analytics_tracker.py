"""Append-only JSONL log of natural-language chart queries, with on-demand reports.

Every query handled by /api/nlp-chart appends one line to
``query-analytics.jsonl``. Reports (usage per API, system metrics, popular
queries, improvement suggestions) are computed from the log when asked for.
The file is rewritten only for feedback updates and age cleanup.
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
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from api.config import settings
from api.utils.debug import print__analytics_debug

LOG_FILE_NAME = "query-analytics.jsonl"
DAY_MS = 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


def categorize_error(message: str) -> str:
    lower = message.lower()
    if "quota" in lower or "rate limit" in lower:
        return "quota_exceeded"
    if "api" in lower or "request" in lower:
        return "api_error"
    if "parse" in lower or "json" in lower:
        return "parsing_error"
    if "cache" in lower:
        return "cache_error"
    if "vector" in lower or "embedding" in lower:
        return "vector_error"
    return "unknown_error"


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0


# ============================================================
# REPORT CALCULATIONS (pure functions over log entries)
# ============================================================


def compute_api_usage_stats(logs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    stats: Dict[str, Dict[str, Any]] = {}
    for log in logs:
        for api_id in log.get("selectedApis") or []:
            item = stats.setdefault(
                api_id,
                {"total": 0, "successes": 0, "confidences": [], "queries": [], "lastUsed": 0},
            )
            item["total"] += 1
            if log.get("success"):
                item["successes"] += 1
            item["confidences"].append(log.get("confidence", 0))
            query = log.get("originalQuery")
            if query not in item["queries"]:
                item["queries"].append(query)
            item["lastUsed"] = max(item["lastUsed"], log.get("timestamp", 0))

    return [
        {
            "apiId": api_id,
            "totalUsage": item["total"],
            "successRate": item["successes"] / item["total"] if item["total"] else 0,
            "avgConfidence": _average(item["confidences"]),
            "popularQueries": item["queries"][:5],
            "lastUsed": item["lastUsed"],
        }
        for api_id, item in stats.items()
    ]


def compute_system_metrics(logs: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not logs:
        return {
            "totalQueries": 0,
            "uniqueQueries": 0,
            "cacheHitRate": 0,
            "avgProcessingTime": 0,
            "successRate": 0,
            "popularDomains": {},
            "errorTypes": {},
            "timeDistribution": {},
        }

    total = len(logs)
    domains: Dict[str, int] = {}
    error_types: Dict[str, int] = {}
    hours: Dict[str, int] = {}

    for log in logs:
        for api_id in log.get("selectedApis") or []:
            domain = api_id.split("-")[0] or "unknown"
            domains[domain] = domains.get(domain, 0) + 1

        if not log.get("success") and log.get("errorMessage"):
            error_type = categorize_error(log["errorMessage"])
            error_types[error_type] = error_types.get(error_type, 0) + 1

        hour = datetime.fromtimestamp(log.get("timestamp", 0) / 1000).hour
        hour_key = f"{hour:02d}:00"
        hours[hour_key] = hours.get(hour_key, 0) + 1

    return {
        "totalQueries": total,
        "uniqueQueries": len({log.get("normalizedQuery") for log in logs}),
        "cacheHitRate": len([l for l in logs if l.get("cacheHit")]) / total,
        "avgProcessingTime": sum(l.get("processingTimeMs", 0) for l in logs) / total,
        "successRate": len([l for l in logs if l.get("success")]) / total,
        "popularDomains": domains,
        "errorTypes": error_types,
        "timeDistribution": hours,
    }


def compute_popular_queries(logs: List[Dict[str, Any]], limit: int = 20) -> List[Dict[str, Any]]:
    stats: Dict[str, Dict[str, Any]] = {}
    for log in logs:
        item = stats.setdefault(
            log.get("originalQuery"),
            {"count": 0, "confidences": [], "successes": 0, "times": []},
        )
        item["count"] += 1
        item["confidences"].append(log.get("confidence", 0))
        if log.get("success"):
            item["successes"] += 1
        item["times"].append(log.get("processingTimeMs", 0))

    popular = [
        {
            "query": query,
            "count": item["count"],
            "avgConfidence": _average(item["confidences"]),
            "successRate": item["successes"] / item["count"],
            "avgProcessingTime": _average(item["times"]),
        }
        for query, item in stats.items()
    ]
    popular.sort(key=lambda q: q["count"], reverse=True)
    return popular[:limit]


def compute_improvement_suggestions(
    metrics: Dict[str, Any], api_stats: List[Dict[str, Any]]
) -> List[str]:
    suggestions = []

    if metrics["cacheHitRate"] < 0.3:
        suggestions.append(
            "Low cache hit rate detected. Consider improving query normalization or increasing cache TTL."
        )
    if metrics["successRate"] < 0.9:
        suggestions.append(
            "Success rate below 90%. Review failed queries to improve API selection or chart spec generation."
        )
    if metrics["avgProcessingTime"] > 2000:
        suggestions.append(
            "Average processing time is high. Consider optimizing catalog search or implementing query batching."
        )

    underused = [a for a in api_stats if a["totalUsage"] < 5 and a["successRate"] > 0.8]
    if len(underused) > 10:
        suggestions.append(
            f"{len(underused)} high-quality APIs are underutilized. Consider improving their keywords or descriptions."
        )

    top_errors = sorted(metrics["errorTypes"].items(), key=lambda item: item[1], reverse=True)[:3]
    for error_type, count in top_errors:
        if count > metrics["totalQueries"] * 0.05:
            share = round(count / metrics["totalQueries"] * 100)
            suggestions.append(
                f"Frequent {error_type} errors detected. This error type represents {share}% of queries."
            )

    return suggestions


# ============================================================
# TRACKER
# ============================================================


class AnalyticsTracker:
    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir else Path(settings.METADATA_CACHE_DIR)
        self.log_file = self.data_dir / LOG_FILE_NAME
        self._lock = threading.Lock()

    def _load_logs(self) -> List[Dict[str, Any]]:
        if not self.log_file.exists():
            return []
        logs = []
        with open(self.log_file, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    logs.append(json.loads(line))
                except ValueError:
                    print__analytics_debug(f"⚠️ Skipping unreadable analytics line: {line[:80]}")
        return logs

    def _save_logs(self, logs: List[Dict[str, Any]]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "w", encoding="utf-8") as f:
            for log in logs:
                f.write(json.dumps(log) + "\n")

    def _logs_since(self, days: Optional[int]) -> List[Dict[str, Any]]:
        logs = self._load_logs()
        if days is None:
            return logs
        cutoff = _now_ms() - days * DAY_MS
        return [log for log in logs if log.get("timestamp", 0) >= cutoff]

    def log_query(self, **fields) -> Dict[str, Any]:
        """Append one entry; ``id`` and ``timestamp`` are filled in here."""
        entry = {
            "id": uuid.uuid4().hex,
            "timestamp": _now_ms(),
            "originalQuery": fields.get("originalQuery", ""),
            "normalizedQuery": fields.get("normalizedQuery", ""),
            "selectedApis": list(fields.get("selectedApis") or []),
            "chartType": fields.get("chartType", "bar"),
            "confidence": fields.get("confidence", 0),
            "processingTimeMs": fields.get("processingTimeMs", 0),
            "cacheHit": bool(fields.get("cacheHit", False)),
            "success": bool(fields.get("success", False)),
            "errorMessage": fields.get("errorMessage"),
            "userFeedback": fields.get("userFeedback"),
            "sessionId": fields.get("sessionId"),
            "userAgent": fields.get("userAgent"),
        }
        try:
            with self._lock:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry) + "\n")
        except OSError as e:
            print__analytics_debug(f"❌ Failed to log query analytics: {e}")
        return entry

    def update_query_feedback(self, query_id: str, feedback: str) -> bool:
        with self._lock:
            logs = self._load_logs()
            found = False
            for log in logs:
                if log.get("id") == query_id:
                    log["userFeedback"] = feedback
                    found = True
            if found:
                self._save_logs(logs)
        print__analytics_debug(f"📝 Feedback for {query_id}: {feedback} (found={found})")
        return found

    def get_api_usage_stats(self, days: Optional[int] = None) -> List[Dict[str, Any]]:
        return compute_api_usage_stats(self._logs_since(days))

    def get_system_metrics(self, days: Optional[int] = None) -> Dict[str, Any]:
        return compute_system_metrics(self._logs_since(days))

    def get_popular_queries(self, limit: int = 20, days: Optional[int] = None) -> List[Dict[str, Any]]:
        return compute_popular_queries(self._logs_since(days), limit)

    def get_improvement_suggestions(self, days: Optional[int] = None) -> List[str]:
        logs = self._logs_since(days)
        return compute_improvement_suggestions(
            compute_system_metrics(logs), compute_api_usage_stats(logs)
        )

    def generate_report(self, days: int = 7) -> Dict[str, Any]:
        end = _now_ms()
        start = end - days * DAY_MS
        logs = [log for log in self._load_logs() if log.get("timestamp", 0) >= start]

        summary = compute_system_metrics(logs)
        api_stats = compute_api_usage_stats(logs)
        return {
            "summary": summary,
            "topApis": api_stats[:10],
            "popularQueries": compute_popular_queries(logs, 10),
            "suggestions": compute_improvement_suggestions(summary, api_stats),
            "timeRange": {"start": start, "end": end},
        }

    def cleanup_old_logs(self, max_age_days: int = 30) -> int:
        """Drop entries older than max_age_days. Returns how many were removed."""
        with self._lock:
            logs = self._load_logs()
            cutoff = _now_ms() - max_age_days * DAY_MS
            recent = [log for log in logs if log.get("timestamp", 0) >= cutoff]
            removed = len(logs) - len(recent)
            if removed:
                self._save_logs(recent)
                print__analytics_debug(f"🧹 Cleaned up {removed} old log entries")
            return removed


_analytics_tracker: Optional[AnalyticsTracker] = None
_singleton_lock = threading.Lock()


def get_analytics_tracker() -> AnalyticsTracker:
    global _analytics_tracker
    with _singleton_lock:
        if _analytics_tracker is None:
            _analytics_tracker = AnalyticsTracker()
        return _analytics_tracker


def set_analytics_tracker(tracker: Optional[AnalyticsTracker]) -> None:
    global _analytics_tracker
    with _singleton_lock:
        _analytics_tracker = tracker
