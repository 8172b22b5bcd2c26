"""
MODULE_DESCRIPTION: Blog Article Endpoints - S3-backed Articles and Hero Selection

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Blog articles are stored as blog-articles/{slug}.json with the body
{"blogPost": {...}, "savedAt": "..."}. At most one article is the hero of the
blog landing page (blogPost.isHero).

API ENDPOINTS:
    POST   /api/blogs/s3-save       (admin)  save an article
    GET    /api/blogs/s3-list                every article, newest date first
    GET    /api/blogs/{slug}                 one stored document
    POST   /api/blogs/toggle-hero   (admin)  set or clear the hero flag
    DELETE /api/blogs/s3-delete     (admin)  delete an article
    POST   /api/blog-analytics/track         count a view / update read time
    GET    /api/blog-analytics/{slug}        views and read times

Without S3 credentials the save, list and delete routes answer with
"S3 credentials not configured" instead of failing.

View tracking keeps one document per article under
blog-analytics/{slug}.json: {slug, totalViews, totalReadTime, sessions: [...]}.
A session is counted as a view once; later beacons only replace its readTime.
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
import math
import threading
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from api.config import settings
from api.dependencies.auth import get_current_user
from api.helpers import now_iso, traceback_json_response
from api.models.requests import (
    BlogAnalyticsTrackRequest,
    BlogSaveRequest,
    BlogSlugRequest,
    ToggleHeroRequest,
)
from api.storage.s3 import (
    delete_from_s3,
    get_from_s3,
    list_from_s3,
    s3_configured,
    save_to_s3,
)
from api.utils.debug import print__blogs_debug

router = APIRouter()

BLOG_PREFIX = "blog-articles/"
NOT_CONFIGURED = "S3 credentials not configured"


def blog_key(slug: str) -> str:
    return f"{BLOG_PREFIX}{slug}.json"


def _article_keys() -> List[str]:
    return [key for key in list_from_s3(BLOG_PREFIX) if key.endswith(".json")]


# ==============================================================================
# SAVE / LIST / GET
# ==============================================================================


@router.post("/api/blogs/s3-save")
def save_blog(body: BlogSaveRequest, user=Depends(get_current_user)):
    slug = (body.blogPost or {}).get("slug")
    if not slug:
        raise HTTPException(status_code=400, detail="Blog post slug is required")

    if not s3_configured():
        print__blogs_debug("S3 credentials not configured, skipping S3 save")
        return {"message": NOT_CONFIGURED, "saved": False}

    try:
        key = blog_key(slug)
        document = {"blogPost": body.blogPost, "savedAt": body.savedAt or now_iso()}
        if not save_to_s3(key, document):
            raise HTTPException(status_code=500, detail="Failed to save to S3")

        print__blogs_debug(f"📝 Saved article {slug}")
        return {
            "message": "Blog article saved to S3 successfully",
            "key": key,
            "bucket": settings.S3_BUCKET_NAME,
            "saved": True,
        }
    except HTTPException:
        raise
    except Exception as e:
        print__blogs_debug(f"❌ Error saving article {slug}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.get("/api/blogs/s3-list")
def list_blogs():
    if not s3_configured():
        return {"articles": [], "count": 0, "message": NOT_CONFIGURED}

    try:
        articles = []
        for key in _article_keys():
            document = get_from_s3(key)
            if isinstance(document, dict) and isinstance(document.get("blogPost"), dict):
                articles.append(document["blogPost"])
            else:
                print__blogs_debug(f"Skipping unreadable article {key}")

        articles.sort(key=lambda a: str(a.get("date") or ""), reverse=True)
        return {
            "articles": articles,
            "count": len(articles),
            "message": f"Found {len(articles)} articles in S3",
        }
    except Exception as e:
        print__blogs_debug(f"❌ Error listing articles: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


# ==============================================================================
# HERO AND DELETE
# ==============================================================================


@router.post("/api/blogs/toggle-hero")
def toggle_hero(body: ToggleHeroRequest, user=Depends(get_current_user)):
    """Set or clear the hero flag; setting it clears the flag on every other article."""
    if not body.slug:
        raise HTTPException(status_code=400, detail="Slug is required")

    try:
        key = blog_key(body.slug)
        document = get_from_s3(key)
        if not isinstance(document, dict) or not isinstance(document.get("blogPost"), dict):
            raise HTTPException(status_code=404, detail="Article not found")

        if body.isHero:
            for other_key in _article_keys():
                if other_key == key:
                    continue
                other = get_from_s3(other_key)
                if isinstance(other, dict) and (other.get("blogPost") or {}).get("isHero"):
                    other["blogPost"]["isHero"] = False
                    other["savedAt"] = now_iso()
                    save_to_s3(other_key, other)
                    print__blogs_debug(f"Cleared hero flag on {other_key}")

        document["blogPost"]["isHero"] = body.isHero
        document["savedAt"] = now_iso()
        if not save_to_s3(key, document):
            raise HTTPException(status_code=500, detail="Failed to toggle hero status")

        title = document["blogPost"].get("title") or body.slug
        message = (
            f'"{title}" is now the hero article'
            if body.isHero
            else f'"{title}" is no longer the hero article'
        )
        return {"message": message, "slug": body.slug, "isHero": body.isHero, "updated": True}
    except HTTPException:
        raise
    except Exception as e:
        print__blogs_debug(f"❌ Error toggling hero for {body.slug}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.delete("/api/blogs/s3-delete")
def delete_blog(body: BlogSlugRequest, user=Depends(get_current_user)):
    if not body.slug:
        raise HTTPException(status_code=400, detail="Slug is required")

    if not s3_configured():
        print__blogs_debug("S3 credentials not configured, skipping S3 delete")
        return {"message": NOT_CONFIGURED, "deleted": False}

    key = blog_key(body.slug)
    deleted = delete_from_s3(key)
    return {
        "message": "Blog article deleted from S3 successfully" if deleted else "Failed to delete blog article",
        "key": key,
        "bucket": settings.S3_BUCKET_NAME,
        "deleted": deleted,
    }


@router.get("/api/blogs/{slug}")
def get_blog(slug: str):
    document = get_from_s3(blog_key(slug))
    if not isinstance(document, dict):
        raise HTTPException(status_code=404, detail="Article not found")
    return document


# ==============================================================================
# VIEW TRACKING
# ==============================================================================

ANALYTICS_PREFIX = "blog-analytics/"

# Read-modify-write of one analytics document at a time
_analytics_lock = threading.Lock()


def analytics_key(slug: str) -> str:
    return f"{ANALYTICS_PREFIX}{slug}.json"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def format_read_time(seconds: float) -> str:
    """45 -> "45s", 90 -> "1m 30s", 120 -> "2m", 3720 -> "1h 2m"."""
    if seconds < 60:
        return f"{_round_half_up(seconds)}s"
    minutes = int(seconds // 60)
    remaining = _round_half_up(seconds % 60)
    if minutes < 60:
        return f"{minutes}m {remaining}s" if remaining > 0 else f"{minutes}m"
    return f"{minutes // 60}h {minutes % 60}m"


def _average_read_time(analytics: dict) -> float:
    views = analytics.get("totalViews") or 0
    return (analytics.get("totalReadTime") or 0) / views if views > 0 else 0


@router.post("/api/blog-analytics/track")
def track_blog_view(body: BlogAnalyticsTrackRequest):
    """Count a view per new session; repeat beacons of a session replace its read time."""
    if not body.slug or not body.sessionId:
        raise HTTPException(status_code=400, detail="Missing required fields")
    if not s3_configured():
        raise HTTPException(status_code=500, detail=NOT_CONFIGURED)

    read_time = body.readTime or 0
    key = analytics_key(body.slug)
    try:
        with _analytics_lock:
            analytics = get_from_s3(key)
            if not isinstance(analytics, dict):
                analytics = {"slug": body.slug, "totalViews": 0, "totalReadTime": 0, "sessions": []}
            sessions = analytics.setdefault("sessions", [])

            session = next((s for s in sessions if s.get("sessionId") == body.sessionId), None)
            is_new_view = session is None
            if is_new_view:
                analytics["totalViews"] = (analytics.get("totalViews") or 0) + 1
                sessions.append(
                    {"sessionId": body.sessionId, "timestamp": now_iso(), "readTime": read_time, "isNewView": True}
                )
            else:
                session["readTime"] = read_time
            analytics["totalReadTime"] = sum(s.get("readTime") or 0 for s in sessions)

            if not save_to_s3(key, analytics):
                raise HTTPException(status_code=500, detail="Failed to track analytics")

        print__blogs_debug(
            f"👀 {'New view' if is_new_view else 'Read time update'} for {body.slug}: "
            f"{analytics['totalViews']} views, {analytics['totalReadTime']}s"
        )
        return {
            "success": True,
            "totalViews": analytics["totalViews"],
            "totalReadTime": analytics["totalReadTime"],
            "averageReadTime": _average_read_time(analytics),
            "isNewView": is_new_view,
        }
    except HTTPException:
        raise
    except Exception as e:
        print__blogs_debug(f"❌ Error tracking analytics for {body.slug}: {e}")
        resp = traceback_json_response(e)
        if resp:
            return resp
        raise


@router.get("/api/blog-analytics/{slug}")
def get_blog_analytics(slug: str):
    if not s3_configured():
        raise HTTPException(status_code=500, detail=NOT_CONFIGURED)

    analytics = get_from_s3(analytics_key(slug))
    if not isinstance(analytics, dict):
        return {
            "totalViews": 0,
            "totalReadTime": 0,
            "averageReadTime": 0,
            "formattedTotalReadTime": "0m",
            "formattedAverageReadTime": "0m",
        }

    average = _average_read_time(analytics)
    return {
        "totalViews": analytics.get("totalViews") or 0,
        "totalReadTime": analytics.get("totalReadTime") or 0,
        "averageReadTime": average,
        "formattedTotalReadTime": format_read_time(analytics.get("totalReadTime") or 0),
        "formattedAverageReadTime": format_read_time(average),
    }
