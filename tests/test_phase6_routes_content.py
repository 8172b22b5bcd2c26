#!/usr/bin/env python3
"""
Phase 6: Content Routes
Blog articles with hero selection, personal and public dashboards, and the
navigation menu editor.
"""

import os
import sys
import asyncio
import json
import shutil

# CRITICAL: Set Windows event loop policy FIRST, before other imports
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from dotenv import load_dotenv

load_dotenv()

try:
    from pathlib import Path

    BASE_DIR = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(BASE_DIR))
except NameError:
    BASE_DIR = Path(os.getcwd()).parents[0]
    sys.path.insert(0, str(BASE_DIR))

import pytest
from fastapi.testclient import TestClient

from api.config import settings
from api.main import app
from tests.helpers import auth_headers


@pytest.fixture
def client(monkeypatch):
    monkeypatch.delenv("DEBUG_TRACEBACK", raising=False)
    return TestClient(app)


@pytest.fixture
def no_s3(monkeypatch):
    from api.storage.s3 import set_s3_client

    set_s3_client(None)
    monkeypatch.setattr(settings, "AWS_ACCESS_KEY_ID", "")
    monkeypatch.setattr(settings, "AWS_SECRET_ACCESS_KEY", "")


# ==============================================================================
# BLOGS
# ==============================================================================


def _article(slug, date, is_hero=False):
    return {"slug": slug, "title": slug.replace("-", " ").title(), "date": date, "isHero": is_hero}


def test_blog_save_list_get(client, fake_s3):
    assert client.post("/api/blogs/s3-save", json={"blogPost": {"title": "x"}}, headers=auth_headers()).status_code == 400

    for slug, date in (("older-post", "2024-01-01"), ("newer-post", "2024-05-01")):
        response = client.post(
            "/api/blogs/s3-save", json={"blogPost": _article(slug, date)}, headers=auth_headers()
        )
        assert response.json()["saved"] is True
        assert response.json()["key"] == f"blog-articles/{slug}.json"

    fake_s3.put_json("blog-articles/garbage.json", ["not", "an", "article"])

    listing = client.get("/api/blogs/s3-list").json()
    assert listing["count"] == 2
    assert [a["slug"] for a in listing["articles"]] == ["newer-post", "older-post"], "Newest first"

    article = client.get("/api/blogs/older-post").json()
    assert article["blogPost"]["title"] == "Older Post"
    assert article["savedAt"]
    assert client.get("/api/blogs/unknown").status_code == 404


def test_blog_hero_is_exclusive(client, fake_s3):
    fake_s3.put_json("blog-articles/a.json", {"blogPost": _article("a", "2024-01-01", is_hero=True)})
    fake_s3.put_json("blog-articles/b.json", {"blogPost": _article("b", "2024-02-01")})

    response = client.post("/api/blogs/toggle-hero", json={"slug": "b", "isHero": True}, headers=auth_headers())
    assert response.json() == {"message": '"B" is now the hero article', "slug": "b", "isHero": True, "updated": True}
    assert fake_s3.get_json("blog-articles/a.json")["blogPost"]["isHero"] is False
    assert fake_s3.get_json("blog-articles/b.json")["blogPost"]["isHero"] is True

    response = client.post("/api/blogs/toggle-hero", json={"slug": "b", "isHero": False}, headers=auth_headers())
    assert response.json()["message"] == '"B" is no longer the hero article'
    assert client.post("/api/blogs/toggle-hero", json={"slug": "zzz", "isHero": True}, headers=auth_headers()).status_code == 404


def test_blog_delete(client, fake_s3):
    fake_s3.put_json("blog-articles/a.json", {"blogPost": _article("a", "2024-01-01")})
    response = client.request("DELETE", "/api/blogs/s3-delete", json={"slug": "a"}, headers=auth_headers())
    assert response.json()["deleted"] is True
    assert "blog-articles/a.json" not in fake_s3.objects
    assert client.request("DELETE", "/api/blogs/s3-delete", json={}, headers=auth_headers()).status_code == 400


def test_blogs_without_s3(client, no_s3):
    assert client.get("/api/blogs/s3-list").json() == {"articles": [], "count": 0, "message": "S3 credentials not configured"}
    response = client.post("/api/blogs/s3-save", json={"blogPost": _article("a", "2024-01-01")}, headers=auth_headers())
    assert response.json() == {"message": "S3 credentials not configured", "saved": False}


def test_blog_analytics_counts_sessions_once(client, fake_s3):
    first = client.post("/api/blog-analytics/track", json={"slug": "a", "sessionId": "s1", "readTime": 30}).json()
    assert first == {"success": True, "totalViews": 1, "totalReadTime": 30, "averageReadTime": 30, "isNewView": True}

    repeat = client.post("/api/blog-analytics/track", json={"slug": "a", "sessionId": "s1", "readTime": 90}).json()
    assert repeat["isNewView"] is False
    assert repeat["totalViews"] == 1 and repeat["totalReadTime"] == 90, "Repeat beacons replace the read time"

    client.post("/api/blog-analytics/track", json={"slug": "a", "sessionId": "s2", "readTime": 3630})
    stored = fake_s3.get_json("blog-analytics/a.json")
    print(f"👀 Stored analytics: {stored['totalViews']} views, {stored['totalReadTime']}s")
    assert [s["sessionId"] for s in stored["sessions"]] == ["s1", "s2"]
    assert stored["totalReadTime"] == 3720

    stats = client.get("/api/blog-analytics/a").json()
    assert stats == {
        "totalViews": 2,
        "totalReadTime": 3720,
        "averageReadTime": 1860,
        "formattedTotalReadTime": "1h 2m",
        "formattedAverageReadTime": "31m",
    }


def test_blog_analytics_validation_and_defaults(client, fake_s3):
    assert client.post("/api/blog-analytics/track", json={"slug": "a"}).status_code == 400
    assert client.post("/api/blog-analytics/track", json={"sessionId": "s1"}).status_code == 400
    assert client.post("/api/blog-analytics/track", json={"slug": "a", "sessionId": "s1", "readTime": -1}).status_code == 422

    assert client.get("/api/blog-analytics/never-read").json() == {
        "totalViews": 0,
        "totalReadTime": 0,
        "averageReadTime": 0,
        "formattedTotalReadTime": "0m",
        "formattedAverageReadTime": "0m",
    }


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0s"), (45.4, "45s"), (59.5, "60s"), (90, "1m 30s"), (120, "2m"), (3720, "1h 2m")],
)
def test_format_read_time(seconds, expected):
    from api.routes.blogs import format_read_time

    assert format_read_time(seconds) == expected


def test_blog_analytics_without_s3(client, no_s3):
    response = client.post("/api/blog-analytics/track", json={"slug": "a", "sessionId": "s1"})
    assert response.status_code == 500
    assert response.json() == {"detail": "S3 credentials not configured"}
    assert client.get("/api/blog-analytics/a").status_code == 500


# ==============================================================================
# DASHBOARDS
# ==============================================================================


def test_user_data_defaults_then_partial_update(client, fake_s3):
    assert client.get("/api/user-data").status_code == 401

    first = client.get("/api/user-data", headers=auth_headers("analyst@example.com")).json()
    assert first["isNewUser"] is True
    assert first["userData"]["dashboards"] == [] and first["userData"]["email"] == "analyst@example.com"

    dashboards = [{"id": "d1", "name": "Mine", "isPublic": True}]
    response = client.post("/api/user-data", json={"dashboards": dashboards}, headers=auth_headers("analyst@example.com"))
    assert response.status_code == 200

    stored = fake_s3.get_json("user-data/analyst@example.com.json")
    assert stored["dashboards"] == dashboards
    assert stored["charts"] == [] and stored["explorerData"]["savedVisualizations"] == []

    client.post("/api/user-data", json={"charts": [{"id": "c1", "dashboardId": "d1"}]}, headers=auth_headers("analyst@example.com"))
    again = client.get("/api/user-data", headers=auth_headers("analyst@example.com")).json()
    assert again["isNewUser"] is False
    assert again["userData"]["dashboards"] == dashboards, "Fields absent from the update are kept"
    assert again["userData"]["charts"] == [{"id": "c1", "dashboardId": "d1"}]


def test_public_dashboard_lookup(client, fake_s3):
    fake_s3.put_json(
        "user-data/owner@example.com.json",
        {
            "email": "owner@example.com",
            "name": "Owner",
            "dashboards": [{"id": "d1", "name": "Open"}, {"id": "d2", "name": "Closed", "isPublic": False}],
            "charts": [
                {"id": "c2", "dashboardId": "d1", "order": 2},
                {"id": "c1", "dashboardId": "d1", "order": 1},
                {"id": "c3", "dashboardId": "d2", "order": 1},
            ],
            "textboxes": [{"id": "t1", "dashboardId": "d1", "order": 0}],
        },
    )

    body = client.get("/api/public-dashboard/d1").json()
    dashboard = body["dashboard"]
    assert body["success"] is True
    assert [c["id"] for c in dashboard["charts"]] == ["c1", "c2"], "Sorted by order"
    assert [t["id"] for t in dashboard["textboxes"]] == ["t1"]
    assert dashboard["createdBy"] == "Owner"

    assert client.get("/api/public-dashboard/d2").status_code == 404, "Explicitly private"
    assert client.get("/api/public-dashboard/unknown").status_code == 404


def test_public_dashboard_without_s3(client, no_s3):
    response = client.get("/api/public-dashboard/d1")
    assert response.status_code == 503


# ==============================================================================
# NAVIGATION
# ==============================================================================


@pytest.fixture
def navigation_file(tmp_path, monkeypatch):
    path = tmp_path / "navigation.json"
    shutil.copy(BASE_DIR / "data" / "navigation.json", path)
    monkeypatch.setattr(settings, "NAVIGATION_CONFIG_PATH", path)
    return path


def test_menu_config_read(client, navigation_file):
    body = client.get("/api/menu-config").json()
    assert [m["id"] for m in body["menus"]] == ["overview", "dex", "stablecoins"]
    assert "chart-bar" in body["availableIcons"]
    assert body["pages"]["dex"][0]["id"] == "dex-summary"


def test_menu_update(client, navigation_file, fake_s3):
    payload = {"menuId": "nft", "menuName": "NFT", "menuIcon": "document", "pages": [{"id": "nft-overview", "name": "Overview"}]}
    assert client.post("/api/update-menu-config", json=payload).status_code == 401
    assert client.post("/api/update-menu-config", json={"menuId": "nft"}, headers=auth_headers()).status_code == 400

    response = client.post("/api/update-menu-config", json=payload, headers=auth_headers())
    assert response.json() == {"success": True, "message": 'Menu "NFT" has been added successfully'}

    saved = json.loads(navigation_file.read_text(encoding="utf-8"))
    assert saved["menus"][-1] == {"id": "nft", "name": "NFT", "icon": "document", "description": ""}
    assert saved["pages"]["nft"] == [{"id": "nft-overview", "name": "Overview", "path": "/nft/nft-overview"}]


def test_delete_page_and_menu(client, navigation_file, fake_s3):
    fake_s3.put_json("charts/batches/page_stablecoin-usage.json", [])
    fake_s3.put_json("counters/batches/page_volume.json", [])

    response = client.post("/api/delete-page", json={"menuId": "dex", "pageId": "volume"}, headers=auth_headers())
    assert response.json()["menuRemoved"] is False
    assert "counters/batches/page_volume.json" not in fake_s3.objects

    response = client.post(
        "/api/delete-page", json={"menuId": "stablecoins", "pageId": "stablecoin-usage"}, headers=auth_headers()
    )
    assert response.json()["menuRemoved"] is True
    assert "charts/batches/page_stablecoin-usage.json" not in fake_s3.objects

    missing = client.post("/api/delete-page", json={"menuId": "dex", "pageId": "nope"}, headers=auth_headers())
    assert missing.status_code == 404
    assert missing.json() == {"detail": "Page 'nope' not found in menu 'dex'"}

    assert client.post("/api/delete-menu", json={"menuId": "overview"}, headers=auth_headers()).json()["success"] is True
    assert client.post("/api/delete-menu", json={"menuId": "overview"}, headers=auth_headers()).status_code == 404

    saved = json.loads(navigation_file.read_text(encoding="utf-8"))
    assert [m["id"] for m in saved["menus"]] == ["dex"]
    assert [p["id"] for p in saved["pages"]["dex"]] == ["dex-summary"]


def test_delete_page_evicts_cached_widgets(client, navigation_file, fake_s3):
    chart = {"id": "v1", "title": "Volume", "page": "volume", "chartType": "bar"}
    fake_s3.put_json("charts/batches/page_volume.json", [chart])
    assert client.get("/api/charts", params={"page": "volume"}).json()["count"] == 1

    client.post("/api/delete-page", json={"menuId": "dex", "pageId": "volume"}, headers=auth_headers())

    body = client.get("/api/charts", params={"page": "volume"}).json()
    assert body["count"] == 0, "A deleted page is not served from the in-memory page cache"
