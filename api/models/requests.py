"""Request models for the State of Solana dashboard API."""

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

from pydantic import BaseModel, Field, field_validator

# Required fields are Optional here: the routes answer a missing field with
# the 400 message clients already handle instead of a 422.

# ============================================================
# CHART CONFIG SEARCH
# ============================================================


class ChartSearchRequest(BaseModel):
    chartId: Optional[str] = Field(None, description="Chart id to look up in the local config files")


# ============================================================
# BLOG REQUEST MODELS
# ============================================================


class BlogSaveRequest(BaseModel):
    """Blog article to store in S3 under blog-articles/{slug}.json."""

    blogPost: Optional[Dict[str, Any]] = Field(
        None,
        description="Article body; must carry a slug",
        examples=[{"slug": "solana-q3-report", "title": "Solana Q3", "date": "2024-10-01"}],
    )
    savedAt: Optional[str] = None


class BlogSlugRequest(BaseModel):
    slug: Optional[str] = None


class ToggleHeroRequest(BaseModel):
    slug: Optional[str] = None
    isHero: bool = Field(False, description="Make this article the hero (clears the others)")


class BlogAnalyticsTrackRequest(BaseModel):
    """One read-time beacon from an article page."""

    slug: Optional[str] = None
    sessionId: Optional[str] = Field(None, description="Browser session; repeat beacons update its read time")
    readTime: Optional[float] = Field(0, ge=0, description="Seconds spent reading in this session")


# ============================================================
# CHART DATA REFRESH
# ============================================================


class AutoUpdateRequest(BaseModel):
    force: bool = Field(False, description="Skip the minimum interval (requires a Bearer token)")


# ============================================================
# USER DATA
# ============================================================


class UserDataUpdateRequest(BaseModel):
    """Partial user document; only the provided collections are replaced."""

    dashboards: Optional[List[Dict[str, Any]]] = None
    charts: Optional[List[Dict[str, Any]]] = None
    textboxes: Optional[List[Dict[str, Any]]] = None
    explorerData: Optional[Dict[str, Any]] = None


# ============================================================
# NAVIGATION
# ============================================================


class MenuPage(BaseModel):
    id: str = Field(..., min_length=1, examples=["dex-summary"])
    name: Optional[str] = None
    path: Optional[str] = None


class UpdateMenuConfigRequest(BaseModel):
    menuId: Optional[str] = None
    menuName: Optional[str] = None
    menuIcon: Optional[str] = None
    menuDescription: Optional[str] = ""
    pages: Optional[List[MenuPage]] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "menuId": "dex",
                    "menuName": "DEX",
                    "menuIcon": "chart-bar",
                    "menuDescription": "Decentralized exchanges",
                    "pages": [{"id": "summary", "name": "Summary"}],
                }
            ]
        }
    }


class DeletePageRequest(BaseModel):
    menuId: Optional[str] = None
    pageId: Optional[str] = None


class DeleteMenuRequest(BaseModel):
    menuId: Optional[str] = None


# ============================================================
# NATURAL-LANGUAGE CHART HELPER
# ============================================================


class NLPChartRequest(BaseModel):
    """Free-text chart request for the NLP chart helper."""

    query: Optional[str] = Field(
        None,
        max_length=2000,
        description="What the user wants to see",
        examples=["DEX trading volume over time"],
    )
    availableApis: Optional[List[Dict[str, Any]]] = None
    selectedColumns: Optional[List[Any]] = None


class AnalyticsFeedbackRequest(BaseModel):
    queryId: Optional[str] = None
    feedback: Optional[str] = None
    cacheQuery: Optional[str] = Field(
        None, description="Original query text, to attach the feedback to its cache entry"
    )

    @field_validator("feedback")
    @classmethod
    def validate_feedback(cls, v):
        if v is not None and v not in ("positive", "negative", "neutral"):
            raise ValueError("feedback must be positive, negative or neutral")
        return v
