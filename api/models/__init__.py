"""
Data models package for the API server.

Pydantic request and response models for the State of Solana dashboard API.
"""

# Import request models
from .requests import (
    AnalyticsFeedbackRequest,
    AutoUpdateRequest,
    BlogAnalyticsTrackRequest,
    BlogSaveRequest,
    BlogSlugRequest,
    ChartSearchRequest,
    DeleteMenuRequest,
    DeletePageRequest,
    MenuPage,
    NLPChartRequest,
    ToggleHeroRequest,
    UpdateMenuConfigRequest,
    UserDataUpdateRequest,
)

# Import response models
from .responses import (
    CountersResponse,
    DeleteBatchesResponse,
    MenuConfigResponse,
    SuccessMessageResponse,
    TablesResponse,
    UserDataResponse,
)

__all__ = [
    # Request models
    "ChartSearchRequest",
    "BlogSaveRequest",
    "BlogSlugRequest",
    "ToggleHeroRequest",
    "BlogAnalyticsTrackRequest",
    "AutoUpdateRequest",
    "UserDataUpdateRequest",
    "MenuPage",
    "UpdateMenuConfigRequest",
    "DeletePageRequest",
    "DeleteMenuRequest",
    "NLPChartRequest",
    "AnalyticsFeedbackRequest",
    # Response models
    "CountersResponse",
    "TablesResponse",
    "SuccessMessageResponse",
    "DeleteBatchesResponse",
    "MenuConfigResponse",
    "UserDataResponse",
]
