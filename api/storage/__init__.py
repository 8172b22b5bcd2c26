"""S3 document storage, the multi-tier widget cache and the navigation config."""

from .page_cache import (
    CACHE_REGISTRY,
    TTLCache,
    WidgetKind,
    clear_all_caches,
    delete_all_batches,
    evict_page_caches,
    get_widgets_for_page,
    list_all_documents,
    remove_widget_from_page,
    upsert_widget_in_page,
)
from .s3 import (
    delete_from_s3,
    get_from_s3,
    get_s3_client,
    list_from_s3,
    s3_configured,
    save_to_s3,
    set_s3_client,
)

__all__ = [
    "get_s3_client",
    "set_s3_client",
    "s3_configured",
    "save_to_s3",
    "get_from_s3",
    "delete_from_s3",
    "list_from_s3",
    "WidgetKind",
    "TTLCache",
    "CACHE_REGISTRY",
    "clear_all_caches",
    "get_widgets_for_page",
    "list_all_documents",
    "upsert_widget_in_page",
    "remove_widget_from_page",
    "delete_all_batches",
    "evict_page_caches",
]
