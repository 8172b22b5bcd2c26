"""Public chart sanitization.

Chart configs carry the upstream ``apiEndpoint`` and ``apiKey``; public reads
must only see the presentation fields. Admin requests are recognized from
request headers and get the full config.
"""

from typing import Any, Dict, List, Mapping

from api.config.settings import SHARE_CHART_HEADER_VALUE

PUBLIC_CHART_FIELDS = (
    "id",
    "title",
    "subtitle",
    "page",
    "section",
    "chartType",
    "dataMapping",
    "additionalOptions",
    "position",
    "width",
    "colorScheme",
    "isStacked",
    "enableCategoricalBrush",
    "useDistinctColors",
    "dualAxisConfig",
    "createdAt",
    "updatedAt",
)


def sanitize_chart_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the public fields that are present on the config."""
    return {field: config[field] for field in PUBLIC_CHART_FIELDS if field in config}


def sanitize_chart_configs(configs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [sanitize_chart_config(config) for config in configs]


def is_admin_headers(headers: Mapping[str, str]) -> bool:
    """True for admin requests.

    An ``x-admin-auth`` header counts unless it carries the share-chart marker;
    otherwise a referer pointing into ``/admin/`` counts.
    """
    admin_auth = headers.get("x-admin-auth")
    if admin_auth and admin_auth != SHARE_CHART_HEADER_VALUE:
        return True
    referer = headers.get("referer") or ""
    return "/admin/" in referer
