"""
MODULE_DESCRIPTION: Natural-Language Chart Pipeline - Catalog Search + OpenAI Tools

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

Turns a free-text request ("DEX volume over time") into a chart configuration
the dashboard builder understands.

Processing:
    1. With OPENAI_API_KEY set, the model gets two tools:
         search_api_catalog(query, top_k, domain_filter)
         create_chart_spec(title, primary_api, secondary_api, transform,
                           chart_type, user_intent)
       and at most two tool rounds. Tool results are fed back as tool
       messages. If the model searched but never asked for a spec, the spec
       is built from the search hits.
    2. Without a key, or on any OpenAI error (quota, network, bad arguments),
       fallback_pattern_matching() runs the keyword search directly
       (top_k=3) and builds the spec from the results.
    3. convert_to_legacy_format() maps the result to the configuration shape
       of the chart builder UI, with per-API column suggestions.

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

import json
from typing import Any, Callable, Dict, List, Optional

from openai import AsyncOpenAI

from api.config import settings
from api.nlp.catalog import API_DOMAINS, ApiCatalogEntry, get_search_index
from api.nlp.chart_spec import (
    VALID_CHART_TYPES,
    create_chart_spec,
    create_chart_spec_from_search_results,
)
from api.utils.debug import print__nlp_debug

MAX_TOOL_ROUNDS = 2

SYSTEM_PROMPT = """You are an analytics assistant for State of Solana dashboards.
Users describe the chart they want in plain language. Your job:
1. Call search_api_catalog to find the data endpoints that match the request.
2. Call create_chart_spec with the best endpoint (and a second one only when the
   user compares two datasets), a short title and the chart type that fits the
   data: line or area for time series, bar for comparisons, stacked_bar for
   composition, scatter for correlation.
Only use API ids returned by the search. Keep titles short and descriptive."""

OPENAI_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "search_api_catalog",
            "description": (
                "Search the API catalog for data endpoints relevant to a natural language "
                "request. Returns the best matching APIs with their columns."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Description of the data, e.g. 'DEX trading volume over time'",
                    },
                    "top_k": {
                        "type": "integer",
                        "description": "Number of APIs to return (default 5, max 10)",
                        "minimum": 1,
                        "maximum": 10,
                    },
                    "domain_filter": {
                        "type": "string",
                        "description": "Optional domain to limit the search",
                        "enum": list(API_DOMAINS.values()),
                    },
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "create_chart_spec",
            "description": (
                "Create a chart specification (type, axes, series, metadata) from "
                "APIs returned by search_api_catalog."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Chart title"},
                    "primary_api": {
                        "type": "string",
                        "description": "ID of the API that supplies the chart data",
                    },
                    "secondary_api": {
                        "type": "string",
                        "description": "Optional ID of a second API for comparisons",
                    },
                    "transform": {
                        "type": "string",
                        "description": "How to combine two APIs, e.g. 'JOIN ON date column'",
                    },
                    "chart_type": {"type": "string", "enum": VALID_CHART_TYPES},
                    "user_intent": {
                        "type": "string",
                        "description": "The original user request",
                    },
                },
                "required": ["title", "primary_api", "chart_type"],
            },
        },
    },
]


# ============================================================
# TOOL HANDLERS
# ============================================================


def simplify_api(api: ApiCatalogEntry) -> Dict[str, Any]:
    return {
        "id": api.id,
        "title": api.title,
        "domain": api.domain,
        "description": api.description,
        "url": api.url,
        "method": api.method,
        "columns": api.columns,
        "column_types": dict(api.response_schema),
        "keywords": api.keywords[:5],
        "chart_types": api.chart_types,
        "aggregation_types": api.aggregation_types,
    }


def search_api_catalog(
    query: str, top_k: int = 5, domain_filter: Optional[str] = None
) -> Dict[str, Any]:
    try:
        top_k = max(1, min(int(top_k or 5), 10))
        result = get_search_index().search(query, top_k=top_k, domain_filter=domain_filter)
        return {
            "success": True,
            "query": result["query"],
            "total_results": result["total_results"],
            "execution_time_ms": result["execution_time_ms"],
            "apis": [simplify_api(api) for api in result["apis"]],
        }
    except Exception as e:
        return {"success": False, "error": str(e), "query": query}


def create_chart_spec_tool(
    title: str,
    primary_api: str,
    chart_type: Optional[str] = None,
    secondary_api: Optional[str] = None,
    transform: Optional[str] = None,
    user_intent: Optional[str] = None,
) -> Dict[str, Any]:
    try:
        index = get_search_index()
        apis = [
            api
            for api in (index.get_api_by_id(primary_api), index.get_api_by_id(secondary_api or ""))
            if api is not None
        ]
        spec = create_chart_spec(
            apis,
            title=title,
            primary_api=primary_api,
            secondary_api=secondary_api,
            transform=transform,
            chart_type=chart_type,
            user_intent=user_intent,
        )
        return {
            "success": True,
            "chart_spec": spec,
            "validation": {
                "valid": True,
                "confidence_score": spec["metadata"].get("confidence_score", 0.5),
            },
        }
    except Exception as e:
        return {"success": False, "error": str(e), "title": title, "primary_api": primary_api}


TOOL_HANDLERS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "search_api_catalog": search_api_catalog,
    "create_chart_spec": create_chart_spec_tool,
}


def run_tool(name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    print__nlp_debug(f"🔧 Tool call {name}: {arguments}")
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return {"success": False, "error": f"Unknown function: {name}"}
    return handler(**arguments)


# ============================================================
# PIPELINE
# ============================================================


def get_openai_client() -> Optional[AsyncOpenAI]:
    api_key = os.environ.get("OPENAI_API_KEY")
    if not api_key:
        return None
    return AsyncOpenAI(api_key=api_key)


def fallback_pattern_matching(query: str) -> Dict[str, Any]:
    print__nlp_debug("🔄 Using fallback pattern matching")
    try:
        result = get_search_index().search(query, top_k=3)
        apis = result["apis"]
        if not apis:
            return {"success": False, "error": "No relevant APIs found for query", "query": query}

        spec = create_chart_spec_from_search_results(apis, query)
        return {
            "success": True,
            "searchResult": {
                "success": True,
                "apis": [simplify_api(api) for api in apis],
                "query": query,
                "total_results": result["total_results"],
                "execution_time_ms": result["execution_time_ms"],
            },
            "chartSpec": {"success": True, "chart_spec": spec},
            "query": query,
            "fallbackUsed": True,
        }
    except Exception as e:
        print__nlp_debug(f"❌ Fallback pattern matching failed: {e}")
        return {
            "success": False,
            "error": "Both OpenAI and fallback pattern matching failed",
            "query": query,
        }


async def _run_tool_rounds(client: AsyncOpenAI, query: str) -> Dict[str, Any]:
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f'Help me create a chart for: "{query}"'},
    ]
    search_result = None
    chart_spec = None
    last_content = None

    for round_number in range(1, MAX_TOOL_ROUNDS + 1):
        response = await client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=messages,
            tools=OPENAI_TOOLS,
            tool_choice="auto",
            max_tokens=settings.OPENAI_MAX_TOKENS,
            temperature=settings.OPENAI_TEMPERATURE,
        )
        if not response.choices:
            raise RuntimeError("No response from OpenAI")
        message = response.choices[0].message
        last_content = message.content
        if not message.tool_calls:
            break

        print__nlp_debug(f"🤖 Round {round_number}: {len(message.tool_calls)} tool call(s)")
        messages.append(
            {
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.function.name,
                            "arguments": call.function.arguments,
                        },
                    }
                    for call in message.tool_calls
                ],
            }
        )
        for call in message.tool_calls:
            arguments = json.loads(call.function.arguments or "{}")
            result = run_tool(call.function.name, arguments)
            if call.function.name == "search_api_catalog":
                search_result = result
            elif call.function.name == "create_chart_spec" and result.get("success"):
                chart_spec = result
            messages.append(
                {"role": "tool", "tool_call_id": call.id, "content": json.dumps(result)}
            )

    if search_result is None and chart_spec is None:
        return {"success": True, "directResponse": last_content, "query": query}

    if chart_spec is None and search_result and search_result.get("apis"):
        index = get_search_index()
        entries = [index.get_api_by_id(api["id"]) for api in search_result["apis"]]
        entries = [entry for entry in entries if entry is not None]
        if entries:
            chart_spec = {
                "success": True,
                "chart_spec": create_chart_spec_from_search_results(entries, query),
            }

    result: Dict[str, Any] = {"success": True, "searchResult": search_result, "query": query}
    if chart_spec is not None:
        result["chartSpec"] = chart_spec
    return result


async def process_nlp_query(query: str) -> Dict[str, Any]:
    client = get_openai_client()
    if client is None:
        print__nlp_debug("⚠️ OpenAI API key not found, falling back to pattern matching")
        return fallback_pattern_matching(query)

    print__nlp_debug(f"🤖 Processing NLP query with tools: {query}")
    try:
        return await _run_tool_rounds(client, query)
    except Exception as e:
        message = str(e)
        if "quota" in message or "insufficient_quota" in message:
            print__nlp_debug("⚠️ OpenAI quota exceeded, using pattern matching instead")
        else:
            print__nlp_debug(f"❌ Tool-calling pipeline failed: {message}")
        return fallback_pattern_matching(query)


# ============================================================
# LEGACY CONFIGURATION FORMAT
# ============================================================

_TIME_HINTS = ("date", "time")
_Y_HINTS = ("volume", "price", "value", "revenue", "fee", "supply")
_DEFAULT_Y_HINTS = ("volume", "price", "revenue", "fee", "supply", "holders", "value")


def _is_time_like(column: str) -> bool:
    lower = column.lower()
    return any(hint in lower for hint in _TIME_HINTS) or column == "partition_0"


def _find_best_column(target: str, column_type: str, columns: List[str]) -> Optional[str]:
    if not target:
        return None
    if target in columns:
        return target

    lower_target = target.lower()
    for column in columns:
        lower = column.lower()
        if column_type == "time":
            matched = _is_time_like(column)
        elif column_type == "volume":
            matched = "volume" in lower or "vol" in lower
        elif column_type == "price":
            matched = "price" in lower or "usd" in lower
        elif column_type == "value":
            matched = "value" in lower or "amount" in lower
        else:
            matched = lower_target in lower or lower in lower_target
        if matched:
            return column
    return None


def _series_column_type(column: str) -> str:
    lower = column.lower()
    for candidate in ("volume", "price", "value"):
        if candidate in lower:
            return candidate
    return "metric"


def _suggest_columns(api: Dict[str, Any], spec: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    columns = list(api.get("columns") or (api.get("column_types") or {}).keys())
    spec = spec or {}

    x_column = None
    if (spec.get("x_axis") or {}).get("column"):
        x_column = _find_best_column(spec["x_axis"]["column"], "time", columns)
    if not x_column:
        x_column = next((c for c in columns if _is_time_like(c)), None)

    y_columns: List[str] = []
    for series in spec.get("series") or []:
        target = series.get("column") or ""
        match = _find_best_column(target, _series_column_type(target), columns) or next(
            (c for c in columns if any(hint in c.lower() for hint in _Y_HINTS)), None
        )
        if match:
            y_columns.append(match)

    if not y_columns:
        y_columns = [c for c in columns if any(hint in c.lower() for hint in _DEFAULT_Y_HINTS)][:2]

    return {"xColumn": x_column, "yColumns": y_columns, "groupBy": ""}


def _default_configuration(query: str, reasoning: str) -> Dict[str, Any]:
    return {
        "name": f"Chart: {query}",
        "description": f'Generated from: "{query}"',
        "type": "bar",
        "chartType": "simple",
        "xColumn": "date",
        "yColumns": ["value"],
        "groupBy": "",
        "reasoning": reasoning,
    }


def convert_to_legacy_format(result: Dict[str, Any]) -> Dict[str, Any]:
    query = result.get("query", "")
    if not result.get("success"):
        return {
            "configuration": _default_configuration(
                query, result.get("error") or "Failed to process query"
            ),
            "matchingApis": [],
            "originalQuery": query,
        }

    search_result = result.get("searchResult") or {}
    spec = (result.get("chartSpec") or {}).get("chart_spec")
    metadata = (spec or {}).get("metadata") or {}
    fallback_used = bool(result.get("fallbackUsed"))

    if spec:
        source = "Pattern matching" if fallback_used else "AI analysis"
        configuration = {
            "name": spec.get("title") or f"Chart: {query}",
            "description": metadata.get("description") or f'Generated from: "{query}"',
            "type": spec.get("chart_type") or "bar",
            "chartType": "simple",
            "xColumn": (spec.get("x_axis") or {}).get("column") or "date",
            "yColumns": [s["column"] for s in spec.get("series") or []] or ["value"],
            "groupBy": "",
            "suggestedApis": [a for a in (spec.get("primary_api"), spec.get("secondary_api")) if a],
            "suggestedColumns": metadata.get("suggested_columns") or [],
            "reasoning": metadata.get("description")
            or f'{source} suggests this configuration based on your query "{query}".',
        }
    else:
        configuration = _default_configuration(
            query, result.get("directResponse") or "No chart specification was produced"
        )
        configuration["suggestedApis"] = []
        configuration["suggestedColumns"] = []

    matching_apis = []
    for api in search_result.get("apis") or []:
        columns = list(api.get("columns") or (api.get("column_types") or {}).keys())
        matching_apis.append(
            {
                "id": api.get("id"),
                "name": api.get("title"),
                "chartTitle": api.get("title"),
                "endpoint": api.get("url"),
                "method": api.get("method"),
                "columns": columns,
                "page": api.get("domain"),
                "apiKey": "",
                "additionalOptions": {},
                "suggestedColumns": _suggest_columns(api, spec),
            }
        )

    return {
        "configuration": configuration,
        "matchingApis": matching_apis,
        "originalQuery": query,
        "ragMetadata": {
            "searchExecutionTime": search_result.get("execution_time_ms"),
            "totalResults": search_result.get("total_results"),
            "confidence": metadata.get("confidence_score"),
            "fallbackUsed": fallback_used,
        },
    }
