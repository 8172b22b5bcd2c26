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


# ==============================================================================
# DEBUG FUNCTIONS
# ==============================================================================
def _print_if_enabled(env_var: str, label: str, msg: str) -> None:
    if os.environ.get(env_var, "0") == "1":
        print(f"[{label}] {msg}")
        sys.stdout.flush()


def print__debug(msg: str) -> None:
    """Print DEBUG messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("DEBUG", "DEBUG", msg)


def print__startup_debug(msg: str) -> None:
    """Print startup debug messages when debug mode is enabled."""
    _print_if_enabled("DEBUG", "STARTUP-DEBUG", msg)


def print__memory_monitoring(msg: str) -> None:
    """Print MEMORY-MONITORING messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("DEBUG", "MEMORY-MONITORING", msg)


def print__token_debug(msg: str) -> None:
    """Print print__token_debug messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__token_debug", "print__token_debug", msg)


def print__api_debug(msg: str) -> None:
    """Print request tracing for HTTP errors (401/4xx/5xx)."""
    _print_if_enabled("print__api_debug", "print__api_debug", msg)


def print__s3_debug(msg: str) -> None:
    """Print S3 storage messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__s3_debug", "print__s3_debug", msg)


def print__cache_debug(msg: str) -> None:
    """Print batch/index/TTL cache messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__cache_debug", "print__cache_debug", msg)


def print__charts_debug(msg: str) -> None:
    """Print print__charts_debug messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__charts_debug", "print__charts_debug", msg)


def print__counters_debug(msg: str) -> None:
    """Print print__counters_debug messages when debug mode is enabled."""
    _print_if_enabled("print__counters_debug", "print__counters_debug", msg)


def print__tables_debug(msg: str) -> None:
    """Print print__tables_debug messages when debug mode is enabled."""
    _print_if_enabled("print__tables_debug", "print__tables_debug", msg)


def print__chart_data_debug(msg: str) -> None:
    """Print chart data proxy and temp data messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__chart_data_debug", "print__chart_data_debug", msg)


def print__aggregation_debug(msg: str) -> None:
    """Print aggregation level selection and optimizer messages."""
    _print_if_enabled("print__aggregation_debug", "print__aggregation_debug", msg)


def print__blogs_debug(msg: str) -> None:
    """Print print__blogs_debug messages when debug mode is enabled."""
    _print_if_enabled("print__blogs_debug", "print__blogs_debug", msg)


def print__dashboards_debug(msg: str) -> None:
    """Print user data and public dashboard messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__dashboards_debug", "print__dashboards_debug", msg)


def print__menu_debug(msg: str) -> None:
    """Print navigation config messages when debug mode is enabled."""
    _print_if_enabled("print__menu_debug", "print__menu_debug", msg)


def print__nlp_debug(msg: str) -> None:
    """Print natural-language chart helper messages when debug mode is enabled.

    Args:
        msg: The message to print
    """
    _print_if_enabled("print__nlp_debug", "print__nlp_debug", msg)


def print__analytics_debug(msg: str) -> None:
    """Print print__analytics_debug messages when debug mode is enabled."""
    _print_if_enabled("print__analytics_debug", "print__analytics_debug", msg)
