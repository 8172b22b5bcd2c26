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

from brotli_asgi import BrotliMiddleware
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.utils.debug import print__memory_monitoring

# Headers the dashboard front end reads from chart and data responses
EXPOSED_HEADERS = [
    "ETag",
    "X-Response-Time",
    "X-Data-Type",
    "X-Aggregation-Info",
    "X-Compression-Info",
]


# ==============================================================================
# MIDDLEWARE SETUP
# ==============================================================================
def setup_cors_middleware(app: FastAPI):
    """Register CORS for the dashboard front ends.

    Allowed origins come from CORS_ALLOWED_ORIGINS (comma separated), defaulting
    to the local Next.js and API ports. Credentials are allowed so the
    Authorization header and the x-admin-auth marker reach the routes.
    """
    print__memory_monitoring("📋 Registering CORS middleware...")

    allowed_origins_str = os.getenv(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:8000",
    )
    allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]
    print__memory_monitoring(f"📋 CORS allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )


def setup_brotli_middleware(app: FastAPI):
    """Brotli-compress responses of 1000 bytes or more for clients sending Accept-Encoding: br.

    Chart data pages are large JSON documents, so this matters most for the
    temp-data routes.
    """
    print__memory_monitoring("📋 Registering Brotli compression middleware...")
    app.add_middleware(BrotliMiddleware, minimum_size=1000)
