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
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.helpers import traceback_json_response
from api.utils.debug import print__api_debug, print__debug, print__token_debug


# ==============================================================================
# EXCEPTION HANDLERS
# ==============================================================================
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    """Pydantic validation errors as 422 with field-level details.

    Response Format:
        {"detail": "Validation error", "errors": [{"loc": [...], "msg": ..., "type": ...}]}
    """
    print__debug(f"Validation error: {exc.errors()}")
    # errors() may carry exception objects in ctx, which JSON cannot encode
    errors = [
        {key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()
    ]
    return JSONResponse(status_code=422, content={"detail": "Validation error", "errors": errors})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """HTTPException as {"detail": ...}; 401s get the request traced for auth debugging."""
    if exc.status_code == 401:
        client_ip = request.client.host if request.client else "unknown"
        print__token_debug(f"🚨 HTTP 401 UNAUTHORIZED: {exc.detail}")
        print__token_debug(f"🚨 HTTP 401 TRACE: {request.method} {request.url} from {client_ip}")
        print__token_debug(
            f"🚨 HTTP 401 TRACE: Request headers: "
            f"{[k for k in request.headers.keys() if k.lower() != 'authorization']}"
        )
    elif exc.status_code >= 400:
        print__api_debug(
            f"🚨 HTTP {exc.status_code} ERROR: {exc.detail} ({request.method} {request.url.path})"
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def value_error_handler(_request: Request, exc: ValueError):
    """ValueError from business logic becomes 400 with the message as detail."""
    print__debug(f"ValueError: {str(exc)}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def general_exception_handler(_request: Request, exc: Exception):
    """Catch-all 500. The traceback is only exposed with DEBUG_TRACEBACK=1."""
    print__debug(f"Unexpected error: {type(exc).__name__}: {str(exc)}")
    print__api_debug(traceback.format_exc())

    resp = traceback_json_response(exc)
    if resp:
        return resp
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
