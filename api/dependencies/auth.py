"""
MODULE_DESCRIPTION: Authentication Dependencies - JWT Verification and Admin Detection

===================================================================================
PURPOSE AND OVERVIEW
===================================================================================

FastAPI dependencies used by the dashboard routes:

    get_current_user    Guards admin writes (chart, counter and table configs,
                        blogs, navigation edits, batch deletion) and the
                        user-data routes. Extracts "Bearer <token>" from the
                        Authorization header and returns the verified claims.

    is_admin_request    Decides whether a public chart read may see the full
                        config (apiEndpoint, apiKey) or only the sanitized
                        public fields.

Authentication Flow:
    1. Authorization header must be present
    2. Header must be "Bearer <token>" with a non-empty token
    3. verify_google_jwt() validates the token (test, tokeninfo or JWKS)
    4. Any unexpected error becomes 401 "Authentication failed"

===================================================================================
ADMIN REQUEST DETECTION
===================================================================================

A request counts as an admin request when:
    - the x-admin-auth header is present and is not the share-chart marker
      ("share-chart-request"), or
    - the referer contains "/admin/"

Shared chart embeds send the share-chart marker so they get public output
even when opened from an admin session.
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
import traceback

from fastapi import Header, HTTPException, Request

from api.auth.jwt_auth import verify_google_jwt
from api.utils.debug import print__token_debug
from api.utils.memory import log_comprehensive_error
from api.utils.sanitizer import is_admin_headers


# ==============================================================================
# AUTHENTICATION DEPENDENCIES
# ==============================================================================


def get_current_user(authorization: str = Header(None)):
    """Extract and verify the JWT from the Authorization header.

    Returns:
        dict: decoded claims (email, sub, name, exp, ...)

    Raises:
        HTTPException(401): missing or malformed header, or failed verification
    """
    try:
        print__token_debug("🔑 AUTHENTICATION START: get_current_user called")

        if not authorization:
            print__token_debug("❌ AUTH ERROR: No authorization header provided")
            raise HTTPException(status_code=401, detail="Missing Authorization header")

        if not authorization.startswith("Bearer "):
            print__token_debug("❌ AUTH ERROR: Invalid authorization header format")
            raise HTTPException(
                status_code=401,
                detail="Invalid Authorization header format. Expected 'Bearer <token>'",
            )

        auth_parts = authorization.split(" ", 1)
        if len(auth_parts) != 2 or not auth_parts[1].strip():
            print__token_debug("❌ AUTH ERROR: Malformed authorization header")
            raise HTTPException(status_code=401, detail="Invalid Authorization header format")

        token = auth_parts[1].strip()
        print__token_debug(f"🔍 AUTH TOKEN: Token extracted (length: {len(token)})")

        user_info = verify_google_jwt(token)
        print__token_debug(
            f"✅ AUTH SUCCESS: User authenticated - {user_info.get('email', 'Unknown')}"
        )
        return user_info

    except HTTPException as he:
        print__token_debug(f"❌ AUTH HTTP EXCEPTION: {he.status_code} - {he.detail}")
        raise
    except Exception as e:
        print__token_debug(
            f"❌ AUTH EXCEPTION: {type(e).__name__}: {str(e)}\n{traceback.format_exc()}"
        )
        log_comprehensive_error("authentication", e)
        raise HTTPException(status_code=401, detail="Authentication failed")


def is_admin_request(request: Request) -> bool:
    """True for admin UI requests; shared chart embeds are never admin."""
    admin = is_admin_headers(request.headers)
    print__token_debug(f"🔍 Admin request check for {request.url.path}: {admin}")
    return admin
