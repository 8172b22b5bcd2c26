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

import time

import jwt
import requests
from fastapi import HTTPException
from jwt.algorithms import RSAAlgorithm

from api.config import settings
from api.utils.debug import print__token_debug

GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


# ============================================================
# AUTHENTICATION - JWT VERIFICATION
# ============================================================
def _check_token_format(token: str) -> None:
    # header.payload.signature, each part base64 and non-trivial
    parts = token.split(".")
    if len(parts) != 3 or any(not part or len(part) < 4 for part in parts):
        raise HTTPException(status_code=401, detail="Invalid JWT token format")


def _verify_test_token(payload: dict) -> dict:
    """Test tokens (iss=test_issuer) are accepted only with USE_TEST_TOKENS=1."""
    if os.getenv("USE_TEST_TOKENS", "0") != "1":
        print__token_debug("🚫 Test token rejected: USE_TEST_TOKENS is not enabled")
        raise HTTPException(
            status_code=401, detail="Test tokens are not allowed in this environment"
        )

    expected_aud = os.getenv("GOOGLE_CLIENT_ID")
    if payload.get("aud") != expected_aud:
        print__token_debug(
            f"Test token audience mismatch. Expected: {expected_aud}, Got: {payload.get('aud')}"
        )
        raise HTTPException(status_code=401, detail="Invalid test token audience")

    if int(payload.get("exp", 0)) < time.time():
        print__token_debug("Test token has expired")
        raise HTTPException(status_code=401, detail="Test token has expired")

    print__token_debug("✅ TEST MODE: test token accepted")
    return payload


def _verify_via_tokeninfo(token: str) -> dict:
    """NextAuth id_tokens carry no 'kid'; Google's tokeninfo endpoint validates them."""
    settings._JWT_KID_MISSING_COUNT += 1
    if settings._JWT_KID_MISSING_COUNT % 10 == 1:
        print__token_debug(
            f"JWT without 'kid' (#{settings._JWT_KID_MISSING_COUNT}), using tokeninfo verification"
        )

    try:
        response = requests.get(GOOGLE_TOKENINFO_URL, params={"id_token": token}, timeout=10)
    except requests.RequestException as e:
        print__token_debug(f"Tokeninfo request failed: {e}")
        raise HTTPException(
            status_code=401,
            detail="Token verification failed - unable to validate NextAuth.js token",
        )

    if response.status_code != 200:
        print__token_debug(f"Tokeninfo returned {response.status_code}: {response.text}")
        raise HTTPException(status_code=401, detail="Invalid NextAuth.js id_token")

    tokeninfo = response.json()
    if tokeninfo.get("aud") != os.getenv("GOOGLE_CLIENT_ID"):
        print__token_debug(f"Tokeninfo audience mismatch: {tokeninfo.get('aud')}")
        raise HTTPException(status_code=401, detail="Invalid token audience")
    if int(tokeninfo.get("exp", 0)) < time.time():
        print__token_debug("Tokeninfo shows token has expired")
        raise HTTPException(status_code=401, detail="Token has expired")

    print__token_debug("✅ NextAuth.js id_token verified via tokeninfo")
    return tokeninfo


def _verify_via_jwks(token: str, kid: str) -> dict:
    try:
        jwks = requests.get(settings.GOOGLE_JWK_URL, timeout=10).json()
    except requests.RequestException as e:
        print__token_debug(f"Failed to fetch Google JWKS: {e}")
        raise HTTPException(
            status_code=401, detail="Token verification failed - unable to fetch Google keys"
        )

    key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
    if key is None:
        print__token_debug("JWT public key not found in Google JWKS")
        raise HTTPException(status_code=401, detail="Invalid token: public key not found")

    try:
        payload = jwt.decode(
            token,
            RSAAlgorithm.from_jwk(key),
            algorithms=["RS256"],
            audience=os.getenv("GOOGLE_CLIENT_ID"),
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidAudienceError:
        raise HTTPException(status_code=401, detail="Invalid token audience")
    except jwt.InvalidSignatureError:
        raise HTTPException(status_code=401, detail="Invalid token signature")
    except jwt.DecodeError as e:
        print__token_debug(f"JWT decode error: {e}")
        raise HTTPException(status_code=401, detail="Invalid token format")
    except jwt.InvalidTokenError as e:
        print__token_debug(f"JWT token is invalid: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    print__token_debug("✅ Google JWT verified via JWKS")
    return payload


def verify_google_jwt(token: str) -> dict:
    """Verify a Google-issued (or test) JWT and return its claims.

    Every failure surfaces as HTTPException(401).
    """
    try:
        _check_token_format(token)
        try:
            header = jwt.get_unverified_header(token)
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.DecodeError as e:
            print__token_debug(f"JWT decode error: {e}")
            raise HTTPException(status_code=401, detail="Invalid JWT token format")

        print__token_debug(f"Token iss: {payload.get('iss')}, aud: {payload.get('aud')}")

        if payload.get("iss") == "test_issuer":
            return _verify_test_token(payload)
        if "kid" not in header:
            return _verify_via_tokeninfo(token)
        return _verify_via_jwks(token, header["kid"])

    except HTTPException:
        raise
    except KeyError as e:
        print__token_debug(f"JWT verification KeyError: {e}")
        raise HTTPException(status_code=401, detail="Invalid JWT token structure")
    except Exception as e:
        print__token_debug(f"JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Token verification failed")
