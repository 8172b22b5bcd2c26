"""S3 JSON document helpers.

Every widget config, batch file, page index, blog article and user-data
document is a single JSON object in one bucket. These helpers never raise on
storage errors: failures are logged and reported through the return value
(``None`` / ``False`` / ``[]``).
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
import threading
from typing import Any, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from api.config import settings
from api.utils.debug import print__s3_debug

# ==============================================================================
# CLIENT
# ==============================================================================

_s3_client = None
_client_lock = threading.Lock()


def get_s3_client():
    """Get or create the S3 client singleton."""
    global _s3_client
    if _s3_client is not None:
        return _s3_client

    with _client_lock:
        if _s3_client is not None:
            return _s3_client

        client_kwargs = {"region_name": settings.AWS_REGION}
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            client_kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
            client_kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY

        if settings.S3_ENDPOINT_URL:
            # MinIO / R2 style endpoints need path addressing
            client_kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
            client_kwargs["config"] = Config(
                signature_version="s3v4", s3={"addressing_style": "path"}
            )
            print__s3_debug(f"S3 client initialized with custom endpoint: {settings.S3_ENDPOINT_URL}")
        else:
            client_kwargs["config"] = Config(signature_version="s3v4")
            print__s3_debug(f"S3 client initialized for region: {settings.AWS_REGION}")

        _s3_client = boto3.client("s3", **client_kwargs)
        return _s3_client


def set_s3_client(client) -> None:
    """Replace the client singleton (``None`` resets it to lazy creation)."""
    global _s3_client
    _s3_client = client


def s3_configured() -> bool:
    """True when credentials are configured or a client has been injected."""
    if _s3_client is not None:
        return True
    return bool(settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY)


# ==============================================================================
# DOCUMENT OPERATIONS
# ==============================================================================


def save_to_s3(key: str, data: Any) -> bool:
    try:
        body = json.dumps(data, ensure_ascii=False, default=str)
        get_s3_client().put_object(
            Bucket=settings.S3_BUCKET_NAME,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType="application/json",
        )
        print__s3_debug(f"Saved {key} ({len(body)} bytes)")
        return True
    except (ClientError, BotoCoreError) as e:
        print__s3_debug(f"❌ Save failed for {key}: {e}")
        return False
    except Exception as e:
        print__s3_debug(f"❌ Save error for {key}: {type(e).__name__}: {e}")
        return False


def get_from_s3(key: str) -> Optional[Any]:
    """Fetch and parse one JSON document. ``None`` when missing, unreadable or invalid."""
    try:
        response = get_s3_client().get_object(Bucket=settings.S3_BUCKET_NAME, Key=key)
        body = response["Body"].read()
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        if not body:
            return None
        return json.loads(body)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if code in ("NoSuchKey", "404", "NotFound"):
            print__s3_debug(f"Key not found: {key}")
        else:
            print__s3_debug(f"❌ Fetch failed for {key}: {e}")
        return None
    except json.JSONDecodeError as e:
        print__s3_debug(f"❌ Invalid JSON in {key}: {e}")
        return None
    except Exception as e:
        print__s3_debug(f"❌ Fetch error for {key}: {type(e).__name__}: {e}")
        return None


def delete_from_s3(key: str) -> bool:
    try:
        get_s3_client().delete_object(Bucket=settings.S3_BUCKET_NAME, Key=key)
        print__s3_debug(f"Deleted {key}")
        return True
    except (ClientError, BotoCoreError) as e:
        print__s3_debug(f"❌ Delete failed for {key}: {e}")
        return False
    except Exception as e:
        print__s3_debug(f"❌ Delete error for {key}: {type(e).__name__}: {e}")
        return False


def list_from_s3(prefix: str) -> List[str]:
    """All keys under a prefix, following ListObjectsV2 continuation tokens."""
    keys: List[str] = []
    try:
        client = get_s3_client()
        params = {"Bucket": settings.S3_BUCKET_NAME, "Prefix": prefix}
        while True:
            response = client.list_objects_v2(**params)
            keys.extend(obj["Key"] for obj in response.get("Contents", []) or [])
            if not response.get("IsTruncated"):
                break
            params["ContinuationToken"] = response.get("NextContinuationToken")
        print__s3_debug(f"Listed {len(keys)} keys under {prefix}")
        return keys
    except (ClientError, BotoCoreError) as e:
        print__s3_debug(f"❌ List failed for {prefix}: {e}")
        return []
    except Exception as e:
        print__s3_debug(f"❌ List error for {prefix}: {type(e).__name__}: {e}")
        return []
