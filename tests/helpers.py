"""Test helpers and utilities for the test suite."""

import io
import json
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError
from dotenv import load_dotenv

load_dotenv()

TEST_GOOGLE_CLIENT_ID = "test-client-id.apps.googleusercontent.com"


def create_test_jwt_token(email="test_user@example.com", expires_in_hours: float = 1):
    """Create a test JWT token accepted by the API when USE_TEST_TOKENS=1."""
    import jwt

    now = datetime.now(timezone.utc)
    payload = {
        "email": email,
        "aud": os.environ.get("GOOGLE_CLIENT_ID", TEST_GOOGLE_CLIENT_ID),
        "exp": now + timedelta(hours=expires_in_hours),
        "iat": now,
        "iss": "test_issuer",
        "name": "Test User",
        "given_name": "Test",
        "family_name": "User",
    }
    return jwt.encode(payload, "test_secret", algorithm="HS256")


def auth_headers(email="test_user@example.com") -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_test_jwt_token(email)}"}


def admin_headers() -> Dict[str, str]:
    return {"x-admin-auth": "true"}


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client used by api.storage.s3.

    Only the four calls the storage layer makes are implemented. Listing pages
    through ``page_size`` keys so continuation tokens are exercised.
    """

    def __init__(self, page_size: int = 1000):
        self.objects: Dict[str, bytes] = {}
        self.page_size = page_size
        self.calls: List[str] = []
        self.fail_puts = False
        self.fail_deletes = False

    # boto3-shaped API ----------------------------------------------------

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.calls.append(f"put:{Key}")
        if self.fail_puts:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[Key] = Body if isinstance(Body, bytes) else Body.encode("utf-8")
        return {"ETag": '"fake"'}

    def get_object(self, Bucket, Key):
        self.calls.append(f"get:{Key}")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, Bucket, Key):
        self.calls.append(f"delete:{Key}")
        if self.fail_deletes:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "DeleteObject")
        self.objects.pop(Key, None)
        return {}

    def list_objects_v2(self, Bucket, Prefix="", ContinuationToken=None):
        self.calls.append(f"list:{Prefix}")
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start : start + self.page_size]
        response: Dict[str, Any] = {"Contents": [{"Key": k} for k in page]}
        if start + self.page_size < len(keys):
            response["IsTruncated"] = True
            response["NextContinuationToken"] = str(start + self.page_size)
        else:
            response["IsTruncated"] = False
        return response

    # test conveniences ---------------------------------------------------

    def put_json(self, key: str, data: Any) -> None:
        self.objects[key] = json.dumps(data).encode("utf-8")

    def get_json(self, key: str) -> Optional[Any]:
        if key not in self.objects:
            return None
        return json.loads(self.objects[key].decode("utf-8"))

    def count_calls(self, prefix: str) -> int:
        return sum(1 for call in self.calls if call.startswith(prefix))
