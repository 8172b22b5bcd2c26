"""Shared fixtures: test-token auth, an in-memory S3 client and clean caches."""

import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("USE_TEST_TOKENS", "1")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")

import pytest

from tests.helpers import FakeS3Client


@pytest.fixture
def fake_s3():
    """Inject a FakeS3Client into api.storage.s3 and reset it afterwards."""
    from api.storage.s3 import set_s3_client

    client = FakeS3Client()
    set_s3_client(client)
    yield client
    set_s3_client(None)


@pytest.fixture(autouse=True)
def clean_state():
    """Empty the TTL caches and the rate limiter around every test."""
    from api.config import settings
    from api.storage.page_cache import clear_all_caches

    clear_all_caches()
    settings.rate_limit_storage.clear()
    yield
    clear_all_caches()
    settings.rate_limit_storage.clear()
