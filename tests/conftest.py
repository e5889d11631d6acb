"""
Pytest configuration and fixtures.
"""
import os
import sys
import threading
import time
from pathlib import Path

# Set test configuration before importing app
os.environ["SITE_API_KEY"] = "test-api-key"
os.environ["STORE_BUCKET"] = "test-bucket"
os.environ["STORE_ENDPOINT"] = "localhost:9000"

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from app.core.config import Settings
from app.storage.object_store import ObjectInfo, ObjectNotFoundError, StoredObject

TEST_BUCKET = "test-bucket"


class FakeObjectStore:
    """In-memory object store with call recording and failure injection."""

    def __init__(self, put_delay: float = 0.0):
        self.objects = {}
        self.get_calls = []
        self.put_calls = []
        self.list_calls = 0
        self.extra_listing = []
        self.fail_list = None
        self.fail_get = {}
        self.fail_put = {}
        self.probe_result = {"ok": True, "status_code": 200, "message": "Connected"}
        self.put_delay = put_delay
        self.active_puts = 0
        self.max_active_puts = 0
        self._lock = threading.Lock()

    def add(self, bucket, key, body, content_type=None):
        self.objects[(bucket, key)] = StoredObject(
            key=key,
            body=body,
            content_type=content_type,
            etag=f'"etag-{len(body)}"',
        )

    def keys(self, bucket=TEST_BUCKET):
        return {key for (b, key) in self.objects if b == bucket}

    def list(self, bucket, prefix):
        self.list_calls += 1
        if self.fail_list is not None:
            raise self.fail_list
        listed = [
            ObjectInfo(key=key, size=len(obj.body))
            for (b, key), obj in sorted(self.objects.items())
            if b == bucket and key.startswith(prefix)
        ]
        return listed + self.extra_listing

    def get(self, bucket, key):
        with self._lock:
            self.get_calls.append(key)
        if key in self.fail_get:
            raise self.fail_get[key]
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise ObjectNotFoundError(f"Not found: {key}") from None

    def put(self, bucket, key, body, content_type):
        with self._lock:
            self.put_calls.append(key)
            self.active_puts += 1
            self.max_active_puts = max(self.max_active_puts, self.active_puts)
        try:
            if self.put_delay:
                time.sleep(self.put_delay)
            if key in self.fail_put:
                raise self.fail_put[key]
            with self._lock:
                self.objects[(bucket, key)] = StoredObject(
                    key=key, body=body, content_type=content_type
                )
        finally:
            with self._lock:
                self.active_puts -= 1

    def probe(self, bucket):
        return dict(self.probe_result)


@pytest.fixture
def fake_store():
    """Empty in-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def test_settings():
    """Settings tuned for fast local tests."""
    return Settings(
        bucket=TEST_BUCKET,
        request_timeout_s=5,
        step_timeout_s=30,
        publish_concurrency=4,
        build_output_dir="build",
        api_key="test-api-key",
    )


@pytest.fixture
def client(fake_store, test_settings):
    """Test client wired to the in-memory store."""
    original_store = app.state.object_store
    original_settings = app.state.settings
    app.state.object_store = fake_store
    app.state.settings = test_settings
    try:
        yield TestClient(app, raise_server_exceptions=False)
    finally:
        app.state.object_store = original_store
        app.state.settings = original_settings


@pytest.fixture
def auth_headers():
    """Return valid authentication headers."""
    return {"X-API-Key": "test-api-key"}


@pytest.fixture
def invalid_auth_headers():
    """Return invalid authentication headers."""
    return {"X-API-Key": "invalid-key"}


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    """Scratch directory for local trees."""
    root = tmp_path / "tree"
    root.mkdir()
    return root
