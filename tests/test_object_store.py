"""
Tests for the MinIO-backed object store client.

The minio client is replaced with a MagicMock; no network is used.
"""
import logging
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import urllib3
from minio import Minio
from minio.error import S3Error, ServerError

from app.core.config import Settings
from app.storage.object_store import (
    MinioObjectStore,
    ObjectAccessDeniedError,
    ObjectNotFoundError,
    ObjectStoreError,
    ObjectStoreNetworkError,
    ObjectStoreTimeoutError,
    _split_endpoint,
    call_store,
)


class StubS3Error(S3Error):
    """S3Error carrying only an error code."""

    def __init__(self, code: str):
        Exception.__init__(self, code)
        self._stub_code = code

    @property
    def code(self):
        return self._stub_code


class StubServerError(ServerError):
    """ServerError carrying only an HTTP status."""

    def __init__(self, status_code: int):
        Exception.__init__(self, f"HTTP {status_code}")
        self._stub_status = status_code

    @property
    def status_code(self):
        return self._stub_status


def s3_error(code: str) -> S3Error:
    return StubS3Error(code)


def server_error(status_code: int) -> ServerError:
    return StubServerError(status_code)


@pytest.fixture
def store():
    store = MinioObjectStore("localhost:9000", access_key="ak", secret_key="sk")
    store._client = MagicMock()
    return store


class TestEndpoint:
    """Tests for endpoint parsing and client construction."""

    def test_host_port(self):
        assert _split_endpoint("localhost:9000", False) == ("localhost:9000", False)

    def test_https_url(self):
        assert _split_endpoint("https://acct.r2.cloudflarestorage.com", False) == (
            "acct.r2.cloudflarestorage.com",
            True,
        )

    def test_http_url(self):
        assert _split_endpoint("http://minio:9000/", True) == ("minio:9000", False)

    def test_from_settings(self):
        settings = Settings(
            store_endpoint="https://r2.example.com",
            store_access_key="ak",
            store_secret_key="sk",
            request_timeout_s=12,
            max_attempts=5,
        )
        store = MinioObjectStore.from_settings(settings)
        assert store.endpoint == "r2.example.com"
        assert store.secure is True
        assert store.read_timeout == 12
        assert store.max_attempts == 5

    def test_missing_credentials_warned(self, caplog):
        with caplog.at_level(logging.WARNING, logger="app.storage.object_store"):
            MinioObjectStore.from_settings(Settings(store_endpoint="localhost:9000"))
        assert any("store_credentials_missing" in r.getMessage() for r in caplog.records)

    def test_configured_credentials_not_warned(self, caplog):
        settings = Settings(store_access_key="ak", store_secret_key="sk")
        with caplog.at_level(logging.WARNING, logger="app.storage.object_store"):
            MinioObjectStore.from_settings(settings)
        assert not any("store_credentials_missing" in r.getMessage() for r in caplog.records)

    def test_client_is_lazy_and_cached(self):
        store = MinioObjectStore("localhost:9000", access_key="ak", secret_key="sk")
        assert store._client is None
        client = store.client
        assert isinstance(client, Minio)
        assert store.client is client


class TestErrorTranslation:
    """Tests for mapping minio/urllib3 failures to store errors."""

    @pytest.mark.parametrize("code", ["NoSuchKey", "NoSuchBucket"])
    def test_not_found(self, code):
        assert isinstance(MinioObjectStore._translate(s3_error(code), "k"), ObjectNotFoundError)

    @pytest.mark.parametrize("code", ["AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"])
    def test_access_denied(self, code):
        assert isinstance(
            MinioObjectStore._translate(s3_error(code), "k"), ObjectAccessDeniedError
        )

    def test_other_s3_code(self):
        error = MinioObjectStore._translate(s3_error("SlowDown"), "k")
        assert type(error) is ObjectStoreError

    def test_server_error_is_network(self):
        error = MinioObjectStore._translate(server_error(503), "k")
        assert isinstance(error, ObjectStoreNetworkError)

    def test_read_timeout(self):
        exc = urllib3.exceptions.ReadTimeoutError(None, "/k", "read timed out")
        assert isinstance(MinioObjectStore._translate(exc, "k"), ObjectStoreTimeoutError)

    def test_retries_exhausted_on_timeout(self):
        reason = urllib3.exceptions.ConnectTimeoutError("connect timed out")
        exc = urllib3.exceptions.MaxRetryError(None, "/k", reason=reason)
        assert isinstance(MinioObjectStore._translate(exc, "k"), ObjectStoreTimeoutError)

    def test_retries_exhausted_on_connection(self):
        reason = urllib3.exceptions.NewConnectionError(None, "refused")
        exc = urllib3.exceptions.MaxRetryError(None, "/k", reason=reason)
        error = MinioObjectStore._translate(exc, "k")
        assert isinstance(error, ObjectStoreNetworkError)
        assert not isinstance(error, ObjectStoreTimeoutError)

    def test_connection_refused_is_not_a_timeout(self):
        exc = urllib3.exceptions.NewConnectionError(None, "refused")
        error = MinioObjectStore._translate(exc, "k")
        assert isinstance(error, ObjectStoreNetworkError)
        assert not isinstance(error, ObjectStoreTimeoutError)

    def test_timeout_is_a_network_error(self):
        assert issubclass(ObjectStoreTimeoutError, ObjectStoreNetworkError)


class TestOperations:
    """Tests for list/get/put against a mocked client."""

    def test_list_skips_directories(self, store):
        store._client.list_objects.return_value = [
            SimpleNamespace(object_name="p/a.md", size=3, is_dir=False),
            SimpleNamespace(object_name="p/dir/", size=None, is_dir=True),
            SimpleNamespace(object_name="p/b.md", size=None, is_dir=False),
        ]

        listed = store.list("bucket", "p")

        assert [o.key for o in listed] == ["p/a.md", "p/b.md"]
        assert listed[1].size == 0
        store._client.list_objects.assert_called_once_with(
            bucket_name="bucket", prefix="p", recursive=True
        )

    def test_list_failure_translated(self, store):
        store._client.list_objects.side_effect = urllib3.exceptions.ProtocolError("reset")
        with pytest.raises(ObjectStoreNetworkError):
            store.list("bucket", "p")

    def test_get_reads_and_releases(self, store):
        response = MagicMock()
        response.read.return_value = b"<h1>hi</h1>"
        response.headers = {"ETag": '"abc"', "Content-Type": "text/html"}
        store._client.get_object.return_value = response

        obj = store.get("bucket", "p/index.html")

        assert obj.body == b"<h1>hi</h1>"
        assert obj.content_type == "text/html"
        assert obj.etag == '"abc"'
        assert obj.size == 11
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_get_releases_on_read_failure(self, store):
        response = MagicMock()
        response.read.side_effect = urllib3.exceptions.ProtocolError("reset")
        store._client.get_object.return_value = response

        with pytest.raises(ObjectStoreNetworkError):
            store.get("bucket", "p/index.html")
        response.release_conn.assert_called_once()

    def test_put_sends_length_and_type(self, store):
        store.put("bucket", "p/build-output/a.css", b"body{}", "text/css")

        kwargs = store._client.put_object.call_args.kwargs
        assert kwargs["bucket_name"] == "bucket"
        assert kwargs["object_name"] == "p/build-output/a.css"
        assert kwargs["length"] == 6
        assert kwargs["content_type"] == "text/css"
        assert kwargs["data"].read() == b"body{}"


class TestProbe:
    """Tests for the connectivity probe."""

    def test_connected(self, store):
        store._client.bucket_exists.return_value = True
        result = store.probe("bucket")
        assert result["ok"] is True
        assert result["status_code"] == 200

    def test_missing_bucket(self, store):
        store._client.bucket_exists.return_value = False
        result = store.probe("bucket")
        assert result["ok"] is False
        assert result["status_code"] == 404

    def test_access_denied(self, store):
        store._client.bucket_exists.side_effect = s3_error("AccessDenied")
        result = store.probe("bucket")
        assert result["status_code"] == 403
        assert "Access denied" in result["message"]

    def test_unreachable(self, store):
        reason = urllib3.exceptions.NewConnectionError(None, "refused")
        store._client.bucket_exists.side_effect = urllib3.exceptions.MaxRetryError(
            None, "/", reason=reason
        )
        result = store.probe("bucket")
        assert result["status_code"] == 503
        assert "Network error" in result["message"]


class TestCallStore:
    """Tests for the async time bound around blocking calls."""

    @pytest.mark.asyncio
    async def test_returns_value(self):
        assert await call_store(lambda a, b: a + b, 2, 3, timeout=1) == 5

    @pytest.mark.asyncio
    async def test_timeout(self):
        def slow():
            time.sleep(0.5)

        with pytest.raises(ObjectStoreTimeoutError):
            await call_store(slow, timeout=0.05)

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self):
        def missing():
            raise ObjectNotFoundError("gone")

        with pytest.raises(ObjectNotFoundError):
            await call_store(missing, timeout=1)
