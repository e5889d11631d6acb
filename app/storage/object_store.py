"""
Object store client for tenant project trees.

Thin capability interface over one S3-compatible bucket (R2, MinIO, S3):
- list(bucket, prefix): every object under a key prefix
- get(bucket, key): object body plus metadata
- put(bucket, key, body, content_type)

Network timeouts and retry policy are configured on the underlying HTTP
pool, never in pipeline logic. Failures surface as distinct exception
types (timeout/network vs not-found vs access-denied).
"""
import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, TypeVar
from urllib.parse import urlparse

import urllib3
from minio import Minio
from minio.error import S3Error, ServerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchObject"}
ACCESS_DENIED_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "AllAccessDisabled",
}
RETRY_STATUS_CODES = (500, 502, 503, 504)


# =============================================================================
# Errors
# =============================================================================

class ObjectStoreError(Exception):
    """Base exception for object store operations."""
    pass


class ObjectNotFoundError(ObjectStoreError):
    """Object or bucket does not exist."""
    pass


class ObjectAccessDeniedError(ObjectStoreError):
    """Credentials rejected or missing permission."""
    pass


class ObjectStoreNetworkError(ObjectStoreError):
    """Store unreachable or connection failed."""
    pass


class ObjectStoreTimeoutError(ObjectStoreNetworkError):
    """Store call exceeded its time bound."""
    pass


# =============================================================================
# Data
# =============================================================================

@dataclass(frozen=True)
class ObjectInfo:
    """One listed object. key may be None from a malformed listing."""
    key: Optional[str]
    size: int = 0


@dataclass(frozen=True)
class StoredObject:
    """A retrieved object."""
    key: str
    body: bytes
    content_type: Optional[str] = None
    etag: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.body)


class ObjectStore(Protocol):
    """Capability consumed by the transfer engine and site serving."""

    def list(self, bucket: str, prefix: str) -> list[ObjectInfo]: ...

    def get(self, bucket: str, key: str) -> StoredObject: ...

    def put(self, bucket: str, key: str, body: bytes, content_type: str) -> None: ...

    def probe(self, bucket: str) -> dict[str, Any]: ...


async def call_store(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """
    Run a blocking store call off the event loop with a hard time bound.

    A call that exceeds timeout raises ObjectStoreTimeoutError. The worker
    thread is left to finish on its own; its result is discarded.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError as e:
        name = getattr(fn, "__name__", "call")
        raise ObjectStoreTimeoutError(f"Store {name} timed out after {timeout}s") from e


# =============================================================================
# MinIO-backed implementation
# =============================================================================

def _split_endpoint(endpoint: str, secure: bool) -> tuple[str, bool]:
    """Accept either host[:port] or a full URL; return (host, secure)."""
    if "://" not in endpoint:
        return endpoint.rstrip("/"), secure
    parsed = urlparse(endpoint)
    return parsed.netloc, parsed.scheme == "https"


class MinioObjectStore:
    """S3-compatible object store backed by the MinIO client.

    The client is created lazily and shared read-only across requests;
    minio clients are safe for concurrent use from multiple threads.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        secure: bool = False,
        region: Optional[str] = None,
        connect_timeout: float = 10,
        read_timeout: float = 30,
        max_attempts: int = 3,
    ):
        self.endpoint, self.secure = _split_endpoint(endpoint, secure)
        self._access_key = access_key
        self._secret_key = secret_key
        self.region = region
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.max_attempts = max(1, max_attempts)
        self._client: Optional[Minio] = None

    @classmethod
    def from_settings(cls, settings) -> "MinioObjectStore":
        """Build a store from service Settings."""
        if not settings.store_configured:
            logger.warning(
                f"store_credentials_missing endpoint={settings.store_endpoint} "
                "set STORE_ACCESS_KEY and STORE_SECRET_KEY"
            )
        return cls(
            endpoint=settings.store_endpoint,
            access_key=settings.store_access_key,
            secret_key=settings.store_secret_key,
            secure=settings.store_secure,
            region=settings.store_region,
            connect_timeout=settings.connect_timeout_s,
            read_timeout=settings.request_timeout_s,
            max_attempts=settings.max_attempts,
        )

    @property
    def client(self) -> Minio:
        """Lazy initialization of MinIO client."""
        if self._client is None:
            http_client = urllib3.PoolManager(
                timeout=urllib3.Timeout(
                    connect=self.connect_timeout,
                    read=self.read_timeout,
                ),
                retries=urllib3.Retry(
                    total=self.max_attempts - 1,
                    backoff_factor=0.5,
                    status_forcelist=RETRY_STATUS_CODES,
                ),
                maxsize=16,
            )
            self._client = Minio(
                endpoint=self.endpoint,
                access_key=self._access_key,
                secret_key=self._secret_key,
                secure=self.secure,
                region=self.region,
                http_client=http_client,
            )
            logger.info(f"store_client_ready endpoint={self.endpoint} secure={self.secure}")
        return self._client

    @staticmethod
    def _translate(exc: Exception, what: str) -> ObjectStoreError:
        """Map a minio/urllib3 failure to an ObjectStoreError."""
        if isinstance(exc, S3Error):
            if exc.code in NOT_FOUND_CODES:
                return ObjectNotFoundError(f"Not found: {what}")
            if exc.code in ACCESS_DENIED_CODES:
                return ObjectAccessDeniedError(f"Access denied: {what}")
            return ObjectStoreError(f"Store error {exc.code} for {what}")
        if isinstance(exc, ServerError):
            return ObjectStoreNetworkError(
                f"Store returned HTTP {exc.status_code} for {what}"
            )
        # NewConnectionError subclasses ConnectTimeoutError; check it first
        if isinstance(exc, urllib3.exceptions.MaxRetryError):
            if isinstance(exc.reason, urllib3.exceptions.NewConnectionError):
                return ObjectStoreNetworkError(f"Store unreachable: {what}")
            if isinstance(exc.reason, urllib3.exceptions.TimeoutError):
                return ObjectStoreTimeoutError(f"Timed out: {what}")
            return ObjectStoreNetworkError(f"Store unreachable: {what}")
        if isinstance(exc, urllib3.exceptions.NewConnectionError):
            return ObjectStoreNetworkError(f"Store unreachable: {what}")
        if isinstance(exc, urllib3.exceptions.TimeoutError):
            return ObjectStoreTimeoutError(f"Timed out: {what}")
        if isinstance(exc, urllib3.exceptions.HTTPError):
            return ObjectStoreNetworkError(f"Network error: {what}")
        return ObjectStoreError(f"Unexpected store failure ({type(exc).__name__}): {what}")

    def list(self, bucket: str, prefix: str) -> list[ObjectInfo]:
        """List every object whose key starts with prefix."""
        try:
            objects = self.client.list_objects(
                bucket_name=bucket,
                prefix=prefix,
                recursive=True,
            )
            return [
                ObjectInfo(key=obj.object_name, size=obj.size or 0)
                for obj in objects
                if not obj.is_dir
            ]
        except (S3Error, ServerError, urllib3.exceptions.HTTPError) as e:
            raise self._translate(e, f"list {bucket}/{prefix}") from e

    def get(self, bucket: str, key: str) -> StoredObject:
        """Retrieve one object body and its metadata."""
        try:
            response = self.client.get_object(bucket_name=bucket, object_name=key)
            try:
                body = response.read()
                headers = response.headers
            finally:
                response.close()
                response.release_conn()
        except (S3Error, ServerError, urllib3.exceptions.HTTPError) as e:
            raise self._translate(e, f"get {bucket}/{key}") from e

        etag = headers.get("ETag")
        return StoredObject(
            key=key,
            body=body,
            content_type=headers.get("Content-Type"),
            etag=etag,
        )

    def put(self, bucket: str, key: str, body: bytes, content_type: str) -> None:
        """Store body under key, replacing any existing object."""
        try:
            self.client.put_object(
                bucket_name=bucket,
                object_name=key,
                data=io.BytesIO(body),
                length=len(body),
                content_type=content_type,
            )
        except (S3Error, ServerError, urllib3.exceptions.HTTPError) as e:
            raise self._translate(e, f"put {bucket}/{key}") from e

    def probe(self, bucket: str) -> dict[str, Any]:
        """Check connectivity and bucket access.

        Returns a result dict with ok, status_code and a human-readable
        message; never raises.
        """
        logger.info(f"store_probe endpoint={self.endpoint} bucket={bucket}")
        try:
            exists = self.client.bucket_exists(bucket_name=bucket)
        except (S3Error, ServerError, urllib3.exceptions.HTTPError) as e:
            error = self._translate(e, f"bucket {bucket}")
            logger.warning(f"store_probe_failed error_type={type(error).__name__}")
            if isinstance(error, ObjectAccessDeniedError):
                message = "Access denied. Check store credentials and permissions."
                status_code = 403
            elif isinstance(error, ObjectNotFoundError):
                message = f"Bucket '{bucket}' not found."
                status_code = 404
            elif isinstance(error, ObjectStoreNetworkError):
                message = "Network error. Check the store endpoint URL."
                status_code = 503
            else:
                message = "Failed to connect to the object store."
                status_code = 502
            return {
                "ok": False,
                "status_code": status_code,
                "message": message,
                "error_type": type(error).__name__,
            }

        if not exists:
            return {
                "ok": False,
                "status_code": 404,
                "message": f"Bucket '{bucket}' not found. Check the bucket name or create it first.",
            }
        return {
            "ok": True,
            "status_code": 200,
            "message": f"Connected to bucket: {bucket}",
        }
