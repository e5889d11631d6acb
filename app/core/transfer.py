"""
Transfer engine: file tree <-> object key prefix.

- fetch_tree: bucket prefix -> local directory (full key mirrored under root)
- publish_tree: local directory -> bucket prefix (concurrent, capped)

No diffing, no delta transfer, no rollback. A failed fetch leaves the
files already written; a failed publish leaves the objects already
uploaded. The caller owns the directory and cleans it up.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence

from app.core.metrics import metrics
from app.storage.object_store import ObjectStore, call_store

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_REQUEST_TIMEOUT = 30  # seconds per store call
DEFAULT_PUBLISH_CONCURRENCY = 8
PROGRESS_EVERY = 5

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    "html": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "json": "application/json",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "md": "text/markdown",
    "ico": "image/x-icon",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "ttf": "font/ttf",
}


class TransferError(Exception):
    """Error during a tree transfer."""
    pass


class UnsafePathError(TransferError):
    """Key or path would escape its root."""
    pass


class PublishError(TransferError):
    """One or more uploads in a publish failed."""

    def __init__(self, message: str, failed: int, attempted: int):
        super().__init__(message)
        self.failed = failed
        self.attempted = attempted


@dataclass(frozen=True)
class ManifestEntry:
    """One (object key, local relative path) pair."""
    key: str
    relative_path: str
    size: int = 0


# =============================================================================
# Key / path helpers
# =============================================================================

def content_type_for(path: str) -> str:
    """Content type from file extension, octet-stream when unknown."""
    name = PurePosixPath(str(path).replace("\\", "/")).name
    if "." not in name:
        return DEFAULT_CONTENT_TYPE
    ext = name.rsplit(".", 1)[1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def normalize_key(key: str) -> str:
    """Object keys always use forward slashes."""
    return key.replace("\\", "/")


def join_key(prefix: str, relative_path: str) -> str:
    """Destination key for a relative path under a key prefix."""
    relative = normalize_key(relative_path).lstrip("/")
    prefix = normalize_key(prefix).rstrip("/")
    return f"{prefix}/{relative}" if prefix else relative


def safe_destination(root: Path, key: str) -> Path:
    """
    Local path for an object key under root.

    Raises:
        UnsafePathError: key is absolute, contains '..', or resolves
            outside root
    """
    parts = PurePosixPath(normalize_key(key)).parts
    if not parts or key.startswith("/") or ".." in parts:
        raise UnsafePathError(f"Unsafe object key: {key!r}")

    dest = root.joinpath(*parts)
    root_resolved = root.resolve()
    if root_resolved not in dest.resolve().parents:
        raise UnsafePathError(f"Object key escapes destination root: {key!r}")
    return dest


def is_excluded(key: str, exclusions: Optional[Sequence[str]]) -> bool:
    """True if key contains any exclusion pattern."""
    if not exclusions:
        return False
    return any(pattern in key for pattern in exclusions)


def build_local_manifest(local_root: Path, key_prefix: str) -> list[ManifestEntry]:
    """
    Walk local_root and map every regular file to its destination key.

    Symbolic links are skipped, never followed. Empty directories yield
    no entries.
    """
    entries: list[ManifestEntry] = []
    for current, dirnames, filenames in os.walk(local_root, followlinks=False):
        current_path = Path(current)

        for dirname in list(dirnames):
            if (current_path / dirname).is_symlink():
                logger.warning(f"publish_skip_symlink path={dirname}")
                dirnames.remove(dirname)
        dirnames.sort()

        for filename in sorted(filenames):
            file_path = current_path / filename
            if file_path.is_symlink():
                logger.warning(f"publish_skip_symlink path={filename}")
                continue
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(local_root).as_posix()
            entries.append(ManifestEntry(
                key=join_key(key_prefix, relative),
                relative_path=relative,
                size=file_path.stat().st_size,
            ))
    return entries


# =============================================================================
# Fetch
# =============================================================================

async def fetch_tree(
    store: ObjectStore,
    bucket: str,
    key_prefix: str,
    dest_root: Path,
    exclusions: Optional[Sequence[str]] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> int:
    """
    Download every object under key_prefix into dest_root.

    The destination mirrors the full object key (the prefix is not
    stripped). Excluded keys are never retrieved; objects with an empty
    body are skipped. Existing files are overwritten.

    Returns:
        Number of files written

    Raises:
        ObjectStoreError: list or get failed (files already written stay)
        UnsafePathError: a key would escape dest_root
        TransferError: an object could not be written locally
    """
    dest_root = Path(dest_root)
    logger.info(f"fetch_start bucket={bucket} prefix={key_prefix}")

    listed = await call_store(store.list, bucket, key_prefix, timeout=timeout)
    if not listed:
        logger.info(f"fetch_empty prefix={key_prefix}")
        return 0

    logger.info(f"fetch_listed prefix={key_prefix} objects={len(listed)}")

    written = 0
    for info in listed:
        if not info.key:
            continue

        if is_excluded(info.key, exclusions):
            logger.info(f"fetch_skip_excluded key={info.key}")
            continue

        dest = safe_destination(dest_root, info.key)
        obj = await call_store(store.get, bucket, info.key, timeout=timeout)
        if not obj.body:
            continue

        # A key can collide with another key used as a directory (a vs a/b.txt)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(obj.body)
        except OSError as e:
            logger.error(f"fetch_write_failed key={info.key} error_type={type(e).__name__}")
            raise TransferError(f"Cannot write object {info.key!r} to workspace") from e

        written += 1
        metrics.inc("objects_fetched_total")

        if written % PROGRESS_EVERY == 0:
            logger.info(f"fetch_progress written={written} listed={len(listed)}")

    logger.info(f"fetch_done prefix={key_prefix} written={written}")
    return written


# =============================================================================
# Publish
# =============================================================================

async def publish_tree(
    store: ObjectStore,
    local_root: Path,
    bucket: str,
    key_prefix: str,
    concurrency: int = DEFAULT_PUBLISH_CONCURRENCY,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> int:
    """
    Upload every regular file under local_root to key_prefix.

    Uploads run concurrently, at most `concurrency` at a time. Every
    upload is awaited before returning; if any failed, PublishError is
    raised (chained to the first failure). Objects already uploaded stay.

    Returns:
        Number of files uploaded
    """
    local_root = Path(local_root)
    if not local_root.is_dir():
        raise TransferError(f"Publish root is not a directory: {local_root.name}")

    entries = build_local_manifest(local_root, key_prefix)
    logger.info(f"publish_start bucket={bucket} prefix={key_prefix} files={len(entries)}")

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def upload(entry: ManifestEntry) -> None:
        async with semaphore:
            body = await asyncio.to_thread((local_root / entry.relative_path).read_bytes)
            content_type = content_type_for(entry.relative_path)
            try:
                await call_store(
                    store.put, bucket, entry.key, body, content_type, timeout=timeout
                )
            except Exception:
                logger.error(f"publish_upload_failed key={entry.key}")
                raise
            metrics.inc("objects_published_total")
            logger.debug(f"publish_uploaded key={entry.key} content_type={content_type}")

    results = await asyncio.gather(
        *(upload(entry) for entry in entries),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        raise PublishError(
            f"{len(failures)} of {len(entries)} uploads failed",
            failed=len(failures),
            attempted=len(entries),
        ) from failures[0]

    logger.info(f"publish_done prefix={key_prefix} uploaded={len(entries)}")
    return len(entries)
