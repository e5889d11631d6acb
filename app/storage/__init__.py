"""
Object storage for tenant source trees and published build output.
"""
from app.storage.object_store import (
    MinioObjectStore,
    ObjectAccessDeniedError,
    ObjectInfo,
    ObjectNotFoundError,
    ObjectStore,
    ObjectStoreError,
    ObjectStoreNetworkError,
    ObjectStoreTimeoutError,
    StoredObject,
    call_store,
)

__all__ = [
    "ObjectStore",
    "MinioObjectStore",
    "ObjectInfo",
    "StoredObject",
    "call_store",
    # Exceptions
    "ObjectStoreError",
    "ObjectNotFoundError",
    "ObjectAccessDeniedError",
    "ObjectStoreNetworkError",
    "ObjectStoreTimeoutError",
]
