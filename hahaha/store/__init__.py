"""Remote store adapters: the resource-store protocol and its Kubernetes implementations."""

from hahaha.store.base import (
    ConflictError,
    ListResult,
    NotFoundError,
    PermanentStoreError,
    ResourceStore,
    StoreError,
    TransientStoreError,
    VersionTooOldError,
    WatchEvent,
    WatchEventType,
)

__all__ = [
    "ConflictError",
    "ListResult",
    "NotFoundError",
    "PermanentStoreError",
    "ResourceStore",
    "StoreError",
    "TransientStoreError",
    "VersionTooOldError",
    "WatchEvent",
    "WatchEventType",
]
