"""Data model shared by the cache, queue, reconciler and leader election."""

from hahaha.models.reconcile import ReconcileResult, ResultKind, WorkItem
from hahaha.models.resources import (
    CacheReadiness,
    ChangeKind,
    ResourceKey,
    ResourceSnapshot,
    compare_resource_versions,
)

__all__ = [
    "CacheReadiness",
    "ChangeKind",
    "ReconcileResult",
    "ResourceKey",
    "ResourceSnapshot",
    "ResultKind",
    "WorkItem",
    "compare_resource_versions",
]
