"""Remote resource store protocol and its error taxonomy.

The store is the versioned system of record (the Kubernetes API server).  The
engine only ever talks to it through :class:`ResourceStore`, so tests can
substitute an in-memory implementation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from hahaha.models.resources import ResourceKey, ResourceSnapshot


class StoreError(Exception):
    """Base class for all remote store failures."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientStoreError(StoreError):
    """Timeouts, throttling, server-side unavailability. Always retried."""


class ConflictError(TransientStoreError):
    """Optimistic-concurrency precondition failed (resourceVersion mismatch)."""


class NotFoundError(StoreError):
    """The object does not exist."""


class VersionTooOldError(StoreError):
    """The store compacted history past the requested watch version (HTTP 410)."""


class PermanentStoreError(StoreError):
    """Validation or authorization failure; retrying unchanged input will not help."""


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"


@dataclass(frozen=True)
class WatchEvent:
    """One event from a watch stream.

    ``snapshot`` is None for BOOKMARK events, which only carry a version.
    """

    type: WatchEventType
    resource_version: str
    snapshot: ResourceSnapshot | None = None


@dataclass(frozen=True)
class ListResult:
    items: list[ResourceSnapshot] = field(default_factory=list)
    resource_version: str = ""


class ResourceStore(Protocol):
    """Operations the engine needs from the remote store."""

    async def list(self) -> ListResult:
        """Full list plus the collection-level resourceVersion watermark."""
        ...

    def watch(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        """Stream events after ``resource_version`` until closed or invalidated.

        Raises VersionTooOldError when the version has been compacted away.
        """
        ...

    async def replace(self, snapshot: ResourceSnapshot, body: dict[str, Any]) -> ResourceSnapshot:
        """Conditionally replace the object; ``snapshot.resource_version`` is the precondition.

        Raises ConflictError on a version mismatch.
        """
        ...

    async def replace_status(self, snapshot: ResourceSnapshot, status: dict[str, Any]) -> ResourceSnapshot:
        """Write the status subresource with the same precondition as :meth:`replace`."""
        ...

    async def delete(self, key: ResourceKey) -> None:
        """Delete the object; not-found counts as success."""
        ...
