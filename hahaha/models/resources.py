"""Resource identity, snapshot and cache data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class CacheReadiness(StrEnum):
    """Cache completeness state."""

    WARMING = "warming"
    READY = "ready"
    RESYNCING = "resyncing"


class ChangeKind(StrEnum):
    """Why a key was handed to cache subscribers."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RESYNC = "resync"


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Universal identity of a resource: ``(namespace, name)``.

    Cluster-scoped resources use an empty namespace.
    """

    namespace: str
    name: str

    @classmethod
    def cluster(cls, name: str) -> ResourceKey:
        """Key for a cluster-scoped resource."""
        return cls(namespace="", name=name)

    @classmethod
    def parse(cls, value: str) -> ResourceKey:
        """Parse ``ns/name`` or ``name`` back into a key."""
        namespace, sep, name = value.partition("/")
        if not sep:
            return cls(namespace="", name=namespace)
        if not namespace or not name or "/" in name:
            raise ValueError(f"resource key must be 'namespace/name' or 'name', got: {value!r}")
        return cls(namespace=namespace, name=name)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ResourceKey | None:
        """Extract the key from a raw API object, or None if it has no name."""
        metadata = raw.get("metadata")
        if not isinstance(metadata, dict):
            return None
        name = metadata.get("name")
        if not name:
            return None
        return cls(namespace=str(metadata.get("namespace") or ""), name=str(name))

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


@dataclass(frozen=True)
class ResourceSnapshot:
    """Versioned, immutable copy of one resource as last observed.

    ``spec`` and ``status`` are opaque to the engine.  ``raw`` keeps the full
    object so handlers can read fields outside spec/status and so conditional
    updates can be built from the exact version that was read.
    """

    key: ResourceKey
    resource_version: str
    generation: int = 0
    spec: dict[str, Any] = field(default_factory=dict)
    status: dict[str, Any] = field(default_factory=dict)
    deletion_timestamp: str | None = None
    finalizers: tuple[str, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)
    uid: str = ""
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ResourceSnapshot:
        """Build a snapshot from a camelCase API object dict.

        Raises ValueError when the object carries no ``metadata.name``.
        """
        key = ResourceKey.from_raw(raw)
        if key is None:
            raise ValueError("object has no metadata.name")
        metadata: dict[str, Any] = raw.get("metadata") or {}

        spec = raw.get("spec")
        status = raw.get("status")
        labels_raw = metadata.get("labels")
        labels = {str(k): str(v) for k, v in labels_raw.items()} if isinstance(labels_raw, dict) else {}
        deletion = metadata.get("deletionTimestamp")

        return cls(
            key=key,
            resource_version=str(metadata.get("resourceVersion") or ""),
            generation=int(metadata.get("generation") or 0),
            spec=spec if isinstance(spec, dict) else {},
            status=status if isinstance(status, dict) else {},
            deletion_timestamp=str(deletion) if deletion else None,
            finalizers=tuple(str(f) for f in metadata.get("finalizers") or ()),
            labels=labels,
            uid=str(metadata.get("uid") or ""),
            raw=raw,
        )

    def is_newer_than(self, other: ResourceSnapshot | None) -> bool:
        """Return True if this snapshot strictly supersedes ``other``."""
        if other is None:
            return True
        return compare_resource_versions(self.resource_version, other.resource_version) > 0


def compare_resource_versions(a: str, b: str) -> int:
    """Order two resourceVersion tokens; returns -1, 0 or 1 like ``cmp``.

    Numeric tokens (what the API server hands out) compare as integers.  An
    empty token is older than any other.  Two different non-numeric tokens
    have no known order, so ``a`` is reported as newer.
    """
    if a == b:
        return 0
    if not a:
        return -1
    if not b:
        return 1
    if a.isdigit() and b.isdigit():
        ia, ib = int(a), int(b)
        if ia == ib:
            return 0
        return 1 if ia > ib else -1
    return 1
