"""In-memory, versioned mirror of cluster resources.

Stores one :class:`ResourceSnapshot` per :class:`ResourceKey` and notifies
subscribers of every accepted change.  The watcher is the only writer; workers
and the health endpoint only read.

Apply-if-newer
--------------
A snapshot is accepted only if its ``resourceVersion`` is strictly newer than
the one held for that key.  Stale or duplicate watch events are therefore
no-ops: they neither change the cache nor notify anybody.

Relist diff
-----------
:meth:`replace_all` installs a fresh full list and synthesizes the
ADDED/MODIFIED/DELETED notifications a lost watch window would have carried, so
no state transition is silently dropped after a "version too old" failure.

Subscribers
-----------
Listeners are plain callables ``(key, change_kind) -> None``.  The cache keeps
no reference to the queue itself; a listener that raises is logged and does
not stop delivery to the others.
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable

from hahaha.models.resources import (
    CacheReadiness,
    ChangeKind,
    ResourceKey,
    ResourceSnapshot,
    compare_resource_versions,
)
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import (
    cache_resources,
    cache_stale_events_total,
    cache_synthetic_events_total,
)

ChangeListener = Callable[[ResourceKey, ChangeKind], None]


class ResourceCache:
    """Versioned snapshot store with one-way change notification.

    Example::

        cache = ResourceCache()
        cache.subscribe(queue.enqueue)
        cache.replace_all(result.items, result.resource_version)
        snapshot = cache.get(ResourceKey("default", "widget-1"))
    """

    def __init__(self) -> None:
        self._log = get_logger("cache")
        self._store: dict[ResourceKey, ResourceSnapshot] = {}
        self._listeners: list[ChangeListener] = []
        self._resource_version: str = ""
        self._readiness: CacheReadiness = CacheReadiness.WARMING
        self._synced: bool = False

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a callable invoked as ``listener(key, change_kind)``."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def get(self, key: ResourceKey) -> ResourceSnapshot | None:
        return self._store.get(key)

    def keys(self) -> builtins.list[ResourceKey]:
        return sorted(self._store)

    def list(self, namespace: str | None = None) -> builtins.list[ResourceSnapshot]:
        """Return all snapshots, optionally restricted to one namespace."""
        return [s for k, s in sorted(self._store.items()) if namespace is None or k.namespace == namespace]

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    @property
    def resource_version(self) -> str:
        """Collection-level watermark to resume watching from."""
        return self._resource_version

    @property
    def has_synced(self) -> bool:
        """True once the first full list has been installed."""
        return self._synced

    def readiness(self) -> CacheReadiness:
        return self._readiness

    # ------------------------------------------------------------------
    # Write interface (watcher only)
    # ------------------------------------------------------------------

    def apply(self, snapshot: ResourceSnapshot) -> bool:
        """Apply-if-newer; returns True if the cache changed."""
        current = self._store.get(snapshot.key)
        if not snapshot.is_newer_than(current):
            cache_stale_events_total.inc()
            self._log.debug(
                "cache_stale_event_ignored",
                key=str(snapshot.key),
                incoming=snapshot.resource_version,
                held=current.resource_version if current else "",
            )
            return False

        self._store[snapshot.key] = snapshot
        self._advance(snapshot.resource_version)
        cache_resources.set(len(self._store))
        self._notify(snapshot.key, ChangeKind.ADDED if current is None else ChangeKind.MODIFIED)
        return True

    def remove(self, key: ResourceKey, resource_version: str = "") -> bool:
        """Drop ``key`` after an observed delete; returns True if it was present.

        A delete carrying a version older than the held snapshot is stale and
        ignored.
        """
        current = self._store.get(key)
        if current is None:
            self._advance(resource_version)
            return False
        if resource_version and compare_resource_versions(current.resource_version, resource_version) > 0:
            cache_stale_events_total.inc()
            return False

        del self._store[key]
        self._advance(resource_version)
        cache_resources.set(len(self._store))
        self._notify(key, ChangeKind.DELETED)
        return True

    def advance(self, resource_version: str) -> None:
        """Move the watermark forward (BOOKMARK) without touching content."""
        self._advance(resource_version)

    def begin_resync(self) -> None:
        """Mark the cache as being rebuilt by a relist."""
        if self._synced:
            self._readiness = CacheReadiness.RESYNCING

    def replace_all(self, snapshots: Iterable[ResourceSnapshot], resource_version: str) -> dict[str, int]:
        """Install a full list, notifying subscribers of every difference.

        Returns the number of synthesized notifications per change kind.
        """
        fresh: dict[ResourceKey, ResourceSnapshot] = {}
        for snapshot in snapshots:
            held = fresh.get(snapshot.key)
            if snapshot.is_newer_than(held):
                fresh[snapshot.key] = snapshot

        changes: builtins.list[tuple[ResourceKey, ChangeKind]] = []
        old = self._store
        for key, snapshot in fresh.items():
            previous = old.get(key)
            if previous is None:
                changes.append((key, ChangeKind.ADDED))
            elif snapshot.is_newer_than(previous):
                changes.append((key, ChangeKind.MODIFIED))
            else:
                # Never regress an entry the watch already moved past.
                fresh[key] = previous
        for key in old:
            if key not in fresh:
                changes.append((key, ChangeKind.DELETED))

        self._store = fresh
        self._resource_version = resource_version or self._resource_version
        self._synced = True
        self._readiness = CacheReadiness.READY
        cache_resources.set(len(self._store))

        counts = {kind.value: 0 for kind in (ChangeKind.ADDED, ChangeKind.MODIFIED, ChangeKind.DELETED)}
        for key, kind in changes:
            counts[kind.value] += 1
            cache_synthetic_events_total.labels(change=kind.value).inc()
            self._notify(key, kind)

        self._log.info(
            "cache_replaced",
            resources=len(self._store),
            resource_version=self._resource_version,
            **counts,
        )
        return counts

    def notify_all(self, kind: ChangeKind = ChangeKind.RESYNC) -> int:
        """Re-deliver every known key to subscribers; returns the key count."""
        keys = self.keys()
        for key in keys:
            self._notify(key, kind)
        return len(keys)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _advance(self, resource_version: str) -> None:
        if resource_version and compare_resource_versions(resource_version, self._resource_version) > 0:
            self._resource_version = resource_version

    def _notify(self, key: ResourceKey, kind: ChangeKind) -> None:
        for listener in self._listeners:
            try:
                listener(key, kind)
            except Exception as exc:
                self._log.error(
                    "cache_listener_failed",
                    key=str(key),
                    change=kind.value,
                    error=str(exc),
                    exc_info=True,
                )
