"""List-then-watch driver that keeps a :class:`ResourceCache` in sync.

Provides:
- An initial full list on :meth:`ResourceWatcher.start`; failures propagate so
  the process can refuse to start without store connectivity
- Resumable watches from the cache's resourceVersion watermark, with bookmarks
- Transparent recovery from 410 Gone: a fresh list whose diff against the old
  cache synthesizes the notifications the lost window would have carried
- Exponential back-off (1 s - 60 s) on stream failures, and a forced relist
  after 3 consecutive failures
- A resync timer that re-delivers every known key at a fixed period
"""

from __future__ import annotations

import asyncio
import contextlib

from hahaha.cache.resource_cache import ResourceCache
from hahaha.models.resources import ChangeKind
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import (
    cache_resyncs_total,
    watcher_backoff_seconds,
    watcher_errors_total,
    watcher_events_total,
    watcher_relistings_total,
)
from hahaha.store.base import (
    ResourceStore,
    StoreError,
    VersionTooOldError,
    WatchEvent,
    WatchEventType,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BACKOFF_MIN_S: float = 1.0
_BACKOFF_MAX_S: float = 60.0
_BACKOFF_MULTIPLIER: float = 2.0

_MAX_CONSECUTIVE_FAILURES: int = 3


class ResourceWatcher:
    """Feeds one resource collection from a store into a cache.

    Lifecycle::

        watcher = ResourceWatcher(store, cache, resync_period_seconds=300)
        await watcher.start()   # initial list; raises on store failure
        # ... watch and resync run as background tasks
        await watcher.stop()
    """

    def __init__(
        self,
        store: ResourceStore,
        cache: ResourceCache,
        resync_period_seconds: float = 300.0,
        name: str = "pods",
    ) -> None:
        self._store = store
        self._cache = cache
        self._resync_period = resync_period_seconds
        self._name = name
        self._log = get_logger(f"watcher.{name}")

        self._running: bool = False
        self._task: asyncio.Task[None] | None = None
        self._resync_task: asyncio.Task[None] | None = None

        self._needs_list: bool = True
        self._consecutive_failures: int = 0
        self._backoff_s: float = _BACKOFF_MIN_S

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """List once, then launch the watch and resync loops."""
        if self._running:
            return
        await self._relist(reason="initial")
        self._running = True
        self._task = asyncio.create_task(self._watch_loop(), name=f"watcher-{self._name}")
        if self._resync_period > 0:
            self._resync_task = asyncio.create_task(self._resync_loop(), name=f"resync-{self._name}")
        self._log.info("watcher_started", resource_version=self._cache.resource_version)

    async def stop(self) -> None:
        """Close the stream and wait for both loops to exit."""
        self._running = False
        for task in (self._task, self._resync_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._task = None
        self._resync_task = None
        self._log.info("watcher_stopped")

    def is_alive(self) -> bool:
        """True while the watch loop task is running."""
        return self._running and self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                if self._needs_list:
                    await self._relist(reason="recovery")
                await self._run_watch()
            except asyncio.CancelledError:
                return
            except VersionTooOldError:
                watcher_errors_total.labels(error="version_too_old").inc()
                self._log.warning("watch_version_too_old", resource_version=self._cache.resource_version)
                self._needs_list = True
            except StoreError as exc:
                if not self._running:
                    return
                watcher_errors_total.labels(error=type(exc).__name__).inc()
                await self._handle_failure("store_error", exc)
            except Exception as exc:
                if not self._running:
                    return
                watcher_errors_total.labels(error="unexpected").inc()
                await self._handle_failure("unexpected", exc)

    async def _run_watch(self) -> None:
        """Consume one watch stream until the server closes it."""
        received = 0
        async for event in self._store.watch(self._cache.resource_version):
            if not self._running:
                return
            received += 1
            watcher_events_total.labels(event_type=event.type.value).inc()
            self._handle_event(event)
            self._reset_backoff()

        if received:
            self._log.debug("watch_stream_closed", events=received)
            return

        # An empty stream that closes immediately counts as a failure so a
        # misbehaving server cannot spin the loop.
        await self._handle_failure("empty_stream", None)

    def _handle_event(self, event: WatchEvent) -> None:
        if event.type is WatchEventType.BOOKMARK:
            self._cache.advance(event.resource_version)
            return
        snapshot = event.snapshot
        if snapshot is None:
            return
        if event.type is WatchEventType.DELETED:
            self._cache.remove(snapshot.key, snapshot.resource_version)
        else:
            self._cache.apply(snapshot)

    async def _handle_failure(self, reason: str, exc: BaseException | None) -> None:
        self._consecutive_failures += 1
        self._log.warning(
            "watch_failed",
            reason=reason,
            error=str(exc) if exc is not None else "",
            consecutive_failures=self._consecutive_failures,
        )
        if self._consecutive_failures >= _MAX_CONSECUTIVE_FAILURES:
            self._needs_list = True
        await self._backoff(reason)

    # ------------------------------------------------------------------
    # Back-off
    # ------------------------------------------------------------------

    async def _backoff(self, reason: str) -> None:
        """Sleep for the current back-off duration, then increase it."""
        delay = min(self._backoff_s, _BACKOFF_MAX_S)
        self._log.debug("watcher_backoff", reason=reason, delay_s=delay)
        watcher_backoff_seconds.observe(delay)
        await asyncio.sleep(delay)
        self._backoff_s = min(self._backoff_s * _BACKOFF_MULTIPLIER, _BACKOFF_MAX_S)

    def _reset_backoff(self) -> None:
        self._backoff_s = _BACKOFF_MIN_S
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Relist and resync
    # ------------------------------------------------------------------

    async def _relist(self, reason: str) -> None:
        """Replace the cache content with a fresh full list."""
        watcher_relistings_total.labels(reason=reason).inc()
        self._log.info("relist_start", reason=reason)
        self._cache.begin_resync()
        result = await self._store.list()
        counts = self._cache.replace_all(result.items, result.resource_version)
        self._needs_list = False
        self._reset_backoff()
        self._log.info(
            "relist_complete",
            reason=reason,
            resource_version=result.resource_version,
            resources=len(result.items),
            **counts,
        )

    async def _resync_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._resync_period)
            except asyncio.CancelledError:
                return
            count = self._cache.notify_all(ChangeKind.RESYNC)
            cache_resyncs_total.inc()
            self._log.debug("resync_enqueued", keys=count)
