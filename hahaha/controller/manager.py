"""Controller manager: owns the engine components and gates dispatch on leadership."""

from __future__ import annotations

from dataclasses import dataclass

from hahaha.cache.resource_cache import ResourceCache
from hahaha.collector.watcher import ResourceWatcher
from hahaha.controller.leader import LeaderElector
from hahaha.controller.queue import WorkQueue
from hahaha.controller.workers import WorkerPool
from hahaha.models.resources import ChangeKind
from hahaha.observability.logging import get_logger


@dataclass(frozen=True)
class ManagerStatus:
    alive: bool
    ready: bool
    leader: bool
    cache_synced: bool
    cache_readiness: str
    cached_resources: int
    queue_depth: int
    in_flight: int
    identity: str


class ControllerManager:
    """Wires cache -> queue -> workers and starts/stops the pool on leadership changes.

    The watcher runs on every replica so the cache is warm on failover; only
    the leader runs workers.
    """

    def __init__(
        self,
        cache: ResourceCache,
        watcher: ResourceWatcher,
        queue: WorkQueue,
        pool: WorkerPool,
        elector: LeaderElector,
        drain_timeout_seconds: float = 15.0,
    ) -> None:
        self._cache = cache
        self._watcher = watcher
        self._queue = queue
        self._pool = pool
        self._elector = elector
        self._drain_timeout = drain_timeout_seconds
        self._log = get_logger("manager")
        self._started = False
        self._stopping = False

        cache.subscribe(queue.enqueue)
        elector.set_callbacks(self._on_started_leading, self._on_stopped_leading)

    async def start(self) -> None:
        """Warm the cache (raises if the first list fails), then join the election."""
        if self._started:
            return
        self._stopping = False
        await self._watcher.start()
        await self._elector.start()
        self._started = True
        self._log.info("manager_started", identity=self._elector.identity)

    async def stop(self) -> None:
        """Drain workers while the Lease is still renewed, release it, then stop the queue and the watcher."""
        self._stopping = True
        await self._pool.stop(self._drain_timeout)
        await self._elector.stop()
        self._queue.shutdown()
        await self._watcher.stop()
        self._started = False
        self._log.info("manager_stopped")

    def liveness(self) -> bool:
        return self._started and self._watcher.is_alive() and self._elector.is_alive()

    def readiness(self) -> bool:
        return self._started and self._elector.is_leader() and self._cache.has_synced

    def status(self) -> ManagerStatus:
        return ManagerStatus(
            alive=self.liveness(),
            ready=self.readiness(),
            leader=self._elector.is_leader(),
            cache_synced=self._cache.has_synced,
            cache_readiness=self._cache.readiness().value,
            cached_resources=len(self._cache),
            queue_depth=len(self._queue),
            in_flight=self._queue.in_flight,
            identity=self._elector.identity,
        )

    async def _on_started_leading(self) -> None:
        if self._stopping:
            return
        await self._pool.start()
        # Re-deliver everything: keys dropped or handed back while we were not leading.
        count = self._cache.notify_all(ChangeKind.RESYNC)
        self._log.info("dispatch_started", keys=count)

    async def _on_stopped_leading(self) -> None:
        # The Lease may already belong to someone else: cancel, do not drain.
        await self._pool.stop(drain_timeout=0)
        self._log.info("dispatch_stopped")
