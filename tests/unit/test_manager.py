"""Tests for hahaha.controller.manager."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest

from hahaha.cache.resource_cache import ResourceCache
from hahaha.controller.leader import LeaderElector
from hahaha.controller.manager import ControllerManager
from hahaha.controller.queue import WorkQueue
from hahaha.controller.workers import WorkerPool
from hahaha.models.reconcile import ReconcileResult
from hahaha.models.resources import ChangeKind, ResourceKey, ResourceSnapshot

if TYPE_CHECKING:
    from conftest import MemoryLeaseStore, PodFactory


def _watcher(alive: bool = True) -> MagicMock:
    watcher = MagicMock()
    watcher.start = AsyncMock()
    watcher.stop = AsyncMock()
    watcher.is_alive.return_value = alive
    return watcher


def _pool() -> MagicMock:
    pool = MagicMock()
    pool.start = AsyncMock()
    pool.stop = AsyncMock()
    return pool


def _manager(cache: ResourceCache | None = None, watcher: MagicMock | None = None) -> tuple[ControllerManager, ResourceCache, WorkQueue, MagicMock]:
    cache = cache or ResourceCache()
    queue = WorkQueue()
    pool = _pool()
    elector = LeaderElector(None, identity="solo", enabled=False)
    manager = ControllerManager(cache, watcher or _watcher(), queue, pool, elector, drain_timeout_seconds=1.0)
    return manager, cache, queue, pool


class TestWiring:
    def test_cache_changes_reach_queue(self, pod: PodFactory) -> None:
        manager, cache, queue, _pool = _manager()
        cache.apply(ResourceSnapshot.from_raw(pod(name="a")))
        assert len(queue) == 1

    @pytest.mark.asyncio
    async def test_leadership_starts_pool_and_redelivers_keys(self, pod: PodFactory) -> None:
        cache = ResourceCache()
        cache.replace_all([ResourceSnapshot.from_raw(pod(name="a"))], "1")
        manager, cache, queue, pool = _manager(cache)
        seen: list[ChangeKind] = []
        cache.subscribe(lambda k, c: seen.append(c))

        await manager.start()
        pool.start.assert_awaited_once()
        assert ChangeKind.RESYNC in seen
        assert queue.pending(ResourceKey("default", "a")) is not None

        await manager.stop()
        pool.stop.assert_awaited()
        assert queue.is_shut_down


class TestProbes:
    @pytest.mark.asyncio
    async def test_not_alive_or_ready_before_start(self) -> None:
        manager, *_ = _manager()
        assert not manager.liveness()
        assert not manager.readiness()

    @pytest.mark.asyncio
    async def test_ready_requires_synced_cache(self) -> None:
        manager, cache, *_ = _manager()
        await manager.start()
        try:
            assert manager.liveness()
            assert not manager.readiness()
            cache.replace_all([], "1")
            assert manager.readiness()
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_dead_watcher_fails_liveness(self) -> None:
        manager, *_ = _manager(watcher=_watcher(alive=False))
        await manager.start()
        try:
            assert not manager.liveness()
        finally:
            await manager.stop()

    @pytest.mark.asyncio
    async def test_status_snapshot(self, pod: PodFactory) -> None:
        cache = ResourceCache()
        cache.replace_all([ResourceSnapshot.from_raw(pod(name="a"))], "5")
        manager, *_ = _manager(cache)
        await manager.start()
        try:
            status = manager.status()
        finally:
            await manager.stop()
        assert status.leader
        assert status.ready
        assert status.cache_synced
        assert status.cached_resources == 1
        assert status.identity == "solo"

    @pytest.mark.asyncio
    async def test_watcher_start_failure_propagates(self) -> None:
        watcher = _watcher()
        watcher.start.side_effect = RuntimeError("list failed")
        manager, *_ = _manager(watcher=watcher)
        with pytest.raises(RuntimeError):
            await manager.start()
        assert not manager.liveness()


class _BlockingReconciler:
    """Holds every reconcile open until cancelled."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def reconcile(self, key: ResourceKey) -> ReconcileResult:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        return ReconcileResult.done()


class TestLeadershipLoss:
    @pytest.mark.asyncio
    async def test_lost_lease_cancels_in_flight_before_reporting_non_leader(
        self, lease_store: MemoryLeaseStore
    ) -> None:
        cache = ResourceCache()
        queue = WorkQueue()
        reconciler = _BlockingReconciler()
        pool = WorkerPool(queue, reconciler, workers=2)  # type: ignore[arg-type]
        elector = LeaderElector(
            lease_store,
            identity="a",
            lease_duration_seconds=0.6,
            renew_deadline_seconds=0.4,
            retry_period_seconds=0.05,
        )
        # A drain window longer than the Lease must not delay cancellation.
        manager = ControllerManager(cache, _watcher(), queue, pool, elector, drain_timeout_seconds=30.0)

        await manager.start()
        try:
            async with asyncio.timeout(2.0):
                while not elector.is_leader():
                    await asyncio.sleep(0.01)
            queue.enqueue(ResourceKey("default", "a"))
            await asyncio.wait_for(reconciler.started.wait(), timeout=1.0)

            lease_store.fail = True
            async with asyncio.timeout(2.0):
                while elector.is_leader():
                    await asyncio.sleep(0.01)
            assert reconciler.cancelled.is_set()
            assert pool.in_flight() == []
            assert not pool.running
            assert queue.pending(ResourceKey("default", "a")) is not None
        finally:
            lease_store.fail = False
            await manager.stop()

    @pytest.mark.asyncio
    async def test_shutdown_drains_before_releasing_lease(self, lease_store: MemoryLeaseStore) -> None:
        cache = ResourceCache()
        queue = WorkQueue()
        pool = _pool()
        elector = LeaderElector(lease_store, identity="a")
        order: list[str] = []

        def record_stop(*args: object, **kwargs: object) -> None:
            assert lease_store.record is not None
            order.append(f"pool.stop held={lease_store.record.holder_identity}")

        pool.stop.side_effect = record_stop
        manager = ControllerManager(cache, _watcher(), queue, pool, elector, drain_timeout_seconds=5.0)

        await manager.start()
        async with asyncio.timeout(2.0):
            while not elector.is_leader():
                await asyncio.sleep(0.01)
        await manager.stop()

        assert order[0] == "pool.stop held=a"
        pool.stop.assert_any_await(5.0)
        assert lease_store.record.holder_identity is None
