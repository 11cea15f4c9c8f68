"""Fixed-size pool of reconcile workers pulling from the shared queue."""

from __future__ import annotations

import asyncio

from hahaha.controller.queue import QueueShutDown, WorkQueue
from hahaha.controller.reconciler import Reconciler
from hahaha.models.reconcile import ReconcileResult
from hahaha.models.resources import ResourceKey
from hahaha.observability.logging import get_logger

_DEFAULT_DRAIN_TIMEOUT_S: float = 15.0


class WorkerPool:
    """N asyncio tasks, each looping ``get() -> reconcile() -> done()``.

    The pool can be started and stopped repeatedly (leadership may come and
    go); the queue itself outlives it.
    """

    def __init__(self, queue: WorkQueue, reconciler: Reconciler, workers: int = 4) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self._queue = queue
        self._reconciler = reconciler
        self._size = workers
        self._log = get_logger("workers")

        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._in_flight: dict[int, ResourceKey] = {}
        self._stopping = False

    @property
    def size(self) -> int:
        return self._size

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopping

    def in_flight(self) -> list[ResourceKey]:
        return sorted(self._in_flight.values())

    async def start(self) -> None:
        if self._tasks:
            return
        self._stopping = False
        for idx in range(self._size):
            self._tasks[idx] = asyncio.create_task(self._worker(idx), name=f"reconcile-worker-{idx}")
        self._log.info("worker_pool_started", workers=self._size)

    async def stop(self, drain_timeout: float = _DEFAULT_DRAIN_TIMEOUT_S) -> None:
        """Stop dispatching, let in-flight reconciles finish within the drain window, cancel the rest.

        ``drain_timeout=0`` cancels in-flight reconciles at once.
        """
        if not self._tasks:
            return
        self._stopping = True
        tasks = dict(self._tasks)

        busy = [task for idx, task in tasks.items() if idx in self._in_flight]
        for idx, task in tasks.items():
            if idx not in self._in_flight:
                task.cancel()

        if busy and drain_timeout > 0:
            _done, pending = await asyncio.wait(busy, timeout=drain_timeout)
            busy = list(pending)
            if busy:
                self._log.warning("worker_drain_timeout", cancelled=len(busy), drain_timeout_s=drain_timeout)
        for task in busy:
            task.cancel()

        await asyncio.gather(*tasks.values(), return_exceptions=True)
        self._tasks.clear()
        self._in_flight.clear()
        self._log.info("worker_pool_stopped")

    async def _worker(self, idx: int) -> None:
        while not self._stopping:
            try:
                item = await self._queue.get()
            except QueueShutDown:
                return

            key = item.key
            self._in_flight[idx] = key
            try:
                result = await self._run_one(key)
            except asyncio.CancelledError:
                # Hand the key back so the next leader (or restart) picks it up.
                self._queue.done(key, ReconcileResult.requeue_after(0))
                raise
            finally:
                self._in_flight.pop(idx, None)
            self._queue.done(key, result)

    async def _run_one(self, key: ResourceKey) -> ReconcileResult:
        try:
            return await self._reconciler.reconcile(key)
        except Exception as exc:
            self._log.error("worker_reconcile_crashed", key=str(key), error=str(exc), exc_info=True)
            return ReconcileResult.error(exc)
