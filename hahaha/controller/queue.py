"""Deduplicating, rate-limited work queue keyed by resource identity.

Per-key state is one of: absent, queued, processing, processing-and-dirty.

- ``enqueue`` on an absent key queues it; on a queued key it is a no-op (a key
  parked on a ``RequeueAfter`` becomes ready now, a key under error backoff
  keeps its not-before time); on a processing key it only sets the dirty flag.
- ``get`` hands out one ready key and marks it processing.  A key is never
  handed to two workers at once.
- ``done`` either forgets the key, re-queues it immediately (dirty), after the
  requested delay (``RequeueAfter``) or after its exponential backoff (``Error``).

All state changes are synchronous, so they are atomic with respect to the
event loop shared by the watcher (enqueue) and the workers (get/done).
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections import deque
from collections.abc import Callable

from hahaha.models.reconcile import ReconcileResult, ResultKind, WorkItem
from hahaha.models.resources import ChangeKind, ResourceKey
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import (
    queue_adds_total,
    queue_backoff_seconds,
    queue_depth,
    queue_dropped_total,
    queue_in_flight,
    queue_retries_total,
)

_DEFAULT_BACKOFF_BASE_S: float = 1.0
_DEFAULT_BACKOFF_MAX_S: float = 300.0
_DEFAULT_MAX_PERMANENT_RETRIES: int = 5


class QueueShutDown(Exception):
    """Raised by :meth:`WorkQueue.get` once the queue is shut down."""


class WorkQueue:
    """Per-key deduplicating scheduler with exponential backoff.

    Example::

        queue = WorkQueue(backoff_base=1.0, backoff_max=300.0)
        cache.subscribe(queue.enqueue)
        item = await queue.get()
        queue.done(item.key, ReconcileResult.done())
    """

    def __init__(
        self,
        backoff_base: float = _DEFAULT_BACKOFF_BASE_S,
        backoff_max: float = _DEFAULT_BACKOFF_MAX_S,
        max_permanent_retries: int = _DEFAULT_MAX_PERMANENT_RETRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a queue.

        backoff_base: delay after the first consecutive failure of a key.
        backoff_max: cap on any backoff delay.
        max_permanent_retries: permanent failures tolerated before a key is
            dropped until its next change notification.
        clock: monotonic time source (injectable for tests).
        """
        if backoff_base <= 0 or backoff_max < backoff_base:
            raise ValueError("backoff_base must be > 0 and <= backoff_max")
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._max_permanent_retries = max_permanent_retries
        self._clock = clock
        self._log = get_logger("queue")

        self._items: dict[ResourceKey, WorkItem] = {}  # queued: ready or waiting
        self._ready: deque[ResourceKey] = deque()
        self._waiting: list[tuple[float, int, ResourceKey]] = []  # (not_before, seq, key)
        self._processing: dict[ResourceKey, WorkItem] = {}
        self._dirty: dict[ResourceKey, str] = {}
        self._failures: dict[ResourceKey, int] = {}

        self._seq = itertools.count()
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, key: ResourceKey, reason: str | ChangeKind = "enqueued") -> None:
        """Schedule ``key`` for reconciliation; duplicates are coalesced."""
        if self._shutting_down:
            return
        reason = str(reason.value if isinstance(reason, ChangeKind) else reason)

        if key in self._processing:
            self._dirty[key] = reason
            queue_adds_total.labels(outcome="dirty").inc()
            return

        now = self._clock()
        item = self._items.get(key)
        if item is not None:
            if item.not_before > now and self._failures.get(key, 0) == 0:
                # Parked on RequeueAfter: a fresh change makes it ready now.
                item.reason = reason
                item.not_before = now
                self._schedule(item, now)
            queue_adds_total.labels(outcome="coalesced").inc()
            return

        self._schedule(WorkItem(key=key, reason=reason, not_before=now, attempts=self._failures.get(key, 0)), now)
        queue_adds_total.labels(outcome="queued").inc()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def get(self) -> WorkItem:
        """Block until a key is ready, mark it processing and return its item."""
        while True:
            if self._shutting_down:
                raise QueueShutDown
            item = self._pop_ready()
            if item is not None:
                return item

            timeout: float | None = None
            if self._waiting:
                timeout = max(0.0, self._waiting[0][0] - self._clock())
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except TimeoutError:
                pass

    def get_nowait(self) -> WorkItem | None:
        """Like :meth:`get` but returns None instead of blocking."""
        if self._shutting_down:
            raise QueueShutDown
        return self._pop_ready()

    def done(self, key: ResourceKey, result: ReconcileResult) -> None:
        """Record the outcome of the reconcile of ``key`` and schedule what follows."""
        item = self._processing.pop(key, None)
        if item is None:
            self._log.warning("done_for_unknown_key", key=str(key))
            return
        dirty_reason = self._dirty.pop(key, None)
        now = self._clock()

        if result.kind is ResultKind.DONE:
            self._failures.pop(key, None)
            if dirty_reason is not None:
                self._requeue(key, dirty_reason, now)

        elif result.kind is ResultKind.REQUEUE_AFTER:
            self._failures.pop(key, None)
            if dirty_reason is not None:
                self._requeue(key, dirty_reason, now)
            else:
                self._requeue(key, "requeue_after", now + result.delay)

        else:
            failures = self._failures.get(key, 0) + 1
            if result.permanent and failures > self._max_permanent_retries:
                self._failures.pop(key, None)
                if dirty_reason is not None:
                    self._requeue(key, dirty_reason, now)
                else:
                    queue_dropped_total.inc()
                    self._log.error(
                        "key_dropped_after_permanent_errors",
                        key=str(key),
                        failures=failures,
                        error=str(result.cause),
                    )
                self._emit_metrics()
                return

            self._failures[key] = failures
            queue_retries_total.inc()
            if dirty_reason is not None:
                # A change arrived mid-run; the counter still grows so later failures back off.
                self._requeue(key, dirty_reason, now)
            else:
                delay = self.backoff_delay(failures)
                queue_backoff_seconds.observe(delay)
                self._log.debug("key_backoff", key=str(key), failures=failures, delay_s=delay)
                self._requeue(key, "error", now + delay)

        self._emit_metrics()

    # ------------------------------------------------------------------
    # Control and introspection
    # ------------------------------------------------------------------

    def forget(self, key: ResourceKey) -> None:
        """Drop any queued entry and backoff history for ``key``."""
        self._items.pop(key, None)
        self._dirty.pop(key, None)
        self._failures.pop(key, None)
        self._emit_metrics()

    def shutdown(self) -> None:
        """Stop accepting work and wake every blocked :meth:`get`."""
        self._shutting_down = True
        self._wakeup.set()

    @property
    def is_shut_down(self) -> bool:
        return self._shutting_down

    def backoff_delay(self, failures: int) -> float:
        """Delay after ``failures`` consecutive failures: base * 2^(n-1), capped."""
        if failures <= 0:
            return 0.0
        return float(min(self._backoff_base * (2 ** (failures - 1)), self._backoff_max))

    def failures(self, key: ResourceKey) -> int:
        return self._failures.get(key, 0)

    def is_processing(self, key: ResourceKey) -> bool:
        return key in self._processing

    def is_dirty(self, key: ResourceKey) -> bool:
        return key in self._dirty

    def pending(self, key: ResourceKey) -> WorkItem | None:
        """The queued (not yet handed out) item for ``key``, if any."""
        return self._items.get(key)

    @property
    def in_flight(self) -> int:
        return len(self._processing)

    def __len__(self) -> int:
        return len(self._items)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _requeue(self, key: ResourceKey, reason: str, not_before: float) -> None:
        item = WorkItem(key=key, reason=reason, not_before=not_before, attempts=self._failures.get(key, 0))
        self._schedule(item, self._clock())

    def _schedule(self, item: WorkItem, now: float) -> None:
        self._items[item.key] = item
        if item.not_before <= now:
            self._ready.append(item.key)
        else:
            heapq.heappush(self._waiting, (item.not_before, next(self._seq), item.key))
        self._emit_metrics()
        self._wakeup.set()

    def _pop_ready(self) -> WorkItem | None:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            not_before, _seq, key = heapq.heappop(self._waiting)
            item = self._items.get(key)
            # Entries superseded by a reschedule or a forget() are skipped.
            if item is not None and item.not_before == not_before:
                self._ready.append(key)

        while self._ready:
            key = self._ready.popleft()
            item = self._items.get(key)
            if item is None or item.not_before > now or key in self._processing:
                continue
            del self._items[key]
            self._processing[key] = item
            self._emit_metrics()
            return item
        return None

    def _emit_metrics(self) -> None:
        queue_depth.set(len(self._items))
        queue_in_flight.set(len(self._processing))
