"""Lease-based leader election.

Only the replica holding the Lease dispatches reconciles; every replica keeps
its cache warm so a new leader can start immediately.

Timing (defaults)::

    lease_duration  15s   how long a renewal keeps the Lease ours
    renew_deadline  10s   give up leadership if no renewal succeeds this long
    retry_period     2s   spacing of renew and acquire attempts

A leader that cannot renew within ``renew_deadline`` (or that sees another
holder) stops its workers *before* it stops reporting leadership, and it does
so while its Lease is still valid, so two replicas never dispatch together.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from hahaha.models.lease import LeaseRecord
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import leader_is_leader, leader_transitions_total
from hahaha.store.base import StoreError
from hahaha.store.lease import LeaseStore

LeadershipCallback = Callable[[], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class LeaderElector:
    """Acquires, renews and releases a single named Lease.

    Example::

        elector = LeaderElector(lease_store, identity="hahaha-7d9f_ab12cd34")
        elector.set_callbacks(pool.start, pool.stop)
        await elector.start()
        ...
        await elector.stop()   # releases the Lease if held
    """

    def __init__(
        self,
        lease_store: LeaseStore | None,
        identity: str,
        lease_name: str = "hahaha",
        lease_duration_seconds: float = 15.0,
        renew_deadline_seconds: float = 10.0,
        retry_period_seconds: float = 2.0,
        on_started_leading: LeadershipCallback | None = None,
        on_stopped_leading: LeadershipCallback | None = None,
        enabled: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if enabled and lease_store is None:
            raise ValueError("lease_store is required when leader election is enabled")
        if not 0 < retry_period_seconds < renew_deadline_seconds < lease_duration_seconds:
            raise ValueError("Invalid leader election timing: need retry_period < renew_deadline < lease_duration")
        self._store = lease_store
        self._identity = identity
        self._lease_name = lease_name
        self._lease_duration = lease_duration_seconds
        self._renew_deadline = renew_deadline_seconds
        self._retry_period = retry_period_seconds
        self._on_started = on_started_leading
        self._on_stopped = on_stopped_leading
        self._enabled = enabled
        self._clock = clock
        self._log = get_logger("leader")

        self._is_leader = False
        self._record: LeaseRecord | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def enabled(self) -> bool:
        return self._enabled

    def is_leader(self) -> bool:
        return self._is_leader

    def is_alive(self) -> bool:
        """True while the election loop runs (always True when election is disabled)."""
        if not self._running:
            return False
        if not self._enabled:
            return True
        return self._task is not None and not self._task.done()

    def set_callbacks(
        self,
        on_started_leading: LeadershipCallback | None,
        on_stopped_leading: LeadershipCallback | None,
    ) -> None:
        self._on_started = on_started_leading
        self._on_stopped = on_stopped_leading

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        if not self._enabled:
            self._log.info("leader_election_disabled", identity=self._identity)
            await self._become_leader()
            return
        self._task = asyncio.create_task(self._run(), name="leader-elector")
        self._log.info(
            "leader_elector_started",
            identity=self._identity,
            lease=self._lease_name,
            lease_duration_s=self._lease_duration,
        )

    async def stop(self) -> None:
        """Stop campaigning; if leading, stop dispatch and release the Lease."""
        if not self._running:
            return
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

        if self._is_leader:
            await self._lose_leadership("shutdown")
            if self._enabled:
                await self._release()
        self._log.info("leader_elector_stopped", identity=self._identity)

    async def try_acquire_or_renew(self) -> bool:
        """One conditional acquire-or-renew attempt; True if we hold the Lease afterwards."""
        assert self._store is not None
        now = self._clock()
        try:
            current = await self._store.get(self._lease_name)
        except StoreError as exc:
            self._log.warning("lease_read_failed", error=str(exc))
            return False

        if current is None:
            desired = LeaseRecord(
                name=self._lease_name,
                holder_identity=self._identity,
                acquire_time=now,
                renew_time=now,
                lease_duration_seconds=self._lease_duration,
            )
            try:
                self._record = await self._store.create(desired)
            except StoreError as exc:
                self._log.debug("lease_create_failed", error=str(exc))
                return False
            return True

        if current.is_held_by(self._identity):
            desired = dataclasses.replace(current, renew_time=now, lease_duration_seconds=self._lease_duration)
        elif current.is_expired(now):
            desired = dataclasses.replace(
                current,
                holder_identity=self._identity,
                acquire_time=now,
                renew_time=now,
                lease_duration_seconds=self._lease_duration,
                lease_transitions=current.lease_transitions + 1,
            )
        else:
            self._record = current
            return False

        try:
            self._record = await self._store.replace(desired)
        except StoreError as exc:
            self._log.debug("lease_update_failed", error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Election loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while self._running:
            if not self._is_leader:
                if await self.try_acquire_or_renew():
                    await self._become_leader()
                else:
                    await asyncio.sleep(self._retry_period)
                continue

            await asyncio.sleep(self._retry_period)
            if not await self._renew_within_deadline():
                await self._lose_leadership("renew_failed")

    async def _renew_within_deadline(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._renew_deadline
        while True:
            try:
                async with asyncio.timeout_at(deadline):
                    if await self.try_acquire_or_renew():
                        return True
            except TimeoutError:
                return False
            if self._record is not None and self._record.holder_identity not in (None, self._identity):
                self._log.warning("lease_taken_over", holder=self._record.holder_identity)
                return False
            if loop.time() + self._retry_period >= deadline:
                return False
            await asyncio.sleep(self._retry_period)

    async def _become_leader(self) -> None:
        self._is_leader = True
        leader_is_leader.set(1)
        leader_transitions_total.labels(transition="acquired").inc()
        self._log.info("leadership_acquired", identity=self._identity, lease=self._lease_name)
        if self._on_started is not None:
            try:
                await self._on_started()
            except Exception as exc:
                self._log.error("on_started_leading_failed", error=str(exc), exc_info=True)

    async def _lose_leadership(self, reason: str) -> None:
        # Dispatch must be stopped before leadership is reported as lost.
        if self._on_stopped is not None:
            try:
                await self._on_stopped()
            except Exception as exc:
                self._log.error("on_stopped_leading_failed", error=str(exc), exc_info=True)
        self._is_leader = False
        leader_is_leader.set(0)
        leader_transitions_total.labels(transition="lost").inc()
        self._log.warning("leadership_lost", identity=self._identity, reason=reason)

    async def _release(self) -> None:
        assert self._store is not None
        if self._record is None or not self._record.is_held_by(self._identity):
            return
        released = dataclasses.replace(self._record, holder_identity=None, renew_time=self._clock())
        try:
            self._record = await self._store.replace(released)
        except StoreError as exc:
            self._log.warning("lease_release_failed", error=str(exc))
            return
        self._log.info("lease_released", lease=self._lease_name)
