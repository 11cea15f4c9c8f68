"""Per-key reconcile state machine.

One call to :meth:`Reconciler.reconcile` reads the key's snapshot from the
cache, walks the deletion or the normal branch, and maps the outcome to a
:class:`ReconcileResult` the queue understands.  Kind-specific behaviour lives
behind :class:`ResourceHandler`; this module knows nothing about schemas.

Every write to the store is conditional on the ``resourceVersion`` that was
read, so two reconciles racing on stale data cannot both win.
"""

from __future__ import annotations

import copy
import time
from datetime import UTC, datetime
from typing import Any

from hahaha.cache.resource_cache import ResourceCache
from hahaha.controller.handler import InvariantViolation, Observation, ResourceHandler
from hahaha.models.reconcile import ReconcileResult
from hahaha.models.resources import ResourceKey, ResourceSnapshot
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import (
    reconcile_actions_total,
    reconcile_duration_seconds,
    reconcile_total,
)
from hahaha.store.base import (
    NotFoundError,
    PermanentStoreError,
    ResourceStore,
    StoreError,
)

_ERROR_CONDITION_TYPE = "ReconcileError"
_DEFAULT_MAX_REQUEUE_S: float = 300.0


class Reconciler:
    """Drives one resource key toward its desired state.

    Args:
        cache: read-only source of actual state.
        store: remote store used for finalizer and status writes.
        handler: kind-specific diff/apply/status logic.
        max_requeue_seconds: upper bound on any handler-requested requeue delay.
        report_errors: write a ``ReconcileError`` status condition on permanent failures.
    """

    def __init__(
        self,
        cache: ResourceCache,
        store: ResourceStore,
        handler: ResourceHandler,
        max_requeue_seconds: float = _DEFAULT_MAX_REQUEUE_S,
        report_errors: bool = True,
    ) -> None:
        self._cache = cache
        self._store = store
        self._handler = handler
        self._max_requeue = max_requeue_seconds
        self._report_errors = report_errors
        self._log = get_logger("reconciler")

    async def reconcile(self, key: ResourceKey) -> ReconcileResult:
        """Run one reconcile for ``key``; never raises except on cancellation."""
        started = time.monotonic()
        try:
            result = await self._reconcile(key)
        except NotFoundError:
            # Deleted between the cache read and our write; the DELETED event follows.
            result = ReconcileResult.done()
        except (InvariantViolation, PermanentStoreError) as exc:
            self._log.error("reconcile_failed_permanently", key=str(key), error=str(exc))
            result = ReconcileResult.error(exc, permanent=True)
            await self._report_error(key, exc)
        except Exception as exc:
            self._log.warning("reconcile_failed", key=str(key), error=str(exc), error_type=type(exc).__name__)
            result = ReconcileResult.error(exc)

        elapsed = time.monotonic() - started
        reconcile_total.labels(result=result.kind.value).inc()
        reconcile_duration_seconds.observe(elapsed)
        self._log.debug("reconcile_complete", key=str(key), result=result.kind.value, duration_s=round(elapsed, 4))
        return result

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _reconcile(self, key: ResourceKey) -> ReconcileResult:
        snapshot = self._cache.get(key)
        if snapshot is None:
            return ReconcileResult.done()

        finalizer = self._handler.finalizer

        if snapshot.is_deleting:
            if finalizer and finalizer in snapshot.finalizers:
                await self._handler.finalize(snapshot)
                remaining = [f for f in snapshot.finalizers if f != finalizer]
                await self._store.replace(snapshot, _with_finalizers(snapshot, remaining))
                self._log.info("finalizer_removed", key=str(key), finalizer=finalizer)
            return ReconcileResult.done()

        if finalizer and finalizer not in snapshot.finalizers:
            # The resulting watch event brings the key back with the new version.
            await self._store.replace(snapshot, _with_finalizers(snapshot, [*snapshot.finalizers, finalizer]))
            self._log.info("finalizer_added", key=str(key), finalizer=finalizer)
            return ReconcileResult.done()

        plan = self._handler.diff(snapshot, self._cache)
        applied = []
        failures: list[Exception] = []
        # Every planned action is attempted; the first failure decides the result.
        for action in plan.actions:
            try:
                await self._handler.apply(snapshot, action)
            except Exception as exc:
                self._log.warning(
                    "action_failed",
                    key=str(key),
                    action=action.name,
                    target=action.target,
                    error=str(exc),
                )
                failures.append(exc)
                continue
            reconcile_actions_total.labels(action=action.name).inc()
            applied.append(action)
        if failures:
            raise failures[0]

        desired = self._handler.status_map(
            snapshot,
            Observation(applied=tuple(applied), requeue_after=plan.requeue_after),
        )
        if desired is not None and desired != snapshot.status:
            await self._store.replace_status(snapshot, desired)
            self._log.debug("status_written", key=str(key))

        if plan.requeue_after is not None:
            return ReconcileResult.requeue_after(max(0.0, min(plan.requeue_after, self._max_requeue)))
        return ReconcileResult.done()

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    async def _report_error(self, key: ResourceKey, exc: Exception) -> None:
        """Best-effort ``ReconcileError`` condition so persistent failures are visible."""
        if not self._report_errors:
            return
        snapshot = self._cache.get(key)
        if snapshot is None or snapshot.is_deleting:
            return
        status = _with_error_condition(snapshot.status, type(exc).__name__, str(exc))
        if status is None:
            return
        try:
            await self._store.replace_status(snapshot, status)
        except StoreError as write_exc:
            self._log.warning("error_condition_write_failed", key=str(key), error=str(write_exc))


def _with_finalizers(snapshot: ResourceSnapshot, finalizers: list[str]) -> dict[str, Any]:
    """Full object body with ``metadata.finalizers`` replaced."""
    body = copy.deepcopy(snapshot.raw) if snapshot.raw else {
        "metadata": {"name": snapshot.key.name, "namespace": snapshot.key.namespace},
        "spec": copy.deepcopy(snapshot.spec),
    }
    body.setdefault("metadata", {})["finalizers"] = finalizers
    return body


def _with_error_condition(status: dict[str, Any], reason: str, message: str) -> dict[str, Any] | None:
    """Status with the error condition set, or None if it already says the same."""
    conditions = [c for c in status.get("conditions") or [] if isinstance(c, dict)]
    for condition in conditions:
        if (
            condition.get("type") == _ERROR_CONDITION_TYPE
            and condition.get("status") == "True"
            and condition.get("reason") == reason
            and condition.get("message") == message
        ):
            return None

    updated = copy.deepcopy(status)
    updated["conditions"] = [c for c in conditions if c.get("type") != _ERROR_CONDITION_TYPE] + [
        {
            "type": _ERROR_CONDITION_TYPE,
            "status": "True",
            "reason": reason,
            "message": message,
            "lastTransitionTime": datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
    ]
    return updated
