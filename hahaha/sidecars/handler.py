"""Resource handler that shuts down sidecars left running after a Job's main container exits."""

from __future__ import annotations

from typing import Any

from hahaha.cache.resource_cache import ResourceCache
from hahaha.controller.handler import Action, Observation, Plan
from hahaha.models.resources import ResourceSnapshot
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import (
    FAILED_SIDECAR_SHUTDOWNS,
    SIDECAR_SHUTDOWNS,
    UNSUPPORTED_SIDECARS,
)
from hahaha.sidecars.actions import DEFAULT_ACTIONS, ShutdownAction
from hahaha.sidecars.events import EventRecorder, EventType
from hahaha.sidecars.pod import job_name, running_sidecars
from hahaha.sidecars.shutdown import Destroyer, SidecarShutdownError

_log = get_logger("sidecars.handler")

SHUTDOWN_SIDECAR = "shutdown_sidecar"
REPORT_UNSUPPORTED = "report_unsupported"

_DEFAULT_VERIFY_AFTER_S: float = 30.0
_MAX_REMEMBERED_UNSUPPORTED: int = 10_000


class SidecarHandler:
    """Plans one shutdown per running sidecar with a known action.

    Pod status belongs to the kubelet, so :meth:`status_map` never asks for a
    write, and no finalizer is needed because nothing outlives the Pod.
    """

    finalizer: str | None = None

    def __init__(
        self,
        destroyer: Destroyer,
        recorder: EventRecorder,
        actions: dict[str, ShutdownAction] | None = None,
        verify_after_seconds: float = _DEFAULT_VERIFY_AFTER_S,
    ) -> None:
        self._destroyer = destroyer
        self._recorder = recorder
        self._actions = dict(DEFAULT_ACTIONS if actions is None else actions)
        self._verify_after = verify_after_seconds
        self._unsupported_seen: set[tuple[str, str]] = set()

    def diff(self, snapshot: ResourceSnapshot, cache: ResourceCache) -> Plan:
        sidecars = running_sidecars(snapshot)
        if not sidecars:
            return Plan()

        planned: list[Action] = []
        shutdowns = 0
        for sidecar in sidecars:
            action = self._actions.get(sidecar.name)
            if action is None:
                planned.append(Action(name=REPORT_UNSUPPORTED, target=sidecar.name))
                continue
            planned.append(Action(name=SHUTDOWN_SIDECAR, target=sidecar.name, params={"action": action}))
            shutdowns += 1

        # Re-check later in case the shutdown request was accepted but ignored.
        return Plan(actions=tuple(planned), requeue_after=self._verify_after if shutdowns else None)

    async def apply(self, snapshot: ResourceSnapshot, action: Action) -> None:
        if action.name == REPORT_UNSUPPORTED:
            self._report_unsupported(snapshot, action.target)
            return
        if action.name != SHUTDOWN_SIDECAR:
            raise ValueError(f"unknown action: {action.name}")
        await self._shutdown(snapshot, action.target, action.params["action"])

    def status_map(self, snapshot: ResourceSnapshot, observed: Observation) -> dict[str, Any] | None:
        return None

    async def finalize(self, snapshot: ResourceSnapshot) -> None:
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _shutdown(self, snapshot: ResourceSnapshot, container: str, action: ShutdownAction) -> None:
        labels = {"container": container, "job_name": job_name(snapshot), "namespace": snapshot.key.namespace}
        _log.info(
            "sidecar_shutdown_start",
            pod=snapshot.key.name,
            namespace=snapshot.key.namespace,
            container=container,
            action=action.describe(),
        )
        try:
            await self._destroyer.shutdown(snapshot, container, action)
        except SidecarShutdownError as exc:
            FAILED_SIDECAR_SHUTDOWNS.labels(**labels).inc()
            _log.error("sidecar_shutdown_failed", pod=str(snapshot.key), container=container, error=exc.reason)
            await self._recorder.publish(
                snapshot, EventType.WARNING, f"Unsuccessfully shut down container {container}"
            )
            raise

        SIDECAR_SHUTDOWNS.labels(**labels).inc()
        await self._recorder.publish(snapshot, EventType.NORMAL, f"Successfully shut down container {container}")

    def _report_unsupported(self, snapshot: ResourceSnapshot, container: str) -> None:
        seen_key = (snapshot.uid or str(snapshot.key), container)
        if seen_key in self._unsupported_seen:
            return
        if len(self._unsupported_seen) >= _MAX_REMEMBERED_UNSUPPORTED:
            self._unsupported_seen.clear()
        self._unsupported_seen.add(seen_key)
        UNSUPPORTED_SIDECARS.labels(
            container=container,
            job_name=job_name(snapshot),
            namespace=snapshot.key.namespace,
        ).inc()
        _log.warning(
            "sidecar_unsupported",
            pod=snapshot.key.name,
            namespace=snapshot.key.namespace,
            container=container,
        )
