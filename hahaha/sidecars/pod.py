"""Pod inspection: which sidecars outlived the main container."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from hahaha.models.resources import ResourceSnapshot

MAIN_CONTAINER_LABEL = "app"
JOB_NAME_LABEL = "job-name"


@dataclass(frozen=True)
class ContainerState:
    name: str
    running: bool
    terminated: bool
    exit_code: int | None = None


def container_states(snapshot: ResourceSnapshot) -> list[ContainerState]:
    """Parse ``status.containerStatuses`` into :class:`ContainerState` entries."""
    states: list[ContainerState] = []
    for raw in snapshot.status.get("containerStatuses") or []:
        if not isinstance(raw, dict) or not raw.get("name"):
            continue
        state: dict[str, Any] = raw.get("state") or {}
        terminated = state.get("terminated")
        states.append(
            ContainerState(
                name=str(raw["name"]),
                running=state.get("running") is not None,
                terminated=terminated is not None,
                exit_code=terminated.get("exitCode") if isinstance(terminated, dict) else None,
            )
        )
    return states


def main_container(snapshot: ResourceSnapshot) -> str | None:
    return snapshot.labels.get(MAIN_CONTAINER_LABEL) or None


def running_sidecars(snapshot: ResourceSnapshot) -> list[ContainerState]:
    """Containers still running after the main container terminated.

    Returns an empty list when the Pod has no ``app`` label, no container
    statuses, or a main container that has not terminated yet.
    """
    main = main_container(snapshot)
    if main is None:
        return []
    states = container_states(snapshot)
    main_state = next((s for s in states if s.name == main), None)
    if main_state is None or not main_state.terminated:
        return []
    return [s for s in states if s.name != main and s.running]


def job_name(snapshot: ResourceSnapshot) -> str:
    """Owning Job's name when the Pod carries it, else the Pod name."""
    return snapshot.labels.get(JOB_NAME_LABEL) or snapshot.key.name
