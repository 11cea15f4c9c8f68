"""Capability interface between the schema-agnostic reconciler and one resource kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from hahaha.cache.resource_cache import ResourceCache
    from hahaha.models.resources import ResourceSnapshot


class InvariantViolation(Exception):
    """The observed object can never be reconciled as-is; retrying will not help."""


@dataclass(frozen=True)
class Action:
    """One idempotent step toward desired state.

    ``name`` is a low-cardinality label (used in metrics); ``target`` identifies
    what the step acts on and ``params`` carries handler-private detail.
    """

    name: str
    target: str = ""
    params: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class Plan:
    """Minimal set of actions to converge, plus an optional follow-up check."""

    actions: tuple[Action, ...] = ()
    requeue_after: float | None = None

    @property
    def is_empty(self) -> bool:
        return not self.actions and self.requeue_after is None


@dataclass(frozen=True)
class Observation:
    """What a reconcile run did, handed to :meth:`ResourceHandler.status_map`."""

    applied: tuple[Action, ...] = ()
    requeue_after: float | None = None


class ResourceHandler(Protocol):
    """Kind-specific logic plugged into :class:`~hahaha.controller.reconciler.Reconciler`.

    ``diff`` must be pure and read actual state only from the cache.  Every
    action returned by ``diff`` must be safe to apply more than once.
    """

    finalizer: str | None

    def diff(self, snapshot: ResourceSnapshot, cache: ResourceCache) -> Plan: ...

    async def apply(self, snapshot: ResourceSnapshot, action: Action) -> None: ...

    def status_map(self, snapshot: ResourceSnapshot, observed: Observation) -> dict[str, Any] | None:
        """Desired status for the object, or None to leave status untouched."""
        ...

    async def finalize(self, snapshot: ResourceSnapshot) -> None:
        """Clean up external state before the finalizer is removed."""
        ...
