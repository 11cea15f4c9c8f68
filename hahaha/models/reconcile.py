"""Queue items and reconcile outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from hahaha.models.resources import ResourceKey


class ResultKind(StrEnum):
    DONE = "done"
    REQUEUE_AFTER = "requeue_after"
    ERROR = "error"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile run; drives the queue's next decision for the key.

    Build instances through :meth:`done`, :meth:`requeue_after` and :meth:`error`.
    """

    kind: ResultKind
    delay: float = 0.0
    cause: BaseException | None = None
    permanent: bool = False

    @classmethod
    def done(cls) -> ReconcileResult:
        return cls(kind=ResultKind.DONE)

    @classmethod
    def requeue_after(cls, seconds: float) -> ReconcileResult:
        if seconds < 0:
            raise ValueError(f"requeue delay must be >= 0, got {seconds}")
        return cls(kind=ResultKind.REQUEUE_AFTER, delay=seconds)

    @classmethod
    def error(cls, cause: BaseException, permanent: bool = False) -> ReconcileResult:
        return cls(kind=ResultKind.ERROR, cause=cause, permanent=permanent)

    @property
    def is_error(self) -> bool:
        return self.kind is ResultKind.ERROR


@dataclass
class WorkItem:
    """A scheduled reconcile for one key.

    ``not_before`` is a monotonic timestamp; ``attempts`` counts consecutive
    failures that preceded this run.
    """

    key: ResourceKey
    reason: str
    not_before: float
    attempts: int = 0
