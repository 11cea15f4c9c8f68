"""Leader-election lease record."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class LeaseRecord:
    """State of the shared Lease as last read from (or about to be written to) the store.

    ``resource_version`` is empty for a record that has never been persisted.
    A record with no ``holder_identity`` has been released.
    """

    name: str
    holder_identity: str | None
    acquire_time: datetime | None
    renew_time: datetime | None
    lease_duration_seconds: float
    lease_transitions: int = 0
    resource_version: str = ""

    @property
    def renew_deadline(self) -> datetime | None:
        """Instant after which the lease is up for grabs."""
        if self.renew_time is None:
            return None
        return self.renew_time + timedelta(seconds=self.lease_duration_seconds)

    def is_expired(self, now: datetime) -> bool:
        if not self.holder_identity:
            return True
        deadline = self.renew_deadline
        return deadline is None or now >= deadline

    def is_held_by(self, identity: str) -> bool:
        return self.holder_identity == identity
