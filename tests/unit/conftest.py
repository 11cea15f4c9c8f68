"""Shared fixtures: in-memory resource and lease stores, Pod builders."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from hahaha.models.lease import LeaseRecord
from hahaha.models.resources import ResourceKey, ResourceSnapshot
from hahaha.store.base import (
    ConflictError,
    ListResult,
    NotFoundError,
    WatchEvent,
)

PodFactory = Callable[..., dict[str, Any]]
SnapshotFactory = Callable[..., ResourceSnapshot]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_pod(
    name: str = "job-1-abcde",
    namespace: str = "default",
    resource_version: str = "1",
    app: str | None = "job-1",
    statuses: dict[str, str] | None = None,
    finalizers: list[str] | None = None,
    deleting: bool = False,
    pod_ip: str | None = "10.0.0.7",
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Raw Pod dict; ``statuses`` maps container name to running/terminated/waiting."""
    pod_labels = dict(labels or {})
    if app is not None:
        pod_labels["app"] = app
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "resourceVersion": resource_version,
        "uid": f"uid-{name}",
        "labels": pod_labels,
    }
    if finalizers:
        metadata["finalizers"] = list(finalizers)
    if deleting:
        metadata["deletionTimestamp"] = "2026-01-01T00:00:00Z"

    container_statuses = []
    for container, state in (statuses or {}).items():
        if state == "terminated":
            state_body: dict[str, Any] = {"terminated": {"exitCode": 0, "reason": "Completed"}}
        elif state == "running":
            state_body = {"running": {"startedAt": "2026-01-01T00:00:00Z"}}
        else:
            state_body = {"waiting": {"reason": "ContainerCreating"}}
        container_statuses.append({"name": container, "state": state_body})

    status: dict[str, Any] = {"containerStatuses": container_statuses}
    if pod_ip:
        status["podIP"] = pod_ip
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": metadata,
        "spec": {"containers": [{"name": c} for c in (statuses or {})]},
        "status": status,
    }


def build_snapshot(**kwargs: Any) -> ResourceSnapshot:
    return ResourceSnapshot.from_raw(build_pod(**kwargs))


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class MemoryStore:
    """ResourceStore over a dict, with optimistic concurrency and a scripted watch."""

    def __init__(self) -> None:
        self.objects: dict[ResourceKey, dict[str, Any]] = {}
        self.revision = 0
        self.events: asyncio.Queue[WatchEvent | BaseException | None] = asyncio.Queue()
        self.list_calls = 0
        self.watch_versions: list[str] = []
        self.replace_calls: list[dict[str, Any]] = []
        self.status_calls: list[dict[str, Any]] = []
        self.fail_next: list[BaseException] = []
        self.list_error: BaseException | None = None

    def put(self, raw: dict[str, Any]) -> ResourceSnapshot:
        """Store ``raw`` under a fresh resourceVersion and return its snapshot."""
        self.revision += 1
        raw = copy.deepcopy(raw)
        raw["metadata"]["resourceVersion"] = str(self.revision)
        snapshot = ResourceSnapshot.from_raw(raw)
        self.objects[snapshot.key] = raw
        return snapshot

    async def list(self) -> ListResult:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        items = [ResourceSnapshot.from_raw(copy.deepcopy(raw)) for _, raw in sorted(self.objects.items())]
        return ListResult(items=items, resource_version=str(self.revision))

    async def watch(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        self.watch_versions.append(resource_version)
        while True:
            event = await self.events.get()
            if event is None:
                return
            if isinstance(event, BaseException):
                raise event
            yield event

    async def replace(self, snapshot: ResourceSnapshot, body: dict[str, Any]) -> ResourceSnapshot:
        self._check(snapshot)
        self.replace_calls.append(copy.deepcopy(body))
        body = copy.deepcopy(body)
        body.setdefault("metadata", {})
        return self.put(body)

    async def replace_status(self, snapshot: ResourceSnapshot, status: dict[str, Any]) -> ResourceSnapshot:
        self._check(snapshot)
        self.status_calls.append(copy.deepcopy(status))
        body = copy.deepcopy(self.objects[snapshot.key])
        body["status"] = copy.deepcopy(status)
        return self.put(body)

    async def delete(self, key: ResourceKey) -> None:
        self.objects.pop(key, None)

    def _check(self, snapshot: ResourceSnapshot) -> None:
        if self.fail_next:
            raise self.fail_next.pop(0)
        current = self.objects.get(snapshot.key)
        if current is None:
            raise NotFoundError(f"{snapshot.key} not found", status=404)
        if current["metadata"]["resourceVersion"] != snapshot.resource_version:
            raise ConflictError(f"{snapshot.key} changed", status=409)


class MemoryLeaseStore:
    """LeaseStore shared by several electors in one test."""

    def __init__(self) -> None:
        self.record: LeaseRecord | None = None
        self.revision = 0
        self.fail = False

    async def get(self, name: str) -> LeaseRecord | None:
        self._maybe_fail()
        return self.record

    async def create(self, record: LeaseRecord) -> LeaseRecord:
        self._maybe_fail()
        if self.record is not None:
            raise ConflictError("lease exists", status=409)
        return self._store(record)

    async def replace(self, record: LeaseRecord) -> LeaseRecord:
        self._maybe_fail()
        if self.record is None:
            raise NotFoundError("lease missing", status=404)
        if record.resource_version != self.record.resource_version:
            raise ConflictError("lease changed", status=409)
        return self._store(record)

    def _store(self, record: LeaseRecord) -> LeaseRecord:
        from dataclasses import replace

        self.revision += 1
        self.record = replace(record, resource_version=str(self.revision))
        return self.record

    def _maybe_fail(self) -> None:
        if self.fail:
            from hahaha.store.base import TransientStoreError

            raise TransientStoreError("lease store unavailable", status=503)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def lease_store() -> MemoryLeaseStore:
    return MemoryLeaseStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pod() -> PodFactory:
    return build_pod


@pytest.fixture
def snapshot() -> SnapshotFactory:
    return build_snapshot
