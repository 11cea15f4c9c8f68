"""Lease persistence for leader election (``coordination.k8s.io/v1`` Lease)."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any, Protocol

import aiohttp
from kubernetes_asyncio.client.exceptions import ApiException

from hahaha.models.lease import LeaseRecord
from hahaha.store.base import NotFoundError, TransientStoreError
from hahaha.store.kubernetes import translate_api_error


class LeaseStore(Protocol):
    async def get(self, name: str) -> LeaseRecord | None:
        """Return the current record, or None if no Lease exists."""
        ...

    async def create(self, record: LeaseRecord) -> LeaseRecord:
        """Create the Lease; ConflictError if another replica created it first."""
        ...

    async def replace(self, record: LeaseRecord) -> LeaseRecord:
        """Conditionally overwrite; ``record.resource_version`` is the precondition."""
        ...


class KubernetesLeaseStore:
    """:class:`LeaseStore` over ``CoordinationV1Api`` in a single namespace."""

    def __init__(self, api: Any, namespace: str) -> None:
        self._api = api
        self._namespace = namespace

    async def get(self, name: str) -> LeaseRecord | None:
        try:
            lease = await self._call(self._api.read_namespaced_lease, name, self._namespace)
        except NotFoundError:
            return None
        return _from_lease(name, lease)

    async def create(self, record: LeaseRecord) -> LeaseRecord:
        body = _to_body(record, self._namespace)
        lease = await self._call(self._api.create_namespaced_lease, self._namespace, body)
        return _from_lease(record.name, lease)

    async def replace(self, record: LeaseRecord) -> LeaseRecord:
        body = _to_body(record, self._namespace)
        lease = await self._call(self._api.replace_namespaced_lease, record.name, self._namespace, body)
        return _from_lease(record.name, lease)

    async def _call(self, func: Any, *args: Any) -> Any:
        try:
            return await func(*args)
        except ApiException as exc:
            raise translate_api_error(exc) from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransientStoreError(f"lease request failed: {exc}") from exc


def _format_micro_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _parse_time(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _to_body(record: LeaseRecord, namespace: str) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": record.name, "namespace": namespace}
    if record.resource_version:
        metadata["resourceVersion"] = record.resource_version
    return {
        "apiVersion": "coordination.k8s.io/v1",
        "kind": "Lease",
        "metadata": metadata,
        "spec": {
            "holderIdentity": record.holder_identity,
            "acquireTime": _format_micro_time(record.acquire_time),
            "renewTime": _format_micro_time(record.renew_time),
            "leaseDurationSeconds": math.ceil(record.lease_duration_seconds),
            "leaseTransitions": record.lease_transitions,
        },
    }


def _from_lease(name: str, lease: Any) -> LeaseRecord:
    """Build a record from a ``V1Lease`` object (or an equivalent dict)."""
    if isinstance(lease, dict):
        spec = lease.get("spec") or {}
        metadata = lease.get("metadata") or {}
        return LeaseRecord(
            name=name,
            holder_identity=spec.get("holderIdentity") or None,
            acquire_time=_parse_time(spec.get("acquireTime")),
            renew_time=_parse_time(spec.get("renewTime")),
            lease_duration_seconds=float(spec.get("leaseDurationSeconds") or 0),
            lease_transitions=int(spec.get("leaseTransitions") or 0),
            resource_version=str(metadata.get("resourceVersion") or ""),
        )

    spec = lease.spec
    return LeaseRecord(
        name=name,
        holder_identity=getattr(spec, "holder_identity", None) or None,
        acquire_time=_parse_time(getattr(spec, "acquire_time", None)),
        renew_time=_parse_time(getattr(spec, "renew_time", None)),
        lease_duration_seconds=float(getattr(spec, "lease_duration_seconds", 0) or 0),
        lease_transitions=int(getattr(spec, "lease_transitions", 0) or 0),
        resource_version=str(getattr(lease.metadata, "resource_version", "") or ""),
    )
