"""Tests for hahaha.store.lease and hahaha.models.lease."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from kubernetes_asyncio.client.exceptions import ApiException

from hahaha.models.lease import LeaseRecord
from hahaha.store.base import ConflictError
from hahaha.store.lease import KubernetesLeaseStore, _from_lease, _to_body

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


def _record(**kwargs: Any) -> LeaseRecord:
    values = {
        "name": "hahaha",
        "holder_identity": "pod-a",
        "acquire_time": T0,
        "renew_time": T0,
        "lease_duration_seconds": 15.0,
    }
    values.update(kwargs)
    return LeaseRecord(**values)


class TestLeaseRecord:
    def test_expiry_is_renew_plus_duration(self) -> None:
        record = _record()
        assert not record.is_expired(T0 + timedelta(seconds=14))
        assert record.is_expired(T0 + timedelta(seconds=15))

    def test_released_lease_is_expired(self) -> None:
        assert _record(holder_identity=None).is_expired(T0)


class TestConversion:
    def test_body_shape(self) -> None:
        body = _to_body(_record(resource_version="8"), "nais-system")
        assert body["metadata"] == {"name": "hahaha", "namespace": "nais-system", "resourceVersion": "8"}
        assert body["spec"]["holderIdentity"] == "pod-a"
        assert body["spec"]["renewTime"] == "2026-01-01T12:00:00.000000Z"
        assert body["spec"]["leaseDurationSeconds"] == 15

    def test_unpersisted_record_has_no_precondition(self) -> None:
        assert "resourceVersion" not in _to_body(_record(), "ns")["metadata"]

    def test_from_dict(self) -> None:
        record = _from_lease(
            "hahaha",
            {
                "metadata": {"resourceVersion": "3"},
                "spec": {
                    "holderIdentity": "pod-b",
                    "renewTime": "2026-01-01T12:00:00.000000Z",
                    "leaseDurationSeconds": 15,
                    "leaseTransitions": 2,
                },
            },
        )
        assert record.holder_identity == "pod-b"
        assert record.renew_time == T0
        assert record.lease_transitions == 2
        assert record.resource_version == "3"

    def test_from_object(self) -> None:
        lease = SimpleNamespace(
            metadata=SimpleNamespace(resource_version="5"),
            spec=SimpleNamespace(
                holder_identity="",
                acquire_time=None,
                renew_time=datetime(2026, 1, 1, 12, 0, 0),
                lease_duration_seconds=10,
                lease_transitions=None,
            ),
        )
        record = _from_lease("hahaha", lease)
        assert record.holder_identity is None
        assert record.renew_time == T0
        assert record.lease_transitions == 0


class TestKubernetesLeaseStore:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self) -> None:
        api = MagicMock()
        api.read_namespaced_lease = AsyncMock(side_effect=ApiException(status=404, reason="Not Found"))
        assert await KubernetesLeaseStore(api, "ns").get("hahaha") is None

    @pytest.mark.asyncio
    async def test_create_conflict(self) -> None:
        api = MagicMock()
        api.create_namespaced_lease = AsyncMock(side_effect=ApiException(status=409, reason="AlreadyExists"))
        with pytest.raises(ConflictError):
            await KubernetesLeaseStore(api, "ns").create(_record())

    @pytest.mark.asyncio
    async def test_replace_round_trips_through_api(self) -> None:
        api = MagicMock()

        async def echo(name: str, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
            body = dict(body)
            body["metadata"] = {**body["metadata"], "resourceVersion": "9"}
            return body

        api.replace_namespaced_lease = AsyncMock(side_effect=echo)
        stored = await KubernetesLeaseStore(api, "ns").replace(_record(resource_version="8"))
        assert stored.resource_version == "9"
        assert stored.holder_identity == "pod-a"
