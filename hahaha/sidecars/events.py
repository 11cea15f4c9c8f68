"""Publishes ``Killing`` Events on Pods after each shutdown attempt."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import aiohttp
from kubernetes_asyncio.client.exceptions import ApiException

from hahaha.models.resources import ResourceSnapshot
from hahaha.observability.logging import get_logger
from hahaha.observability.metrics import TOTAL_UNSUCCESSFUL_EVENT_POSTS

_log = get_logger("sidecars.events")

_REPORTING_COMPONENT = "hahaha"
_REASON = "Killing"


class EventType(StrEnum):
    NORMAL = "Normal"
    WARNING = "Warning"


class EventRecorder:
    """Best-effort core/v1 Event publisher.

    A failed post is counted and logged; it never fails the reconcile.
    """

    def __init__(self, api: Any, instance: str) -> None:
        self._api = api
        self._instance = instance

    async def publish(self, snapshot: ResourceSnapshot, event_type: EventType, note: str) -> bool:
        body = self._build_event(snapshot, event_type, note)
        try:
            await self._api.create_namespaced_event(snapshot.key.namespace or "default", body)
        except (ApiException, aiohttp.ClientError, TimeoutError) as exc:
            TOTAL_UNSUCCESSFUL_EVENT_POSTS.inc()
            _log.warning("event_post_failed", pod=str(snapshot.key), reason=_REASON, error=str(exc))
            return False
        return True

    def _build_event(self, snapshot: ResourceSnapshot, event_type: EventType, note: str) -> dict[str, Any]:
        now = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        namespace = snapshot.key.namespace or "default"
        return {
            "apiVersion": "v1",
            "kind": "Event",
            "metadata": {"generateName": f"{snapshot.key.name}.", "namespace": namespace},
            "involvedObject": {
                "apiVersion": "v1",
                "kind": "Pod",
                "name": snapshot.key.name,
                "namespace": namespace,
                "uid": snapshot.uid,
                "resourceVersion": snapshot.resource_version,
            },
            "type": event_type.value,
            "reason": _REASON,
            "action": _REASON,
            "message": note,
            "count": 1,
            "firstTimestamp": now,
            "lastTimestamp": now,
            "source": {"component": _REPORTING_COMPONENT},
            "reportingComponent": _REPORTING_COMPONENT,
            "reportingInstance": self._instance,
        }
