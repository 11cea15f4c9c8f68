"""Kubernetes-backed resource store for Pods.

Translates kubernetes_asyncio calls and failures into the store protocol:

- list: paginated list with a label selector, returning the collection
  resourceVersion watermark
- watch: bookmark-enabled watch from a resourceVersion; 410 Gone surfaces as
  :class:`VersionTooOldError`
- replace / replace_status: PUT with ``metadata.resourceVersion`` set, so the
  API server rejects stale writes with 409 Conflict
- delete: 404 is treated as already deleted
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any

import aiohttp
from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from hahaha.models.resources import ResourceKey, ResourceSnapshot
from hahaha.observability.logging import get_logger
from hahaha.store.base import (
    ConflictError,
    ListResult,
    NotFoundError,
    PermanentStoreError,
    StoreError,
    TransientStoreError,
    VersionTooOldError,
    WatchEvent,
    WatchEventType,
)

_LIST_PAGE_SIZE: int = 500
_WATCH_TIMEOUT_S: int = 290  # server closes the stream; the watcher resumes from the last version


def translate_api_error(exc: ApiException) -> StoreError:
    """Map an ApiException onto the store error taxonomy."""
    status = exc.status or 0
    message = f"{status} {exc.reason or ''}".strip()
    if status == 409:
        return ConflictError(message, status=status)
    if status == 404:
        return NotFoundError(message, status=status)
    if status == 410:
        return VersionTooOldError(message, status=status)
    if status == 0 or status == 429 or status >= 500:
        return TransientStoreError(message, status=status)
    return PermanentStoreError(message, status=status)


class PodStore:
    """:class:`~hahaha.store.base.ResourceStore` over ``CoreV1Api`` Pods.

    Example::

        store = PodStore(CoreV1Api(), label_selector="nais.io/ginuudan=enabled")
        result = await store.list()
    """

    def __init__(self, api: Any, namespace: str = "", label_selector: str = "") -> None:
        """Create the store.

        Args:
            api: A kubernetes_asyncio ``CoreV1Api`` instance.
            namespace: Restrict to one namespace; empty string means cluster-wide.
            label_selector: Server-side label selector applied to list and watch.
        """
        self._api = api
        self._namespace = namespace
        self._label_selector = label_selector
        self._log = get_logger("store.pods")

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def list(self) -> ListResult:
        items: list[ResourceSnapshot] = []
        resource_version = ""
        continue_token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"limit": _LIST_PAGE_SIZE}
            if self._label_selector:
                kwargs["label_selector"] = self._label_selector
            if continue_token:
                kwargs["_continue"] = continue_token
            result = await self._call(self._list_func(), *self._list_args(), **kwargs)

            for item in getattr(result, "items", None) or []:
                raw = self._to_dict(item)
                if ResourceKey.from_raw(raw) is not None:
                    items.append(ResourceSnapshot.from_raw(raw))

            metadata = getattr(result, "metadata", None)
            resource_version = getattr(metadata, "resource_version", "") or resource_version
            continue_token = getattr(metadata, "_continue", None)
            if not continue_token:
                break

        self._log.debug("pods_listed", count=len(items), resource_version=resource_version)
        return ListResult(items=items, resource_version=resource_version)

    async def watch(self, resource_version: str) -> AsyncIterator[WatchEvent]:
        kwargs: dict[str, Any] = {
            "allow_watch_bookmarks": True,
            "timeout_seconds": _WATCH_TIMEOUT_S,
        }
        if self._label_selector:
            kwargs["label_selector"] = self._label_selector
        if resource_version:
            kwargs["resource_version"] = resource_version

        w = watch.Watch()
        try:
            async for raw_event in w.stream(self._list_func(), *self._list_args(), **kwargs):
                event = _to_watch_event(raw_event)
                if event is not None:
                    yield event
        except ApiException as exc:
            raise translate_api_error(exc) from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransientStoreError(f"watch stream failed: {exc}") from exc
        finally:
            await w.close()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def replace(self, snapshot: ResourceSnapshot, body: dict[str, Any]) -> ResourceSnapshot:
        body = _with_precondition(body, snapshot.resource_version)
        key = snapshot.key
        result = await self._call(self._api.replace_namespaced_pod, key.name, key.namespace, body)
        return ResourceSnapshot.from_raw(self._to_dict(result))

    async def replace_status(self, snapshot: ResourceSnapshot, status: dict[str, Any]) -> ResourceSnapshot:
        body = copy.deepcopy(snapshot.raw)
        body["status"] = status
        body = _with_precondition(body, snapshot.resource_version)
        key = snapshot.key
        result = await self._call(self._api.replace_namespaced_pod_status, key.name, key.namespace, body)
        return ResourceSnapshot.from_raw(self._to_dict(result))

    async def delete(self, key: ResourceKey) -> None:
        try:
            await self._call(self._api.delete_namespaced_pod, key.name, key.namespace)
        except NotFoundError:
            self._log.debug("pod_already_deleted", key=str(key))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _list_func(self) -> Callable[..., Coroutine[Any, Any, Any]]:
        if self._namespace:
            return self._api.list_namespaced_pod  # type: ignore[no-any-return]
        return self._api.list_pod_for_all_namespaces  # type: ignore[no-any-return]

    def _list_args(self) -> tuple[str, ...]:
        return (self._namespace,) if self._namespace else ()

    async def _call(self, func: Callable[..., Coroutine[Any, Any, Any]], *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except ApiException as exc:
            raise translate_api_error(exc) from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransientStoreError(f"request failed: {exc}") from exc

    def _to_dict(self, obj: Any) -> dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self._api.api_client.sanitize_for_serialization(obj)  # type: ignore[no-any-return]


def _with_precondition(body: dict[str, Any], resource_version: str) -> dict[str, Any]:
    """Return a copy of ``body`` whose metadata pins ``resource_version``."""
    body = copy.deepcopy(body)
    metadata = body.setdefault("metadata", {})
    metadata["resourceVersion"] = resource_version
    return body


def _to_watch_event(raw_event: dict[str, Any]) -> WatchEvent | None:
    """Convert a kubernetes_asyncio watch dict into a :class:`WatchEvent`."""
    event_type = str(raw_event.get("type", ""))
    raw = raw_event.get("raw_object")
    if not isinstance(raw, dict):
        raw = {}

    if event_type == "ERROR":
        code = int(raw.get("code") or 0)
        message = str(raw.get("message", ""))
        if code == 410:
            raise VersionTooOldError(message or "resource version too old", status=410)
        raise TransientStoreError(f"watch error {code}: {message}", status=code)

    try:
        kind = WatchEventType(event_type)
    except ValueError:
        return None

    metadata = raw.get("metadata")
    resource_version = ""
    if isinstance(metadata, dict):
        resource_version = str(metadata.get("resourceVersion", "") or "")

    if kind is WatchEventType.BOOKMARK:
        return WatchEvent(type=kind, resource_version=resource_version)
    if ResourceKey.from_raw(raw) is None:
        return None
    return WatchEvent(type=kind, resource_version=resource_version, snapshot=ResourceSnapshot.from_raw(raw))
