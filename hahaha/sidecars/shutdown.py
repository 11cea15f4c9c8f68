"""Shutdown transport: exec into a container, or call its admin endpoint through a port-forward.

Both go over websocket subresources of the Pod, so admin listeners bound to
the container's loopback interface are reachable.
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
import h11
from kubernetes_asyncio.client.exceptions import ApiException

from hahaha.models.resources import ResourceSnapshot
from hahaha.observability.logging import get_logger
from hahaha.sidecars.actions import ActionType, ShutdownAction

_log = get_logger("sidecars.shutdown")

_HTTP_TIMEOUT_S: float = 10.0

# Port-forward streams come in pairs per port: data first, then error.
_DATA_CHANNEL = 0
_ERROR_CHANNEL = 1


class SidecarShutdownError(Exception):
    """A shutdown attempt failed; the Pod is retried through the queue."""

    def __init__(self, container: str, pod: str, reason: str) -> None:
        super().__init__(f"failed to shut down {container}@{pod}: {reason}")
        self.container = container
        self.pod = pod
        self.reason = reason


class _ForwardError(Exception):
    pass


class Destroyer:
    """Runs :class:`ShutdownAction` instances against Pod containers.

    Args:
        ws_api: ``CoreV1Api`` bound to a ``kubernetes_asyncio.stream.WsApiClient``
            (exec and portforward are websocket subresources).
    """

    def __init__(self, ws_api: Any) -> None:
        self._ws_api = ws_api

    async def shutdown(self, snapshot: ResourceSnapshot, container: str, action: ShutdownAction) -> None:
        if action.type is ActionType.EXEC:
            await self._shutdown_exec(snapshot, container, action)
        else:
            await self._shutdown_http(snapshot, container, action)

    async def _shutdown_exec(self, snapshot: ResourceSnapshot, container: str, action: ShutdownAction) -> None:
        pod = snapshot.key.name
        try:
            await self._ws_api.connect_get_namespaced_pod_exec(
                pod,
                snapshot.key.namespace,
                command=list(action.command),
                container=container,
                stderr=True,
                stdin=False,
                stdout=False,
                tty=False,
            )
        except ApiException as exc:
            raise SidecarShutdownError(container, pod, f"exec failed: {exc.status} {exc.reason}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise SidecarShutdownError(container, pod, f"exec failed: {exc}") from exc
        _log.info(
            "sidecar_exec_sent",
            pod=pod,
            namespace=snapshot.key.namespace,
            container=container,
            command=action.describe(),
        )

    async def _shutdown_http(self, snapshot: ResourceSnapshot, container: str, action: ShutdownAction) -> None:
        pod = snapshot.key.name
        target = f"{action.method} {action.path} on port {action.port}"
        try:
            async with asyncio.timeout(_HTTP_TIMEOUT_S):
                connect = await self._ws_api.connect_get_namespaced_pod_portforward(
                    pod,
                    snapshot.key.namespace,
                    ports=str(action.port),
                    _preload_content=False,
                )
                async with connect as ws:
                    status, body = await _forwarded_request(ws, action)
        except ApiException as exc:
            raise SidecarShutdownError(container, pod, f"portforward failed: {exc.status} {exc.reason}") from exc
        except TimeoutError as exc:
            raise SidecarShutdownError(container, pod, f"{target} timed out") from exc
        except (aiohttp.ClientError, h11.ProtocolError, _ForwardError) as exc:
            raise SidecarShutdownError(container, pod, f"{target} failed: {exc}") from exc

        if status != 200:
            raise SidecarShutdownError(
                container,
                pod,
                f"HTTP request failed: code {status}: {body[:200].decode(errors='replace')}",
            )
        _log.info(
            "sidecar_http_sent",
            pod=pod,
            namespace=snapshot.key.namespace,
            container=container,
            request=action.describe(),
        )


async def _forwarded_request(ws: Any, action: ShutdownAction) -> tuple[int, bytes]:
    """Send one HTTP/1.1 request to 127.0.0.1 inside the Pod; return (status, body)."""
    conn = h11.Connection(our_role=h11.CLIENT)
    request = conn.send(
        h11.Request(
            method=action.method,
            target=action.path or "/",
            headers=[("Host", "127.0.0.1"), ("Connection", "close"), ("Content-Length", "0")],
        )
    )
    request += conn.send(h11.EndOfMessage())
    await ws.send_bytes(bytes([_DATA_CHANNEL]) + request)

    response = _Response()
    seen_channels: set[int] = set()
    errors = bytearray()
    async for msg in ws:
        if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
            break
        if msg.type is not aiohttp.WSMsgType.BINARY or not msg.data:
            continue
        channel, payload = msg.data[0], msg.data[1:]
        if channel not in seen_channels:
            # The first frame on each channel carries the port number.
            seen_channels.add(channel)
            payload = payload[2:]
        if not payload:
            continue
        if channel == _ERROR_CHANNEL:
            errors += payload
            continue
        conn.receive_data(payload)
        if response.feed(conn):
            return response.status, bytes(response.body)

    if errors:
        raise _ForwardError(errors.decode(errors="replace"))
    conn.receive_data(b"")
    if response.feed(conn):
        return response.status, bytes(response.body)
    raise _ForwardError("connection closed before a complete response")


class _Response:
    def __init__(self) -> None:
        self.status = 0
        self.body = bytearray()

    def feed(self, conn: h11.Connection) -> bool:
        """Consume parsed events; True once the whole response has arrived."""
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA or event is h11.PAUSED:
                return False
            if isinstance(event, h11.Response):
                self.status = event.status_code
            elif isinstance(event, h11.Data):
                self.body += event.data
            elif isinstance(event, (h11.EndOfMessage, h11.ConnectionClosed)):
                return self.status != 0
