"""Application bootstrap for hahaha.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → store → cache/watcher → queue
              → sidecar handler → reconciler → workers → elector → manager
              → health server

Shutdown runs in reverse: the health server stops, the workers drain while the
Lease is still renewed, the elector releases it, the watcher closes its stream,
and the API clients are closed last.  Each stop is guarded independently so one failing
component does not keep the others running.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from hahaha.config import load_config
from hahaha.models.config import HahahaConfig
from hahaha.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from hahaha.controller.manager import ControllerManager

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class HahahaApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or is
    already stopped.
    """

    def __init__(self) -> None:
        self.config: HahahaConfig | None = None

        self._api_client: Any | None = None
        self._ws_client: Any | None = None
        self._manager: ControllerManager | None = None
        self._health_server: Any | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        try:
            self.config = load_config()
        except ValueError as exc:
            raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.filter)
        self._log = get_logger("app")
        self._log.info("hahaha_starting", version=_hahaha_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Controller (store, cache, queue, workers, elector) -------
        self._build_manager()

        # --- 5. Initial list and leader election --------------------------
        await self._start_manager()

        # --- 6. Health and metrics server ---------------------------------
        await self._start_health_server()

        self._running = True
        self._log.info("hahaha_started", port=self.config.health.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_k8s_client(self) -> None:
        """Load in-cluster config (falling back to kubeconfig) and open the API clients."""
        assert self._log is not None
        self._log.debug("starting_k8s_client")
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client
            from kubernetes_asyncio.stream import WsApiClient

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                self._log.info("k8s_client_configured", source="in-cluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s_client_configured", source="kubeconfig")

            self._api_client = k8s_client.ApiClient()
            self._ws_client = WsApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _build_manager(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kubernetes_asyncio import client as k8s_client

            from hahaha.cache import ResourceCache
            from hahaha.collector.watcher import ResourceWatcher
            from hahaha.controller import (
                ControllerManager,
                LeaderElector,
                Reconciler,
                WorkerPool,
                WorkQueue,
            )
            from hahaha.sidecars import Destroyer, EventRecorder, SidecarHandler
            from hahaha.store.kubernetes import PodStore
            from hahaha.store.lease import KubernetesLeaseStore

            cfg = self.config
            core_v1 = k8s_client.CoreV1Api(self._api_client)

            store = PodStore(core_v1, namespace=cfg.watch.namespace, label_selector=cfg.watch.label_selector)
            cache = ResourceCache()
            watcher = ResourceWatcher(store, cache, resync_period_seconds=cfg.watch.resync_period_seconds)
            queue = WorkQueue(
                backoff_base=cfg.queue.backoff_base_seconds,
                backoff_max=cfg.queue.backoff_max_seconds,
                max_permanent_retries=cfg.queue.max_permanent_retries,
            )

            election = cfg.leader_election
            handler = SidecarHandler(
                destroyer=Destroyer(k8s_client.CoreV1Api(self._ws_client)),
                recorder=EventRecorder(core_v1, instance=election.identity),
            )
            # Pod status is owned by the kubelet; never write conditions into it.
            reconciler = Reconciler(
                cache,
                store,
                handler,
                max_requeue_seconds=cfg.queue.max_requeue_seconds,
                report_errors=False,
            )
            pool = WorkerPool(queue, reconciler, workers=cfg.queue.workers)

            lease_store = None
            if election.enabled:
                lease_store = KubernetesLeaseStore(
                    k8s_client.CoordinationV1Api(self._api_client),
                    election.lease_namespace,
                )
            elector = LeaderElector(
                lease_store,
                identity=election.identity,
                lease_name=election.lease_name,
                lease_duration_seconds=election.lease_duration_seconds,
                renew_deadline_seconds=election.renew_deadline_seconds,
                retry_period_seconds=election.retry_period_seconds,
                enabled=election.enabled,
            )

            self._manager = ControllerManager(
                cache,
                watcher,
                queue,
                pool,
                elector,
                drain_timeout_seconds=cfg.queue.drain_timeout_seconds,
            )
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc
        self._log.debug(
            "controller_built",
            workers=self.config.queue.workers,
            namespace=self.config.watch.namespace or "*",
            label_selector=self.config.watch.label_selector,
        )

    async def _start_manager(self) -> None:
        """Initial list must succeed; without store connectivity there is nothing to do."""
        assert self._log is not None
        assert self._manager is not None
        try:
            await self._manager.start()
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_health_server(self) -> None:
        """Start the uvicorn server for /healthz, /readyz and /metrics."""
        assert self._log is not None
        assert self.config is not None
        assert self._manager is not None
        try:
            import uvicorn

            from hahaha.api import create_app

            uv_config = uvicorn.Config(
                app=create_app(self._manager),
                host="0.0.0.0",
                port=self.config.health.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="health-server")
            self._background_tasks.append(task)
            self._health_server = server
            self._log.info("health_server_started", port=self.config.health.port)
        except Exception as exc:
            raise _ComponentError("health_server", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("hahaha_shutting_down")
        self._running = False

        if self._health_server is not None:
            self._health_server.should_exit = True
        if self._background_tasks:
            done, pending = await asyncio.wait(self._background_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._health_server = None

        # The manager's own stop drains workers, releases the Lease and closes the watch.
        drain = self.config.queue.drain_timeout_seconds if self.config else 0.0
        await self._stop_component("controller", self._manager, timeout=_SHUTDOWN_GRACE_SECONDS + drain)
        self._manager = None

        await self._close_client("ws_client", self._ws_client, "close")
        await self._close_client("api_client", self._api_client, "close")
        self._ws_client = self._api_client = None

        log.info("hahaha_stopped")

    async def _stop_component(
        self,
        name: str,
        component: object | None,
        timeout: float = _SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        """Call stop() on a component, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=timeout)
        except TimeoutError:
            log.warning("component_stop_timed_out", component=name, timeout=timeout)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))

    async def _close_client(self, name: str, client: object | None, method: str) -> None:
        if client is None:
            return
        log = self._log or get_logger("app")
        try:
            await getattr(client, method)()
        except Exception as exc:
            log.debug("client_close_failed", client=name, error=str(exc))


def _hahaha_version() -> str:
    from hahaha import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = HahahaApp()
    loop = asyncio.get_running_loop()
    stopped = asyncio.Event()

    shutdown_triggered = False

    async def _shutdown() -> None:
        await app.stop()
        stopped.set()

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(_shutdown(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await stopped.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal_startup_error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
