"""Application bootstrap for KubePolicy.

Builds the components from configuration and runs them on one event loop.
Startup order: config → logging → K8s client → sources → controller → REST

Shutdown is graceful: components are stopped in reverse startup order and the
in-flight reconciliation cycle is allowed to finish.  Losing an observation
stream is fatal: the app shuts down and the process exits non-zero.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubepolicy.collector.source import ObservationError, ObservationSource
from kubepolicy.config import load_config
from kubepolicy.models.config import KubePolicyConfig
from kubepolicy.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubepolicy.controller import Controller

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """A component the controller cannot run without failed to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubePolicyApp:
    """Owns the controller, its sources and the REST server.

    ``stop()`` is idempotent: calling it on an app that was never started (or
    already stopped) is safe.
    """

    def __init__(self) -> None:
        self.config: KubePolicyConfig | None = None

        self._api_client: object | None = None
        self._sources: list[ObservationSource] = []
        self._controller: Controller | None = None
        self._controller_task: asyncio.Task[None] | None = None
        self._rest_server: object | None = None

        # uvicorn serve task
        self._background_tasks: list[asyncio.Task[None]] = []
        self._shutdown_task: asyncio.Task[None] | None = None

        self._running = False
        self._stopped = asyncio.Event()
        self.fatal_error: ObservationError | None = None
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError naming the component that failed.
        """
        self.config = load_config()

        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubepolicy starting", version=_kubepolicy_version())

        await self._start_k8s_client()
        self._start_sources()
        self._start_controller()
        await self._start_rest()

        self._running = True
        self._log.info("kubepolicy started", sources=len(self._sources))

    async def wait(self) -> None:
        """Block until the app has been stopped."""
        await self._stopped.wait()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    async def _start_k8s_client(self) -> None:
        """ApiClient from the pod service account, falling back to kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            try:
                # sync in kubernetes-asyncio
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                # async, unlike the in-cluster loader
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _start_sources(self) -> None:
        """One ResourceWatcher per watched kind."""
        assert self._log is not None
        assert self.config is not None
        try:
            from kubepolicy.collector.watcher import (
                BACKEND_TLS_POLICY_RESOURCE,
                GATEWAY_API_RESOURCES,
                ResourceType,
                ResourceWatcher,
            )

            watch = self.config.watch
            resources = list(GATEWAY_API_RESOURCES)
            if watch.backend_tls_policies:
                resources.append(BACKEND_TLS_POLICY_RESOURCE)
            resources.extend(ResourceType(pk.group, pk.version, pk.plural, pk.kind) for pk in watch.policy_kinds)

            self._sources = [
                ResourceWatcher.for_kubernetes(
                    resource,
                    self._api_client,
                    namespace=watch.namespace,
                    label_selector=watch.label_selector,
                    max_retries=watch.max_retries,
                )
                for resource in resources
            ]
            self._log.info("sources configured", kinds=[str(s.kind) for s in self._sources])
        except Exception as exc:
            raise _ComponentError("sources", exc) from exc

    def _start_controller(self) -> None:
        """Build the controller, register the built-in reconcilers and start the loop."""
        assert self._log is not None
        assert self.config is not None
        try:
            from kubepolicy.apis.convert import Converter
            from kubepolicy.apis.gateway import BACKEND_TLS_POLICY
            from kubepolicy.client import ResourceClient
            from kubepolicy.controller import Controller
            from kubepolicy.machinery.builder import gateway_api_topology_builder
            from kubepolicy.machinery.merge import strategy_by_name
            from kubepolicy.machinery.objects import GroupKind
            from kubepolicy.machinery.policies import PolicyKind
            from kubepolicy.observability.reporter import report_topology

            policy_kinds = [
                PolicyKind(GroupKind(pk.group, pk.kind), strategy_by_name(pk.strategy))
                for pk in self.config.watch.policy_kinds
            ]
            policy_group_kinds = [pk.group_kind for pk in policy_kinds]
            if self.config.watch.backend_tls_policies:
                policy_group_kinds.insert(0, BACKEND_TLS_POLICY)

            topo = self.config.topology
            builder = gateway_api_topology_builder(
                policy_kinds=policy_group_kinds,
                expand_listeners=topo.expand_listeners,
                expand_rules=topo.expand_rules,
                expand_ports=topo.expand_ports,
            )
            controller = Controller(
                self._sources,
                builder,
                config=self.config.controller,
                converter=Converter(policy_kinds),
                client=ResourceClient(self._api_client),
            )
            controller.add_reconciler(report_topology)
            self._controller = controller
            self._controller_task = asyncio.create_task(self._run_controller(controller), name="controller")
            self._log.info("controller started", policy_kinds=[str(k) for k in policy_group_kinds])
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _run_controller(self, controller: Controller) -> None:
        try:
            await controller.run()
        except ObservationError as exc:
            log = self._log or get_logger("app")
            log.critical("observation lost", source=exc.source, error=str(exc.cause))
            self.fatal_error = exc
            self._shutdown_task = asyncio.create_task(self.stop(), name="shutdown")

    async def _start_rest(self) -> None:
        """Serve the read-only topology API with uvicorn."""
        assert self._log is not None
        assert self.config is not None
        if not self.config.api.enabled:
            self._log.info("rest api disabled")
            return
        self._log.debug("starting rest api")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from kubepolicy.api import create_app

            fastapi_app = create_app(controller=self._controller, config=self.config)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if self._stopped.is_set():
            return
        if not self._running and self._log is None:
            self._stopped.set()
            return

        log = self._log or get_logger("app")
        log.info("kubepolicy shutting down")
        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        if self._background_tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background_tasks, return_exceptions=True),
                    timeout=_SHUTDOWN_GRACE_SECONDS,
                )
            except TimeoutError:
                log.warning("rest api stop timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
        self._background_tasks.clear()

        await self._stop_controller()
        await self._stop_k8s_client()

        log.info("kubepolicy stopped")
        self._stopped.set()

    async def _stop_controller(self) -> None:
        """Let the in-flight cycle finish, then wait for the loop to exit."""
        if self._controller is None or self._controller_task is None:
            return
        log = self._log or get_logger("app")
        self._controller.stop()
        try:
            await asyncio.wait_for(asyncio.shield(self._controller_task), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("controller stop timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
            self._controller_task.cancel()

    async def _stop_k8s_client(self) -> None:
        """Release the ApiClient's HTTP session."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()  # type: ignore[attr-defined]
        except Exception as exc:
            log.debug("k8s client close failed", error=str(exc))
        self._api_client = None


def _kubepolicy_version() -> str:
    from kubepolicy import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Run KubePolicy until SIGTERM/SIGINT or loss of an observation source."""
    app = KubePolicyApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await app.wait()
    except _ComponentError as exc:
        # startup failed; nothing useful can run
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        await app.stop()

    if app.fatal_error is not None:
        raise SystemExit(1)
