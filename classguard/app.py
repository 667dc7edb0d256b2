"""Application bootstrap for classguard.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → store → context → informers (+ cache sync)
              → controller workers → REST

Shutdown order: REST → informers → controller workers (in-flight keys finish)
                → store (only when the app created it)

Each component's stop error is caught and logged on its own; the remaining
components are still stopped.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from classguard.config import load_config
from classguard.models.config import ClassGuardConfig
from classguard.observability.logging import bind_controller, get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from classguard.cache.informer import Informer
    from classguard.controller.context import ControllerContext
    from classguard.controller.controller import ClassController
    from classguard.store.base import ResourceStore

_SHUTDOWN_GRACE_SECONDS = 15
_CACHE_SYNC_TIMEOUT_SECONDS = 120


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class ClassGuardApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Args:
        config:    Pre-built configuration; loaded from the environment when None.
        store:     Pre-built resource store; a KubernetesStore is created when None.
        serve_api: Whether to start the REST server.
    """

    def __init__(
        self,
        config: ClassGuardConfig | None = None,
        store: ResourceStore | None = None,
        serve_api: bool = True,
    ) -> None:
        self.config = config
        self._store: ResourceStore | None = store
        self._owns_store = store is None
        self._serve_api = serve_api

        self.context: ControllerContext | None = None
        self._informers: list[Informer] = []
        self._controller: ClassController | None = None
        self._rest_server: object | None = None

        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

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
        if self.config is None:
            try:
                self.config = load_config()
            except ValueError as exc:
                raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        bind_controller(self.config.resources.class_kind, self.config.controller.namespace)
        self._log = get_logger("app")
        self._log.info("app_starting", version=_classguard_version())

        # --- 3. Resource store -------------------------------------------
        await self._start_store()

        # --- 4. Controller context ---------------------------------------
        self._build_context()

        # --- 5. Informers + cache sync -----------------------------------
        await self._start_informers()

        # --- 6. Controller workers ---------------------------------------
        await self._start_controller()

        # --- 7. REST API ------------------------------------------------
        if self._serve_api:
            await self._start_rest()

        self._running = True
        self._log.info("app_started", port=self.config.api.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_store(self) -> None:
        """Build the KubernetesStore from in-cluster config or kubeconfig."""
        assert self._log is not None
        assert self.config is not None
        if self._store is not None:
            self._log.info("store_injected", store=type(self._store).__name__)
            return
        self._log.debug("store_connecting")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            from classguard.store.kubernetes import KubernetesStore

            try:
                k8s_config.load_incluster_config()
                self._log.info("store_connected", source="in-cluster")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("store_connected", source="kubeconfig")

            self._store = KubernetesStore(
                k8s_client.ApiClient(),
                self.config.resources,
                watch_timeout=self.config.watch.timeout_seconds,
            )
        except Exception as exc:
            raise _ComponentError("store", exc) from exc

    def _build_context(self) -> None:
        assert self.config is not None
        assert self._store is not None
        from classguard.controller.context import build_context

        self.context = build_context(self.config, self._store)

    async def _start_informers(self) -> None:
        """Start one informer per watched kind and wait for the initial lists."""
        assert self._log is not None
        assert self.config is not None
        assert self.context is not None
        self._log.debug("informers_starting")
        try:
            from classguard.cache.informer import Informer
            from classguard.controller.dispatcher import EventDispatcher
            from classguard.models.resources import DependentKind

            ctx = self.context
            dispatcher = EventDispatcher(ctx.class_kind, ctx.class_queue)
            watch = self.config.watch

            def _informer(kind: str, resync: float) -> Informer:
                return Informer(
                    ctx.store,
                    ctx.cache,
                    kind,
                    ctx.namespace,
                    resync_period=resync,
                    reconnect_base_delay=watch.reconnect_base_delay,
                    reconnect_max_delay=watch.reconnect_max_delay,
                )

            class_informer = _informer(ctx.class_kind, self.config.controller.resync_period)
            class_informer.add_handler(dispatcher.on_class_event)
            self._informers.append(class_informer)
            for kind in DependentKind:
                informer = _informer(str(kind), 0)
                informer.add_handler(dispatcher.on_dependent_event)
                self._informers.append(informer)

            for informer in self._informers:
                await informer.start()
            await asyncio.gather(
                *(informer.wait_synced(timeout=_CACHE_SYNC_TIMEOUT_SECONDS) for informer in self._informers)
            )
            self._log.info(
                "informers_synced",
                kinds=[informer.kind for informer in self._informers],
                cache_state=ctx.cache.readiness().value,
            )
        except Exception as exc:
            raise _ComponentError("informers", exc) from exc

    async def _start_controller(self) -> None:
        assert self._log is not None
        assert self.context is not None
        self._log.debug("controller_starting")
        try:
            from classguard.controller.controller import ClassController

            controller = ClassController(self.context)
            await controller.start()
            self._controller = controller
            self._log.info("controller_started", workers=controller.workers)
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("rest_starting")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from classguard.api import build_app

            fastapi_app = build_app(context=self.context, controller=self._controller)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host=self.config.api.host,
                port=self.config.api.port,
                log_config=None,
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest_started", host=self.config.api.host, port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop every started component; safe to call more than once."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("app_stopping")

        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        # Informers first so no new keys arrive while workers drain
        for informer in reversed(self._informers):
            await self._stop_component(f"informer-{informer.kind}", informer)
        self._informers.clear()
        await self._stop_component("controller", self._controller)
        self._controller = None
        if self._owns_store:
            await self._stop_component("store", self._store)

        log.info("app_stopped")

    async def _stop_component(self, name: str, component: Any | None) -> None:
        """Call stop() (or close()) on a component, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None) or getattr(component, "close", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timeout", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))


def _classguard_version() -> str:
    from classguard import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = ClassGuardApp()
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
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "startup_failed",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()


def run() -> None:
    """Console-script entry point (``classguard``)."""
    asyncio.run(main())
