"""Application bootstrap for kubemirror.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> cluster connection -> type inference
              -> cache -> ingest -> discovery/selectors -> watches
              -> timers -> REST

Shutdown stops watches first so nothing new is produced, then the timers,
the ingest consumer and the inference worker, and finally releases the
cluster connection. Each step is guarded so one failing teardown does not
prevent the rest.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubemirror.config import load_config
from kubemirror.models.config import KubeMirrorConfig
from kubemirror.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubemirror.cache import CacheTimers, IngestEngine, ObjectCache
    from kubemirror.cluster import ClusterClient, ConnectionManager
    from kubemirror.collector import CommandChannel, WatchSupervisor
    from kubemirror.inference import TypeInferenceWorker

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeMirrorApp:
    """Application root. Owns every component and coordinates their lifecycle.

    ``config`` and ``connection`` may be injected (tests do); otherwise they
    are built from the environment during :meth:`start`.
    """

    def __init__(
        self,
        config: KubeMirrorConfig | None = None,
        connection: ConnectionManager | None = None,
    ) -> None:
        self.config: KubeMirrorConfig | None = config
        self.k8s_version = "n/a"

        self._connection: ConnectionManager | None = connection
        self._client: ClusterClient | None = None
        self._inference: TypeInferenceWorker | None = None
        self._cache: ObjectCache | None = None
        self._channel: CommandChannel | None = None
        self._ingest: IngestEngine | None = None
        self._supervisor: WatchSupervisor | None = None
        self._timers: CacheTimers | None = None
        self._rest_server: object | None = None

        # Ingest consumer and REST server
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def cache(self) -> ObjectCache | None:
        return self._cache

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
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("kubemirror starting", version=_kubemirror_version(), cluster=self.config.cluster)

        # --- 3. Cluster connection --------------------------------------
        await self._start_connection()

        # --- 4. Type inference worker -----------------------------------
        self._start_inference()

        # --- 5. Cache, channel and ingest consumer ----------------------
        self._start_ingest()

        # --- 6. Discovery and watches -----------------------------------
        await self._start_watches()

        # --- 7. Snapshot/purge timers -----------------------------------
        self._start_timers()

        # --- 8. REST API ------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("kubemirror started", k8s_version=self.k8s_version)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    async def _start_connection(self) -> None:
        """Connect to the cluster (with retry) and record the server version."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting cluster connection")
        try:
            from kubemirror.cluster import ConnectionManager

            if self._connection is None:
                self._connection = ConnectionManager(self.config.kube)
            self._client = await self._connection.acquire()
        except Exception as exc:
            raise _ComponentError("connection", exc) from exc

        try:
            version = await self._client.server_version()
            self.k8s_version = version.short
        except Exception as exc:
            self._log.warning("server version unavailable", error=str(exc))
            self.k8s_version = "n/a"

    def _start_inference(self) -> None:
        assert self._log is not None
        from kubemirror.inference import TypeInferenceWorker

        self._inference = TypeInferenceWorker()
        self._inference.start()

    def _start_ingest(self) -> None:
        """Create the cache, the command channel and the ingest consumer task."""
        assert self._log is not None
        assert self.config is not None
        assert self._client is not None
        assert self._inference is not None
        from kubemirror.cache import IngestEngine, ObjectCache
        from kubemirror.collector import CommandChannel

        settings = self.config.cache
        self._cache = ObjectCache()
        self._channel = CommandChannel(
            maxsize=settings.channel_size,
            send_timeout=settings.send_timeout_seconds,
            retries=settings.send_retries,
        )
        self._ingest = IngestEngine(self._channel, self._cache, self._inference, self._client)
        task = asyncio.create_task(self._ingest.run(), name="ingest")
        self._background_tasks.append(task)
        self._log.info("ingest started", channel_size=settings.channel_size)

    async def _start_watches(self) -> None:
        """Resolve configured resources and start one watch task per selector.

        A discovery failure is non-fatal: the app keeps serving an empty
        cache and logs the error.
        """
        assert self._log is not None
        assert self.config is not None
        assert self._client is not None
        assert self._channel is not None
        from kubemirror.collector import WatchSupervisor
        from kubemirror.discovery import build_selectors, discover

        self._supervisor = WatchSupervisor(self._client, self._channel, self.k8s_version)
        if not self.config.kube.resources:
            self._log.warning("no resources configured; nothing to watch")
            return
        try:
            catalog = await discover(self._client)
        except Exception as exc:
            self._log.error("discovery failed; watches not started", error=str(exc))
            return
        selectors = build_selectors(catalog, self.config.kube.resources)
        self._supervisor.start(selectors)

    def _start_timers(self) -> None:
        assert self.config is not None
        assert self._channel is not None
        from kubemirror.cache import CacheTimers

        self._timers = CacheTimers(
            self._channel,
            poll_interval=self.config.cache.poll_interval,
            purge_interval=self.config.cache.purge_interval,
        )
        self._timers.start()

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        assert self._cache is not None
        if not self.config.api.enabled:
            self._log.info("rest api disabled")
            return
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubemirror.api import create_app

            fastapi_app = create_app(cache=self._cache, config=self.config, k8s_version=self.k8s_version)
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
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return
        log = self._log or get_logger("app")
        log.info("kubemirror shutting down")
        self._running = False

        await self._stop_component("watches", self._supervisor)
        await self._stop_component("timers", self._timers)

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_component("inference", self._inference)
        await self._stop_component("connection", self._connection, method="release")
        self._client = None
        log.info("kubemirror stopped")

    async def _stop_component(self, name: str, component: object | None, method: str = "stop") -> None:
        """Call ``method`` on a component if present, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, method, None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _kubemirror_version() -> str:
    from kubemirror import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(app: KubeMirrorApp | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested.

    Returns only after the shutdown sequence has finished.
    """
    mirror = app if app is not None else KubeMirrorApp()
    loop = asyncio.get_running_loop()
    shutdown_task: asyncio.Task[None] | None = None

    def _request_shutdown() -> None:
        nonlocal shutdown_task
        if shutdown_task is None:
            shutdown_task = asyncio.create_task(mirror.stop(), name="shutdown")

    signals = (signal.SIGTERM, signal.SIGINT)
    for sig in signals:
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await mirror.start()
        while mirror.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await mirror.stop()
        raise SystemExit(1) from exc
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        if shutdown_task is not None:
            await shutdown_task
        elif mirror.running:
            await mirror.stop()


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())
