"""Watch task supervisor.

Owns one asyncio task per selector, keyed by ``ResourceSelector.key``, so
individual watches can be cancelled or restarted and all of them stopped
at shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable

from kubemirror.cluster.client import ClusterClient
from kubemirror.collector.channel import CommandChannel
from kubemirror.collector.watcher import ResourceWatcher
from kubemirror.models.objects import ResourceSelector
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import watch_tasks

_logger = get_logger("watch_supervisor")

WatcherFactory = Callable[[ResourceSelector], ResourceWatcher]


class WatchSupervisor:
    """Start, cancel, restart and stop per-selector watch tasks."""

    def __init__(
        self,
        client: ClusterClient,
        channel: CommandChannel,
        k8s_version: str = "n/a",
        watcher_factory: WatcherFactory | None = None,
    ) -> None:
        self._client = client
        self._channel = channel
        self._k8s_version = k8s_version
        self._factory = watcher_factory or self._default_factory
        self._selectors: dict[str, ResourceSelector] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def _default_factory(self, selector: ResourceSelector) -> ResourceWatcher:
        return ResourceWatcher(selector, self._client, self._channel, self._k8s_version)

    @property
    def keys(self) -> list[str]:
        return sorted(self._tasks)

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def start(self, selectors: list[ResourceSelector]) -> None:
        """Spawn a watch task for every selector not already running."""
        for selector in selectors:
            if self.is_running(selector.key):
                continue
            self._spawn(selector)
        _logger.info("watch_tasks_started", count=len(self._tasks))

    def _spawn(self, selector: ResourceSelector) -> None:
        watcher = self._factory(selector)
        task = asyncio.create_task(watcher.run(), name=f"watch:{selector.key}")
        task.add_done_callback(self._on_task_done)
        self._selectors[selector.key] = selector
        self._tasks[selector.key] = task
        watch_tasks.set(len(self._tasks))

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("watch_task_crashed", task=task.get_name(), error=str(exc), exc_info=exc)
        else:
            _logger.warning("watch_task_exited", task=task.get_name())

    async def cancel(self, key: str) -> bool:
        """Cancel the task for ``key``; return False if there was none."""
        task = self._tasks.pop(key, None)
        self._selectors.pop(key, None)
        watch_tasks.set(len(self._tasks))
        if task is None:
            return False
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        _logger.info("watch_task_cancelled", selector=key)
        return True

    async def restart(self, key: str) -> bool:
        """Cancel and respawn the task for ``key``."""
        selector = self._selectors.get(key)
        if selector is None:
            return False
        await self.cancel(key)
        self._spawn(selector)
        _logger.info("watch_task_restarted", selector=key)
        return True

    async def stop(self) -> None:
        """Cancel every task and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        self._selectors.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        watch_tasks.set(0)
        _logger.info("watch_tasks_stopped", count=len(tasks))
