"""Ingest engine and maintenance timers.

The IngestEngine is the only consumer of the command channel and the only
writer of the ObjectCache. CacheTimers inject SNAPSHOT and PURGE commands
through the same channel, so maintenance is serialised with watch traffic.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable

from kubemirror.cache.object_cache import ObjectCache
from kubemirror.cluster.client import ClusterClient
from kubemirror.collector.channel import CommandChannel
from kubemirror.inference.worker import TypeInferenceWorker
from kubemirror.models.objects import ClusterObject, Command, CommandKind
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import (
    cache_commands_total,
    cache_purge_check_errors_total,
    cache_purged_objects_total,
)

_logger = get_logger("ingest")

SnapshotSink = Callable[[list[tuple[str, ClusterObject]]], None]


class IngestEngine:
    """Apply commands from the channel to the cache."""

    def __init__(
        self,
        channel: CommandChannel,
        cache: ObjectCache,
        inference: TypeInferenceWorker,
        client: ClusterClient,
        snapshot_sink: SnapshotSink | None = None,
    ) -> None:
        self._channel = channel
        self._cache = cache
        self._inference = inference
        self._client = client
        self._snapshot_sink = snapshot_sink
        self.last_snapshot: list[tuple[str, ClusterObject]] = []
        self.commands_applied = 0

    async def run(self) -> None:
        """Consume commands until cancelled."""
        _logger.info("ingest_started")
        while True:
            command = await self._channel.receive()
            try:
                await self.handle(command)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _logger.error(
                    "ingest_command_failed",
                    command=command.kind.value,
                    resource_url=command.resource_url,
                    error=str(exc),
                    exc_info=exc,
                )

    async def handle(self, command: Command) -> None:
        """Apply a single command."""
        cache_commands_total.labels(command=command.kind.value).inc()
        self.commands_applied += 1

        if command.kind in (CommandKind.ADD, CommandKind.UPDATE):
            await self._apply(command)
        elif command.kind == CommandKind.DELETE:
            self._delete(command)
        elif command.kind == CommandKind.PURGE:
            await self.purge()
        elif command.kind == CommandKind.SNAPSHOT:
            self.snapshot()

    async def _apply(self, command: Command) -> None:
        if command.obj is None:
            _logger.warning("apply_without_object", command=command.kind.value)
            return
        obj = command.obj.copy()
        if obj.types is None and command.resource_url:
            obj.types = await self._inference.infer(command.resource_url)
        obj.strip_noise()
        key = self._cache.upsert(obj)
        _logger.debug(
            "cache_upserted",
            key=key,
            kind=obj.types.kind if obj.types else None,
            event_type=command.event_type,
        )

    def _delete(self, command: Command) -> None:
        if command.obj is None:
            return
        removed = self._cache.remove(command.obj.key)
        _logger.debug("cache_deleted", key=command.obj.key, found=removed is not None, event_type=command.event_type)

    async def purge(self) -> int:
        """Evict every cached object the cluster reports as gone.

        Existence checks run on a snapshot without holding the cache lock;
        the lock is taken again only to apply the removals. Returns the
        number of objects removed.
        """
        missing: list[str] = []
        checked = 0
        for key, obj in self._cache.snapshot():
            if obj.namespace is None or obj.types is None:
                cache_purge_check_errors_total.labels(reason="malformed").inc()
                _logger.error(
                    "purge_skipped_malformed",
                    key=key,
                    has_namespace=obj.namespace is not None,
                    has_types=obj.types is not None,
                )
                continue
            checked += 1
            try:
                alive = await self._client.exists(obj.namespace, obj.name, obj.types)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                cache_purge_check_errors_total.labels(reason="check_failed").inc()
                _logger.error("purge_check_failed", key=key, kind=obj.types.kind, error=str(exc))
                continue
            if not alive:
                missing.append(key)

        removed = self._cache.remove_many(missing) if missing else 0
        cache_purged_objects_total.inc(removed)
        _logger.info("cache_purged", checked=checked, removed=removed, remaining=len(self._cache))
        return removed

    def snapshot(self) -> list[tuple[str, ClusterObject]]:
        """Record and emit a copy of the cache contents."""
        snap = self._cache.snapshot()
        self.last_snapshot = snap
        _logger.info("cache_snapshot", objects=len(snap))
        if self._snapshot_sink is not None:
            self._snapshot_sink(snap)
        return snap


class CacheTimers:
    """Periodically inject SNAPSHOT and PURGE commands."""

    def __init__(self, channel: CommandChannel, poll_interval: float, purge_interval: float) -> None:
        if poll_interval <= 0 or purge_interval <= 0:
            raise ValueError("timer intervals must be > 0")
        self._channel = channel
        self._poll_interval = poll_interval
        self._purge_interval = purge_interval
        self._tasks: list[asyncio.Task[None]] = []

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._tick(CommandKind.SNAPSHOT, self._poll_interval), name="timer-snapshot"),
            asyncio.create_task(self._tick(CommandKind.PURGE, self._purge_interval), name="timer-purge"),
        ]
        _logger.info("cache_timers_started", poll_interval=self._poll_interval, purge_interval=self._purge_interval)

    async def _tick(self, kind: CommandKind, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._channel.send(Command(kind=kind))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
