"""Per-selector watch task.

Each ResourceWatcher opens three sub-streams on its selector, tagged
APPLIED, DELETED and RESTARTED, merges them first-ready-wins and turns the
events each tag is responsible for into cache commands:

    APPLIED   + APPLY       -> ADD
    DELETED   + DELETE      -> DELETE
    RESTARTED + INIT_APPLY  -> ADD

Everything else is dropped, so each event reaches the cache exactly once
even though all three sub-streams see it. Stream errors are logged and the
loop keeps polling.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from enum import StrEnum
from typing import Any, TypeVar

from kubemirror.cluster.client import ClusterClient
from kubemirror.collector.channel import CommandChannel
from kubemirror.models.objects import (
    ClusterObject,
    Command,
    CommandKind,
    RawWatchEvent,
    ResourceSelector,
    WatchPhase,
    WatchStreamError,
)
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import watch_events_dropped_total, watch_stream_errors_total

_logger = get_logger("watcher")

T = TypeVar("T")
K = TypeVar("K")


class SubStream(StrEnum):
    """Tag of one of the three sub-streams opened per selector."""

    APPLIED = "applied"
    DELETED = "deleted"
    RESTARTED = "restarted"


_TRANSLATION: dict[tuple[SubStream, WatchPhase], CommandKind] = {
    (SubStream.APPLIED, WatchPhase.APPLY): CommandKind.ADD,
    (SubStream.DELETED, WatchPhase.DELETE): CommandKind.DELETE,
    (SubStream.RESTARTED, WatchPhase.INIT_APPLY): CommandKind.ADD,
}

_DONE = object()


async def merge_streams(
    streams: Mapping[K, AsyncIterator[T]],
    buffer: int = 1,
) -> AsyncIterator[tuple[K, T | BaseException]]:
    """Merge tagged async iterators, yielding ``(tag, item)`` as items arrive.

    An exception raised by a sub-stream is yielded as the item for its tag
    and ends only that sub-stream. The merged iterator ends once every
    sub-stream has ended.

    At most ``buffer`` items wait between the pumps and the consumer; a pump
    blocks on a full buffer and stops pulling from its sub-stream until the
    consumer catches up.
    """
    if buffer <= 0:
        raise ValueError(f"buffer must be > 0, got {buffer}")
    queue: asyncio.Queue[tuple[K, Any]] = asyncio.Queue(maxsize=buffer)

    async def _pump(tag: K, stream: AsyncIterator[T]) -> None:
        try:
            async for item in stream:
                await queue.put((tag, item))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await queue.put((tag, exc))
        await queue.put((tag, _DONE))

    pumps = [asyncio.create_task(_pump(tag, stream), name=f"pump-{tag}") for tag, stream in streams.items()]
    remaining = len(pumps)
    try:
        while remaining:
            tag, item = await queue.get()
            if item is _DONE:
                remaining -= 1
                continue
            yield tag, item
    finally:
        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
        for stream in streams.values():
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()


def translate(
    sub: SubStream,
    event: RawWatchEvent,
    selector: ResourceSelector,
    k8s_version: str,
) -> Command | None:
    """Translate a raw event seen on sub-stream ``sub`` into a command, or None to drop it."""
    kind = _TRANSLATION.get((sub, event.phase))
    if kind is None:
        return None
    return Command(
        kind=kind,
        obj=ClusterObject.from_raw(event.object),
        event_type=selector.event_type,
        k8s_version=k8s_version,
        resource_url=selector.resource_url,
    )


class ResourceWatcher:
    """Watch one selector and forward translated commands to the channel."""

    def __init__(
        self,
        selector: ResourceSelector,
        client: ClusterClient,
        channel: CommandChannel,
        k8s_version: str = "n/a",
    ) -> None:
        self._selector = selector
        self._client = client
        self._channel = channel
        self._k8s_version = k8s_version
        self._log = _logger.bind(selector=selector.key, event_type=selector.event_type)
        self.commands_sent = 0

    @property
    def selector(self) -> ResourceSelector:
        return self._selector

    async def run(self) -> None:
        """Poll the merged sub-streams until they end or the task is cancelled."""
        streams = {sub: self._client.watch(self._selector) for sub in SubStream}
        self._log.info("watch_started", resource_url=self._selector.resource_url)

        async for sub, item in merge_streams(streams):
            if isinstance(item, WatchStreamError):
                watch_stream_errors_total.labels(event_type=self._selector.event_type).inc()
                self._log.error("watch_stream_error", stream=sub.value, error=item.error, status=item.status)
                continue
            if isinstance(item, BaseException):
                watch_stream_errors_total.labels(event_type=self._selector.event_type).inc()
                self._log.error("watch_stream_failed", stream=sub.value, error=str(item))
                continue

            command = translate(sub, item, self._selector, self._k8s_version)
            if command is None:
                watch_events_dropped_total.labels(event_type=self._selector.event_type).inc()
                continue
            if await self._channel.send(command):
                self.commands_sent += 1

        self._log.warning("watch_streams_ended")
