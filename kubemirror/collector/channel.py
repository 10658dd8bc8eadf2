"""Bounded command channel between watch tasks and the ingest engine.

Many producers (one per selector plus the timers), one consumer. A full
channel applies backpressure for a bounded time; after ``retries`` timed-out
puts the command is dropped and counted instead of failing the producer.
The next resync or purge repairs whatever the dropped command carried.
"""

from __future__ import annotations

import asyncio

from kubemirror.models.objects import Command
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import commands_dropped_total

_logger = get_logger("command_channel")


class CommandChannel:
    """asyncio.Queue wrapper with bounded-retry send."""

    def __init__(self, maxsize: int = 32, send_timeout: float = 5.0, retries: int = 3) -> None:
        if maxsize <= 0:
            raise ValueError("channel size must be > 0")
        self._queue: asyncio.Queue[Command] = asyncio.Queue(maxsize=maxsize)
        self._send_timeout = send_timeout
        self._retries = max(retries, 0)
        self._dropped = 0

    @property
    def dropped(self) -> int:
        return self._dropped

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, command: Command) -> bool:
        """Enqueue ``command``; return False if it had to be dropped."""
        for attempt in range(self._retries + 1):
            try:
                await asyncio.wait_for(self._queue.put(command), timeout=self._send_timeout)
                return True
            except TimeoutError:
                _logger.debug(
                    "command_send_timeout",
                    command=command.kind.value,
                    attempt=attempt + 1,
                    queue_size=self._queue.qsize(),
                )

        self._dropped += 1
        commands_dropped_total.inc()
        _logger.error(
            "command_dropped",
            command=command.kind.value,
            event_type=command.event_type,
            resource_url=command.resource_url,
            attempts=self._retries + 1,
        )
        return False

    async def receive(self) -> Command:
        """Wait for the next command."""
        return await self._queue.get()
