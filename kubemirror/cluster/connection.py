"""Cluster connection manager.

Owns the single cluster client handle for the process. The bootstrap builds
one manager and calls :meth:`ConnectionManager.acquire` before any watch task
starts; the returned handle is then passed to every component that needs it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from kubemirror.cluster.backoff import compute_backoff
from kubemirror.cluster.client import ClusterClient, KubernetesClusterClient
from kubemirror.models.config import KubeSettings
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import connection_retries_total

_logger = get_logger("connection")

ConnectFn = Callable[[KubeSettings], Awaitable[ClusterClient]]


class ClusterConnectionError(Exception):
    """Raised when no validated connection could be established."""


class ConnectionManager:
    """Lazily establishes and caches a validated cluster client."""

    def __init__(self, settings: KubeSettings, connect: ConnectFn | None = None) -> None:
        self._settings = settings
        self._connect: ConnectFn = connect or KubernetesClusterClient.connect
        self._client: ClusterClient | None = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def acquire(self) -> ClusterClient:
        """Return the established client, connecting with bounded retry if needed.

        Raises:
            ClusterConnectionError: every attempt failed.
        """
        async with self._lock:
            if self._client is None:
                self._client = await self._connect_with_retry()
            return self._client

    async def release(self) -> None:
        """Close and drop the client handle."""
        async with self._lock:
            client, self._client = self._client, None
        if client is not None:
            await client.close()
            _logger.info("connection_released")

    async def _connect_with_retry(self) -> ClusterClient:
        retry = self._settings.retry
        attempts = retry.max_retries + 1 if retry.enabled else 1
        last_error: Exception | None = None

        for attempt in range(attempts):
            if attempt > 0:
                delay_ms = compute_backoff(attempt - 1, retry.base_delay_ms, retry.max_delay_ms)
                _logger.warning(
                    "connection_retry",
                    attempt=attempt,
                    max_retries=retry.max_retries,
                    delay_ms=delay_ms,
                    error=str(last_error),
                )
                connection_retries_total.inc()
                await asyncio.sleep(delay_ms / 1000)

            try:
                client = await self._connect(self._settings)
            except Exception as exc:
                last_error = exc
                continue

            try:
                version = await client.server_version()
            except Exception as exc:
                last_error = exc
                await _close_quietly(client)
                continue

            _logger.info(
                "connection_established",
                version=version.short,
                git_version=version.git_version,
                attempts=attempt + 1,
            )
            return client

        if last_error is not None:
            raise ClusterConnectionError(
                f"Failed to connect to the cluster after {attempts} attempt(s): {last_error}"
            ) from last_error
        raise ClusterConnectionError("Failed to connect to the cluster")


async def _close_quietly(client: ClusterClient) -> None:
    try:
        await client.close()
    except Exception as exc:
        _logger.debug("connection_close_failed", error=str(exc))
