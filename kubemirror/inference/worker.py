"""Type inference worker.

List responses from the API server omit apiVersion/kind on their items, so
objects replayed by a resync arrive without type metadata. The worker maps
the originating REST collection path back to a TypeMeta.

The worker is a single long-lived task reading paths from a request queue
and answering on a response queue. ``infer()`` holds a lock across the
send/receive pair so replies can never be paired with the wrong request.
"""

from __future__ import annotations

import asyncio
import contextlib
import re

from kubemirror.models.objects import TypeMeta
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import type_inference_misses_total

_logger = get_logger("type_inference")

# Ordered; first match wins. The trailing "s" of the collection is dropped to
# get the kind, so irregular plurals (ingresses, endpoints) come out wrong.
_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/api/(?P<version>[a-z0-9]*)/(?P<resource>[a-zA-Z0-9-]*)s$"),
    re.compile(r"/api/(?P<version>[a-z0-9]*)/namespaces/(?P<ns>[a-zA-Z0-9-]*)/(?P<resource>[a-zA-Z0-9]*)s$"),
    re.compile(r"/apis/(?P<group>[a-z0-9.]*)/(?P<version>[a-z0-9]*)/(?P<resource>[a-zA-Z0-9]*)s$"),
    re.compile(
        r"/apis/(?P<group>[a-z0-9.]*)/(?P<version>[a-z0-9]*)/namespaces/(?P<ns>[a-zA-Z0-9-]*)/(?P<resource>[a-zA-Z0-9]*)s$"
    ),
)


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def infer_type_meta(path: str) -> TypeMeta | None:
    """Infer TypeMeta from a REST collection path.

    >>> infer_type_meta("/api/v1/pods")
    TypeMeta(api_version='v1', kind='Pod')
    >>> infer_type_meta("/apis/apps/v1/namespaces/default/deployments")
    TypeMeta(api_version='apps/v1', kind='Deployment')
    >>> infer_type_meta("/foo/bar") is None
    True
    """
    for pattern in _PATTERNS:
        match = pattern.search(path)
        if match is None:
            continue
        groups = match.groupdict()
        group = groups.get("group")
        version = groups["version"]
        api_version = f"{group}/{version}" if group else version
        return TypeMeta(api_version=api_version, kind=_capitalize(groups["resource"]))
    return None


class TypeInferenceWorker:
    """Single-task worker answering path -> TypeMeta requests in order."""

    def __init__(self, queue_size: int = 1) -> None:
        self._requests: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._responses: asyncio.Queue[TypeMeta | None] = asyncio.Queue(maxsize=queue_size)
        self._lock = asyncio.Lock()
        self._memo: dict[str, TypeMeta | None] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run(), name="type-inference")
        _logger.info("type_inference_worker_started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        _logger.info("type_inference_worker_stopped")

    async def run(self) -> None:
        """Serve requests until cancelled."""
        while True:
            path = await self._requests.get()
            if path in self._memo:
                result = self._memo[path]
            else:
                result = infer_type_meta(path)
                self._memo[path] = result
                if result is None:
                    type_inference_misses_total.inc()
                    _logger.debug("type_inference_miss", path=path)
            await self._responses.put(result)

    async def infer(self, path: str) -> TypeMeta | None:
        """Ask the worker for the TypeMeta of ``path``.

        Raises:
            RuntimeError: the worker task is not running.
        """
        if not self.running:
            raise RuntimeError("type inference worker is not running")
        async with self._lock:
            await self._requests.put(path)
            return await self._responses.get()
