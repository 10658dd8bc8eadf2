"""In-memory object cache keyed by ``namespace/name``.

The lock is held for a single mutation or copy and never across an await,
so readers on other threads (the REST layer) and the ingest task never block
each other for long.
"""

from __future__ import annotations

import threading

from kubemirror.models.objects import ClusterObject, cache_key
from kubemirror.observability.metrics import cache_objects


class ObjectCache:
    """Thread-safe ``namespace/name -> ClusterObject`` map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: dict[str, ClusterObject] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._objects

    def upsert(self, obj: ClusterObject) -> str:
        """Insert or replace ``obj``; the last write wins. Returns its key."""
        key = obj.key
        with self._lock:
            self._objects[key] = obj
            cache_objects.set(len(self._objects))
        return key

    def remove(self, key: str) -> ClusterObject | None:
        with self._lock:
            removed = self._objects.pop(key, None)
            cache_objects.set(len(self._objects))
        return removed

    def remove_many(self, keys: list[str]) -> int:
        """Remove every key present; return how many were removed."""
        removed = 0
        with self._lock:
            for key in keys:
                if self._objects.pop(key, None) is not None:
                    removed += 1
            cache_objects.set(len(self._objects))
        return removed

    def get(self, namespace: str | None, name: str) -> ClusterObject | None:
        """Return a copy of the cached object, or None."""
        with self._lock:
            obj = self._objects.get(cache_key(namespace, name))
            return obj.copy() if obj is not None else None

    def snapshot(self) -> list[tuple[str, ClusterObject]]:
        """Deep copies of every entry, ordered by key."""
        with self._lock:
            return [(key, self._objects[key].copy()) for key in sorted(self._objects)]

    def clear(self) -> None:
        with self._lock:
            self._objects.clear()
            cache_objects.set(0)
