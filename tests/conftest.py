"""Shared fixtures for kubemirror tests.

Provides an in-memory cluster client so the watch, ingest and purge
pipelines can be exercised without a real Kubernetes API server.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from kubemirror.cluster.client import ServerVersion, build_catalog
from kubemirror.models.discovery import DiscoveryCatalog
from kubemirror.models.objects import (
    RawWatchEvent,
    ResourceSelector,
    TypeMeta,
    WatchPhase,
    WatchStreamError,
)

# ---------------------------------------------------------------------------
# Discovery fixture data
# ---------------------------------------------------------------------------

_WATCH_VERBS = ["create", "delete", "get", "list", "patch", "update", "watch"]

CORE_VERSIONS: dict[str, Any] = {"kind": "APIVersions", "versions": ["v1"]}

GROUP_LIST: dict[str, Any] = {
    "kind": "APIGroupList",
    "groups": [
        {
            "name": "apps",
            "versions": [{"groupVersion": "apps/v1", "version": "v1"}],
            "preferredVersion": {"groupVersion": "apps/v1", "version": "v1"},
        },
        {
            "name": "events.k8s.io",
            "versions": [{"groupVersion": "events.k8s.io/v1", "version": "v1"}],
            "preferredVersion": {"groupVersion": "events.k8s.io/v1", "version": "v1"},
        },
        {
            "name": "autoscaling",
            "versions": [
                {"groupVersion": "autoscaling/v2", "version": "v2"},
                {"groupVersion": "autoscaling/v1", "version": "v1"},
            ],
            "preferredVersion": {"groupVersion": "autoscaling/v2", "version": "v2"},
        },
    ],
}

RESOURCE_LISTS: dict[tuple[str, str], dict[str, Any]] = {
    ("", "v1"): {
        "kind": "APIResourceList",
        "groupVersion": "v1",
        "resources": [
            {
                "name": "pods",
                "singularName": "pod",
                "namespaced": True,
                "kind": "Pod",
                "verbs": _WATCH_VERBS,
                "shortNames": ["po"],
            },
            {"name": "pods/log", "singularName": "", "namespaced": True, "kind": "Pod", "verbs": ["get"]},
            {"name": "pods/status", "singularName": "", "namespaced": True, "kind": "Pod", "verbs": ["get", "patch"]},
            {
                "name": "namespaces",
                "singularName": "namespace",
                "namespaced": False,
                "kind": "Namespace",
                "verbs": _WATCH_VERBS,
                "shortNames": ["ns"],
            },
            {
                "name": "events",
                "singularName": "event",
                "namespaced": True,
                "kind": "Event",
                "verbs": _WATCH_VERBS,
                "shortNames": ["ev"],
            },
            {
                "name": "bindings",
                "singularName": "binding",
                "namespaced": True,
                "kind": "Binding",
                "verbs": ["create"],
            },
        ],
    },
    ("apps", "v1"): {
        "kind": "APIResourceList",
        "groupVersion": "apps/v1",
        "resources": [
            {
                "name": "deployments",
                "singularName": "deployment",
                "namespaced": True,
                "kind": "Deployment",
                "verbs": _WATCH_VERBS,
                "shortNames": ["deploy"],
            },
            {"name": "deployments/scale", "namespaced": True, "kind": "Scale", "verbs": ["get", "patch", "update"]},
        ],
    },
    ("events.k8s.io", "v1"): {
        "kind": "APIResourceList",
        "groupVersion": "events.k8s.io/v1",
        "resources": [
            {
                "name": "events",
                "singularName": "event",
                "namespaced": True,
                "kind": "Event",
                "verbs": _WATCH_VERBS,
                "shortNames": ["ev"],
            },
        ],
    },
    ("autoscaling", "v2"): {
        "kind": "APIResourceList",
        "groupVersion": "autoscaling/v2",
        "resources": [
            {
                "name": "horizontalpodautoscalers",
                "singularName": "horizontalpodautoscaler",
                "namespaced": True,
                "kind": "HorizontalPodAutoscaler",
                "verbs": _WATCH_VERBS,
                "shortNames": ["hpa"],
            },
        ],
    },
    ("autoscaling", "v1"): {
        "kind": "APIResourceList",
        "groupVersion": "autoscaling/v1",
        "resources": [
            {
                "name": "horizontalpodautoscalers",
                "singularName": "horizontalpodautoscaler",
                "namespaced": True,
                "kind": "HorizontalPodAutoscaler",
                "verbs": _WATCH_VERBS,
                "shortNames": ["hpa"],
            },
        ],
    },
}


# ---------------------------------------------------------------------------
# Object factory helpers
# ---------------------------------------------------------------------------


def make_raw(
    name: str,
    namespace: str | None = "default",
    api_version: str | None = None,
    kind: str | None = None,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    spec: dict[str, Any] | None = None,
    resource_version: str = "1",
) -> dict[str, Any]:
    """Build a raw wire object. apiVersion/kind are omitted unless given, like list items."""
    metadata: dict[str, Any] = {"name": name, "resourceVersion": resource_version}
    if namespace is not None:
        metadata["namespace"] = namespace
    if labels:
        metadata["labels"] = labels
    if annotations:
        metadata["annotations"] = annotations
    raw: dict[str, Any] = {"metadata": metadata, "spec": spec or {}}
    if api_version is not None:
        raw["apiVersion"] = api_version
    if kind is not None:
        raw["kind"] = kind
    return raw


# ---------------------------------------------------------------------------
# Fake cluster client
# ---------------------------------------------------------------------------


class FakeClusterClient:
    """In-memory ClusterClient.

    ``listings[resource_url]`` is replayed as INIT_APPLY on every watch call;
    :meth:`emit` pushes a live event to every open stream for a URL.
    ``live`` holds the (namespace, name, kind) triples :meth:`exists` reports
    as present; ``failing`` names raise instead.
    """

    def __init__(self) -> None:
        self.version = ServerVersion(major="1", minor="31", git_version="v1.31.2", platform="linux/amd64")
        self.catalog: DiscoveryCatalog = build_catalog(CORE_VERSIONS, GROUP_LIST, RESOURCE_LISTS)
        self.listings: dict[str, list[dict[str, Any]]] = {}
        self.live: set[tuple[str, str, str]] = set()
        self.failing: set[str] = set()
        self.exists_calls: list[tuple[str, str, TypeMeta]] = []
        self.watch_calls: list[str] = []
        self.closed = False
        self._streams: dict[str, list[asyncio.Queue[RawWatchEvent | WatchStreamError]]] = {}

    async def server_version(self) -> ServerVersion:
        return self.version

    async def discover(self) -> DiscoveryCatalog:
        return self.catalog

    async def watch(self, selector: ResourceSelector) -> AsyncIterator[RawWatchEvent | WatchStreamError]:
        url = selector.resource_url
        self.watch_calls.append(url)
        queue: asyncio.Queue[RawWatchEvent | WatchStreamError] = asyncio.Queue()
        self._streams.setdefault(url, []).append(queue)
        try:
            for item in self.listings.get(url, []):
                yield RawWatchEvent(WatchPhase.INIT_APPLY, item)
            while True:
                yield await queue.get()
        finally:
            self._streams[url].remove(queue)

    def open_streams(self, url: str) -> int:
        return len(self._streams.get(url, []))

    def emit(self, url: str, item: RawWatchEvent | WatchStreamError) -> None:
        for queue in self._streams.get(url, []):
            queue.put_nowait(item)

    async def exists(self, namespace: str, name: str, types: TypeMeta) -> bool:
        self.exists_calls.append((namespace, name, types))
        if name in self.failing:
            raise RuntimeError(f"connection reset while checking {namespace}/{name}")
        return (namespace, name, types.kind) in self.live

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def fake_client() -> FakeClusterClient:
    return FakeClusterClient()


@pytest.fixture()
def catalog() -> DiscoveryCatalog:
    return build_catalog(CORE_VERSIONS, GROUP_LIST, RESOURCE_LISTS)


@pytest.fixture()
def raw_factory() -> Any:
    """Expose make_raw to tests that cannot import this module directly."""
    return make_raw
