"""Cluster API client capability and its kubernetes.aio implementation.

The rest of kubemirror talks to the cluster only through the
:class:`ClusterClient` protocol:

    server_version()                -- round trip used to validate a connection
    discover()                      -- full discovery catalog
    watch(selector)                 -- endless list-then-watch stream
    exists(namespace, name, types)  -- liveness check used by purge
    close()                         -- release the connection pool

:class:`KubernetesClusterClient` implements it with the asyncio client
shipped in the ``kubernetes`` distribution (``kubernetes.aio``), using the
dynamic client for raw REST paths so any discovered kind can be mirrored.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from kubemirror.cluster.backoff import compute_backoff
from kubemirror.models.config import KubeSettings
from kubemirror.models.discovery import ApiGroup, ApiResourceDescriptor, DiscoveryCatalog
from kubemirror.models.objects import (
    RawWatchEvent,
    ResourceSelector,
    TypeMeta,
    WatchPhase,
    WatchStreamError,
)
from kubemirror.observability.logging import get_logger

_logger = get_logger("cluster.client")

_WATCH_BACKOFF_BASE_MS = 500

_APPLY_TYPES = frozenset({"ADDED", "MODIFIED"})
_DELETE_TYPES = frozenset({"DELETED"})


@dataclass(frozen=True)
class ServerVersion:
    """Subset of the API server's /version response."""

    major: str
    minor: str
    git_version: str = ""
    platform: str = ""

    @property
    def short(self) -> str:
        """``major.minor``, e.g. ``1.31``."""
        return f"{self.major}.{self.minor}"


class ClusterClient(Protocol):
    """Operations the pipeline needs from the cluster API."""

    async def server_version(self) -> ServerVersion: ...

    async def discover(self) -> DiscoveryCatalog: ...

    def watch(self, selector: ResourceSelector) -> AsyncIterator[RawWatchEvent | WatchStreamError]: ...

    async def exists(self, namespace: str, name: str, types: TypeMeta) -> bool: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Discovery parsing
# ---------------------------------------------------------------------------


def parse_resource_list(group: str, version: str, body: dict[str, Any]) -> list[ApiResourceDescriptor]:
    """Parse an APIResourceList body into descriptors."""
    descriptors: list[ApiResourceDescriptor] = []
    for entry in body.get("resources", []) or []:
        if not isinstance(entry, dict) or not entry.get("name") or not entry.get("kind"):
            continue
        descriptors.append(
            ApiResourceDescriptor(
                group=group,
                version=version,
                kind=str(entry["kind"]),
                plural=str(entry["name"]),
                namespaced=bool(entry.get("namespaced", False)),
                singular=str(entry.get("singularName") or ""),
                verbs=tuple(str(v) for v in entry.get("verbs", []) or []),
                short_names=tuple(str(s) for s in entry.get("shortNames", []) or []),
            )
        )
    return descriptors


def build_catalog(
    core_versions: dict[str, Any],
    group_list: dict[str, Any],
    resource_lists: dict[tuple[str, str], dict[str, Any]],
) -> DiscoveryCatalog:
    """Assemble a catalog from /api, /apis and the per group-version resource lists.

    Group-versions missing from ``resource_lists`` (e.g. an aggregated API
    that failed to answer) are kept in the group with no resources.
    """
    groups: list[ApiGroup] = []

    versions = [str(v) for v in core_versions.get("versions", []) or []]
    if versions:
        core = ApiGroup(name="", preferred_version=versions[0], versions=versions)
        for version in versions:
            body = resource_lists.get(("", version))
            if body is not None:
                core.resources[version] = parse_resource_list("", version, body)
        groups.append(core)

    for entry in group_list.get("groups", []) or []:
        name = str(entry.get("name", ""))
        if not name:
            continue
        group_versions = [str(v.get("version", "")) for v in entry.get("versions", []) or [] if v.get("version")]
        preferred = (entry.get("preferredVersion") or {}).get("version") or (group_versions[0] if group_versions else "")
        group = ApiGroup(name=name, preferred_version=str(preferred), versions=group_versions)
        for version in group_versions:
            body = resource_lists.get((name, version))
            if body is not None:
                group.resources[version] = parse_resource_list(name, version, body)
        groups.append(group)

    return DiscoveryCatalog(groups=groups)


def object_path(namespace: str, name: str, types: TypeMeta, plural: str) -> str:
    """Return the REST path of a single namespaced object."""
    prefix = f"/apis/{types.group}/{types.version}" if types.group else f"/api/{types.version}"
    return f"{prefix}/namespaces/{namespace}/{plural}/{name}"


def classify_event_type(event_type: str) -> WatchPhase | None:
    """Map a watch event type (ADDED/MODIFIED/DELETED/BOOKMARK) to a phase."""
    if event_type in _APPLY_TYPES:
        return WatchPhase.APPLY
    if event_type in _DELETE_TYPES:
        return WatchPhase.DELETE
    return None


# ---------------------------------------------------------------------------
# kubernetes.aio implementation
# ---------------------------------------------------------------------------


class KubernetesClusterClient:
    """ClusterClient backed by ``kubernetes.aio``.

    Build instances with :meth:`connect`; the constructor only wires an
    already-configured ``ApiClient``.
    """

    def __init__(self, api_client: Any, settings: KubeSettings) -> None:
        from kubernetes.aio.dynamic import DynamicClient

        self._api_client = api_client
        self._dynamic = DynamicClient(api_client)
        self._settings = settings
        # Handed to aiohttp as-is by the rest layer.
        self._timeout = aiohttp.ClientTimeout(
            sock_connect=settings.connection.connect_timeout_seconds,
            sock_read=settings.connection.read_timeout_seconds,
        )
        self._catalog: DiscoveryCatalog | None = None

    @classmethod
    async def connect(cls, settings: KubeSettings) -> KubernetesClusterClient:
        """Load in-cluster config, falling back to kubeconfig, and build a client."""
        from kubernetes.aio import client as k8s_client
        from kubernetes.aio import config as k8s_config

        configuration = k8s_client.Configuration()
        try:
            k8s_config.load_incluster_config(client_configuration=configuration)
            _logger.info("k8s_client_configured", source="incluster")
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config(
                context=settings.context or None,
                client_configuration=configuration,
            )
            _logger.info("k8s_client_configured", source="kubeconfig", context=settings.context or "current")

        if not settings.use_tls:
            configuration.verify_ssl = False

        return cls(k8s_client.ApiClient(configuration=configuration), settings)

    async def close(self) -> None:
        await self._api_client.close()

    async def server_version(self) -> ServerVersion:
        info = await self._get_json("/version")
        return ServerVersion(
            major=str(info.get("major", "")),
            minor=str(info.get("minor", "")),
            git_version=str(info.get("gitVersion", "")),
            platform=str(info.get("platform", "")),
        )

    async def discover(self) -> DiscoveryCatalog:
        core_versions = await self._get_json("/api")
        group_list = await self._get_json("/apis")

        resource_lists: dict[tuple[str, str], dict[str, Any]] = {}
        for version in core_versions.get("versions", []) or []:
            resource_lists[("", str(version))] = await self._get_json(f"/api/{version}")

        for entry in group_list.get("groups", []) or []:
            name = str(entry.get("name", ""))
            for gv in entry.get("versions", []) or []:
                version = str(gv.get("version", ""))
                try:
                    resource_lists[(name, version)] = await self._get_json(f"/apis/{name}/{version}")
                except Exception as exc:
                    # Aggregated APIs (metrics.k8s.io and friends) are often unavailable.
                    _logger.warning("discovery_group_version_failed", group=name, version=version, error=str(exc))

        catalog = build_catalog(core_versions, group_list, resource_lists)
        self._catalog = catalog
        _logger.info("discovery_completed", groups=len(catalog.groups), resources=catalog.resource_count)
        return catalog

    async def exists(self, namespace: str, name: str, types: TypeMeta) -> bool:
        from kubernetes.aio.dynamic.exceptions import NotFoundError

        plural = None
        if self._catalog is not None:
            plural = self._catalog.plural_for(types.api_version, types.kind)
        path = object_path(namespace, name, types, plural or f"{types.kind.lower()}s")
        try:
            await self._get_json(path)
        except NotFoundError:
            return False
        return True

    async def watch(self, selector: ResourceSelector) -> AsyncIterator[RawWatchEvent | WatchStreamError]:
        """List then watch ``selector`` forever.

        Every list replays current state as INIT_APPLY events. The watch runs
        for ``watch_resync_seconds`` and then the cycle restarts with a fresh
        list. Failures are yielded as WatchStreamError followed by a bounded
        backoff; the generator itself never raises except on cancellation.
        """
        attempt = 0
        while True:
            try:
                listing = await self._get_json(
                    selector.resource_url,
                    label_selector=selector.label_selector,
                    field_selector=selector.field_selector,
                )
                resource_version = (listing.get("metadata") or {}).get("resourceVersion")
                for item in listing.get("items", []) or []:
                    yield RawWatchEvent(WatchPhase.INIT_APPLY, item)

                stream = self._stream(selector, resource_version)
                try:
                    async for event in stream:
                        yield event
                finally:
                    await stream.aclose()
                attempt = 0
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                status = getattr(exc, "status", None)
                yield WatchStreamError(resource_url=selector.resource_url, error=str(exc), status=status)
                delay_ms = compute_backoff(
                    attempt,
                    _WATCH_BACKOFF_BASE_MS,
                    self._settings.watch_backoff_max_seconds * 1000,
                )
                attempt += 1
                await asyncio.sleep(delay_ms / 1000)

    async def _stream(self, selector: ResourceSelector, resource_version: str | None) -> AsyncIterator[RawWatchEvent]:
        from kubernetes.aio import watch as k8s_watch
        from kubernetes.aio.dynamic import DynamicClient
        from kubernetes.aio.dynamic.resource import Resource

        resource = Resource(
            prefix="apis" if selector.group else "api",
            group=selector.group,
            api_version=selector.version,
            kind=selector.kind,
            namespaced=selector.namespace is not None,
            name=selector.plural,
            client=self._dynamic,
        )
        watcher = k8s_watch.Watch()
        try:
            async for event in DynamicClient.watch(
                resource,
                namespace=selector.namespace,
                label_selector=selector.label_selector,
                field_selector=selector.field_selector,
                resource_version=resource_version,
                timeout=self._settings.watch_resync_seconds,
                watcher=watcher,
            ):
                phase = classify_event_type(str(event.get("type", "")))
                raw = event.get("raw_object")
                if phase is None or not isinstance(raw, dict):
                    continue
                yield RawWatchEvent(phase, raw)
        finally:
            watcher.stop()
            await watcher.close()

    async def _get_json(self, path: str, **params: Any) -> dict[str, Any]:
        query = {k: v for k, v in params.items() if v is not None}
        response = await self._dynamic.request(
            "get",
            path,
            serialize=False,
            _request_timeout=self._timeout,
            **query,
        )
        body = await response.json()
        return body if isinstance(body, dict) else {}
