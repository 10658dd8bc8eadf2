"""Cluster object, selector and command data structures."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

# Namespace placeholder used in cache keys for cluster-scoped objects.
NO_NAMESPACE = "none"

LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"


@dataclass(frozen=True)
class TypeMeta:
    """apiVersion + kind pair identifying an object's type."""

    api_version: str
    kind: str

    @property
    def group(self) -> str:
        """API group, empty for the core group."""
        group, _, _version = self.api_version.rpartition("/")
        return group

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]


@dataclass
class ClusterObject:
    """A dynamically typed Kubernetes object as observed on a watch stream.

    ``types`` is None when the wire object carried no apiVersion/kind, which
    is the case for items returned by list calls.
    """

    name: str
    namespace: str | None = None
    types: TypeMeta | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> ClusterObject:
        """Build a ClusterObject from a raw wire dict."""
        metadata = raw.get("metadata", {})
        if not isinstance(metadata, dict):
            metadata = {}
        api_version = raw.get("apiVersion")
        kind = raw.get("kind")
        types = TypeMeta(str(api_version), str(kind)) if api_version and kind else None
        namespace = metadata.get("namespace") or None
        data = {k: copy.deepcopy(v) for k, v in raw.items() if k not in ("apiVersion", "kind", "metadata")}
        return cls(
            name=str(metadata.get("name", "")),
            namespace=str(namespace) if namespace is not None else None,
            types=types,
            metadata=copy.deepcopy(metadata),
            data=data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the object in wire form."""
        raw: dict[str, Any] = {}
        if self.types is not None:
            raw["apiVersion"] = self.types.api_version
            raw["kind"] = self.types.kind
        raw["metadata"] = copy.deepcopy(self.metadata)
        raw.update(copy.deepcopy(self.data))
        return raw

    @property
    def key(self) -> str:
        """Cache key: ``namespace/name`` with a sentinel for cluster scope."""
        return cache_key(self.namespace, self.name)

    @property
    def labels(self) -> dict[str, str]:
        labels = self.metadata.get("labels") or {}
        return {str(k): str(v) for k, v in labels.items()} if isinstance(labels, dict) else {}

    @property
    def annotations(self) -> dict[str, str]:
        annotations = self.metadata.get("annotations") or {}
        return {str(k): str(v) for k, v in annotations.items()} if isinstance(annotations, dict) else {}

    @property
    def creation_timestamp(self) -> str | None:
        ts = self.metadata.get("creationTimestamp")
        return str(ts) if ts else None

    @property
    def resource_version(self) -> str:
        return str(self.metadata.get("resourceVersion", ""))

    def strip_noise(self) -> ClusterObject:
        """Drop the last-applied-configuration annotation and managedFields in place."""
        annotations = self.metadata.get("annotations")
        if isinstance(annotations, dict):
            annotations.pop(LAST_APPLIED_ANNOTATION, None)
        self.metadata.pop("managedFields", None)
        return self

    def copy(self) -> ClusterObject:
        return copy.deepcopy(self)


def cache_key(namespace: str | None, name: str) -> str:
    """Return the ``namespace/name`` cache key."""
    return f"{namespace or NO_NAMESPACE}/{name}"


@dataclass(frozen=True)
class ResourceSelector:
    """One watch target: a resource type, an optional namespace and filters.

    Created once at startup and never mutated.
    """

    group: str
    version: str
    kind: str
    plural: str
    event_type: str
    namespace: str | None = None
    label_selectors: tuple[str, ...] = ()
    field_selectors: tuple[str, ...] = ()

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def resource_url(self) -> str:
        """Canonical REST collection path, e.g. ``/apis/apps/v1/namespaces/acme/deployments``."""
        prefix = f"/apis/{self.group}/{self.version}" if self.group else f"/api/{self.version}"
        if self.namespace:
            return f"{prefix}/namespaces/{self.namespace}/{self.plural}"
        return f"{prefix}/{self.plural}"

    @property
    def label_selector(self) -> str | None:
        return ",".join(self.label_selectors) if self.label_selectors else None

    @property
    def field_selector(self) -> str | None:
        return ",".join(self.field_selectors) if self.field_selectors else None

    @property
    def key(self) -> str:
        """Stable identity used to supervise this selector's watch task."""
        parts = [self.resource_url]
        if self.label_selectors:
            parts.append(f"labels={self.label_selector}")
        if self.field_selectors:
            parts.append(f"fields={self.field_selector}")
        return "?".join(parts)


class CommandKind(StrEnum):
    """Cache command vocabulary."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    PURGE = "purge"
    SNAPSHOT = "snapshot"
    NOOP = "noop"


@dataclass(frozen=True)
class Command:
    """A normalised instruction for the ingest engine.

    Watch tasks attach the selector's ``event_type`` and ``resource_url``;
    timers emit PURGE/SNAPSHOT commands with neither.
    """

    kind: CommandKind
    obj: ClusterObject | None = None
    event_type: str = ""
    k8s_version: str = ""
    resource_url: str = ""


class WatchPhase(StrEnum):
    """Phase of a raw watch event as produced by the transport."""

    INIT_APPLY = "init_apply"
    APPLY = "apply"
    DELETE = "delete"


@dataclass(frozen=True)
class RawWatchEvent:
    """One raw event off a watch stream."""

    phase: WatchPhase
    object: dict[str, Any]


@dataclass(frozen=True)
class WatchStreamError:
    """A watch failure delivered in-band so the stream keeps running."""

    resource_url: str
    error: str
    status: int | None = None
