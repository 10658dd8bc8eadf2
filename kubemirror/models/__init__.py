"""Core data structures for kubemirror."""

from kubemirror.models.config import KubeMirrorConfig, ResourceSpec
from kubemirror.models.discovery import (
    ApiGroup,
    ApiResourceDescriptor,
    Capabilities,
    DiscoveryCatalog,
    Scope,
)
from kubemirror.models.objects import (
    NO_NAMESPACE,
    ClusterObject,
    Command,
    CommandKind,
    RawWatchEvent,
    ResourceSelector,
    TypeMeta,
    WatchPhase,
    WatchStreamError,
)

__all__ = [
    "NO_NAMESPACE",
    "ApiGroup",
    "ApiResourceDescriptor",
    "Capabilities",
    "ClusterObject",
    "Command",
    "CommandKind",
    "DiscoveryCatalog",
    "KubeMirrorConfig",
    "RawWatchEvent",
    "ResourceSelector",
    "ResourceSpec",
    "Scope",
    "TypeMeta",
    "WatchPhase",
    "WatchStreamError",
]
