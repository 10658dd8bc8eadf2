"""Cluster access for kubemirror.

Submodules:
    backoff     -- Exponential backoff with jitter.
    client      -- ClusterClient protocol and its kubernetes.aio implementation.
    connection  -- ConnectionManager: bounded-retry connect and handle ownership.
"""

from kubemirror.cluster.client import ClusterClient, KubernetesClusterClient, ServerVersion
from kubemirror.cluster.connection import ClusterConnectionError, ConnectionManager

__all__ = [
    "ClusterClient",
    "ClusterConnectionError",
    "ConnectionManager",
    "KubernetesClusterClient",
    "ServerVersion",
]
