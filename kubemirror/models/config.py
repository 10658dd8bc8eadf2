"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ResourceSpec:
    """A configured resource to mirror.

    ``name`` is matched against plural, singular, kind and short names as
    reported by discovery (``deployment``, ``deployments`` and ``deploy`` all
    resolve to apps/v1 Deployment).
    """

    name: str
    event_type: str
    namespaces: list[str] = field(default_factory=list)
    api_groups: list[str] | None = None
    label_selectors: list[str] = field(default_factory=list)
    field_selectors: list[str] = field(default_factory=list)


@dataclass
class RetrySettings:
    """Connection retry policy."""

    enabled: bool = True
    max_retries: int = 3
    base_delay_ms: int = 100
    max_delay_ms: int = 5000


@dataclass
class ConnectionSettings:
    """Per-request timeouts for the cluster API."""

    connect_timeout_seconds: int = 30
    read_timeout_seconds: int = 30


@dataclass
class KubeSettings:
    """Kubernetes API configuration."""

    use_tls: bool = False
    context: str = ""
    watch_resync_seconds: int = 240
    watch_backoff_max_seconds: int = 30
    resources: list[ResourceSpec] = field(default_factory=list)
    retry: RetrySettings = field(default_factory=RetrySettings)
    connection: ConnectionSettings = field(default_factory=ConnectionSettings)


@dataclass
class CacheSettings:
    """Command channel and cache maintenance intervals."""

    channel_size: int = 32
    poll_interval: int = 30
    purge_interval: int = 45
    send_timeout_seconds: float = 5.0
    send_retries: int = 3


@dataclass
class APIConfig:
    """REST API configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class KubeMirrorConfig:
    """Top-level kubemirror configuration."""

    name: str = "kubemirror"
    cluster: str = ""
    kube: KubeSettings = field(default_factory=KubeSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
