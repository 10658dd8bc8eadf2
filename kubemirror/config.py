"""Configuration loading from environment variables."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, TypeVar

import yaml

from kubemirror.models.config import (
    APIConfig,
    CacheSettings,
    ConnectionSettings,
    KubeMirrorConfig,
    KubeSettings,
    LogConfig,
    ResourceSpec,
    RetrySettings,
)


_N = TypeVar("_N", int, float)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBEMIRROR_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float) -> float:
    return float(_env(key, str(default)))


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "console"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def _validate_positive(name: str, value: _N) -> _N:
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


def _str_list(entry: dict[str, Any], key: str) -> list[str]:
    value = entry.get(key) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValueError(f"Resource field '{key}' must be a list, got {type(value).__name__}")
    return [str(v) for v in value]


def parse_resource_spec(entry: dict[str, Any]) -> ResourceSpec:
    """Validate one resource entry and build a ResourceSpec."""
    if not isinstance(entry, dict):
        raise ValueError(f"Resource entry must be a mapping, got {type(entry).__name__}")
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ValueError("Resource name must not be empty")
    event_type = str(entry.get("event_type") or entry.get("eventType") or "").strip()
    if not event_type:
        raise ValueError(f"Resource '{name}' must set a non-empty event_type")

    api_groups: list[str] | None = None
    raw_groups = entry.get("api_groups", entry.get("apiGroups"))
    if raw_groups is not None:
        api_groups = _str_list({"api_groups": raw_groups}, "api_groups")
        if any(not g.strip() for g in api_groups):
            raise ValueError(f"Resource '{name}' has an empty api_groups entry")

    return ResourceSpec(
        name=name,
        event_type=event_type,
        namespaces=_str_list(entry, "namespaces"),
        api_groups=api_groups,
        label_selectors=_str_list(entry, "label_selectors"),
        field_selectors=_str_list(entry, "field_selectors"),
    )


def parse_resources(data: Any) -> list[ResourceSpec]:
    """Parse a list of resource entries, or a mapping with a ``resources`` key."""
    if isinstance(data, dict):
        data = data.get("resources", [])
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("Resources must be a list")
    return [parse_resource_spec(entry) for entry in data]


def _load_resources() -> list[ResourceSpec]:
    inline = _env("RESOURCES", "")
    if inline:
        try:
            return parse_resources(json.loads(inline))
        except json.JSONDecodeError as exc:
            raise ValueError(f"KUBEMIRROR_RESOURCES is not valid JSON: {exc}") from exc

    path = _env("RESOURCES_FILE", "")
    if path:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ValueError(f"Cannot read resources file {path}: {exc}") from exc
        try:
            return parse_resources(yaml.safe_load(text))
        except yaml.YAMLError as exc:
            raise ValueError(f"Resources file {path} is not valid YAML: {exc}") from exc
    return []


def load_config() -> KubeMirrorConfig:
    """Load configuration from KUBEMIRROR_* environment variables."""
    return KubeMirrorConfig(
        name=_env("NAME", "kubemirror"),
        cluster=_env("CLUSTER", ""),
        kube=KubeSettings(
            use_tls=_env_bool("USE_TLS", False),
            context=_env("KUBE_CONTEXT", ""),
            watch_resync_seconds=_env_int("WATCH_RESYNC_SECONDS", 240, min_val=30, max_val=290),
            watch_backoff_max_seconds=_env_int("WATCH_BACKOFF_MAX_SECONDS", 30, min_val=1, max_val=300),
            resources=_load_resources(),
            retry=RetrySettings(
                enabled=_env_bool("RETRY_ENABLED", True),
                max_retries=_env_int("RETRY_MAX_RETRIES", 3, min_val=0, max_val=20),
                base_delay_ms=_env_int("RETRY_BASE_DELAY_MS", 100, min_val=1),
                max_delay_ms=_env_int("RETRY_MAX_DELAY_MS", 5000, min_val=1),
            ),
            connection=ConnectionSettings(
                connect_timeout_seconds=_env_int("CONNECT_TIMEOUT", 30, min_val=1, max_val=300),
                read_timeout_seconds=_env_int("READ_TIMEOUT", 30, min_val=1, max_val=300),
            ),
        ),
        cache=CacheSettings(
            channel_size=_validate_positive("KUBEMIRROR_CHANNEL_SIZE", _env_int("CHANNEL_SIZE", 32)),
            poll_interval=_validate_positive("KUBEMIRROR_POLL_INTERVAL", _env_int("POLL_INTERVAL", 30)),
            purge_interval=_validate_positive("KUBEMIRROR_PURGE_INTERVAL", _env_int("PURGE_INTERVAL", 45)),
            send_timeout_seconds=_validate_positive("KUBEMIRROR_SEND_TIMEOUT", _env_float("SEND_TIMEOUT", 5.0)),
            send_retries=_env_int("SEND_RETRIES", 3, min_val=0, max_val=10),
        ),
        api=APIConfig(
            enabled=_env_bool("API_ENABLED", True),
            host=_env("API_HOST", "0.0.0.0"),
            port=_env_int("API_PORT", 8000, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
