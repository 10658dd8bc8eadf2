"""Prometheus metrics for kubemirror.

All metrics live in the default registry and are exposed by the REST layer
at ``/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

cache_objects = Gauge(
    "kubemirror_cache_objects",
    "Number of objects currently held in the cache",
)

cache_commands_total = Counter(
    "kubemirror_cache_commands_total",
    "Commands applied by the ingest engine",
    ["command"],
)

cache_purged_objects_total = Counter(
    "kubemirror_cache_purged_objects_total",
    "Objects evicted by purge because they no longer exist in the cluster",
)

cache_purge_check_errors_total = Counter(
    "kubemirror_cache_purge_check_errors_total",
    "Existence checks that failed or were skipped during purge",
    ["reason"],
)

# ---------------------------------------------------------------------------
# Watch pipeline
# ---------------------------------------------------------------------------

watch_stream_errors_total = Counter(
    "kubemirror_watch_stream_errors_total",
    "Errors observed on watch sub-streams",
    ["event_type"],
)

watch_events_dropped_total = Counter(
    "kubemirror_watch_events_dropped_total",
    "Raw watch events discarded because their phase did not match the sub-stream",
    ["event_type"],
)

commands_dropped_total = Counter(
    "kubemirror_commands_dropped_total",
    "Commands dropped because the command channel stayed full",
)

watch_tasks = Gauge(
    "kubemirror_watch_tasks",
    "Number of running watch tasks",
)

# ---------------------------------------------------------------------------
# Cluster connection and type inference
# ---------------------------------------------------------------------------

connection_retries_total = Counter(
    "kubemirror_connection_retries_total",
    "Connection attempts retried after a failure",
)

type_inference_misses_total = Counter(
    "kubemirror_type_inference_misses_total",
    "Paths for which no type could be inferred",
)
