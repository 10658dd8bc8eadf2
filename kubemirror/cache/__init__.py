"""Cache layer for kubemirror.

Submodules:
    object_cache  -- Lock-guarded namespace/name -> ClusterObject map.
    ingest        -- IngestEngine (single channel consumer) and CacheTimers.
"""

from kubemirror.cache.ingest import CacheTimers, IngestEngine
from kubemirror.cache.object_cache import ObjectCache

__all__ = ["CacheTimers", "IngestEngine", "ObjectCache"]
