"""Watch collectors for kubemirror.

Submodules
----------
channel     -- CommandChannel: bounded queue with bounded-retry send.
watcher     -- ResourceWatcher: three merged sub-streams per selector.
supervisor  -- WatchSupervisor: one task per selector, keyed by selector key.
"""

from kubemirror.collector.channel import CommandChannel
from kubemirror.collector.supervisor import WatchSupervisor
from kubemirror.collector.watcher import ResourceWatcher, SubStream, merge_streams, translate

__all__ = [
    "CommandChannel",
    "ResourceWatcher",
    "SubStream",
    "WatchSupervisor",
    "merge_streams",
    "translate",
]
