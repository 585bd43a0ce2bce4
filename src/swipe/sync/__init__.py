"""Sync module: request scheduling, durable action queue and reconnect handling."""

from swipe.sync.connectivity import ConnectivityMonitor
from swipe.sync.queue import DurableActionQueue
from swipe.sync.scheduler import RequestScheduler
from swipe.sync.store import ActionStore, MemoryActionStore, SqliteActionStore

__all__ = [
    "ActionStore",
    "ConnectivityMonitor",
    "DurableActionQueue",
    "MemoryActionStore",
    "RequestScheduler",
    "SqliteActionStore",
]
