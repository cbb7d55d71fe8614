"""Offline deferral and replay for aigate."""

from aigate.sync.coordinator import ReplaySummary, SyncCoordinator
from aigate.sync.store import JsonlSyncStore, MemorySyncStore, SyncStore

__all__ = [
    "JsonlSyncStore",
    "MemorySyncStore",
    "ReplaySummary",
    "SyncCoordinator",
    "SyncStore",
]
