"""Local durable store backends."""

from crew_sync.storage.base import LocalStore
from crew_sync.storage.memory_store import InMemoryLocalStore
from crew_sync.storage.sqlite_store import SQLiteLocalStore

__all__ = ["LocalStore", "InMemoryLocalStore", "SQLiteLocalStore"]
