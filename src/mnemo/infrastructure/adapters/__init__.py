# Infrastructure Storage Adapters Package
from .memory_store import MemoryStore
from .sqlite_store import SqliteStore

__all__ = ["MemoryStore", "SqliteStore"]
