"""Storage contract and its SQLite and in-memory backends."""

from smallthings.storage.base import Storage
from smallthings.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from smallthings.storage.factory import create_storage
from smallthings.storage.memory_store import MemoryStorage
from smallthings.storage.sqlite_store import SqliteStorage

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "Storage",
    "SqliteStorage",
    "MemoryStorage",
    "create_storage",
]
