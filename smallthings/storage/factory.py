"""Backend selection.

:func:`create_storage` is the one place a process decides which backend it
runs on.  Call it once at startup and pass the returned object to whatever
needs it; nothing in this package keeps a module-level instance.
"""

from __future__ import annotations

import logging

import aiosqlite

from smallthings.core.credentials import PasswordHasher
from smallthings.core.exceptions import ConfigError
from smallthings.core.settings import Settings
from smallthings.storage.base import Storage
from smallthings.storage.memory_store import MemoryStorage
from smallthings.storage.sqlite_store import SqliteStorage

__all__ = ["create_storage"]

logger = logging.getLogger(__name__)


async def create_storage(settings: Settings) -> Storage:
    """Build the backend named by ``settings.storage_backend``.

    Args:
        settings: Loaded application settings.

    Returns:
        An open :class:`~smallthings.storage.base.Storage`.  The caller owns
        it and must ``await storage.close()`` (or use ``async with``).

    Raises:
        ConfigError: If the backend name is unknown, or the SQLite file
            cannot be opened or is not a SQLite database.
    """
    hasher = PasswordHasher(rounds=settings.password_hash_rounds)

    if not settings.is_durable:
        logger.warning(
            "Storage backend %r is transient; data is lost on exit", settings.storage_backend
        )

    if settings.storage_backend == "memory":
        return MemoryStorage(hasher)

    if settings.storage_backend == "sqlite":
        try:
            return await SqliteStorage.open(settings.database_path_resolved, hasher)
        except (OSError, aiosqlite.DatabaseError) as exc:
            raise ConfigError(
                f"Cannot open SQLite database at {settings.database_path!r}: {exc}"
            ) from exc

    raise ConfigError(f"Unknown storage backend {settings.storage_backend!r}")
