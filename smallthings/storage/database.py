"""SQLite database initialisation for Smallthings.

This module is responsible for:

* Opening (or creating) the SQLite file.
* Configuring low-level PRAGMA settings (WAL journal mode, foreign keys).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``, safe to call
  on every startup because each statement is idempotent.

Foreign-key enforcement is what makes the cascading deletes work, and SQLite
only enforces it per connection once ``PRAGMA foreign_keys=ON`` has been
issued.  Connections opened elsewhere must do the same before being handed to
:class:`~smallthings.storage.sqlite_store.SqliteStorage`.

Typical usage::

    from smallthings.storage.database import open_db

    async def main() -> None:
        conn = await open_db()          # creates file + schema if absent
        # ... pass conn to SqliteStorage ...
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from smallthings.core.settings import DEFAULT_DATABASE_PATH

__all__ = [
    "DEFAULT_DB_PATH",
    "TABLES",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

#: Fallback database path when no explicit path is passed to :func:`open_db`.
#: Same default as ``Settings.database_path``.
DEFAULT_DB_PATH: Path = Path(DEFAULT_DATABASE_PATH)

#: Table names in dependency order (parents first).
TABLES: tuple[str, ...] = (
    "users",
    "listings",
    "categories",
    "listing_categories",
    "favorites",
)

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: Column notes
#: ------------
#: is_verified   Boolean (0/1); flips to 1 only through ``verify_user``.
#: password_hash bcrypt hash text; the plaintext is never stored.
#: created_at    ISO-8601 UTC timestamp with microseconds, written by the
#:               application rather than a DB default.
_DDL_USERS = """\
CREATE TABLE IF NOT EXISTS users (
    id            INTEGER  PRIMARY KEY AUTOINCREMENT,
    email         TEXT     NOT NULL UNIQUE,
    username      TEXT     NOT NULL UNIQUE,
    password_hash TEXT     NOT NULL,
    first_name    TEXT,
    last_name     TEXT,
    is_verified   INTEGER  NOT NULL DEFAULT 0,
    created_at    TEXT     NOT NULL
)"""

#: Column notes
#: ------------
#: items         JSON array of ``{"name", "price"}`` objects (non-empty).
#: categories    JSON array of category names.  Legacy denormalised field kept
#:               for older clients; ``listing_categories`` is authoritative.
#: coordinates   JSON ``{"lat", "lng"}`` object or NULL.
#: owner_id      Owning user.  Deleting the user deletes their listings.
_DDL_LISTINGS = """\
CREATE TABLE IF NOT EXISTS listings (
    id                  INTEGER  PRIMARY KEY AUTOINCREMENT,
    title               TEXT     NOT NULL,
    description         TEXT,
    items               TEXT     NOT NULL,
    categories          TEXT     NOT NULL DEFAULT '[]',
    pickup_instructions TEXT     NOT NULL,
    payment_info        TEXT,
    address             TEXT     NOT NULL,
    coordinates         TEXT,
    image_url           TEXT,
    created_at          TEXT     NOT NULL,
    owner_id            INTEGER  NOT NULL REFERENCES users (id) ON DELETE CASCADE
)"""

_DDL_CATEGORIES = """\
CREATE TABLE IF NOT EXISTS categories (
    id          INTEGER  PRIMARY KEY AUTOINCREMENT,
    name        TEXT     NOT NULL,
    description TEXT,
    created_at  TEXT     NOT NULL
)"""

_DDL_LISTING_CATEGORIES = """\
CREATE TABLE IF NOT EXISTS listing_categories (
    listing_id  INTEGER  NOT NULL REFERENCES listings (id) ON DELETE CASCADE,
    category_id INTEGER  NOT NULL REFERENCES categories (id) ON DELETE CASCADE,
    PRIMARY KEY (listing_id, category_id)
)"""

_DDL_FAVORITES = """\
CREATE TABLE IF NOT EXISTS favorites (
    id          INTEGER  PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER  NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    listing_id  INTEGER  NOT NULL REFERENCES listings (id) ON DELETE CASCADE,
    created_at  TEXT     NOT NULL,
    UNIQUE (user_id, listing_id)
)"""

_DDL_INDEXES = (
    "CREATE UNIQUE INDEX IF NOT EXISTS categories_name_idx ON categories (name)",
    "CREATE INDEX IF NOT EXISTS listings_owner_idx ON listings (owner_id)",
    "CREATE INDEX IF NOT EXISTS listing_categories_category_idx "
    "ON listing_categories (category_id)",
    "CREATE INDEX IF NOT EXISTS favorites_listing_idx ON favorites (listing_id)",
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and configure it for production.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection.
    3. Set ``row_factory = aiosqlite.Row`` so columns can be accessed by name.
    4. Enable WAL journal mode and foreign-key enforcement.
    5. Call :func:`create_schema` to bootstrap tables (idempotent).

    Args:
        path: Filesystem path for the SQLite file.  Defaults to
            :data:`DEFAULT_DB_PATH`.

    Returns:
        An open, configured :class:`aiosqlite.Connection`.  The caller is
        responsible for closing it.

    Raises:
        aiosqlite.DatabaseError: If the file cannot be opened or created, or
            is not a SQLite database.  The connection is closed first.
    """
    db_path = Path(path or DEFAULT_DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row

    try:
        await _configure_pragmas(conn)
        await create_schema(conn)
    except BaseException:
        # Stop the connection worker thread before propagating.
        await conn.close()
        raise

    logger.info("SQLite database ready at %s (schema verified)", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create all tables and indexes if they do not already exist.

    Idempotent; never drops or alters existing data.

    Args:
        conn: An open :class:`aiosqlite.Connection`.
    """
    for ddl in (
        _DDL_USERS,
        _DDL_LISTINGS,
        _DDL_CATEGORIES,
        _DDL_LISTING_CATEGORIES,
        _DDL_FAVORITES,
        *_DDL_INDEXES,
    ):
        await conn.execute(ddl)
    await conn.commit()
    logger.debug("Schema bootstrap complete (%s)", ", ".join(TABLES))


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Apply PRAGMA settings that must be set immediately after opening.

    * ``journal_mode=WAL``: concurrent readers alongside the single writer.
    * ``foreign_keys=ON``: SQLite disables FK enforcement by default; the
      cascading deletes depend on it.
    """
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.warning(
            "Requested WAL journal mode but SQLite reported: %r. "
            "This may happen for in-memory databases (':memory:').",
            mode,
        )
    else:
        logger.debug("SQLite journal_mode set to WAL")

    await conn.execute("PRAGMA foreign_keys=ON")
    logger.debug("SQLite foreign_keys enforcement enabled")
