"""SQLite-backed implementation of the storage contract.

Provides :class:`SqliteStorage`, the durable backend.  Referential integrity
lives in the schema (see :mod:`smallthings.storage.database`): foreign keys
with ``ON DELETE CASCADE`` remove category links and favorites when a listing,
category or user goes away, and unique constraints back the name / email /
username / favorite-pair invariants.

Row mapping
-----------
Columns are snake_case and match the model attribute names one-to-one.
``items``, ``categories`` and ``coordinates`` are stored as JSON text;
timestamps as ISO-8601 UTC strings with microsecond precision so that
lexical ``ORDER BY created_at`` is chronological.

Updates
-------
A partial update is rendered as **one** ``UPDATE`` statement covering every
supplied column, followed by a commit, so either all supplied fields land or
none do.

Typical usage::

    storage = await SqliteStorage.open("data/smallthings.db")
    try:
        user = await storage.create_user(UserCreate(...))
    finally:
        await storage.close()
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from smallthings.core.credentials import PasswordHasher
from smallthings.core.exceptions import (
    DuplicateCategoryError,
    DuplicateUserError,
    MissingOwnerError,
    ReferenceNotFoundError,
)
from smallthings.core.models import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    Favorite,
    Listing,
    ListingCreate,
    ListingUpdate,
    User,
    UserCreate,
    UserUpdate,
    coerce_input,
)
from smallthings.storage.base import Storage
from smallthings.storage.database import open_db

__all__ = ["SqliteStorage"]

logger = logging.getLogger(__name__)

_LISTING_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "items",
    "categories",
    "pickup_instructions",
    "payment_info",
    "address",
    "coordinates",
    "image_url",
)

_LISTING_SELECT = "SELECT listings.* FROM listings"


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _listing_column(field: str, value: Any) -> Any:
    """Convert a listing attribute to its column representation."""
    if field == "items":
        return json.dumps([item.model_dump() for item in value])
    if field == "categories":
        return json.dumps(list(value))
    if field == "coordinates":
        return None if value is None else json.dumps(value.model_dump())
    return value


def _row_to_listing(row: aiosqlite.Row) -> Listing:
    coordinates = row["coordinates"]
    return Listing(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        items=json.loads(row["items"]),
        categories=json.loads(row["categories"] or "[]"),
        pickup_instructions=row["pickup_instructions"],
        payment_info=row["payment_info"],
        address=row["address"],
        coordinates=json.loads(coordinates) if coordinates else None,
        image_url=row["image_url"],
        created_at=datetime.fromisoformat(row["created_at"]),
        owner_id=row["owner_id"],
    )


def _row_to_category(row: aiosqlite.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        username=row["username"],
        password_hash=row["password_hash"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        is_verified=bool(row["is_verified"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_favorite(row: aiosqlite.Row) -> Favorite:
    return Favorite(
        id=row["id"],
        user_id=row["user_id"],
        listing_id=row["listing_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class SqliteStorage(Storage):
    """Durable storage over an ``aiosqlite`` connection.

    The connection must have ``PRAGMA foreign_keys=ON`` (as set by
    :func:`~smallthings.storage.database.open_db`) or cascades will not run.

    Args:
        conn: Open, configured connection with the schema applied.
        hasher: Password hasher; see :class:`~smallthings.storage.base.Storage`.
        owns_connection: Close *conn* in :meth:`close`.  Set by :meth:`open`;
            leave ``False`` when the caller manages the connection.
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        hasher: PasswordHasher | None = None,
        *,
        owns_connection: bool = False,
    ) -> None:
        super().__init__(hasher)
        self._conn = conn
        self._owns_connection = owns_connection

    @classmethod
    async def open(
        cls, path: Path | str | None = None, hasher: PasswordHasher | None = None
    ) -> SqliteStorage:
        """Open the database at *path* (bootstrapping the schema) and wrap it."""
        conn = await open_db(path)
        return cls(conn, hasher, owns_connection=True)

    async def close(self) -> None:
        if self._owns_connection:
            await self._conn.close()
            logger.debug("SQLite connection closed")

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        cursor = await self._conn.execute(sql, tuple(params))
        return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self._conn.execute(sql, tuple(params))
        return list(await cursor.fetchall())

    async def _exists(self, table: str, row_id: int) -> bool:
        row = await self._fetchone(f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (row_id,))
        return row is not None

    async def _write(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Cursor:
        """Execute one write statement and commit it."""
        cursor = await self._conn.execute(sql, tuple(params))
        await self._conn.commit()
        return cursor

    async def _update_columns(self, table: str, row_id: int, columns: Mapping[str, Any]) -> None:
        """Write every column in *columns* with a single ``UPDATE``.

        Column names come from model field names, never from caller input.
        """
        assignments = ", ".join(f"{column} = ?" for column in columns)
        await self._write(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*columns.values(), row_id),
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def create_listing(
        self, owner_id: int | None, data: ListingCreate | Mapping[str, Any]
    ) -> Listing:
        if owner_id is None:
            raise MissingOwnerError()
        listing_in = coerce_input(ListingCreate, data)
        if not await self._exists("users", owner_id):
            raise ReferenceNotFoundError("user", owner_id)

        created_at = _utcnow()
        columns = {field: _listing_column(field, getattr(listing_in, field)) for field in _LISTING_FIELDS}
        columns["created_at"] = _timestamp(created_at)
        columns["owner_id"] = owner_id

        placeholders = ", ".join("?" * len(columns))
        cursor = await self._write(
            f"INSERT INTO listings ({', '.join(columns)}) VALUES ({placeholders})",
            columns.values(),
        )
        listing = Listing(
            id=cursor.lastrowid,
            owner_id=owner_id,
            created_at=created_at,
            **listing_in.model_dump(),
        )
        logger.debug(
            "Created listing %s (owner=%s, items=%d)", listing.id, owner_id, len(listing.items)
        )
        return listing

    async def get_listing(self, listing_id: int) -> Listing | None:
        row = await self._fetchone(f"{_LISTING_SELECT} WHERE id = ?", (listing_id,))
        return _row_to_listing(row) if row is not None else None

    async def list_listings(self) -> list[Listing]:
        rows = await self._fetchall(f"{_LISTING_SELECT} ORDER BY id")
        return [_row_to_listing(row) for row in rows]

    async def list_listings_by_owner(self, owner_id: int) -> list[Listing]:
        rows = await self._fetchall(
            f"{_LISTING_SELECT} WHERE owner_id = ? ORDER BY id", (owner_id,)
        )
        return [_row_to_listing(row) for row in rows]

    async def search_listings(self, term: str) -> list[Listing]:
        # Item names live inside the JSON column, so matching happens on the models.
        return [listing for listing in await self.list_listings() if listing.matches(term)]

    async def update_listing(
        self, listing_id: int, data: ListingUpdate | Mapping[str, Any]
    ) -> Listing | None:
        update = coerce_input(ListingUpdate, data)
        existing = await self.get_listing(listing_id)
        if existing is None:
            return None
        changes = update.changes()
        if not changes:
            return existing

        await self._update_columns(
            "listings",
            listing_id,
            {field: _listing_column(field, value) for field, value in changes.items()},
        )
        logger.debug("Updated listing %s fields=%s", listing_id, sorted(changes))
        return await self.get_listing(listing_id)

    async def delete_listing(self, listing_id: int) -> bool:
        cursor = await self._write("DELETE FROM listings WHERE id = ?", (listing_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Deleted listing %s", listing_id)
        return deleted

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def create_category(self, data: CategoryCreate | Mapping[str, Any]) -> Category:
        category_in = coerce_input(CategoryCreate, data)
        if await self.get_category_by_name(category_in.name) is not None:
            logger.info("Rejected duplicate category name %r", category_in.name)
            raise DuplicateCategoryError(category_in.name)

        created_at = _utcnow()
        try:
            cursor = await self._write(
                "INSERT INTO categories (name, description, created_at) VALUES (?, ?, ?)",
                (category_in.name, category_in.description, _timestamp(created_at)),
            )
        except aiosqlite.IntegrityError as exc:
            await self._conn.rollback()
            raise DuplicateCategoryError(category_in.name) from exc

        logger.debug("Created category %s (%r)", cursor.lastrowid, category_in.name)
        return Category(
            id=cursor.lastrowid,
            name=category_in.name,
            description=category_in.description,
            created_at=created_at,
        )

    async def get_category(self, category_id: int) -> Category | None:
        row = await self._fetchone("SELECT * FROM categories WHERE id = ?", (category_id,))
        return _row_to_category(row) if row is not None else None

    async def get_category_by_name(self, name: str) -> Category | None:
        row = await self._fetchone("SELECT * FROM categories WHERE name = ?", (name,))
        return _row_to_category(row) if row is not None else None

    async def list_categories(self) -> list[Category]:
        rows = await self._fetchall("SELECT * FROM categories ORDER BY name")
        return [_row_to_category(row) for row in rows]

    async def update_category(
        self, category_id: int, data: CategoryUpdate | Mapping[str, Any]
    ) -> Category | None:
        update = coerce_input(CategoryUpdate, data)
        existing = await self.get_category(category_id)
        if existing is None:
            return None
        changes = update.changes()
        if not changes:
            return existing

        if "name" in changes:
            clash = await self.get_category_by_name(changes["name"])
            if clash is not None and clash.id != category_id:
                logger.info("Rejected rename of category %s to %r", category_id, changes["name"])
                raise DuplicateCategoryError(changes["name"])

        await self._update_columns("categories", category_id, changes)
        logger.debug("Updated category %s fields=%s", category_id, sorted(changes))
        return await self.get_category(category_id)

    async def delete_category(self, category_id: int) -> bool:
        cursor = await self._write("DELETE FROM categories WHERE id = ?", (category_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Listing <-> category links
    # ------------------------------------------------------------------

    async def add_category_to_listing(self, listing_id: int, category_id: int) -> None:
        # OR IGNORE covers the existing pair; the EXISTS guards turn a missing
        # parent into zero rows instead of a foreign-key error.
        cursor = await self._write(
            """
            INSERT OR IGNORE INTO listing_categories (listing_id, category_id)
            SELECT ?, ?
            WHERE EXISTS (SELECT 1 FROM listings WHERE id = ?)
              AND EXISTS (SELECT 1 FROM categories WHERE id = ?)
            """,
            (listing_id, category_id, listing_id, category_id),
        )
        if cursor.rowcount > 0:
            logger.debug("Linked category %s to listing %s", category_id, listing_id)

    async def remove_category_from_listing(self, listing_id: int, category_id: int) -> bool:
        cursor = await self._write(
            "DELETE FROM listing_categories WHERE listing_id = ? AND category_id = ?",
            (listing_id, category_id),
        )
        return cursor.rowcount > 0

    async def get_listing_categories(self, listing_id: int) -> list[Category]:
        rows = await self._fetchall(
            """
            SELECT categories.* FROM categories
            JOIN listing_categories ON listing_categories.category_id = categories.id
            WHERE listing_categories.listing_id = ?
            ORDER BY categories.name
            """,
            (listing_id,),
        )
        return [_row_to_category(row) for row in rows]

    async def get_category_listings(self, category_id: int) -> list[Listing]:
        rows = await self._fetchall(
            f"""
            {_LISTING_SELECT}
            JOIN listing_categories ON listing_categories.listing_id = listings.id
            WHERE listing_categories.category_id = ?
            ORDER BY listings.created_at DESC, listings.id DESC
            """,
            (category_id,),
        )
        return [_row_to_listing(row) for row in rows]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def _check_identity_free(
        self, email: str | None, username: str | None, user_id: int | None = None
    ) -> None:
        """Raise :exc:`DuplicateUserError` if another user holds *email* or *username*."""
        for field, value in (("email", email), ("username", username)):
            if value is None:
                continue
            row = await self._fetchone(f"SELECT id FROM users WHERE {field} = ?", (value,))
            if row is not None and row["id"] != user_id:
                logger.info("Rejected duplicate user %s", field)
                raise DuplicateUserError(field, value)

    async def create_user(self, data: UserCreate | Mapping[str, Any]) -> User:
        user_in = coerce_input(UserCreate, data)
        await self._check_identity_free(user_in.email, user_in.username)

        created_at = _utcnow()
        password_hash = self._hasher.hash(user_in.password)
        try:
            cursor = await self._write(
                """
                INSERT INTO users
                    (email, username, password_hash, first_name, last_name, is_verified, created_at)
                VALUES
                    (?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    user_in.email,
                    user_in.username,
                    password_hash,
                    user_in.first_name,
                    user_in.last_name,
                    _timestamp(created_at),
                ),
            )
        except aiosqlite.IntegrityError as exc:
            await self._conn.rollback()
            field = "username" if "username" in str(exc) else "email"
            raise DuplicateUserError(field, getattr(user_in, field)) from exc

        logger.debug("Created user %s", cursor.lastrowid)
        return User(
            id=cursor.lastrowid,
            email=user_in.email,
            username=user_in.username,
            password_hash=password_hash,
            first_name=user_in.first_name,
            last_name=user_in.last_name,
            is_verified=False,
            created_at=created_at,
        )

    async def get_user_by_id(self, user_id: int) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return _row_to_user(row) if row is not None else None

    async def get_user_by_email(self, email: str) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE email = ?", (email,))
        return _row_to_user(row) if row is not None else None

    async def get_user_by_username(self, username: str) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE username = ?", (username,))
        return _row_to_user(row) if row is not None else None

    async def update_user(
        self, user_id: int, data: UserUpdate | Mapping[str, Any]
    ) -> User | None:
        update = coerce_input(UserUpdate, data)
        existing = await self.get_user_by_id(user_id)
        if existing is None:
            return None
        changes = update.changes()
        if not changes:
            return existing

        await self._check_identity_free(changes.get("email"), changes.get("username"), user_id)
        if "password" in changes:
            changes["password_hash"] = self._hasher.hash(changes.pop("password"))

        await self._update_columns("users", user_id, changes)
        logger.debug("Updated user %s fields=%s", user_id, sorted(changes))
        return await self.get_user_by_id(user_id)

    async def delete_user(self, user_id: int) -> bool:
        cursor = await self._write("DELETE FROM users WHERE id = ?", (user_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted user %s with their listings and favorites", user_id)
        return deleted

    async def verify_user(self, email: str) -> bool:
        cursor = await self._write("UPDATE users SET is_verified = 1 WHERE email = ?", (email,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def _get_favorite(self, user_id: int, listing_id: int) -> Favorite | None:
        row = await self._fetchone(
            "SELECT * FROM favorites WHERE user_id = ? AND listing_id = ?",
            (user_id, listing_id),
        )
        return _row_to_favorite(row) if row is not None else None

    async def add_favorite(self, user_id: int, listing_id: int) -> Favorite:
        existing = await self._get_favorite(user_id, listing_id)
        if existing is not None:
            return existing
        if not await self._exists("users", user_id):
            raise ReferenceNotFoundError("user", user_id)
        if not await self._exists("listings", listing_id):
            raise ReferenceNotFoundError("listing", listing_id)

        created_at = _utcnow()
        cursor = await self._write(
            "INSERT INTO favorites (user_id, listing_id, created_at) VALUES (?, ?, ?)",
            (user_id, listing_id, _timestamp(created_at)),
        )
        logger.debug("User %s favorited listing %s", user_id, listing_id)
        return Favorite(
            id=cursor.lastrowid,
            user_id=user_id,
            listing_id=listing_id,
            created_at=created_at,
        )

    async def remove_favorite(self, user_id: int, listing_id: int) -> bool:
        cursor = await self._write(
            "DELETE FROM favorites WHERE user_id = ? AND listing_id = ?",
            (user_id, listing_id),
        )
        return cursor.rowcount > 0

    async def get_user_favorites(self, user_id: int) -> list[Listing]:
        rows = await self._fetchall(
            f"""
            {_LISTING_SELECT}
            JOIN favorites ON favorites.listing_id = listings.id
            WHERE favorites.user_id = ?
            ORDER BY favorites.created_at DESC, favorites.id DESC
            """,
            (user_id,),
        )
        return [_row_to_listing(row) for row in rows]

    async def is_favorite(self, user_id: int, listing_id: int) -> bool:
        return await self._get_favorite(user_id, listing_id) is not None
