"""Tests specific to the SQLite backend and backend selection.

The behavioural contract is covered for both backends in
``test_storage_e2.py``; this module checks what only the durable backend has:
the schema, column representation, persistence across connections and
connection ownership.  It also covers :func:`~smallthings.storage.create_storage`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest

from smallthings.core.credentials import PasswordHasher
from smallthings.core.exceptions import ConfigError
from smallthings.core.models import CategoryCreate, Item, ListingCreate, UserCreate
from smallthings.core.settings import Settings
from smallthings.storage import (
    MemoryStorage,
    SqliteStorage,
    create_schema,
    create_storage,
    open_db,
)
from smallthings.storage.database import DEFAULT_DB_PATH, TABLES

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Factories / helpers
# ---------------------------------------------------------------------------


def _listing_data() -> ListingCreate:
    return ListingCreate(
        title="Fresh eggs today",
        items=[Item(name="Dozen eggs", price=6.00), Item(name="Duck eggs", price=8.5)],
        pickup_instructions="Cooler by the front gate",
        address="12 Orchard Lane",
        coordinates={"lat": 45.52, "lng": -122.68},
    )


async def _column_names(conn: aiosqlite.Connection, table: str) -> set[str]:
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    return {row["name"] for row in await cursor.fetchall()}


# ===========================================================================
# Schema
# ===========================================================================


class TestSchema:
    async def test_all_tables_created(self, tmp_path: Path) -> None:
        conn = await open_db(tmp_path / "schema.db")
        try:
            cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            names = {row["name"] for row in await cursor.fetchall()}
        finally:
            await conn.close()

        assert set(TABLES) <= names

    async def test_columns_are_snake_case(self, tmp_path: Path) -> None:
        conn = await open_db(tmp_path / "schema.db")
        try:
            listing_columns = await _column_names(conn, "listings")
            user_columns = await _column_names(conn, "users")
        finally:
            await conn.close()

        assert {"pickup_instructions", "payment_info", "image_url", "owner_id", "created_at"} <= (
            listing_columns
        )
        assert {"password_hash", "first_name", "last_name", "is_verified"} <= user_columns

    async def test_create_schema_is_idempotent(self, tmp_path: Path) -> None:
        conn = await open_db(tmp_path / "schema.db")
        try:
            await create_schema(conn)
            await create_schema(conn)
        finally:
            await conn.close()

    async def test_foreign_keys_enabled(self, tmp_path: Path) -> None:
        conn = await open_db(tmp_path / "schema.db")
        try:
            cursor = await conn.execute("PRAGMA foreign_keys")
            row = await cursor.fetchone()
        finally:
            await conn.close()

        assert row[0] == 1

    async def test_parent_directories_created(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "st.db"
        conn = await open_db(path)
        await conn.close()
        assert path.exists()


# ===========================================================================
# Column representation
# ===========================================================================


class TestStoredRepresentation:
    @pytest.fixture()
    async def sqlite_storage(
        self, tmp_path: Path, hasher: PasswordHasher
    ) -> AsyncGenerator[SqliteStorage, None]:
        backend = await SqliteStorage.open(tmp_path / "repr.db", hasher)
        yield backend
        await backend.close()

    async def test_items_stored_as_json(self, sqlite_storage: SqliteStorage) -> None:
        owner = await sqlite_storage.create_user(
            UserCreate(email="a@b.com", username="ab", password="secret1")
        )
        listing = await sqlite_storage.create_listing(owner.id, _listing_data())

        row = await sqlite_storage._fetchone(
            "SELECT items, coordinates, categories FROM listings WHERE id = ?", (listing.id,)
        )

        assert row is not None
        assert json.loads(row["items"]) == [
            {"name": "Dozen eggs", "price": 6.0},
            {"name": "Duck eggs", "price": 8.5},
        ]
        assert json.loads(row["coordinates"]) == {"lat": 45.52, "lng": -122.68}
        assert json.loads(row["categories"]) == []

    async def test_password_never_stored_in_plaintext(
        self, sqlite_storage: SqliteStorage
    ) -> None:
        await sqlite_storage.create_user(
            UserCreate(email="a@b.com", username="ab", password="secret1")
        )

        row = await sqlite_storage._fetchone("SELECT password_hash FROM users")

        assert row is not None
        assert row["password_hash"] != "secret1"
        assert row["password_hash"].startswith("$2")

    async def test_category_name_unique_at_schema_level(
        self, sqlite_storage: SqliteStorage
    ) -> None:
        await sqlite_storage.create_category(CategoryCreate(name="Eggs"))

        with pytest.raises(aiosqlite.IntegrityError):
            await sqlite_storage._write(
                "INSERT INTO categories (name, created_at) VALUES ('Eggs', 'x')"
            )

    async def test_ids_not_reused_after_delete(self, sqlite_storage: SqliteStorage) -> None:
        first = await sqlite_storage.create_category(CategoryCreate(name="Eggs"))
        await sqlite_storage.delete_category(first.id)

        second = await sqlite_storage.create_category(CategoryCreate(name="Eggs"))

        assert second.id > first.id


# ===========================================================================
# Persistence and connection ownership
# ===========================================================================


class TestPersistence:
    async def test_data_survives_reopen(self, tmp_path: Path, hasher: PasswordHasher) -> None:
        path = tmp_path / "durable.db"

        async with await SqliteStorage.open(path, hasher) as first:
            owner = await first.create_user(
                UserCreate(email="a@b.com", username="ab", password="secret1")
            )
            listing = await first.create_listing(owner.id, _listing_data())
            eggs = await first.create_category(CategoryCreate(name="Eggs"))
            await first.add_category_to_listing(listing.id, eggs.id)
            await first.add_favorite(owner.id, listing.id)

        async with await SqliteStorage.open(path, hasher) as second:
            assert await second.get_listing(listing.id) == listing
            assert [c.id for c in await second.get_listing_categories(listing.id)] == [eggs.id]
            assert await second.is_favorite(owner.id, listing.id) is True
            assert await second.validate_password("a@b.com", "secret1") is not None

    async def test_borrowed_connection_left_open(
        self, tmp_path: Path, hasher: PasswordHasher
    ) -> None:
        conn = await open_db(tmp_path / "borrowed.db")
        try:
            storage = SqliteStorage(conn, hasher)
            await storage.close()

            # Still usable: close() does not touch a connection it does not own.
            assert await storage.list_categories() == []
        finally:
            await conn.close()

    async def test_owned_connection_closed(self, tmp_path: Path, hasher: PasswordHasher) -> None:
        storage = await SqliteStorage.open(tmp_path / "owned.db", hasher)
        await storage.close()

        with pytest.raises(ValueError):
            await storage.list_categories()


# ===========================================================================
# create_storage
# ===========================================================================


class TestCreateStorage:
    async def test_memory_backend(
        self, clean_env: None, caplog: pytest.LogCaptureFixture
    ) -> None:
        settings = Settings(storage_backend="memory", password_hash_rounds=4)

        with caplog.at_level(logging.WARNING, logger="smallthings.storage.factory"):
            storage = await create_storage(settings)

        assert isinstance(storage, MemoryStorage)
        assert "transient" in caplog.text
        await storage.close()

    async def test_sqlite_backend(
        self, clean_env: None, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "factory" / "st.db"
        settings = Settings(
            storage_backend="sqlite", database_path=str(path), password_hash_rounds=4
        )

        async with await create_storage(settings) as storage:
            assert isinstance(storage, SqliteStorage)
            user = await storage.create_user(
                UserCreate(email="a@b.com", username="ab", password="secret1")
            )
            assert user.password_hash.split("$")[2] == "04"

        assert path.exists()
        assert "transient" not in caplog.text

    async def test_unopenable_path_raises_config_error(
        self, clean_env: None, tmp_path: Path
    ) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        settings = Settings(
            storage_backend="sqlite",
            database_path=str(blocker / "st.db"),
            password_hash_rounds=4,
        )

        with pytest.raises(ConfigError, match="Cannot open SQLite database"):
            await create_storage(settings)

    async def test_non_sqlite_file_raises_config_error(
        self, clean_env: None, tmp_path: Path
    ) -> None:
        garbage = tmp_path / "notes.txt"
        garbage.write_text("shopping list: eggs, honey, kale\n" * 64)
        settings = Settings(
            storage_backend="sqlite", database_path=str(garbage), password_hash_rounds=4
        )

        with pytest.raises(ConfigError, match="Cannot open SQLite database"):
            await create_storage(settings)

    async def test_default_path_matches_settings(self, clean_env: None) -> None:
        assert Path(Settings().database_path) == DEFAULT_DB_PATH


class TestOpenDbFailure:
    async def test_connection_closed_when_setup_fails(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        garbage = tmp_path / "notes.txt"
        garbage.write_text("shopping list: eggs, honey, kale\n" * 64)

        closed: list[aiosqlite.Connection] = []
        original_close = aiosqlite.Connection.close

        async def _recording_close(self: aiosqlite.Connection) -> None:
            closed.append(self)
            await original_close(self)

        monkeypatch.setattr(aiosqlite.Connection, "close", _recording_close)

        with pytest.raises(aiosqlite.DatabaseError):
            await open_db(garbage)

        assert len(closed) == 1
