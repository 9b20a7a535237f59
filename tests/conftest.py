"""Shared pytest fixtures and configuration for the Smallthings test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across the unit tests, most
importantly the ``storage`` fixture, which is parametrised over both backends
so every contract test runs once against SQLite and once against memory.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from pydantic_settings import SettingsConfigDict

from smallthings.core import configure_logging
from smallthings.core.credentials import PasswordHasher
from smallthings.core.settings import Settings
from smallthings.storage import MemoryStorage, SqliteStorage, Storage

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Smallthings env vars and disable ``.env`` loading for one test."""
    prefixes = (
        "STORAGE_",
        "DATABASE_",
        "PASSWORD_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
def hasher() -> PasswordHasher:
    """bcrypt at the minimum cost so the suite stays fast."""
    return PasswordHasher(rounds=4)


@pytest.fixture(params=["memory", "sqlite"])
async def storage(
    request: pytest.FixtureRequest, tmp_path: Path, hasher: PasswordHasher
) -> AsyncGenerator[Storage, None]:
    """Yield an empty backend; each dependent test runs once per backend."""
    if request.param == "memory":
        backend: Storage = MemoryStorage(hasher)
    else:
        backend = await SqliteStorage.open(tmp_path / "smallthings.db", hasher)
    yield backend
    await backend.close()


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
