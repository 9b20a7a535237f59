"""Smallthings application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

The field name is the **lowercase** version of the env-var name (e.g.
``STORAGE_BACKEND`` → ``storage_backend``).

Typical usage::

    from smallthings.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    print(settings.storage_backend)        # "sqlite" / "memory"
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["Settings", "STORAGE_BACKENDS", "DEFAULT_DATABASE_PATH"]

logger = logging.getLogger(__name__)

#: Names accepted by ``STORAGE_BACKEND``.
STORAGE_BACKENDS: frozenset[str] = frozenset({"sqlite", "memory"})

#: Default SQLite file, relative to the working directory.
DEFAULT_DATABASE_PATH: str = "data/smallthings.db"


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    storage_backend: str = Field(
        default="sqlite",
        description="Active storage backend: 'sqlite' (durable) or 'memory' (transient).",
    )
    database_path: str = Field(
        default=DEFAULT_DATABASE_PATH,
        description="Path to the SQLite database file (sqlite backend only).",
    )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    password_hash_rounds: int = Field(
        default=12,
        ge=4,
        le=31,
        description="bcrypt cost factor for password hashing.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("storage_backend")
    @classmethod
    def _validate_storage_backend(cls, v: str) -> str:
        v_lower = v.strip().lower()
        if v_lower not in STORAGE_BACKENDS:
            raise ValueError(
                f"storage_backend must be one of {sorted(STORAGE_BACKENDS)}, got {v!r}"
            )
        return v_lower

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def database_path_resolved(self) -> Path:
        """Return the database path as a resolved :class:`~pathlib.Path`."""
        return Path(self.database_path).resolve()

    @property
    def is_durable(self) -> bool:
        """``True`` when the configured backend survives a process restart."""
        return self.storage_backend == "sqlite"
