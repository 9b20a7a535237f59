"""Smallthings exception taxonomy.

Every custom exception inherits from :class:`SmallThingsError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    SmallThingsError
    ├── ConfigError
    └── StorageError
        ├── MissingOwnerError
        ├── ReferenceNotFoundError
        └── ConflictError
            ├── DuplicateCategoryError
            └── DuplicateUserError

Only precondition violations and uniqueness conflicts are raised.  Not-found
reads return ``None``, failed credential checks return ``None`` and idempotent
re-adds succeed; none of those are exceptions.

Usage:

    from smallthings.core.exceptions import ReferenceNotFoundError

    raise ReferenceNotFoundError("listing", listing_id)
"""

from __future__ import annotations

import logging

__all__ = [
    "SmallThingsError",
    # Config
    "ConfigError",
    # Storage
    "StorageError",
    "MissingOwnerError",
    "ReferenceNotFoundError",
    "ConflictError",
    "DuplicateCategoryError",
    "DuplicateUserError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class SmallThingsError(Exception):
    """Root exception for all Smallthings errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(SmallThingsError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - An unknown storage backend name.
        - A database path that cannot be created.
    """


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(SmallThingsError):
    """Raised when a persistence operation cannot be carried out."""


class MissingOwnerError(StorageError):
    """Raised when a listing is created without an owning user id."""

    def __init__(self) -> None:
        super().__init__("A listing must have an owner (owner_id is required)")


class ReferenceNotFoundError(StorageError):
    """Raised when an operation references an entity that does not exist.

    Args:
        entity: Short entity name (``"user"``, ``"listing"``, ...).
        entity_id: The id that failed to resolve.
    """

    def __init__(self, entity: str, entity_id: int) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Referenced {entity} does not exist: id={entity_id!r}")


class ConflictError(StorageError):
    """Base class for uniqueness violations."""


class DuplicateCategoryError(ConflictError):
    """Raised when a category name is already taken.

    Args:
        name: The colliding category name.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"A category with this name already exists: {name!r}")


class DuplicateUserError(ConflictError):
    """Raised when an email or username is already registered.

    Args:
        field: Which identity field collided (``"email"`` or ``"username"``).
        value: The colliding value.
    """

    def __init__(self, field: str, value: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"A user with this {field} already exists: {value!r}")
