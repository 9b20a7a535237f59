"""Core domain models, credentials, settings, logging configuration and exceptions."""

from smallthings.core.credentials import PasswordHasher
from smallthings.core.exceptions import (
    ConfigError,
    ConflictError,
    DuplicateCategoryError,
    DuplicateUserError,
    MissingOwnerError,
    ReferenceNotFoundError,
    SmallThingsError,
    StorageError,
)
from smallthings.core.logging_config import JsonFormatter, configure_logging
from smallthings.core.models import (
    Category,
    CategoryCreate,
    CategoryUpdate,
    Coordinates,
    Favorite,
    Item,
    Listing,
    ListingCategory,
    ListingCreate,
    ListingUpdate,
    User,
    UserCreate,
    UserUpdate,
)
from smallthings.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "Item",
    "Coordinates",
    "Listing",
    "ListingCreate",
    "ListingUpdate",
    "Category",
    "CategoryCreate",
    "CategoryUpdate",
    "ListingCategory",
    "User",
    "UserCreate",
    "UserUpdate",
    "Favorite",
    # Credentials
    "PasswordHasher",
    # Settings
    "Settings",
    # Exceptions: base
    "SmallThingsError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: storage
    "StorageError",
    "MissingOwnerError",
    "ReferenceNotFoundError",
    "ConflictError",
    "DuplicateCategoryError",
    "DuplicateUserError",
]
