"""Storage contract shared by every Smallthings backend.

The route layer talks to exactly one :class:`Storage` instance, chosen once at
startup by :func:`~smallthings.storage.factory.create_storage`.  Two
implementations exist and must be observably identical:

* :class:`~smallthings.storage.sqlite_store.SqliteStorage`: durable, backed by
  an ``aiosqlite`` connection with foreign keys and cascading deletes.
* :class:`~smallthings.storage.memory_store.MemoryStorage`: transient, backed
  by plain dicts; used in tests and as a no-setup fallback.

Behaviour every backend must share
-----------------------------------
* **Not found** is ``None`` (reads, updates) or ``False`` (deletes), never an
  exception.
* **Precondition violations** raise:
  :exc:`~smallthings.core.exceptions.MissingOwnerError`,
  :exc:`~smallthings.core.exceptions.ReferenceNotFoundError`,
  :exc:`~smallthings.core.exceptions.DuplicateCategoryError`,
  :exc:`~smallthings.core.exceptions.DuplicateUserError`.
* **Partial updates** apply exactly the supplied fields, all at once.  An
  empty update returns the stored record untouched.
* **Idempotent adds**: re-adding a favorite returns the existing row;
  re-attaching a category is a no-op.
* **Cascades**: deleting a listing removes its category links and favorites;
  deleting a category removes its links; deleting a user removes their
  favorites and their listings (with those listings' dependants).
* **Ordering**: listings in id order; categories by name; category listings
  and user favorites newest first, ties broken by descending id.

Typical usage::

    async with await create_storage(settings) as storage:
        user = await storage.create_user(UserCreate(...))
        listing = await storage.create_listing(user.id, ListingCreate(...))
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import TracebackType
from typing import Any, Self

from smallthings.core.credentials import PasswordHasher
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
)

__all__ = ["Storage"]

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Abstract base for all storage backends.

    Args:
        hasher: Password hasher used by :meth:`create_user`,
            :meth:`update_user` and :meth:`validate_password`.  Defaults to a
            :class:`~smallthings.core.credentials.PasswordHasher` with the
            default bcrypt cost.
    """

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        self._hasher = hasher or PasswordHasher()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release resources held by the backend.  No-op by default."""

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_listing(
        self, owner_id: int | None, data: ListingCreate | Mapping[str, Any]
    ) -> Listing:
        """Persist a new listing owned by *owner_id*.

        Raises:
            :exc:`~smallthings.core.exceptions.MissingOwnerError`: if
                *owner_id* is ``None``.
            :exc:`~smallthings.core.exceptions.ReferenceNotFoundError`: if
                *owner_id* names no user.
            :exc:`pydantic.ValidationError`: if *data* is a mapping that
                fails entity validation (e.g. an empty item list).
        """

    @abstractmethod
    async def get_listing(self, listing_id: int) -> Listing | None: ...

    @abstractmethod
    async def list_listings(self) -> list[Listing]: ...

    @abstractmethod
    async def list_listings_by_owner(self, owner_id: int) -> list[Listing]: ...

    @abstractmethod
    async def search_listings(self, term: str) -> list[Listing]:
        """Return listings whose title, description or item names contain *term*.

        Matching is case-insensitive.  A blank term matches everything.
        """

    @abstractmethod
    async def update_listing(
        self, listing_id: int, data: ListingUpdate | Mapping[str, Any]
    ) -> Listing | None:
        """Apply the supplied fields of *data* and return the refreshed listing."""

    @abstractmethod
    async def delete_listing(self, listing_id: int) -> bool:
        """Delete a listing and its category links and favorites."""

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_category(self, data: CategoryCreate | Mapping[str, Any]) -> Category:
        """Persist a new category.

        Raises:
            :exc:`~smallthings.core.exceptions.DuplicateCategoryError`: if
                the name is taken.
        """

    @abstractmethod
    async def get_category(self, category_id: int) -> Category | None: ...

    @abstractmethod
    async def get_category_by_name(self, name: str) -> Category | None: ...

    @abstractmethod
    async def list_categories(self) -> list[Category]: ...

    @abstractmethod
    async def update_category(
        self, category_id: int, data: CategoryUpdate | Mapping[str, Any]
    ) -> Category | None:
        """Apply the supplied fields; a rename onto another category's name raises
        :exc:`~smallthings.core.exceptions.DuplicateCategoryError`."""

    @abstractmethod
    async def delete_category(self, category_id: int) -> bool: ...

    # ------------------------------------------------------------------
    # Listing <-> category links
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_category_to_listing(self, listing_id: int, category_id: int) -> None:
        """Link a category to a listing.

        Idempotent.  Silently does nothing if either side does not exist.
        """

    @abstractmethod
    async def remove_category_from_listing(self, listing_id: int, category_id: int) -> bool:
        """Unlink; returns whether a link existed."""

    @abstractmethod
    async def get_listing_categories(self, listing_id: int) -> list[Category]: ...

    @abstractmethod
    async def get_category_listings(self, category_id: int) -> list[Listing]: ...

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_user(self, data: UserCreate | Mapping[str, Any]) -> User:
        """Persist a new user, hashing the plaintext password.

        Raises:
            :exc:`~smallthings.core.exceptions.DuplicateUserError`: if the
                email or username is taken.
        """

    @abstractmethod
    async def get_user_by_id(self, user_id: int) -> User | None: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User | None: ...

    @abstractmethod
    async def update_user(
        self, user_id: int, data: UserUpdate | Mapping[str, Any]
    ) -> User | None:
        """Apply the supplied fields; a new password is re-hashed."""

    @abstractmethod
    async def delete_user(self, user_id: int) -> bool:
        """Delete a user together with their favorites and listings."""

    @abstractmethod
    async def verify_user(self, email: str) -> bool:
        """Mark the user with *email* as verified; returns whether one matched."""

    async def validate_password(self, email: str, password: str) -> User | None:
        """Return the user if *password* matches, ``None`` otherwise.

        Unknown email and wrong password are indistinguishable to the caller,
        both in result and in bcrypt work performed.
        """
        user = await self.get_user_by_email(email)
        stored_hash = user.password_hash if user is not None else None
        if not self._hasher.verify(password, stored_hash):
            logger.info("Credential check failed")
            return None
        return user

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_favorite(self, user_id: int, listing_id: int) -> Favorite:
        """Bookmark a listing; returns the existing favorite when already present.

        Raises:
            :exc:`~smallthings.core.exceptions.ReferenceNotFoundError`: if
                the user or listing does not exist.
        """

    @abstractmethod
    async def remove_favorite(self, user_id: int, listing_id: int) -> bool: ...

    @abstractmethod
    async def get_user_favorites(self, user_id: int) -> list[Listing]: ...

    @abstractmethod
    async def is_favorite(self, user_id: int, listing_id: int) -> bool: ...
