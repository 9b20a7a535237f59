"""In-memory implementation of the storage contract.

:class:`MemoryStorage` keeps every entity in a dict keyed by id (the
listing-category links are keyed by their ``(listing_id, category_id)`` pair)
and reproduces what the SQLite schema does declaratively: uniqueness checks,
reference checks and cascading deletes.  Nothing survives the process.

Each call mutates the dicts synchronously between awaits, so a single
operation is atomic with respect to other coroutines; there is no isolation
across calls.

Ids come from per-table counters and are never reused, matching SQLite
``AUTOINCREMENT``.

Listings are stored and returned as deep copies.  Their list fields are
mutable even on a frozen model, and a caller must not be able to change
stored state through a returned object or a payload it still holds.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

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
    ListingCategory,
    ListingCreate,
    ListingUpdate,
    User,
    UserCreate,
    UserUpdate,
    coerce_input,
)
from smallthings.storage.base import Storage

__all__ = ["MemoryStorage"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _newest_first(listings_or_favorites: list[Any]) -> list[Any]:
    return sorted(listings_or_favorites, key=lambda obj: (obj.created_at, obj.id), reverse=True)


def _detached(listing: Listing) -> Listing:
    """Return a deep copy so callers never share list fields with the store."""
    return listing.model_copy(deep=True)


class MemoryStorage(Storage):
    """Transient storage over plain dicts."""

    def __init__(self, hasher: PasswordHasher | None = None) -> None:
        super().__init__(hasher)
        self._listings: dict[int, Listing] = {}
        self._categories: dict[int, Category] = {}
        self._listing_categories: dict[tuple[int, int], ListingCategory] = {}
        self._users: dict[int, User] = {}
        self._favorites: dict[int, Favorite] = {}

        self._listing_ids = itertools.count(1)
        self._category_ids = itertools.count(1)
        self._user_ids = itertools.count(1)
        self._favorite_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def create_listing(
        self, owner_id: int | None, data: ListingCreate | Mapping[str, Any]
    ) -> Listing:
        if owner_id is None:
            raise MissingOwnerError()
        listing_in = coerce_input(ListingCreate, data)
        if owner_id not in self._users:
            raise ReferenceNotFoundError("user", owner_id)

        listing = Listing(
            id=next(self._listing_ids),
            owner_id=owner_id,
            created_at=_utcnow(),
            **listing_in.model_dump(),
        )
        self._listings[listing.id] = listing
        logger.debug(
            "Created listing %s (owner=%s, items=%d)", listing.id, owner_id, len(listing.items)
        )
        return _detached(listing)

    async def get_listing(self, listing_id: int) -> Listing | None:
        listing = self._listings.get(listing_id)
        return _detached(listing) if listing is not None else None

    async def list_listings(self) -> list[Listing]:
        return [_detached(self._listings[key]) for key in sorted(self._listings)]

    async def list_listings_by_owner(self, owner_id: int) -> list[Listing]:
        return [listing for listing in await self.list_listings() if listing.owner_id == owner_id]

    async def search_listings(self, term: str) -> list[Listing]:
        return [listing for listing in await self.list_listings() if listing.matches(term)]

    async def update_listing(
        self, listing_id: int, data: ListingUpdate | Mapping[str, Any]
    ) -> Listing | None:
        update = coerce_input(ListingUpdate, data)
        existing = self._listings.get(listing_id)
        if existing is None:
            return None
        changes = update.changes()
        if not changes:
            return _detached(existing)

        updated = existing.model_copy(update=copy.deepcopy(changes))
        self._listings[listing_id] = updated
        logger.debug("Updated listing %s fields=%s", listing_id, sorted(changes))
        return _detached(updated)

    async def delete_listing(self, listing_id: int) -> bool:
        if self._listings.pop(listing_id, None) is None:
            return False
        self._drop_listing_dependants({listing_id})
        logger.debug("Deleted listing %s", listing_id)
        return True

    def _drop_listing_dependants(self, listing_ids: set[int]) -> None:
        """Remove category links and favorites pointing at *listing_ids*."""
        for pair in [pair for pair in self._listing_categories if pair[0] in listing_ids]:
            del self._listing_categories[pair]
        for fav_id in [
            fav.id for fav in self._favorites.values() if fav.listing_id in listing_ids
        ]:
            del self._favorites[fav_id]

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def create_category(self, data: CategoryCreate | Mapping[str, Any]) -> Category:
        category_in = coerce_input(CategoryCreate, data)
        if await self.get_category_by_name(category_in.name) is not None:
            logger.info("Rejected duplicate category name %r", category_in.name)
            raise DuplicateCategoryError(category_in.name)

        category = Category(
            id=next(self._category_ids),
            name=category_in.name,
            description=category_in.description,
            created_at=_utcnow(),
        )
        self._categories[category.id] = category
        logger.debug("Created category %s (%r)", category.id, category.name)
        return category

    async def get_category(self, category_id: int) -> Category | None:
        return self._categories.get(category_id)

    async def get_category_by_name(self, name: str) -> Category | None:
        return next((c for c in self._categories.values() if c.name == name), None)

    async def list_categories(self) -> list[Category]:
        return sorted(self._categories.values(), key=lambda c: c.name)

    async def update_category(
        self, category_id: int, data: CategoryUpdate | Mapping[str, Any]
    ) -> Category | None:
        update = coerce_input(CategoryUpdate, data)
        existing = self._categories.get(category_id)
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

        updated = existing.model_copy(update=changes)
        self._categories[category_id] = updated
        logger.debug("Updated category %s fields=%s", category_id, sorted(changes))
        return updated

    async def delete_category(self, category_id: int) -> bool:
        if self._categories.pop(category_id, None) is None:
            return False
        for pair in [pair for pair in self._listing_categories if pair[1] == category_id]:
            del self._listing_categories[pair]
        return True

    # ------------------------------------------------------------------
    # Listing <-> category links
    # ------------------------------------------------------------------

    async def add_category_to_listing(self, listing_id: int, category_id: int) -> None:
        if listing_id not in self._listings or category_id not in self._categories:
            return
        pair = (listing_id, category_id)
        if pair in self._listing_categories:
            return
        self._listing_categories[pair] = ListingCategory(
            listing_id=listing_id, category_id=category_id
        )
        logger.debug("Linked category %s to listing %s", category_id, listing_id)

    async def remove_category_from_listing(self, listing_id: int, category_id: int) -> bool:
        return self._listing_categories.pop((listing_id, category_id), None) is not None

    async def get_listing_categories(self, listing_id: int) -> list[Category]:
        categories = [
            self._categories[category_id]
            for (linked_listing, category_id) in self._listing_categories
            if linked_listing == listing_id
        ]
        return sorted(categories, key=lambda c: c.name)

    async def get_category_listings(self, category_id: int) -> list[Listing]:
        listings = [
            self._listings[listing_id]
            for (listing_id, linked_category) in self._listing_categories
            if linked_category == category_id
        ]
        return [_detached(listing) for listing in _newest_first(listings)]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def _check_identity_free(
        self, email: str | None, username: str | None, user_id: int | None = None
    ) -> None:
        for field, value in (("email", email), ("username", username)):
            if value is None:
                continue
            for user in self._users.values():
                if getattr(user, field) == value and user.id != user_id:
                    logger.info("Rejected duplicate user %s", field)
                    raise DuplicateUserError(field, value)

    async def create_user(self, data: UserCreate | Mapping[str, Any]) -> User:
        user_in = coerce_input(UserCreate, data)
        self._check_identity_free(user_in.email, user_in.username)

        user = User(
            id=next(self._user_ids),
            email=user_in.email,
            username=user_in.username,
            password_hash=self._hasher.hash(user_in.password),
            first_name=user_in.first_name,
            last_name=user_in.last_name,
            is_verified=False,
            created_at=_utcnow(),
        )
        self._users[user.id] = user
        logger.debug("Created user %s", user.id)
        return user

    async def get_user_by_id(self, user_id: int) -> User | None:
        return self._users.get(user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        return next((u for u in self._users.values() if u.email == email), None)

    async def get_user_by_username(self, username: str) -> User | None:
        return next((u for u in self._users.values() if u.username == username), None)

    async def update_user(
        self, user_id: int, data: UserUpdate | Mapping[str, Any]
    ) -> User | None:
        update = coerce_input(UserUpdate, data)
        existing = self._users.get(user_id)
        if existing is None:
            return None
        changes = update.changes()
        if not changes:
            return existing

        self._check_identity_free(changes.get("email"), changes.get("username"), user_id)
        if "password" in changes:
            changes["password_hash"] = self._hasher.hash(changes.pop("password"))

        updated = existing.model_copy(update=changes)
        self._users[user_id] = updated
        logger.debug("Updated user %s fields=%s", user_id, sorted(changes))
        return updated

    async def delete_user(self, user_id: int) -> bool:
        if self._users.pop(user_id, None) is None:
            return False
        owned = {lid for lid, listing in self._listings.items() if listing.owner_id == user_id}
        for listing_id in owned:
            del self._listings[listing_id]
        self._drop_listing_dependants(owned)
        for fav_id in [fav.id for fav in self._favorites.values() if fav.user_id == user_id]:
            del self._favorites[fav_id]
        logger.info("Deleted user %s with their listings and favorites", user_id)
        return True

    async def verify_user(self, email: str) -> bool:
        user = await self.get_user_by_email(email)
        if user is None:
            return False
        self._users[user.id] = user.model_copy(update={"is_verified": True})
        return True

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def _get_favorite(self, user_id: int, listing_id: int) -> Favorite | None:
        return next(
            (
                fav
                for fav in self._favorites.values()
                if fav.user_id == user_id and fav.listing_id == listing_id
            ),
            None,
        )

    async def add_favorite(self, user_id: int, listing_id: int) -> Favorite:
        existing = self._get_favorite(user_id, listing_id)
        if existing is not None:
            return existing
        if user_id not in self._users:
            raise ReferenceNotFoundError("user", user_id)
        if listing_id not in self._listings:
            raise ReferenceNotFoundError("listing", listing_id)

        favorite = Favorite(
            id=next(self._favorite_ids),
            user_id=user_id,
            listing_id=listing_id,
            created_at=_utcnow(),
        )
        self._favorites[favorite.id] = favorite
        logger.debug("User %s favorited listing %s", user_id, listing_id)
        return favorite

    async def remove_favorite(self, user_id: int, listing_id: int) -> bool:
        favorite = self._get_favorite(user_id, listing_id)
        if favorite is None:
            return False
        del self._favorites[favorite.id]
        return True

    async def get_user_favorites(self, user_id: int) -> list[Listing]:
        favorites = _newest_first([f for f in self._favorites.values() if f.user_id == user_id])
        return [_detached(self._listings[fav.listing_id]) for fav in favorites]

    async def is_favorite(self, user_id: int, listing_id: int) -> bool:
        return self._get_favorite(user_id, listing_id) is not None
