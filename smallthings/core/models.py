"""Smallthings core domain models.

This module defines the five persisted entities (:class:`Listing`,
:class:`Category`, :class:`ListingCategory`, :class:`User`,
:class:`Favorite`), their value objects (:class:`Item`,
:class:`Coordinates`) and the input models accepted by the storage layer.

Attribute names are snake_case.  Every model is configured with a camelCase
alias generator, so ``model_dump(by_alias=True)`` produces the camelCase
shape the route layer and browser client work with, and input models accept
either spelling.  The snake_case column mapping for the relational store lives
in :mod:`smallthings.storage.sqlite_store`.

Entity models are **frozen**; storage backends produce updated copies rather
than mutating shared instances.

Typical usage::

    from smallthings.core.models import Item, ListingCreate

    data = ListingCreate(
        title="Fresh eggs today",
        items=[Item(name="Dozen eggs", price=6.00)],
        pickup_instructions="Cooler by the front gate",
        address="12 Orchard Lane",
    )
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
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
    "coerce_input",
]

logger = logging.getLogger(__name__)

_ENTITY_CONFIG = {"frozen": True, "alias_generator": to_camel, "populate_by_name": True}
_INPUT_CONFIG = {"alias_generator": to_camel, "populate_by_name": True}

InputT = TypeVar("InputT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _non_blank(value: object) -> object:
    """Strip strings and reject ones that are empty afterwards."""
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
    return value


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def coerce_input(model: type[InputT], data: InputT | Mapping[str, Any]) -> InputT:
    """Return *data* as an instance of *model*, validating plain mappings.

    Storage operations accept either the typed input model or the raw
    (camelCase or snake_case) mapping a route handler received.
    """
    if isinstance(data, model):
        return data
    return model.model_validate(dict(data))


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class Item(BaseModel):
    """One line of a listing: what is offered and for how much."""

    model_config = _ENTITY_CONFIG

    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)

    @field_validator("name", mode="before")
    @classmethod
    def _name_non_blank(cls, v: object) -> object:
        return _non_blank(v)


class Coordinates(BaseModel):
    """Latitude / longitude pair used by the map view."""

    model_config = _ENTITY_CONFIG

    lat: float
    lng: float


# ---------------------------------------------------------------------------
# Partial-update base
# ---------------------------------------------------------------------------


class _PartialUpdate(BaseModel):
    """Base for field-granular update payloads.

    Only fields present in the input end up in :attr:`model_fields_set`, and
    only those are applied by the storage layer.  Explicit ``None`` for a
    column that is required on the entity is rejected.
    """

    model_config = _INPUT_CONFIG

    required_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_null_required(self) -> _PartialUpdate:
        for name in sorted(self.required_fields & self.model_fields_set):
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be set to null")
        return self

    def changes(self) -> dict[str, Any]:
        """Return ``{field: value}`` for exactly the supplied fields."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class _ListingFields(BaseModel):
    """Fields shared by :class:`ListingCreate` and :class:`Listing`."""

    title: str = Field(..., min_length=1)
    description: str | None = None
    items: list[Item] = Field(..., min_length=1)
    categories: list[str] = Field(
        default_factory=list,
        description="Legacy denormalised category names; superseded by the junction.",
    )
    pickup_instructions: str = Field(..., min_length=1)
    payment_info: str | None = None
    address: str = Field(..., min_length=1)
    coordinates: Coordinates | None = None
    image_url: str | None = None

    @field_validator("title", "pickup_instructions", "address", mode="before")
    @classmethod
    def _required_non_blank(cls, v: object) -> object:
        return _non_blank(v)

    @field_validator("description", "payment_info", "image_url", mode="before")
    @classmethod
    def _optional_blank_to_none(cls, v: object) -> object:
        return _blank_to_none(v)

    @field_validator("categories", mode="before")
    @classmethod
    def _null_categories_to_empty(cls, v: object) -> object:
        return [] if v is None else v

    def matches(self, term: str) -> bool:
        """Case-insensitive substring search over title, description and item names."""
        needle = term.strip().lower()
        if not needle:
            return True
        haystacks = [self.title, self.description or ""]
        haystacks.extend(item.name for item in self.items)
        return any(needle in text.lower() for text in haystacks)


class ListingCreate(_ListingFields):
    """Input for :meth:`~smallthings.storage.base.Storage.create_listing`.

    The owner is passed separately so that "no owner" can be reported as
    :exc:`~smallthings.core.exceptions.MissingOwnerError` rather than a
    validation error.
    """

    model_config = _INPUT_CONFIG


class Listing(_ListingFields):
    """A published offer of items for pickup, owned by exactly one user.

    Attributes:
        id: Storage-assigned integer id.
        owner_id: Id of the owning :class:`User`.
        created_at: Server-assigned UTC creation time; never updated.
    """

    model_config = _ENTITY_CONFIG

    id: int
    owner_id: int
    created_at: datetime


class ListingUpdate(_PartialUpdate):
    """Partial update for a listing.  ``owner_id`` and ``created_at`` are immutable."""

    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"title", "items", "categories", "pickup_instructions", "address"}
    )

    title: str | None = Field(None, min_length=1)
    description: str | None = None
    items: list[Item] | None = Field(None, min_length=1)
    categories: list[str] | None = None
    pickup_instructions: str | None = Field(None, min_length=1)
    payment_info: str | None = None
    address: str | None = Field(None, min_length=1)
    coordinates: Coordinates | None = None
    image_url: str | None = None

    @field_validator("title", "pickup_instructions", "address", mode="before")
    @classmethod
    def _required_non_blank(cls, v: object) -> object:
        return _non_blank(v)

    @field_validator("description", "payment_info", "image_url", mode="before")
    @classmethod
    def _optional_blank_to_none(cls, v: object) -> object:
        return _blank_to_none(v)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class CategoryCreate(BaseModel):
    model_config = _INPUT_CONFIG

    name: str = Field(..., min_length=1)
    description: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _name_non_blank(cls, v: object) -> object:
        return _non_blank(v)

    @field_validator("description", mode="before")
    @classmethod
    def _description_blank_to_none(cls, v: object) -> object:
        return _blank_to_none(v)


class Category(BaseModel):
    """A named tag attachable to many listings.  Names are unique and case-sensitive."""

    model_config = _ENTITY_CONFIG

    id: int
    name: str
    description: str | None = None
    created_at: datetime


class CategoryUpdate(_PartialUpdate):
    required_fields: ClassVar[frozenset[str]] = frozenset({"name"})

    name: str | None = Field(None, min_length=1)
    description: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def _name_non_blank(cls, v: object) -> object:
        return _non_blank(v)

    @field_validator("description", mode="before")
    @classmethod
    def _description_blank_to_none(cls, v: object) -> object:
        return _blank_to_none(v)


class ListingCategory(BaseModel):
    """Junction row: "listing has category"."""

    model_config = _ENTITY_CONFIG

    listing_id: int
    category_id: int


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Registration payload.  ``password`` is plaintext and is hashed before storage."""

    model_config = _INPUT_CONFIG

    email: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)
    first_name: str | None = None
    last_name: str | None = None

    @field_validator("email", "username", mode="before")
    @classmethod
    def _identity_non_blank(cls, v: object) -> object:
        return _non_blank(v)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _names_blank_to_none(cls, v: object) -> object:
        return _blank_to_none(v)


class User(BaseModel):
    """A registered account.

    ``password_hash`` is excluded from serialisation and from ``repr`` so a
    user object can be handed to the route layer as-is.
    """

    model_config = _ENTITY_CONFIG

    id: int
    email: str
    username: str
    password_hash: str = Field(..., exclude=True, repr=False)
    first_name: str | None = None
    last_name: str | None = None
    is_verified: bool = False
    created_at: datetime


class UserUpdate(_PartialUpdate):
    """Partial update for a user.  The verified flag only changes through ``verify_user``."""

    required_fields: ClassVar[frozenset[str]] = frozenset({"email", "username", "password"})

    email: str | None = Field(None, min_length=1)
    username: str | None = Field(None, min_length=1)
    password: str | None = Field(None, min_length=1, repr=False)
    first_name: str | None = None
    last_name: str | None = None

    @field_validator("email", "username", mode="before")
    @classmethod
    def _identity_non_blank(cls, v: object) -> object:
        return _non_blank(v)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _names_blank_to_none(cls, v: object) -> object:
        return _blank_to_none(v)


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------


class Favorite(BaseModel):
    """A user's bookmark of a listing.  ``(user_id, listing_id)`` is unique."""

    model_config = _ENTITY_CONFIG

    id: int
    user_id: int
    listing_id: int
    created_at: datetime
