"""
Contact data model for offline contact synchronization.

Provides:
- Contact: the stored, per-user contact record
- Address: the structured postal address of a contact
- ContactPatch: a validated partial update submitted by a client
- derive_category: write-boundary derivation of category from categories

Contacts travel over the wire as camelCase dictionaries (firstName,
socialProfiles, lastSyncedAt, ...). The dataclasses use snake_case
attributes and convert with to_dict()/from_dict().
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Optional

from contact_sync.sync.errors import InvalidArgumentError
from contact_sync.utils.timestamps import format_timestamp, parse_timestamp

# Wire name -> attribute name for client-editable fields
FIELD_MAP: dict[str, str] = {
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
    "company": "company",
    "title": "title",
    "notes": "notes",
    "address": "address",
    "tags": "tags",
    "category": "category",
    "categories": "categories",
    "socialProfiles": "social_profiles",
    "isFavorite": "is_favorite",
    "lastSyncedAt": "last_synced_at",
}

# Keys clients may send but the server owns; accepted and dropped
SERVER_MANAGED_FIELDS = frozenset({"id", "_id", "userId", "createdAt", "updatedAt"})

# Fields with set semantics (merged by union during conflict resolution)
SET_FIELDS = frozenset({"tags"})

# Fields with mapping semantics (merged by key union during conflict resolution)
MAP_FIELDS = frozenset({"socialProfiles"})

_STRING_FIELDS = (
    "firstName",
    "lastName",
    "email",
    "phone",
    "company",
    "title",
    "notes",
    "category",
)

_REQUIRED_NAME_FIELDS = ("firstName", "lastName")


def derive_category(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Derive the single category label from the categories list.

    When the payload carries a non-empty categories list, its first entry
    becomes the category. The input is not modified.

    Args:
        payload: camelCase contact dictionary

    Returns:
        A copy of the payload with category derived, or the payload itself
        when there is nothing to derive
    """
    categories = payload.get("categories")
    if not categories:
        return payload

    derived = dict(payload)
    derived["category"] = categories[0]
    return derived


def _unique(values: list[str]) -> list[str]:
    """Drop duplicates while keeping first-occurrence order."""
    seen: set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


@dataclass
class Address:
    """
    Postal address of a contact.

    Attributes:
        street: Street and number
        city: City name
        state: State or region
        country: Country name
        postal_code: Postal or ZIP code
    """

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Address:
        """
        Create an Address from its wire form.

        Accepts postalCode, or zipCode as sent by the mobile client.

        Raises:
            InvalidArgumentError: If data is not a dictionary of strings
        """
        if not isinstance(data, dict):
            raise InvalidArgumentError(
                f"address must be an object, got {type(data).__name__}"
            )

        values: dict[str, Optional[str]] = {}
        for key, attr in (
            ("street", "street"),
            ("city", "city"),
            ("state", "state"),
            ("country", "country"),
            ("postalCode", "postal_code"),
            ("zipCode", "postal_code"),
        ):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise InvalidArgumentError(
                    f"address.{key} must be a string, got {type(value).__name__}"
                )
            values[attr] = value.strip()

        unknown = set(data) - {
            "street",
            "city",
            "state",
            "country",
            "postalCode",
            "zipCode",
        }
        if unknown:
            raise InvalidArgumentError(
                f"Unknown address field: {', '.join(sorted(unknown))}"
            )

        return cls(**values)

    def is_empty(self) -> bool:
        """Check whether every part is missing or blank."""
        return not any(
            (self.street, self.city, self.state, self.country, self.postal_code)
        )

    def to_dict(self) -> dict[str, str]:
        """Convert to wire form, omitting empty parts."""
        result = {}
        if self.street is not None:
            result["street"] = self.street
        if self.city is not None:
            result["city"] = self.city
        if self.state is not None:
            result["state"] = self.state
        if self.country is not None:
            result["country"] = self.country
        if self.postal_code is not None:
            result["postalCode"] = self.postal_code
        return result


@dataclass
class ContactPatch:
    """
    Validated partial update of a contact.

    Every attribute is optional; None means the client did not provide
    the field. Instances are built with from_dict(), which rejects unknown
    keys and wrongly typed values, so the sync core never handles raw
    client dictionaries.

    Usage:
        patch = ContactPatch.from_dict({"firstName": "Jane", "tags": ["work"]})
        patch.to_dict()  # {"firstName": "Jane", "tags": ["work"]}
    """

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[Address] = None
    tags: Optional[list[str]] = None
    category: Optional[str] = None
    categories: Optional[list[str]] = None
    social_profiles: Optional[dict[str, str]] = None
    is_favorite: Optional[bool] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Any) -> ContactPatch:
        """
        Validate a client payload and build a patch from it.

        Args:
            data: camelCase contact dictionary

        Returns:
            ContactPatch holding the provided fields

        Raises:
            InvalidArgumentError: If the payload is not a dictionary, has
                unknown keys, or carries values of the wrong type
        """
        if not isinstance(data, dict):
            raise InvalidArgumentError(
                f"Contact data must be an object, got {type(data).__name__}"
            )

        values: dict[str, Any] = {}
        for key, value in data.items():
            if key in SERVER_MANAGED_FIELDS:
                continue
            if key not in FIELD_MAP:
                raise InvalidArgumentError(f"Unknown contact field: {key}")
            if value is None:
                continue
            values[FIELD_MAP[key]] = cls._validate_field(key, value)

        return cls(**values)

    @staticmethod
    def _validate_field(key: str, value: Any) -> Any:
        """Validate and normalize a single wire field."""
        if key in _STRING_FIELDS:
            if not isinstance(value, str):
                raise InvalidArgumentError(
                    f"{key} must be a string, got {type(value).__name__}"
                )
            value = value.strip()
            if key in _REQUIRED_NAME_FIELDS and not value:
                raise InvalidArgumentError(f"{key} cannot be empty")
            if key == "email":
                value = value.lower()
            return value

        if key == "tags":
            if not isinstance(value, list) or not all(
                isinstance(tag, str) for tag in value
            ):
                raise InvalidArgumentError("tags must be a list of strings")
            return _unique([tag.strip() for tag in value if tag.strip()])

        if key == "categories":
            if not isinstance(value, list):
                raise InvalidArgumentError("categories must be a list")
            categories = []
            for item in value:
                # The mobile client sends {"type": ..., "value": ...} objects
                if isinstance(item, dict):
                    item = item.get("value")
                if not isinstance(item, str):
                    raise InvalidArgumentError(
                        "categories must contain strings or {value} objects"
                    )
                if item.strip():
                    categories.append(item.strip())
            return categories

        if key == "socialProfiles":
            if not isinstance(value, dict):
                raise InvalidArgumentError("socialProfiles must be an object")
            profiles = {}
            for platform, url in value.items():
                if url is None:
                    continue
                if not isinstance(platform, str) or not isinstance(url, str):
                    raise InvalidArgumentError(
                        "socialProfiles must map platform names to URLs"
                    )
                profiles[platform] = url.strip()
            return profiles

        if key == "address":
            address = Address.from_dict(value)
            # An address without parts counts as not provided
            return None if address.is_empty() else address

        if key == "isFavorite":
            if not isinstance(value, bool):
                raise InvalidArgumentError(
                    f"isFavorite must be a boolean, got {type(value).__name__}"
                )
            return value

        if key == "lastSyncedAt":
            try:
                return parse_timestamp(value)
            except ValueError as e:
                raise InvalidArgumentError(f"lastSyncedAt is invalid: {e}") from e

        raise InvalidArgumentError(f"Unknown contact field: {key}")

    def validate_for_create(self) -> None:
        """
        Check that the patch can create a new contact.

        Raises:
            InvalidArgumentError: If firstName or lastName is missing
        """
        missing = [
            name
            for name, attr in (("firstName", "first_name"), ("lastName", "last_name"))
            if not getattr(self, attr)
        ]
        if missing:
            raise InvalidArgumentError(
                f"Missing required contact field: {', '.join(missing)}"
            )

    def is_empty(self) -> bool:
        """Check whether no field was provided."""
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to camelCase wire form containing only provided fields.

        Timestamps are serialized as ISO-8601 strings so the result can be
        stored as JSON.
        """
        result: dict[str, Any] = {}
        for key, attr in FIELD_MAP.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, Address):
                value = value.to_dict()
            elif isinstance(value, datetime):
                value = format_timestamp(value)
            else:
                value = copy.deepcopy(value)
            result[key] = value
        return result


@dataclass
class Contact:
    """
    Stored contact record owned by a single user.

    Attributes:
        id: Unique contact identifier
        user_id: Owning user; every store operation is scoped by it
        first_name: First name (required)
        last_name: Last name (required)
        email: Email address, lower-cased
        phone: Phone number
        company: Company name
        title: Job title
        notes: Free-form notes
        address: Postal address
        tags: Tags with set semantics, in first-seen order
        category: Primary classification label
        categories: All classification labels
        social_profiles: Platform name -> profile URL
        is_favorite: Whether the contact is starred
        last_synced_at: Updated on every mutation
        created_at: Creation time
        updated_at: Last modification time
    """

    id: str
    user_id: str
    first_name: str
    last_name: str

    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[Address] = None
    tags: list[str] = field(default_factory=list)
    category: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    social_profiles: dict[str, str] = field(default_factory=dict)
    is_favorite: bool = False

    last_synced_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        """Full name for display."""
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Contact:
        """
        Create a Contact from its stored camelCase form.

        Args:
            data: Dictionary produced by to_dict()

        Returns:
            Contact instance
        """
        address = data.get("address")
        return cls(
            id=data.get("id") or data.get("_id", ""),
            user_id=data.get("userId", ""),
            first_name=data.get("firstName", ""),
            last_name=data.get("lastName", ""),
            email=data.get("email"),
            phone=data.get("phone"),
            company=data.get("company"),
            title=data.get("title"),
            notes=data.get("notes"),
            address=Address.from_dict(address) if address else None,
            tags=list(data.get("tags") or []),
            category=data.get("category"),
            categories=list(data.get("categories") or []),
            social_profiles=dict(data.get("socialProfiles") or {}),
            is_favorite=bool(data.get("isFavorite", False)),
            last_synced_at=parse_timestamp(data.get("lastSyncedAt")),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to camelCase form with ISO-8601 timestamps.

        Every field is present; unset optional fields are None.
        """
        return {
            "id": self.id,
            "userId": self.user_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "company": self.company,
            "title": self.title,
            "notes": self.notes,
            "address": self.address.to_dict() if self.address else None,
            "tags": list(self.tags),
            "category": self.category,
            "categories": list(self.categories),
            "socialProfiles": dict(self.social_profiles),
            "isFavorite": self.is_favorite,
            "lastSyncedAt": format_timestamp(self.last_synced_at),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    def apply_patch(self, patch: ContactPatch) -> None:
        """
        Overwrite the fields provided by a patch.

        Fields the patch leaves unset keep their current value.
        lastSyncedAt is not copied; the store stamps it on every write.
        """
        for attr in FIELD_MAP.values():
            if attr == "last_synced_at":
                continue
            value = getattr(patch, attr)
            if value is not None:
                setattr(self, attr, copy.deepcopy(value))

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return (
            f"Contact(id={self.id!r}, user_id={self.user_id!r}, "
            f"name={self.display_name!r})"
        )
