"""
Orienteer Backend — Visibility Engine Input Schemas
=====================================================

What:  The two record shapes the visibility engine decides over.
How:   Frozen Pydantic models. "before" validators coerce anything the
       persistence/session layer hands over (UUIDs, lists, unknown strings)
       into the closed vocabulary the rules expect.
Who:   Built by app.dependencies (Requestor) and by the user, event and
       activity services (VisibilitySubject) before calling the engine.

Coercion Policy:
    Unrecognised role      → anonymous  (least trusted)
    Unrecognised visibility → private   (most restrictive)
    Anonymous requestor    → id and clubs discarded
"""

from enum import Enum
from typing import Any, FrozenSet, Iterable, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class Role(str, Enum):
    """Requestor roles, roughly ordered by trust (admin is unconditional)."""
    ANONYMOUS = "anonymous"
    GUEST = "guest"
    STANDARD = "standard"
    ADMIN = "admin"


class Visibility(str, Enum):
    """Who may view a profile or a runner entry."""
    PUBLIC = "public"    # everyone, including anonymous
    ALL = "all"          # any authenticated requestor
    CLUB = "club"        # requestors sharing at least one club
    PRIVATE = "private"  # owner (and admins) only


def coerce_role(value: Any) -> Role:
    try:
        return Role(value)
    except (ValueError, TypeError):
        return Role.ANONYMOUS


def coerce_visibility(value: Any) -> Visibility:
    try:
        return Visibility(value)
    except (ValueError, TypeError):
        return Visibility.PRIVATE


def coerce_club_ids(value: Any) -> FrozenSet[str]:
    if value is None:
        return frozenset()
    if isinstance(value, (str, bytes)):
        return frozenset({str(value)})
    if isinstance(value, Iterable):
        return frozenset(str(club) for club in value if club is not None)
    return frozenset({str(value)})


def _coerce_optional_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class Requestor(BaseModel):
    """
    Identity attributes of whoever is making the request.

    Derived per request by app.dependencies.get_requestor; never persisted.
    """

    role: Role = Field(default=Role.ANONYMOUS, description="Requestor role")
    id: Optional[str] = Field(default=None, description="User ID (None for anonymous)")
    clubs: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="IDs of the clubs the requestor is a member of",
    )

    model_config = {"frozen": True}

    @model_validator(mode="before")
    @classmethod
    def strip_anonymous_identity(cls, data: Any) -> Any:
        if isinstance(data, dict) and coerce_role(data.get("role")) is Role.ANONYMOUS:
            data = {**data, "id": None, "clubs": frozenset()}
        return data

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v: Any) -> Role:
        return coerce_role(v)

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v: Any) -> Optional[str]:
        return _coerce_optional_id(v)

    @field_validator("clubs", mode="before")
    @classmethod
    def validate_clubs(cls, v: Any) -> FrozenSet[str]:
        return coerce_club_ids(v)

    @classmethod
    def anonymous(cls) -> "Requestor":
        return cls(role=Role.ANONYMOUS)

    @property
    def is_anonymous(self) -> bool:
        return self.role is Role.ANONYMOUS

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class VisibilitySubject(BaseModel):
    """
    Visibility attributes of the record being looked at.

    For a user profile, `clubs` are the profile's memberships. For a runner
    entry, `owner_id` is the runner's user and `clubs` are that user's
    memberships (joined in by the event service).
    """

    visibility: Visibility = Field(default=Visibility.PRIVATE)
    owner_id: Optional[str] = Field(default=None)
    clubs: FrozenSet[str] = Field(default_factory=frozenset)
    active: bool = Field(default=True)

    model_config = {"frozen": True}

    @field_validator("visibility", mode="before")
    @classmethod
    def validate_visibility(cls, v: Any) -> Visibility:
        return coerce_visibility(v)

    @field_validator("owner_id", mode="before")
    @classmethod
    def validate_owner_id(cls, v: Any) -> Optional[str]:
        return _coerce_optional_id(v)

    @field_validator("clubs", mode="before")
    @classmethod
    def validate_clubs(cls, v: Any) -> FrozenSet[str]:
        return coerce_club_ids(v)
