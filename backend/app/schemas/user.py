"""
Orienteer Backend — User Request/Response Schemas
===================================================

What:  API contract for /api/users.
Who:   Route handlers (return types), user_service (response building).

Exposure rules:
    email is only included for the user themself or an admin; every other
    requestor gets `email=None`. Role changes are not part of UserUpdate:
    roles are assigned out of band.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.visibility import Visibility


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ClubSummary(BaseModel):
    id: uuid.UUID
    short_name: str

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """Compact user reference embedded in runners and activity entries."""
    id: uuid.UUID
    display_name: str

    model_config = {"from_attributes": True}


class UserResponse(BaseModel):
    """Full profile returned by GET /api/users/{id} and /api/users/me."""
    id: uuid.UUID = Field(description="Unique user identifier")
    display_name: str = Field(description="Public display name")
    full_name: str = Field(default="", description="Real name")
    about: str = Field(default="", description="Free text profile")
    profile_image: str = Field(default="", description="Path of the profile image, if any")
    email: Optional[str] = Field(default=None, description="Only shown to the user and admins")
    role: str = Field(description="guest, standard or admin")
    visibility: Visibility = Field(description="Who may see this profile")
    active: bool = Field(description="False once the user has been deleted")
    clubs: List[ClubSummary] = Field(default_factory=list)
    created_at: datetime


class UserListResponse(BaseModel):
    users: List[UserSummary] = Field(description="Users visible to the requestor")
    total_count: int = Field(description="Number of users in this response")


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class UserUpdate(BaseModel):
    """PATCH body for a profile; omitted fields are left unchanged."""
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    full_name: Optional[str] = Field(default=None, max_length=255)
    about: Optional[str] = Field(default=None, max_length=5000)
    visibility: Optional[Visibility] = None

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("display_name cannot be blank")
        return v
