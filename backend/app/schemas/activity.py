"""
Orienteer Backend — Activity Schemas
======================================

What:  The ActionType vocabulary, the ActivityView the feed rules read, and
       the response model for GET /api/activity.
Who:   activity_service (recording and filtering), services that mutate
       data (recording), the activity router.

ActivityView vs. the ORM row:
    The feed rules never touch SQLAlchemy objects. activity_service turns
    each Activity row into an ActivityView holding only what the rules
    read (active flags, visibility, club ids, runner visibility inside the
    referenced event), which keeps the rules testable without a database.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.schemas.user import UserSummary
from app.schemas.visibility import Visibility, coerce_club_ids, coerce_visibility


class ActionType(str, Enum):
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    CLUB_CREATED = "CLUB_CREATED"
    CLUB_UPDATED = "CLUB_UPDATED"
    CLUB_DELETED = "CLUB_DELETED"
    EVENT_CREATED = "EVENT_CREATED"
    EVENT_UPDATED = "EVENT_UPDATED"
    EVENT_DELETED = "EVENT_DELETED"
    EVENT_LINK_CREATED = "EVENT_LINK_CREATED"
    EVENT_LINK_UPDATED = "EVENT_LINK_UPDATED"
    EVENT_LINK_DELETED = "EVENT_LINK_DELETED"
    EVENT_RUNNER_ADDED = "EVENT_RUNNER_ADDED"
    EVENT_RUNNER_UPDATED = "EVENT_RUNNER_UPDATED"
    EVENT_RUNNER_DELETED = "EVENT_RUNNER_DELETED"
    EVENT_MAP_UPLOADED = "EVENT_MAP_UPLOADED"
    EVENT_MAP_DELETED = "EVENT_MAP_DELETED"
    COMMENT_POSTED = "COMMENT_POSTED"
    COMMENT_UPDATED = "COMMENT_UPDATED"
    COMMENT_DELETED = "COMMENT_DELETED"


# ── Rule inputs ───────────────────────────────────────────────────────────


class ClubRef(BaseModel):
    id: str
    active: bool = True


class EventRef(BaseModel):
    id: str
    active: bool = True
    # user id -> visibility of that user's runner entry, as it is now
    runner_visibility: Dict[str, Visibility] = Field(default_factory=dict)

    @field_validator("runner_visibility", mode="before")
    @classmethod
    def validate_runner_visibility(cls, v: Any) -> Dict[str, Visibility]:
        if not v:
            return {}
        return {str(user_id): coerce_visibility(vis) for user_id, vis in dict(v).items()}


class UserRef(BaseModel):
    id: str
    active: bool = True
    visibility: Visibility = Visibility.PRIVATE
    clubs: FrozenSet[str] = frozenset()

    @field_validator("visibility", mode="before")
    @classmethod
    def validate_visibility(cls, v: Any) -> Visibility:
        return coerce_visibility(v)

    @field_validator("clubs", mode="before")
    @classmethod
    def validate_clubs(cls, v: Any) -> FrozenSet[str]:
        return coerce_club_ids(v)


class EventLinkRef(BaseModel):
    id: str


class ActivityView(BaseModel):
    """Everything the feed rules need to decide on one activity entry."""
    id: str
    action_type: str
    action_by: str
    timestamp: datetime
    club: Optional[ClubRef] = None
    event: Optional[EventRef] = None
    event_runner: Optional[UserRef] = None
    event_link: Optional[EventLinkRef] = None
    user: Optional[UserRef] = None
    comment_id: Optional[str] = None

    model_config = {"frozen": True}


# ── API ───────────────────────────────────────────────────────────────────


class ActivityResponse(BaseModel):
    id: uuid.UUID
    action_type: str
    action_by: UserSummary
    timestamp: datetime
    club_id: Optional[uuid.UUID] = None
    event_id: Optional[uuid.UUID] = None
    event_runner_id: Optional[uuid.UUID] = None
    event_link_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    comment_id: Optional[uuid.UUID] = None


class ActivityListResponse(BaseModel):
    activities: List[ActivityResponse] = Field(description="Newest first")


class ActivityFilter(BaseModel):
    """
    Optional narrowing of the feed, applied before the visibility rules.

    Id fields are kept as raw strings; an id that is not a UUID matches
    no activity.
    """
    action_type: Optional[str] = None
    action_by: Optional[str] = None
    club: Optional[str] = None
    comment: Optional[str] = None
    event: Optional[str] = None
    event_runner: Optional[str] = None
    linked_event: Optional[str] = None
    user: Optional[str] = None
