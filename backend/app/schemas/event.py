"""
Orienteer Backend — Event Request/Response Schemas
====================================================

What:  API contract for /api/events, runner entries and map uploads.
Who:   events router, event_service, map_service.

Runner filtering:
    EventResponse.runners only ever contains the runner entries the
    requestor may see; hidden entries are dropped, never masked.
"""

import uuid
from datetime import date as _date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.map_metadata import MapMetadata
from app.schemas.user import UserSummary
from app.schemas.visibility import Visibility


class MapType(str, Enum):
    """Which image of a map an upload fills in."""
    COURSE = "course"  # blank map with the course printed on it
    ROUTE = "route"    # the same map with the route run drawn in


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class RunnerMapResponse(BaseModel):
    """
    One map attached to a runner entry.

    A map has up to two images, the course and the route, each uploaded
    separately under the same title. `geo` is the camelCase QuickRoute
    metadata dict from the most recent geocoded upload.
    """
    title: str = Field(default="", description="Map title, e.g. course or leg name")
    course_url: Optional[str] = Field(default=None, description="URL path to the course image")
    course_updated: Optional[datetime] = None
    route_url: Optional[str] = Field(default=None, description="URL path to the route image")
    route_updated: Optional[datetime] = None
    is_geocoded: bool = Field(default=False)
    geo: Optional[dict] = Field(default=None, description="Decoded QuickRoute metadata")


class RunnerResponse(BaseModel):
    user: UserSummary
    visibility: Visibility
    course_title: str = ""
    course_length: Optional[float] = None
    time: str = ""
    place: Optional[int] = None
    distance_run: Optional[float] = Field(default=None, description="Distance run in km")
    maps: List[RunnerMapResponse] = Field(default_factory=list)


class EventResponse(BaseModel):
    id: uuid.UUID
    name: str
    date: Optional[_date] = None
    location_lat: Optional[float] = None
    location_long: Optional[float] = None
    # [lat, long] of each corner of the event's map area
    corner_sw: Optional[List[float]] = None
    corner_nw: Optional[List[float]] = None
    corner_ne: Optional[List[float]] = None
    corner_se: Optional[List[float]] = None
    runners: List[RunnerResponse] = Field(
        default_factory=list,
        description="Runner entries visible to the requestor",
    )


class MapUploadResponse(BaseModel):
    """Returned by POST /api/events/{event_id}/maps/{user_id}/{map_type} with 201 Created."""
    message: str = Field(default="Map uploaded successfully")
    map: RunnerMapResponse
    geo: MapMetadata = Field(description="Decoder output for the uploaded image")


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class RunnerCreate(BaseModel):
    """Body for adding the requestor as a runner; visibility defaults to private."""
    visibility: Visibility = Visibility.PRIVATE
    course_title: str = Field(default="", max_length=100)
    course_length: Optional[float] = Field(default=None, ge=0)
    time: str = Field(default="", max_length=20)
    place: Optional[int] = Field(default=None, ge=1)


class RunnerUpdate(BaseModel):
    """PATCH body for a runner entry; omitted fields are left unchanged."""
    visibility: Optional[Visibility] = None
    course_title: Optional[str] = Field(default=None, max_length=100)
    course_length: Optional[float] = Field(default=None, ge=0)
    time: Optional[str] = Field(default=None, max_length=20)
    place: Optional[int] = Field(default=None, ge=1)
