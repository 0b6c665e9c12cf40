"""
Orienteer Backend — Map Metadata Schemas
==========================================

What:  Pydantic models for the geocoding data recovered from QuickRoute JPEGs.
Who:   Produced by services/quickroute.py; merged into a runner's map record
       by services/map_service.py; returned by the map upload route.

Serialisation:
    Field names are snake_case in Python and camelCase on the wire
    (isGeocoded, mapCentre, locationSizePixels, ...), which is also the
    shape stored in the `geo` JSON column of a runner map.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class GeoPoint(CamelModel):
    """A WGS84 position in decimal degrees."""
    lat: float
    long: float

    def as_pair(self) -> List[float]:
        """[lat, long], the pair order used for tracks and distance maths."""
        return [self.lat, self.long]


class Corners(CamelModel):
    """Four corners of a rectangle, in QuickRoute's sw, nw, ne, se order."""
    sw: GeoPoint
    nw: GeoPoint
    ne: GeoPoint
    se: GeoPoint

    def centre(self) -> GeoPoint:
        points = (self.sw, self.nw, self.ne, self.se)
        return GeoPoint(
            lat=sum(p.lat for p in points) / 4,
            long=sum(p.long for p in points) / 4,
        )


class PixelBox(CamelModel):
    """Location and size of the map inside the JPEG, in pixels."""
    x: int
    y: int
    width: int
    height: int


class Waypoint(CamelModel):
    lat: float
    long: float
    time: Optional[datetime] = None
    heart_rate: Optional[int] = None
    altitude: int = 0


class RouteSegment(CamelModel):
    waypoints: List[Waypoint] = Field(default_factory=list)

    @property
    def waypoint_count(self) -> int:
        return len(self.waypoints)


class Handle(CamelModel):
    """
    A QuickRoute adjustment handle: a 3×3 row-major transformation matrix
    anchored at a position along the route. Kept raw for downstream use.
    """
    transformation_matrix: List[float]
    segment_index: int
    value: float
    location_x: float
    location_y: float
    type: int


class Lap(CamelModel):
    time: Optional[datetime] = None
    type: str


class SessionInfo(CamelModel):
    name: str = ""
    club: str = ""
    id: int = 0
    description: str = ""


class HandleTransforms(CamelModel):
    """Summary used to correct a track against its handles, per segment."""
    matrices: List[Handle] = Field(default_factory=list)
    segment_lengths: List[int] = Field(default_factory=list)


class Session(CamelModel):
    route: Optional[List[RouteSegment]] = None
    handles: Optional[List[Handle]] = None
    projection_origin: Optional[GeoPoint] = None
    laps: Optional[List[Lap]] = None
    session_info: Optional[SessionInfo] = None
    matrix: Optional[HandleTransforms] = None


class MapMetadata(CamelModel):
    """
    Decoded QuickRoute geocoding for one map image.

    `is_geocoded=False` is the only content for plain photos, non-JPEG
    files, and anything the decoder could not parse completely.
    """
    is_geocoded: bool = False
    version: Optional[str] = None
    map_corners: Optional[Corners] = None
    map_centre: Optional[GeoPoint] = None
    image_corners: Optional[Corners] = None
    location_size_pixels: Optional[PixelBox] = None
    sessions: List[Session] = Field(default_factory=list)
    track: Optional[List[List[float]]] = None
    distance_run: Optional[float] = Field(default=None, description="Track length in km")
    distance_complete: Optional[bool] = Field(
        default=None,
        description="False when some waypoint pairs could not be measured",
    )

    @classmethod
    def not_geocoded(cls) -> "MapMetadata":
        return cls(is_geocoded=False)

    def to_geo(self) -> dict:
        """JSON-ready camelCase dict for the runner map `geo` column."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
