"""
Orienteer Backend — QuickRoute Map Metadata Decoder
=====================================================

What:  Recovers map geocoding (corner coordinates, pixel box, GPS track,
       laps, session info) from JPEG map exports made by QuickRoute.
How:   Recursive descent over an explicit, bounds-checked byte cursor.
       Every section is dispatched on its leading tag byte to a handler
       that reads only inside the section's declared length.
Who:   services/map_service.py, on a worker thread, for each uploaded map.

File Layout:
    JPEG
    ├── FFD8 SOI
    ├── FFE0 APP0 "JFIF\\0"      standard header + RGB thumbnail (skipped)
    ├── FFE0 APP0 "QuickRoute"   ← proprietary container
    │   ├── [1]  version            4 bytes, dot-joined
    │   ├── [2]  map corners        8 × int32 LE (degrees × 3,600,000)
    │   ├── [3]  image corners      8 × int32 LE
    │   ├── [4]  location & size    4 × uint16 LE (x, y, width, height)
    │   └── [5]  sessions           uint32 count, then tagged sections
    │        └── [6] session        sub-sections until 0xFF / end
    │             ├── [7]  route             waypoint segments
    │             ├── [8]  handles           transformation matrices
    │             ├── [9]  projection origin long/lat
    │             ├── [10] laps              timestamps + lap type
    │             └── [11] session info      name, club, id, description
    ├── ... other segments (skipped by length)
    └── FFDA SOS                  scanning stops here

    Every QuickRoute section is: tag (uint8) + length (uint32 LE) + body.
    Unknown tags are skipped by their length.

Failure Policy:
    Uploaded files are untrusted. Any structural problem raises
    MapDecodeError internally; decode_map_metadata() converts it into
    MapMetadata(is_geocoded=False). There is no partial result.
"""

import logging
import math
import struct
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.exceptions import MapDecodeError
from app.schemas.map_metadata import (
    Corners,
    GeoPoint,
    Handle,
    HandleTransforms,
    Lap,
    MapMetadata,
    PixelBox,
    RouteSegment,
    Session,
    SessionInfo,
    Waypoint,
)
from app.services.geo import TrackDistance, track_distance

logger = logging.getLogger(__name__)

# ── JPEG markers ──────────────────────────────────────────────────────────
SOI = 0xFFD8
EOI = 0xFFD9
SOS = 0xFFDA
APP0 = 0xFFE0
TEM = 0xFF01
# Markers with no length field
STANDALONE_MARKERS = {SOI, TEM} | set(range(0xFFD0, 0xFFD8))

JFIF_IDENTIFIER = b"JFIF\x00"
QUICKROUTE_IDENTIFIER = b"QuickRoute"

# ── QuickRoute tags ───────────────────────────────────────────────────────
TAG_VERSION = 1
TAG_MAP_CORNERS = 2
TAG_IMAGE_CORNERS = 3
TAG_LOCATION_SIZE = 4
TAG_SESSIONS = 5
TAG_SESSION = 6
TAG_ROUTE = 7
TAG_HANDLES = 8
TAG_PROJECTION_ORIGIN = 9
TAG_LAPS = 10
TAG_SESSION_INFO = 11

SECTION_SENTINEL = 0xFF

# Fixed-point scale of every QuickRoute coordinate
COORDINATE_SCALE = 3_600_000

# Route attribute mask for position + time + altitude (no heart rate)
REDUCED_WAYPOINT_ATTRIBUTES = 11

TIME_ABSOLUTE = 0

# .NET ticks since 0001-01-01 → Unix epoch milliseconds
TICKS_HIGH_KIND_LIMIT = 2 ** 30 - 1
TICKS_HIGH_KIND_OFFSET = 2 ** 30
MS_PER_HIGH_WORD = 429_496.7296
TICKS_PER_MS = 10_000
DOTNET_EPOCH_OFFSET_MS = 62_135_596_800_000
UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

LAP_TYPES = {0: "start", 1: "intermediate", 2: "end"}

# Smallest possible encodings, used to reject absurd counts early
MIN_WAYPOINT_BYTES = 4 + 4 + 1 + 2 + 2
HANDLE_BYTES = 9 * 8 + 4 + 8 + 8 + 8 + 2
LAP_BYTES = 8 + 1
MIN_SECTION_BYTES = 1 + 4

_U16BE = struct.Struct(">H")
_U8 = struct.Struct("<B")
_U16LE = struct.Struct("<H")
_U32LE = struct.Struct("<I")
_I32LE = struct.Struct("<i")
_F64LE = struct.Struct("<d")

SectionHandler = Callable[["ByteCursor"], Any]


# ══════════════════════════════════════════════════════════════════════════
# Byte Cursor
# ══════════════════════════════════════════════════════════════════════════

class ByteCursor:
    """
    Read position over a window [start, end) of an immutable buffer.

    Every read checks the window first and raises MapDecodeError instead
    of reading past it, so a corrupt length can never reach outside the
    section (or the file) it claims to describe.
    """

    def __init__(self, data: bytes, start: int = 0, end: Optional[int] = None):
        end = len(data) if end is None else end
        if not 0 <= start <= end <= len(data):
            raise MapDecodeError(
                "Window lies outside the buffer",
                offset=start,
                context={"end": end, "size": len(data)},
            )
        self._data = data
        self.offset = start
        self.end = end

    @property
    def remaining(self) -> int:
        return self.end - self.offset

    def at_end(self) -> bool:
        return self.offset >= self.end

    def _claim(self, size: int) -> int:
        if size < 0 or size > self.remaining:
            raise MapDecodeError(
                f"Read of {size} bytes overruns section ({self.remaining} left)",
                offset=self.offset,
            )
        start = self.offset
        self.offset += size
        return start

    def _unpack(self, fmt: struct.Struct):
        start = self._claim(fmt.size)
        return fmt.unpack_from(self._data, start)[0]

    def peek_u8(self) -> Optional[int]:
        if self.at_end():
            return None
        return self._data[self.offset]

    def startswith(self, prefix: bytes) -> bool:
        return self._data.startswith(prefix, self.offset, self.end)

    def u8(self) -> int:
        return self._unpack(_U8)

    def u16be(self) -> int:
        return self._unpack(_U16BE)

    def u16le(self) -> int:
        return self._unpack(_U16LE)

    def u32le(self) -> int:
        return self._unpack(_U32LE)

    def i32le(self) -> int:
        return self._unpack(_I32LE)

    def f64le(self) -> float:
        return self._unpack(_F64LE)

    def finite_f64le(self) -> float:
        """A double that must be a real number (no NaN or infinity)."""
        offset = self.offset
        value = self.f64le()
        if not math.isfinite(value):
            raise MapDecodeError(f"Non-finite double {value!r}", offset=offset)
        return value

    def read_bytes(self, size: int) -> bytes:
        start = self._claim(size)
        return self._data[start:start + size]

    def skip(self, size: int) -> None:
        self._claim(size)

    def read_string(self, size: int) -> str:
        return self.read_bytes(size).decode("utf-8", errors="replace")

    def window(self, size: int) -> "ByteCursor":
        """Carve the next `size` bytes off as a bounded cursor and move past them."""
        start = self._claim(size)
        return ByteCursor(self._data, start, start + size)

    def check_count(self, count: int, item_size: int, what: str) -> int:
        """Reject a count whose items cannot possibly fit in what is left."""
        if count * item_size > self.remaining:
            raise MapDecodeError(
                f"{what} count {count} cannot fit in {self.remaining} bytes",
                offset=self.offset,
            )
        return count


# ══════════════════════════════════════════════════════════════════════════
# Field Decoders
# ══════════════════════════════════════════════════════════════════════════

def _coordinate(cursor: ByteCursor) -> float:
    return cursor.i32le() / COORDINATE_SCALE


def _read_position(cursor: ByteCursor) -> GeoPoint:
    long = _coordinate(cursor)
    lat = _coordinate(cursor)
    return GeoPoint(lat=lat, long=long)


def ticks_to_datetime(low: int, high: int) -> datetime:
    """
    Convert a .NET DateTime.ToBinary() value, split into two uint32 halves,
    into an aware UTC datetime. The top bits of `high` carry DateTimeKind.
    """
    if high > TICKS_HIGH_KIND_LIMIT:
        high -= TICKS_HIGH_KIND_OFFSET
    milliseconds = high * MS_PER_HIGH_WORD + low / TICKS_PER_MS
    return UNIX_EPOCH + timedelta(milliseconds=milliseconds - DOTNET_EPOCH_OFFSET_MS)


def _read_absolute_time(cursor: ByteCursor) -> datetime:
    low = cursor.u32le()
    high = cursor.u32le()
    return ticks_to_datetime(low, high)


def _read_waypoint_time(
    cursor: ByteCursor, previous: Optional[datetime]
) -> Optional[datetime]:
    """Tagged union: 0 → absolute ticks, anything else → uint16 ms since the previous fix."""
    discriminator = cursor.u8()
    if discriminator == TIME_ABSOLUTE:
        return _read_absolute_time(cursor)
    delta_ms = cursor.u16le()
    if previous is None:
        return None
    return previous + timedelta(milliseconds=delta_ms)


# ══════════════════════════════════════════════════════════════════════════
# Top-level Section Handlers
# ══════════════════════════════════════════════════════════════════════════

def _read_version(cursor: ByteCursor) -> str:
    return ".".join(str(part) for part in cursor.read_bytes(4))


def _read_corners(cursor: ByteCursor) -> Corners:
    sw = _read_position(cursor)
    nw = _read_position(cursor)
    ne = _read_position(cursor)
    se = _read_position(cursor)
    return Corners(sw=sw, nw=nw, ne=ne, se=se)


def _read_location_size(cursor: ByteCursor) -> PixelBox:
    return PixelBox(
        x=cursor.u16le(),
        y=cursor.u16le(),
        width=cursor.u16le(),
        height=cursor.u16le(),
    )


def _read_sessions(cursor: ByteCursor) -> List[Session]:
    count = cursor.check_count(cursor.u32le(), MIN_SECTION_BYTES, "Session")
    sessions = []
    for _ in range(count):
        tag = cursor.u8()
        body = cursor.window(cursor.u32le())
        if tag == TAG_SESSION:
            sessions.append(_read_session(body))
        else:
            logger.debug("Skipping session-list tag %d (%d bytes)", tag, body.remaining)
    return sessions


# ══════════════════════════════════════════════════════════════════════════
# Session Sub-section Handlers
# ══════════════════════════════════════════════════════════════════════════

def _read_route(cursor: ByteCursor) -> List[RouteSegment]:
    attributes = cursor.u16le()
    extra_bytes_per_waypoint = cursor.u16le()
    has_heart_rate = attributes != REDUCED_WAYPOINT_ATTRIBUTES
    waypoint_size = MIN_WAYPOINT_BYTES + extra_bytes_per_waypoint + (1 if has_heart_rate else 0)

    segment_count = cursor.check_count(cursor.u32le(), 4, "Segment")
    segments = []
    previous_time: Optional[datetime] = None
    for _ in range(segment_count):
        waypoint_count = cursor.check_count(cursor.u32le(), waypoint_size, "Waypoint")
        waypoints = []
        for _ in range(waypoint_count):
            position = _read_position(cursor)
            time = _read_waypoint_time(cursor, previous_time)
            heart_rate = cursor.u8() if has_heart_rate else None
            altitude = cursor.u16le()
            cursor.skip(extra_bytes_per_waypoint)
            waypoints.append(Waypoint(
                lat=position.lat,
                long=position.long,
                time=time,
                heart_rate=heart_rate,
                altitude=altitude,
            ))
            previous_time = time
        segments.append(RouteSegment(waypoints=waypoints))
    return segments


def _read_handles(cursor: ByteCursor) -> List[Handle]:
    count = cursor.check_count(cursor.u32le(), HANDLE_BYTES, "Handle")
    handles = []
    for _ in range(count):
        matrix = [cursor.finite_f64le() for _ in range(9)]
        handles.append(Handle(
            transformation_matrix=matrix,
            segment_index=cursor.u32le(),
            value=cursor.finite_f64le(),
            location_x=cursor.finite_f64le(),
            location_y=cursor.finite_f64le(),
            type=cursor.u16le(),
        ))
    return handles


def _read_projection_origin(cursor: ByteCursor) -> GeoPoint:
    return _read_position(cursor)


def _read_laps(cursor: ByteCursor) -> List[Lap]:
    count = cursor.check_count(cursor.u32le(), LAP_BYTES, "Lap")
    laps = []
    for _ in range(count):
        time = _read_absolute_time(cursor)
        lap_type = cursor.u8()
        laps.append(Lap(time=time, type=LAP_TYPES.get(lap_type, "unknown")))
    return laps


def _read_session_info(cursor: ByteCursor) -> SessionInfo:
    name = cursor.read_string(cursor.u16le())
    club = cursor.read_string(cursor.u16le())
    session_id = cursor.u32le()
    description = cursor.read_string(cursor.u16le())
    return SessionInfo(name=name, club=club, id=session_id, description=description)


# tag → (Session field, handler)
SESSION_SECTIONS: Dict[int, Tuple[str, SectionHandler]] = {
    TAG_ROUTE: ("route", _read_route),
    TAG_HANDLES: ("handles", _read_handles),
    TAG_PROJECTION_ORIGIN: ("projection_origin", _read_projection_origin),
    TAG_LAPS: ("laps", _read_laps),
    TAG_SESSION_INFO: ("session_info", _read_session_info),
}

# tag → (MapMetadata field, handler)
CONTAINER_SECTIONS: Dict[int, Tuple[str, SectionHandler]] = {
    TAG_VERSION: ("version", _read_version),
    TAG_MAP_CORNERS: ("map_corners", _read_corners),
    TAG_IMAGE_CORNERS: ("image_corners", _read_corners),
    TAG_LOCATION_SIZE: ("location_size_pixels", _read_location_size),
    TAG_SESSIONS: ("sessions", _read_sessions),
}


def _read_tagged_sections(
    cursor: ByteCursor,
    handlers: Dict[int, Tuple[str, SectionHandler]],
) -> dict:
    """
    Read tag + length + body sections until the window ends or the next
    byte is the 0xFF sentinel. Known tags are decoded inside their own
    window; unknown tags are skipped by length.
    """
    fields: dict = {}
    while not cursor.at_end() and cursor.peek_u8() != SECTION_SENTINEL:
        tag = cursor.u8()
        body = cursor.window(cursor.u32le())
        entry = handlers.get(tag)
        if entry is None:
            logger.debug("Skipping unknown QuickRoute tag %d (%d bytes)", tag, body.remaining)
            continue
        field_name, handler = entry
        fields[field_name] = handler(body)
    return fields


def _read_session(cursor: ByteCursor) -> Session:
    session = Session(**_read_tagged_sections(cursor, SESSION_SECTIONS))
    if session.route is not None and session.handles is not None:
        session.matrix = HandleTransforms(
            matrices=session.handles,
            segment_lengths=[segment.waypoint_count for segment in session.route],
        )
    return session


# ══════════════════════════════════════════════════════════════════════════
# JPEG Segment Walk
# ══════════════════════════════════════════════════════════════════════════

def _skip_jfif(cursor: ByteCursor) -> None:
    """Validate the JFIF header and its embedded thumbnail, then discard them."""
    cursor.skip(len(JFIF_IDENTIFIER))
    cursor.u8()  # version major
    cursor.u8()  # version minor
    cursor.u8()  # density units
    cursor.u16be()  # horizontal density
    cursor.u16be()  # vertical density
    thumb_width = cursor.u8()
    thumb_height = cursor.u8()
    cursor.skip(3 * thumb_width * thumb_height)


def _read_app0(cursor: ByteCursor) -> Optional[dict]:
    """Returns decoded QuickRoute fields, or None for any other APP0 payload."""
    if cursor.startswith(JFIF_IDENTIFIER):
        _skip_jfif(cursor)
        return None
    if cursor.startswith(QUICKROUTE_IDENTIFIER):
        cursor.skip(len(QUICKROUTE_IDENTIFIER))
        return _read_tagged_sections(cursor, CONTAINER_SECTIONS)
    return None


def find_quickroute_sections(buffer: bytes) -> List[dict]:
    """
    Walk the JPEG segments up to Start-Of-Scan and decode every QuickRoute
    APP0 container found on the way.

    Raises:
        MapDecodeError: not a JPEG, bad marker, or a length that overruns.
    """
    cursor = ByteCursor(buffer)
    if cursor.remaining < 2 or cursor.u16be() != SOI:
        raise MapDecodeError("Missing JPEG Start-Of-Image marker", offset=0)

    containers = []
    while not cursor.at_end():
        marker = cursor.u16be()
        if marker >> 8 != 0xFF:
            raise MapDecodeError(
                f"Expected a JPEG marker, found 0x{marker:04X}",
                offset=cursor.offset - 2,
            )
        if marker in (SOS, EOI):
            break
        if marker in STANDALONE_MARKERS:
            continue
        length = cursor.u16be()
        if length < 2:
            raise MapDecodeError(f"Segment length {length} is too short", offset=cursor.offset - 2)
        payload = cursor.window(length - 2)
        if marker == APP0:
            fields = _read_app0(payload)
            if fields is not None:
                containers.append(fields)
    return containers


# ══════════════════════════════════════════════════════════════════════════
# Public API
# ══════════════════════════════════════════════════════════════════════════

def _first_route(sessions: List[Session]) -> Optional[List[RouteSegment]]:
    for session in sessions:
        if session.route:
            return session.route
    return None


def _build_metadata(fields: dict) -> MapMetadata:
    metadata = MapMetadata(is_geocoded=True, **fields)
    metadata.map_centre = metadata.map_corners.centre()

    route = _first_route(metadata.sessions)
    if route is not None:
        metadata.track = [
            [waypoint.lat, waypoint.long]
            for segment in route
            for waypoint in segment.waypoints
        ]
        # Segments are measured separately: there is no movement recorded
        # across the gap between two segments
        total = TrackDistance()
        for segment in route:
            distance = track_distance([w.lat, w.long] for w in segment.waypoints)
            total.metres += distance.metres
            total.skipped_pairs += distance.skipped_pairs
        metadata.distance_run = total.kilometres
        metadata.distance_complete = total.complete
    return metadata


def decode_map_metadata(buffer: bytes) -> MapMetadata:
    """
    Decode QuickRoute geocoding from a JPEG file's bytes.

    Returns:
        MapMetadata with is_geocoded=True when exactly one QuickRoute
        container with map corners was found and every section decoded;
        MapMetadata(is_geocoded=False) otherwise. Never raises.
    """
    if not buffer or buffer[:2] != b"\xff\xd8":
        return MapMetadata.not_geocoded()

    try:
        containers = find_quickroute_sections(buffer)
        if len(containers) != 1:
            logger.debug("Found %d QuickRoute containers; treating map as not geocoded", len(containers))
            return MapMetadata.not_geocoded()
        fields = containers[0]
        if "map_corners" not in fields:
            logger.debug("QuickRoute container has no map corners")
            return MapMetadata.not_geocoded()
        return _build_metadata(fields)
    except MapDecodeError as e:
        logger.debug("QuickRoute decode failed at offset %s: %s", e.offset, e.message)
    except (struct.error, ValueError, OverflowError) as e:
        logger.debug("QuickRoute decode failed: %s: %s", type(e).__name__, str(e))
    return MapMetadata.not_geocoded()
