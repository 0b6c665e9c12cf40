"""
Orienteer Backend — Map Upload Service
========================================

What:  Attaches an uploaded map image to a runner entry, decoding any
       QuickRoute geocoding it carries.
Who:   Called by POST /api/events/{event_id}/maps/{user_id}/{map_type}.

Upload Flow:
    ┌────────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────┐
    │ Authorise  │───▶│  Validate    │───▶│  Decode      │───▶│  Merge   │
    │ (can_edit) │    │  & Store     │    │  (thread)    │    │  (DB)    │
    └────────────┘    │ (FileService)│    │ (QuickRoute) │    └──────────┘
                      └──────────────┘    └──────────────┘

    - Decoding is CPU-bound and runs in a worker thread so the event loop
      keeps serving other requests.
    - Maps are keyed by title within a runner entry. An upload fills the
      course or route slot of the map with that title, creating the map
      when no map has the title yet, and stamps `<type>_updated`.
    - A file that is not geocoded is still stored and attached. It leaves
      any geo data from an earlier geocoded upload of the same map intact.
    - Geocoded maps seed the event's location (map centre) and its four
      map corners; each value is only written while it is still unset.
    - A geocoded track sets the runner's distance_run (km) when the runner
      has not entered one.
    - Any failure after the file was stored removes the file again.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, OrienteerError
from app.models.event import Event
from app.schemas.activity import ActionType
from app.schemas.event import MapType, MapUploadResponse
from app.schemas.map_metadata import MapMetadata
from app.schemas.visibility import Requestor
from app.services.activity_service import record_activity
from app.services.event_service import event_service, to_map_response
from app.services.file_service import file_service
from app.services.quickroute import decode_map_metadata
from app.services.visibility import ensure_can_edit

logger = logging.getLogger(__name__)

CORNER_NAMES = ("sw", "nw", "ne", "se")


def merge_map_record(
    maps: Optional[List[dict]],
    title: str,
    map_type: MapType,
    image_path: str,
    geo: MapMetadata,
    uploaded_at: datetime,
) -> Tuple[List[dict], dict]:
    """
    Fold one upload into a runner's map list.

    Returns a new list (the input is not modified) and the record that
    now holds the upload.
    """
    map_type = MapType(map_type)
    records = [dict(record) for record in maps or []]
    record = next((r for r in records if r.get("title", "") == title), None)
    if record is None:
        record = {
            "title": title,
            "course": None,
            "course_updated": None,
            "route": None,
            "route_updated": None,
            "is_geocoded": False,
            "geo": None,
        }
        records.append(record)

    record[map_type.value] = image_path
    record[f"{map_type.value}_updated"] = uploaded_at.isoformat()
    if geo.is_geocoded:
        record["is_geocoded"] = True
        record["geo"] = geo.to_geo()
    return records, record


def seed_event_location(event: Event, geo: MapMetadata) -> List[str]:
    """
    Fill the event's centre and corner fields that are still empty.

    Returns:
        Names of the fields that were set.
    """
    seeded = []
    if not geo.is_geocoded:
        return seeded
    if event.location_lat is None and event.location_long is None and geo.map_centre:
        event.location_lat = geo.map_centre.lat
        event.location_long = geo.map_centre.long
        seeded.append("location")
    if geo.map_corners is not None:
        for name in CORNER_NAMES:
            field = f"corner_{name}"
            if not getattr(event, field):
                point = getattr(geo.map_corners, name)
                setattr(event, field, point.as_pair())
                seeded.append(field)
    return seeded


class MapService:

    async def upload_map(
        self,
        db: AsyncSession,
        requestor: Requestor,
        event_id: UUID,
        user_id: UUID,
        map_type: MapType,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
        title: str = "",
    ) -> MapUploadResponse:
        """
        Store, decode and attach one map image.

        Raises:
            NotFoundError: event or runner entry does not exist.
            ForbiddenError: requestor is not the runner (or an admin).
            ValidationError: bad file type or size.
            FileStorageError / DatabaseError: storage or persistence failed.
        """
        event = await event_service.load_event(db, event_id)
        runner = event_service.require_runner(event, user_id)
        ensure_can_edit(requestor, str(runner.user_id), "runner entry")

        absolute_path, relative_path = await file_service.validate_and_store(
            filename=filename,
            content=content,
            content_length=content_length,
        )

        try:
            geo = await asyncio.to_thread(decode_map_metadata, content)
            logger.info(
                "Map %s (%s '%s') for runner %s at event %s: geocoded=%s",
                relative_path,
                MapType(map_type).value,
                title,
                user_id,
                event_id,
                geo.is_geocoded,
            )

            # Reassign so SQLAlchemy sees the JSONB change
            runner.maps, record = merge_map_record(
                runner.maps,
                title,
                map_type,
                relative_path,
                geo,
                datetime.now(timezone.utc),
            )

            if geo.is_geocoded:
                if geo.distance_run is not None and runner.distance_run is None:
                    runner.distance_run = geo.distance_run
                seeded = seed_event_location(event, geo)
                if seeded:
                    logger.info("Event %s seeded from map: %s", event_id, ", ".join(seeded))

            await db.flush()

        except Exception as e:
            await file_service.cleanup_file(absolute_path)
            if isinstance(e, OrienteerError):
                raise
            if isinstance(e, SQLAlchemyError):
                logger.error("Database error attaching map to %s/%s: %s", event_id, user_id, str(e))
                raise DatabaseError(
                    message="Could not save the map. Please try again.",
                    context={"event_id": str(event_id), "user_id": str(user_id)},
                )
            raise

        await record_activity(
            db,
            ActionType.EVENT_MAP_UPLOADED,
            UUID(requestor.id),
            event_id=event.id,
            event_runner_id=runner.user_id,
        )
        return MapUploadResponse(map=to_map_response(record), geo=geo)


# ── Singleton Instance ────────────────────────────────────────────────────
map_service = MapService()
