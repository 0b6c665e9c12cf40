"""
Orienteer Backend — Event Service
===================================

What:  Event lookup with per-requestor runner filtering, and runner entry
       create/update/delete.
Who:   Called by the events router; map_service reuses load_event() and
       find_runner() for map uploads.

Runner entries:
    A runner entry is judged on its own visibility, owned by the runner's
    user, with that user's club memberships joined in. Entries of deleted
    users are dropped from event pages for everyone.

Write access:
    Adding an entry always adds the requestor themself, so it only needs a
    non-guest account. Updating or deleting an entry needs can_edit()
    against the entry's user: the runner, or an admin.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, NotFoundError, ValidationError
from app.models.event import Event, EventRunner
from app.models.user import User
from app.schemas.activity import ActionType
from app.schemas.event import (
    EventResponse,
    RunnerCreate,
    RunnerMapResponse,
    RunnerResponse,
    RunnerUpdate,
)
from app.schemas.user import UserSummary
from app.schemas.visibility import Requestor, Visibility, VisibilitySubject
from app.services.activity_service import record_activity
from app.services.visibility import ensure_can_edit, ensure_can_see, filter_visible

logger = logging.getLogger(__name__)


def runner_subject(runner: EventRunner) -> VisibilitySubject:
    return VisibilitySubject(
        visibility=runner.visibility,
        owner_id=runner.user_id,
        clubs=runner.user.club_ids,
        active=runner.user.active,
    )


def _file_url(path: Optional[str]) -> Optional[str]:
    return f"/api/files/{path}" if path else None


def to_map_response(record: dict) -> RunnerMapResponse:
    return RunnerMapResponse(
        title=record.get("title", ""),
        course_url=_file_url(record.get("course")),
        course_updated=record.get("course_updated"),
        route_url=_file_url(record.get("route")),
        route_updated=record.get("route_updated"),
        is_geocoded=bool(record.get("is_geocoded")),
        geo=record.get("geo"),
    )


def to_runner_response(runner: EventRunner) -> RunnerResponse:
    return RunnerResponse(
        user=UserSummary.model_validate(runner.user),
        visibility=runner_subject(runner).visibility,
        course_title=runner.course_title,
        course_length=runner.course_length,
        time=runner.time,
        place=runner.place,
        distance_run=runner.distance_run,
        maps=[to_map_response(record) for record in runner.maps or []],
    )


class EventService:
    """Business logic for /api/events; stateless, one shared instance."""

    async def load_event(self, db: AsyncSession, event_id: UUID) -> Event:
        """
        Fetch an active event with its runners.

        Raises:
            NotFoundError: no such event, or it has been deleted.
            DatabaseError: the query failed.
        """
        try:
            result = await db.execute(select(Event).where(Event.id == event_id))
            event = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching event %s: %s", event_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the event. Please try again.",
                context={"event_id": str(event_id)},
            )
        if event is None or not event.active:
            raise NotFoundError(resource="event", resource_id=str(event_id))
        return event

    @staticmethod
    def find_runner(event: Event, user_id: UUID) -> Optional[EventRunner]:
        return next((r for r in event.runners if r.user_id == user_id), None)

    def require_runner(self, event: Event, user_id: UUID) -> EventRunner:
        runner = self.find_runner(event, user_id)
        if runner is None:
            raise NotFoundError(resource="runner", resource_id=str(user_id))
        return runner

    async def get_event(self, db: AsyncSession, requestor: Requestor, event_id: UUID) -> EventResponse:
        """Event detail with only the runner entries the requestor may see."""
        try:
            result = await db.execute(select(Event).where(Event.id == event_id))
            event = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching event %s: %s", event_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the event. Please try again.",
                context={"event_id": str(event_id)},
            )
        if event is None:
            raise NotFoundError(resource="event", resource_id=str(event_id))
        # Events have no visibility of their own; only deletion hides them
        ensure_can_see(
            requestor,
            VisibilitySubject(visibility=Visibility.PUBLIC, active=event.active),
            "event",
            str(event_id),
        )

        runners = filter_visible(requestor, ((runner_subject(r), r) for r in event.runners))
        logger.debug(
            "Event %s: %d of %d runners visible to %s",
            event_id,
            len(runners),
            len(event.runners),
            requestor.id,
        )
        return EventResponse(
            id=event.id,
            name=event.name,
            date=event.date,
            location_lat=event.location_lat,
            location_long=event.location_long,
            corner_sw=event.corner_sw,
            corner_nw=event.corner_nw,
            corner_ne=event.corner_ne,
            corner_se=event.corner_se,
            runners=[to_runner_response(r) for r in runners],
        )

    async def add_runner(
        self,
        db: AsyncSession,
        requestor: Requestor,
        event_id: UUID,
        payload: RunnerCreate,
    ) -> RunnerResponse:
        """
        Add the requestor as a runner of an event.

        Raises:
            ForbiddenError: anonymous or guest requestor.
            NotFoundError: event missing or deleted.
            ValidationError: the requestor is already a runner of this event.
        """
        ensure_can_edit(requestor, requestor.id, "runner entry")
        user_id = UUID(requestor.id)
        event = await self.load_event(db, event_id)

        if self.find_runner(event, user_id) is not None:
            raise ValidationError(
                message="You are already a runner at this event.",
                field="user_id",
                context={"event_id": str(event_id)},
            )

        try:
            user = await db.get(User, user_id)
            runner = EventRunner(
                user_id=user_id,
                user=user,
                visibility=payload.visibility.value,
                course_title=payload.course_title,
                course_length=payload.course_length,
                time=payload.time,
                place=payload.place,
                maps=[],
            )
            event.runners.append(runner)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error adding runner to %s: %s", event_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not add the runner. Please try again.",
                context={"event_id": str(event_id)},
            )

        logger.info("Runner %s added to event %s", user_id, event_id)
        await record_activity(
            db,
            ActionType.EVENT_RUNNER_ADDED,
            user_id,
            event_id=event.id,
            event_runner_id=user_id,
        )
        return to_runner_response(runner)

    async def update_runner(
        self,
        db: AsyncSession,
        requestor: Requestor,
        event_id: UUID,
        user_id: UUID,
        payload: RunnerUpdate,
    ) -> RunnerResponse:
        event = await self.load_event(db, event_id)
        runner = self.require_runner(event, user_id)
        ensure_can_edit(requestor, str(runner.user_id), "runner entry")

        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if "visibility" in changes:
            changes["visibility"] = Visibility(changes["visibility"]).value
        try:
            for field, value in changes.items():
                setattr(runner, field, value)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error updating runner %s/%s: %s", event_id, user_id, str(e))
            raise DatabaseError(
                message="Could not update the runner. Please try again.",
                context={"event_id": str(event_id), "user_id": str(user_id)},
            )

        logger.info("Runner %s at event %s updated: %s", user_id, event_id, sorted(changes))
        await record_activity(
            db,
            ActionType.EVENT_RUNNER_UPDATED,
            UUID(requestor.id),
            event_id=event.id,
            event_runner_id=runner.user_id,
        )
        return to_runner_response(runner)

    async def delete_runner(
        self,
        db: AsyncSession,
        requestor: Requestor,
        event_id: UUID,
        user_id: UUID,
    ) -> None:
        event = await self.load_event(db, event_id)
        runner = self.require_runner(event, user_id)
        ensure_can_edit(requestor, str(runner.user_id), "runner entry")

        try:
            event.runners.remove(runner)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error deleting runner %s/%s: %s", event_id, user_id, str(e))
            raise DatabaseError(
                message="Could not delete the runner. Please try again.",
                context={"event_id": str(event_id), "user_id": str(user_id)},
            )

        logger.info("Runner %s removed from event %s", user_id, event_id)
        await record_activity(
            db,
            ActionType.EVENT_RUNNER_DELETED,
            UUID(requestor.id),
            event_id=event.id,
            event_runner_id=user_id,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
event_service = EventService()
