"""
Orienteer Backend — Activity Service
======================================

What:  Records the audit trail of mutating actions and builds the
       per-requestor activity feed from it.
Who:   record_activity() is called by the user, event and map services
       after each successful change; the activity router calls list_feed().

Feed rules (first match wins):
    admin                                      → included
    author of the action                       → included
    anonymous                                  → excluded
    active club  + CLUB_CREATED/UPDATED        → included
    active event + EVENT_CREATED/UPDATED       → included
    active event + runner action               → runner entry passes can_see
    event link   + EVENT_LINK_CREATED/UPDATED  → included
    active user  + USER_CREATED/UPDATED        → profile passes can_see
    anything else (all *_DELETED included)     → excluded

Runner entries are evaluated against the event's *current* runner list:
an entry made private later hides its past activities too, and a runner
that has since been removed counts as private.
"""

import logging
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import ColumnElement, desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import DatabaseError
from app.models.activity import Activity
from app.models.event import Event
from app.models.user import User
from app.schemas.activity import (
    ActionType,
    ActivityFilter,
    ActivityListResponse,
    ActivityResponse,
    ActivityView,
    ClubRef,
    EventLinkRef,
    EventRef,
    UserRef,
)
from app.schemas.user import UserSummary
from app.schemas.visibility import Requestor, Visibility, VisibilitySubject
from app.services.visibility import can_see

logger = logging.getLogger(__name__)

__all__ = [
    "ActionType",
    "ActivityService",
    "activity_service",
    "can_see_activity",
    "filter_activities",
    "filter_clauses",
    "record_activity",
]

CLUB_ACTIONS = frozenset({ActionType.CLUB_CREATED, ActionType.CLUB_UPDATED})
EVENT_ACTIONS = frozenset({ActionType.EVENT_CREATED, ActionType.EVENT_UPDATED})
RUNNER_ACTIONS = frozenset({
    ActionType.EVENT_RUNNER_ADDED,
    ActionType.EVENT_RUNNER_UPDATED,
    ActionType.EVENT_MAP_UPLOADED,
    ActionType.COMMENT_POSTED,
    ActionType.COMMENT_UPDATED,
})
EVENT_LINK_ACTIONS = frozenset({ActionType.EVENT_LINK_CREATED, ActionType.EVENT_LINK_UPDATED})
USER_ACTIONS = frozenset({ActionType.USER_CREATED, ActionType.USER_UPDATED})

ACTIVITY_REFERENCES = frozenset({
    "club_id",
    "event_id",
    "event_runner_id",
    "event_link_id",
    "user_id",
    "comment_id",
})


# ══════════════════════════════════════════════════════════════════════════
# Feed rules
# ══════════════════════════════════════════════════════════════════════════


def can_see_activity(requestor: Requestor, activity: ActivityView) -> bool:
    """Whether `activity` belongs in the requestor's feed."""
    if requestor.is_admin:
        return True
    if requestor.id is not None and activity.action_by == requestor.id:
        return True
    if requestor.is_anonymous:
        return False

    action = activity.action_type

    if activity.club is not None and activity.club.active and action in CLUB_ACTIONS:
        return True

    event = activity.event
    if event is not None and event.active:
        if action in EVENT_ACTIONS:
            return True
        runner = activity.event_runner
        if runner is not None and action in RUNNER_ACTIONS:
            subject = VisibilitySubject(
                visibility=event.runner_visibility.get(runner.id, Visibility.PRIVATE),
                owner_id=runner.id,
                clubs=runner.clubs,
            )
            return can_see(requestor, subject)

    if activity.event_link is not None and action in EVENT_LINK_ACTIONS:
        return True

    user = activity.user
    if user is not None and user.active and action in USER_ACTIONS:
        subject = VisibilitySubject(
            visibility=user.visibility,
            owner_id=user.id,
            clubs=user.clubs,
        )
        return can_see(requestor, subject)

    return False


def filter_activities(
    requestor: Requestor,
    activities: Iterable[ActivityView],
    limit: Optional[int] = None,
) -> List[ActivityView]:
    """Visible activities, newest first, truncated to `limit` when given."""
    visible = [a for a in activities if can_see_activity(requestor, a)]
    visible.sort(key=lambda a: a.timestamp, reverse=True)
    if limit is not None:
        visible = visible[:max(limit, 0)]
    return visible


# ══════════════════════════════════════════════════════════════════════════
# ORM → rule input
# ══════════════════════════════════════════════════════════════════════════


def _user_ref(user: User) -> UserRef:
    return UserRef(
        id=str(user.id),
        active=user.active,
        visibility=user.visibility,
        clubs=frozenset(user.club_ids),
    )


def _event_ref(event: Event) -> EventRef:
    return EventRef(
        id=str(event.id),
        active=event.active,
        runner_visibility={str(r.user_id): r.visibility for r in event.runners},
    )


def to_view(activity: Activity) -> ActivityView:
    """Flatten an Activity row and its loaded references into an ActivityView."""
    return ActivityView(
        id=str(activity.id),
        action_type=activity.action_type,
        action_by=str(activity.action_by_id),
        timestamp=activity.timestamp,
        club=(
            ClubRef(id=str(activity.club.id), active=activity.club.active)
            if activity.club is not None else None
        ),
        event=_event_ref(activity.event) if activity.event is not None else None,
        event_runner=_user_ref(activity.event_runner) if activity.event_runner is not None else None,
        event_link=(
            EventLinkRef(id=str(activity.event_link.id))
            if activity.event_link is not None else None
        ),
        user=_user_ref(activity.user) if activity.user is not None else None,
        comment_id=str(activity.comment_id) if activity.comment_id else None,
    )


def _to_response(activity: Activity) -> ActivityResponse:
    return ActivityResponse(
        id=activity.id,
        action_type=activity.action_type,
        action_by=UserSummary.model_validate(activity.action_by),
        timestamp=activity.timestamp,
        club_id=activity.club_id,
        event_id=activity.event_id,
        event_runner_id=activity.event_runner_id,
        event_link_id=activity.event_link_id,
        user_id=activity.user_id,
        comment_id=activity.comment_id,
    )


# ══════════════════════════════════════════════════════════════════════════
# Feed filters
# ══════════════════════════════════════════════════════════════════════════


FILTER_COLUMNS = {
    "action_by": Activity.action_by_id,
    "club": Activity.club_id,
    "comment": Activity.comment_id,
    "event": Activity.event_id,
    "event_runner": Activity.event_runner_id,
    "linked_event": Activity.event_link_id,
    "user": Activity.user_id,
}


def filter_clauses(filters: Optional[ActivityFilter]) -> Optional[List[ColumnElement[bool]]]:
    """
    WHERE clauses for the requested feed filters.

    Returns None when an id filter is not a valid UUID, since such a
    filter can match no activity.
    """
    clauses: List[ColumnElement[bool]] = []
    if filters is None:
        return clauses
    if filters.action_type:
        clauses.append(Activity.action_type == filters.action_type)
    for name, column in FILTER_COLUMNS.items():
        value = getattr(filters, name)
        if not value:
            continue
        try:
            clauses.append(column == UUID(value))
        except ValueError:
            return None
    return clauses


# ══════════════════════════════════════════════════════════════════════════
# Recording
# ══════════════════════════════════════════════════════════════════════════


async def record_activity(
    db: AsyncSession,
    action_type: ActionType,
    action_by: UUID,
    **refs: Optional[UUID],
) -> Optional[Activity]:
    """
    Append one activity entry.

    Runs inside a SAVEPOINT so a failed insert is rolled back on its own
    and the surrounding request transaction stays usable. Failures are
    logged and swallowed: the action being audited has already happened.

    Returns:
        The new Activity, or None when recording failed.
    """
    try:
        unknown = set(refs) - ACTIVITY_REFERENCES
        if unknown:
            raise ValueError(f"Unknown activity references: {sorted(unknown)}")
        activity = Activity(
            action_type=ActionType(action_type).value,
            action_by_id=action_by,
            **{key: value for key, value in refs.items() if value is not None},
        )
        async with db.begin_nested():
            db.add(activity)
        logger.debug("Recorded activity %s by %s", activity.action_type, action_by)
        return activity
    except Exception as e:
        logger.error(
            "Failed to record activity %s by %s: %s",
            action_type,
            action_by,
            str(e),
            exc_info=True,
        )
        return None


# ══════════════════════════════════════════════════════════════════════════
# Feed
# ══════════════════════════════════════════════════════════════════════════


class ActivityService:
    """
    Builds the activity feed.

    Filtering happens in Python (the rules need joined runner and club
    data), so rows are scanned newest first in batches until `limit`
    visible entries are collected or the table is exhausted.
    """

    def __init__(self, batch_size: int = 200):
        self.batch_size = batch_size

    async def list_feed(
        self,
        db: AsyncSession,
        requestor: Requestor,
        limit: Optional[int] = None,
        filters: Optional[ActivityFilter] = None,
    ) -> ActivityListResponse:
        limit = limit or settings.activity_list_limit
        if requestor.is_anonymous:
            return ActivityListResponse(activities=[])

        clauses = filter_clauses(filters)
        if clauses is None:
            logger.info("Activity filter with malformed id from %s; no matches", requestor.id)
            return ActivityListResponse(activities=[])

        collected: List[ActivityView] = []
        rows_by_id: Dict[str, Activity] = {}
        offset = 0

        try:
            while len(collected) < limit:
                result = await db.execute(
                    select(Activity)
                    .where(*clauses)
                    .order_by(desc(Activity.timestamp))
                    .offset(offset)
                    .limit(self.batch_size)
                )
                rows = list(result.scalars().all())
                if not rows:
                    break
                offset += len(rows)

                for row in rows:
                    rows_by_id[str(row.id)] = row
                collected.extend(filter_activities(requestor, (to_view(r) for r in rows)))

                if len(rows) < self.batch_size:
                    break
        except SQLAlchemyError as e:
            logger.error("Database error building activity feed: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve activity. Please try again.",
                context={"error_type": type(e).__name__},
            )

        visible = filter_activities(requestor, collected, limit)
        logger.info(
            "Activity feed for %s: %d entries (scanned %d)",
            requestor.id,
            len(visible),
            offset,
        )
        return ActivityListResponse(
            activities=[_to_response(rows_by_id[view.id]) for view in visible]
        )


# ── Singleton Instance ────────────────────────────────────────────────────
activity_service = ActivityService()
