"""
Orienteer Backend — Activity Feed Route
=========================================

GET /api/activity returns the newest activity entries the requestor may
see. Anonymous requestors always get an empty list. Optional query
parameters narrow the feed by action type or referenced record; an id
that is not a UUID matches nothing.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_requestor
from app.schemas.activity import ActivityFilter, ActivityListResponse
from app.schemas.visibility import Requestor
from app.services.activity_service import activity_service

router = APIRouter(prefix="/api", tags=["Activity"])


@router.get(
    "/activity",
    response_model=ActivityListResponse,
    summary="Activity feed for the current user",
)
async def list_activity(
    limit: Optional[int] = Query(
        default=None, ge=1, le=100,
        description="Maximum entries to return (defaults to ACTIVITY_LIST_LIMIT)",
    ),
    action_type: Optional[str] = Query(default=None, description="Only this action type"),
    action_by: Optional[str] = Query(default=None, description="Only actions by this user"),
    club: Optional[str] = Query(default=None),
    comment: Optional[str] = Query(default=None),
    event: Optional[str] = Query(default=None),
    event_runner: Optional[str] = Query(default=None),
    linked_event: Optional[str] = Query(default=None, description="Event link id"),
    user: Optional[str] = Query(default=None),
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> ActivityListResponse:
    filters = ActivityFilter(
        action_type=action_type,
        action_by=action_by,
        club=club,
        comment=comment,
        event=event,
        event_runner=event_runner,
        linked_event=linked_event,
        user=user,
    )
    return await activity_service.list_feed(
        db=db, requestor=requestor, limit=limit, filters=filters
    )
