"""
Orienteer Backend — Event Route Handlers
==========================================

What:  Event detail, runner entry management and map uploads.
Who:   Event pages of the frontend and the map upload dialog.

Map uploads:
    POST ./maps/{user_id}/{course|route} as multipart/form-data with a
    `file` field (JPEG or PNG) and an optional `title`. The upload fills
    that slot of the runner's map with the same title. QuickRoute JPEGs
    are geocoded; anything else is stored as a plain image.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_requestor
from app.schemas.common import ErrorResponse
from app.schemas.event import (
    EventResponse,
    MapType,
    MapUploadResponse,
    RunnerCreate,
    RunnerResponse,
    RunnerUpdate,
)
from app.schemas.visibility import Requestor
from app.services.event_service import event_service
from app.services.map_service import map_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["Events"])


@router.get(
    "/{event_id}",
    response_model=EventResponse,
    responses={404: {"description": "Event not found", "model": ErrorResponse}},
    summary="Get an event with the runner entries visible to the requestor",
)
async def get_event(
    event_id: UUID,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> EventResponse:
    return await event_service.get_event(db=db, requestor=requestor, event_id=event_id)


@router.post(
    "/{event_id}/runners",
    status_code=201,
    response_model=RunnerResponse,
    responses={
        400: {"description": "Already a runner at this event", "model": ErrorResponse},
        403: {"description": "Guests and anonymous users cannot add runners", "model": ErrorResponse},
        404: {"description": "Event not found", "model": ErrorResponse},
    },
    summary="Add the current user as a runner",
)
async def add_runner(
    event_id: UUID,
    payload: RunnerCreate,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> RunnerResponse:
    return await event_service.add_runner(
        db=db, requestor=requestor, event_id=event_id, payload=payload
    )


@router.patch(
    "/{event_id}/runners/{user_id}",
    response_model=RunnerResponse,
    responses={
        403: {"description": "Not allowed to edit this runner entry", "model": ErrorResponse},
        404: {"description": "Event or runner not found", "model": ErrorResponse},
    },
    summary="Update a runner entry",
)
async def update_runner(
    event_id: UUID,
    user_id: UUID,
    payload: RunnerUpdate,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> RunnerResponse:
    return await event_service.update_runner(
        db=db, requestor=requestor, event_id=event_id, user_id=user_id, payload=payload
    )


@router.delete(
    "/{event_id}/runners/{user_id}",
    status_code=204,
    responses={
        403: {"description": "Not allowed to delete this runner entry", "model": ErrorResponse},
        404: {"description": "Event or runner not found", "model": ErrorResponse},
    },
    summary="Delete a runner entry",
)
async def delete_runner(
    event_id: UUID,
    user_id: UUID,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await event_service.delete_runner(
        db=db, requestor=requestor, event_id=event_id, user_id=user_id
    )
    return Response(status_code=204)


@router.post(
    "/{event_id}/maps/{user_id}/{map_type}",
    status_code=201,
    response_model=MapUploadResponse,
    responses={
        400: {"description": "Invalid file type or size", "model": ErrorResponse},
        403: {"description": "Not allowed to add maps to this runner", "model": ErrorResponse},
        404: {"description": "Event or runner not found", "model": ErrorResponse},
    },
    summary="Upload a map image for a runner",
)
async def upload_map(
    event_id: UUID,
    user_id: UUID,
    map_type: MapType,
    file: UploadFile = File(..., description="Map image (JPEG or PNG)"),
    title: str = Form(
        default="", max_length=100,
        description="Map title; the runner's map with this title is updated",
    ),
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> MapUploadResponse:
    content = await file.read()
    logger.info(
        "Received map upload: event=%s runner=%s type=%s filename=%s size=%d bytes",
        event_id,
        user_id,
        map_type.value,
        file.filename or "unknown",
        len(content),
    )
    try:
        return await map_service.upload_map(
            db=db,
            requestor=requestor,
            event_id=event_id,
            user_id=user_id,
            map_type=map_type,
            filename=file.filename or "map.jpg",
            content=content,
            content_length=file.size,
            title=title,
        )
    finally:
        await file.close()
