"""
Orienteer Backend — User Route Handlers
=========================================

What:  /api/users list, lookup, current profile, update and soft delete.
How:   Resolves the requestor, delegates to UserService, returns its model.
       Visibility and permission failures surface as 403/404 through the
       global exception handlers.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.dependencies import get_requestor
from app.schemas.common import ErrorResponse
from app.schemas.user import UserListResponse, UserResponse, UserUpdate
from app.schemas.visibility import Requestor
from app.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get(
    "",
    response_model=UserListResponse,
    summary="List users visible to the requestor",
)
async def list_users(
    response: Response,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> UserListResponse:
    result = await user_service.list_users(db=db, requestor=requestor)
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.get(
    "/me",
    response_model=UserResponse,
    responses={403: {"description": "Not logged in", "model": ErrorResponse}},
    summary="Get the current user's profile",
)
async def get_current_user(
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await user_service.get_current_user(db=db, requestor=requestor)


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    responses={
        403: {"description": "Profile hidden from this requestor", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
    },
    summary="Get a user profile by ID",
)
async def get_user(
    user_id: UUID,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    """
    Direct profile lookup. Anonymous requestors get 404 for hidden profiles
    so the existence of private users is not revealed.
    """
    return await user_service.get_user(db=db, requestor=requestor, user_id=user_id)


@router.patch(
    "/{user_id}",
    response_model=UserResponse,
    responses={
        400: {"description": "Invalid update", "model": ErrorResponse},
        403: {"description": "Not allowed to edit this profile", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
    },
    summary="Update a user profile",
)
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await user_service.update_user(
        db=db, requestor=requestor, user_id=user_id, payload=payload
    )


@router.delete(
    "/{user_id}",
    status_code=204,
    responses={
        403: {"description": "Not allowed to delete this user", "model": ErrorResponse},
        404: {"description": "User not found", "model": ErrorResponse},
    },
    summary="Soft-delete a user",
)
async def delete_user(
    user_id: UUID,
    requestor: Requestor = Depends(get_requestor),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await user_service.delete_user(db=db, requestor=requestor, user_id=user_id)
    return Response(status_code=204)
