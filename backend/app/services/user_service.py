"""
Orienteer Backend — User Service
==================================

What:  Profile listing, lookup, update and soft deletion.
Who:   Called by the users router; every read goes through the visibility
       engine and every write through can_edit().

Deletion:
    Users are never removed. delete_user() clears `active`, which hides the
    profile from lists and from everyone except admins doing a direct
    lookup, and forces all of the user's runner entries to private so no
    event page keeps showing them.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError, ForbiddenError, NotFoundError, ValidationError
from app.models.event import EventRunner
from app.models.user import User
from app.schemas.activity import ActionType
from app.schemas.user import ClubSummary, UserListResponse, UserResponse, UserSummary, UserUpdate
from app.schemas.visibility import Requestor, Visibility, VisibilitySubject
from app.services.activity_service import record_activity
from app.services.visibility import ensure_can_edit, ensure_can_see, filter_visible

logger = logging.getLogger(__name__)


def user_subject(user: User) -> VisibilitySubject:
    """Visibility attributes of a user profile."""
    return VisibilitySubject(
        visibility=user.visibility,
        owner_id=user.id,
        clubs=user.club_ids,
        active=user.active,
    )


def to_user_response(user: User, requestor: Requestor) -> UserResponse:
    """Full profile; email only for the user themself and admins."""
    show_email = requestor.is_admin or requestor.id == str(user.id)
    return UserResponse(
        id=user.id,
        display_name=user.display_name,
        full_name=user.full_name,
        about=user.about,
        profile_image=user.profile_image,
        email=user.email if show_email else None,
        role=user.role,
        visibility=user_subject(user).visibility,
        active=user.active,
        clubs=[ClubSummary.model_validate(club) for club in user.clubs],
        created_at=user.created_at,
    )


class UserService:
    """Business logic for /api/users; stateless, one shared instance."""

    async def _load(self, db: AsyncSession, user_id: UUID) -> Optional[User]:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def list_users(self, db: AsyncSession, requestor: Requestor) -> UserListResponse:
        """Active users visible to the requestor, ordered by display name."""
        try:
            result = await db.execute(
                select(User).where(User.active.is_(True)).order_by(User.display_name)
            )
            users: List[User] = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing users: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve users. Please try again.",
                context={"error_type": type(e).__name__},
            )

        visible = filter_visible(requestor, ((user_subject(u), u) for u in users))
        return UserListResponse(
            users=[UserSummary.model_validate(u) for u in visible],
            total_count=len(visible),
        )

    async def get_user(self, db: AsyncSession, requestor: Requestor, user_id: UUID) -> UserResponse:
        """
        Direct lookup of one profile.

        Raises:
            NotFoundError: no such user, or hidden from an anonymous requestor,
                or deleted and the requestor is not an admin.
            ForbiddenError: the profile exists but is hidden from this requestor.
        """
        try:
            user = await self._load(db, user_id)
        except SQLAlchemyError as e:
            logger.error("Database error fetching user %s: %s", user_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the user. Please try again.",
                context={"user_id": str(user_id)},
            )

        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        ensure_can_see(requestor, user_subject(user), "user", str(user_id))
        return to_user_response(user, requestor)

    async def get_current_user(self, db: AsyncSession, requestor: Requestor) -> UserResponse:
        if requestor.is_anonymous:
            raise ForbiddenError(
                message="You must be logged in to view your profile.",
                action="view",
            )
        return await self.get_user(db, requestor, UUID(requestor.id))

    async def update_user(
        self,
        db: AsyncSession,
        requestor: Requestor,
        user_id: UUID,
        payload: UserUpdate,
    ) -> UserResponse:
        """
        Apply a partial profile update (owner or admin only).

        Raises:
            NotFoundError: user missing or already deleted.
            ForbiddenError: requestor may not edit this profile.
            ValidationError: display name taken by another user.
        """
        try:
            user = await self._load(db, user_id)
            if user is None or not user.active:
                raise NotFoundError(resource="user", resource_id=str(user_id))
            ensure_can_edit(requestor, str(user.id), "profile")

            changes = payload.model_dump(exclude_unset=True, exclude_none=True)
            new_name = changes.get("display_name")
            if new_name and new_name != user.display_name:
                taken = await db.execute(
                    select(User.id).where(User.display_name == new_name, User.id != user.id)
                )
                if taken.scalar_one_or_none() is not None:
                    raise ValidationError(
                        message=f"Display name '{new_name}' is already in use.",
                        field="display_name",
                    )

            if "visibility" in changes:
                changes["visibility"] = Visibility(changes["visibility"]).value
            for field, value in changes.items():
                setattr(user, field, value)
            await db.flush()
            logger.info("User %s updated by %s: %s", user.id, requestor.id, sorted(changes))

        except SQLAlchemyError as e:
            logger.error("Database error updating user %s: %s", user_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not update the user. Please try again.",
                context={"user_id": str(user_id)},
            )

        await record_activity(db, ActionType.USER_UPDATED, UUID(requestor.id), user_id=user.id)
        return to_user_response(user, requestor)

    async def delete_user(self, db: AsyncSession, requestor: Requestor, user_id: UUID) -> None:
        """
        Soft-delete a user and hide all of their runner entries.

        Raises:
            NotFoundError: user missing or already deleted.
            ForbiddenError: requestor may not delete this user.
        """
        try:
            user = await self._load(db, user_id)
            if user is None or not user.active:
                raise NotFoundError(resource="user", resource_id=str(user_id))
            ensure_can_edit(requestor, str(user.id), "profile")

            user.active = False
            await db.execute(
                update(EventRunner)
                .where(EventRunner.user_id == user.id)
                .values(visibility=Visibility.PRIVATE.value)
            )
            await db.flush()
            logger.info("User %s deleted by %s; runner entries set to private", user.id, requestor.id)

        except SQLAlchemyError as e:
            logger.error("Database error deleting user %s: %s", user_id, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the user. Please try again.",
                context={"user_id": str(user_id)},
            )

        await record_activity(db, ActionType.USER_DELETED, UUID(requestor.id), user_id=user.id)


# ── Singleton Instance ────────────────────────────────────────────────────
user_service = UserService()
