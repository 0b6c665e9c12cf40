"""
Orienteer Backend — Request Dependencies
==========================================

What:  Resolves who is making a request into a Requestor.
How:   Authentication happens upstream; the gateway forwards the
       authenticated user's id in the X-User-ID header. The user is loaded
       with their clubs and mapped to a Requestor.

Resolution:
    no header              → anonymous
    malformed / unknown id → anonymous
    inactive (deleted)     → anonymous
    otherwise              → Requestor(role, id, clubs) from the user row
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.models.user import User
from app.schemas.visibility import Requestor

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-ID"


def requestor_for(user: Optional[User]) -> Requestor:
    if user is None or not user.active:
        return Requestor.anonymous()
    return Requestor(role=user.role, id=user.id, clubs=user.club_ids)


async def get_requestor(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
    db: AsyncSession = Depends(get_db_session),
) -> Requestor:
    """FastAPI dependency returning the Requestor for the current request."""
    if not x_user_id:
        return Requestor.anonymous()

    try:
        user_id = UUID(x_user_id.strip())
    except ValueError:
        logger.warning("Ignoring malformed %s header: %r", USER_ID_HEADER, x_user_id)
        return Requestor.anonymous()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.active:
        logger.info("%s %s is unknown or inactive; treating as anonymous", USER_ID_HEADER, user_id)
    return requestor_for(user)
