"""
Orienteer Backend — User and Club SQLAlchemy Models
=====================================================

What:  ORM models for the `users`, `clubs` and `club_memberships` tables.
Who:   User service (profiles), requestor dependency (roles, clubs),
       event service (runner club joins), activity service.

Table Design:
    - role: anonymous is never stored; it is what a missing user becomes
    - visibility: public | all | club | private, read by the visibility engine
    - active: soft-delete flag; inactive users vanish from every list and
      are only reachable by admins looking them up by id
    - clubs: many-to-many through club_memberships, loaded eagerly because
      almost every visibility decision needs them
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, Column, ForeignKey, String, Table, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


club_memberships = Table(
    "club_memberships",
    Base.metadata,
    Column("user_id", UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("club_id", UUID(as_uuid=True), ForeignKey("clubs.id", ondelete="CASCADE"), primary_key=True),
)


class Club(Base):
    """An orienteering club. Deleting a club only clears `active`."""

    __tablename__ = "clubs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    short_name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<Club(id={self.id}, short_name='{self.short_name}', active={self.active})>"


class User(Base):
    """
    A registered user and their public profile.

    Lifecycle:
        1. Created at sign-up (USER_CREATED activity)
        2. Updated by the owner or an admin (USER_UPDATED)
        3. Soft-deleted: active=False, runner entries forced to private
           (USER_DELETED); the row itself is never removed
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    about: Mapped[str] = mapped_column(Text, nullable=False, default="")
    profile_image: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    # guest | standard | admin
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="standard", server_default=text("'standard'")
    )
    # public | all | club | private
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default="private", server_default=text("'private'")
    )
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    clubs: Mapped[List[Club]] = relationship(
        secondary=club_memberships,
        lazy="selectin",
    )

    @property
    def club_ids(self) -> List[str]:
        return [str(club.id) for club in self.clubs]

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, display_name='{self.display_name}', "
            f"role='{self.role}', active={self.active})>"
        )
