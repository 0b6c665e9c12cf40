"""
Orienteer Backend — Activity SQLAlchemy Model
===============================================

What:  Append-only audit trail of every mutating action in the system.
Who:   Written by activity_service.record_activity(); read and filtered
       by activity_service for the activity feed.

Lifecycle:
    Created once per action, never updated, never deleted. Displayed
    newest first (idx_activities_timestamp).

References:
    Which reference columns are filled depends on action_type, e.g.
    EVENT_RUNNER_ADDED sets event_id and event_runner_id (the runner's
    user id); COMMENT_POSTED also sets comment_id. Deleted clubs, events
    and users stay referenced so the feed can still hide them by `active`.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.event import Event, EventLink
from app.models.user import Club, User


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    club_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clubs.id"), nullable=True
    )
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id"), nullable=True
    )
    event_runner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    # Links are hard-deleted, so the reference is nulled rather than kept
    event_link_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("event_links.id", ondelete="SET NULL"), nullable=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    comment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    action_by: Mapped[User] = relationship(foreign_keys=[action_by_id], lazy="selectin")
    club: Mapped[Optional[Club]] = relationship(lazy="selectin")
    event: Mapped[Optional[Event]] = relationship(lazy="selectin")
    event_runner: Mapped[Optional[User]] = relationship(foreign_keys=[event_runner_id], lazy="selectin")
    event_link: Mapped[Optional[EventLink]] = relationship(lazy="selectin")
    user: Mapped[Optional[User]] = relationship(foreign_keys=[user_id], lazy="selectin")

    __table_args__ = (
        Index("idx_activities_timestamp", timestamp.desc()),
    )

    def __repr__(self) -> str:
        return f"<Activity(action_type='{self.action_type}', timestamp='{self.timestamp}')>"
