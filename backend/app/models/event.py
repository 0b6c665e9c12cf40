"""
Orienteer Backend — Event SQLAlchemy Models
=============================================

What:  ORM models for `events`, `event_runners` and `event_links`.
Who:   Event service (runner CRUD, per-runner visibility), map service
       (geocoded map records), activity service (feed references).

Table Design:
    - An event runner is one user's participation in one event; it carries
      its own visibility independent of the parent event and of the
      user's profile visibility
    - maps: JSONB list of {title, course, course_updated, route,
      route_updated, is_geocoded, geo}; `geo` holds the camelCase
      MapMetadata produced by the QuickRoute decoder
    - location_lat/long and corner_*: seeded from geocoded map uploads,
      each only while still unset
"""

import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.user import User


class Event(Base):
    """An orienteering event (race or training) that users attach results and maps to."""

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    location_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_long: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # [lat, long] per corner of the map area
    corner_sw: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    corner_nw: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    corner_ne: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    corner_se: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    runners: Mapped[List["EventRunner"]] = relationship(
        back_populates="event",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="EventRunner.created_at",
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name='{self.name}', date='{self.date}')>"


class EventRunner(Base):
    """One user's participation record within an event."""

    __tablename__ = "event_runners"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # public | all | club | private
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default="private", server_default=text("'private'")
    )
    course_title: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    course_length: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    time: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    place: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    distance_run: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    maps: Mapped[list] = mapped_column(
        JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb")
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    event: Mapped[Event] = relationship(back_populates="runners")
    user: Mapped[User] = relationship(lazy="selectin")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_runners_event_user"),
        Index("idx_event_runners_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventRunner(event_id={self.event_id}, user_id={self.user_id}, "
            f"visibility='{self.visibility}')>"
        )


class EventLink(Base):
    """A named link grouping related events (e.g. stages of a multi-day race)."""

    __tablename__ = "event_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
