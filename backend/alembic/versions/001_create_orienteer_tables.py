"""Create users, clubs, events, runners and activities tables

Revision ID: 001
Revises: None
Create Date: 2024-05-18 00:00:00.000000+00:00

What:  Initial schema: users and clubs (with memberships), events with
       their runner entries and links, and the activity log.
How:   PostgreSQL UUID keys (gen_random_uuid()), TIMESTAMPTZ, JSONB for
       runner map records.

Rollback: downgrade() drops every table (destructive — all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        _id_column(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column("about", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("profile_image", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "role",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'standard'"),
            comment="guest, standard or admin",
        ),
        sa.Column(
            "visibility",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'private'"),
            comment="public, all, club or private",
        ),
        sa.Column(
            "active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
            comment="False once the user has been soft-deleted",
        ),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("display_name"),
    )

    op.create_table(
        "clubs",
        _id_column(),
        sa.Column("short_name", sa.String(50), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("short_name"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "club_memberships",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("club_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "club_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["club_id"], ["clubs.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "events",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("location_lat", sa.Float(), nullable=True),
        sa.Column("location_long", sa.Float(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "event_runners",
        _id_column(),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "visibility",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'private'"),
            comment="public, all, club or private",
        ),
        sa.Column("course_title", sa.String(100), nullable=False, server_default=sa.text("''")),
        sa.Column("course_length", sa.Float(), nullable=True),
        sa.Column("time", sa.String(20), nullable=False, server_default=sa.text("''")),
        sa.Column("place", sa.Integer(), nullable=True),
        sa.Column("distance_run", sa.Float(), nullable=True, comment="Distance run in km"),
        sa.Column(
            "maps",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="List of {title, image_path, is_geocoded, geo}",
        ),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_runners_event_user"),
    )
    op.create_index("idx_event_runners_user_id", "event_runners", ["user_id"])

    op.create_table(
        "event_links",
        _id_column(),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "activities",
        _id_column(),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("action_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("club_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_runner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("event_link_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("comment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "timestamp",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["action_by_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["club_id"], ["clubs.id"]),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.ForeignKeyConstraint(["event_runner_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["event_link_id"], ["event_links.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
    )
    # The feed is always read newest first
    op.create_index(
        "idx_activities_timestamp",
        "activities",
        [sa.text("timestamp DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_activities_timestamp", table_name="activities")
    op.drop_table("activities")
    op.drop_table("event_links")
    op.drop_index("idx_event_runners_user_id", table_name="event_runners")
    op.drop_table("event_runners")
    op.drop_table("events")
    op.drop_table("club_memberships")
    op.drop_table("clubs")
    op.drop_table("users")
