"""Add map corner columns to events

Revision ID: 002
Revises: 001
Create Date: 2024-06-02 00:00:00.000000+00:00

What:  corner_sw / corner_nw / corner_ne / corner_se on `events`, each a
       JSONB [lat, long] pair seeded from geocoded map uploads.

Runner map records change shape in the same release ({title, course,
course_updated, route, route_updated, is_geocoded, geo}). Records written
before it carry `image_path`, which becomes the course image.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CORNER_COLUMNS = ("corner_sw", "corner_nw", "corner_ne", "corner_se")


def upgrade() -> None:
    for column in CORNER_COLUMNS:
        op.add_column("events", sa.Column(column, postgresql.JSONB(), nullable=True))

    op.execute(
        """
        UPDATE event_runners
        SET maps = (
            SELECT COALESCE(jsonb_agg(
                (record - 'image_path') || jsonb_build_object(
                    'course', record -> 'image_path',
                    'course_updated', NULL,
                    'route', NULL,
                    'route_updated', NULL
                ) ORDER BY position
            ), '[]'::jsonb)
            FROM jsonb_array_elements(maps) WITH ORDINALITY AS elem(record, position)
        )
        WHERE jsonb_array_length(maps) > 0
        """
    )


def downgrade() -> None:
    op.execute(
        """
        UPDATE event_runners
        SET maps = (
            SELECT COALESCE(jsonb_agg(
                (record - 'course' - 'course_updated' - 'route' - 'route_updated')
                || jsonb_build_object(
                    'image_path', COALESCE(NULLIF(record -> 'course', 'null'::jsonb), record -> 'route')
                ) ORDER BY position
            ), '[]'::jsonb)
            FROM jsonb_array_elements(maps) WITH ORDINALITY AS elem(record, position)
        )
        WHERE jsonb_array_length(maps) > 0
        """
    )
    for column in reversed(CORNER_COLUMNS):
        op.drop_column("events", column)
