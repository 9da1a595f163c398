"""Job coordinates, booking check-in locations and business notes

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_BOOKING_COORDS = ("check_in_lat", "check_in_lng", "check_out_lat", "check_out_lng")


def upgrade() -> None:
    op.add_column("jobs", sa.Column("lat", sa.Float(), nullable=True))
    op.add_column("jobs", sa.Column("lng", sa.Float(), nullable=True))
    for column in _BOOKING_COORDS:
        op.add_column("bookings", sa.Column(column, sa.Float(), nullable=True))
    op.add_column("bookings", sa.Column("booking_notes", sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column("bookings", "booking_notes")
    for column in reversed(_BOOKING_COORDS):
        op.drop_column("bookings", column)
    op.drop_column("jobs", "lng")
    op.drop_column("jobs", "lat")
