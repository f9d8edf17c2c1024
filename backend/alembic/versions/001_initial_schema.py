"""Initial schema: bookings and booking_slots with overlap protection.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"

    if is_postgres:
        # Needed so the exclusion constraint can mix "=" on text with "&&" on ranges
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("resources", sa.JSON(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False, server_default="training"),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("coach", sa.String(255), nullable=True),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("duration_minutes > 0", name="check_booking_duration_positive"),
        sa.CheckConstraint(
            "start_minute >= 0 AND start_minute + duration_minutes <= 1440",
            name="check_booking_within_day",
        ),
        sa.CheckConstraint("status IN ('scheduled', 'cancelled')", name="check_booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    # Listings are always "one day or a date range, ordered by start"
    op.create_index("ix_bookings_date_start", "bookings", ["date", "start_minute"])

    op.create_table(
        "booking_slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id",
            sa.Integer(),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("resource", sa.String(100), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("end_minute", sa.Integer(), nullable=False),
        sa.UniqueConstraint("booking_id", "resource", name="uq_booking_slot_resource"),
        sa.CheckConstraint("end_minute > start_minute", name="check_slot_interval"),
    )
    op.create_index("ix_booking_slots_booking_id", "booking_slots", ["booking_id"])
    op.create_index(
        "ix_booking_slots_resource_date_start",
        "booking_slots",
        ["resource", "date", "start_minute"],
    )

    if is_postgres:
        # EXCLUSION CONSTRAINT: the database-level guarantee behind the
        # court locks. Even if two workers both believe a court is free,
        # only one overlapping slot row can ever be committed; the loser
        # gets an IntegrityError and the service rebuilds its index.
        op.execute(
            """
            ALTER TABLE booking_slots
            ADD CONSTRAINT ex_booking_slots_no_overlap
            EXCLUDE USING gist (
                resource WITH =,
                date WITH =,
                int4range(start_minute, end_minute) WITH &&
            )
            """
        )


def downgrade() -> None:
    op.drop_index("ix_booking_slots_resource_date_start", table_name="booking_slots")
    op.drop_index("ix_booking_slots_booking_id", table_name="booking_slots")
    op.drop_table("booking_slots")
    op.drop_index("ix_bookings_date_start", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")
