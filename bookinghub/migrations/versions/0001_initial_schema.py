"""Initial schema: tenants, services, staff, schedules, blocked dates, holds, bookings

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed", "no_show")


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Europe/Berlin"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "services",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("buffer_after", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("min_advance_hours", sa.Integer(), nullable=True),
        sa.Column("max_advance_days", sa.Integer(), nullable=True),
        sa.CheckConstraint("duration > 0", name="ck_services_duration_positive"),
    )
    op.create_index("ix_services_tenant_id", "services", ["tenant_id"])

    op.create_table(
        "service_variants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("service_id", sa.Uuid(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_service_variants_service_id", "service_variants", ["service_id"])

    op.create_table(
        "staff",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_staff_tenant_id", "staff", ["tenant_id"])

    op.create_table(
        "staff_services",
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("staff.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("service_id", sa.Uuid(), sa.ForeignKey("services.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "staff_schedule",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("is_working", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("break_start", sa.Time(), nullable=True),
        sa.Column("break_end", sa.Time(), nullable=True),
        sa.UniqueConstraint("staff_id", "day_of_week", name="uq_staff_schedule_staff_day"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_staff_schedule_day_of_week"),
    )
    op.create_index("ix_staff_schedule_staff_id", "staff_schedule", ["staff_id"])

    op.create_table(
        "blocked_dates",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=True),
        sa.Column("blocked_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(200), nullable=True),
    )
    op.create_index("ix_blocked_dates_tenant_id", "blocked_dates", ["tenant_id"])
    op.create_index("ix_blocked_dates_tenant_date", "blocked_dates", ["tenant_id", "blocked_date"])

    op.create_table(
        "slot_holds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Uuid(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "variant_id", sa.Uuid(), sa.ForeignKey("service_variants.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False),
        _ts("start_time"),
        _ts("end_time"),
        _ts("expires_at"),
        sa.Column("session_token", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_slot_holds_tenant_id", "slot_holds", ["tenant_id"])
    op.create_index("ix_slot_holds_expires_at", "slot_holds", ["expires_at"])

    booking_status = postgresql.ENUM(*BOOKING_STATUSES, name="booking_status", create_type=False)
    booking_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.Uuid(), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "variant_id", sa.Uuid(), sa.ForeignKey("service_variants.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("staff_id", sa.Uuid(), sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_name", sa.String(100), nullable=False),
        sa.Column("client_phone", sa.String(50), nullable=False, server_default=""),
        sa.Column("client_email", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _ts("start_time"),
        _ts("end_time"),
        sa.Column("status", booking_status, nullable=False, server_default="pending"),
        sa.Column("price_at_booking", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duration_at_booking", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("source", sa.String(32), nullable=False, server_default="widget"),
        _ts("expires_at", nullable=True),
        sa.Column("cancel_token", sa.String(128), nullable=True, unique=True),
        sa.Column("reschedule_token", sa.String(128), nullable=True, unique=True),
        sa.Column("was_rescheduled", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("cancelled_at", nullable=True),
        sa.Column("cancelled_by", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
    )
    op.create_index("ix_bookings_tenant_id", "bookings", ["tenant_id"])
    op.create_index("ix_bookings_staff_start", "bookings", ["staff_id", "start_time"])
    op.create_index("ix_bookings_status_expires_at", "bookings", ["status", "expires_at"])


def downgrade() -> None:
    op.drop_table("bookings")
    postgresql.ENUM(name="booking_status").drop(op.get_bind(), checkfirst=True)
    op.drop_table("slot_holds")
    op.drop_table("blocked_dates")
    op.drop_table("staff_schedule")
    op.drop_table("staff_services")
    op.drop_table("staff")
    op.drop_table("service_variants")
    op.drop_table("services")
    op.drop_table("tenants")
