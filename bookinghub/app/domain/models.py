import uuid
from datetime import UTC, date as _date, datetime, time as _time
from enum import Enum as _Enum

from sqlalchemy import (
    DDL,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class (explicit for mypy)."""

    pass


class BookingStatus(_Enum):  # Values match DB labels (Postgres enum)
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


def normalize_booking_status(value: str | BookingStatus | None) -> BookingStatus | None:
    """Return a BookingStatus enum when possible (accepts strings/enum values)."""
    if isinstance(value, BookingStatus):
        return value
    if isinstance(value, str):
        cleaned = value.strip().lower().replace("-", "_")
        try:
            return BookingStatus(cleaned)
        except ValueError:
            return None
    return None


# Authoritative status transition table; enforced on every status change.
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
        BookingStatus.NO_SHOW,
    }
)

# Statuses whose rows occupy the staff calendar (and are covered by the
# exclusion constraint on bookings).
OCCUPYING_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    }
)

# Statuses a client may still cancel through the cancel link.
CLIENT_CANCELLABLE_STATUSES = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Tenant(Base):
    __tablename__ = "tenants"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # IANA name; schedule times and widget dates are wall-clock in this zone
    timezone: Mapped[str] = mapped_column(String(64), default="Europe/Berlin", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Service(Base):
    __tablename__ = "services"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    buffer_after: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # NULL falls back to DEFAULT_MIN_ADVANCE_HOURS / DEFAULT_MAX_ADVANCE_DAYS
    min_advance_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_advance_days: Mapped[int | None] = mapped_column(Integer, nullable=True)


class ServiceVariant(Base):
    __tablename__ = "service_variants"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Staff(Base):
    __tablename__ = "staff"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class StaffService(Base):
    __tablename__ = "staff_services"
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"), primary_key=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"), primary_key=True)


class StaffSchedule(Base):
    __tablename__ = "staff_schedule"
    __table_args__ = (UniqueConstraint("staff_id", "day_of_week", name="uq_staff_schedule_staff_day"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"), index=True)
    # Day of week: Monday=0 .. Sunday=6
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    is_working: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_time: Mapped[_time] = mapped_column(Time, nullable=False)
    end_time: Mapped[_time] = mapped_column(Time, nullable=False)
    break_start: Mapped[_time | None] = mapped_column(Time, nullable=True)
    break_end: Mapped[_time | None] = mapped_column(Time, nullable=True)


class BlockedDate(Base):
    __tablename__ = "blocked_dates"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    # NULL means the whole salon is closed on that date
    staff_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("staff.id", ondelete="CASCADE"), nullable=True
    )
    blocked_date: Mapped[_date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)


class SlotHold(Base):
    __tablename__ = "slot_holds"
    __table_args__ = (Index("ix_slot_holds_expires_at", "expires_at"),)
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"))
    variant_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("service_variants.id", ondelete="SET NULL"), nullable=True
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"))
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_staff_start", "staff_id", "start_time"),
        Index("ix_bookings_status_expires_at", "status", "expires_at"),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("services.id", ondelete="CASCADE"))
    variant_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("service_variants.id", ondelete="SET NULL"), nullable=True
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("staff.id", ondelete="CASCADE"))
    client_name: Mapped[str] = mapped_column(String(100), nullable=False)
    client_phone: Mapped[str] = mapped_column(String(50), default="", nullable=False)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(
            BookingStatus,
            name="booking_status",
            values_callable=lambda e: [m.value for m in e],  # persist lowercase labels
            native_enum=True,
        ),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    price_at_booking: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_at_booking: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source: Mapped[str] = mapped_column(String(32), default="widget", nullable=False)
    # Set only while the row is an unconfirmed reservation placeholder
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    reschedule_token: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    was_rescheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# Exclusion constraints: the only guarantee against double booking under
# concurrent writers. Migrations install the same DDL; these listeners cover
# schemas created through init_db().
BOOKINGS_EXCLUSION_DDL = (
    "ALTER TABLE bookings ADD CONSTRAINT bookings_no_overlap_excl "
    "EXCLUDE USING gist (staff_id WITH =, tstzrange(start_time, end_time) WITH &&) "
    "WHERE (status IN ('pending', 'confirmed'))"
)
SLOT_HOLDS_EXCLUSION_DDL = (
    "ALTER TABLE slot_holds ADD CONSTRAINT slot_holds_no_overlap_excl "
    "EXCLUDE USING gist (staff_id WITH =, tstzrange(start_time, end_time) WITH &&)"
)
EXCLUSION_CONSTRAINT_NAMES = frozenset({"bookings_no_overlap_excl", "slot_holds_no_overlap_excl"})

event.listen(
    Base.metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(Booking.__table__, "after_create", DDL(BOOKINGS_EXCLUSION_DDL).execute_if(dialect="postgresql"))
event.listen(SlotHold.__table__, "after_create", DDL(SLOT_HOLDS_EXCLUSION_DDL).execute_if(dialect="postgresql"))


__all__ = [
    "Base",
    "BookingStatus",
    "normalize_booking_status",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "OCCUPYING_STATUSES",
    "CLIENT_CANCELLABLE_STATUSES",
    "Tenant",
    "Service",
    "ServiceVariant",
    "Staff",
    "StaffService",
    "StaffSchedule",
    "BlockedDate",
    "SlotHold",
    "Booking",
    "BOOKINGS_EXCLUSION_DDL",
    "SLOT_HOLDS_EXCLUSION_DDL",
    "EXCLUSION_CONSTRAINT_NAMES",
]
