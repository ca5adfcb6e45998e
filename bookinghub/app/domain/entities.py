"""Storage-agnostic value objects the engine works with.

The SQLAlchemy store maps ORM rows onto these; test doubles build them
directly. Nothing here touches the database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time as dtime
from enum import Enum

from bookinghub.app.core.constants import DEFAULT_MAX_ADVANCE_DAYS, DEFAULT_MIN_ADVANCE_HOURS
from bookinghub.app.core.errors import InvalidDuration, ValidationError
from bookinghub.app.domain.models import BookingStatus
from bookinghub.app.services.shared_services import MINUTES_PER_DAY, minutes_of, to_minutes


@dataclass(frozen=True)
class DaySchedule:
    """One staff member's working window on one weekday (minutes after midnight)."""

    is_working: bool
    start_minute: int
    end_minute: int
    break_start: int | None = None
    break_end: int | None = None
    staff_id: uuid.UUID | None = None
    day_of_week: int | None = None

    def __post_init__(self) -> None:
        if (self.break_start is None) != (self.break_end is None):
            raise ValidationError("break_start and break_end must be given together", code="INVALID_SCHEDULE")
        if not self.is_working:
            return
        if not 0 <= self.start_minute < self.end_minute <= MINUTES_PER_DAY:
            raise ValidationError("Schedule start must be before end", code="INVALID_SCHEDULE")
        if self.break_start is not None and not (
            self.start_minute <= self.break_start < self.break_end <= self.end_minute
        ):
            raise ValidationError("Break must lie inside working hours", code="INVALID_SCHEDULE")

    @property
    def has_break(self) -> bool:
        return self.break_start is not None

    @classmethod
    def from_strings(
        cls,
        start: str,
        end: str,
        break_start: str | None = None,
        break_end: str | None = None,
        *,
        is_working: bool = True,
        **kwargs,
    ) -> "DaySchedule":
        return cls(
            is_working=is_working,
            start_minute=to_minutes(start),
            end_minute=to_minutes(end),
            break_start=to_minutes(break_start) if break_start else None,
            break_end=to_minutes(break_end) if break_end else None,
            **kwargs,
        )

    @classmethod
    def from_times(
        cls,
        start: dtime,
        end: dtime,
        break_start: dtime | None = None,
        break_end: dtime | None = None,
        *,
        is_working: bool = True,
        **kwargs,
    ) -> "DaySchedule":
        # A half-specified break is ignored rather than rejected for stored rows
        if break_start is None or break_end is None:
            break_start = break_end = None
        return cls(
            is_working=is_working,
            start_minute=minutes_of(start),
            end_minute=minutes_of(end),
            break_start=minutes_of(break_start) if break_start else None,
            break_end=minutes_of(break_end) if break_end else None,
            **kwargs,
        )


@dataclass(frozen=True)
class OccupiedInterval:
    start: datetime
    end: datetime
    staff_id: uuid.UUID | None = None


@dataclass(frozen=True)
class BlockedDay:
    day: date
    staff_id: uuid.UUID | None = None

    @property
    def salon_wide(self) -> bool:
        return self.staff_id is None


@dataclass(frozen=True)
class TenantInfo:
    id: uuid.UUID
    slug: str
    name: str = ""
    timezone: str = "Europe/Berlin"


@dataclass(frozen=True)
class ServiceTerms:
    """Effective duration/price for a service, with a variant override applied."""

    tenant_id: uuid.UUID
    service_id: uuid.UUID
    duration: int
    buffer_after: int = 0
    price: int = 0
    min_advance_hours: int | None = None
    max_advance_days: int | None = None
    variant_id: uuid.UUID | None = None

    @property
    def total_minutes(self) -> int:
        return int(self.duration) + int(self.buffer_after or 0)

    @property
    def min_advance_minutes(self) -> int:
        hours = self.min_advance_hours if self.min_advance_hours is not None else DEFAULT_MIN_ADVANCE_HOURS
        return max(0, int(hours)) * 60

    @property
    def max_days_ahead(self) -> int:
        days = self.max_advance_days if self.max_advance_days is not None else DEFAULT_MAX_ADVANCE_DAYS
        return max(0, int(days))

    def require_positive(self) -> None:
        if self.total_minutes <= 0:
            raise InvalidDuration()


class ReservationKind(str, Enum):
    HOLD = "hold"
    PENDING_BOOKING = "pending_booking"


@dataclass(frozen=True)
class HoldDraft:
    kind: ReservationKind
    tenant_id: uuid.UUID
    service_id: uuid.UUID
    staff_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    expires_at: datetime
    session_token: str
    variant_id: uuid.UUID | None = None
    price: int = 0
    duration: int = 0


@dataclass(frozen=True)
class Reservation:
    id: uuid.UUID
    kind: ReservationKind
    tenant_id: uuid.UUID
    service_id: uuid.UUID
    staff_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    expires_at: datetime | None
    session_token: str | None = None
    variant_id: uuid.UUID | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is None or now > self.expires_at


@dataclass(frozen=True)
class ClientDetails:
    name: str
    phone: str
    email: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ConfirmationTokens:
    cancel_token: str
    reschedule_token: str


@dataclass
class BookingRecord:
    id: uuid.UUID
    tenant_id: uuid.UUID
    service_id: uuid.UUID
    staff_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    client_name: str = ""
    client_phone: str = ""
    client_email: str | None = None
    notes: str | None = None
    variant_id: uuid.UUID | None = None
    price_at_booking: int = 0
    duration_at_booking: int = 0
    source: str = "widget"
    expires_at: datetime | None = None
    cancel_token: str | None = None
    reschedule_token: str | None = None
    was_rescheduled: bool = False
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    extra: dict = field(default_factory=dict)

    def to_public_dict(self) -> dict:
        return {
            "id": str(self.id),
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "client_name": self.client_name,
        }


@dataclass(frozen=True)
class ReapResult:
    holds_deleted: int = 0
    pending_cancelled: int = 0

    @property
    def total(self) -> int:
        return self.holds_deleted + self.pending_cancelled


__all__ = [
    "DaySchedule",
    "OccupiedInterval",
    "BlockedDay",
    "TenantInfo",
    "ServiceTerms",
    "ReservationKind",
    "HoldDraft",
    "Reservation",
    "ClientDetails",
    "ConfirmationTokens",
    "BookingRecord",
    "ReapResult",
]
