"""Single-day slot calculation.

Pure functions over explicit inputs: callers load the schedule, blocked-date
flags and occupied intervals, then ask for the bookable start times. Nothing
here reads storage or the clock.

Candidate starts lie on a grid anchored at the staff member's start time
(``work_start + k * step``), so a 09:05 start yields 09:05, 09:20, ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Iterable, Iterator, Sequence

from bookinghub.app.core.constants import SLOT_STEP_MINUTES
from bookinghub.app.core.errors import InvalidDuration
from bookinghub.app.domain.entities import DaySchedule, OccupiedInterval
from bookinghub.app.services.shared_services import at_minute, format_slot, overlaps

logger = logging.getLogger(__name__)

__all__ = [
    "SlotReason",
    "DaySlots",
    "compute_day_slots",
    "first_available_slot",
    "iter_available_minutes",
]


class SlotReason(str, Enum):
    NOT_WORKING_DAY = "NOT_WORKING_DAY"
    SALON_CLOSED = "SALON_CLOSED"
    STAFF_UNAVAILABLE = "STAFF_UNAVAILABLE"
    TOO_FAR_AHEAD = "TOO_FAR_AHEAD"
    NO_SLOTS = "NO_SLOTS"


@dataclass(frozen=True)
class DaySlots:
    slots: list[str] = field(default_factory=list)
    reason: SlotReason | None = None

    @classmethod
    def closed(cls, reason: SlotReason) -> "DaySlots":
        return cls(slots=[], reason=reason)

    def __bool__(self) -> bool:
        return bool(self.slots)

    def to_dict(self) -> dict:
        data: dict = {"slots": list(self.slots)}
        if self.reason is not None:
            data["reason"] = self.reason.value
        return data


def iter_available_minutes(
    day: date,
    schedule: DaySchedule,
    occupied: Sequence[OccupiedInterval],
    total_duration_minutes: int,
    min_advance_minutes: int,
    now: datetime,
    *,
    tz: tzinfo = UTC,
    step: int = SLOT_STEP_MINUTES,
) -> Iterator[int]:
    """Yield accepted start minutes in ascending order (assumes a working day)."""
    if total_duration_minutes <= 0:
        raise InvalidDuration()
    if step <= 0:
        raise ValueError("slot step must be positive")

    duration = timedelta(minutes=total_duration_minutes)
    earliest = now + timedelta(minutes=max(0, min_advance_minutes))
    last_start = schedule.end_minute - total_duration_minutes

    for minute in range(schedule.start_minute, last_start + 1, step):
        slot_start = at_minute(day, minute, tz)
        if slot_start <= now or slot_start < earliest:
            continue
        if schedule.has_break and overlaps(
            minute, minute + total_duration_minutes, schedule.break_start, schedule.break_end
        ):
            continue
        slot_end = slot_start + duration
        if any(overlaps(slot_start, slot_end, occ.start, occ.end) for occ in occupied):
            continue
        yield minute


def _closed_reason(schedule: DaySchedule | None, blocked: SlotReason | None) -> SlotReason | None:
    if blocked is not None:
        return blocked
    if schedule is None or not schedule.is_working:
        return SlotReason.NOT_WORKING_DAY
    return None


def compute_day_slots(
    day: date,
    schedule: DaySchedule | None,
    occupied: Iterable[OccupiedInterval],
    total_duration_minutes: int,
    min_advance_minutes: int,
    now: datetime,
    *,
    tz: tzinfo = UTC,
    step: int = SLOT_STEP_MINUTES,
    blocked: SlotReason | None = None,
) -> DaySlots:
    """Return the bookable ``HH:MM`` start times for one staff member on ``day``.

    Args:
        day: Calendar date, interpreted as wall-clock in ``tz``.
        schedule: That weekday's schedule; ``None`` means no schedule row.
        occupied: Confirmed/pending bookings and live holds for the staff member.
        total_duration_minutes: Service (or variant) duration plus buffer.
        min_advance_minutes: Required lead time between ``now`` and a slot start.
        now: Current aware time.
        blocked: ``SALON_CLOSED`` / ``STAFF_UNAVAILABLE`` when a blocked date applies.

    Returns:
        ``DaySlots`` with ascending slots. ``reason`` is set whenever ``slots`` is
        empty.
    """
    if total_duration_minutes <= 0:
        raise InvalidDuration()

    reason = _closed_reason(schedule, blocked)
    if reason is not None:
        return DaySlots.closed(reason)

    intervals = list(occupied)
    minutes = iter_available_minutes(
        day, schedule, intervals, total_duration_minutes, min_advance_minutes, now, tz=tz, step=step
    )
    slots = [format_slot(m) for m in minutes]
    if not slots:
        logger.debug("No slots on %s (duration=%s, occupied=%d)", day, total_duration_minutes, len(intervals))
        return DaySlots.closed(SlotReason.NO_SLOTS)
    return DaySlots(slots=slots)


def first_available_slot(
    day: date,
    schedule: DaySchedule | None,
    occupied: Iterable[OccupiedInterval],
    total_duration_minutes: int,
    min_advance_minutes: int,
    now: datetime,
    *,
    tz: tzinfo = UTC,
    step: int = SLOT_STEP_MINUTES,
) -> str | None:
    """Earliest bookable start on ``day`` or ``None``; stops at the first hit."""
    if total_duration_minutes <= 0:
        raise InvalidDuration()
    if _closed_reason(schedule, None) is not None:
        return None
    minutes = iter_available_minutes(
        day, schedule, list(occupied), total_duration_minutes, min_advance_minutes, now, tz=tz, step=step
    )
    first = next(minutes, None)
    return format_slot(first) if first is not None else None
