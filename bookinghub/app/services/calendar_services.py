"""Calendar summaries: which days in a range have no bookable slot at all.

Used by the widget date picker. Everything the range needs (schedules,
blocked dates, occupied intervals) is loaded once, then the day calculator
runs in memory per day and per candidate staff member.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from bookinghub.app.core.constants import ANY_STAFF, MAX_RANGE_DAYS, SLOT_STEP_MINUTES
from bookinghub.app.core.errors import NotFound, RangeTooLarge, ValidationError
from bookinghub.app.domain.entities import DaySchedule, OccupiedInterval
from bookinghub.app.services.availability import first_available_slot
from bookinghub.app.services.repositories import OccupancyStore
from bookinghub.app.services.shared_services import at_minute, iter_dates

logger = logging.getLogger(__name__)

__all__ = ["summarize_range", "resolve_candidate_staff", "check_range"]


def check_range(date_from: date, date_to: date, max_days: int = MAX_RANGE_DAYS) -> int:
    """Validate a requested range and return its length in days (inclusive)."""
    if date_to < date_from:
        raise ValidationError("'to' must not be before 'from'", code="INVALID_RANGE")
    days = (date_to - date_from).days
    if days > max_days:
        raise RangeTooLarge(f"Date range too large (max {max_days} days)")
    return days + 1


async def resolve_candidate_staff(
    store: OccupancyStore,
    tenant_id: uuid.UUID,
    service_id: uuid.UUID,
    staff: uuid.UUID | str,
) -> list[uuid.UUID]:
    """Staff members whose calendars count: all linked to the service for ``_any``."""
    if staff == ANY_STAFF:
        return list(await store.get_staff_ids_for_service(tenant_id, service_id))
    staff_id = staff if isinstance(staff, uuid.UUID) else _parse_uuid(staff, "staff_id")
    if not await store.is_active_staff(tenant_id, staff_id):
        raise NotFound("Staff member not found", code="STAFF_NOT_FOUND")
    return [staff_id]


def _parse_uuid(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}", code="INVALID_ID") from exc


async def summarize_range(
    store: OccupancyStore,
    tenant_id: uuid.UUID,
    service_id: uuid.UUID,
    staff: uuid.UUID | str,
    date_from: date,
    date_to: date,
    *,
    now: datetime,
    tz: ZoneInfo,
    variant_id: uuid.UUID | None = None,
    step: int = SLOT_STEP_MINUTES,
) -> list[date]:
    """Return the sorted dates in ``[date_from, date_to]`` with no bookable slot.

    A day counts as unavailable when it lies beyond the service's
    ``max_advance_days``, is blocked salon-wide, or when every candidate
    staff member is blocked, off, or fully booked that day.
    """
    check_range(date_from, date_to)

    terms = await store.get_service_terms(tenant_id, service_id, variant_id)
    if terms is None:
        raise NotFound("Service not found", code="SERVICE_NOT_FOUND")
    terms.require_positive()

    days = list(iter_dates(date_from, date_to))
    candidates = await resolve_candidate_staff(store, tenant_id, service_id, staff)
    if not candidates:
        logger.info("No staff offers service %s; whole range unavailable", service_id)
        return days

    today = now.astimezone(tz).date()
    last_bookable = today + timedelta(days=terms.max_days_ahead)

    schedules: dict[tuple[uuid.UUID, int], DaySchedule] = {}
    for sched in await store.find_schedules(candidates):
        schedules[(sched.staff_id, sched.day_of_week)] = sched

    salon_closed: set[date] = set()
    staff_blocked: set[tuple[uuid.UUID, date]] = set()
    for blocked in await store.find_blocked_dates(tenant_id, candidates, date_from, date_to):
        if blocked.salon_wide:
            salon_closed.add(blocked.day)
        else:
            staff_blocked.add((blocked.staff_id, blocked.day))

    window_start = at_minute(date_from, 0, tz)
    window_end = at_minute(date_to + timedelta(days=1), 0, tz)
    occupied_by_staff: dict[uuid.UUID, list[OccupiedInterval]] = defaultdict(list)
    for occ in await store.find_occupied_intervals(candidates, window_start, window_end, now):
        occupied_by_staff[occ.staff_id].append(occ)

    unavailable: list[date] = []
    for day in days:
        if day > last_bookable or day in salon_closed:
            unavailable.append(day)
            continue
        has_slot = False
        for staff_id in candidates:
            if (staff_id, day) in staff_blocked:
                continue
            slot = first_available_slot(
                day,
                schedules.get((staff_id, day.weekday())),
                occupied_by_staff.get(staff_id, ()),
                terms.total_minutes,
                terms.min_advance_minutes,
                now,
                tz=tz,
                step=step,
            )
            if slot is not None:
                has_slot = True
                break
        if not has_slot:
            unavailable.append(day)

    logger.debug(
        "Summarized %s..%s for service %s: %d/%d unavailable", date_from, date_to, service_id, len(unavailable), len(days)
    )
    return unavailable
