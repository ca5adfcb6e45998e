import uuid
from datetime import date, datetime, timedelta

import pytest

from bookinghub.app.core.errors import NotFound, RangeTooLarge, ValidationError
from bookinghub.app.domain.models import BookingStatus
from bookinghub.app.services.calendar_services import check_range, resolve_candidate_staff, summarize_range
from bookinghub.app.services.shared_services import get_tz
from bookinghub.app.tests_new.fakes import seed_salon

# The fixture clock sits on Sunday 2026-03-01; the salon works Mon-Fri
SUNDAY = date(2026, 3, 1)
SATURDAY = date(2026, 3, 7)


def test_check_range():
    assert check_range(SUNDAY, SUNDAY) == 1
    assert check_range(SUNDAY, SATURDAY) == 7
    with pytest.raises(ValidationError) as exc:
        check_range(SATURDAY, SUNDAY)
    assert exc.value.code == "INVALID_RANGE"
    with pytest.raises(RangeTooLarge):
        check_range(SUNDAY, SUNDAY + timedelta(days=63))
    assert check_range(SUNDAY, SUNDAY + timedelta(days=62)) == 63
    assert check_range(SUNDAY, SUNDAY + timedelta(days=61)) == 62


async def test_week_summary_for_one_staff_member(manager, salon):
    days = await manager.summarize(salon.tenant, salon.service_id, salon.staff_id, SUNDAY, SATURDAY)
    assert days == [SUNDAY, SATURDAY]


async def test_any_staff_unions_calendars(manager, store, salon):
    weekender = store.add_staff(salon.tenant, salon.service_id, name="Sam")
    store.set_schedule(weekender, 5, "10:00", "14:00")

    days = await manager.summarize(salon.tenant, salon.service_id, "_any", SUNDAY, SATURDAY)
    assert days == [SUNDAY]

    days = await manager.summarize(salon.tenant, salon.service_id, salon.staff_id, SUNDAY, SATURDAY)
    assert SATURDAY in days


async def test_blocked_dates(manager, store, salon):
    tuesday, wednesday = date(2026, 3, 3), date(2026, 3, 4)
    store.block(salon.tenant, tuesday)
    store.block(salon.tenant, wednesday, staff_id=salon.staff_id)

    days = await manager.summarize(salon.tenant, salon.service_id, salon.staff_id, SUNDAY, SATURDAY)
    assert days == [SUNDAY, tuesday, wednesday, SATURDAY]


async def test_staff_block_does_not_close_salon_for_any(manager, store, salon):
    wednesday = date(2026, 3, 4)
    colleague = store.add_staff(salon.tenant, salon.service_id, name="Kim")
    store.set_schedule(colleague, 2, "09:00", "12:00")
    store.block(salon.tenant, wednesday, staff_id=salon.staff_id)

    days = await manager.summarize(salon.tenant, salon.service_id, "_any", SUNDAY, SATURDAY)
    assert wednesday not in days


async def test_fully_booked_day_is_unavailable(manager, store, salon):
    thursday = date(2026, 3, 5)
    start = datetime.combine(thursday, datetime.min.time(), tzinfo=get_tz("UTC")) + timedelta(hours=9)
    store.add_booking(salon.tenant, salon.service_id, salon.staff_id, start, minutes=8 * 60)

    days = await manager.summarize(salon.tenant, salon.service_id, salon.staff_id, SUNDAY, SATURDAY)
    assert thursday in days

    # Cancelled bookings free the day again
    for booking in store.bookings.values():
        booking.status = BookingStatus.CANCELLED
    days = await manager.summarize(salon.tenant, salon.service_id, salon.staff_id, SUNDAY, SATURDAY)
    assert thursday not in days


async def test_days_beyond_max_advance(manager, store):
    salon = seed_salon(store, max_advance_days=3)
    days = await manager.summarize(salon.tenant, salon.service_id, salon.staff_id, SUNDAY, SATURDAY)
    assert days == [SUNDAY, date(2026, 3, 5), date(2026, 3, 6), SATURDAY]


async def test_service_without_staff_is_fully_unavailable(manager, store, salon, clock):
    lonely = store.add_service(salon.tenant, duration=30)
    days = await summarize_range(
        store, salon.tenant.id, lonely, "_any", SUNDAY, SATURDAY, now=clock(), tz=get_tz("UTC"), step=15
    )
    assert len(days) == 7


async def test_unknown_service_and_staff(manager, store, salon):
    with pytest.raises(NotFound) as exc:
        await manager.summarize(salon.tenant, uuid.uuid4(), salon.staff_id, SUNDAY, SATURDAY)
    assert exc.value.code == "SERVICE_NOT_FOUND"

    with pytest.raises(NotFound) as exc:
        await manager.summarize(salon.tenant, salon.service_id, uuid.uuid4(), SUNDAY, SATURDAY)
    assert exc.value.code == "STAFF_NOT_FOUND"


async def test_resolve_candidate_staff(store, salon):
    assert await resolve_candidate_staff(store, salon.tenant.id, salon.service_id, "_any") == [salon.staff_id]
    assert await resolve_candidate_staff(store, salon.tenant.id, salon.service_id, str(salon.staff_id)) == [
        salon.staff_id
    ]
    with pytest.raises(ValidationError) as exc:
        await resolve_candidate_staff(store, salon.tenant.id, salon.service_id, "not-a-uuid")
    assert exc.value.code == "INVALID_ID"

    store.staff[salon.staff_id].is_active = False
    assert await resolve_candidate_staff(store, salon.tenant.id, salon.service_id, "_any") == []
