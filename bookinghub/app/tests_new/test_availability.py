from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from bookinghub.app.core.errors import InvalidDuration, ValidationError
from bookinghub.app.domain.entities import DaySchedule, OccupiedInterval
from bookinghub.app.services.availability import SlotReason, compute_day_slots, first_available_slot

MONDAY = date(2026, 3, 2)
SUNDAY_NOON = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _sched(start="09:00", end="17:00", break_start=None, break_end=None, is_working=True):
    return DaySchedule.from_strings(start, end, break_start, break_end, is_working=is_working)


def _at(hour, minute=0, day=MONDAY):
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def test_full_day_without_occupancy():
    result = compute_day_slots(MONDAY, _sched(), [], 60, 0, SUNDAY_NOON)
    assert result.reason is None
    assert result.slots[0] == "09:00"
    assert result.slots[-1] == "16:00"
    assert len(result.slots) == 29
    assert result.slots[1] == "09:15"


def test_booking_removes_overlapping_starts_only():
    occupied = [OccupiedInterval(_at(10), _at(11))]
    slots = compute_day_slots(MONDAY, _sched(), occupied, 60, 0, SUNDAY_NOON).slots
    # Touching the booking on either side is fine
    assert "09:00" in slots
    assert "11:00" in slots
    for blocked in ("09:15", "09:30", "09:45", "10:00", "10:15", "10:30", "10:45"):
        assert blocked not in slots
    assert len(slots) == 22


def test_non_working_day():
    result = compute_day_slots(MONDAY, _sched(is_working=False), [], 60, 0, SUNDAY_NOON)
    assert result.slots == []
    assert result.reason is SlotReason.NOT_WORKING_DAY
    assert result.to_dict() == {"slots": [], "reason": "NOT_WORKING_DAY"}


def test_missing_schedule_is_not_working():
    assert compute_day_slots(MONDAY, None, [], 60, 0, SUNDAY_NOON).reason is SlotReason.NOT_WORKING_DAY


def test_blocked_reason_wins():
    result = compute_day_slots(MONDAY, _sched(), [], 60, 0, SUNDAY_NOON, blocked=SlotReason.SALON_CLOSED)
    assert result.reason is SlotReason.SALON_CLOSED
    assert not result


def test_break_excludes_overlapping_starts():
    slots = compute_day_slots(MONDAY, _sched(break_start="12:00", break_end="13:00"), [], 60, 0, SUNDAY_NOON).slots
    assert "11:00" in slots
    assert "13:00" in slots
    assert "11:15" not in slots
    assert "12:45" not in slots
    assert len(slots) == 22


def test_past_and_min_advance_filtering():
    now = _at(10)
    slots = compute_day_slots(MONDAY, _sched(), [], 60, 0, now).slots
    assert slots[0] == "10:15"

    slots = compute_day_slots(MONDAY, _sched(), [], 60, 120, now).slots
    assert slots[0] == "12:00"
    assert slots[-1] == "16:00"
    assert len(slots) == 17


def test_buffer_counts_towards_total_duration():
    # 45 min service + 15 min buffer behaves like a 60 min block
    slots = compute_day_slots(MONDAY, _sched(), [], 45 + 15, 0, SUNDAY_NOON).slots
    assert slots[-1] == "16:00"


def test_grid_is_anchored_at_schedule_start():
    slots = compute_day_slots(MONDAY, _sched("09:05", "11:00"), [], 30, 0, SUNDAY_NOON).slots
    assert slots[:3] == ["09:05", "09:20", "09:35"]
    assert slots[-1] == "10:20"


def test_fully_booked_day_reports_no_slots():
    occupied = [OccupiedInterval(_at(9), _at(17))]
    result = compute_day_slots(MONDAY, _sched(), occupied, 60, 0, SUNDAY_NOON)
    assert result.reason is SlotReason.NO_SLOTS


def test_service_longer_than_window():
    result = compute_day_slots(MONDAY, _sched("09:00", "10:00"), [], 90, 0, SUNDAY_NOON)
    assert result.slots == []
    assert result.reason is SlotReason.NO_SLOTS


@pytest.mark.parametrize("duration", [0, -15])
def test_non_positive_duration_rejected(duration):
    with pytest.raises(InvalidDuration):
        compute_day_slots(MONDAY, _sched(), [], duration, 0, SUNDAY_NOON)
    with pytest.raises(InvalidDuration):
        first_available_slot(MONDAY, _sched(), [], duration, 0, SUNDAY_NOON)


def test_slots_follow_tenant_timezone():
    berlin = ZoneInfo("Europe/Berlin")
    # 09:00-10:00 UTC is 10:00-11:00 in Berlin in March
    occupied = [OccupiedInterval(_at(9), _at(10))]
    slots = compute_day_slots(MONDAY, _sched(), occupied, 60, 0, SUNDAY_NOON, tz=berlin).slots
    assert "09:00" in slots
    assert "10:00" not in slots
    assert "11:00" in slots


def test_first_available_slot():
    assert first_available_slot(MONDAY, _sched(), [], 60, 0, SUNDAY_NOON) == "09:00"
    assert first_available_slot(MONDAY, _sched(), [], 60, 0, _at(12)) == "12:15"
    assert first_available_slot(MONDAY, _sched(is_working=False), [], 60, 0, SUNDAY_NOON) is None
    occupied = [OccupiedInterval(_at(9), _at(17))]
    assert first_available_slot(MONDAY, _sched(), occupied, 60, 0, SUNDAY_NOON) is None


def test_results_are_ascending_and_unique():
    occupied = [OccupiedInterval(_at(13), _at(13) + timedelta(minutes=30))]
    slots = compute_day_slots(MONDAY, _sched(), occupied, 30, 0, SUNDAY_NOON).slots
    assert slots == sorted(set(slots))


def test_invalid_schedule_rejected():
    with pytest.raises(ValidationError):
        _sched("17:00", "09:00")
    with pytest.raises(ValidationError):
        _sched(break_start="12:00")
    with pytest.raises(ValidationError):
        _sched(break_start="08:00", break_end="09:30")
