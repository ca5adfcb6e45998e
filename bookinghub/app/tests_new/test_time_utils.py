from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

import pytest

from bookinghub.app.core.constants import DEFAULT_BUSINESS_TIMEZONE
from bookinghub.app.core.errors import FormatError
from bookinghub.app.services import shared_services as su


@pytest.mark.parametrize(
    "raw, expected",
    [("09:30", 570), ("9:05", 545), ("00:00", 0), ("23:59", 1439), ("17:00:00", 1020)],
)
def test_to_minutes_accepts_hhmm(raw, expected):
    assert su.to_minutes(raw) == expected


@pytest.mark.parametrize("raw", ["24:00", "12:60", "noon", "", "12", None])
def test_to_minutes_rejects_malformed(raw):
    with pytest.raises(FormatError):
        su.to_minutes(raw)


def test_format_slot_bounds():
    assert su.format_slot(0) == "00:00"
    assert su.format_slot(545) == "09:05"
    with pytest.raises(FormatError):
        su.format_slot(24 * 60)


def test_overlaps_is_half_open():
    assert su.overlaps(0, 60, 30, 90)
    assert su.overlaps(30, 40, 0, 60)
    assert not su.overlaps(0, 60, 60, 120)
    assert not su.overlaps(60, 120, 0, 60)


def test_parse_date():
    assert su.parse_date("2026-03-02") == date(2026, 3, 2)
    for bad in ("2026-02-30", "2026/03/02", "tomorrow"):
        with pytest.raises(FormatError):
            su.parse_date(bad)


def test_get_tz_falls_back_on_unknown_zone():
    assert su.get_tz("Asia/Tokyo") == ZoneInfo("Asia/Tokyo")
    assert su.get_tz("Mars/Olympus_Mons") == ZoneInfo(DEFAULT_BUSINESS_TIMEZONE)
    assert su.get_tz(None) == ZoneInfo(DEFAULT_BUSINESS_TIMEZONE)


def test_at_minute_is_wall_clock_in_zone():
    berlin = ZoneInfo("Europe/Berlin")
    start = su.at_minute(date(2026, 3, 2), 9 * 60, berlin)
    assert start.astimezone(UTC) == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
    # After the spring-forward switch Berlin is UTC+2
    summer = su.at_minute(date(2026, 4, 6), 9 * 60, berlin)
    assert summer.astimezone(UTC) == datetime(2026, 4, 6, 7, 0, tzinfo=UTC)


def test_iter_dates_inclusive():
    days = list(su.iter_dates(date(2026, 2, 27), date(2026, 3, 2)))
    assert days[0] == date(2026, 2, 27)
    assert days[-1] == date(2026, 3, 2)
    assert len(days) == 4


def test_get_env_int(monkeypatch):
    monkeypatch.setenv("BOOKINGHUB_TEST_INT", "7")
    assert su.get_env_int("BOOKINGHUB_TEST_INT", 1) == 7
    monkeypatch.setenv("BOOKINGHUB_TEST_INT", "seven")
    assert su.get_env_int("BOOKINGHUB_TEST_INT", 1) == 1
    monkeypatch.delenv("BOOKINGHUB_TEST_INT")
    assert su.get_env_int("BOOKINGHUB_TEST_INT", 3) == 3
