"""Time arithmetic shared by the availability and reservation code.

All schedule values are minutes after local midnight; all stored timestamps
are timezone-aware.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import UTC, date, datetime, time as dtime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bookinghub.app.core.constants import DEFAULT_BUSINESS_TIMEZONE
from bookinghub.app.core.errors import FormatError

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

__all__ = [
    "MINUTES_PER_DAY",
    "get_env_int",
    "to_minutes",
    "minutes_of",
    "format_slot",
    "overlaps",
    "parse_date",
    "get_tz",
    "utc_now",
    "local_now",
    "at_minute",
    "iter_dates",
]


def get_env_int(name: str, default: int) -> int:
    """Read an int from environment with a safe default.

    - Returns `default` if variable is missing/empty or not an int.
    - Logs a warning on invalid values to aid diagnostics.
    """
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r, defaulting to %s", name, raw, default)
        return default


def to_minutes(value: str) -> int:
    """Convert ``HH:MM`` (or Postgres ``HH:MM:SS``) to minutes after midnight."""
    if not isinstance(value, str):
        raise FormatError(f"Expected HH:MM string, got {value!r}")
    match = _HHMM_RE.match(value.strip())
    if not match:
        raise FormatError(f"Malformed time {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise FormatError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def minutes_of(value: dtime) -> int:
    return value.hour * 60 + value.minute


def format_slot(minutes: int) -> str:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise FormatError(f"Minute-of-day out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


def parse_date(value: str) -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value.strip()):
        raise FormatError(f"Malformed date {value!r}, expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise FormatError(f"Invalid calendar date {value!r}") from exc


def get_tz(name: str | None = None) -> ZoneInfo:
    """Resolve an IANA timezone, falling back to the business default."""
    tz_name = name or DEFAULT_BUSINESS_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", tz_name, DEFAULT_BUSINESS_TIMEZONE)
        return ZoneInfo(DEFAULT_BUSINESS_TIMEZONE)


def utc_now() -> datetime:
    """Return current time as an aware UTC datetime."""
    return datetime.now(UTC)


def local_now(tz: ZoneInfo | None = None) -> datetime:
    return datetime.now(tz or get_tz())


def at_minute(day: date, minute: int, tz: ZoneInfo) -> datetime:
    """Aware wall-clock datetime for ``minute`` after midnight of ``day`` in ``tz``."""
    return datetime.combine(day, dtime(hour=minute // 60, minute=minute % 60), tzinfo=tz)


def iter_dates(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
