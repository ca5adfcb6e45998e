from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_choice(name: str, choices: set[str], default: str) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    return raw if raw in choices else default


# Slot grid (minutes between candidate start times)
SLOT_STEP_MINUTES: int = max(1, _env_int("SLOT_STEP_MINUTES", 15))

# Reservation holds
HOLD_TTL_MINUTES: int = max(1, _env_int("HOLD_TTL_MINUTES", 15))
RESERVED_CLIENT_NAME: str = "RESERVED"
RESERVATION_STORAGE_CHOICES = {"holds", "bookings"}
RESERVATION_STORAGE: str = _env_choice("RESERVATION_STORAGE", RESERVATION_STORAGE_CHOICES, "holds")
SESSION_TOKEN_BYTES: int = 32

# Booking policy fallbacks (used when a service leaves them NULL)
DEFAULT_MIN_ADVANCE_HOURS: int = _env_int("DEFAULT_MIN_ADVANCE_HOURS", 0)
DEFAULT_MAX_ADVANCE_DAYS: int = _env_int("DEFAULT_MAX_ADVANCE_DAYS", 90)

# Calendar summaries
MAX_RANGE_DAYS: int = _env_int("AVAILABILITY_MAX_RANGE_DAYS", 62)
ANY_STAFF: str = "_any"

# Timezone defaults
DEFAULT_BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "Europe/Berlin")

# Worker / store intervals
RESERVATION_EXPIRE_CHECK_SECONDS: int = max(1, _env_int("RESERVATION_EXPIRE_CHECK_SECONDS", 60))
STORE_TIMEOUT_SECONDS: float = _env_float("STORE_TIMEOUT_SECONDS", 10.0)

# Feature flags / logging
LOG_LEVEL_NAME: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
LOG_FILE: str = os.getenv("LOG_FILE", "bookinghub.log")
RUN_EXPIRATION_WORKER: bool = _env_bool("RUN_EXPIRATION_WORKER", True)

# Tokens
CRON_SECRET: str = os.getenv("CRON_SECRET", "")
MIN_PUBLIC_TOKEN_LENGTH: int = 20

__all__ = [
    "SLOT_STEP_MINUTES",
    "HOLD_TTL_MINUTES",
    "RESERVED_CLIENT_NAME",
    "RESERVATION_STORAGE_CHOICES",
    "RESERVATION_STORAGE",
    "SESSION_TOKEN_BYTES",
    "DEFAULT_MIN_ADVANCE_HOURS",
    "DEFAULT_MAX_ADVANCE_DAYS",
    "MAX_RANGE_DAYS",
    "ANY_STAFF",
    "DEFAULT_BUSINESS_TIMEZONE",
    "RESERVATION_EXPIRE_CHECK_SECONDS",
    "STORE_TIMEOUT_SECONDS",
    "LOG_LEVEL_NAME",
    "LOG_FILE",
    "RUN_EXPIRATION_WORKER",
    "CRON_SECRET",
    "MIN_PUBLIC_TOKEN_LENGTH",
]
