from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

# .env must be loaded before constants read the environment
load_dotenv()

from bookinghub.app.core.constants import (  # noqa: E402
    CRON_SECRET,
    DEFAULT_BUSINESS_TIMEZONE,
    HOLD_TTL_MINUTES,
    RESERVATION_STORAGE,
    STORE_TIMEOUT_SECONDS,
)
from bookinghub.app.core.db import DEFAULT_URL  # noqa: E402

logger = logging.getLogger(__name__)

# Runtime settings (env-backed; tests may patch entries in place)
SETTINGS: Dict[str, Any] = {
    "database_url": os.getenv("DATABASE_URL", DEFAULT_URL),
    # Reservation hold TTL (minutes)
    "hold_ttl_minutes": HOLD_TTL_MINUTES,
    # holds | bookings
    "reservation_storage": RESERVATION_STORAGE,
    "timezone": DEFAULT_BUSINESS_TIMEZONE,
    "cron_secret": CRON_SECRET,
    "store_timeout_seconds": STORE_TIMEOUT_SECONDS,
    # Comma-separated list of origins allowed to call the widget API
    "cors_origins": os.getenv("CORS_ORIGINS", "*"),
    "host": os.getenv("HOST", "0.0.0.0"),
    "port": int(os.getenv("PORT", "8000") or 8000),
}


def get_setting(key: str, default: Any = None) -> Any:
    """Safely read a setting by key.

    Args:
        key: Setting name.
        default: Returned when the key is absent.

    Returns:
        The setting value or ``default``.
    """
    value = SETTINGS.get(key, default)
    logger.debug("Setting read: key=%s", key)
    return value


def get_hold_minutes() -> int:
    """Unified accessor for hold_ttl_minutes with safe fallback."""
    try:
        val = SETTINGS.get("hold_ttl_minutes")
        return max(1, int(val)) if val is not None else HOLD_TTL_MINUTES
    except (TypeError, ValueError):
        return HOLD_TTL_MINUTES


def get_cron_secret() -> str:
    return str(SETTINGS.get("cron_secret") or "")


def get_cors_origins() -> list[str]:
    raw = str(SETTINGS.get("cors_origins") or "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


__all__ = ["SETTINGS", "get_setting", "get_hold_minutes", "get_cron_secret", "get_cors_origins"]
