"""Application package.

Booking engine core: ``core`` (config constants, db, errors, logging),
``domain`` (ORM models and value objects), ``services`` (availability,
calendar, reservations, storage) and ``workers`` (expiry reaper).
"""

from .core import db
from .domain import models

__all__ = ["db", "models"]
