"""Domain error taxonomy for the booking engine.

Every error carries a stable machine ``code`` (what widget clients switch on),
a human ``message`` and the HTTP ``status_code`` the API boundary answers with.
"""

from __future__ import annotations

from typing import Iterable

__all__ = [
    "BookingError",
    "ValidationError",
    "FormatError",
    "InvalidDuration",
    "NotFound",
    "Conflict",
    "SlotTaken",
    "Expired",
    "InvalidTransition",
    "RangeTooLarge",
    "TooFarAhead",
    "AlreadyCancelled",
    "PastBooking",
    "AlreadyRescheduled",
    "WrongStatus",
    "TooLate",
    "InternalStoreError",
]


class BookingError(Exception):
    code: str = "BOOKING_FAILED"
    status_code: int = 500
    default_message: str = "Booking operation failed."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(BookingError):
    code = "VALIDATION_FAILED"
    status_code = 400
    default_message = "Validation failed."


class FormatError(ValidationError):
    code = "INVALID_FORMAT"
    default_message = "Malformed value."


class InvalidDuration(ValidationError):
    code = "INVALID_DURATION"
    default_message = "Duration must be a positive number of minutes."


class NotFound(BookingError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."


class Conflict(BookingError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Conflicting write."


class SlotTaken(Conflict):
    code = "SLOT_TAKEN"
    default_message = "This time slot is already taken."


class Expired(BookingError):
    code = "HOLD_EXPIRED"
    status_code = 410
    default_message = "The reservation has expired. Please book again."


class InvalidTransition(BookingError):
    code = "INVALID_TRANSITION"
    status_code = 400

    def __init__(self, current: str, requested: str, allowed: Iterable[str]) -> None:
        self.current = current
        self.requested = requested
        self.allowed = sorted(allowed)
        super().__init__(f'Status "{current}" cannot be changed to "{requested}"')

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["allowed"] = list(self.allowed)
        return data


class RangeTooLarge(BookingError):
    code = "RANGE_TOO_LARGE"
    status_code = 400
    default_message = "Requested date range is too large."


class TooFarAhead(BookingError):
    code = "TOO_FAR_AHEAD"
    status_code = 400
    default_message = "This date is too far in the future."


class AlreadyCancelled(BookingError):
    code = "ALREADY_CANCELLED"
    status_code = 400
    default_message = "This booking has already been cancelled."


class PastBooking(BookingError):
    code = "PAST_BOOKING"
    status_code = 400
    default_message = "Past appointments cannot be changed."


class AlreadyRescheduled(BookingError):
    code = "ALREADY_RESCHEDULED"
    status_code = 400
    default_message = "This appointment has already been rescheduled."


class WrongStatus(BookingError):
    code = "WRONG_STATUS"
    status_code = 400
    default_message = "This appointment cannot be changed in its current status."


class TooLate(BookingError):
    code = "TOO_LATE"
    status_code = 400
    default_message = "It is too late to change this appointment."


class InternalStoreError(BookingError):
    code = "STORE_UNAVAILABLE"
    status_code = 500
    default_message = "Booking storage is unavailable."
