"""Reservation lifecycle: hold -> confirm, hold cancellation, status changes,
and the token-gated client cancel/reschedule links.

``ReservationManager`` owns the business rules; the store it is given owns
atomicity. Nothing here takes locks: two clients racing for the same slot are
separated by the store's exclusion guarantee, and the loser gets ``SlotTaken``.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import date, datetime, timedelta
from typing import Callable

from bookinghub.app.core.constants import HOLD_TTL_MINUTES, SESSION_TOKEN_BYTES, SLOT_STEP_MINUTES
from bookinghub.app.core.errors import (
    AlreadyCancelled,
    AlreadyRescheduled,
    Conflict,
    Expired,
    InvalidTransition,
    NotFound,
    PastBooking,
    SlotTaken,
    TooFarAhead,
    TooLate,
    ValidationError,
    WrongStatus,
)
from bookinghub.app.domain.entities import (
    BookingRecord,
    ClientDetails,
    ConfirmationTokens,
    DaySchedule,
    HoldDraft,
    Reservation,
    ReservationKind,
    ServiceTerms,
    TenantInfo,
)
from bookinghub.app.domain.models import (
    ALLOWED_TRANSITIONS,
    CLIENT_CANCELLABLE_STATUSES,
    BookingStatus,
    normalize_booking_status,
)
from bookinghub.app.services.availability import DaySlots, SlotReason, compute_day_slots
from bookinghub.app.services.calendar_services import summarize_range
from bookinghub.app.services.repositories import OccupancyStore
from bookinghub.app.services.shared_services import at_minute, get_tz, overlaps, to_minutes, utc_now
from bookinghub.app.workers.expiration import reap_quietly

logger = logging.getLogger(__name__)

__all__ = ["ReservationManager", "new_token", "check_transition"]


def new_token(nbytes: int = SESSION_TOKEN_BYTES) -> str:
    """Unguessable hex token (64 chars by default)."""
    return secrets.token_hex(nbytes)


def check_transition(current: BookingStatus, requested: BookingStatus) -> None:
    """Raise InvalidTransition unless ``current -> requested`` is in the table."""
    allowed = ALLOWED_TRANSITIONS.get(current, frozenset())
    if requested not in allowed:
        raise InvalidTransition(current.value, requested.value, [s.value for s in allowed])


class ReservationManager:
    """Business operations over an ``OccupancyStore``.

    Args:
        store: persistence collaborator (``SqlBookingStore`` in production).
        hold_ttl_minutes: lifetime of a reservation before the reaper claims it.
        clock: returns the current aware time; injectable for tests.
    """

    def __init__(
        self,
        store: OccupancyStore,
        *,
        hold_ttl_minutes: int = HOLD_TTL_MINUTES,
        clock: Callable[[], datetime] = utc_now,
        step: int = SLOT_STEP_MINUTES,
    ) -> None:
        self.store = store
        self.hold_ttl = timedelta(minutes=max(1, int(hold_ttl_minutes)))
        self.clock = clock
        self.step = step

    @property
    def reservation_kind(self) -> ReservationKind:
        return getattr(self.store, "reservation_kind", ReservationKind.HOLD)

    # -------------------------------------------------
    # Lookups
    # -------------------------------------------------
    async def resolve_tenant(self, slug: str) -> TenantInfo:
        tenant = await self.store.get_tenant_by_slug(slug)
        if tenant is None:
            raise NotFound("Salon not found", code="TENANT_NOT_FOUND")
        return tenant

    async def _tenant_by_id(self, tenant_id: uuid.UUID) -> TenantInfo:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("Salon not found", code="TENANT_NOT_FOUND")
        return tenant

    async def _terms(
        self, tenant_id: uuid.UUID, service_id: uuid.UUID, variant_id: uuid.UUID | None = None
    ) -> ServiceTerms:
        terms = await self.store.get_service_terms(tenant_id, service_id, variant_id)
        if terms is None:
            raise NotFound("Service not found", code="SERVICE_NOT_FOUND")
        terms.require_positive()
        return terms

    async def _require_staff(self, tenant_id: uuid.UUID, staff_id: uuid.UUID) -> None:
        if not await self.store.is_active_staff(tenant_id, staff_id):
            raise NotFound("Staff member not found", code="STAFF_NOT_FOUND")

    async def _day_context(
        self, tenant_id: uuid.UUID, staff_id: uuid.UUID, day: date
    ) -> tuple[DaySchedule | None, SlotReason | None]:
        blocked_reason: SlotReason | None = None
        for blocked in await self.store.find_blocked_dates(tenant_id, [staff_id], day, day):
            if blocked.salon_wide:
                blocked_reason = SlotReason.SALON_CLOSED
                break
            if blocked.staff_id == staff_id:
                blocked_reason = SlotReason.STAFF_UNAVAILABLE
        schedule = None
        for sched in await self.store.find_schedules([staff_id]):
            if sched.staff_id == staff_id and sched.day_of_week == day.weekday():
                schedule = sched
                break
        return schedule, blocked_reason

    async def _booking_by_token(self, *, cancel_token: str | None = None, reschedule_token: str | None = None):
        booking = await self.store.get_booking_by_token(cancel_token=cancel_token, reschedule_token=reschedule_token)
        if booking is None:
            raise NotFound("Appointment not found", code="BOOKING_NOT_FOUND")
        return booking

    # -------------------------------------------------
    # Slots
    # -------------------------------------------------
    async def list_slots(
        self,
        tenant: TenantInfo,
        service_id: uuid.UUID,
        staff_id: uuid.UUID,
        day: date,
        variant_id: uuid.UUID | None = None,
        *,
        exclude_booking_id: uuid.UUID | None = None,
    ) -> DaySlots:
        """Bookable start times for one staff member on ``day``.

        Store failures propagate: a listing is never produced from partial data.
        """
        terms = await self._terms(tenant.id, service_id, variant_id)
        await self._require_staff(tenant.id, staff_id)

        now = self.clock()
        tz = get_tz(tenant.timezone)
        if day > now.astimezone(tz).date() + timedelta(days=terms.max_days_ahead):
            return DaySlots.closed(SlotReason.TOO_FAR_AHEAD)

        schedule, blocked = await self._day_context(tenant.id, staff_id, day)
        if blocked is not None or schedule is None or not schedule.is_working:
            return compute_day_slots(
                day, schedule, (), terms.total_minutes, terms.min_advance_minutes, now, tz=tz, blocked=blocked
            )

        occupied = await self.store.find_occupied_intervals(
            [staff_id],
            at_minute(day, 0, tz),
            at_minute(day + timedelta(days=1), 0, tz),
            now,
            exclude_booking_id=exclude_booking_id,
        )
        return compute_day_slots(
            day,
            schedule,
            occupied,
            terms.total_minutes,
            terms.min_advance_minutes,
            now,
            tz=tz,
            step=self.step,
        )

    async def summarize(
        self,
        tenant: TenantInfo,
        service_id: uuid.UUID,
        staff: uuid.UUID | str,
        date_from: date,
        date_to: date,
        variant_id: uuid.UUID | None = None,
    ) -> list[date]:
        return await summarize_range(
            self.store,
            tenant.id,
            service_id,
            staff,
            date_from,
            date_to,
            now=self.clock(),
            tz=get_tz(tenant.timezone),
            variant_id=variant_id,
            step=self.step,
        )

    # -------------------------------------------------
    # Start-time validation shared by reserve and reschedule
    # -------------------------------------------------
    def _check_lead_time(self, terms: ServiceTerms, start: datetime, now: datetime, tz) -> None:
        if start <= now:
            raise ValidationError("This time has already passed", code="TIME_PASSED")
        if start < now + timedelta(minutes=terms.min_advance_minutes):
            hours = terms.min_advance_minutes // 60
            raise ValidationError(f"Bookings require at least {hours} hours notice", code="TOO_SOON")
        if start.astimezone(tz).date() > now.astimezone(tz).date() + timedelta(days=terms.max_days_ahead):
            raise TooFarAhead(f"Bookings can be made at most {terms.max_days_ahead} days ahead")

    async def _check_on_calendar(
        self, tenant_id: uuid.UUID, staff_id: uuid.UUID, day: date, minute: int, total: int
    ) -> None:
        schedule, blocked = await self._day_context(tenant_id, staff_id, day)
        if blocked is not None:
            raise ValidationError("No appointments on this date", code=blocked.value)
        if schedule is None or not schedule.is_working:
            raise ValidationError("Staff member does not work on this day", code="NOT_WORKING_DAY")
        if minute < schedule.start_minute or minute + total > schedule.end_minute:
            raise ValidationError("Time is outside working hours", code="OUTSIDE_WORKING_HOURS")
        if schedule.has_break and overlaps(minute, minute + total, schedule.break_start, schedule.break_end):
            raise ValidationError("Time overlaps the staff break", code="OUTSIDE_WORKING_HOURS")

    # -------------------------------------------------
    # Hold -> confirm
    # -------------------------------------------------
    async def reserve(
        self,
        tenant: TenantInfo,
        service_id: uuid.UUID,
        staff_id: uuid.UUID,
        day: date,
        time: str,
        variant_id: uuid.UUID | None = None,
    ) -> Reservation:
        """Hold a slot for ``hold_ttl`` without client identity.

        Raises:
            SlotTaken: another hold or booking overlaps the interval.
            ValidationError: the start is in the past, too soon, or not on the
                staff calendar.
            TooFarAhead: beyond the service's max advance window.
        """
        now = self.clock()
        await reap_quietly(self.store, now, tenant.id)

        terms = await self._terms(tenant.id, service_id, variant_id)
        await self._require_staff(tenant.id, staff_id)

        tz = get_tz(tenant.timezone)
        minute = to_minutes(time)
        start = at_minute(day, minute, tz)
        end = start + timedelta(minutes=terms.total_minutes)
        self._check_lead_time(terms, start, now, tz)
        await self._check_on_calendar(tenant.id, staff_id, day, minute, terms.total_minutes)

        draft = HoldDraft(
            kind=self.reservation_kind,
            tenant_id=tenant.id,
            service_id=service_id,
            staff_id=staff_id,
            start_time=start,
            end_time=end,
            expires_at=now + self.hold_ttl,
            session_token=new_token(),
            variant_id=variant_id,
            price=terms.price,
            duration=terms.duration,
        )
        reservation = await self.store.insert_reservation(draft)
        logger.info(
            "Reserved %s for staff %s at %s (expires %s)", reservation.id, staff_id, start.isoformat(), draft.expires_at
        )
        return reservation

    async def confirm(
        self,
        tenant: TenantInfo,
        reservation_id: uuid.UUID,
        client: ClientDetails,
        session_token: str | None = None,
    ) -> BookingRecord:
        """Promote a live reservation into a confirmed booking."""
        if not (client.name or "").strip() or not (client.phone or "").strip():
            raise ValidationError("Name and phone are required", code="MISSING_CLIENT_DETAILS")

        reservation = await self.store.get_reservation(tenant.id, reservation_id)
        if reservation is None:
            raise NotFound("Reservation not found", code="RESERVATION_NOT_FOUND")
        # Holds belong to whoever carries their session token; pending placeholders have none
        if reservation.kind is ReservationKind.HOLD and not (
            session_token
            and reservation.session_token
            and secrets.compare_digest(session_token.encode(), reservation.session_token.encode())
        ):
            raise NotFound("Reservation not found", code="RESERVATION_NOT_FOUND")

        now = self.clock()
        if reservation.is_expired(now):
            await self.store.discard_reservation(reservation, now)
            logger.info("Reservation %s expired before confirmation", reservation.id)
            raise Expired()

        terms = await self._terms(tenant.id, reservation.service_id, reservation.variant_id)
        tokens = ConfirmationTokens(cancel_token=new_token(), reschedule_token=new_token())
        try:
            booking = await self.store.confirm_reservation(reservation, client, terms, tokens, now)
        except SlotTaken:
            await self.store.discard_reservation(reservation, now)
            raise
        if booking is None:
            # Expired (or reaped) between the read above and the write
            await self.store.discard_reservation(reservation, now)
            raise Expired()
        logger.info("Booking %s confirmed for staff %s at %s", booking.id, booking.staff_id, booking.start_time)
        return booking

    async def cancel_hold(self, tenant: TenantInfo, hold_id: uuid.UUID, session_token: str) -> bool:
        """Release a hold early; a wrong token or unknown id is a silent no-op."""
        if not session_token:
            return False
        deleted = await self.store.delete_hold(tenant.id, hold_id, session_token)
        if deleted:
            logger.info("Hold %s released by its holder", hold_id)
        return deleted

    # -------------------------------------------------
    # Status transitions
    # -------------------------------------------------
    async def change_status(
        self, tenant_id: uuid.UUID, booking_id: uuid.UUID, new_status: BookingStatus | str
    ) -> BookingRecord:
        requested = normalize_booking_status(new_status)
        if requested is None:
            raise ValidationError(f"Unknown status {new_status!r}", code="INVALID_STATUS")
        booking = await self.store.get_booking(tenant_id, booking_id)
        if booking is None:
            raise NotFound("Appointment not found", code="BOOKING_NOT_FOUND")
        check_transition(booking.status, requested)

        fields: dict = {}
        if requested is BookingStatus.CONFIRMED:
            fields["expires_at"] = None
        elif requested is BookingStatus.CANCELLED:
            fields.update(cancelled_at=self.clock(), cancelled_by="staff")
        updated = await self.store.update_status(booking.id, booking.status, requested, fields)
        if updated is None:
            # Lost a race with another writer; report against the fresh state
            fresh = await self.store.get_booking(tenant_id, booking_id)
            if fresh is None:
                raise NotFound("Appointment not found", code="BOOKING_NOT_FOUND")
            check_transition(fresh.status, requested)
            raise Conflict("Appointment changed concurrently, retry", code="CONCURRENT_UPDATE")
        logger.info("Booking %s: %s -> %s", booking.id, booking.status.value, requested.value)
        return updated

    # -------------------------------------------------
    # Client cancel link
    # -------------------------------------------------
    async def describe_cancellation(self, token: str) -> dict:
        booking = await self._booking_by_token(cancel_token=token)
        now = self.clock()
        reason = None
        if booking.start_time <= now:
            reason = "past"
        elif booking.status not in CLIENT_CANCELLABLE_STATUSES:
            reason = "already_cancelled"
        return {"booking": booking, "can_cancel": reason is None, "reason": reason}

    async def cancel_by_token(self, token: str) -> BookingRecord:
        booking = await self._booking_by_token(cancel_token=token)
        if booking.status not in CLIENT_CANCELLABLE_STATUSES:
            raise AlreadyCancelled()
        now = self.clock()
        if booking.start_time <= now:
            raise PastBooking("Past appointments cannot be cancelled")
        updated = await self.store.update_status(
            booking.id,
            booking.status,
            BookingStatus.CANCELLED,
            {"cancelled_at": now, "cancelled_by": "client"},
        )
        if updated is None:
            raise AlreadyCancelled()
        logger.info("Booking %s cancelled by client", booking.id)
        return updated

    # -------------------------------------------------
    # Client reschedule link
    # -------------------------------------------------
    async def _reschedulable(self, token: str) -> tuple[BookingRecord, TenantInfo, ServiceTerms]:
        booking = await self._booking_by_token(reschedule_token=token)
        if booking.was_rescheduled:
            raise AlreadyRescheduled()
        if booking.status is not BookingStatus.CONFIRMED:
            raise WrongStatus()
        tenant = await self._tenant_by_id(booking.tenant_id)
        terms = await self._terms(tenant.id, booking.service_id, booking.variant_id)
        now = self.clock()
        if booking.start_time <= now + timedelta(minutes=terms.min_advance_minutes):
            raise TooLate("It is too late to reschedule this appointment")
        return booking, tenant, terms

    async def describe_reschedule(self, token: str) -> dict:
        booking = await self._booking_by_token(reschedule_token=token)
        reason = None
        try:
            await self._reschedulable(token)
        except (AlreadyRescheduled, WrongStatus, TooLate) as exc:
            reason = exc.code
        return {"booking": booking, "can_reschedule": reason is None, "reason": reason}

    async def reschedule_slots(self, token: str, day: date) -> DaySlots:
        booking, tenant, _ = await self._reschedulable(token)
        return await self.list_slots(
            tenant,
            booking.service_id,
            booking.staff_id,
            day,
            booking.variant_id,
            exclude_booking_id=booking.id,
        )

    async def reschedule_by_token(self, token: str, day: date, time: str) -> BookingRecord:
        booking, tenant, terms = await self._reschedulable(token)
        now = self.clock()
        # Expired placeholders still sit under the exclusion constraint until swept
        await reap_quietly(self.store, now, tenant.id)
        tz = get_tz(tenant.timezone)
        minute = to_minutes(time)
        start = at_minute(day, minute, tz)
        end = start + timedelta(minutes=terms.total_minutes)
        self._check_lead_time(terms, start, now, tz)
        await self._check_on_calendar(tenant.id, booking.staff_id, day, minute, terms.total_minutes)

        moved = await self.store.move_booking(booking.id, start, end, now)
        if moved is None:
            # Someone else rescheduled or cancelled it meanwhile
            fresh = await self._booking_by_token(reschedule_token=token)
            if fresh.was_rescheduled:
                raise AlreadyRescheduled()
            raise WrongStatus()
        logger.info("Booking %s rescheduled from %s to %s", booking.id, booking.start_time, start)
        return moved
