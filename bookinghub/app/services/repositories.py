"""Storage collaborator for the booking engine.

``OccupancyStore`` is the interface the engine depends on; ``SqlBookingStore``
implements it over PostgreSQL with async SQLAlchemy.

Double-booking protection lives entirely in the database:

* ``bookings`` carries an exclusion constraint over
  ``(staff_id, tstzrange(start_time, end_time))`` for pending/confirmed rows;
* ``slot_holds`` carries the same constraint for holds;
* holds and bookings live in different tables, so every occupancy write first
  takes ``pg_advisory_xact_lock`` for the staff member and re-checks the other
  table inside the same transaction.

Reads (slot listings, calendars) are advisory and may be stale.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime
from functools import wraps
from typing import Any, Protocol, Sequence

from sqlalchemy import and_, delete, func, or_, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookinghub.app.core.constants import (
    RESERVATION_STORAGE,
    RESERVATION_STORAGE_CHOICES,
    RESERVED_CLIENT_NAME,
    STORE_TIMEOUT_SECONDS,
)
from bookinghub.app.core.db import get_session_factory
from bookinghub.app.core.errors import BookingError, InternalStoreError, SlotTaken, ValidationError
from bookinghub.app.domain.entities import (
    BlockedDay,
    BookingRecord,
    ClientDetails,
    ConfirmationTokens,
    DaySchedule,
    HoldDraft,
    OccupiedInterval,
    ReapResult,
    Reservation,
    ReservationKind,
    ServiceTerms,
    TenantInfo,
)
from bookinghub.app.services.shared_services import utc_now
from bookinghub.app.domain.models import (
    EXCLUSION_CONSTRAINT_NAMES,
    OCCUPYING_STATUSES,
    BlockedDate,
    Booking,
    BookingStatus,
    Service,
    ServiceVariant,
    SlotHold,
    Staff,
    StaffSchedule,
    StaffService,
    Tenant,
)

logger = logging.getLogger(__name__)

__all__ = ["OccupancyStore", "SqlBookingStore", "is_exclusion_violation", "advisory_lock_keys"]

EXCLUSION_VIOLATION_SQLSTATE = "23P01"


class OccupancyStore(Protocol):
    """What the engine needs from persistence. All methods are async."""

    async def get_tenant_by_slug(self, slug: str) -> TenantInfo | None: ...

    async def get_tenant(self, tenant_id: uuid.UUID) -> TenantInfo | None: ...

    async def get_service_terms(
        self, tenant_id: uuid.UUID, service_id: uuid.UUID, variant_id: uuid.UUID | None = None
    ) -> ServiceTerms | None: ...

    async def get_staff_ids_for_service(self, tenant_id: uuid.UUID, service_id: uuid.UUID) -> list[uuid.UUID]: ...

    async def is_active_staff(self, tenant_id: uuid.UUID, staff_id: uuid.UUID) -> bool: ...

    async def find_schedules(self, staff_ids: Sequence[uuid.UUID]) -> list[DaySchedule]: ...

    async def find_blocked_dates(
        self, tenant_id: uuid.UUID, staff_ids: Sequence[uuid.UUID], date_from: date, date_to: date
    ) -> list[BlockedDay]: ...

    async def find_occupied_intervals(
        self,
        staff_ids: Sequence[uuid.UUID],
        start: datetime,
        end: datetime,
        now: datetime,
        *,
        exclude_booking_id: uuid.UUID | None = None,
    ) -> list[OccupiedInterval]: ...

    async def insert_reservation(self, draft: HoldDraft) -> Reservation: ...

    async def get_reservation(self, tenant_id: uuid.UUID, reservation_id: uuid.UUID) -> Reservation | None: ...

    async def confirm_reservation(
        self,
        reservation: Reservation,
        client: ClientDetails,
        terms: ServiceTerms,
        tokens: ConfirmationTokens,
        now: datetime,
    ) -> BookingRecord | None: ...

    async def discard_reservation(self, reservation: Reservation, now: datetime) -> None: ...

    async def delete_hold(self, tenant_id: uuid.UUID, hold_id: uuid.UUID, session_token: str) -> bool: ...

    async def get_booking(self, tenant_id: uuid.UUID, booking_id: uuid.UUID) -> BookingRecord | None: ...

    async def get_booking_by_token(
        self, *, cancel_token: str | None = None, reschedule_token: str | None = None
    ) -> BookingRecord | None: ...

    async def update_status(
        self,
        booking_id: uuid.UUID,
        expected: BookingStatus,
        new_status: BookingStatus,
        fields: dict[str, Any] | None = None,
    ) -> BookingRecord | None: ...

    async def move_booking(
        self, booking_id: uuid.UUID, start: datetime, end: datetime, now: datetime
    ) -> BookingRecord | None: ...

    async def delete_expired(self, now: datetime, tenant_id: uuid.UUID | None = None) -> ReapResult: ...


# =====================================================
# Helpers
# =====================================================
def is_exclusion_violation(exc: BaseException) -> bool:
    """True when an IntegrityError comes from one of the overlap constraints."""
    candidates = [exc, getattr(exc, "orig", None)]
    orig = getattr(exc, "orig", None)
    if orig is not None:
        candidates.append(getattr(orig, "__cause__", None))
    for candidate in candidates:
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code == EXCLUSION_VIOLATION_SQLSTATE:
            return True
        constraint = getattr(candidate, "constraint_name", None)
        if constraint in EXCLUSION_CONSTRAINT_NAMES:
            return True
    message = str(exc)
    return "exclusion" in message.lower() or any(name in message for name in EXCLUSION_CONSTRAINT_NAMES)


def advisory_lock_keys(staff_id: uuid.UUID) -> tuple[int, int]:
    """Map a staff UUID onto the two-int advisory lock key space."""
    value = staff_id.int
    return value % 2147483647, (value >> 64) % 2147483647


def _store_call(func):
    """Apply the store timeout and turn driver failures into InternalStoreError.

    Domain errors raised inside (SlotTaken, ...) pass through untouched.
    """

    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await asyncio.wait_for(func(self, *args, **kwargs), timeout=self.timeout)
        except BookingError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error("%s timed out after %ss", func.__name__, self.timeout)
            raise InternalStoreError(f"{func.__name__} timed out") from exc
        except SQLAlchemyError as exc:
            logger.error("%s failed: %s", func.__name__, exc)
            raise InternalStoreError() from exc

    return wrapper


def _hold_to_reservation(row: SlotHold) -> Reservation:
    return Reservation(
        id=row.id,
        kind=ReservationKind.HOLD,
        tenant_id=row.tenant_id,
        service_id=row.service_id,
        staff_id=row.staff_id,
        start_time=row.start_time,
        end_time=row.end_time,
        expires_at=row.expires_at,
        session_token=row.session_token,
        variant_id=row.variant_id,
    )


def _sentinel_to_reservation(row: Booking) -> Reservation:
    return Reservation(
        id=row.id,
        kind=ReservationKind.PENDING_BOOKING,
        tenant_id=row.tenant_id,
        service_id=row.service_id,
        staff_id=row.staff_id,
        start_time=row.start_time,
        end_time=row.end_time,
        expires_at=row.expires_at,
        session_token=None,
        variant_id=row.variant_id,
    )


def _to_booking_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        service_id=row.service_id,
        staff_id=row.staff_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        client_name=row.client_name,
        client_phone=row.client_phone,
        client_email=row.client_email,
        notes=row.notes,
        variant_id=row.variant_id,
        price_at_booking=row.price_at_booking,
        duration_at_booking=row.duration_at_booking,
        source=row.source,
        expires_at=row.expires_at,
        cancel_token=row.cancel_token,
        reschedule_token=row.reschedule_token,
        was_rescheduled=bool(row.was_rescheduled),
        cancelled_at=row.cancelled_at,
        cancelled_by=row.cancelled_by,
    )


def _tenant_info(row: Tenant) -> TenantInfo:
    return TenantInfo(id=row.id, slug=row.slug, name=row.name, timezone=row.timezone)


def _live_booking_filter(now: datetime):
    """Pending/confirmed rows, minus reservation placeholders whose TTL elapsed."""
    return and_(
        Booking.status.in_(tuple(OCCUPYING_STATUSES)),
        or_(Booking.expires_at.is_(None), Booking.expires_at > now),
    )


class SqlBookingStore:
    """PostgreSQL implementation of ``OccupancyStore``.

    Args:
        session_factory: async session factory; defaults to the shared one from
            ``bookinghub.app.core.db``.
        reservation_storage: ``"holds"`` writes reservations to ``slot_holds``;
            ``"bookings"`` writes pending ``RESERVED`` booking rows. Both kinds
            are always read and reaped.
        timeout: per-call timeout in seconds.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        reservation_storage: str = RESERVATION_STORAGE,
        timeout: float = STORE_TIMEOUT_SECONDS,
    ) -> None:
        if reservation_storage not in RESERVATION_STORAGE_CHOICES:
            raise ValueError(f"unknown reservation storage {reservation_storage!r}")
        self._session_factory = session_factory
        self.reservation_storage = reservation_storage
        self.timeout = timeout

    @property
    def reservation_kind(self) -> ReservationKind:
        if self.reservation_storage == "bookings":
            return ReservationKind.PENDING_BOOKING
        return ReservationKind.HOLD

    def _session(self) -> AsyncSession:
        factory = self._session_factory or get_session_factory()
        return factory()

    async def _lock_staff(self, session: AsyncSession, staff_id: uuid.UUID) -> None:
        k1, k2 = advisory_lock_keys(staff_id)
        await session.execute(text("SELECT pg_advisory_xact_lock(:k1, :k2)"), {"k1": k1, "k2": k2})

    # -------------------------------------------------
    # Reference data
    # -------------------------------------------------
    @_store_call
    async def get_tenant_by_slug(self, slug: str) -> TenantInfo | None:
        async with self._session() as session:
            row = await session.scalar(select(Tenant).where(Tenant.slug == slug, Tenant.is_active.is_(True)))
            return _tenant_info(row) if row else None

    @_store_call
    async def get_tenant(self, tenant_id: uuid.UUID) -> TenantInfo | None:
        async with self._session() as session:
            row = await session.get(Tenant, tenant_id)
            return _tenant_info(row) if row and row.is_active else None

    @_store_call
    async def get_service_terms(
        self, tenant_id: uuid.UUID, service_id: uuid.UUID, variant_id: uuid.UUID | None = None
    ) -> ServiceTerms | None:
        async with self._session() as session:
            service = await session.scalar(
                select(Service).where(
                    Service.id == service_id,
                    Service.tenant_id == tenant_id,
                    Service.is_active.is_(True),
                )
            )
            if service is None:
                return None
            duration, price = service.duration, service.price
            if variant_id is not None:
                variant = await session.scalar(
                    select(ServiceVariant).where(
                        ServiceVariant.id == variant_id,
                        ServiceVariant.service_id == service_id,
                    )
                )
                if variant is None:
                    return None
                duration, price = variant.duration, variant.price
            return ServiceTerms(
                tenant_id=tenant_id,
                service_id=service.id,
                duration=int(duration),
                buffer_after=int(service.buffer_after or 0),
                price=int(price or 0),
                min_advance_hours=service.min_advance_hours,
                max_advance_days=service.max_advance_days,
                variant_id=variant_id,
            )

    @_store_call
    async def get_staff_ids_for_service(self, tenant_id: uuid.UUID, service_id: uuid.UUID) -> list[uuid.UUID]:
        async with self._session() as session:
            result = await session.execute(
                select(Staff.id)
                .join(StaffService, StaffService.staff_id == Staff.id)
                .where(
                    StaffService.service_id == service_id,
                    Staff.tenant_id == tenant_id,
                    Staff.is_active.is_(True),
                )
                .order_by(Staff.name)
            )
            return [row for row in result.scalars().all()]

    @_store_call
    async def is_active_staff(self, tenant_id: uuid.UUID, staff_id: uuid.UUID) -> bool:
        async with self._session() as session:
            found = await session.scalar(
                select(Staff.id).where(
                    Staff.id == staff_id,
                    Staff.tenant_id == tenant_id,
                    Staff.is_active.is_(True),
                )
            )
            return found is not None

    @_store_call
    async def find_schedules(self, staff_ids: Sequence[uuid.UUID]) -> list[DaySchedule]:
        if not staff_ids:
            return []
        async with self._session() as session:
            result = await session.execute(select(StaffSchedule).where(StaffSchedule.staff_id.in_(list(staff_ids))))
            schedules: list[DaySchedule] = []
            for row in result.scalars().all():
                try:
                    schedules.append(
                        DaySchedule.from_times(
                            row.start_time,
                            row.end_time,
                            row.break_start,
                            row.break_end,
                            is_working=bool(row.is_working),
                            staff_id=row.staff_id,
                            day_of_week=int(row.day_of_week),
                        )
                    )
                except ValidationError as exc:
                    # Treated as a day off rather than guessing hours
                    logger.warning("Ignoring invalid schedule %s for staff %s: %s", row.id, row.staff_id, exc)
            return schedules

    @_store_call
    async def find_blocked_dates(
        self, tenant_id: uuid.UUID, staff_ids: Sequence[uuid.UUID], date_from: date, date_to: date
    ) -> list[BlockedDay]:
        staff_clause = BlockedDate.staff_id.is_(None)
        if staff_ids:
            staff_clause = or_(staff_clause, BlockedDate.staff_id.in_(list(staff_ids)))
        async with self._session() as session:
            result = await session.execute(
                select(BlockedDate.blocked_date, BlockedDate.staff_id).where(
                    BlockedDate.tenant_id == tenant_id,
                    BlockedDate.blocked_date >= date_from,
                    BlockedDate.blocked_date <= date_to,
                    staff_clause,
                )
            )
            return [BlockedDay(day=day, staff_id=sid) for day, sid in result.all()]

    # -------------------------------------------------
    # Occupancy
    # -------------------------------------------------
    @_store_call
    async def find_occupied_intervals(
        self,
        staff_ids: Sequence[uuid.UUID],
        start: datetime,
        end: datetime,
        now: datetime,
        *,
        exclude_booking_id: uuid.UUID | None = None,
    ) -> list[OccupiedInterval]:
        if not staff_ids:
            return []
        ids = list(staff_ids)
        booking_filters = [
            Booking.staff_id.in_(ids),
            Booking.start_time < end,
            Booking.end_time > start,
            _live_booking_filter(now),
        ]
        if exclude_booking_id is not None:
            booking_filters.append(Booking.id != exclude_booking_id)
        async with self._session() as session:
            bookings = await session.execute(
                select(Booking.staff_id, Booking.start_time, Booking.end_time).where(*booking_filters)
            )
            holds = await session.execute(
                select(SlotHold.staff_id, SlotHold.start_time, SlotHold.end_time).where(
                    SlotHold.staff_id.in_(ids),
                    SlotHold.start_time < end,
                    SlotHold.end_time > start,
                    SlotHold.expires_at > now,
                )
            )
            intervals = [
                OccupiedInterval(start=s, end=e, staff_id=sid) for sid, s, e in list(bookings.all()) + list(holds.all())
            ]
        intervals.sort(key=lambda occ: occ.start)
        return intervals

    async def _other_table_conflict(
        self,
        session: AsyncSession,
        kind: ReservationKind,
        staff_id: uuid.UUID,
        start: datetime,
        end: datetime,
        now: datetime,
    ) -> bool:
        """Check the table the exclusion constraint of the target table cannot see."""
        if kind is ReservationKind.HOLD:
            stmt = select(Booking.id).where(
                Booking.staff_id == staff_id,
                Booking.start_time < end,
                Booking.end_time > start,
                _live_booking_filter(now),
            )
        else:
            stmt = select(SlotHold.id).where(
                SlotHold.staff_id == staff_id,
                SlotHold.start_time < end,
                SlotHold.end_time > start,
                SlotHold.expires_at > now,
            )
        return (await session.scalar(stmt.limit(1))) is not None

    @_store_call
    async def insert_reservation(self, draft: HoldDraft) -> Reservation:
        now = utc_now()
        async with self._session() as session:
            try:
                async with session.begin():
                    await self._lock_staff(session, draft.staff_id)
                    if await self._other_table_conflict(
                        session, draft.kind, draft.staff_id, draft.start_time, draft.end_time, now
                    ):
                        raise SlotTaken()
                    if draft.kind is ReservationKind.HOLD:
                        row: SlotHold | Booking = SlotHold(
                            tenant_id=draft.tenant_id,
                            service_id=draft.service_id,
                            variant_id=draft.variant_id,
                            staff_id=draft.staff_id,
                            start_time=draft.start_time,
                            end_time=draft.end_time,
                            expires_at=draft.expires_at,
                            session_token=draft.session_token,
                        )
                    else:
                        row = Booking(
                            tenant_id=draft.tenant_id,
                            service_id=draft.service_id,
                            variant_id=draft.variant_id,
                            staff_id=draft.staff_id,
                            client_name=RESERVED_CLIENT_NAME,
                            client_phone="",
                            start_time=draft.start_time,
                            end_time=draft.end_time,
                            status=BookingStatus.PENDING,
                            expires_at=draft.expires_at,
                            price_at_booking=draft.price,
                            duration_at_booking=draft.duration,
                            source="widget",
                        )
                    session.add(row)
                    await session.flush()
            except IntegrityError as exc:
                if is_exclusion_violation(exc):
                    logger.info("Reservation rejected by exclusion constraint for staff %s at %s", draft.staff_id, draft.start_time)
                    raise SlotTaken() from exc
                raise
        if isinstance(row, SlotHold):
            return _hold_to_reservation(row)
        return _sentinel_to_reservation(row)

    @_store_call
    async def get_reservation(self, tenant_id: uuid.UUID, reservation_id: uuid.UUID) -> Reservation | None:
        async with self._session() as session:
            hold = await session.scalar(
                select(SlotHold).where(SlotHold.id == reservation_id, SlotHold.tenant_id == tenant_id)
            )
            if hold is not None:
                return _hold_to_reservation(hold)
            sentinel = await session.scalar(
                select(Booking).where(
                    Booking.id == reservation_id,
                    Booking.tenant_id == tenant_id,
                    Booking.status == BookingStatus.PENDING,
                    Booking.client_name == RESERVED_CLIENT_NAME,
                    Booking.expires_at.is_not(None),
                )
            )
            return _sentinel_to_reservation(sentinel) if sentinel is not None else None

    @_store_call
    async def confirm_reservation(
        self,
        reservation: Reservation,
        client: ClientDetails,
        terms: ServiceTerms,
        tokens: ConfirmationTokens,
        now: datetime,
    ) -> BookingRecord | None:
        client_values = {
            "client_name": client.name,
            "client_phone": client.phone,
            "client_email": client.email,
            "notes": client.notes,
            "status": BookingStatus.CONFIRMED,
            "expires_at": None,
            "cancel_token": tokens.cancel_token,
            "reschedule_token": tokens.reschedule_token,
            "price_at_booking": terms.price,
            "duration_at_booking": terms.duration,
            "updated_at": now,
        }
        async with self._session() as session:
            try:
                async with session.begin():
                    if reservation.kind is ReservationKind.PENDING_BOOKING:
                        # Expiry re-checked in the same statement that promotes the row
                        result = await session.execute(
                            update(Booking)
                            .where(
                                Booking.id == reservation.id,
                                Booking.status == BookingStatus.PENDING,
                                Booking.client_name == RESERVED_CLIENT_NAME,
                                Booking.expires_at >= now,
                            )
                            .values(**client_values)
                            .returning(Booking)
                        )
                        row = result.scalars().first()
                        return _to_booking_record(row) if row is not None else None

                    await self._lock_staff(session, reservation.staff_id)
                    claimed = await session.execute(
                        delete(SlotHold)
                        .where(SlotHold.id == reservation.id, SlotHold.expires_at >= now)
                        .returning(SlotHold.id)
                    )
                    if claimed.first() is None:
                        return None
                    booking = Booking(
                        tenant_id=reservation.tenant_id,
                        service_id=reservation.service_id,
                        variant_id=reservation.variant_id,
                        staff_id=reservation.staff_id,
                        start_time=reservation.start_time,
                        end_time=reservation.end_time,
                        source="widget",
                        **client_values,
                    )
                    session.add(booking)
                    await session.flush()
                    return _to_booking_record(booking)
            except IntegrityError as exc:
                if is_exclusion_violation(exc):
                    logger.info("Confirmation of %s rejected by exclusion constraint", reservation.id)
                    raise SlotTaken() from exc
                raise

    @_store_call
    async def discard_reservation(self, reservation: Reservation, now: datetime) -> None:
        async with self._session() as session:
            async with session.begin():
                if reservation.kind is ReservationKind.HOLD:
                    await session.execute(delete(SlotHold).where(SlotHold.id == reservation.id))
                else:
                    await session.execute(
                        update(Booking)
                        .where(
                            Booking.id == reservation.id,
                            Booking.status == BookingStatus.PENDING,
                            Booking.client_name == RESERVED_CLIENT_NAME,
                        )
                        .values(status=BookingStatus.CANCELLED, cancelled_at=now, cancelled_by="expired", updated_at=now)
                    )

    @_store_call
    async def delete_hold(self, tenant_id: uuid.UUID, hold_id: uuid.UUID, session_token: str) -> bool:
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(
                    delete(SlotHold)
                    .where(
                        SlotHold.id == hold_id,
                        SlotHold.tenant_id == tenant_id,
                        SlotHold.session_token == session_token,
                    )
                    .returning(SlotHold.id)
                )
                return result.first() is not None

    # -------------------------------------------------
    # Bookings
    # -------------------------------------------------
    @_store_call
    async def get_booking(self, tenant_id: uuid.UUID, booking_id: uuid.UUID) -> BookingRecord | None:
        async with self._session() as session:
            row = await session.scalar(select(Booking).where(Booking.id == booking_id, Booking.tenant_id == tenant_id))
            return _to_booking_record(row) if row is not None else None

    @_store_call
    async def get_booking_by_token(
        self, *, cancel_token: str | None = None, reschedule_token: str | None = None
    ) -> BookingRecord | None:
        if cancel_token:
            clause = Booking.cancel_token == cancel_token
        elif reschedule_token:
            clause = Booking.reschedule_token == reschedule_token
        else:
            return None
        async with self._session() as session:
            row = await session.scalar(select(Booking).where(clause))
            return _to_booking_record(row) if row is not None else None

    @_store_call
    async def update_status(
        self,
        booking_id: uuid.UUID,
        expected: BookingStatus,
        new_status: BookingStatus,
        fields: dict[str, Any] | None = None,
    ) -> BookingRecord | None:
        values: dict[str, Any] = {"status": new_status, "updated_at": func.now()}
        values.update(fields or {})
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(
                    update(Booking)
                    .where(Booking.id == booking_id, Booking.status == expected)
                    .values(**values)
                    .returning(Booking)
                )
                row = result.scalars().first()
                return _to_booking_record(row) if row is not None else None

    @_store_call
    async def move_booking(
        self, booking_id: uuid.UUID, start: datetime, end: datetime, now: datetime
    ) -> BookingRecord | None:
        async with self._session() as session:
            try:
                async with session.begin():
                    current = await session.get(Booking, booking_id)
                    if current is None:
                        return None
                    await self._lock_staff(session, current.staff_id)
                    # Other bookings are covered by the exclusion constraint; live holds are not
                    if await self._other_table_conflict(
                        session, ReservationKind.PENDING_BOOKING, current.staff_id, start, end, now
                    ):
                        raise SlotTaken()
                    result = await session.execute(
                        update(Booking)
                        .where(
                            Booking.id == booking_id,
                            Booking.status == BookingStatus.CONFIRMED,
                            Booking.was_rescheduled.is_(False),
                        )
                        .values(start_time=start, end_time=end, was_rescheduled=True, updated_at=now)
                        .returning(Booking)
                    )
                    row = result.scalars().first()
                    return _to_booking_record(row) if row is not None else None
            except IntegrityError as exc:
                if is_exclusion_violation(exc):
                    raise SlotTaken() from exc
                raise

    # -------------------------------------------------
    # Expiry
    # -------------------------------------------------
    @_store_call
    async def delete_expired(self, now: datetime, tenant_id: uuid.UUID | None = None) -> ReapResult:
        hold_filters = [SlotHold.expires_at < now]
        pending_filters = [
            Booking.status == BookingStatus.PENDING,
            Booking.client_name == RESERVED_CLIENT_NAME,
            Booking.expires_at.is_not(None),
            Booking.expires_at < now,
        ]
        if tenant_id is not None:
            hold_filters.append(SlotHold.tenant_id == tenant_id)
            pending_filters.append(Booking.tenant_id == tenant_id)
        async with self._session() as session:
            async with session.begin():
                holds = await session.execute(delete(SlotHold).where(*hold_filters).returning(SlotHold.id))
                pending = await session.execute(
                    update(Booking)
                    .where(*pending_filters)
                    .values(status=BookingStatus.CANCELLED, cancelled_at=now, cancelled_by="expired", updated_at=now)
                    .returning(Booking.id)
                )
                return ReapResult(holds_deleted=len(holds.all()), pending_cancelled=len(pending.all()))
