"""In-memory OccupancyStore used by the engine and API tests.

Writes run under one asyncio.Lock and re-check overlaps the way the two
PostgreSQL exclusion constraints plus the cross-table check do:

* a new hold conflicts with any stored hold (expired or not, until reaped)
  and with live pending/confirmed bookings;
* a new placeholder booking conflicts with any pending/confirmed booking and
  with live holds.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from types import SimpleNamespace
from typing import Any, Sequence

from bookinghub.app.core.constants import RESERVED_CLIENT_NAME
from bookinghub.app.core.errors import InternalStoreError, SlotTaken
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
from bookinghub.app.domain.models import OCCUPYING_STATUSES, BookingStatus
from bookinghub.app.services.shared_services import overlaps


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@dataclass
class _Service:
    tenant_id: uuid.UUID
    duration: int
    buffer_after: int = 0
    price: int = 0
    min_advance_hours: int | None = None
    max_advance_days: int | None = None
    is_active: bool = True


@dataclass
class _Staff:
    tenant_id: uuid.UUID
    name: str
    services: set[uuid.UUID] = field(default_factory=set)
    is_active: bool = True


class InMemoryStore:
    def __init__(self, clock: FrozenClock, reservation_kind: ReservationKind = ReservationKind.HOLD) -> None:
        self.clock = clock
        self.reservation_kind = reservation_kind
        self.tenants: dict[uuid.UUID, TenantInfo] = {}
        self.services: dict[uuid.UUID, _Service] = {}
        self.variants: dict[uuid.UUID, tuple[uuid.UUID, int, int]] = {}
        self.staff: dict[uuid.UUID, _Staff] = {}
        self.schedules: list[DaySchedule] = []
        self.blocked: list[tuple[uuid.UUID, BlockedDay]] = []
        self.holds: dict[uuid.UUID, Reservation] = {}
        self.bookings: dict[uuid.UUID, BookingRecord] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self._lock = asyncio.Lock()

    # -- seeding -------------------------------------------------------------
    def add_tenant(self, slug: str = "studio", timezone: str = "UTC") -> TenantInfo:
        tenant = TenantInfo(id=uuid.uuid4(), slug=slug, name=slug.title(), timezone=timezone)
        self.tenants[tenant.id] = tenant
        return tenant

    def add_service(self, tenant: TenantInfo, duration: int = 60, **kwargs: Any) -> uuid.UUID:
        service_id = uuid.uuid4()
        self.services[service_id] = _Service(tenant_id=tenant.id, duration=duration, **kwargs)
        return service_id

    def add_variant(self, service_id: uuid.UUID, duration: int, price: int = 0) -> uuid.UUID:
        variant_id = uuid.uuid4()
        self.variants[variant_id] = (service_id, duration, price)
        return variant_id

    def add_staff(self, tenant: TenantInfo, *service_ids: uuid.UUID, name: str = "Alex", **kwargs: Any) -> uuid.UUID:
        staff_id = uuid.uuid4()
        self.staff[staff_id] = _Staff(tenant_id=tenant.id, name=name, services=set(service_ids), **kwargs)
        return staff_id

    def set_schedule(
        self,
        staff_id: uuid.UUID,
        day_of_week: int,
        start: str = "09:00",
        end: str = "17:00",
        break_start: str | None = None,
        break_end: str | None = None,
        is_working: bool = True,
    ) -> None:
        self.schedules = [s for s in self.schedules if not (s.staff_id == staff_id and s.day_of_week == day_of_week)]
        self.schedules.append(
            DaySchedule.from_strings(
                start,
                end,
                break_start,
                break_end,
                is_working=is_working,
                staff_id=staff_id,
                day_of_week=day_of_week,
            )
        )

    def block(self, tenant: TenantInfo, day: date, staff_id: uuid.UUID | None = None) -> None:
        self.blocked.append((tenant.id, BlockedDay(day=day, staff_id=staff_id)))

    def add_booking(
        self,
        tenant: TenantInfo,
        service_id: uuid.UUID,
        staff_id: uuid.UUID,
        start: datetime,
        minutes: int = 60,
        status: BookingStatus = BookingStatus.CONFIRMED,
        **kwargs: Any,
    ) -> BookingRecord:
        record = BookingRecord(
            id=uuid.uuid4(),
            tenant_id=tenant.id,
            service_id=service_id,
            staff_id=staff_id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            status=status,
            client_name=kwargs.pop("client_name", "Dana"),
            client_phone=kwargs.pop("client_phone", "+4915100000"),
            **kwargs,
        )
        self.bookings[record.id] = record
        return record

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise InternalStoreError(f"{name} unavailable")

    # -- occupancy helpers ---------------------------------------------------
    def _booking_conflict(self, staff_id, start, end, now, *, live_only: bool, exclude=None) -> bool:
        for b in self.bookings.values():
            if b.id == exclude or b.staff_id != staff_id or b.status not in OCCUPYING_STATUSES:
                continue
            if live_only and b.expires_at is not None and b.expires_at <= now:
                continue
            if overlaps(start, end, b.start_time, b.end_time):
                return True
        return False

    def _hold_conflict(self, staff_id, start, end, now, *, live_only: bool) -> bool:
        for h in self.holds.values():
            if h.staff_id != staff_id:
                continue
            if live_only and h.expires_at <= now:
                continue
            if overlaps(start, end, h.start_time, h.end_time):
                return True
        return False

    # -- OccupancyStore ------------------------------------------------------
    async def get_tenant_by_slug(self, slug: str) -> TenantInfo | None:
        self._check("get_tenant_by_slug")
        return next((t for t in self.tenants.values() if t.slug == slug), None)

    async def get_tenant(self, tenant_id: uuid.UUID) -> TenantInfo | None:
        self._check("get_tenant")
        return self.tenants.get(tenant_id)

    async def get_service_terms(self, tenant_id, service_id, variant_id=None) -> ServiceTerms | None:
        self._check("get_service_terms")
        svc = self.services.get(service_id)
        if svc is None or svc.tenant_id != tenant_id or not svc.is_active:
            return None
        duration, price = svc.duration, svc.price
        if variant_id is not None:
            variant = self.variants.get(variant_id)
            if variant is None or variant[0] != service_id:
                return None
            _, duration, price = variant
        return ServiceTerms(
            tenant_id=tenant_id,
            service_id=service_id,
            duration=duration,
            buffer_after=svc.buffer_after,
            price=price,
            min_advance_hours=svc.min_advance_hours,
            max_advance_days=svc.max_advance_days,
            variant_id=variant_id,
        )

    async def get_staff_ids_for_service(self, tenant_id, service_id) -> list[uuid.UUID]:
        self._check("get_staff_ids_for_service")
        return [
            sid
            for sid, s in self.staff.items()
            if s.tenant_id == tenant_id and s.is_active and service_id in s.services
        ]

    async def is_active_staff(self, tenant_id, staff_id) -> bool:
        self._check("is_active_staff")
        s = self.staff.get(staff_id)
        return bool(s and s.tenant_id == tenant_id and s.is_active)

    async def find_schedules(self, staff_ids: Sequence[uuid.UUID]) -> list[DaySchedule]:
        self._check("find_schedules")
        return [s for s in self.schedules if s.staff_id in set(staff_ids)]

    async def find_blocked_dates(self, tenant_id, staff_ids, date_from, date_to) -> list[BlockedDay]:
        self._check("find_blocked_dates")
        wanted = set(staff_ids)
        return [
            b
            for tid, b in self.blocked
            if tid == tenant_id and date_from <= b.day <= date_to and (b.staff_id is None or b.staff_id in wanted)
        ]

    async def find_occupied_intervals(self, staff_ids, start, end, now, *, exclude_booking_id=None):
        self._check("find_occupied_intervals")
        wanted = set(staff_ids)
        found: list[OccupiedInterval] = []
        for b in self.bookings.values():
            if b.staff_id not in wanted or b.id == exclude_booking_id or b.status not in OCCUPYING_STATUSES:
                continue
            if b.expires_at is not None and b.expires_at <= now:
                continue
            if overlaps(start, end, b.start_time, b.end_time):
                found.append(OccupiedInterval(b.start_time, b.end_time, b.staff_id))
        for h in self.holds.values():
            if h.staff_id in wanted and h.expires_at > now and overlaps(start, end, h.start_time, h.end_time):
                found.append(OccupiedInterval(h.start_time, h.end_time, h.staff_id))
        return sorted(found, key=lambda occ: occ.start)

    async def insert_reservation(self, draft: HoldDraft) -> Reservation:
        self._check("insert_reservation")
        await asyncio.sleep(0)
        async with self._lock:
            now = self.clock()
            args = (draft.staff_id, draft.start_time, draft.end_time, now)
            if draft.kind is ReservationKind.HOLD:
                taken = self._hold_conflict(*args, live_only=False) or self._booking_conflict(*args, live_only=True)
            else:
                taken = self._booking_conflict(*args, live_only=False) or self._hold_conflict(*args, live_only=True)
            if taken:
                raise SlotTaken()
            reservation = Reservation(
                id=uuid.uuid4(),
                kind=draft.kind,
                tenant_id=draft.tenant_id,
                service_id=draft.service_id,
                staff_id=draft.staff_id,
                start_time=draft.start_time,
                end_time=draft.end_time,
                expires_at=draft.expires_at,
                session_token=draft.session_token if draft.kind is ReservationKind.HOLD else None,
                variant_id=draft.variant_id,
            )
            if draft.kind is ReservationKind.HOLD:
                self.holds[reservation.id] = reservation
            else:
                self.bookings[reservation.id] = BookingRecord(
                    id=reservation.id,
                    tenant_id=draft.tenant_id,
                    service_id=draft.service_id,
                    staff_id=draft.staff_id,
                    start_time=draft.start_time,
                    end_time=draft.end_time,
                    status=BookingStatus.PENDING,
                    client_name=RESERVED_CLIENT_NAME,
                    variant_id=draft.variant_id,
                    price_at_booking=draft.price,
                    duration_at_booking=draft.duration,
                    expires_at=draft.expires_at,
                )
            return reservation

    async def get_reservation(self, tenant_id, reservation_id) -> Reservation | None:
        self._check("get_reservation")
        hold = self.holds.get(reservation_id)
        if hold is not None and hold.tenant_id == tenant_id:
            return hold
        b = self.bookings.get(reservation_id)
        if (
            b is not None
            and b.tenant_id == tenant_id
            and b.status is BookingStatus.PENDING
            and b.client_name == RESERVED_CLIENT_NAME
            and b.expires_at is not None
        ):
            return Reservation(
                id=b.id,
                kind=ReservationKind.PENDING_BOOKING,
                tenant_id=b.tenant_id,
                service_id=b.service_id,
                staff_id=b.staff_id,
                start_time=b.start_time,
                end_time=b.end_time,
                expires_at=b.expires_at,
                variant_id=b.variant_id,
            )
        return None

    def _client_fields(self, client: ClientDetails, terms: ServiceTerms, tokens: ConfirmationTokens) -> dict:
        return dict(
            status=BookingStatus.CONFIRMED,
            client_name=client.name,
            client_phone=client.phone,
            client_email=client.email,
            notes=client.notes,
            expires_at=None,
            cancel_token=tokens.cancel_token,
            reschedule_token=tokens.reschedule_token,
            price_at_booking=terms.price,
            duration_at_booking=terms.duration,
        )

    async def confirm_reservation(self, reservation, client, terms, tokens, now) -> BookingRecord | None:
        self._check("confirm_reservation")
        async with self._lock:
            if reservation.kind is ReservationKind.PENDING_BOOKING:
                b = self.bookings.get(reservation.id)
                if b is None or b.status is not BookingStatus.PENDING or b.expires_at is None or b.expires_at < now:
                    return None
                updated = replace(b, **self._client_fields(client, terms, tokens))
                self.bookings[b.id] = updated
                return replace(updated)
            hold = self.holds.get(reservation.id)
            if hold is None or hold.expires_at < now:
                return None
            if self._booking_conflict(hold.staff_id, hold.start_time, hold.end_time, now, live_only=False):
                raise SlotTaken()
            del self.holds[hold.id]
            record = BookingRecord(
                id=uuid.uuid4(),
                tenant_id=hold.tenant_id,
                service_id=hold.service_id,
                staff_id=hold.staff_id,
                start_time=hold.start_time,
                end_time=hold.end_time,
                variant_id=hold.variant_id,
                **self._client_fields(client, terms, tokens),
            )
            self.bookings[record.id] = record
            return replace(record)

    async def discard_reservation(self, reservation, now) -> None:
        self._check("discard_reservation")
        if reservation.kind is ReservationKind.HOLD:
            self.holds.pop(reservation.id, None)
            return
        b = self.bookings.get(reservation.id)
        if b is not None and b.status is BookingStatus.PENDING and b.client_name == RESERVED_CLIENT_NAME:
            self.bookings[b.id] = replace(b, status=BookingStatus.CANCELLED, cancelled_at=now, cancelled_by="expired")

    async def delete_hold(self, tenant_id, hold_id, session_token) -> bool:
        self._check("delete_hold")
        hold = self.holds.get(hold_id)
        if hold is None or hold.tenant_id != tenant_id or hold.session_token != session_token:
            return False
        del self.holds[hold_id]
        return True

    async def get_booking(self, tenant_id, booking_id) -> BookingRecord | None:
        self._check("get_booking")
        b = self.bookings.get(booking_id)
        return replace(b) if b is not None and b.tenant_id == tenant_id else None

    async def get_booking_by_token(self, *, cancel_token=None, reschedule_token=None) -> BookingRecord | None:
        self._check("get_booking_by_token")
        for b in self.bookings.values():
            if cancel_token and b.cancel_token == cancel_token:
                return replace(b)
            if reschedule_token and b.reschedule_token == reschedule_token:
                return replace(b)
        return None

    async def update_status(self, booking_id, expected, new_status, fields=None) -> BookingRecord | None:
        self._check("update_status")
        async with self._lock:
            b = self.bookings.get(booking_id)
            if b is None or b.status is not expected:
                return None
            updated = replace(b, status=new_status, **(fields or {}))
            self.bookings[b.id] = updated
            return replace(updated)

    async def move_booking(self, booking_id, start, end, now) -> BookingRecord | None:
        self._check("move_booking")
        async with self._lock:
            b = self.bookings.get(booking_id)
            if b is None or b.status is not BookingStatus.CONFIRMED or b.was_rescheduled:
                return None
            if self._hold_conflict(b.staff_id, start, end, now, live_only=True) or self._booking_conflict(
                b.staff_id, start, end, now, live_only=False, exclude=b.id
            ):
                raise SlotTaken()
            updated = replace(b, start_time=start, end_time=end, was_rescheduled=True)
            self.bookings[b.id] = updated
            return replace(updated)

    async def delete_expired(self, now, tenant_id=None) -> ReapResult:
        self._check("delete_expired")
        async with self._lock:
            expired_holds = [
                h.id
                for h in self.holds.values()
                if h.expires_at < now and (tenant_id is None or h.tenant_id == tenant_id)
            ]
            for hid in expired_holds:
                del self.holds[hid]
            cancelled = 0
            for b in list(self.bookings.values()):
                if (
                    b.status is BookingStatus.PENDING
                    and b.client_name == RESERVED_CLIENT_NAME
                    and b.expires_at is not None
                    and b.expires_at < now
                    and (tenant_id is None or b.tenant_id == tenant_id)
                ):
                    self.bookings[b.id] = replace(
                        b, status=BookingStatus.CANCELLED, cancelled_at=now, cancelled_by="expired"
                    )
                    cancelled += 1
            return ReapResult(holds_deleted=len(expired_holds), pending_cancelled=cancelled)


# Sunday 2026-03-01 12:00 UTC; the next day is a Monday
DEFAULT_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
MONDAY = date(2026, 3, 2)


def seed_salon(store: InMemoryStore, *, timezone: str = "UTC", duration: int = 60, **service_kwargs: Any):
    """One tenant, one service, one staff member working Mon-Fri 09:00-17:00."""
    tenant = store.add_tenant("studio", timezone=timezone)
    service_id = store.add_service(tenant, duration=duration, price=4500, **service_kwargs)
    staff_id = store.add_staff(tenant, service_id, name="Alex")
    for weekday in range(5):
        store.set_schedule(staff_id, weekday, "09:00", "17:00")
    return SimpleNamespace(tenant=tenant, service_id=service_id, staff_id=staff_id)
