"""FastAPI facade for the booking widget, client links, dashboard and cron.

This layer only parses input, calls ``ReservationManager`` and renders
results. Domain errors carry their own HTTP status and are rendered as
``{"error": code, "message": ...}`` by a single exception handler.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from bookinghub.config import get_cors_origins, get_cron_secret, get_hold_minutes, get_setting
from bookinghub.app.core.constants import MIN_PUBLIC_TOKEN_LENGTH, RUN_EXPIRATION_WORKER, _env_bool
from bookinghub.app.core.db import dispose_engine
from bookinghub.app.core.errors import BookingError, InternalStoreError, NotFound, ValidationError
from bookinghub.app.domain.entities import BookingRecord, ClientDetails, Reservation
from bookinghub.app.services.booking_services import ReservationManager
from bookinghub.app.services.repositories import SqlBookingStore
from bookinghub.app.services.shared_services import parse_date, utc_now
from bookinghub.app.workers.expiration import reap_expired, start_expiration_worker, stop_expiration_worker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class ReserveSlotRequest(_Payload):
    service_id: uuid.UUID
    staff_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: str = Field(..., pattern=r"^\d{2}:\d{2}$")


class ReservationOut(BaseModel):
    id: uuid.UUID
    expires_at: datetime
    session_token: Optional[str] = None


class ReserveSlotResponse(BaseModel):
    reservation: ReservationOut


class CompleteBookingRequest(_Payload):
    reservation_id: uuid.UUID = Field(..., validation_alias=AliasChoices("reservation_id", "hold_id"))
    session_token: Optional[str] = Field(default=None, max_length=128)
    client_name: str = Field(..., min_length=2, max_length=100)
    client_phone: str = Field(..., min_length=5, max_length=50)
    client_email: Optional[str] = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    notes: Optional[str] = Field(default=None, max_length=500)


class CancelHoldRequest(_Payload):
    hold_id: uuid.UUID
    session_token: str = Field(..., max_length=128)


class RescheduleRequest(_Payload):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: str = Field(..., pattern=r"^\d{2}:\d{2}$")


class StatusChangeRequest(_Payload):
    status: str


class BookingOut(BaseModel):
    id: uuid.UUID
    status: str
    service_id: uuid.UUID
    staff_id: uuid.UUID
    variant_id: Optional[uuid.UUID] = None
    start_time: datetime
    end_time: datetime
    client_name: str
    client_phone: str
    client_email: Optional[str] = None
    notes: Optional[str] = None
    price_at_booking: int = 0
    duration_at_booking: int = 0
    was_rescheduled: bool = False
    cancel_token: Optional[str] = None
    reschedule_token: Optional[str] = None

    @classmethod
    def from_record(cls, record: BookingRecord, *, with_tokens: bool = False) -> "BookingOut":
        return cls(
            id=record.id,
            status=record.status.value,
            service_id=record.service_id,
            staff_id=record.staff_id,
            variant_id=record.variant_id,
            start_time=record.start_time,
            end_time=record.end_time,
            client_name=record.client_name,
            client_phone=record.client_phone,
            client_email=record.client_email,
            notes=record.notes,
            price_at_booking=record.price_at_booking,
            duration_at_booking=record.duration_at_booking,
            was_rescheduled=record.was_rescheduled,
            cancel_token=record.cancel_token if with_tokens else None,
            reschedule_token=record.reschedule_token if with_tokens else None,
        )


class BookingEnvelope(BaseModel):
    booking: BookingOut


class SlotsResponse(BaseModel):
    slots: list[str]
    reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    unavailable: list[str]


class LinkInfoResponse(BaseModel):
    booking: BookingOut
    allowed: bool
    reason: Optional[str] = None


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int = 0
    timestamp: datetime


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_manager() -> ReservationManager:
    """Engine bound to the SQL store; overridden in tests."""
    store = SqlBookingStore(
        reservation_storage=str(get_setting("reservation_storage", "holds")),
        timeout=float(get_setting("store_timeout_seconds", 10.0)),
    )
    return ReservationManager(store, hold_ttl_minutes=get_hold_minutes())


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    secret = get_cron_secret()
    if not secret:
        logger.error("CRON_SECRET is not configured; refusing cron call")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    expected = f"Bearer {secret}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def tenant_header(x_tenant_id: Optional[str] = Header(default=None)) -> uuid.UUID:
    """Tenant of the authenticated dashboard user, set by the auth layer in front."""
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return uuid.UUID(x_tenant_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from exc


def _public_token(token: str) -> str:
    if len(token or "") < MIN_PUBLIC_TOKEN_LENGTH:
        raise NotFound("Appointment not found", code="BOOKING_NOT_FOUND")
    return token


def _parse_id(value: str, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}", code="INVALID_ID") from exc


def _reservation_out(reservation: Reservation) -> ReserveSlotResponse:
    return ReserveSlotResponse(
        reservation=ReservationOut(
            id=reservation.id,
            expires_at=reservation.expires_at,
            session_token=reservation.session_token,
        )
    )


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(_: FastAPI):
    stop_worker = None
    if _env_bool("RUN_EXPIRATION_WORKER", RUN_EXPIRATION_WORKER):
        stop_worker = await start_expiration_worker()
    try:
        yield
    finally:
        await stop_expiration_worker(stop_worker)
        await dispose_engine()


app = FastAPI(title="BookingHub API", version="0.1.0", lifespan=lifespan)
_origins = get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins or ["*"],
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if isinstance(exc, InternalStoreError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "VALIDATION_FAILED", "message": "Invalid input", "details": details},
    )


# -- widget ------------------------------------------------------------------

@app.get("/api/widget/{slug}/slots", response_model=SlotsResponse, response_model_exclude_none=True)
async def get_slots(
    slug: str,
    service_id: str,
    staff_id: str,
    date: str,
    variant_id: Optional[str] = None,
    manager: ReservationManager = Depends(get_manager),
) -> SlotsResponse:
    tenant = await manager.resolve_tenant(slug)
    result = await manager.list_slots(
        tenant,
        _parse_id(service_id, "service_id"),
        _parse_id(staff_id, "staff_id"),
        parse_date(date),
        _parse_id(variant_id, "variant_id") if variant_id else None,
    )
    return SlotsResponse(slots=result.slots, reason=result.reason.value if result.reason else None)


@app.get("/api/widget/{slug}/availability", response_model=AvailabilityResponse)
async def get_availability(
    slug: str,
    request: Request,
    service_id: str,
    staff_id: str,
    variant_id: Optional[str] = None,
    manager: ReservationManager = Depends(get_manager),
) -> AvailabilityResponse:
    # "from" is a keyword, so the range bounds are read off the query string
    raw_from = request.query_params.get("from")
    raw_to = request.query_params.get("to")
    if not raw_from or not raw_to:
        raise ValidationError("'from' and 'to' are required", code="MISSING_PARAMS")
    tenant = await manager.resolve_tenant(slug)
    staff: uuid.UUID | str = staff_id if staff_id == "_any" else _parse_id(staff_id, "staff_id")
    days = await manager.summarize(
        tenant,
        _parse_id(service_id, "service_id"),
        staff,
        parse_date(raw_from),
        parse_date(raw_to),
        _parse_id(variant_id, "variant_id") if variant_id else None,
    )
    return AvailabilityResponse(unavailable=[d.isoformat() for d in days])


@app.post("/api/widget/{slug}/reserve-slot", response_model=ReserveSlotResponse, status_code=status.HTTP_201_CREATED)
async def reserve_slot(
    slug: str, payload: ReserveSlotRequest, manager: ReservationManager = Depends(get_manager)
) -> ReserveSlotResponse:
    tenant = await manager.resolve_tenant(slug)
    reservation = await manager.reserve(
        tenant,
        payload.service_id,
        payload.staff_id,
        parse_date(payload.date),
        payload.time,
        payload.variant_id,
    )
    return _reservation_out(reservation)


@app.post("/api/widget/{slug}/complete-booking", response_model=BookingEnvelope)
async def complete_booking(
    slug: str, payload: CompleteBookingRequest, manager: ReservationManager = Depends(get_manager)
) -> BookingEnvelope:
    tenant = await manager.resolve_tenant(slug)
    booking = await manager.confirm(
        tenant,
        payload.reservation_id,
        ClientDetails(
            name=payload.client_name,
            phone=payload.client_phone,
            email=payload.client_email or None,
            notes=payload.notes or None,
        ),
        session_token=payload.session_token,
    )
    return BookingEnvelope(booking=BookingOut.from_record(booking, with_tokens=True))


@app.post("/api/widget/{slug}/cancel-hold")
async def cancel_hold(
    slug: str, payload: CancelHoldRequest, manager: ReservationManager = Depends(get_manager)
) -> dict[str, bool]:
    tenant = await manager.resolve_tenant(slug)
    await manager.cancel_hold(tenant, payload.hold_id, payload.session_token)
    return {"success": True}


# -- client links ------------------------------------------------------------

@app.get("/api/cancel/{token}", response_model=LinkInfoResponse)
async def cancel_info(token: str, manager: ReservationManager = Depends(get_manager)) -> LinkInfoResponse:
    info = await manager.describe_cancellation(_public_token(token))
    return LinkInfoResponse(
        booking=BookingOut.from_record(info["booking"]), allowed=info["can_cancel"], reason=info["reason"]
    )


@app.post("/api/cancel/{token}", response_model=BookingEnvelope)
async def cancel_by_token(token: str, manager: ReservationManager = Depends(get_manager)) -> BookingEnvelope:
    booking = await manager.cancel_by_token(_public_token(token))
    return BookingEnvelope(booking=BookingOut.from_record(booking))


@app.get("/api/reschedule/{token}", response_model=LinkInfoResponse)
async def reschedule_info(token: str, manager: ReservationManager = Depends(get_manager)) -> LinkInfoResponse:
    info = await manager.describe_reschedule(_public_token(token))
    return LinkInfoResponse(
        booking=BookingOut.from_record(info["booking"]), allowed=info["can_reschedule"], reason=info["reason"]
    )


@app.get("/api/reschedule/{token}/slots", response_model=SlotsResponse, response_model_exclude_none=True)
async def reschedule_slots(
    token: str, date: str, manager: ReservationManager = Depends(get_manager)
) -> SlotsResponse:
    result = await manager.reschedule_slots(_public_token(token), parse_date(date))
    return SlotsResponse(slots=result.slots, reason=result.reason.value if result.reason else None)


@app.post("/api/reschedule/{token}", response_model=BookingEnvelope)
async def reschedule_by_token(
    token: str, payload: RescheduleRequest, manager: ReservationManager = Depends(get_manager)
) -> BookingEnvelope:
    booking = await manager.reschedule_by_token(_public_token(token), parse_date(payload.date), payload.time)
    return BookingEnvelope(booking=BookingOut.from_record(booking))


# -- dashboard ---------------------------------------------------------------

@app.patch("/api/bookings/{booking_id}/status", response_model=BookingEnvelope)
async def change_booking_status(
    booking_id: str,
    payload: StatusChangeRequest,
    tenant_id: uuid.UUID = Depends(tenant_header),
    manager: ReservationManager = Depends(get_manager),
) -> BookingEnvelope:
    booking = await manager.change_status(tenant_id, _parse_id(booking_id, "booking_id"), payload.status)
    return BookingEnvelope(booking=BookingOut.from_record(booking))


# -- cron --------------------------------------------------------------------

async def _cleanup(manager: ReservationManager, field: str) -> CleanupResponse:
    now = utc_now()
    result = await reap_expired(manager.store, now)
    return CleanupResponse(deleted=getattr(result, field), timestamp=now)


@app.api_route("/api/cron/cleanup-holds", methods=["GET", "POST"], response_model=CleanupResponse)
async def cron_cleanup_holds(
    _: None = Depends(require_cron_secret), manager: ReservationManager = Depends(get_manager)
) -> CleanupResponse:
    return await _cleanup(manager, "holds_deleted")


@app.api_route("/api/cron/cleanup-pending", methods=["GET", "POST"], response_model=CleanupResponse)
async def cron_cleanup_pending(
    _: None = Depends(require_cron_secret), manager: ReservationManager = Depends(get_manager)
) -> CleanupResponse:
    return await _cleanup(manager, "pending_cancelled")


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "timestamp": utc_now().isoformat()}


def get_app() -> FastAPI:
    """Exported factory for uvicorn or tests."""
    return app
