import uuid

import pytest
from fastapi.testclient import TestClient

from bookinghub import config
from bookinghub.api.app import app, get_manager
from bookinghub.app.tests_new.fakes import MONDAY


@pytest.fixture
def client(manager, salon, monkeypatch):
    monkeypatch.setenv("RUN_EXPIRATION_WORKER", "0")
    app.dependency_overrides[get_manager] = lambda: manager
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _slots_params(salon, day=MONDAY):
    return {"service_id": str(salon.service_id), "staff_id": str(salon.staff_id), "date": day.isoformat()}


def _reserve(client, salon, time="10:00"):
    return client.post(
        "/api/widget/studio/reserve-slot",
        json={
            "service_id": str(salon.service_id),
            "staff_id": str(salon.staff_id),
            "date": MONDAY.isoformat(),
            "time": time,
        },
    )


def _book(client, salon, time="10:00"):
    reservation = _reserve(client, salon, time).json()["reservation"]
    response = client.post(
        "/api/widget/studio/complete-booking",
        json={
            "reservation_id": reservation["id"],
            "session_token": reservation["session_token"],
            "client_name": "Dana Fox",
            "client_phone": "+49 151 0000000",
            "client_email": "dana@example.com",
        },
    )
    assert response.status_code == 200
    return response.json()["booking"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_slots(client, salon):
    response = client.get("/api/widget/studio/slots", params=_slots_params(salon))
    assert response.status_code == 200
    body = response.json()
    assert body["slots"][0] == "09:00"
    assert len(body["slots"]) == 29
    assert "reason" not in body

    closed = client.get("/api/widget/studio/slots", params=_slots_params(salon, MONDAY.replace(day=1)))
    assert closed.json() == {"slots": [], "reason": "NOT_WORKING_DAY"}


def test_slots_errors(client, salon):
    response = client.get("/api/widget/nowhere/slots", params=_slots_params(salon))
    assert response.status_code == 404
    assert response.json()["error"] == "TENANT_NOT_FOUND"

    params = _slots_params(salon)
    params["date"] = "02/03/2026"
    response = client.get("/api/widget/studio/slots", params=params)
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_FORMAT"

    params = _slots_params(salon)
    params["service_id"] = "abc"
    assert client.get("/api/widget/studio/slots", params=params).json()["error"] == "INVALID_ID"

    response = client.get("/api/widget/studio/slots", params={"date": MONDAY.isoformat()})
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_FAILED"


def test_availability(client, salon):
    params = {"service_id": str(salon.service_id), "staff_id": "_any", "from": "2026-03-01", "to": "2026-03-07"}
    response = client.get("/api/widget/studio/availability", params=params)
    assert response.status_code == 200
    assert response.json() == {"unavailable": ["2026-03-01", "2026-03-07"]}

    params.pop("to")
    response = client.get("/api/widget/studio/availability", params=params)
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_PARAMS"

    params["to"] = "2026-06-30"
    assert client.get("/api/widget/studio/availability", params=params).json()["error"] == "RANGE_TOO_LARGE"


def test_reserve_and_complete(client, salon, store):
    response = _reserve(client, salon)
    assert response.status_code == 201
    reservation = response.json()["reservation"]
    assert len(reservation["session_token"]) == 64

    taken = _reserve(client, salon, "10:30")
    assert taken.status_code == 409
    assert taken.json() == {"error": "SLOT_TAKEN", "message": "This time slot is already taken."}

    response = client.post(
        "/api/widget/studio/complete-booking",
        json={
            "hold_id": reservation["id"],
            "session_token": reservation["session_token"],
            "client_name": "  Dana Fox ",
            "client_phone": "+49 151 0000000",
        },
    )
    assert response.status_code == 200
    booking = response.json()["booking"]
    assert booking["status"] == "confirmed"
    assert booking["client_name"] == "Dana Fox"
    assert len(booking["cancel_token"]) == 64
    assert len(booking["reschedule_token"]) == 64
    assert store.holds == {}


def test_reserve_rejects_malformed_time(client, salon):
    response = client.post(
        "/api/widget/studio/reserve-slot",
        json={"service_id": str(salon.service_id), "staff_id": str(salon.staff_id), "date": "2026-03-02", "time": "9am"},
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_FAILED"
    assert body["details"][0]["field"] == "time"


def test_complete_booking_after_expiry(client, salon, clock):
    reservation = _reserve(client, salon).json()["reservation"]
    clock.advance(minutes=16)
    response = client.post(
        "/api/widget/studio/complete-booking",
        json={
            "reservation_id": reservation["id"],
            "session_token": reservation["session_token"],
            "client_name": "Dana Fox",
            "client_phone": "0151 000000",
        },
    )
    assert response.status_code == 410
    assert response.json()["error"] == "HOLD_EXPIRED"


@pytest.mark.parametrize("token", [None, "f" * 64])
def test_complete_booking_requires_holder_token(client, salon, store, token):
    reservation = _reserve(client, salon).json()["reservation"]
    body = {"reservation_id": reservation["id"], "client_name": "Mallory", "client_phone": "0151 000000"}
    if token is not None:
        body["session_token"] = token

    response = client.post("/api/widget/studio/complete-booking", json=body)
    assert response.status_code == 404
    assert response.json()["error"] == "RESERVATION_NOT_FOUND"
    assert uuid.UUID(reservation["id"]) in store.holds
    assert store.bookings == {}


def test_complete_booking_validates_client(client, salon):
    reservation = _reserve(client, salon).json()["reservation"]
    response = client.post(
        "/api/widget/studio/complete-booking",
        json={"reservation_id": reservation["id"], "client_name": "D", "client_phone": "1", "client_email": "nope"},
    )
    assert response.status_code == 400
    fields = {item["field"] for item in response.json()["details"]}
    assert {"client_name", "client_phone", "client_email"} <= fields


def test_cancel_hold_always_succeeds(client, salon, store):
    reservation = _reserve(client, salon).json()["reservation"]

    response = client.post(
        "/api/widget/studio/cancel-hold", json={"hold_id": reservation["id"], "session_token": "wrong"}
    )
    assert response.json() == {"success": True}
    assert len(store.holds) == 1

    response = client.post(
        "/api/widget/studio/cancel-hold",
        json={"hold_id": reservation["id"], "session_token": reservation["session_token"]},
    )
    assert response.json() == {"success": True}
    assert store.holds == {}


def test_cancel_link(client, salon):
    booking = _book(client, salon)
    token = booking["cancel_token"]

    info = client.get(f"/api/cancel/{token}").json()
    assert info["allowed"] is True
    assert info["booking"]["cancel_token"] is None

    response = client.post(f"/api/cancel/{token}")
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "cancelled"

    again = client.post(f"/api/cancel/{token}")
    assert again.status_code == 400
    assert again.json()["error"] == "ALREADY_CANCELLED"

    assert client.get("/api/cancel/short").status_code == 404


def test_reschedule_link(client, salon):
    booking = _book(client, salon)
    token = booking["reschedule_token"]

    assert client.get(f"/api/reschedule/{token}").json()["allowed"] is True
    slots = client.get(f"/api/reschedule/{token}/slots", params={"date": MONDAY.isoformat()}).json()["slots"]
    assert "10:00" in slots

    response = client.post(f"/api/reschedule/{token}", json={"date": MONDAY.isoformat(), "time": "14:00"})
    assert response.status_code == 200
    moved = response.json()["booking"]
    assert moved["was_rescheduled"] is True
    assert moved["start_time"].startswith("2026-03-02T14:00:00")

    info = client.get(f"/api/reschedule/{token}").json()
    assert info == {"booking": info["booking"], "allowed": False, "reason": "ALREADY_RESCHEDULED"}


def test_status_change_requires_tenant(client, salon):
    booking = _book(client, salon)
    url = f"/api/bookings/{booking['id']}/status"

    assert client.patch(url, json={"status": "completed"}).status_code == 401

    headers = {"X-Tenant-Id": str(salon.tenant.id)}
    response = client.patch(url, json={"status": "completed"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "completed"

    response = client.patch(url, json={"status": "cancelled"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_TRANSITION"
    assert response.json()["allowed"] == []

    other_tenant = {"X-Tenant-Id": str(uuid.uuid4())}
    assert client.patch(url, json={"status": "no_show"}, headers=other_tenant).status_code == 404


def test_cron_cleanup_requires_secret(client, salon, store, monkeypatch):
    _reserve(client, salon)

    monkeypatch.setitem(config.SETTINGS, "cron_secret", "")
    assert client.get("/api/cron/cleanup-holds").status_code == 401

    monkeypatch.setitem(config.SETTINGS, "cron_secret", "s3cret")
    assert client.get("/api/cron/cleanup-holds", headers={"Authorization": "Bearer nope"}).status_code == 401

    # The cron path sweeps with the wall clock, long after the fixture holds lapsed
    response = client.post("/api/cron/cleanup-holds", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["deleted"] == 1
    assert store.holds == {}

    response = client.get("/api/cron/cleanup-pending", headers={"Authorization": "Bearer s3cret"})
    assert response.json()["deleted"] == 0
