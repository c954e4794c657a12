"""
Channel adapters end to end: public widget, voice webhooks, automation
API and staff portal, through the ASGI app.

Bookings go through the real clock, so these tests use a Monday at least
a week ahead.
"""

import hashlib
import hmac
import json
from datetime import datetime

import pytest

from booking_engine.api.deps import get_rate_limiter
from booking_engine.main import app
from booking_engine.services.rate_limit import RateLimiter
from tests.factories import ORG_ID, SERVICE_ID, STAFF_ID, VOICE_SECRET, add_holiday, akl, local_iso, upcoming_monday

pytestmark = pytest.mark.integration

DAY = upcoming_monday()


def booking_body(hhmm="10:00", phone="021 555 0199", **extra):
    body = {
        "start": local_iso(hhmm, DAY),
        "service_id": SERVICE_ID,
        "customer": {"name": "Jordan Lee", "phone": phone},
    }
    body.update(extra)
    return body


def signed(payload: dict, secret: str = VOICE_SECRET):
    raw = json.dumps(payload).encode()
    signature = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return raw, {"X-Voice-Signature": signature, "Content-Type": "application/json"}


class TestPublicAvailability:
    """GET /public/v1/orgs/{org_id}/availability"""

    async def test_returns_slots_and_meta(self, client, org):
        response = await client.get(
            f"/public/v1/orgs/{ORG_ID}/availability",
            params={"from": local_iso("09:00", DAY), "to": local_iso("10:00", DAY), "service_id": SERVICE_ID},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["timezone"] == "Pacific/Auckland"
        assert len(data["slots"]) == 2
        assert data["slots"][0]["staff_id"] == STAFF_ID
        assert data["meta"]["duration_min"] == 30

    async def test_holiday_reports_empty_reason(self, client, org, session_factory):
        await add_holiday(session_factory, DAY)
        response = await client.get(
            f"/public/v1/orgs/{ORG_ID}/availability", params={"from": DAY.isoformat(), "to": DAY.isoformat()}
        )
        assert response.json()["slots"] == []
        assert response.json()["meta"]["empty_reason"] == "holiday"

    async def test_missing_params_is_validation_error(self, client, org):
        response = await client.get(f"/public/v1/orgs/{ORG_ID}/availability")

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert any("from" in f["loc"] for f in error["fields"])

    async def test_bad_timestamp(self, client, org):
        response = await client.get(
            f"/public/v1/orgs/{ORG_ID}/availability", params={"from": "soon", "to": "later"}
        )
        assert response.status_code == 422
        assert response.json()["ok"] is False

    async def test_unknown_org(self, client):
        response = await client.get(
            "/public/v1/orgs/missing/availability", params={"from": DAY.isoformat(), "to": DAY.isoformat()}
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    async def test_explain(self, client, org):
        response = await client.get(
            f"/public/v1/orgs/{ORG_ID}/availability/explain",
            params={"start": local_iso("17:00", DAY), "end": local_iso("17:30", DAY)},
        )
        assert response.status_code == 200
        assert response.json()["available"] is False
        assert response.json()["reasons"][0]["code"] == "outside_hours"

    async def test_rank(self, client, org):
        slots = [
            {"start": akl("15:00", DAY).isoformat(), "end": akl("15:30", DAY).isoformat()},
            {"start": akl("09:00", DAY).isoformat(), "end": akl("09:30", DAY).isoformat()},
        ]
        response = await client.post(f"/public/v1/orgs/{ORG_ID}/availability/rank", json={"slots": slots})

        assert response.status_code == 200
        ranked = response.json()["slots"]
        assert len(ranked) == 2
        assert all(s["explanation"] for s in ranked)

    async def test_predicted_duration_without_history(self, client, org):
        response = await client.get(f"/public/v1/orgs/{ORG_ID}/services/{SERVICE_ID}/predicted-duration")
        assert response.status_code == 200
        assert response.json()["predicted_min"] == 30


class TestPublicBookings:
    """POST /public/v1/orgs/{org_id}/bookings"""

    async def test_create_then_replay_with_idempotency_key(self, client, org):
        url = f"/public/v1/orgs/{ORG_ID}/bookings"
        headers = {"Idempotency-Key": "widget-123"}

        first = await client.post(url, json=booking_body(), headers=headers)
        second = await client.post(url, json=booking_body(), headers=headers)

        assert first.status_code == 201
        assert first.json()["created"] is True
        assert second.status_code == 200
        assert second.json()["created"] is False
        assert second.json()["appointment_id"] == first.json()["appointment_id"]

    async def test_booked_slot_disappears_from_availability(self, client, org):
        await client.post(f"/public/v1/orgs/{ORG_ID}/bookings", json=booking_body("09:00"))
        response = await client.get(
            f"/public/v1/orgs/{ORG_ID}/availability",
            params={"from": local_iso("09:00", DAY), "to": local_iso("10:00", DAY)},
        )
        slots = response.json()["slots"]
        assert len(slots) == 1
        assert datetime.fromisoformat(slots[0]["start"].replace("Z", "+00:00")) == akl("09:30", DAY)

    async def test_taken_slot_is_conflict(self, client, org):
        url = f"/public/v1/orgs/{ORG_ID}/bookings"
        assert (await client.post(url, json=booking_body())).status_code == 201

        response = await client.post(url, json=booking_body(phone="021 555 0100"))

        assert response.status_code == 409
        body = response.json()
        assert body["ok"] is False
        assert body["error"]["code"] == "conflict"
        assert body["error"]["reason"] == "staff_busy"

    async def test_invalid_phone(self, client, org):
        response = await client.post(f"/public/v1/orgs/{ORG_ID}/bookings", json=booking_body(phone="call me"))
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    async def test_rate_limited(self, client, org, redis_mock):
        app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(limit=1, client_factory=lambda: redis_mock)
        url = f"/public/v1/orgs/{ORG_ID}/bookings"

        assert (await client.post(url, json=booking_body("09:00"))).status_code == 201
        response = await client.post(url, json=booking_body("10:00"))

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "rate_limited"


class TestVoiceWebhooks:
    """Signed /integrations/voice/{org_id} tools"""

    async def test_availability(self, client, org):
        raw, headers = signed({"startISO": local_iso("09:00", DAY), "endISO": local_iso("10:00", DAY)})
        response = await client.post(f"/integrations/voice/{ORG_ID}/availability", content=raw, headers=headers)

        assert response.status_code == 200
        assert len(response.json()["slots"]) == 2

    async def test_bad_signature(self, client, org):
        raw, _ = signed({"startISO": local_iso("09:00", DAY), "endISO": local_iso("10:00", DAY)})
        _, headers = signed({"tampered": True})
        response = await client.post(f"/integrations/voice/{ORG_ID}/availability", content=raw, headers=headers)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    async def test_missing_signature(self, client, org):
        response = await client.post(f"/integrations/voice/{ORG_ID}/availability", json={})
        assert response.status_code == 401

    async def test_booking_lifecycle(self, client, org):
        raw, headers = signed({
            "startISO": local_iso("11:00", DAY),
            "customerName": "Sam Voice",
            "customerPhone": "021 555 0123",
            "serviceId": SERVICE_ID,
            "idempotencyKey": "call-1",
        })
        created = await client.post(f"/integrations/voice/{ORG_ID}/create-booking", content=raw, headers=headers)
        assert created.status_code == 201
        appointment_id = created.json()["appointment_id"]

        raw, headers = signed({"appointmentId": appointment_id, "newStartISO": local_iso("14:00", DAY)})
        moved = await client.post(f"/integrations/voice/{ORG_ID}/reschedule", content=raw, headers=headers)
        assert moved.status_code == 200
        assert moved.json()["starts_at"].startswith(akl("14:00", DAY).strftime("%Y-%m-%dT%H:%M"))

        raw, headers = signed({"appointmentId": appointment_id, "reason": "caller asked"})
        cancelled = await client.post(f"/integrations/voice/{ORG_ID}/cancel", content=raw, headers=headers)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "CANCELLED"

    async def test_invalid_body_after_valid_signature(self, client, org):
        raw, headers = signed({"endISO": local_iso("10:00", DAY)})
        response = await client.post(f"/integrations/voice/{ORG_ID}/availability", content=raw, headers=headers)
        assert response.status_code == 422


class TestAutomationApi:
    """/automation/v1 with X-API-Key"""

    async def test_requires_api_key(self, client, org):
        response = await client.get(
            "/automation/v1/availability",
            params={"org_id": ORG_ID, "from": DAY.isoformat(), "to": DAY.isoformat()},
        )
        assert response.status_code == 401

    async def test_wrong_api_key(self, client, org):
        response = await client.get(
            "/automation/v1/availability",
            params={"org_id": ORG_ID, "from": DAY.isoformat(), "to": DAY.isoformat()},
            headers={"X-API-Key": "nope"},
        )
        assert response.status_code == 401

    async def test_availability_and_booking(self, client, org):
        headers = {"X-API-Key": "test-automation-key"}
        availability = await client.get(
            "/automation/v1/availability",
            params={"org_id": ORG_ID, "from": DAY.isoformat(), "to": DAY.isoformat()},
            headers=headers,
        )
        assert availability.status_code == 200
        assert availability.json()["meta"]["total_slots"] == 16

        booked = await client.post(
            "/automation/v1/bookings", params={"org_id": ORG_ID}, json=booking_body("16:30"), headers=headers
        )
        assert booked.status_code == 201
        assert booked.json()["staff_id"] == STAFF_ID


class TestStaffPortal:
    """/staff/v1 appointment lifecycle and holds"""

    async def book(self, client, hhmm="10:00") -> str:
        response = await client.post(f"/public/v1/orgs/{ORG_ID}/bookings", json=booking_body(hhmm))
        assert response.status_code == 201
        return response.json()["appointment_id"]

    async def test_list_and_cancel(self, client, org):
        appointment_id = await self.book(client)
        base = f"/staff/v1/orgs/{ORG_ID}/appointments"

        listed = await client.get(base)
        assert [a["appointment_id"] for a in listed.json()] == [appointment_id]

        cancelled = await client.post(
            f"{base}/{appointment_id}/cancel", json={"reason": "sick"}, headers={"X-Staff-Actor": "reception"}
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["cancelled_at"] is not None

        assert (await client.get(base)).json() == []
        assert len((await client.get(base, params={"include_cancelled": True})).json()) == 1

    async def test_status_update(self, client, org):
        appointment_id = await self.book(client)
        response = await client.post(
            f"/staff/v1/orgs/{ORG_ID}/appointments/{appointment_id}/status", json={"status": "COMPLETED"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"

    async def test_unknown_appointment(self, client, org):
        response = await client.post(f"/staff/v1/orgs/{ORG_ID}/appointments/missing/cancel", json={})
        assert response.status_code == 404

    async def test_reschedule_into_taken_slot(self, client, org):
        first = await self.book(client, "10:00")
        await self.book(client, "11:00")
        response = await client.post(
            f"/staff/v1/orgs/{ORG_ID}/appointments/{first}/reschedule",
            json={"new_start": local_iso("11:00", DAY)},
        )
        assert response.status_code == 409

    async def test_holds_crud(self, client, org):
        base = f"/staff/v1/orgs/{ORG_ID}/holds"
        created = await client.post(base, json={
            "start": akl("09:00", DAY).isoformat(),
            "end": akl("09:30", DAY).isoformat(),
            "staff_id": STAFF_ID,
            "hold_minutes": 10,
        })
        assert created.status_code == 201
        hold_id = created.json()["id"]

        assert [h["id"] for h in (await client.get(base)).json()] == [hold_id]

        availability = await client.get(
            f"/public/v1/orgs/{ORG_ID}/availability",
            params={"from": local_iso("09:00", DAY), "to": local_iso("10:00", DAY)},
        )
        assert [s["held"] for s in availability.json()["slots"]] == [True, False]

        assert (await client.delete(f"{base}/{hold_id}")).status_code == 200
        assert (await client.delete(f"{base}/{hold_id}")).status_code == 404
