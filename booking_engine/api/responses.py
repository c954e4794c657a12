# booking_engine/api/responses.py
from __future__ import annotations

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from booking_engine.db.base import Appointment
from booking_engine.schemas.booking import AppointmentOut, BookingOut
from booking_engine.services.booking import BookingOutcome


def booking_response(outcome: BookingOutcome) -> JSONResponse:
    """201 for a new appointment, 200 when an idempotent retry replays one."""
    appt = outcome.appointment
    body = BookingOut(
        appointment_id=appt.id,
        created=outcome.created,
        starts_at=appt.starts_at,
        ends_at=appt.ends_at,
        staff_id=appt.staff_id,
        status=appt.status,
    )
    return JSONResponse(status_code=201 if outcome.created else 200, content=jsonable_encoder(body))


def appointment_out(appt: Appointment) -> AppointmentOut:
    return AppointmentOut(
        appointment_id=appt.id,
        status=appt.status,
        starts_at=appt.starts_at,
        ends_at=appt.ends_at,
        staff_id=appt.staff_id,
        cancelled_at=appt.cancelled_at,
    )
