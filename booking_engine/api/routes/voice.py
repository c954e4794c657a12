# booking_engine/api/routes/voice.py
"""
Voice-agent tool webhooks. Every request is HMAC-signed with the org's
voice secret; the body is parsed only after the signature checks out.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from booking_engine.api.deps import (
    get_availability_service,
    get_booking_manager,
    idempotency_key_header,
    verify_voice_request,
)
from booking_engine.api.responses import appointment_out, booking_response
from booking_engine.core.logging import set_request_context
from booking_engine.schemas.availability import AvailabilityResponse
from booking_engine.schemas.booking import AppointmentOut, BookingOut
from booking_engine.schemas.voice import (
    VoiceAvailabilityIn,
    VoiceBookingIn,
    VoiceCancelIn,
    VoiceRescheduleIn,
)
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.booking import BookingTransactionManager

router = APIRouter(prefix="/integrations/voice/{org_id}", tags=["voice"])


@router.post("/availability", response_model=AvailabilityResponse)
async def voice_availability(
    org_id: str,
    raw: bytes = Depends(verify_voice_request),
    service: AvailabilityService = Depends(get_availability_service),
):
    set_request_context(org_id=org_id, channel="voice")
    body = VoiceAvailabilityIn.model_validate_json(raw)
    return await service.compute(
        org_id, body.start, body.end,
        service_id=body.service_id,
        staff_id=body.staff_id,
        duration_min=body.duration_min,
        rank=body.rank,
    )


@router.post("/create-booking", response_model=BookingOut, status_code=201)
async def voice_create_booking(
    org_id: str,
    raw: bytes = Depends(verify_voice_request),
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="voice")
    body = VoiceBookingIn.model_validate_json(raw)
    outcome = await manager.book(org_id, body.to_booking(idempotency_key), source="voice")
    return booking_response(outcome)


@router.post("/reschedule", response_model=AppointmentOut)
async def voice_reschedule(
    org_id: str,
    raw: bytes = Depends(verify_voice_request),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="voice")
    body = VoiceRescheduleIn.model_validate_json(raw)
    appt = await manager.reschedule(org_id, body.appointment_id, body.new_start,
                                    staff_id=body.staff_id, actor="voice")
    return appointment_out(appt)


@router.post("/cancel", response_model=AppointmentOut)
async def voice_cancel(
    org_id: str,
    raw: bytes = Depends(verify_voice_request),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="voice")
    body = VoiceCancelIn.model_validate_json(raw)
    appt = await manager.cancel(org_id, body.appointment_id, reason=body.reason, actor="voice")
    return appointment_out(appt)
