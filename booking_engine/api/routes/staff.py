# booking_engine/api/routes/staff.py
"""
Staff portal operations: appointment lifecycle and booking holds.

Portal sessions are handled upstream; the acting staff member arrives in
the X-Staff-Actor header and is recorded on cancellations.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps import get_booking_manager, get_hold_store
from booking_engine.api.responses import appointment_out
from booking_engine.core.errors import NotFound
from booking_engine.core.logging import set_request_context
from booking_engine.core.timeutils import ensure_utc
from booking_engine.crud.appointment import list_appointments
from booking_engine.db.session import get_session
from booking_engine.schemas.booking import (
    AppointmentOut,
    CancelRequest,
    HoldCreate,
    HoldOut,
    RescheduleRequest,
    StatusUpdate,
)
from booking_engine.services.booking import BookingTransactionManager
from booking_engine.services.holds import BookingHold, HoldStore

router = APIRouter(prefix="/staff/v1/orgs/{org_id}", tags=["staff"])


def staff_actor(x_staff_actor: Optional[str] = Header(None, alias="X-Staff-Actor")) -> str:
    return (x_staff_actor or "").strip()[:120] or "staff"


def _hold_out(hold: BookingHold) -> HoldOut:
    return HoldOut(**{k: getattr(hold, k) for k in HoldOut.model_fields})


@router.get("/appointments", response_model=List[AppointmentOut])
async def get_appointments(
    org_id: str,
    staff_id: Optional[str] = None,
    start: Optional[datetime] = Query(None, description="UTC or offset ISO timestamp"),
    end: Optional[datetime] = Query(None, description="UTC or offset ISO timestamp"),
    include_cancelled: bool = False,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_session),
):
    set_request_context(org_id=org_id, channel="staff")
    rows = await list_appointments(
        db,
        org_id=org_id,
        staff_id=staff_id,
        start_utc=ensure_utc(start) if start else None,
        end_utc=ensure_utc(end) if end else None,
        include_cancelled=include_cancelled,
        limit=limit,
    )
    return [appointment_out(a) for a in rows]


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentOut)
async def reschedule_appointment(
    org_id: str,
    appointment_id: str,
    payload: RescheduleRequest,
    actor: str = Depends(staff_actor),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="staff")
    appt = await manager.reschedule(org_id, appointment_id, payload.new_start,
                                    staff_id=payload.staff_id, actor=actor)
    return appointment_out(appt)


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(
    org_id: str,
    appointment_id: str,
    payload: CancelRequest,
    actor: str = Depends(staff_actor),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="staff")
    appt = await manager.cancel(org_id, appointment_id, reason=payload.reason, actor=actor)
    return appointment_out(appt)


@router.post("/appointments/{appointment_id}/status", response_model=AppointmentOut)
async def update_status(
    org_id: str,
    appointment_id: str,
    payload: StatusUpdate,
    actor: str = Depends(staff_actor),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="staff")
    appt = await manager.set_status(org_id, appointment_id, payload.status, actor=actor)
    return appointment_out(appt)


# -------- Holds --------

@router.get("/holds", response_model=List[HoldOut])
async def list_holds(org_id: str, holds: HoldStore = Depends(get_hold_store)):
    set_request_context(org_id=org_id, channel="staff")
    return [_hold_out(h) for h in await holds.list_holds(org_id)]


@router.post("/holds", response_model=HoldOut, status_code=201)
async def create_hold(
    org_id: str,
    payload: HoldCreate,
    holds: HoldStore = Depends(get_hold_store),
):
    set_request_context(org_id=org_id, channel="staff")
    hold = await holds.create_hold(
        org_id,
        payload.start,
        payload.end,
        staff_id=payload.staff_id,
        hold_minutes=payload.hold_minutes,
        source="staff",
        note=payload.note,
    )
    return _hold_out(hold)


@router.delete("/holds/{hold_id}")
async def release_hold(org_id: str, hold_id: str, holds: HoldStore = Depends(get_hold_store)):
    set_request_context(org_id=org_id, channel="staff")
    if not await holds.release_hold(org_id, hold_id):
        raise NotFound("Hold not found or already expired", details={"entity": "hold"})
    return {"ok": True, "hold_id": hold_id}
