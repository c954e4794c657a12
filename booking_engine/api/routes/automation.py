# booking_engine/api/routes/automation.py
"""Third-party automation API (Zapier-style), authenticated with X-API-Key."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from booking_engine.api.deps import (
    get_availability_service,
    get_booking_manager,
    idempotency_key_header,
    require_automation_key,
)
from booking_engine.api.responses import booking_response
from booking_engine.core.logging import set_request_context
from booking_engine.schemas.availability import AvailabilityResponse
from booking_engine.schemas.booking import BookingCreate, BookingOut
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.booking import BookingTransactionManager

router = APIRouter(
    prefix="/automation/v1",
    tags=["automation"],
    dependencies=[Depends(require_automation_key)],
)


@router.get("/availability", response_model=AvailabilityResponse)
async def automation_availability(
    org_id: str = Query(...),
    from_: str = Query(..., alias="from"),
    to: str = Query(...),
    service_id: Optional[str] = None,
    staff_id: Optional[str] = None,
    duration_min: Optional[int] = Query(None, gt=0, le=24 * 60),
    rank: bool = False,
    service: AvailabilityService = Depends(get_availability_service),
):
    set_request_context(org_id=org_id, channel="automation")
    return await service.compute(
        org_id, from_, to,
        service_id=service_id or None,
        staff_id=staff_id or None,
        duration_min=duration_min,
        rank=rank,
    )


@router.post("/bookings", response_model=BookingOut, status_code=201)
async def automation_create_booking(
    payload: BookingCreate,
    org_id: str = Query(...),
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="automation")
    if idempotency_key:
        payload = payload.model_copy(update={"idempotency_key": idempotency_key})
    outcome = await manager.book(org_id, payload, source="automation")
    return booking_response(outcome)
