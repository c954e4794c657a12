# booking_engine/api/routes/public.py
"""Public booking widget API: availability, explain, ranking, bookings."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps import (
    enforce_public_rate_limit,
    get_availability_service,
    get_booking_manager,
    idempotency_key_header,
)
from booking_engine.api.responses import booking_response
from booking_engine.core.logging import set_request_context
from booking_engine.core.timeutils import ensure_utc
from booking_engine.db.session import get_session
from booking_engine.schemas.availability import (
    AvailabilityResponse,
    DurationPrediction,
    ExplainResponse,
    RankRequest,
    RankResponse,
)
from booking_engine.schemas.booking import BookingCreate, BookingOut
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.booking import BookingTransactionManager
from booking_engine.services.duration import predict_duration
from booking_engine.services.slots import Candidate

router = APIRouter(prefix="/public/v1/orgs/{org_id}", tags=["public"])


@router.get("/availability", response_model=AvailabilityResponse)
async def get_availability(
    org_id: str,
    from_: str = Query(..., alias="from", description="ISO timestamp or date; naive values use the org timezone"),
    to: str = Query(..., description="ISO timestamp or date; a date covers the whole day"),
    service_id: Optional[str] = None,
    staff_id: Optional[str] = None,
    duration_min: Optional[int] = Query(None, gt=0, le=24 * 60),
    rank: bool = False,
    service: AvailabilityService = Depends(get_availability_service),
):
    set_request_context(org_id=org_id, channel="public")
    return await service.compute(
        org_id, from_, to,
        service_id=service_id or None,
        staff_id=staff_id or None,
        duration_min=duration_min,
        rank=rank,
    )


@router.get("/availability/explain", response_model=ExplainResponse)
async def explain_availability(
    org_id: str,
    start: str,
    end: str,
    staff_id: Optional[str] = None,
    service: AvailabilityService = Depends(get_availability_service),
):
    set_request_context(org_id=org_id, channel="public")
    return await service.explain(org_id, start, end, staff_id=staff_id or None)


@router.post("/availability/rank", response_model=RankResponse)
async def rank_availability(
    org_id: str,
    payload: RankRequest,
    service: AvailabilityService = Depends(get_availability_service),
):
    set_request_context(org_id=org_id, channel="public")
    candidates = [Candidate(ensure_utc(s.start), ensure_utc(s.end), s.staff_id) for s in payload.slots]
    return RankResponse(slots=await service.rank(org_id, candidates))


@router.get("/services/{service_id}/predicted-duration", response_model=DurationPrediction)
async def predicted_duration(
    org_id: str,
    service_id: str,
    db: AsyncSession = Depends(get_session),
):
    set_request_context(org_id=org_id, channel="public")
    return await predict_duration(db, org_id, service_id)


@router.post(
    "/bookings",
    response_model=BookingOut,
    status_code=201,
    dependencies=[Depends(enforce_public_rate_limit)],
)
async def create_booking(
    org_id: str,
    payload: BookingCreate,
    idempotency_key: Optional[str] = Depends(idempotency_key_header),
    manager: BookingTransactionManager = Depends(get_booking_manager),
):
    set_request_context(org_id=org_id, channel="public")
    if idempotency_key:
        payload = payload.model_copy(update={"idempotency_key": idempotency_key})
    outcome = await manager.book(org_id, payload, source="web")
    return booking_response(outcome)
