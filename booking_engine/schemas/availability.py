# booking_engine/schemas/availability.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SlotOut(BaseModel):
    start: datetime
    end: datetime
    staff_id: Optional[str] = None
    score: Optional[float] = None
    explanation: Optional[str] = None
    held: bool = False


class AvailabilityMeta(BaseModel):
    duration_min: int
    slot_interval_min: int
    lead_time_min: int
    buffer_before_min: int
    buffer_after_min: int
    allow_overlaps: bool
    total_slots: int
    candidates_checked: int
    rejections: Dict[str, int] = Field(default_factory=dict)
    oracle_degraded: bool = False
    empty_reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    ok: bool = True
    org_id: str
    timezone: str
    window: Dict[str, datetime]
    slots: List[SlotOut]
    meta: AvailabilityMeta


class ReasonOut(BaseModel):
    code: str
    detail: str


class ExplainResponse(BaseModel):
    available: bool
    reasons: List[ReasonOut]


class RankSlotIn(BaseModel):
    start: datetime
    end: datetime
    staff_id: Optional[str] = None


class RankRequest(BaseModel):
    slots: List[RankSlotIn] = Field(..., max_length=500)


class RankResponse(BaseModel):
    ok: bool = True
    slots: List[SlotOut]


class DurationPrediction(BaseModel):
    service_id: str
    predicted_min: int
    median_min: int
    avg_min: int
    sample_size: int
