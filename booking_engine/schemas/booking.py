# booking_engine/schemas/booking.py
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from booking_engine.schemas.customer import CustomerIn


class BookingCreate(BaseModel):
    """Booking creation request shared by every channel adapter."""
    start: str = Field(..., description="ISO8601; naive values are read in the org timezone")
    duration_min: Optional[int] = Field(None, gt=0, le=24 * 60)
    service_id: Optional[str] = None
    staff_id: Optional[str] = None
    customer: CustomerIn
    notes: Optional[str] = Field(None, max_length=2000)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)

    @field_validator("service_id", "staff_id", "idempotency_key", "notes", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class BookingOut(BaseModel):
    ok: bool = True
    appointment_id: str
    created: bool
    starts_at: datetime
    ends_at: datetime
    staff_id: Optional[str] = None
    status: str


class RescheduleRequest(BaseModel):
    new_start: str
    staff_id: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class StatusUpdate(BaseModel):
    status: Literal["SCHEDULED", "COMPLETED", "NO_SHOW"]


class AppointmentOut(BaseModel):
    ok: bool = True
    appointment_id: str
    status: str
    starts_at: datetime
    ends_at: datetime
    staff_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class HoldCreate(BaseModel):
    start: datetime
    end: datetime
    staff_id: Optional[str] = None
    note: Optional[str] = Field(None, max_length=200)
    hold_minutes: Optional[int] = None


class HoldOut(BaseModel):
    id: str
    org_id: str
    start: datetime
    end: datetime
    staff_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime
    source: str = "staff"
    note: Optional[str] = None
