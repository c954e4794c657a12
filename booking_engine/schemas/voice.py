# booking_engine/schemas/voice.py
"""Voice-agent webhook payloads (camelCase on the wire)."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from booking_engine.schemas.booking import BookingCreate
from booking_engine.schemas.customer import CustomerIn


class _VoiceModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class VoiceAvailabilityIn(_VoiceModel):
    start: str = Field(..., alias="startISO")
    end: str = Field(..., alias="endISO")
    duration_min: Optional[int] = Field(None, alias="durationMin", gt=0, le=24 * 60)
    staff_id: Optional[str] = Field(None, alias="staffId")
    service_id: Optional[str] = Field(None, alias="serviceId")
    rank: bool = False


class VoiceBookingIn(_VoiceModel):
    start: str = Field(..., alias="startISO")
    duration_min: Optional[int] = Field(None, alias="durationMin", gt=0, le=24 * 60)
    customer_name: str = Field(..., alias="customerName")
    customer_phone: str = Field(..., alias="customerPhone")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    staff_id: Optional[str] = Field(None, alias="staffId")
    service_id: Optional[str] = Field(None, alias="serviceId")
    notes: Optional[str] = Field(None, max_length=2000)
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey", max_length=128)

    def to_booking(self, idempotency_key: Optional[str] = None) -> BookingCreate:
        """Map onto the shared request; a header key wins over the body field."""
        return BookingCreate(
            start=self.start,
            duration_min=self.duration_min,
            service_id=self.service_id,
            staff_id=self.staff_id,
            customer=CustomerIn(name=self.customer_name, phone=self.customer_phone, email=self.customer_email),
            notes=self.notes,
            idempotency_key=idempotency_key or self.idempotency_key,
        )


class VoiceRescheduleIn(_VoiceModel):
    appointment_id: str = Field(..., alias="appointmentId")
    new_start: str = Field(..., alias="newStartISO")
    staff_id: Optional[str] = Field(None, alias="staffId")


class VoiceCancelIn(_VoiceModel):
    appointment_id: str = Field(..., alias="appointmentId")
    reason: Optional[str] = Field(None, max_length=200)
