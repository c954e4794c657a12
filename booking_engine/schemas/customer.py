# booking_engine/schemas/customer.py
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator

from booking_engine.core.config import settings
from booking_engine.utils.phone import normalize_phone


class CustomerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=5, max_length=32)
    email: Optional[EmailStr] = None

    @field_validator("name")
    @classmethod
    def _clean_name(cls, v: str) -> str:
        # trim + collapse internal extra spaces
        v = " ".join(v.strip().split())
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, v: str) -> str:
        return normalize_phone(v, settings.DEFAULT_PHONE_REGION)

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v
