# booking_engine/utils/phone.py
"""
Phone normalization for customer identity (unique per org + phone).
"""
from __future__ import annotations

import re
from typing import Optional

import phonenumbers
from phonenumbers import PhoneNumberFormat

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(raw: Optional[str], region: str = "NZ") -> str:
    """
    Normalize to E.164 using the org's default region for local numbers
    ("021 555 0199" -> "+64215550199"). Numbers phonenumbers cannot place
    fall back to bare digits so the same caller still maps to one customer.
    Raises ValueError when there is nothing usable.
    """
    if not raw or not raw.strip():
        raise ValueError("phone is required")

    candidate = raw.strip()
    try:
        parsed = phonenumbers.parse(candidate, region.upper() if region else None)
        if phonenumbers.is_possible_number(parsed):
            return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException:
        pass

    digits = _NON_DIGITS.sub("", candidate)
    if not 7 <= len(digits) <= 15:
        raise ValueError("phone must contain 7-15 digits")
    return ("+" + digits) if candidate.startswith("+") else digits
