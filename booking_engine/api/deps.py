# booking_engine/api/deps.py
"""
FastAPI dependencies shared by the channel routers.

Engine collaborators are resolved through dependencies so tests can swap
the session factory, the calendar oracle or the hold store with
`app.dependency_overrides`.
"""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import settings
from booking_engine.core.errors import NotFound, RateLimited, Unauthorized
from booking_engine.core.logging import get_logger
from booking_engine.crud.organization import get_organization
from booking_engine.db.session import get_session, get_session_factory
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.booking import BookingTransactionManager
from booking_engine.services.google_calendar import GoogleCalendarOracle
from booking_engine.services.holds import HoldStore
from booking_engine.services.rate_limit import RateLimiter
from booking_engine.utils.signature import read_signature, verify_hmac_signature

logger = get_logger(__name__)

_oracle = GoogleCalendarOracle()
_hold_store = HoldStore()
_rate_limiter = RateLimiter()


def get_oracle() -> GoogleCalendarOracle:
    return _oracle


def get_hold_store() -> HoldStore:
    return _hold_store


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


def get_availability_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    oracle: GoogleCalendarOracle = Depends(get_oracle),
    hold_store: HoldStore = Depends(get_hold_store),
) -> AvailabilityService:
    return AvailabilityService(session_factory, oracle=oracle, hold_store=hold_store)


def get_booking_manager(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    oracle: GoogleCalendarOracle = Depends(get_oracle),
) -> BookingTransactionManager:
    return BookingTransactionManager(session_factory, oracle=oracle)


def idempotency_key_header(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
) -> Optional[str]:
    return (idempotency_key or "").strip() or None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_public_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    if not await limiter.hit("public_booking", client_ip(request)):
        raise RateLimited("Too many requests, slow down")


async def require_automation_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    expected = settings.AUTOMATION_API_KEY
    if not expected:
        raise Unauthorized("Automation API is not configured")
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        logger.warning("automation_auth_failed", has_key=bool(x_api_key))
        raise Unauthorized("Invalid API key")


async def verify_voice_request(
    org_id: str,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> bytes:
    """Check the webhook HMAC against the org's voice secret; returns the raw body."""
    org = await get_organization(db, org_id)
    if org is None:
        raise NotFound("Organization not found", details={"entity": "organization"})
    secret = org.voice_webhook_secret
    if not secret:
        raise Unauthorized("Voice integration is not configured for this organization")

    raw = await request.body()
    signature, timestamp = read_signature(request.headers)
    if not verify_hmac_signature(raw, signature, secret, timestamp,
                                 max_skew_seconds=settings.VOICE_SIGNATURE_MAX_SKEW_SECONDS):
        logger.warning("voice_signature_invalid", org_id=org_id, has_signature=bool(signature))
        raise Unauthorized("Invalid signature")
    return raw
