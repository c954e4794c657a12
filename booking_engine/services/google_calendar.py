# booking_engine/services/google_calendar.py
"""
Google Calendar integration.

Two jobs: the busy-time oracle consulted while computing availability, and
the fire-and-forget event sync run after a booking commits. Neither may
fail a request: every provider problem is logged and degrades to "no busy
data" or "not synced".
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import settings
from booking_engine.core.errors import OracleUnavailable, log_error
from booking_engine.core.timeutils import Interval, ensure_utc
from booking_engine.crud.appointment import get_appointment

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

# Service account credentials for Google Calendar API
_calendar_service = None


def get_calendar_service():
    """Get or create the Calendar client from the service-account JSON; None when disabled."""
    global _calendar_service

    if _calendar_service is not None:
        return _calendar_service

    if not settings.GOOGLE_CALENDAR_ENABLED:
        logger.debug("Google Calendar integration disabled via GOOGLE_CALENDAR_ENABLED")
        return None

    service_account_info = settings.GOOGLE_SERVICE_ACCOUNT_JSON
    if not service_account_info:
        logger.warning("GOOGLE_SERVICE_ACCOUNT_JSON not set, calendar integration disabled")
        return None

    try:
        credentials_info = json.loads(service_account_info)
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in GOOGLE_SERVICE_ACCOUNT_JSON: %s", e)
        return None

    try:
        credentials = service_account.Credentials.from_service_account_info(
            credentials_info,
            scopes=SCOPES,
        )
        _calendar_service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        logger.info("Google Calendar service initialized successfully")
        return _calendar_service
    except Exception as e:
        logger.error("Failed to initialize Google Calendar service: %s", e)
        return None


def _parse_busy(payload: Dict[str, Any], calendar_id: str) -> List[Interval]:
    calendar = (payload.get("calendars") or {}).get(calendar_id) or {}
    if calendar.get("errors"):
        reasons = ",".join(str(e.get("reason", "unknown")) for e in calendar["errors"])
        raise OracleUnavailable(f"freebusy errors for calendar: {reasons}")

    busy: List[Interval] = []
    for block in calendar.get("busy") or []:
        start = datetime.fromisoformat(block["start"].replace("Z", "+00:00"))
        end = datetime.fromisoformat(block["end"].replace("Z", "+00:00"))
        if end > start:
            busy.append(Interval(ensure_utc(start), ensure_utc(end)))
    busy.sort(key=lambda i: i.start)
    return busy


class GoogleCalendarOracle:
    """
    Best-effort busy-time lookup.

    The google client is blocking, so the query runs in a worker thread and
    is bounded by a timeout. Caller cancellation is not swallowed.
    """

    def __init__(self, service_factory: Callable[[], Any] = get_calendar_service,
                 timeout_seconds: Optional[float] = None):
        self._service_factory = service_factory
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.ORACLE_TIMEOUT_SECONDS

    def _query(self, service, calendar_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
        body = {
            "timeMin": ensure_utc(start).isoformat(),
            "timeMax": ensure_utc(end).isoformat(),
            "items": [{"id": calendar_id}],
        }
        return service.freebusy().query(body=body).execute()

    async def free_busy(self, calendar_id: Optional[str], start: datetime, end: datetime) -> List[Interval]:
        busy, _ = await self.lookup(calendar_id, start, end)
        return busy

    async def lookup(self, calendar_id: Optional[str], start: datetime,
                     end: datetime) -> Tuple[List[Interval], bool]:
        """Busy intervals plus a degraded flag (True when the provider failed)."""
        if not calendar_id:
            return [], False

        service = self._service_factory()
        if service is None:
            return [], False

        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(self._query, service, calendar_id, start, end),
                timeout=self.timeout_seconds,
            )
            return _parse_busy(payload, calendar_id), False
        except asyncio.TimeoutError:
            error: Exception = OracleUnavailable(f"freebusy timed out after {self.timeout_seconds}s")
        except HttpError as e:
            error = OracleUnavailable(f"freebusy http error: {e}")
        except OracleUnavailable as e:
            error = e
        except Exception as e:
            error = OracleUnavailable(f"freebusy failed: {type(e).__name__}: {e}")

        log_error(error, {"event_name": "oracle_unavailable", "calendar_id": calendar_id})
        return [], True


def _event_body(appointment, customer_name: str, customer_phone: str) -> Dict[str, Any]:
    description = "\n".join(line for line in (
        f"Client: {customer_name}",
        f"Phone: {customer_phone}",
        f"Duration: {appointment.duration_min} minutes",
        f"Booked via: {appointment.source}",
        f"Notes: {appointment.notes}" if appointment.notes else "",
    ) if line)
    return {
        "summary": f"Appointment with {customer_name}",
        "description": description,
        "start": {"dateTime": appointment.starts_at.isoformat(), "timeZone": "UTC"},
        "end": {"dateTime": appointment.ends_at.isoformat(), "timeZone": "UTC"},
        "extendedProperties": {"private": {"appointment_id": appointment.id}},
    }


async def sync_appointment_event(
    session_factory: async_sessionmaker[AsyncSession],
    org_id: str,
    appointment_id: str,
    calendar_id: Optional[str],
    service_factory: Callable[[], Any] = get_calendar_service,
) -> Optional[str]:
    """
    Create, move or delete the calendar event mirroring an appointment and
    record external_event_id. Runs after commit; returns the event id.
    """
    if not calendar_id:
        return None
    service = service_factory()
    if service is None:
        logger.debug("Google Calendar service not available, skipping event sync")
        return None

    try:
        async with session_factory() as db:
            appt = await get_appointment(db, org_id=org_id, appointment_id=appointment_id)
            if appt is None:
                return None
            await db.refresh(appt, attribute_names=["customer"])
            customer = appt.customer

            if not appt.is_active:
                if appt.external_event_id:
                    await asyncio.to_thread(
                        service.events().delete(calendarId=calendar_id, eventId=appt.external_event_id).execute
                    )
                    logger.info("Calendar event deleted: %s", appt.external_event_id)
                return appt.external_event_id

            body = _event_body(appt, customer.name, customer.phone)
            if appt.external_event_id:
                event = await asyncio.to_thread(
                    service.events().update(calendarId=calendar_id, eventId=appt.external_event_id, body=body).execute
                )
            else:
                event = await asyncio.to_thread(
                    service.events().insert(calendarId=calendar_id, body=body).execute
                )

            appt.external_event_id = event.get("id")
            appt.external_calendar_id = calendar_id
            await db.commit()
            logger.info("Calendar event synced: %s for appointment %s", appt.external_event_id, appointment_id)
            return appt.external_event_id

    except HttpError as e:
        if getattr(e, "resp", None) is not None and e.resp.status == 404:
            logger.warning("Calendar event not found for appointment %s", appointment_id)
        else:
            logger.error("Google Calendar API error syncing appointment %s: %s", appointment_id, e)
        return None
    except Exception as e:
        logger.error("Failed to sync calendar event for appointment %s: %s", appointment_id, e)
        return None
