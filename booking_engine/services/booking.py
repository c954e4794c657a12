# booking_engine/services/booking.py
"""
BookingTransactionManager: the only writer of appointments.

book():
    1) validate the request (org, service, staff, time)
    2) replay an earlier booking carrying the same idempotency key
    3) re-check the slot with ConflictGuard against live state
    4) one transaction: lock the staff member, re-count overlaps,
       upsert the customer, insert the appointment
    5) after commit, sync the external calendar in the background

Transient store failures are retried with exponential backoff; unique
violations become Conflict (or a replay for the idempotency key).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Set, TypeVar

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import settings
from booking_engine.core.errors import Conflict, NotFound, TransientStoreError, ValidationError, log_error
from booking_engine.core.timeutils import Interval, parse_timestamp, resolve_timezone, utcnow
from booking_engine.crud.appointment import (
    count_overlapping,
    get_appointment,
    get_by_idempotency_key,
    insert_appointment,
)
from booking_engine.crud.customer import upsert_customer
from booking_engine.crud.organization import (
    get_active_staff,
    get_organization,
    get_service,
    is_staff_assigned,
    list_service_staff_ids,
)
from booking_engine.db.base import Appointment, AppointmentStatus, Organization
from booking_engine.schemas.booking import BookingCreate
from booking_engine.services.availability import load_guard
from booking_engine.services.constraints import BookingRules
from booking_engine.services.google_calendar import GoogleCalendarOracle, sync_appointment_event
from booking_engine.services.slots import Candidate

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Strong refs to in-flight calendar syncs; the loop only keeps weak ones
_background_tasks: Set[asyncio.Task] = set()

TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "serialization failure",
    "database is locked",
    "database table is locked",
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "connection was closed",
    "server closed the connection",
)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, (PoolTimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


@dataclass
class BookingOutcome:
    appointment: Appointment
    created: bool


@dataclass
class _Resolved:
    org: Organization
    rules: BookingRules
    start: datetime
    end: datetime
    staff_id: Optional[str]
    service_id: Optional[str]
    calendar_id: Optional[str]


class BookingTransactionManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle: Optional[GoogleCalendarOracle] = None,
        *,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        idempotency_window_hours: Optional[int] = None,
        calendar_sync: Optional[Callable[..., Awaitable]] = sync_appointment_event,
    ):
        self.session_factory = session_factory
        self.oracle = oracle or GoogleCalendarOracle()
        self.max_retries = settings.BOOKING_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_delay = settings.BOOKING_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self.idempotency_window = timedelta(
            hours=settings.IDEMPOTENCY_WINDOW_HOURS if idempotency_window_hours is None else idempotency_window_hours
        )
        self.calendar_sync = calendar_sync

    # ---- helpers ----

    async def _with_retries(self, operation: str, fn: Callable[[], Awaitable[T]], **context) -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return await fn()
            except (DBAPIError, PoolTimeoutError, asyncio.TimeoutError, ConnectionError) as e:
                if not is_transient(e):
                    raise
                if attempt == self.max_retries:
                    log_error(e, {"operation": operation, "attempts": attempt + 1, **context})
                    raise TransientStoreError(
                        f"{operation} failed after {attempt + 1} attempts",
                        details={"operation": operation},
                    )
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "store_retry",
                    operation=operation,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(e),
                    **context,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    async def _lock_staff(self, db: AsyncSession, org_id: str, staff_id: Optional[str]) -> None:
        """
        Serialize writers until the transaction ends. Must be the first
        statement of the transaction.

        On Postgres an unassigned booking takes the org lock exclusively,
        since it conflicts with every staff member; a staff booking holds
        the org lock shared plus its own (org, staff) lock. SQLite has no row
        or advisory locks, and pysqlite defers BEGIN until the first write,
        so the database write lock is taken up front with BEGIN IMMEDIATE.
        """
        dialect = db.get_bind().dialect.name
        if dialect == "sqlite":
            conn = await db.connection()
            await conn.exec_driver_sql("BEGIN IMMEDIATE")
            return
        if dialect != "postgresql":
            return
        if staff_id is None:
            await db.execute(sa.text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": org_id})
            return
        await db.execute(sa.text("SELECT pg_advisory_xact_lock_shared(hashtext(:key))"), {"key": org_id})
        await db.execute(
            sa.text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"{org_id}:{staff_id}"},
        )

    def _spawn_sync(self, org_id: str, appointment_id: str, calendar_id: Optional[str]) -> None:
        if not calendar_id or self.calendar_sync is None:
            return
        task = asyncio.create_task(
            self.calendar_sync(self.session_factory, org_id, appointment_id, calendar_id)
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    @staticmethod
    async def wait_for_background() -> None:
        if _background_tasks:
            await asyncio.gather(*list(_background_tasks), return_exceptions=True)

    async def _check_staff(self, db: AsyncSession, org_id: str, staff_id: str,
                           service_id: Optional[str]) -> None:
        if await get_active_staff(db, org_id, staff_id) is None:
            raise NotFound("Staff not found or inactive", details={"entity": "staff"})
        if service_id and await list_service_staff_ids(db, service_id):
            if not await is_staff_assigned(db, staff_id, service_id):
                raise ValidationError("Staff member does not provide this service")

    async def _resolve(self, db: AsyncSession, org_id: str, request: BookingCreate) -> _Resolved:
        org = await get_organization(db, org_id)
        if org is None:
            raise NotFound("Organization not found", details={"entity": "organization"})
        tz = resolve_timezone(org.timezone)
        start = parse_timestamp(request.start, tz)

        service = None
        if request.service_id:
            service = await get_service(db, org_id, request.service_id)
            if service is None:
                raise NotFound("Service not found", details={"entity": "service"})

        duration = request.duration_min or (service.duration_min if service else None)
        if not duration or duration <= 0:
            raise ValidationError("duration_min or service_id is required")

        if request.staff_id:
            await self._check_staff(db, org_id, request.staff_id, request.service_id)

        return _Resolved(
            org=org,
            rules=BookingRules.from_org(org),
            start=start,
            end=start + timedelta(minutes=duration),
            staff_id=request.staff_id,
            service_id=request.service_id,
            calendar_id=(org.google_calendar_id or "").strip() or None,
        )

    async def _revalidate(self, org_id: str, r: _Resolved, now: datetime,
                          exclude_appointment_id: Optional[str] = None) -> None:
        guard, _ = await load_guard(
            self.session_factory, self.oracle, org_id, Interval(r.start, r.end), r.staff_id, now,
            clearance_min=r.rules.clearance_min,
            calendar_id=r.calendar_id,
            exclude_appointment_id=exclude_appointment_id,
        )
        reason = guard.check(Candidate(r.start, r.end, r.staff_id))
        if reason is not None:
            logger.info("booking_conflict", org_id=org_id, staff_id=r.staff_id,
                        starts_at=r.start.isoformat(), reason=reason, stage="revalidate")
            raise Conflict(reason=reason)

    async def _count_in_tx(self, db: AsyncSession, org_id: str, r: _Resolved,
                           exclude_id: Optional[str] = None) -> None:
        if r.rules.allow_overlaps:
            return
        padded = Interval(r.start, r.end).expand(r.rules.clearance_min, r.rules.clearance_min)
        overlapping = await count_overlapping(
            db, org_id=org_id, start=padded.start, end=padded.end,
            staff_id=r.staff_id, exclude_id=exclude_id,
        )
        if overlapping:
            logger.info("booking_conflict", org_id=org_id, staff_id=r.staff_id,
                        starts_at=r.start.isoformat(), reason="staff_busy", stage="transaction")
            raise Conflict(reason="staff_busy")

    async def _find_by_key(self, org_id: str, key: str, since: Optional[datetime]) -> Optional[Appointment]:
        async with self.session_factory() as db:
            return await get_by_idempotency_key(db, org_id=org_id, key=key, since=since)

    async def _replay(self, org_id: str, key: Optional[str]) -> Optional[BookingOutcome]:
        """A concurrent retry may lose the race to its own first attempt."""
        if not key:
            return None
        existing = await self._find_by_key(org_id, key, None)
        if existing is None:
            return None
        logger.info("booking_replayed", org_id=org_id, appointment_id=existing.id)
        return BookingOutcome(existing, created=False)

    # ---- create ----

    async def book(self, org_id: str, request: BookingCreate, *, source: str = "web",
                   now: Optional[datetime] = None) -> BookingOutcome:
        now = now or utcnow()

        async def _load():
            async with self.session_factory() as db:
                return await self._resolve(db, org_id, request)

        resolved = await self._with_retries("booking_validate", _load, org_id=org_id)

        key = request.idempotency_key
        if key:
            existing = await self._with_retries(
                "idempotency_lookup",
                lambda: self._find_by_key(org_id, key, utcnow() - self.idempotency_window),
                org_id=org_id,
            )
            if existing is not None:
                logger.info("booking_replayed", org_id=org_id, appointment_id=existing.id)
                return BookingOutcome(existing, created=False)

        try:
            await self._revalidate(org_id, resolved, now)
        except Conflict:
            replay = await self._replay(org_id, key)
            if replay is not None:
                return replay
            raise

        async def _write() -> BookingOutcome:
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        await self._lock_staff(db, org_id, resolved.staff_id)
                        await self._count_in_tx(db, org_id, resolved)
                        customer_id = await upsert_customer(
                            db,
                            org_id=org_id,
                            name=request.customer.name,
                            phone=request.customer.phone,
                            email=request.customer.email,
                        )
                        appt = await insert_appointment(
                            db,
                            org_id=org_id,
                            staff_id=resolved.staff_id,
                            service_id=resolved.service_id,
                            customer_id=customer_id,
                            starts_at=resolved.start,
                            ends_at=resolved.end,
                            status=AppointmentStatus.SCHEDULED.value,
                            source=source,
                            notes=request.notes,
                            idempotency_key=key,
                            is_exclusive=not resolved.rules.allow_overlaps,
                        )
                return BookingOutcome(appt, created=True)
            except IntegrityError:
                replay = await self._replay(org_id, key)
                if replay is not None:
                    return replay
                logger.info("booking_conflict", org_id=org_id, staff_id=resolved.staff_id,
                            starts_at=resolved.start.isoformat(), reason="staff_busy", stage="insert")
                raise Conflict(reason="staff_busy")
            except Conflict:
                replay = await self._replay(org_id, key)
                if replay is not None:
                    return replay
                raise

        outcome = await self._with_retries("booking_insert", _write, org_id=org_id)
        if outcome.created:
            logger.info(
                "booking_created",
                org_id=org_id,
                appointment_id=outcome.appointment.id,
                staff_id=resolved.staff_id,
                starts_at=resolved.start.isoformat(),
                source=source,
            )
            self._spawn_sync(org_id, outcome.appointment.id, resolved.calendar_id)
        return outcome

    # ---- lifecycle ----

    async def reschedule(self, org_id: str, appointment_id: str, new_start: str, *,
                         staff_id: Optional[str] = None, actor: Optional[str] = None,
                         now: Optional[datetime] = None) -> Appointment:
        """Move an appointment, keeping its length; the overlap rule excludes the appointment itself."""
        now = now or utcnow()

        async def _load() -> _Resolved:
            async with self.session_factory() as db:
                org = await get_organization(db, org_id)
                if org is None:
                    raise NotFound("Organization not found", details={"entity": "organization"})
                appt = await get_appointment(db, org_id=org_id, appointment_id=appointment_id)
                if appt is None:
                    raise NotFound("Appointment not found", details={"entity": "appointment"})
                if not appt.is_active:
                    raise ValidationError("Cancelled appointments cannot be rescheduled")
                target_staff = staff_id or appt.staff_id
                if staff_id and staff_id != appt.staff_id:
                    await self._check_staff(db, org_id, staff_id, appt.service_id)
                start = parse_timestamp(new_start, resolve_timezone(org.timezone))
                return _Resolved(
                    org=org,
                    rules=BookingRules.from_org(org),
                    start=start,
                    end=start + timedelta(minutes=appt.duration_min),
                    staff_id=target_staff,
                    service_id=appt.service_id,
                    calendar_id=(org.google_calendar_id or "").strip() or None,
                )

        resolved = await self._with_retries("reschedule_validate", _load, org_id=org_id)
        await self._revalidate(org_id, resolved, now, exclude_appointment_id=appointment_id)

        async def _write() -> Appointment:
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        await self._lock_staff(db, org_id, resolved.staff_id)
                        appt = await get_appointment(db, org_id=org_id, appointment_id=appointment_id,
                                                     for_update=True)
                        if appt is None:
                            raise NotFound("Appointment not found", details={"entity": "appointment"})
                        if not appt.is_active:
                            raise ValidationError("Cancelled appointments cannot be rescheduled")
                        await self._count_in_tx(db, org_id, resolved, exclude_id=appointment_id)
                        appt.starts_at = resolved.start
                        appt.ends_at = resolved.end
                        appt.staff_id = resolved.staff_id
                        appt.is_exclusive = not resolved.rules.allow_overlaps
                        await db.flush()
                return appt
            except IntegrityError:
                raise Conflict(reason="staff_busy")

        appt = await self._with_retries("reschedule_update", _write, org_id=org_id)
        logger.info("booking_rescheduled", org_id=org_id, appointment_id=appointment_id,
                    staff_id=resolved.staff_id, starts_at=resolved.start.isoformat(), actor=actor)
        self._spawn_sync(org_id, appointment_id, resolved.calendar_id)
        return appt

    async def cancel(self, org_id: str, appointment_id: str, *, reason: Optional[str] = None,
                     actor: Optional[str] = None) -> Appointment:
        """Mark CANCELLED. Cancelling twice returns the appointment unchanged."""

        async def _write() -> tuple[Appointment, bool, Optional[str]]:
            async with self.session_factory() as db:
                async with db.begin():
                    org = await get_organization(db, org_id)
                    if org is None:
                        raise NotFound("Organization not found", details={"entity": "organization"})
                    appt = await get_appointment(db, org_id=org_id, appointment_id=appointment_id,
                                                 for_update=True)
                    if appt is None:
                        raise NotFound("Appointment not found", details={"entity": "appointment"})
                    if not appt.is_active:
                        return appt, False, None
                    appt.status = AppointmentStatus.CANCELLED.value
                    appt.cancelled_at = utcnow()
                    appt.cancelled_by = (actor or "system")[:120]
                    if reason:
                        appt.notes = f"{appt.notes}\nCancelled: {reason}" if appt.notes else f"Cancelled: {reason}"
                    await db.flush()
                return appt, True, (org.google_calendar_id or "").strip() or None

        appt, changed, calendar_id = await self._with_retries("cancel", _write, org_id=org_id)
        if changed:
            logger.info("booking_cancelled", org_id=org_id, appointment_id=appointment_id, actor=actor)
            self._spawn_sync(org_id, appointment_id, calendar_id)
        return appt

    async def set_status(self, org_id: str, appointment_id: str, status: str, *,
                         actor: Optional[str] = None) -> Appointment:
        try:
            target = AppointmentStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status!r}")
        if target is AppointmentStatus.CANCELLED:
            return await self.cancel(org_id, appointment_id, actor=actor)

        async def _write() -> Appointment:
            async with self.session_factory() as db:
                async with db.begin():
                    appt = await get_appointment(db, org_id=org_id, appointment_id=appointment_id,
                                                 for_update=True)
                    if appt is None:
                        raise NotFound("Appointment not found", details={"entity": "appointment"})
                    if not appt.is_active:
                        raise ValidationError("Cancelled appointments cannot be re-opened")
                    appt.status = target.value
                    await db.flush()
                return appt

        appt = await self._with_retries("set_status", _write, org_id=org_id)
        logger.info("booking_status_changed", org_id=org_id, appointment_id=appointment_id,
                    status=target.value, actor=actor)
        return appt
