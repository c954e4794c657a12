# booking_engine/services/availability.py
"""
Availability read path.

    org lookup -> (constraints || appointments || busy || holds || history)
               -> generate -> ConflictGuard.filter -> rank -> response

Independent reads run concurrently, each on its own short session, and are
joined before anything is filtered.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import settings
from booking_engine.core.errors import NotFound, ValidationError
from booking_engine.core.timeutils import Interval, parse_timestamp, resolve_timezone, utcnow
from booking_engine.crud.appointment import list_active_appointments
from booking_engine.crud.organization import (
    get_organization,
    get_service,
    is_staff_assigned,
    list_service_staff_ids,
)
from booking_engine.schemas.availability import (
    AvailabilityMeta,
    AvailabilityResponse,
    ExplainResponse,
    ReasonOut,
    SlotOut,
)
from booking_engine.services.conflicts import ConflictGuard
from booking_engine.services.constraints import BookingRules, Constraints, load_constraints
from booking_engine.services.google_calendar import GoogleCalendarOracle
from booking_engine.services.holds import HoldStore, is_slot_held
from booking_engine.services.ranking import RankingAggregates, load_ranking_aggregates, rank_slots
from booking_engine.services.slots import Candidate, generate_for_staff

logger = structlog.get_logger(__name__)


async def load_guard(
    session_factory: async_sessionmaker[AsyncSession],
    oracle: GoogleCalendarOracle,
    org_id: str,
    interval: Interval,
    staff_id: Optional[str],
    now: datetime,
    *,
    clearance_min: int,
    calendar_id: Optional[str],
    exclude_appointment_id: Optional[str] = None,
) -> tuple[ConflictGuard, bool]:
    """
    Fetch constraints, nearby appointments and calendar busy blocks in
    parallel and build a guard over them. Returns (guard, oracle_degraded).
    """
    margin = timedelta(minutes=clearance_min)

    async def _constraints():
        async with session_factory() as db:
            return await load_constraints(db, org_id, staff_id=staff_id, window=interval)

    async def _appointments():
        async with session_factory() as db:
            return await list_active_appointments(
                db,
                org_id=org_id,
                start=interval.start - margin,
                end=interval.end + margin,
                staff_id=staff_id,
            )

    constraints, appointments, (busy, degraded) = await asyncio.gather(
        _constraints(),
        _appointments(),
        oracle.lookup(calendar_id, interval.start, interval.end),
    )
    guard = ConflictGuard(constraints, appointments, busy, now,
                          exclude_appointment_id=exclude_appointment_id)
    return guard, degraded


def resolve_window(raw_from, raw_to, tz) -> Interval:
    start = parse_timestamp(raw_from, tz)
    end = parse_timestamp(raw_to, tz, end_of_day=True)
    if end <= start:
        raise ValidationError("'to' must be after 'from'")
    if end - start > timedelta(days=settings.MAX_RANGE_DAYS):
        raise ValidationError(f"Window too large (max {settings.MAX_RANGE_DAYS} days)")
    return Interval(start, end)


def _empty_reason(checked: int, rejections) -> str:
    if checked == 0:
        return "no_candidates"
    return rejections.most_common(1)[0][0]


class AvailabilityService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        oracle: Optional[GoogleCalendarOracle] = None,
        hold_store: Optional[HoldStore] = None,
    ):
        self.session_factory = session_factory
        self.oracle = oracle or GoogleCalendarOracle()
        self.hold_store = hold_store or HoldStore()

    async def _resolve_resources(
        self,
        db: AsyncSession,
        org_id: str,
        staff_id: Optional[str],
        service_id: Optional[str],
        duration_min: Optional[int],
        rules: BookingRules,
    ) -> tuple[int, Optional[List[str]]]:
        """Slot length and, when a service restricts staff, the allowed staff ids."""
        allowed = None
        service = None
        if service_id:
            service = await get_service(db, org_id, service_id)
            if service is None:
                raise NotFound("Service not found", details={"entity": "service"})
            assigned = await list_service_staff_ids(db, service_id)
            if assigned:
                allowed = assigned
            if staff_id and allowed is not None and not await is_staff_assigned(db, staff_id, service_id):
                raise ValidationError("Staff member does not provide this service")

        if duration_min is not None:
            length = duration_min
        elif service is not None:
            length = service.duration_min
        else:
            length = rules.slot_interval_min
        if length <= 0:
            raise ValidationError("duration_min must be positive")
        return length, allowed

    async def compute(
        self,
        org_id: str,
        raw_from,
        raw_to,
        *,
        service_id: Optional[str] = None,
        staff_id: Optional[str] = None,
        duration_min: Optional[int] = None,
        rank: bool = False,
        now: Optional[datetime] = None,
    ) -> AvailabilityResponse:
        started = time.monotonic()
        now = now or utcnow()

        async with self.session_factory() as db:
            org = await get_organization(db, org_id)
            if org is None:
                raise NotFound("Organization not found", details={"entity": "organization"})
            tz = resolve_timezone(org.timezone)
            window = resolve_window(raw_from, raw_to, tz)
            rules = BookingRules.from_org(org)
            length, allowed_staff = await self._resolve_resources(
                db, org_id, staff_id, service_id, duration_min, rules
            )
            calendar_id = (org.google_calendar_id or "").strip() or None

        async def _aggregates() -> Optional[RankingAggregates]:
            if not rank:
                return None
            async with self.session_factory() as db:
                return await load_ranking_aggregates(db, org_id, tz, now)

        (guard, degraded), holds, aggregates = await asyncio.gather(
            load_guard(
                self.session_factory, self.oracle, org_id, window, staff_id, now,
                clearance_min=rules.clearance_min, calendar_id=calendar_id,
            ),
            self.hold_store.list_holds(org_id),
            _aggregates(),
        )
        constraints: Constraints = guard.constraints

        if staff_id:
            resources: List[Optional[str]] = [staff_id]
        elif constraints.staff_ids:
            resources = [s for s in constraints.staff_ids if allowed_staff is None or s in allowed_staff]
        else:
            resources = [None]

        if resources:
            candidates: Iterable[Candidate] = generate_for_staff(
                window, length, rules.slot_interval_min, tz, resources
            )
        else:
            # A service whose assigned staff all lack schedules
            candidates = ()
        result = guard.filter(candidates)

        if rank and aggregates is not None:
            slots = [
                SlotOut(start=r.start, end=r.end, staff_id=r.staff_id, score=r.score,
                        explanation=r.explanation, held=is_slot_held(holds, r.start, r.end, r.staff_id))
                for r in rank_slots(result.slots, aggregates, now, tz)
            ]
        else:
            slots = [
                SlotOut(start=c.start, end=c.end, staff_id=c.staff_id,
                        held=is_slot_held(holds, c.start, c.end, c.staff_id))
                for c in result.slots
            ]

        meta = AvailabilityMeta(
            duration_min=length,
            slot_interval_min=rules.slot_interval_min,
            lead_time_min=rules.lead_time_min,
            buffer_before_min=rules.buffer_before_min,
            buffer_after_min=rules.buffer_after_min,
            allow_overlaps=rules.allow_overlaps,
            total_slots=len(slots),
            candidates_checked=result.checked,
            rejections=dict(result.rejections),
            oracle_degraded=degraded,
            empty_reason=None if slots else _empty_reason(result.checked, result.rejections),
        )

        logger.info(
            "availability_computed",
            org_id=org_id,
            staff_id=staff_id,
            service_id=service_id,
            total_slots=meta.total_slots,
            candidates_checked=meta.candidates_checked,
            oracle_degraded=degraded,
            duration=round(time.monotonic() - started, 3),
        )
        return AvailabilityResponse(
            org_id=org_id,
            timezone=constraints.timezone_name,
            window={"from": window.start, "to": window.end},
            slots=slots,
            meta=meta,
        )

    async def explain(
        self,
        org_id: str,
        raw_start,
        raw_end,
        *,
        staff_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ExplainResponse:
        """Every reason a specific interval cannot be booked (empty when it can)."""
        now = now or utcnow()
        async with self.session_factory() as db:
            org = await get_organization(db, org_id)
            if org is None:
                raise NotFound("Organization not found", details={"entity": "organization"})
            tz = resolve_timezone(org.timezone)
            rules = BookingRules.from_org(org)
            calendar_id = (org.google_calendar_id or "").strip() or None

        start = parse_timestamp(raw_start, tz)
        end = parse_timestamp(raw_end, tz)
        if end <= start:
            raise ValidationError("'end' must be after 'start'")

        interval = Interval(start, end)
        guard, _ = await load_guard(
            self.session_factory, self.oracle, org_id, interval, staff_id, now,
            clearance_min=rules.clearance_min, calendar_id=calendar_id,
        )
        reasons = guard.explain(Candidate(start, end, staff_id))
        return ExplainResponse(
            available=not reasons,
            reasons=[ReasonOut(code=r.code, detail=r.detail) for r in reasons],
        )

    async def rank(self, org_id: str, slots: Sequence[Candidate],
                   now: Optional[datetime] = None) -> List[SlotOut]:
        """Score caller-supplied slots with the same heuristic as availability."""
        now = now or utcnow()
        async with self.session_factory() as db:
            org = await get_organization(db, org_id)
            if org is None:
                raise NotFound("Organization not found", details={"entity": "organization"})
            tz = resolve_timezone(org.timezone)
            aggregates = await load_ranking_aggregates(db, org_id, tz, now)

        return [
            SlotOut(start=r.start, end=r.end, staff_id=r.staff_id, score=r.score, explanation=r.explanation)
            for r in rank_slots(slots, aggregates, now, tz)
        ]
