"""
Availability read path against a real (SQLite) store.
"""

import time
from datetime import date

import pytest

from booking_engine.core.errors import NotFound, ValidationError
from booking_engine.core.timeutils import Interval
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.constraints import load_constraints
from booking_engine.services.google_calendar import GoogleCalendarOracle
from booking_engine.services.slots import Candidate
from tests.factories import (
    MONDAY,
    NOW,
    ORG_ID,
    SERVICE_ID,
    STAFF_ID,
    add_appointment,
    add_holiday,
    add_staff,
    akl,
    local_iso,
    seed_org,
)
from tests.mocks.external_services import OracleMock, calendar_service

pytestmark = pytest.mark.integration


@pytest.fixture
def service(session_factory, oracle, hold_store):
    return AvailabilityService(session_factory, oracle=oracle, hold_store=hold_store)


class TestBasicAvailability:
    """Slots from opening hours, schedules and services"""

    async def test_one_hour_window_gives_two_slots(self, service, org):
        result = await service.compute(
            ORG_ID, local_iso("09:00"), local_iso("10:00"), service_id=SERVICE_ID, now=NOW
        )

        assert result.timezone == "Pacific/Auckland"
        assert [(s.start, s.end) for s in result.slots] == [
            (akl("09:00"), akl("09:30")),
            (akl("09:30"), akl("10:00")),
        ]
        assert all(s.staff_id == STAFF_ID for s in result.slots)
        assert result.meta.total_slots == 2
        assert result.meta.oracle_degraded is False
        assert result.meta.empty_reason is None

    async def test_whole_day_from_date_only_bounds(self, service, org):
        result = await service.compute(ORG_ID, MONDAY.isoformat(), MONDAY.isoformat(), now=NOW)

        # 09:00-17:00 on a 30 minute grid
        assert result.meta.total_slots == 16
        assert result.slots[0].start == akl("09:00")
        assert result.slots[-1].end == akl("17:00")

    async def test_duration_override_beats_service_length(self, service, org):
        result = await service.compute(
            ORG_ID, local_iso("09:00"), local_iso("10:00"),
            service_id=SERVICE_ID, duration_min=60, now=NOW,
        )
        assert [(s.start, s.end) for s in result.slots] == [(akl("09:00"), akl("10:00"))]
        assert result.meta.duration_min == 60

    async def test_slots_are_fanned_out_per_staff(self, service, org, session_factory):
        await add_staff(session_factory, "staff-blair", start="13:00", end="17:00")
        result = await service.compute(ORG_ID, local_iso("12:30"), local_iso("14:00"), now=NOW)

        assert [(s.start, s.staff_id) for s in result.slots] == [
            (akl("12:30"), STAFF_ID),
            (akl("13:00"), STAFF_ID),
            (akl("13:00"), "staff-blair"),
            (akl("13:30"), STAFF_ID),
            (akl("13:30"), "staff-blair"),
        ]

    async def test_service_restricts_staff(self, service, org, session_factory):
        await add_staff(session_factory, "staff-blair")
        result = await service.compute(
            ORG_ID, local_iso("09:00"), local_iso("10:00"), service_id=SERVICE_ID, now=NOW
        )
        assert {s.staff_id for s in result.slots} == {STAFF_ID}

    async def test_staff_not_offering_service_is_rejected(self, service, org, session_factory):
        await add_staff(session_factory, "staff-blair")
        with pytest.raises(ValidationError):
            await service.compute(
                ORG_ID, local_iso("09:00"), local_iso("10:00"),
                service_id=SERVICE_ID, staff_id="staff-blair", now=NOW,
            )

    async def test_org_without_staff_offers_unassigned_slots(self, service, session_factory):
        await seed_org(session_factory, org_id="org-solo", staff_id=None, service_id="svc-solo")
        result = await service.compute("org-solo", local_iso("09:00"), local_iso("10:00"), now=NOW)

        assert len(result.slots) == 2
        assert all(s.staff_id is None for s in result.slots)


class TestBlockedTime:
    """Holidays, appointments and buffers"""

    async def test_holiday_yields_no_slots(self, service, org, session_factory):
        await add_holiday(session_factory, MONDAY)
        result = await service.compute(ORG_ID, MONDAY.isoformat(), MONDAY.isoformat(), now=NOW)

        assert result.slots == []
        assert result.meta.empty_reason == "holiday"

    async def test_existing_appointment_removes_slot(self, service, org, session_factory):
        await add_appointment(session_factory, akl("09:00"), akl("09:30"))
        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)

        assert [s.start for s in result.slots] == [akl("09:30")]
        assert result.meta.rejections == {"staff_busy": 1}

    async def test_unassigned_appointment_blocks_staff_slots(self, service, org, session_factory):
        await add_appointment(session_factory, akl("09:00"), akl("09:30"), staff_id=None)
        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), staff_id=STAFF_ID, now=NOW)

        assert [s.start for s in result.slots] == [akl("09:30")]
        assert result.meta.rejections == {"staff_busy": 1}

    async def test_cancelled_appointment_frees_slot(self, service, org, session_factory):
        await add_appointment(session_factory, akl("09:00"), akl("09:30"), status="CANCELLED")
        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)
        assert len(result.slots) == 2

    async def test_buffer_after_blocks_adjacent_slot(self, service, session_factory):
        await seed_org(session_factory, slot_interval_min=15, buffer_after_min=15)
        await add_appointment(session_factory, akl("10:00"), akl("10:30"))

        result = await service.compute(
            ORG_ID, local_iso("10:30"), local_iso("11:15"), duration_min=30, now=NOW
        )
        assert [(s.start, s.end) for s in result.slots] == [(akl("10:45"), akl("11:15"))]

    async def test_lead_time_hides_near_slots(self, service, session_factory):
        await seed_org(session_factory, lead_time_min=60)
        result = await service.compute(
            ORG_ID, local_iso("09:00"), local_iso("11:00"), now=akl("09:00")
        )
        assert result.slots[0].start == akl("10:00")
        assert result.meta.rejections["lead_time"] == 2

    async def test_outside_hours_window_reports_reason(self, service, org):
        result = await service.compute(ORG_ID, local_iso("18:00"), local_iso("20:00"), now=NOW)
        assert result.slots == []
        assert result.meta.empty_reason == "outside_hours"


class TestBusyTimeOracle:
    """External calendar busy blocks and degradation"""

    async def test_busy_block_removes_slot(self, session_factory, hold_store):
        await seed_org(session_factory, calendar_id="clinic@example.com")
        oracle = OracleMock(busy=[Interval(akl("09:00"), akl("09:30"))])
        service = AvailabilityService(session_factory, oracle=oracle, hold_store=hold_store)

        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)

        assert [s.start for s in result.slots] == [akl("09:30")]
        assert result.meta.rejections == {"external_busy": 1}
        assert oracle.calls[0][0] == "clinic@example.com"

    async def test_oracle_error_degrades_to_internal_constraints(self, session_factory, hold_store):
        await seed_org(session_factory, calendar_id="clinic@example.com")
        oracle = GoogleCalendarOracle(
            service_factory=lambda: calendar_service(freebusy_error=RuntimeError("backend error")),
        )
        service = AvailabilityService(session_factory, oracle=oracle, hold_store=hold_store)

        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)

        assert len(result.slots) == 2
        assert result.meta.oracle_degraded is True

    async def test_oracle_timeout_degrades_to_internal_constraints(self, session_factory, hold_store):
        await seed_org(session_factory, calendar_id="clinic@example.com")
        slow = calendar_service()
        slow.freebusy.return_value.query.return_value.execute.side_effect = lambda: time.sleep(0.5)
        oracle = GoogleCalendarOracle(service_factory=lambda: slow, timeout_seconds=0.05)
        service = AvailabilityService(session_factory, oracle=oracle, hold_store=hold_store)

        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)

        assert len(result.slots) == 2
        assert result.meta.oracle_degraded is True

    async def test_org_without_calendar_passes_no_calendar_id(self, service, org, oracle):
        await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)
        assert oracle.calls[0][0] is None


class TestHoldsAndRanking:
    """Informational holds and optional ranking"""

    async def test_held_slot_is_flagged_not_removed(self, service, org, hold_store):
        await hold_store.create_hold(ORG_ID, akl("09:00"), akl("09:30"), staff_id=STAFF_ID)
        result = await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), now=NOW)

        assert [s.held for s in result.slots] == [True, False]

    async def test_rank_adds_scores_and_keeps_every_slot(self, service, org):
        result = await service.compute(
            ORG_ID, MONDAY.isoformat(), MONDAY.isoformat(), rank=True, now=NOW
        )

        assert result.meta.total_slots == 16
        assert all(s.score is not None and s.explanation for s in result.slots)
        scores = [s.score for s in result.slots]
        assert scores == sorted(scores, reverse=True)


class TestValidation:
    """Bad inputs"""

    async def test_unknown_org(self, service):
        with pytest.raises(NotFound):
            await service.compute("missing", local_iso("09:00"), local_iso("10:00"), now=NOW)

    async def test_unknown_service(self, service, org):
        with pytest.raises(NotFound):
            await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), service_id="nope", now=NOW)

    async def test_inactive_staff(self, service, org, session_factory):
        await add_staff(session_factory, "staff-gone", active=False)
        with pytest.raises(NotFound):
            await service.compute(ORG_ID, local_iso("09:00"), local_iso("10:00"), staff_id="staff-gone", now=NOW)

    async def test_reversed_window(self, service, org):
        with pytest.raises(ValidationError):
            await service.compute(ORG_ID, local_iso("10:00"), local_iso("09:00"), now=NOW)

    async def test_window_too_large(self, service, org):
        with pytest.raises(ValidationError):
            await service.compute(ORG_ID, "2026-03-02", "2026-12-31", now=NOW)


class TestExplainAndRank:
    """Explain a single interval; rank caller-supplied slots"""

    async def test_explain_lists_reasons(self, service, org, session_factory):
        await add_appointment(session_factory, akl("16:30"), akl("17:00"))
        result = await service.explain(ORG_ID, local_iso("16:45"), local_iso("17:15"), staff_id=STAFF_ID, now=NOW)

        assert result.available is False
        assert [r.code for r in result.reasons] == ["outside_hours", "staff_busy"]

    async def test_explain_bookable_interval(self, service, org):
        result = await service.explain(ORG_ID, local_iso("10:00"), local_iso("10:30"), now=NOW)
        assert result.available is True
        assert result.reasons == []

    async def test_rank_scores_given_slots(self, service, org):
        slots = [Candidate(akl("15:00"), akl("15:30")), Candidate(akl("09:00"), akl("09:30"))]
        ranked = await service.rank(ORG_ID, slots, now=akl("08:30"))

        assert [s.start for s in ranked] == [akl("09:00"), akl("15:00")]


class TestConstraintStore:
    """Loading constraints directly"""

    async def test_loads_hours_schedules_and_rules(self, session_factory):
        await seed_org(session_factory, buffer_before_min=5, buffer_after_min=10)
        await add_holiday(session_factory, date(2026, 3, 3))
        async with session_factory() as db:
            constraints = await load_constraints(db, ORG_ID, window=Interval(akl("00:00"), akl("23:59")))

        assert constraints.timezone_name == "Pacific/Auckland"
        assert constraints.hours_for(1).open_min == 540
        assert constraints.hours_for(0) is None
        assert constraints.staff_ids == [STAFF_ID]
        assert constraints.schedule_for(STAFF_ID, 1)[0].close_min == 1020
        assert constraints.rules.clearance_min == 10
        # padded a day either side of the window
        assert constraints.is_holiday(date(2026, 3, 3))

    async def test_unknown_org(self, session_factory):
        async with session_factory() as db:
            with pytest.raises(NotFound):
                await load_constraints(db, "missing")
