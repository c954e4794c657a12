"""
Tests for candidate slot generation.
"""

from datetime import date, datetime, timedelta

import pytest

from booking_engine.core.errors import ValidationError
from booking_engine.core.timeutils import Interval
from booking_engine.services.slots import Candidate, generate, generate_for_staff
from tests.factories import AKL, akl


@pytest.mark.unit
class TestGenerate:
    """Grid walking inside a query window"""

    def test_one_hour_window_gives_two_half_hour_slots(self):
        window = Interval(akl("09:00"), akl("10:00"))
        slots = list(generate(window, 30, 30, AKL))

        assert [(s.start, s.end) for s in slots] == [
            (akl("09:00"), akl("09:30")),
            (akl("09:30"), akl("10:00")),
        ]

    def test_starts_align_to_local_midnight_grid(self):
        window = Interval(akl("09:10"), akl("10:00"))
        starts = [s.start for s in generate(window, 15, 15, AKL)]

        assert starts == [akl("09:15"), akl("09:30"), akl("09:45")]

    def test_slot_may_end_exactly_at_window_end(self):
        window = Interval(akl("09:00"), akl("09:45"))
        slots = list(generate(window, 45, 15, AKL))

        assert len(slots) == 1
        assert slots[0].end == window.end

    def test_window_shorter_than_duration_is_empty(self):
        window = Interval(akl("09:00"), akl("09:20"))
        assert list(generate(window, 30, 15, AKL)) == []

    def test_multi_day_window_is_chronological(self):
        window = Interval(akl("23:00"), akl("01:00", date(2026, 3, 3)))
        starts = [s.start for s in generate(window, 60, 60, AKL)]

        assert starts == [akl("23:00"), akl("00:00", date(2026, 3, 3))]
        assert starts == sorted(starts)

    def test_spring_forward_skips_missing_wall_clock_times(self):
        # Auckland jumps 02:00 -> 03:00 on 27 Sep 2026
        day = date(2026, 9, 27)
        window = Interval(
            datetime(2026, 9, 27, 1, 0, tzinfo=AKL),
            datetime(2026, 9, 27, 4, 0, tzinfo=AKL),
        )
        slots = list(generate(window, 30, 30, AKL))
        local_starts = [s.start.astimezone(AKL).strftime("%H:%M") for s in slots]

        assert local_starts == ["01:00", "01:30", "03:00", "03:30"]
        # length is absolute time even across the jump
        assert all(s.end - s.start == timedelta(minutes=30) for s in slots)
        assert slots[1].end == akl("03:00", day)

    def test_staff_id_is_attached(self):
        window = Interval(akl("09:00"), akl("09:30"))
        assert list(generate(window, 30, 30, AKL, staff_id="staff-alex")) == [
            Candidate(akl("09:00"), akl("09:30"), "staff-alex")
        ]

    @pytest.mark.parametrize("duration, granularity", [(0, 15), (30, 0), (-5, 15)])
    def test_non_positive_lengths_are_rejected(self, duration, granularity):
        window = Interval(akl("09:00"), akl("10:00"))
        with pytest.raises(ValidationError):
            generate(window, duration, granularity, AKL)


@pytest.mark.unit
class TestGenerateForStaff:
    """Fan-out of the same grid across staff members"""

    def test_orders_by_start_then_given_staff_order(self):
        window = Interval(akl("09:00"), akl("10:00"))
        slots = list(generate_for_staff(window, 30, 30, AKL, ["b", "a"]))

        assert [(s.start, s.staff_id) for s in slots] == [
            (akl("09:00"), "b"),
            (akl("09:00"), "a"),
            (akl("09:30"), "b"),
            (akl("09:30"), "a"),
        ]

    def test_no_staff_means_unassigned_slots(self):
        window = Interval(akl("09:00"), akl("10:00"))
        slots = list(generate_for_staff(window, 30, 30, AKL, []))

        assert len(slots) == 2
        assert all(s.staff_id is None for s in slots)
