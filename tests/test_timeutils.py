"""
Tests for timezone and wall-clock helpers.
"""

from datetime import date, datetime, timezone

import pytest

from booking_engine.core.errors import ValidationError
from booking_engine.core.timeutils import (
    UTC,
    local_minutes,
    localize,
    parse_hhmm,
    parse_timestamp,
    resolve_timezone,
    weekday_index,
)
from booking_engine.services.constraints import BookingRules
from tests.factories import AKL, MONDAY, akl


@pytest.mark.unit
class TestParseTimestamp:
    """Accepted timestamp shapes"""

    def test_naive_value_is_read_in_org_timezone(self):
        assert parse_timestamp("2026-03-02T09:00", AKL) == akl("09:00")

    def test_offset_value_is_kept(self):
        assert parse_timestamp("2026-03-01T20:00:00Z", AKL) == datetime(2026, 3, 1, 20, tzinfo=timezone.utc)

    def test_date_only_is_local_midnight(self):
        assert parse_timestamp("2026-03-02", AKL) == akl("00:00")

    def test_date_only_end_of_day_covers_the_whole_day(self):
        assert parse_timestamp("2026-03-02", AKL, end_of_day=True) == akl("00:00", date(2026, 3, 3))

    @pytest.mark.parametrize("raw", ["", "tomorrow", "2026-13-40", "2026-03-02T25:00"])
    def test_garbage_is_a_validation_error(self, raw):
        with pytest.raises(ValidationError):
            parse_timestamp(raw, AKL)


@pytest.mark.unit
class TestWallClock:
    """Weekday numbering and minute-of-day conversions"""

    def test_weekday_index_starts_on_sunday(self):
        assert weekday_index(MONDAY) == 1
        assert weekday_index(date(2026, 3, 1)) == 0
        assert weekday_index(date(2026, 3, 7)) == 6

    def test_local_minutes(self):
        assert local_minutes(akl("09:00"), akl("09:30"), AKL) == (MONDAY, 540, 570)

    def test_end_at_midnight_counts_as_1440(self):
        assert local_minutes(akl("23:30"), akl("00:00", date(2026, 3, 3)), AKL) == (MONDAY, 1410, 1440)

    def test_crossing_midnight_is_none(self):
        assert local_minutes(akl("23:30"), akl("00:30", date(2026, 3, 3)), AKL) is None

    def test_localize_returns_none_inside_dst_gap(self):
        assert localize(date(2026, 9, 27), 2 * 60 + 30, AKL) is None
        assert localize(MONDAY, 9 * 60, AKL) == akl("09:00")

    def test_parse_hhmm(self):
        assert parse_hhmm("09:30") == 570
        assert parse_hhmm("24:00") == 1440
        with pytest.raises(ValidationError):
            parse_hhmm("9am")
        with pytest.raises(ValidationError):
            parse_hhmm("10:75")

    def test_unknown_timezone_falls_back_to_utc(self):
        assert resolve_timezone("Mars/Olympus_Mons") is UTC
        assert resolve_timezone(None) is UTC


@pytest.mark.unit
class TestBookingRules:
    """Typed rule defaults and clamping"""

    def test_defaults(self):
        rules = BookingRules()
        assert (rules.slot_interval_min, rules.lead_time_min, rules.allow_overlaps) == (30, 0, False)

    def test_out_of_range_values_are_clamped(self):
        rules = BookingRules(slot_interval_min=1, lead_time_min=99999, buffer_before_min=-5, buffer_after_min="x")
        assert rules.slot_interval_min == 5
        assert rules.lead_time_min == 1440
        assert rules.buffer_before_min == 0
        assert rules.buffer_after_min == 0

    def test_clearance_is_the_larger_buffer(self):
        assert BookingRules(buffer_before_min=5, buffer_after_min=15).clearance_min == 15
