# booking_engine/services/slots.py
"""
Candidate slot generation.

Walks the query window one local day at a time and yields fixed-length
candidates whose starts sit on the granularity grid measured from local
midnight. No constraint is applied here beyond window containment.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Optional
from zoneinfo import ZoneInfo

from booking_engine.core.errors import ValidationError
from booking_engine.core.timeutils import MINUTES_PER_DAY, Interval, localize


@dataclass(frozen=True)
class Candidate:
    start: datetime
    end: datetime
    staff_id: Optional[str] = None

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)


def generate(
    window: Interval,
    duration_min: int,
    granularity_min: int,
    tz: ZoneInfo,
    staff_id: Optional[str] = None,
) -> Iterator[Candidate]:
    """
    Yield candidates in chronological order with
    window.start <= start and end <= window.end.

    Wall-clock starts skipped by a DST transition are dropped. The end is
    start + duration in absolute time.
    """
    if duration_min <= 0:
        raise ValidationError("duration_min must be positive")
    if granularity_min <= 0:
        raise ValidationError("granularity_min must be positive")

    return _walk(window, timedelta(minutes=duration_min), granularity_min, tz, staff_id)


def _walk(window: Interval, length: timedelta, step: int, tz: ZoneInfo,
          staff_id: Optional[str]) -> Iterator[Candidate]:
    day = window.start.astimezone(tz).date()
    last_day = window.end.astimezone(tz).date()
    previous = None

    while day <= last_day:
        for minute in range(0, MINUTES_PER_DAY, step):
            start = localize(day, minute, tz)
            if start is None:
                continue
            if start < window.start:
                continue
            end = start + length
            if end > window.end:
                # Later starts on this grid only end later
                return
            # Repeated wall-clock hour on a DST fall-back day
            if previous is not None and start <= previous:
                continue
            previous = start
            yield Candidate(start, end, staff_id)
        day += timedelta(days=1)


def generate_for_staff(
    window: Interval,
    duration_min: int,
    granularity_min: int,
    tz: ZoneInfo,
    staff_ids: Iterable[Optional[str]],
) -> Iterator[Candidate]:
    """Same grid per staff member, ordered by start then by staff order given."""
    staff_ids = list(staff_ids) or [None]
    for candidate in generate(window, duration_min, granularity_min, tz):
        for staff_id in staff_ids:
            yield Candidate(candidate.start, candidate.end, staff_id)
