# booking_engine/services/conflicts.py
"""
ConflictGuard: decides whether a candidate slot is bookable.

Checks run in a fixed order and `check` stops at the first failure:

1. lead_time             start >= now + lead_time_min (boundary allowed)
2. holiday               local date is not a holiday
3. outside_hours         inside the weekday's opening window
   outside_staff_hours   and inside one of the staff's schedule blocks
4. staff_busy            clearance-expanded candidate hits an appointment of
                         the same staff or an unassigned one
5. external_busy         candidate hits a calendar busy block
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from booking_engine.core.timeutils import Interval, format_hhmm, local_minutes, weekday_index
from booking_engine.services.constraints import Constraints
from booking_engine.services.slots import Candidate

LEAD_TIME = "lead_time"
HOLIDAY = "holiday"
OUTSIDE_HOURS = "outside_hours"
OUTSIDE_STAFF_HOURS = "outside_staff_hours"
STAFF_BUSY = "staff_busy"
EXTERNAL_BUSY = "external_busy"

WEEKDAYS = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


@dataclass(frozen=True)
class Reason:
    code: str
    detail: str


@dataclass
class FilterResult:
    slots: List[Candidate] = field(default_factory=list)
    rejections: Counter = field(default_factory=Counter)
    checked: int = 0


class ConflictGuard:
    """
    Built once per request over pre-fetched state. `appointments` are rows
    (or anything with staff_id/starts_at/ends_at/status) intersecting the
    query window; cancelled ones are ignored.
    """

    def __init__(
        self,
        constraints: Constraints,
        appointments: Iterable = (),
        busy: Sequence[Interval] = (),
        now: Optional[datetime] = None,
        exclude_appointment_id: Optional[str] = None,
    ):
        self.constraints = constraints
        self.rules = constraints.rules
        self.now = now
        self.busy = sorted(busy, key=lambda i: i.start)

        self._all: List[Interval] = []
        self._by_staff: Dict[Optional[str], List[Interval]] = {}
        for appt in appointments:
            if getattr(appt, "status", None) == "CANCELLED":
                continue
            if exclude_appointment_id is not None and getattr(appt, "id", None) == exclude_appointment_id:
                continue
            interval = Interval(appt.starts_at, appt.ends_at)
            self._all.append(interval)
            self._by_staff.setdefault(appt.staff_id, []).append(interval)

        self._earliest = None
        if now is not None:
            self._earliest = now + timedelta(minutes=self.rules.lead_time_min)

    # ---- individual checks; each returns a Reason or None ----

    def _lead_time(self, c: Candidate) -> Optional[Reason]:
        if self._earliest is not None and c.start < self._earliest:
            return Reason(LEAD_TIME, f"Starts before the minimum notice of {self.rules.lead_time_min} minutes")
        return None

    def _holiday(self, c: Candidate) -> Optional[Reason]:
        day = c.start.astimezone(self.constraints.timezone).date()
        if self.constraints.is_holiday(day):
            return Reason(HOLIDAY, f"{day.isoformat()} is a holiday")
        return None

    def _hours(self, c: Candidate) -> Optional[Reason]:
        local = local_minutes(c.start, c.end, self.constraints.timezone)
        if local is None:
            return Reason(OUTSIDE_HOURS, "Slot crosses local midnight")
        day, start_min, end_min = local
        weekday = weekday_index(day)

        window = self.constraints.hours_for(weekday)
        if window is None or window.is_closed:
            return Reason(OUTSIDE_HOURS, f"Closed on {WEEKDAYS[weekday]}")
        if not window.contains(start_min, end_min):
            return Reason(
                OUTSIDE_HOURS,
                f"Outside opening hours {format_hhmm(window.open_min)}-{format_hhmm(window.close_min)}",
            )

        if c.staff_id is not None:
            blocks = self.constraints.schedule_for(c.staff_id, weekday)
            if not blocks:
                return Reason(OUTSIDE_STAFF_HOURS, f"Staff does not work on {WEEKDAYS[weekday]}")
            if not any(b.contains(start_min, end_min) for b in blocks):
                return Reason(OUTSIDE_STAFF_HOURS, "Outside the staff member's schedule")
        return None

    def _staff_busy(self, c: Candidate) -> Optional[Reason]:
        if self.rules.allow_overlaps:
            return None
        clearance = self.rules.clearance_min
        padded = c.interval.expand(clearance, clearance)
        if c.staff_id is None:
            existing = self._all
        else:
            existing = [*self._by_staff.get(c.staff_id, ()), *self._by_staff.get(None, ())]
        for interval in existing:
            if padded.overlaps(interval):
                return Reason(STAFF_BUSY, "Overlaps an existing appointment (including buffers)")
        return None

    def _external_busy(self, c: Candidate) -> Optional[Reason]:
        for block in self.busy:
            if block.start >= c.end:
                break
            if block.overlaps(c.interval):
                return Reason(EXTERNAL_BUSY, "Busy on the connected calendar")
        return None

    @property
    def _checks(self):
        return (self._lead_time, self._holiday, self._hours, self._staff_busy, self._external_busy)

    # ---- public API ----

    def check(self, candidate: Candidate) -> Optional[str]:
        """First failing reason code, or None when the candidate is bookable."""
        for check in self._checks:
            reason = check(candidate)
            if reason is not None:
                return reason.code
        return None

    def explain(self, candidate: Candidate) -> List[Reason]:
        """Every failing reason, without short-circuiting."""
        reasons = []
        for check in self._checks:
            reason = check(candidate)
            if reason is not None:
                reasons.append(reason)
        return reasons

    def filter(self, candidates: Iterable[Candidate]) -> FilterResult:
        result = FilterResult()
        for candidate in candidates:
            result.checked += 1
            reason = self.check(candidate)
            if reason is None:
                result.slots.append(candidate)
            else:
                result.rejections[reason] += 1
        return result
