# booking_engine/services/constraints.py
"""
ConstraintStore: per-organization scheduling rules, read once per request.

Everything minute-of-day related is expressed in the org timezone: weekday
boundaries, opening hours and staff schedules are all wall-clock local.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Set
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.errors import NotFound
from booking_engine.core.timeutils import DayWindow, Interval, parse_hhmm, resolve_timezone
from booking_engine.crud.organization import (
    get_active_staff,
    get_organization,
    list_active_schedules,
    list_active_staff_ids,
    list_holidays,
    list_opening_hours,
)
from booking_engine.db.base import Organization

logger = structlog.get_logger(__name__)


def _clamp(value, low: int, high: int, fallback: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return fallback
    return min(high, max(low, n))


class BookingRules(BaseModel):
    """Typed booking policy with explicit defaults; out-of-range values are clamped."""
    slot_interval_min: int = 30
    lead_time_min: int = 0
    buffer_before_min: int = 0
    buffer_after_min: int = 0
    allow_overlaps: bool = False

    @field_validator("slot_interval_min", mode="before")
    @classmethod
    def _interval(cls, v):
        return _clamp(v, 5, 240, 30)

    @field_validator("lead_time_min", mode="before")
    @classmethod
    def _lead(cls, v):
        return _clamp(v, 0, 1440, 0)

    @field_validator("buffer_before_min", "buffer_after_min", mode="before")
    @classmethod
    def _buffer(cls, v):
        return _clamp(v, 0, 240, 0)

    @property
    def clearance_min(self) -> int:
        """
        Minimum gap between two appointments of the same staff member: the
        earlier one's after-buffer and the later one's before-buffer must
        both stay free of other appointments.
        """
        return max(self.buffer_before_min, self.buffer_after_min)

    @classmethod
    def from_org(cls, org: Organization) -> "BookingRules":
        return cls(
            slot_interval_min=org.slot_interval_min,
            lead_time_min=org.lead_time_min,
            buffer_before_min=org.buffer_before_min,
            buffer_after_min=org.buffer_after_min,
            allow_overlaps=org.allow_overlaps,
        )


@dataclass
class Constraints:
    org_id: str
    timezone: ZoneInfo
    rules: BookingRules
    opening_hours: Dict[int, DayWindow] = field(default_factory=dict)
    holidays: Set[str] = field(default_factory=set)
    # staff_id -> weekday -> working blocks
    staff_schedules: Dict[str, Dict[int, List[DayWindow]]] = field(default_factory=dict)
    # Staff to enumerate when the caller did not pick one
    staff_ids: List[str] = field(default_factory=list)
    calendar_id: Optional[str] = None

    @property
    def timezone_name(self) -> str:
        return self.timezone.key

    def hours_for(self, weekday: int) -> Optional[DayWindow]:
        return self.opening_hours.get(weekday)

    def schedule_for(self, staff_id: str, weekday: int) -> List[DayWindow]:
        return self.staff_schedules.get(staff_id, {}).get(weekday, [])

    def is_holiday(self, day: date) -> bool:
        return day.isoformat() in self.holidays


async def load_constraints(
    db: AsyncSession,
    org_id: str,
    staff_id: Optional[str] = None,
    window: Optional[Interval] = None,
) -> Constraints:
    """
    Load opening hours, holidays, staff schedules and booking rules for an org.

    Pure read. Raises NotFound when the org does not exist, or when staff_id
    is given and is not an active member of the org.
    """
    org = await get_organization(db, org_id)
    if org is None:
        raise NotFound("Organization not found", details={"entity": "organization"})

    if staff_id is not None and await get_active_staff(db, org_id, staff_id) is None:
        raise NotFound("Staff not found or inactive", details={"entity": "staff"})

    tz = resolve_timezone(org.timezone)

    from_iso = to_iso = None
    if window is not None:
        # Pad a day either side; local dates can straddle the UTC window edges
        from_iso = (window.start.astimezone(tz).date() - timedelta(days=1)).isoformat()
        to_iso = (window.end.astimezone(tz).date() + timedelta(days=1)).isoformat()

    hours = await list_opening_hours(db, org_id)
    holidays = await list_holidays(db, org_id, from_iso=from_iso, to_iso=to_iso)
    schedules = await list_active_schedules(db, org_id, staff_id=staff_id)

    opening_hours = {h.weekday: DayWindow(h.open_min, h.close_min) for h in hours}

    staff_schedules: Dict[str, Dict[int, List[DayWindow]]] = {}
    for row in schedules:
        block = DayWindow(parse_hhmm(row.start_time), parse_hhmm(row.end_time))
        staff_schedules.setdefault(row.staff_id, {}).setdefault(row.day_of_week, []).append(block)
    for by_day in staff_schedules.values():
        for blocks in by_day.values():
            blocks.sort(key=lambda b: b.open_min)

    if staff_id is not None:
        staff_ids = [staff_id]
    else:
        # Staff without any schedule rows can never be offered
        active = await list_active_staff_ids(db, org_id)
        staff_ids = [sid for sid in active if sid in staff_schedules]

    constraints = Constraints(
        org_id=org_id,
        timezone=tz,
        rules=BookingRules.from_org(org),
        opening_hours=opening_hours,
        holidays={h.date_iso for h in holidays},
        staff_schedules=staff_schedules,
        staff_ids=staff_ids,
        calendar_id=(org.google_calendar_id or "").strip() or None,
    )
    logger.debug(
        "constraints_loaded",
        org_id=org_id,
        timezone=constraints.timezone_name,
        weekdays_open=sorted(d for d, w in opening_hours.items() if not w.is_closed),
        holidays=len(constraints.holidays),
        staff=len(staff_ids),
    )
    return constraints
