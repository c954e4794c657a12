# booking_engine/core/timeutils.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from booking_engine.core.errors import ValidationError

logger = structlog.get_logger(__name__)

UTC = ZoneInfo("UTC")
MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class Interval:
    """Half-open [start, end) interval of tz-aware datetimes."""
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def expand(self, before_min: int = 0, after_min: int = 0) -> "Interval":
        return Interval(self.start - timedelta(minutes=before_min),
                        self.end + timedelta(minutes=after_min))


@dataclass(frozen=True)
class DayWindow:
    """Minute-of-day window in the org timezone; close <= open means closed."""
    open_min: int
    close_min: int

    @property
    def is_closed(self) -> bool:
        return self.close_min <= self.open_min

    def contains(self, start_min: int, end_min: int) -> bool:
        if self.is_closed:
            return False
        return self.open_min <= start_min and end_min <= self.close_min


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    if not name:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("invalid_timezone", timezone=name, fallback="UTC")
        return UTC


def weekday_index(dt_local: datetime | date) -> int:
    """0=Sunday .. 6=Saturday (the convention OpeningHours rows are stored in)."""
    return (dt_local.weekday() + 1) % 7


def minute_of_day(dt_local: datetime) -> int:
    return dt_local.hour * 60 + dt_local.minute


def parse_hhmm(value: str) -> int:
    """'09:30' -> 570. '24:00' is allowed as end of day."""
    try:
        hh, mm = value.strip().split(":")[:2]
        minutes = int(hh) * 60 + int(mm)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid time of day: {value!r} (expected HH:MM)")
    if not 0 <= minutes <= MINUTES_PER_DAY or not 0 <= int(mm) < 60:
        raise ValidationError(f"Invalid time of day: {value!r}")
    return minutes


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def local_minutes(start_utc: datetime, end_utc: datetime, tz: ZoneInfo) -> Optional[tuple[date, int, int]]:
    """
    Express [start, end) as (local date, start minute, end minute) in tz.
    Returns None when the interval crosses local midnight (end exactly at
    midnight counts as minute 1440 of the start day).
    """
    start_local = start_utc.astimezone(tz)
    end_local = end_utc.astimezone(tz)
    day = start_local.date()
    start_min = minute_of_day(start_local)
    if end_local.date() == day:
        end_min = minute_of_day(end_local)
    elif end_local.date() == day + timedelta(days=1) and minute_of_day(end_local) == 0:
        end_min = MINUTES_PER_DAY
    else:
        return None
    return day, start_min, end_min


def localize(day: date, minutes: int, tz: ZoneInfo) -> Optional[datetime]:
    """
    Wall-clock minute of a local day -> aware UTC datetime.
    None for times skipped by a DST transition.
    """
    naive = datetime.combine(day, time()) + timedelta(minutes=minutes)
    local = naive.replace(tzinfo=tz)
    as_utc = local.astimezone(UTC)
    if as_utc.astimezone(tz).replace(tzinfo=None) != naive:
        return None
    return as_utc


def parse_timestamp(value: str | datetime | date, tz: ZoneInfo, *, end_of_day: bool = False) -> datetime:
    """
    Accept ISO8601 with offset, naive datetime (interpreted in tz) or a plain
    date. A date-only value is local midnight, or the next local midnight
    when end_of_day is set so that `to=2026-03-02` covers the whole day.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        day = value + timedelta(days=1) if end_of_day else value
        return datetime.combine(day, time(), tzinfo=tz).astimezone(UTC)
    else:
        raw = (value or "").strip()
        if not raw:
            raise ValidationError("Missing timestamp")
        if len(raw) == 10:
            try:
                day = date.fromisoformat(raw)
            except ValueError:
                raise ValidationError(f"Invalid date: {raw!r}")
            return parse_timestamp(day, tz, end_of_day=end_of_day)
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {raw!r} (expected ISO8601)")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(UTC)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)
