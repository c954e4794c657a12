# booking_engine/services/ranking.py
"""
SlotRanker: heuristic ordering of bookable slots.

Ranking is a pure function over aggregates fetched once per request, so the
same history and the same `now` always give the same order. It reorders and
annotates; it never drops a slot.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.timeutils import weekday_index
from booking_engine.crud.appointment import list_recent_starts
from booking_engine.services.slots import Candidate

logger = structlog.get_logger(__name__)

HISTORY_DAYS = 60
SOON_HORIZON_MIN = 240

W_SOONEST = 0.5
W_BALANCE = 0.2
W_DENSITY = 0.3

DEFAULT_EXPLANATION = "Balanced availability for this time window."


@dataclass
class RankingAggregates:
    staff_counts: Counter = field(default_factory=Counter)
    # (weekday 0=Sun, local hour) -> appointments started in that bucket
    bucket_counts: Counter = field(default_factory=Counter)

    @property
    def max_staff_count(self) -> int:
        return max(1, max(self.staff_counts.values(), default=0))

    @property
    def max_bucket_count(self) -> int:
        return max(1, max(self.bucket_counts.values(), default=0))


@dataclass(frozen=True)
class RankedSlot:
    start: datetime
    end: datetime
    staff_id: Optional[str]
    score: float
    explanation: str


def _bucket(dt: datetime, tz: ZoneInfo) -> Tuple[int, int]:
    local = dt.astimezone(tz)
    return weekday_index(local), local.hour


def build_aggregates(rows: Iterable[Tuple[Optional[str], datetime]], tz: ZoneInfo) -> RankingAggregates:
    agg = RankingAggregates()
    for staff_id, starts_at in rows:
        if staff_id:
            agg.staff_counts[staff_id] += 1
        agg.bucket_counts[_bucket(starts_at, tz)] += 1
    return agg


async def load_ranking_aggregates(db: AsyncSession, org_id: str, tz: ZoneInfo,
                                  now: datetime) -> RankingAggregates:
    """Staff load and (weekday, hour) popularity over the trailing 60 days, one query."""
    rows = await list_recent_starts(db, org_id=org_id, since=now - timedelta(days=HISTORY_DAYS))
    return build_aggregates(rows, tz)


def _score(slot: Candidate, agg: RankingAggregates, now: datetime, tz: ZoneInfo) -> Tuple[float, List[str]]:
    minutes_from_now = max(0, round((slot.start - now).total_seconds() / 60))
    hour = slot.start.astimezone(tz).hour

    soonest = max(0, SOON_HORIZON_MIN - minutes_from_now) / SOON_HORIZON_MIN
    late_penalty = -0.2 if hour >= 17 else -0.1 if hour <= 8 else 0.0
    if slot.staff_id:
        balance = 1 - agg.staff_counts.get(slot.staff_id, 0) / agg.max_staff_count
    else:
        balance = 0.0
    density = agg.bucket_counts.get(_bucket(slot.start, tz), 0) / agg.max_bucket_count

    score = soonest * W_SOONEST + balance * W_BALANCE + density * W_DENSITY + late_penalty

    rationale = []
    if soonest > 0.4:
        rationale.append("Sooner options tend to be accepted more often.")
    if density > 0.6:
        rationale.append("This time is popular for similar bookings.")
    if balance > 0.6:
        rationale.append("This staff member has more capacity around this time.")
    if late_penalty < 0:
        rationale.append("Later slots often see more reschedules.")
    return round(score, 4), rationale


def rank_slots(slots: Iterable[Candidate], aggregates: RankingAggregates,
               now: datetime, tz: ZoneInfo) -> List[RankedSlot]:
    """Highest score first; equal scores keep chronological order."""
    ranked = []
    for slot in slots:
        score, rationale = _score(slot, aggregates, now, tz)
        ranked.append(RankedSlot(
            start=slot.start,
            end=slot.end,
            staff_id=slot.staff_id,
            score=score,
            explanation=" ".join(rationale) if rationale else DEFAULT_EXPLANATION,
        ))
    # sort is stable, so staff order within one start survives too
    ranked.sort(key=lambda r: (-r.score, r.start))
    return ranked
