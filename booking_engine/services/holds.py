# booking_engine/services/holds.py
"""
Booking holds: short-lived soft reservations kept in Redis.

A hold is one JSON value per key with a TTL, so expiry needs no sweeper.
Each org also keeps a sorted set of its hold ids scored by expiry time;
listing reads that index instead of scanning the keyspace, and the cap on
live holds is enforced against it after the id is added.
Holds are informational only. Availability marks overlapping slots as
held; the booking path never looks at them.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog
from redis.exceptions import RedisError

from booking_engine.core.config import settings
from booking_engine.core.errors import TransientStoreError, ValidationError, log_error
from booking_engine.core.timeutils import ensure_utc, overlaps, utcnow
from booking_engine.db.models.organization import new_id
from booking_engine.services.redis_client import get_redis_client

logger = structlog.get_logger(__name__)

KEY_PREFIX = "booking_hold"
INDEX_PREFIX = "booking_hold_index"


@dataclass
class BookingHold:
    id: str
    org_id: str
    start: datetime
    end: datetime
    staff_id: Optional[str]
    created_at: datetime
    expires_at: datetime
    source: str = "staff"
    note: Optional[str] = None

    def to_json(self) -> str:
        data = asdict(self)
        for key in ("start", "end", "created_at", "expires_at"):
            data[key] = data[key].isoformat()
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "BookingHold":
        data = json.loads(raw)
        for key in ("start", "end", "created_at", "expires_at"):
            data[key] = datetime.fromisoformat(data[key])
        return cls(**data)

    def covers(self, start: datetime, end: datetime, staff_id: Optional[str] = None) -> bool:
        """A hold without staff covers every staff member; otherwise staff must match."""
        if staff_id and self.staff_id and self.staff_id != staff_id:
            return False
        return overlaps(self.start, self.end, start, end)


def clamp_hold_minutes(value: Optional[int]) -> int:
    if value is None:
        return settings.HOLD_DEFAULT_MINUTES
    return min(settings.HOLD_MAX_MINUTES, max(settings.HOLD_MIN_MINUTES, int(value)))


def _key(org_id: str, hold_id: str) -> str:
    return f"{KEY_PREFIX}:{org_id}:{hold_id}"


def _index_key(org_id: str) -> str:
    return f"{INDEX_PREFIX}:{org_id}"


class HoldStore:
    def __init__(self, client_factory: Callable = get_redis_client):
        self._client_factory = client_factory

    def _client(self):
        return self._client_factory()

    async def list_holds(self, org_id: str) -> List[BookingHold]:
        """Live holds for an org, soonest first. Redis trouble means no holds."""
        client = self._client()
        if client is None:
            return []
        index = _index_key(org_id)
        try:
            await client.zremrangebyscore(index, "-inf", utcnow().timestamp())
            ids = await client.zrange(index, 0, -1)
            if not ids:
                return []
            values = await client.mget([_key(org_id, hold_id) for hold_id in ids])
            # released or evicted behind the index's back
            stale = [hold_id for hold_id, raw in zip(ids, values) if not raw]
            if stale:
                await client.zrem(index, *stale)
        except (RedisError, OSError) as e:
            log_error(e, {"event_name": "holds_unavailable", "org_id": org_id})
            return []

        now = utcnow()
        holds = []
        for raw in values:
            if not raw:
                continue
            try:
                hold = BookingHold.from_json(raw)
            except (ValueError, TypeError, KeyError):
                logger.warning("hold_unreadable", org_id=org_id)
                continue
            if hold.expires_at > now:
                holds.append(hold)
        holds.sort(key=lambda h: (h.start, h.id))
        return holds

    async def create_hold(
        self,
        org_id: str,
        start: datetime,
        end: datetime,
        staff_id: Optional[str] = None,
        hold_minutes: Optional[int] = None,
        source: str = "staff",
        note: Optional[str] = None,
    ) -> BookingHold:
        start, end = ensure_utc(start), ensure_utc(end)
        if end <= start:
            raise ValidationError("Hold end must be after start")

        client = self._client()
        if client is None:
            raise TransientStoreError("Hold storage is not configured")

        minutes = clamp_hold_minutes(hold_minutes)
        now = utcnow()
        hold = BookingHold(
            id=new_id(),
            org_id=org_id,
            start=start,
            end=end,
            staff_id=staff_id,
            created_at=now,
            expires_at=now + timedelta(minutes=minutes),
            source=source,
            note=note,
        )
        index = _index_key(org_id)
        try:
            await client.zremrangebyscore(index, "-inf", now.timestamp())
            # claim a place, then check the cap; over-cap creators back out
            await client.zadd(index, {hold.id: hold.expires_at.timestamp()})
            live = await client.zcard(index)
            if live > settings.MAX_HOLDS_PER_ORG:
                await client.zrem(index, hold.id)
                raise ValidationError(f"Too many active holds (max {settings.MAX_HOLDS_PER_ORG})")
            await client.set(_key(org_id, hold.id), hold.to_json(), ex=minutes * 60)
            await client.expire(index, settings.HOLD_MAX_MINUTES * 60)
        except (RedisError, OSError) as e:
            log_error(e, {"event_name": "hold_create_failed", "org_id": org_id})
            raise TransientStoreError("Could not store hold")

        logger.info("hold_created", org_id=org_id, hold_id=hold.id, staff_id=staff_id, minutes=minutes)
        return hold

    async def release_hold(self, org_id: str, hold_id: str) -> bool:
        client = self._client()
        if client is None:
            return False
        try:
            removed = await client.delete(_key(org_id, hold_id))
            await client.zrem(_index_key(org_id), hold_id)
        except (RedisError, OSError) as e:
            log_error(e, {"event_name": "hold_release_failed", "org_id": org_id})
            raise TransientStoreError("Could not release hold")
        if removed:
            logger.info("hold_released", org_id=org_id, hold_id=hold_id)
        return bool(removed)


def is_slot_held(holds: List[BookingHold], start: datetime, end: datetime,
                 staff_id: Optional[str] = None) -> bool:
    return any(h.covers(start, end, staff_id) for h in holds)
