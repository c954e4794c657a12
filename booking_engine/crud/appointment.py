# booking_engine/crud/appointment.py

from __future__ import annotations
from datetime import datetime
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.db.base import Appointment, AppointmentStatus

ACTIVE = Appointment.status != AppointmentStatus.CANCELLED.value


def _overlap_query(
    org_id: str,
    start: datetime,
    end: datetime,
    *,
    staff_id: Optional[str] = None,
    org_wide: bool = False,
    exclude_id: Optional[str] = None,
):
    q = sa.select(Appointment).where(
        Appointment.org_id == org_id,
        ACTIVE,
        Appointment.starts_at < end,
        Appointment.ends_at > start,
    )
    if not org_wide:
        if staff_id is None:
            q = q.where(Appointment.staff_id.is_(None))
        else:
            # unassigned appointments block every staff member
            q = q.where(sa.or_(Appointment.staff_id == staff_id, Appointment.staff_id.is_(None)))
    if exclude_id is not None:
        q = q.where(Appointment.id != exclude_id)
    return q


async def list_active_appointments(
    db: AsyncSession,
    *,
    org_id: str,
    start: datetime,
    end: datetime,
    staff_id: Optional[str] = None,
) -> Sequence[Appointment]:
    """Non-cancelled appointments intersecting [start, end); with staff_id, that staff's plus unassigned ones."""
    q = _overlap_query(org_id, start, end, staff_id=staff_id, org_wide=staff_id is None)
    res = await db.execute(q.order_by(Appointment.starts_at.asc()))
    return res.scalars().all()


async def count_overlapping(
    db: AsyncSession,
    *,
    org_id: str,
    start: datetime,
    end: datetime,
    staff_id: Optional[str],
    exclude_id: Optional[str] = None,
) -> int:
    """
    Count active appointments intersecting [start, end) for the same staff
    (unassigned ones included), or across the whole org when staff_id is
    None. Callers pass the buffer-expanded interval.
    """
    inner = _overlap_query(
        org_id, start, end,
        staff_id=staff_id,
        org_wide=staff_id is None,
        exclude_id=exclude_id,
    ).with_only_columns(Appointment.id)
    res = await db.execute(sa.select(sa.func.count()).select_from(inner.subquery()))
    return int(res.scalar_one())


async def get_by_idempotency_key(
    db: AsyncSession,
    *,
    org_id: str,
    key: str,
    since: Optional[datetime] = None,
) -> Optional[Appointment]:
    q = sa.select(Appointment).where(
        Appointment.org_id == org_id,
        Appointment.idempotency_key == key,
    )
    if since is not None:
        q = q.where(Appointment.created_at >= since)
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def get_appointment(
    db: AsyncSession,
    *,
    org_id: str,
    appointment_id: str,
    for_update: bool = False,
) -> Optional[Appointment]:
    q = sa.select(Appointment).where(
        Appointment.id == appointment_id,
        Appointment.org_id == org_id,
    )
    if for_update:
        q = q.with_for_update()
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def insert_appointment(db: AsyncSession, **fields) -> Appointment:
    appt = Appointment(**fields)
    db.add(appt)
    await db.flush()
    return appt


async def list_recent_starts(
    db: AsyncSession,
    *,
    org_id: str,
    since: datetime,
) -> Sequence[tuple[Optional[str], datetime]]:
    """(staff_id, starts_at) of non-cancelled appointments since `since`; ranking input."""
    res = await db.execute(
        sa.select(Appointment.staff_id, Appointment.starts_at).where(
            Appointment.org_id == org_id,
            ACTIVE,
            Appointment.starts_at >= since,
        )
    )
    return [(row[0], row[1]) for row in res.all()]


async def list_recent_intervals(
    db: AsyncSession,
    *,
    org_id: str,
    service_id: str,
    since: datetime,
) -> Sequence[tuple[datetime, datetime]]:
    res = await db.execute(
        sa.select(Appointment.starts_at, Appointment.ends_at).where(
            Appointment.org_id == org_id,
            Appointment.service_id == service_id,
            Appointment.starts_at >= since,
        )
    )
    return [(row[0], row[1]) for row in res.all()]


async def list_appointments(
    db: AsyncSession,
    *,
    org_id: str,
    staff_id: Optional[str] = None,
    start_utc: Optional[datetime] = None,
    end_utc: Optional[datetime] = None,
    include_cancelled: bool = False,
    limit: int = 100,
) -> Sequence[Appointment]:
    q = sa.select(Appointment).where(Appointment.org_id == org_id)
    if not include_cancelled:
        q = q.where(ACTIVE)
    if staff_id is not None:
        q = q.where(Appointment.staff_id == staff_id)
    if start_utc is not None:
        q = q.where(Appointment.starts_at >= start_utc)
    if end_utc is not None:
        q = q.where(Appointment.starts_at < end_utc)
    q = q.order_by(Appointment.starts_at.asc()).limit(limit)
    res = await db.execute(q)
    return res.scalars().all()
