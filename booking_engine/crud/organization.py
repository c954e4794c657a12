# booking_engine/crud/organization.py

from __future__ import annotations
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.db.base import (
    Holiday,
    OpeningHours,
    Organization,
    Service,
    StaffMember,
    StaffSchedule,
    StaffService,
)


async def get_organization(db: AsyncSession, org_id: str) -> Optional[Organization]:
    return await db.get(Organization, org_id)


async def get_organization_by_slug(db: AsyncSession, slug: str) -> Optional[Organization]:
    res = await db.execute(sa.select(Organization).where(Organization.slug == slug))
    return res.scalar_one_or_none()


async def get_service(db: AsyncSession, org_id: str, service_id: str) -> Optional[Service]:
    res = await db.execute(
        sa.select(Service).where(Service.id == service_id, Service.org_id == org_id)
    )
    return res.scalar_one_or_none()


async def get_active_staff(db: AsyncSession, org_id: str, staff_id: str) -> Optional[StaffMember]:
    res = await db.execute(
        sa.select(StaffMember).where(
            StaffMember.id == staff_id,
            StaffMember.org_id == org_id,
            StaffMember.active.is_(True),
        )
    )
    return res.scalar_one_or_none()


async def is_staff_assigned(db: AsyncSession, staff_id: str, service_id: str) -> bool:
    res = await db.execute(
        sa.select(StaffService.id).where(
            StaffService.staff_id == staff_id,
            StaffService.service_id == service_id,
        )
    )
    return res.first() is not None


async def list_opening_hours(db: AsyncSession, org_id: str) -> Sequence[OpeningHours]:
    res = await db.execute(sa.select(OpeningHours).where(OpeningHours.org_id == org_id))
    return res.scalars().all()


async def list_holidays(
    db: AsyncSession,
    org_id: str,
    *,
    from_iso: Optional[str] = None,
    to_iso: Optional[str] = None,
) -> Sequence[Holiday]:
    q = sa.select(Holiday).where(Holiday.org_id == org_id)
    if from_iso is not None:
        q = q.where(Holiday.date_iso >= from_iso)
    if to_iso is not None:
        q = q.where(Holiday.date_iso <= to_iso)
    res = await db.execute(q)
    return res.scalars().all()


async def list_active_schedules(
    db: AsyncSession,
    org_id: str,
    *,
    staff_id: Optional[str] = None,
) -> Sequence[StaffSchedule]:
    """Schedule rows of active staff in the org (optionally one staff member)."""
    q = (
        sa.select(StaffSchedule)
        .join(StaffMember, StaffMember.id == StaffSchedule.staff_id)
        .where(StaffMember.org_id == org_id, StaffMember.active.is_(True))
    )
    if staff_id is not None:
        q = q.where(StaffSchedule.staff_id == staff_id)
    res = await db.execute(q)
    return res.scalars().all()


async def list_active_staff_ids(db: AsyncSession, org_id: str) -> list[str]:
    res = await db.execute(
        sa.select(StaffMember.id)
        .where(StaffMember.org_id == org_id, StaffMember.active.is_(True))
        .order_by(StaffMember.id)
    )
    return list(res.scalars().all())


async def list_service_staff_ids(db: AsyncSession, service_id: str) -> list[str]:
    """Staff assigned to a service; empty when the service has no assignments."""
    res = await db.execute(
        sa.select(StaffService.staff_id).where(StaffService.service_id == service_id)
    )
    return list(res.scalars().all())
