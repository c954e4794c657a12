# booking_engine/crud/customer.py

from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.db.base import Customer
from booking_engine.db.models.organization import new_id


def _insert_for(db: AsyncSession):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise RuntimeError(f"customer upsert not supported on dialect {dialect!r}")


async def upsert_customer(
    db: AsyncSession,
    *,
    org_id: str,
    name: str,
    phone: str,
    email: Optional[str] = None,
) -> str:
    """
    Insert or update the customer keyed by (org_id, phone); returns its id.

    Uses INSERT .. ON CONFLICT so two bookings racing for the same new
    caller both end up on one row instead of one failing on the unique key.
    """
    insert = _insert_for(db)
    stmt = insert(Customer).values(
        id=new_id(),
        org_id=org_id,
        name=name,
        phone=phone,
        email=email,
        created_at=datetime.now(timezone.utc),
    )
    update_cols = {"name": stmt.excluded.name}
    if email:
        update_cols["email"] = stmt.excluded.email
    stmt = stmt.on_conflict_do_update(
        index_elements=[Customer.org_id, Customer.phone],
        set_=update_cols,
    ).returning(Customer.id)
    res = await db.execute(stmt)
    return res.scalar_one()


async def get_customer_by_phone(db: AsyncSession, org_id: str, phone: str) -> Optional[Customer]:
    res = await db.execute(
        sa.select(Customer).where(Customer.org_id == org_id, Customer.phone == phone)
    )
    return res.scalar_one_or_none()
