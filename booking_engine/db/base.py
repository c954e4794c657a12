# booking_engine/db/base.py

"""
This file imports all the ORM models so Alembic can discover them.
Whenever you add a new model, import it here.
"""
from booking_engine.db.models.organization import Organization, OpeningHours, Holiday
from booking_engine.db.models.staff import StaffMember, StaffSchedule, StaffService
from booking_engine.db.models.service import Service
from booking_engine.db.models.customer import Customer
from booking_engine.db.models.appointment import Appointment, AppointmentStatus
from booking_engine.db.session import engine, Base

__all__ = [
    "Organization", "OpeningHours", "Holiday",
    "StaffMember", "StaffSchedule", "StaffService",
    "Service", "Customer", "Appointment", "AppointmentStatus",
    "Base", "init_db",
]

async def init_db(bind=None):
    """Create all tables (tests and local development; production uses Alembic)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
