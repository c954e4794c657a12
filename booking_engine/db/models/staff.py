# booking_engine/db/models/staff.py

from __future__ import annotations
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_engine.db.session import Base
from booking_engine.db.models.organization import new_id


class StaffMember(Base):
    __tablename__ = "staff_members"
    __table_args__ = (
        sa.Index("ix_staff_members_org_id", "org_id"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    org_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.true())

    schedules: Mapped[list["StaffSchedule"]] = relationship(
        back_populates="staff",
        cascade="all, delete-orphan",
    )


class StaffSchedule(Base):
    """One working block; several rows per day allowed, no row = day off."""
    __tablename__ = "staff_schedules"
    __table_args__ = (
        sa.Index("ix_staff_schedules_staff_id", "staff_id"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    staff_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)  # 0=Sunday
    start_time: Mapped[str] = mapped_column(sa.String(5), nullable=False)      # "HH:MM"
    end_time: Mapped[str] = mapped_column(sa.String(5), nullable=False)

    staff: Mapped["StaffMember"] = relationship(back_populates="schedules")


class StaffService(Base):
    __tablename__ = "staff_services"
    __table_args__ = (
        sa.UniqueConstraint("staff_id", "service_id", name="uq_staff_services_pair"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    staff_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
