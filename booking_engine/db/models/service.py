# booking_engine/db/models/service.py

from __future__ import annotations
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from booking_engine.db.session import Base
from booking_engine.db.models.organization import new_id


class Service(Base):
    __tablename__ = "services"
    __table_args__ = (
        sa.CheckConstraint("duration_min > 0", name="ck_services_duration_positive"),
        sa.Index("ix_services_org_id", "org_id"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    org_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    duration_min: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="30")
