# booking_engine/db/models/organization.py

from __future__ import annotations
import uuid
from datetime import datetime, timezone
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_engine.db.session import Base
from booking_engine.db.types import UTCDateTime


def new_id() -> str:
    return uuid.uuid4().hex


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    slug: Mapped[str] = mapped_column(sa.String(80), nullable=False, unique=True)
    # IANA name; never changed after creation (cached slot math depends on it)
    timezone: Mapped[str] = mapped_column(sa.String(64), nullable=False, server_default="UTC")

    # Booking rules (typed columns; validated again by BookingRules)
    slot_interval_min: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="30")
    lead_time_min: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    buffer_before_min: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    buffer_after_min: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    allow_overlaps: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.false())

    # Integrations
    google_calendar_id: Mapped[str | None] = mapped_column(sa.String(255))
    voice_webhook_secret: Mapped[str | None] = mapped_column(sa.String(255))

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    opening_hours: Mapped[list["OpeningHours"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
    )


class OpeningHours(Base):
    __tablename__ = "opening_hours"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "weekday", name="uq_opening_hours_org_weekday"),
        sa.CheckConstraint("weekday BETWEEN 0 AND 6", name="ck_opening_hours_weekday"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    org_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    # 0=Sunday .. 6=Saturday
    weekday: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    open_min: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    close_min: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="opening_hours")


class Holiday(Base):
    __tablename__ = "holidays"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "date_iso", name="uq_holidays_org_date"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    org_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    date_iso: Mapped[str] = mapped_column(sa.String(10), nullable=False)  # YYYY-MM-DD, org-local
    label: Mapped[str] = mapped_column(sa.String(120), nullable=False, server_default="")
