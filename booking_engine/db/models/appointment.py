# booking_engine/db/models/appointment.py

from __future__ import annotations
import enum
from datetime import datetime, timezone
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from booking_engine.db.session import Base
from booking_engine.db.models.organization import new_id
from booking_engine.db.types import UTCDateTime


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # Retried requests replay instead of duplicating
        sa.UniqueConstraint("org_id", "idempotency_key", name="uq_appointments_org_idempotency_key"),
        sa.Index("ix_appointments_org_staff_starts_at", "org_id", "staff_id", "starts_at"),
        sa.CheckConstraint("ends_at > starts_at", name="ck_appointments_positive_length"),
    )

    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True, default=new_id)
    org_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    staff_id: Mapped[str | None] = mapped_column(sa.String(32), sa.ForeignKey("staff_members.id", ondelete="SET NULL"))
    service_id: Mapped[str | None] = mapped_column(sa.String(32), sa.ForeignKey("services.id", ondelete="SET NULL"))
    customer_id: Mapped[str] = mapped_column(sa.String(32), sa.ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)

    # Store as timezone-aware UTC
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default=AppointmentStatus.SCHEDULED.value)
    source: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="web")
    notes: Mapped[str | None] = mapped_column(sa.Text)

    idempotency_key: Mapped[str | None] = mapped_column(sa.String(128))

    # False when booked under allow_overlaps; such rows sit outside the slot backstops
    is_exclusive: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True, server_default=sa.true())

    # External calendar linkage (filled by the async sync, never required)
    external_calendar_id: Mapped[str | None] = mapped_column(sa.String(255))
    external_event_id: Mapped[str | None] = mapped_column(sa.String(255))

    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_by: Mapped[str | None] = mapped_column(sa.String(120))

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    customer: Mapped["Customer"] = relationship(back_populates="appointments")

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.CANCELLED.value

    @property
    def duration_min(self) -> int:
        return int((self.ends_at - self.starts_at).total_seconds() // 60)


# Backstop for racing inserts of the same slot. Overlapping (not just
# identical) intervals are excluded by a Postgres EXCLUDE constraint in the
# migrations.
sa.Index(
    "uq_appointments_active_slot",
    Appointment.org_id,
    sa.func.coalesce(Appointment.staff_id, ""),
    Appointment.starts_at,
    unique=True,
    sqlite_where=sa.and_(Appointment.status != AppointmentStatus.CANCELLED.value, Appointment.is_exclusive.is_(True)),
    postgresql_where=sa.and_(Appointment.status != AppointmentStatus.CANCELLED.value, Appointment.is_exclusive.is_(True)),
)
