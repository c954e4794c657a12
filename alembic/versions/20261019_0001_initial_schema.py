"""initial booking engine schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_0001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', sa.String(32), primary_key=True)


def _org_fk() -> sa.Column:
    return sa.Column('org_id', sa.String(32), sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'organizations',
        _id(),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('slug', sa.String(80), nullable=False, unique=True),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('slot_interval_min', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('lead_time_min', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buffer_before_min', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buffer_after_min', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('allow_overlaps', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('google_calendar_id', sa.String(255)),
        sa.Column('voice_webhook_secret', sa.String(255)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'opening_hours',
        _id(),
        _org_fk(),
        sa.Column('weekday', sa.SmallInteger(), nullable=False),
        sa.Column('open_min', sa.Integer(), nullable=False),
        sa.Column('close_min', sa.Integer(), nullable=False),
        sa.UniqueConstraint('org_id', 'weekday', name='uq_opening_hours_org_weekday'),
        sa.CheckConstraint('weekday BETWEEN 0 AND 6', name='ck_opening_hours_weekday'),
    )

    op.create_table(
        'holidays',
        _id(),
        _org_fk(),
        sa.Column('date_iso', sa.String(10), nullable=False),
        sa.Column('label', sa.String(120), nullable=False, server_default=''),
        sa.UniqueConstraint('org_id', 'date_iso', name='uq_holidays_org_date'),
    )

    op.create_table(
        'staff_members',
        _id(),
        _org_fk(),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index('ix_staff_members_org_id', 'staff_members', ['org_id'])

    op.create_table(
        'staff_schedules',
        _id(),
        sa.Column('staff_id', sa.String(32), sa.ForeignKey('staff_members.id', ondelete='CASCADE'), nullable=False),
        sa.Column('day_of_week', sa.SmallInteger(), nullable=False),
        sa.Column('start_time', sa.String(5), nullable=False),
        sa.Column('end_time', sa.String(5), nullable=False),
    )
    op.create_index('ix_staff_schedules_staff_id', 'staff_schedules', ['staff_id'])

    op.create_table(
        'services',
        _id(),
        _org_fk(),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('duration_min', sa.Integer(), nullable=False, server_default='30'),
        sa.CheckConstraint('duration_min > 0', name='ck_services_duration_positive'),
    )
    op.create_index('ix_services_org_id', 'services', ['org_id'])

    op.create_table(
        'staff_services',
        _id(),
        sa.Column('staff_id', sa.String(32), sa.ForeignKey('staff_members.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.String(32), sa.ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
        sa.UniqueConstraint('staff_id', 'service_id', name='uq_staff_services_pair'),
    )

    op.create_table(
        'customers',
        _id(),
        _org_fk(),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('email', sa.String(255)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('org_id', 'phone', name='uq_customers_org_phone'),
    )

    op.create_table(
        'appointments',
        _id(),
        _org_fk(),
        sa.Column('staff_id', sa.String(32), sa.ForeignKey('staff_members.id', ondelete='SET NULL')),
        sa.Column('service_id', sa.String(32), sa.ForeignKey('services.id', ondelete='SET NULL')),
        sa.Column('customer_id', sa.String(32), sa.ForeignKey('customers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('source', sa.String(32), nullable=False, server_default='web'),
        sa.Column('notes', sa.Text()),
        sa.Column('idempotency_key', sa.String(128)),
        sa.Column('is_exclusive', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('external_calendar_id', sa.String(255)),
        sa.Column('external_event_id', sa.String(255)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_by', sa.String(120)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('org_id', 'idempotency_key', name='uq_appointments_org_idempotency_key'),
        sa.CheckConstraint('ends_at > starts_at', name='ck_appointments_positive_length'),
    )
    op.create_index(
        'ix_appointments_org_staff_starts_at',
        'appointments',
        ['org_id', 'staff_id', 'starts_at'],
    )

    # Same start for the same staff member can only be taken once
    active = sa.text("status <> 'CANCELLED' AND is_exclusive")
    op.create_index(
        'uq_appointments_active_slot',
        'appointments',
        ['org_id', sa.text("coalesce(staff_id, '')"), 'starts_at'],
        unique=True,
        postgresql_where=active,
        sqlite_where=active,
    )

    # Overlapping intervals for the same staff member, enforced by Postgres itself
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')
        op.execute(
            """
            ALTER TABLE appointments
            ADD CONSTRAINT ex_appointments_no_overlap
            EXCLUDE USING gist (
                org_id WITH =,
                (coalesce(staff_id, '')) WITH =,
                tstzrange(starts_at, ends_at, '[)') WITH &&
            )
            WHERE (status <> 'CANCELLED' AND is_exclusive)
            """
        )


def downgrade() -> None:
    """Downgrade schema."""
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('ALTER TABLE appointments DROP CONSTRAINT IF EXISTS ex_appointments_no_overlap')

    op.drop_index('uq_appointments_active_slot', table_name='appointments')
    op.drop_index('ix_appointments_org_staff_starts_at', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('customers')
    op.drop_table('staff_services')
    op.drop_index('ix_services_org_id', table_name='services')
    op.drop_table('services')
    op.drop_index('ix_staff_schedules_staff_id', table_name='staff_schedules')
    op.drop_table('staff_schedules')
    op.drop_index('ix_staff_members_org_id', table_name='staff_members')
    op.drop_table('staff_members')
    op.drop_table('holidays')
    op.drop_table('opening_hours')
    op.drop_table('organizations')
