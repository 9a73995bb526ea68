"""Baseline: availability, slots, appointments, calendar sync tables.

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates:
- provider_availability, weekly_hours, appointment_types, blocked_intervals
- slots, appointments, appointment_history
- calendar_credentials, webhook_channels, webhook_receipts
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_baseline'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Availability
    # ==========================================================================
    op.create_table(
        'provider_availability',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False),
        sa.Column('buffer_time_before', sa.Integer(), nullable=False),
        sa.Column('buffer_time_after', sa.Integer(), nullable=False),
        sa.Column('min_lead_time_hours', sa.Integer(), nullable=False),
        sa.Column('max_advance_booking_days', sa.Integer(), nullable=False),
        sa.Column('min_cancellation_notice_hours', sa.Integer(), nullable=False),
        sa.Column('min_reschedule_notice_hours', sa.Integer(), nullable=False),
        sa.Column('max_appointments_per_day', sa.Integer(), nullable=True),
        sa.Column('allow_cancellation', sa.Boolean(), nullable=False),
        sa.Column('allow_reschedule', sa.Boolean(), nullable=False),
        sa.Column('weekend_fallback_enabled', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_id'),
        sa.CheckConstraint('buffer_time_before >= 0', name='ck_policy_buffer_before'),
        sa.CheckConstraint('buffer_time_after >= 0', name='ck_policy_buffer_after'),
    )

    op.create_table(
        'weekly_hours',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('availability_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['availability_id'], ['provider_availability.id'], ondelete='CASCADE'),
        sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_valid_day_of_week'),
    )
    op.create_index('idx_weekly_hours_availability', 'weekly_hours', ['availability_id'])

    op.create_table(
        'appointment_types',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('availability_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('color', sa.String(20), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_before', sa.Integer(), nullable=False),
        sa.Column('buffer_after', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('time_restrictions', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['availability_id'], ['provider_availability.id'], ondelete='CASCADE'),
        sa.CheckConstraint('duration_minutes > 0', name='ck_appointment_type_duration'),
    )
    op.create_index('idx_appointment_types_availability', 'appointment_types', ['availability_id'])

    op.create_table(
        'blocked_intervals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('availability_id', sa.Uuid(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['availability_id'], ['provider_availability.id'], ondelete='CASCADE'),
        sa.CheckConstraint('start_time < end_time', name='ck_blocked_interval_range'),
    )
    op.create_index('idx_blocked_intervals_availability', 'blocked_intervals', ['availability_id'])

    # ==========================================================================
    # Slots & Appointments
    # ==========================================================================
    op.create_table(
        'slots',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('appointment_type_name', sa.String(100), nullable=True),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('external_event_id', sa.String(255), nullable=True),
        sa.Column('source', sa.String(20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_id', 'start_time', name='uq_slot_provider_start'),
        sa.CheckConstraint('start_time < end_time', name='ck_slot_range'),
    )
    op.create_index(
        'idx_slots_provider_available', 'slots', ['provider_id', 'is_available', 'start_time']
    )
    op.create_index('idx_slots_external_event', 'slots', ['provider_id', 'external_event_id'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('slot_id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.Uuid(), nullable=True),
        sa.Column('patient_name', sa.String(255), nullable=False),
        sa.Column('patient_email', sa.String(320), nullable=False),
        sa.Column('patient_phone', sa.String(50), nullable=True),
        sa.Column('reason_for_visit', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('external_event_id', sa.String(255), nullable=True),
        sa.Column('calendar_sync_status', sa.String(20), nullable=False),
        sa.Column('rescheduled_from_id', sa.Uuid(), nullable=True),
        sa.Column('cancelled_by', sa.String(20), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['slot_id'], ['slots.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['rescheduled_from_id'], ['appointments.id'], ondelete='SET NULL'),
    )
    op.create_index('idx_appointments_provider_status', 'appointments', ['provider_id', 'status'])
    op.create_index('idx_appointments_client', 'appointments', ['client_id'])
    op.create_index('idx_appointments_slot', 'appointments', ['slot_id'])
    op.create_index('idx_appointments_sync_status', 'appointments', ['calendar_sync_status'])

    op.create_table(
        'appointment_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('appointment_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('performed_by', sa.String(20), nullable=False),
        sa.Column('performed_by_id', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
    )
    op.create_index(
        'idx_appointment_history_appointment', 'appointment_history', ['appointment_id']
    )

    # ==========================================================================
    # Google Calendar
    # ==========================================================================
    op.create_table(
        'calendar_credentials',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('calendar_id', sa.String(255), nullable=False),
        sa.Column('account_email', sa.String(320), nullable=True),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_id'),
    )

    op.create_table(
        'webhook_channels',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('channel_id', sa.String(255), nullable=False),
        sa.Column('resource_id', sa.String(255), nullable=False),
        sa.Column('channel_token', sa.String(255), nullable=False),
        sa.Column('calendar_id', sa.String(255), nullable=False),
        sa.Column('expiration_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_sync_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_id'),
        sa.UniqueConstraint('channel_id'),
    )

    op.create_table(
        'webhook_receipts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('channel_id', sa.String(255), nullable=False),
        sa.Column('message_number', sa.String(64), nullable=False),
        sa.Column('resource_state', sa.String(32), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('channel_id', 'message_number', name='uq_webhook_receipt_message'),
    )


def downgrade() -> None:
    op.drop_table('webhook_receipts')
    op.drop_table('webhook_channels')
    op.drop_table('calendar_credentials')
    op.drop_index('idx_appointment_history_appointment', table_name='appointment_history')
    op.drop_table('appointment_history')
    op.drop_index('idx_appointments_sync_status', table_name='appointments')
    op.drop_index('idx_appointments_slot', table_name='appointments')
    op.drop_index('idx_appointments_client', table_name='appointments')
    op.drop_index('idx_appointments_provider_status', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('idx_slots_external_event', table_name='slots')
    op.drop_index('idx_slots_provider_available', table_name='slots')
    op.drop_table('slots')
    op.drop_index('idx_blocked_intervals_availability', table_name='blocked_intervals')
    op.drop_table('blocked_intervals')
    op.drop_index('idx_appointment_types_availability', table_name='appointment_types')
    op.drop_table('appointment_types')
    op.drop_index('idx_weekly_hours_availability', table_name='weekly_hours')
    op.drop_table('weekly_hours')
    op.drop_table('provider_availability')
