"""SQLAlchemy ORM models.

Relationships are declared ``lazy="raise"``: services load related rows
explicitly (``selectinload`` / joins) instead of traversing lazily.
"""

from __future__ import annotations

import uuid
from datetime import datetime, time, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from slotsync.db.base import Base
from slotsync.db.enums import (
    AppointmentStatus,
    CalendarSyncStatus,
    SlotSource,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Availability
# =============================================================================

class ProviderAvailability(Base):
    """
    A provider's availability rules and booking policy.

    Weekly hours and time restrictions are wall-clock times in ``timezone``.
    Created on first calendar connection (or explicit initialization) with
    a default template.
    """

    __tablename__ = "provider_availability"
    __table_args__ = (
        CheckConstraint("buffer_time_before >= 0", name="ck_policy_buffer_before"),
        CheckConstraint("buffer_time_after >= 0", name="ck_policy_buffer_after"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)

    # Policy
    buffer_time_before: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    buffer_time_after: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    min_lead_time_hours: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_advance_booking_days: Mapped[int] = mapped_column(Integer, default=90, nullable=False)
    min_cancellation_notice_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    min_reschedule_notice_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    max_appointments_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    allow_cancellation: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    allow_reschedule: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Weekend days requested without their own hours borrow the first enabled entry
    weekend_fallback_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    weekly_hours: Mapped[list["WeeklyHours"]] = relationship(
        lazy="raise", order_by="WeeklyHours.position", viewonly=True
    )
    appointment_types: Mapped[list["AppointmentType"]] = relationship(
        lazy="raise", order_by="AppointmentType.position", viewonly=True
    )
    blocked_intervals: Mapped[list["BlockedInterval"]] = relationship(
        lazy="raise", order_by="BlockedInterval.start_time", viewonly=True
    )


class WeeklyHours(Base):
    """
    Weekly template entry (e.g., "Monday 09:00-17:00").

    Day of week: Sunday=0 ... Saturday=6.
    """

    __tablename__ = "weekly_hours"
    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_valid_day_of_week"),
        Index("idx_weekly_hours_availability", "availability_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    availability_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("provider_availability.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class AppointmentType(Base):
    """
    Appointment type (e.g., "Consultation", 30 minutes).

    ``time_restrictions`` is a list of ``{"start_time": "HH:MM", "end_time": "HH:MM"}``
    windows; when empty the type can be booked across the whole day.
    """

    __tablename__ = "appointment_types"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_appointment_type_duration"),
        Index("idx_appointment_types_availability", "availability_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    availability_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("provider_availability.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(String(20), default="#3B82F6", nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    buffer_before: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    buffer_after: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    time_restrictions: Mapped[list[dict]] = mapped_column(JSON, default=list, nullable=False)


class BlockedInterval(Base):
    """
    Provider-declared unavailable range (holiday, lunch, vacation).

    Recurring intervals repeat weekly on the same weekday and wall-clock time.
    """

    __tablename__ = "blocked_intervals"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_blocked_interval_range"),
        Index("idx_blocked_intervals_availability", "availability_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    availability_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("provider_availability.id", ondelete="CASCADE"), nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


# =============================================================================
# Slots & Appointments
# =============================================================================

class Slot(Base):
    """
    A discrete bookable interval for one provider.

    ``is_available`` is only flipped by the booking ledger, through a
    conditional UPDATE so concurrent claims serialize on the row.
    """

    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("provider_id", "start_time", name="uq_slot_provider_start"),
        Index("idx_slots_provider_available", "provider_id", "is_available", "start_time"),
        Index("idx_slots_external_event", "provider_id", "external_event_id"),
        CheckConstraint("start_time < end_time", name="ck_slot_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    appointment_type_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    external_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(
        String(20), default=SlotSource.GENERATED.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)


class Appointment(Base):
    """
    A patient's claim on a slot.

    Rescheduling never moves an appointment: the old row becomes
    ``rescheduled`` and a new row points back at it via ``rescheduled_from_id``.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_provider_status", "provider_id", "status"),
        Index("idx_appointments_client", "client_id"),
        Index("idx_appointments_slot", "slot_id"),
        Index("idx_appointments_sync_status", "calendar_sync_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("slots.id", ondelete="RESTRICT"), nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    client_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Patient details
    patient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    patient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    patient_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reason_for_visit: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=AppointmentStatus.SCHEDULED.value, nullable=False
    )

    # Google Calendar mirror
    external_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    calendar_sync_status: Mapped[str] = mapped_column(
        String(20), default=CalendarSyncStatus.PENDING.value, nullable=False
    )

    rescheduled_from_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="SET NULL"), nullable=True
    )

    # Cancellation
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    slot: Mapped["Slot"] = relationship(lazy="raise")
    history: Mapped[list["AppointmentHistory"]] = relationship(
        lazy="raise", order_by="AppointmentHistory.timestamp", viewonly=True
    )


class AppointmentHistory(Base):
    """Append-only audit log of appointment transitions."""

    __tablename__ = "appointment_history"
    __table_args__ = (Index("idx_appointment_history_appointment", "appointment_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("appointments.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


# =============================================================================
# Google Calendar
# =============================================================================

class CalendarCredential(Base):
    """Encrypted Google OAuth tokens for a provider's calendar."""

    __tablename__ = "calendar_credentials"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), default="primary", nullable=False)
    account_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)


class WebhookChannel(Base):
    """
    Active push-notification channel for a provider's calendar.

    One per provider; renewal replaces the row and stops the old channel.
    """

    __tablename__ = "webhook_channels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    channel_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    channel_token: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), default="primary", nullable=False)
    expiration_time: Mapped[datetime] = mapped_column(nullable=False)
    last_sync_time: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)


class WebhookReceipt(Base):
    """Processed notification keys; the unique pair makes redelivery a no-op."""

    __tablename__ = "webhook_receipts"
    __table_args__ = (
        UniqueConstraint("channel_id", "message_number", name="uq_webhook_receipt_message"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False)
    message_number: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_state: Mapped[str] = mapped_column(String(32), nullable=False)
    received_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
