"""Enumerations for appointment, slot and principal state."""

from enum import Enum


class Role(str, Enum):
    """Principal roles issued by the auth service."""
    PROVIDER = "provider"
    PATIENT = "patient"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle. Everything except SCHEDULED is terminal."""
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"


class SlotSource(str, Enum):
    """How a slot came to exist."""
    GENERATED = "generated"
    MANUAL = "manual"
    EXTERNAL = "external"  # Busy block created by a Google Calendar event


class CalendarSyncStatus(str, Enum):
    """Whether the appointment's Google Calendar mirror is up to date."""
    SYNCED = "synced"
    PENDING = "pending"


class HistoryAction(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    SYNCED = "synced"


class ActorType(str, Enum):
    """Who performed an appointment transition."""
    PROVIDER = "provider"
    PATIENT = "patient"
    SYSTEM = "system"  # Reconciliation from Google Calendar


class EventTransparency(str, Enum):
    """Google Calendar free/busy marker."""
    OPAQUE = "opaque"
    TRANSPARENT = "transparent"


class ChannelRenewalOutcome(str, Enum):
    RENEWED = "renewed"
    FRESH = "fresh"
    FAILED = "failed"


# Day-of-week convention used by weekly hours: 0 = Sunday ... 6 = Saturday
WEEKEND_DAYS = frozenset({0, 6})
