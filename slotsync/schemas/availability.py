"""Availability schemas - weekly hours, appointment types, policy, blocked intervals."""

from datetime import datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


# =============================================================================
# Inputs
# =============================================================================

class WeeklyHoursInput(BaseModel):
    """A single weekly template entry."""
    day_of_week: int = Field(..., ge=0, le=6, description="Sunday=0, Saturday=6")
    start_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:MM format")
    end_time: str = Field(..., pattern=HHMM_PATTERN, description="HH:MM format")
    enabled: bool = True


class TimeRestrictionInput(BaseModel):
    """Window of the day an appointment type may be booked in."""
    start_time: str = Field(..., pattern=HHMM_PATTERN)
    end_time: str = Field(..., pattern=HHMM_PATTERN)


class AppointmentTypeInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    color: str = Field("#3B82F6", max_length=20)
    duration_minutes: int = Field(30, ge=1, le=480)
    buffer_before: int = Field(10, ge=0, le=240)
    buffer_after: int = Field(5, ge=0, le=240)
    enabled: bool = True
    time_restrictions: list[TimeRestrictionInput] = Field(default_factory=list)


class PolicyUpdate(BaseModel):
    """Partial booking policy update; omitted fields keep their value."""
    buffer_time_before: int | None = Field(None, ge=0, le=240)
    buffer_time_after: int | None = Field(None, ge=0, le=240)
    min_lead_time_hours: int | None = Field(None, ge=0, le=24 * 30)
    max_advance_booking_days: int | None = Field(None, ge=1, le=730)
    min_cancellation_notice_hours: int | None = Field(None, ge=0, le=24 * 30)
    min_reschedule_notice_hours: int | None = Field(None, ge=0, le=24 * 30)
    max_appointments_per_day: int | None = Field(None, ge=1, le=200)
    allow_cancellation: bool | None = None
    allow_reschedule: bool | None = None
    weekend_fallback_enabled: bool | None = None


class AvailabilityUpdate(BaseModel):
    """Partial availability upsert. Lists replace, policy merges."""
    timezone: str | None = Field(None, max_length=64)
    weekly_hours: list[WeeklyHoursInput] | None = None
    appointment_types: list[AppointmentTypeInput] | None = None
    policy: PolicyUpdate | None = None


class AvailabilityInitRequest(BaseModel):
    timezone: str = Field("UTC", max_length=64)


class BlockedIntervalCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = Field(None, max_length=255)
    is_recurring: bool = False


# =============================================================================
# Reads
# =============================================================================

class WeeklyHoursRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day_of_week: int
    start_time: time
    end_time: time
    enabled: bool


class AppointmentTypeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None
    color: str
    duration_minutes: int
    buffer_before: int
    buffer_after: int
    enabled: bool
    time_restrictions: list[dict]


class BlockedIntervalRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    start_time: datetime
    end_time: datetime
    reason: str | None
    is_recurring: bool


class PolicyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    buffer_time_before: int
    buffer_time_after: int
    min_lead_time_hours: int
    max_advance_booking_days: int
    min_cancellation_notice_hours: int
    min_reschedule_notice_hours: int
    max_appointments_per_day: int | None
    allow_cancellation: bool
    allow_reschedule: bool
    weekend_fallback_enabled: bool


class AvailabilityRead(BaseModel):
    provider_id: UUID
    timezone: str
    weekly_hours: list[WeeklyHoursRead]
    appointment_types: list[AppointmentTypeRead]
    blocked_intervals: list[BlockedIntervalRead]
    policy: PolicyRead

    @classmethod
    def from_model(cls, rules) -> "AvailabilityRead":
        return cls(
            provider_id=rules.provider_id,
            timezone=rules.timezone,
            weekly_hours=[WeeklyHoursRead.model_validate(w) for w in rules.weekly_hours],
            appointment_types=[
                AppointmentTypeRead.model_validate(t) for t in rules.appointment_types
            ],
            blocked_intervals=[
                BlockedIntervalRead.model_validate(b) for b in rules.blocked_intervals
            ],
            policy=PolicyRead.model_validate(rules),
        )


class ClearedCountResponse(BaseModel):
    removed: int
