"""Slot schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SlotGenerateRequest(BaseModel):
    """Generate slots for a date range (inclusive, provider-local dates)."""
    start_date: date
    end_date: date
    appointment_type_id: UUID | None = None
    appointment_type_name: str | None = Field(None, max_length=100)
    include_weekends: bool = False


class ManualSlotCreate(BaseModel):
    start_time: datetime
    end_time: datetime
    appointment_type_name: str | None = Field(None, max_length=100)


class SlotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    provider_id: UUID
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    appointment_type_name: str | None
    is_available: bool
    external_event_id: str | None
    source: str


class SlotGenerateResponse(BaseModel):
    created: int
    slots: list[SlotRead]


class SlotListResponse(BaseModel):
    slots: list[SlotRead]


class TodaySlotsResponse(BaseModel):
    date: date
    has_slots: bool
    total_slots: int
    available_slots: int


class CalendarClearResponse(BaseModel):
    slots_deleted: int
    appointments_deleted: int
    blocked_intervals_deleted: int
    calendar_events_deleted: int
    calendar_events_failed: int
