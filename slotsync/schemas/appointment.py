"""Appointment schemas - Pydantic models for the booking API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from slotsync.schemas.slot import SlotRead


class PatientInfo(BaseModel):
    """Patient details captured at booking time."""
    patient_name: str = Field(..., min_length=1, max_length=255)
    patient_email: EmailStr
    patient_phone: str | None = Field(None, max_length=50)
    reason_for_visit: str | None = Field(None, max_length=2000)
    notes: str | None = Field(None, max_length=2000)


class BookingCreate(PatientInfo):
    slot_id: UUID


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    new_slot_id: UUID


class AppointmentHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    action: str
    performed_by: str
    notes: str | None
    timestamp: datetime


class AppointmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slot_id: UUID
    provider_id: UUID
    client_id: UUID | None
    patient_name: str
    patient_email: str
    patient_phone: str | None
    reason_for_visit: str | None
    notes: str | None
    status: str
    external_event_id: str | None
    calendar_sync_status: str
    rescheduled_from_id: UUID | None
    cancelled_by: str | None
    cancellation_reason: str | None
    cancelled_at: datetime | None
    created_at: datetime


class AppointmentDetailRead(BaseModel):
    appointment: AppointmentRead
    slot: SlotRead
    history: list[AppointmentHistoryRead]


class AppointmentListResponse(BaseModel):
    items: list[AppointmentRead]
    total: int
