"""Pydantic schemas for API request/response models."""

from slotsync.schemas.auth import Principal
from slotsync.schemas.availability import (
    AppointmentTypeInput,
    AvailabilityRead,
    AvailabilityUpdate,
    BlockedIntervalCreate,
    PolicyUpdate,
    WeeklyHoursInput,
)
from slotsync.schemas.slot import (
    ManualSlotCreate,
    SlotGenerateRequest,
    SlotRead,
)
from slotsync.schemas.appointment import (
    AppointmentRead,
    BookingCreate,
    PatientInfo,
)
from slotsync.schemas.calendar import (
    CalendarConnectRequest,
    ChannelHealthRead,
    WebhookChannelRead,
)

__all__ = [
    "Principal",
    "AppointmentTypeInput",
    "AvailabilityRead",
    "AvailabilityUpdate",
    "BlockedIntervalCreate",
    "PolicyUpdate",
    "WeeklyHoursInput",
    "ManualSlotCreate",
    "SlotGenerateRequest",
    "SlotRead",
    "AppointmentRead",
    "BookingCreate",
    "PatientInfo",
    "CalendarConnectRequest",
    "ChannelHealthRead",
    "WebhookChannelRead",
]
