"""Shared test doubles and builders. Imported after conftest configures the environment."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from slotsync.db.enums import EventTransparency
from slotsync.schemas.availability import (
    AppointmentTypeInput,
    AvailabilityUpdate,
    PolicyUpdate,
    TimeRestrictionInput,
)
from slotsync.services import availability_service
from slotsync.services.calendar_service import ExternalEvent, WatchResult


# Monday, 7 January 2030
MONDAY = datetime(2030, 1, 7, tzinfo=timezone.utc)
# A 'now' one week earlier, outside every notice window
WEEK_BEFORE = MONDAY - timedelta(days=7)


def at(day: datetime, hour: int, minute: int = 0) -> datetime:
    return day.replace(hour=hour, minute=minute, second=0, microsecond=0)


def upcoming_monday() -> datetime:
    """Midnight UTC of a Monday 8-14 days from now, for calls that use the real clock."""
    today = datetime.now(timezone.utc)
    return at(today + timedelta(days=14 - today.weekday()), 0)


@dataclass
class FakeCalendar:
    """In-memory CalendarAdapter that records every call."""
    calendar_id: str = "primary"
    fail_with: Exception | None = None
    events: list[ExternalEvent] = field(default_factory=list)
    created: list[dict] = field(default_factory=list)
    patched: list[tuple[str, dict]] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    watched: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    counter: int = 0

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def create_event(
        self,
        start,
        end,
        *,
        summary,
        description=None,
        attendee_emails=None,
        transparency=EventTransparency.OPAQUE.value,
    ) -> str:
        self._maybe_fail()
        self.counter += 1
        event_id = f"evt-{self.counter}"
        self.created.append(
            {
                "id": event_id,
                "start": start,
                "end": end,
                "summary": summary,
                "attendees": attendee_emails or [],
                "transparency": transparency,
            }
        )
        return event_id

    async def patch_event(self, event_id: str, fields: dict) -> None:
        self._maybe_fail()
        self.patched.append((event_id, fields))

    async def delete_event(self, event_id: str) -> None:
        self._maybe_fail()
        self.deleted.append(event_id)

    async def list_events(self, *, updated_min=None, time_min=None, time_max=None, show_deleted=True):
        self._maybe_fail()
        return list(self.events)

    async def watch(self, channel_id: str, address: str, token: str, expiration: datetime) -> WatchResult:
        self._maybe_fail()
        self.watched.append(channel_id)
        return WatchResult(resource_id=f"res-{channel_id}", expiration=expiration)

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        self.stopped.append(channel_id)


def configure_availability(
    db: Session,
    provider_id: uuid.UUID,
    *,
    duration: int = 30,
    buffer_before: int = 0,
    buffer_after: int = 0,
    timezone_name: str = "UTC",
    weekly_hours: list | None = None,
    time_restrictions: list[tuple[str, str]] | None = None,
    **policy,
):
    """Rules with a single 'Consultation' type; zero buffers unless given."""
    availability_service.initialize_rules(db, provider_id, timezone_name)
    policy.setdefault("buffer_time_before", buffer_before)
    policy.setdefault("buffer_time_after", buffer_after)
    return availability_service.upsert_rules(
        db,
        provider_id,
        AvailabilityUpdate(
            weekly_hours=weekly_hours,
            appointment_types=[
                AppointmentTypeInput(
                    name="Consultation",
                    duration_minutes=duration,
                    buffer_before=buffer_before,
                    buffer_after=buffer_after,
                    time_restrictions=[
                        TimeRestrictionInput(start_time=s, end_time=e)
                        for s, e in (time_restrictions or [])
                    ],
                )
            ],
            policy=PolicyUpdate(**policy),
        ),
    )
