"""Slot generation and slot inventory.

``compute_candidate_slots`` is the pure generation algorithm; everything
else persists or queries ``Slot`` rows.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotsync.core.errors import CalendarError, SlotOverlap, ValidationFailed
from slotsync.core.structured_logging import build_log_context
from slotsync.db.enums import WEEKEND_DAYS, SlotSource
from slotsync.db.models import (
    Appointment,
    AppointmentHistory,
    AppointmentType,
    BlockedInterval,
    ProviderAvailability,
    Slot,
)
from slotsync.services import availability_service
from slotsync.utils.time_windows import (
    at_local,
    get_timezone,
    iter_days,
    local_midnight,
    overlaps,
    parse_hhmm,
    round_up_from,
    sunday_weekday,
)

logger = logging.getLogger(__name__)

MAX_GENERATION_DAYS = 366
AVAILABLE_SLOTS_LIMIT = 100
DEFAULT_LISTING_DAYS = 30


class TimeSlot(NamedTuple):
    """A candidate time interval [start, end) in UTC."""
    start: datetime
    end: datetime


# =============================================================================
# Generation Algorithm
# =============================================================================

def _step_gap(appointment_type: AppointmentType) -> timedelta:
    """Gap between consecutive candidates: the type's own buffers only."""
    return timedelta(
        minutes=(appointment_type.buffer_before or 0) + (appointment_type.buffer_after or 0)
    )


def _blocked_for_day(
    blocked: Sequence[BlockedInterval], day: date, tz: ZoneInfo
) -> list[TimeSlot]:
    """
    Blocked ranges that can touch ``day``.

    One-off intervals are returned as-is; recurring ones are projected onto
    this day (and the previous one, for ranges spanning midnight) when the
    provider-local weekday matches and the first occurrence has started.
    """
    windows: list[TimeSlot] = []
    for interval in blocked:
        if not interval.is_recurring:
            windows.append(TimeSlot(interval.start_time, interval.end_time))
            continue
        local_start = interval.start_time.astimezone(tz)
        length = interval.end_time - interval.start_time
        for candidate_day in (day, day - timedelta(days=1)):
            if candidate_day < local_start.date():
                continue
            if sunday_weekday(candidate_day) != sunday_weekday(local_start.date()):
                continue
            start = at_local(candidate_day, local_start.time().replace(tzinfo=None), tz)
            windows.append(TimeSlot(start, start + length))
    return windows


def _day_windows(
    day_start: datetime,
    day_end: datetime,
    day: date,
    tz: ZoneInfo,
    appointment_type: AppointmentType,
) -> list[TimeSlot]:
    """Intersect the day's effective range with the type's time restrictions."""
    restrictions = appointment_type.time_restrictions or []
    if not restrictions:
        return [TimeSlot(day_start, day_end)]

    windows = []
    for restriction in restrictions:
        start = max(day_start, at_local(day, parse_hhmm(restriction["start_time"]), tz))
        end = min(day_end, at_local(day, parse_hhmm(restriction["end_time"]), tz))
        if start < end:
            windows.append(TimeSlot(start, end))
    return sorted(windows)


def _conflicts(candidate: TimeSlot, taken: Sequence[TimeSlot]) -> bool:
    return any(overlaps(candidate.start, candidate.end, t.start, t.end) for t in taken)


def compute_candidate_slots(
    rules: ProviderAvailability,
    appointment_type: AppointmentType,
    range_start: date,
    range_end: date,
    *,
    include_weekends: bool = False,
    now: datetime | None = None,
    existing: Sequence[TimeSlot] = (),
) -> list[TimeSlot]:
    """
    Turn weekly availability into bookable intervals for a date range.

    Days are provider-local and inclusive on both ends. For each day:

    - past days are skipped
    - weekends (Sunday/Saturday) are skipped unless ``include_weekends``;
      a requested weekend day with no hours of its own borrows the first
      enabled weekly entry when ``weekend_fallback_enabled`` is set
    - on today, once the template start has passed, the start moves to
      ``now + min_lead_time_hours`` rounded up to a multiple of the duration
      counted from local midnight
    - slots step by the duration plus the type's ``buffer_before`` and
      ``buffer_after`` inside each time-restriction window (or the whole day
      when there are none)
    - candidates overlapping a blocked interval, an existing slot, or an
      earlier candidate are discarded

    Returns chronologically ordered ``TimeSlot`` values in UTC.
    """
    now = now or datetime.now(timezone.utc)
    tz = get_timezone(rules.timezone)
    today = now.astimezone(tz).date()
    duration = timedelta(minutes=appointment_type.duration_minutes)
    step_gap = _step_gap(appointment_type)
    lead = timedelta(hours=rules.min_lead_time_hours)

    enabled_hours = [h for h in rules.weekly_hours if h.enabled]
    fallback = enabled_hours[0] if enabled_hours else None

    accepted: list[TimeSlot] = []
    for day in iter_days(range_start, range_end):
        if day < today:
            continue

        dow = sunday_weekday(day)
        is_weekend = dow in WEEKEND_DAYS
        if is_weekend and not include_weekends:
            continue

        entries = [h for h in enabled_hours if h.day_of_week == dow]
        if not entries:
            if is_weekend and rules.weekend_fallback_enabled and fallback is not None:
                entries = [fallback]
            else:
                continue

        blocked = _blocked_for_day(rules.blocked_intervals, day, tz)

        for entry in entries:
            day_start = at_local(day, entry.start_time, tz)
            day_end = at_local(day, entry.end_time, tz)

            if day == today and day_start < now:
                earliest = round_up_from(
                    local_midnight(day, tz), now + lead, appointment_type.duration_minutes
                )
                if earliest > day_start:
                    day_start = earliest
                if day_start >= day_end:
                    continue

            for window in _day_windows(day_start, day_end, day, tz, appointment_type):
                cursor = window.start
                while cursor + duration <= window.end:
                    candidate = TimeSlot(cursor, cursor + duration)
                    if not (
                        _conflicts(candidate, blocked)
                        or _conflicts(candidate, existing)
                        or _conflicts(candidate, accepted)
                    ):
                        accepted.append(candidate)
                    cursor = candidate.end + step_gap

    return sorted(accepted)


# =============================================================================
# Persistence
# =============================================================================

def _existing_slots(
    db: Session, provider_id: UUID, start: datetime, end: datetime
) -> list[TimeSlot]:
    rows = db.execute(
        select(Slot.start_time, Slot.end_time).where(
            Slot.provider_id == provider_id,
            Slot.start_time < end,
            Slot.end_time > start,
        )
    ).all()
    return [TimeSlot(row.start_time, row.end_time) for row in rows]


def generate_slots(
    db: Session,
    provider_id: UUID,
    start_date: date,
    end_date: date,
    *,
    appointment_type_id: UUID | None = None,
    appointment_type_name: str | None = None,
    include_weekends: bool = False,
    now: datetime | None = None,
) -> list[Slot]:
    """
    Generate and persist available slots for a provider.

    Idempotent: intervals that overlap slots already stored are skipped, so
    re-running over the same range creates nothing.
    """
    if end_date < start_date:
        raise ValidationFailed("end_date must not be before start_date")
    if (end_date - start_date).days >= MAX_GENERATION_DAYS:
        raise ValidationFailed(f"Date range cannot exceed {MAX_GENERATION_DAYS} days")

    now = now or datetime.now(timezone.utc)
    rules = availability_service.get_rules(db, provider_id)
    appointment_type = availability_service.get_appointment_type(
        rules, type_id=appointment_type_id, name=appointment_type_name
    )
    tz = get_timezone(rules.timezone)
    window_start = local_midnight(start_date, tz) - timedelta(days=1)
    window_end = local_midnight(end_date, tz) + timedelta(days=2)

    # A concurrent run can insert the same start first; retry once against
    # the refreshed inventory.
    for attempt in range(2):
        existing = _existing_slots(db, provider_id, window_start, window_end)
        candidates = compute_candidate_slots(
            rules,
            appointment_type,
            start_date,
            end_date,
            include_weekends=include_weekends,
            now=now,
            existing=existing,
        )
        slots = [
            Slot(
                provider_id=provider_id,
                start_time=c.start,
                end_time=c.end,
                duration_minutes=appointment_type.duration_minutes,
                appointment_type_name=appointment_type.name,
                is_available=True,
                source=SlotSource.GENERATED.value,
            )
            for c in candidates
        ]
        db.add_all(slots)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if attempt:
                raise
            rules = availability_service.get_rules(db, provider_id)
            appointment_type = availability_service.get_appointment_type(
                rules, type_id=appointment_type.id
            )
            continue
        break

    logger.info(
        "Generated %d slots (%s to %s)",
        len(slots),
        start_date,
        end_date,
        extra=build_log_context(provider_id=provider_id, action="generate_slots"),
    )
    return slots


def list_available_slots(
    db: Session,
    provider_id: UUID,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    appointment_type_name: str | None = None,
    now: datetime | None = None,
    limit: int = AVAILABLE_SLOTS_LIMIT,
) -> list[Slot]:
    """
    Bookable slots, clamped to the lead-time and advance-booking window.

    Defaults to the next 30 days.
    """
    now = now or datetime.now(timezone.utc)
    rules = availability_service.get_rules(db, provider_id)

    earliest = now + timedelta(hours=rules.min_lead_time_hours)
    latest = now + timedelta(days=rules.max_advance_booking_days)
    range_start = max(start, earliest) if start else earliest
    range_end = min(end, latest) if end else min(now + timedelta(days=DEFAULT_LISTING_DAYS), latest)
    if range_start > range_end:
        return []

    query = db.query(Slot).filter(
        Slot.provider_id == provider_id,
        Slot.is_available.is_(True),
        Slot.start_time >= range_start,
        Slot.start_time <= range_end,
    )
    if appointment_type_name:
        query = query.filter(
            func.lower(Slot.appointment_type_name) == appointment_type_name.strip().lower()
        )
    return query.order_by(Slot.start_time).limit(min(limit, AVAILABLE_SLOTS_LIMIT)).all()


def create_manual_slot(
    db: Session,
    provider_id: UUID,
    start_time: datetime,
    end_time: datetime,
    appointment_type_name: str | None = None,
) -> Slot:
    """Add a one-off available slot. Overlapping an existing slot is rejected."""
    if start_time.tzinfo is None or end_time.tzinfo is None:
        raise ValidationFailed("Slot times must include a UTC offset")
    if start_time >= end_time:
        raise ValidationFailed("Slot start must be before end")

    availability_service.get_rules(db, provider_id)

    if _existing_slots(db, provider_id, start_time, end_time):
        raise SlotOverlap("Slot overlaps an existing slot")

    slot = Slot(
        provider_id=provider_id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=int((end_time - start_time).total_seconds() // 60),
        appointment_type_name=appointment_type_name,
        is_available=True,
        source=SlotSource.MANUAL.value,
    )
    db.add(slot)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise SlotOverlap("Slot overlaps an existing slot")
    db.refresh(slot)
    return slot


def get_day_summary(
    db: Session,
    provider_id: UUID,
    day: date | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """Slot counts for one provider-local day (defaults to today)."""
    now = now or datetime.now(timezone.utc)
    rules = availability_service.get_rules(db, provider_id)
    tz = get_timezone(rules.timezone)
    day = day or now.astimezone(tz).date()
    day_start = local_midnight(day, tz)
    day_end = local_midnight(day + timedelta(days=1), tz)

    base = select(func.count(Slot.id)).where(
        Slot.provider_id == provider_id,
        Slot.start_time >= day_start,
        Slot.start_time < day_end,
    )
    total = db.execute(base).scalar_one()
    available = db.execute(base.where(Slot.is_available.is_(True))).scalar_one()
    return {
        "date": day,
        "has_slots": total > 0,
        "total_slots": total,
        "available_slots": available,
    }


async def clear_provider_calendar(
    db: Session,
    provider_id: UUID,
    *,
    calendar=None,
) -> dict:
    """
    Remove every slot, appointment and blocked interval for a provider.

    Mirrored Google events are deleted first, best-effort; local rows are
    removed regardless of calendar failures.
    """
    event_ids: set[str] = set()
    for (event_id,) in db.query(Appointment.external_event_id).filter(
        Appointment.provider_id == provider_id,
        Appointment.external_event_id.isnot(None),
    ):
        event_ids.add(event_id)
    for (event_id,) in db.query(Slot.external_event_id).filter(
        Slot.provider_id == provider_id,
        Slot.external_event_id.isnot(None),
        Slot.source != SlotSource.EXTERNAL.value,
    ):
        event_ids.add(event_id)

    deleted_events = 0
    failed_events = 0
    if calendar is not None:
        for event_id in sorted(event_ids):
            try:
                await calendar.delete_event(event_id)
                deleted_events += 1
            except CalendarError as e:
                failed_events += 1
                logger.warning(
                    "Failed to delete calendar event during clear: %s",
                    type(e).__name__,
                    extra=build_log_context(provider_id=provider_id, action="clear_calendar"),
                )

    appointment_ids = select(Appointment.id).where(Appointment.provider_id == provider_id)
    db.execute(
        delete(AppointmentHistory).where(AppointmentHistory.appointment_id.in_(appointment_ids))
    )
    db.query(Appointment).filter(Appointment.provider_id == provider_id).update(
        {Appointment.rescheduled_from_id: None}, synchronize_session=False
    )
    appointments_deleted = db.execute(
        delete(Appointment).where(Appointment.provider_id == provider_id)
    ).rowcount or 0
    slots_deleted = db.execute(delete(Slot).where(Slot.provider_id == provider_id)).rowcount or 0
    blocked_deleted = availability_service.clear_blocked_intervals(db, provider_id, commit=False)
    db.commit()

    logger.info(
        "Cleared provider calendar: %d slots, %d appointments, %d blocked intervals",
        slots_deleted,
        appointments_deleted,
        blocked_deleted,
        extra=build_log_context(provider_id=provider_id, action="clear_calendar"),
    )
    return {
        "slots_deleted": slots_deleted,
        "appointments_deleted": appointments_deleted,
        "blocked_intervals_deleted": blocked_deleted,
        "calendar_events_deleted": deleted_events,
        "calendar_events_failed": failed_events,
    }
