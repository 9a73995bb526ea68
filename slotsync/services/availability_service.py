"""Availability store - weekly hours, appointment types, blocked intervals and policy.

Rules are mutated only by the owning provider. Reads go through
``get_rules`` which loads the child collections explicitly.
"""

import logging
from datetime import datetime, time, timezone
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session, selectinload

from slotsync.core.errors import NotConfigured, NotFound, ValidationFailed
from slotsync.core.structured_logging import build_log_context
from slotsync.db.models import (
    AppointmentType,
    BlockedInterval,
    ProviderAvailability,
    WeeklyHours,
)
from slotsync.schemas.availability import (
    AppointmentTypeInput,
    AvailabilityUpdate,
    BlockedIntervalCreate,
    WeeklyHoursInput,
)
from slotsync.utils.time_windows import is_valid_timezone, parse_hhmm

logger = logging.getLogger(__name__)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_WEEKLY_HOURS = [
    # Monday-Friday 09:00-17:00 (Sunday=0)
    WeeklyHoursInput(day_of_week=day, start_time="09:00", end_time="17:00")
    for day in range(1, 6)
]

DEFAULT_APPOINTMENT_TYPES = [
    AppointmentTypeInput(name="Consultation", duration_minutes=30, color="#3B82F6",
                         description="Initial consultation"),
    AppointmentTypeInput(name="Cleaning", duration_minutes=45, color="#10B981",
                         description="Routine cleaning"),
    AppointmentTypeInput(name="Root Canal", duration_minutes=90, color="#EF4444",
                         description="Root canal treatment"),
    AppointmentTypeInput(name="Filling", duration_minutes=60, color="#F59E0B",
                         description="Dental filling"),
]

DEFAULT_POLICY = {
    "buffer_time_before": 0,
    "buffer_time_after": 10,
    "min_lead_time_hours": 1,
    "max_advance_booking_days": 90,
    "min_cancellation_notice_hours": 24,
    "min_reschedule_notice_hours": 24,
    "max_appointments_per_day": None,
    "allow_cancellation": True,
    "allow_reschedule": True,
    "weekend_fallback_enabled": True,
}


# =============================================================================
# Validation
# =============================================================================

def _validate_window(start: time, end: time, label: str) -> None:
    if start >= end:
        raise ValidationFailed(f"{label}: start time must be before end time")


def _validate_weekly_hours(entries: list[WeeklyHoursInput]) -> None:
    for entry in entries:
        if not 0 <= entry.day_of_week <= 6:
            raise ValidationFailed("day_of_week must be between 0 and 6")
        _validate_window(
            parse_hhmm(entry.start_time),
            parse_hhmm(entry.end_time),
            f"weekly hours for day {entry.day_of_week}",
        )


def _validate_appointment_types(types: list[AppointmentTypeInput]) -> None:
    names = set()
    for appt_type in types:
        if appt_type.duration_minutes <= 0:
            raise ValidationFailed(f"{appt_type.name}: duration must be positive")
        if appt_type.buffer_before < 0 or appt_type.buffer_after < 0:
            raise ValidationFailed(f"{appt_type.name}: buffers cannot be negative")
        key = appt_type.name.strip().lower()
        if key in names:
            raise ValidationFailed(f"Duplicate appointment type name: {appt_type.name}")
        names.add(key)
        for window in appt_type.time_restrictions:
            _validate_window(
                parse_hhmm(window.start_time),
                parse_hhmm(window.end_time),
                f"{appt_type.name} time restriction",
            )


def _validate_timezone(name: str) -> None:
    if not is_valid_timezone(name):
        raise ValidationFailed(f"Unknown timezone: {name}")


# =============================================================================
# Reads
# =============================================================================

def get_rules_or_none(db: Session, provider_id: UUID) -> ProviderAvailability | None:
    """Load a provider's rules with weekly hours, types and blocked intervals."""
    return (
        db.query(ProviderAvailability)
        .options(
            selectinload(ProviderAvailability.weekly_hours),
            selectinload(ProviderAvailability.appointment_types),
            selectinload(ProviderAvailability.blocked_intervals),
        )
        .filter(ProviderAvailability.provider_id == provider_id)
        .populate_existing()
        .first()
    )


def get_rules(db: Session, provider_id: UUID) -> ProviderAvailability:
    """
    Get a provider's availability rules.

    Raises:
        NotConfigured: Rules were never initialized for this provider.
    """
    rules = get_rules_or_none(db, provider_id)
    if not rules:
        raise NotConfigured(f"Availability not configured for provider {provider_id}")
    return rules


def get_appointment_type(
    rules: ProviderAvailability,
    *,
    type_id: UUID | None = None,
    name: str | None = None,
) -> AppointmentType:
    """
    Resolve an enabled appointment type by id or (case-insensitive) name.

    Falls back to the first enabled type when neither is given.
    """
    enabled = [t for t in rules.appointment_types if t.enabled]
    if type_id is not None:
        match = next((t for t in enabled if t.id == type_id), None)
    elif name:
        match = next((t for t in enabled if t.name.lower() == name.strip().lower()), None)
    else:
        match = enabled[0] if enabled else None
    if not match:
        raise NotFound("Appointment type not found or disabled")
    return match


# =============================================================================
# Writes
# =============================================================================

def _replace_weekly_hours(
    db: Session, rules: ProviderAvailability, entries: list[WeeklyHoursInput]
) -> None:
    db.execute(delete(WeeklyHours).where(WeeklyHours.availability_id == rules.id))
    for position, entry in enumerate(entries):
        db.add(
            WeeklyHours(
                availability_id=rules.id,
                position=position,
                day_of_week=entry.day_of_week,
                start_time=parse_hhmm(entry.start_time),
                end_time=parse_hhmm(entry.end_time),
                enabled=entry.enabled,
            )
        )


def _replace_appointment_types(
    db: Session, rules: ProviderAvailability, types: list[AppointmentTypeInput]
) -> None:
    db.execute(delete(AppointmentType).where(AppointmentType.availability_id == rules.id))
    for position, appt_type in enumerate(types):
        db.add(
            AppointmentType(
                availability_id=rules.id,
                position=position,
                name=appt_type.name.strip(),
                description=appt_type.description,
                color=appt_type.color,
                duration_minutes=appt_type.duration_minutes,
                buffer_before=appt_type.buffer_before,
                buffer_after=appt_type.buffer_after,
                enabled=appt_type.enabled,
                time_restrictions=[
                    {"start_time": w.start_time, "end_time": w.end_time}
                    for w in appt_type.time_restrictions
                ],
            )
        )


def initialize_rules(
    db: Session,
    provider_id: UUID,
    timezone_name: str | None = None,
) -> ProviderAvailability:
    """
    Create the default template for a provider if none exists.

    Idempotent: existing rules are returned untouched.
    """
    existing = get_rules_or_none(db, provider_id)
    if existing:
        return existing

    tz_name = timezone_name or "UTC"
    _validate_timezone(tz_name)

    rules = ProviderAvailability(provider_id=provider_id, timezone=tz_name, **DEFAULT_POLICY)
    db.add(rules)
    db.flush()
    _replace_weekly_hours(db, rules, DEFAULT_WEEKLY_HOURS)
    _replace_appointment_types(db, rules, DEFAULT_APPOINTMENT_TYPES)
    db.commit()

    logger.info(
        "Initialized default availability",
        extra=build_log_context(provider_id=provider_id, action="availability_init"),
    )
    return get_rules(db, provider_id)


def upsert_rules(
    db: Session,
    provider_id: UUID,
    data: AvailabilityUpdate,
) -> ProviderAvailability:
    """
    Partially update a provider's rules, creating defaults first if missing.

    Weekly hours and appointment types are replaced wholesale; policy fields
    merge. Everything is validated before anything is written.
    """
    if data.timezone is not None:
        _validate_timezone(data.timezone)
    if data.weekly_hours is not None:
        _validate_weekly_hours(data.weekly_hours)
    if data.appointment_types is not None:
        _validate_appointment_types(data.appointment_types)

    rules = initialize_rules(db, provider_id)

    if data.timezone is not None:
        rules.timezone = data.timezone
    if data.weekly_hours is not None:
        _replace_weekly_hours(db, rules, data.weekly_hours)
    if data.appointment_types is not None:
        _replace_appointment_types(db, rules, data.appointment_types)
    if data.policy is not None:
        for field, value in data.policy.model_dump(exclude_unset=True).items():
            if value is None and field != "max_appointments_per_day":
                continue
            setattr(rules, field, value)

    rules.updated_at = datetime.now(timezone.utc)
    db.commit()
    return get_rules(db, provider_id)


# =============================================================================
# Blocked Intervals
# =============================================================================

def add_blocked_interval(
    db: Session,
    provider_id: UUID,
    data: BlockedIntervalCreate,
) -> BlockedInterval:
    if data.start_time.tzinfo is None or data.end_time.tzinfo is None:
        raise ValidationFailed("Blocked interval times must include a UTC offset")
    if data.start_time >= data.end_time:
        raise ValidationFailed("Blocked interval start must be before end")

    rules = get_rules(db, provider_id)
    blocked = BlockedInterval(
        availability_id=rules.id,
        start_time=data.start_time,
        end_time=data.end_time,
        reason=data.reason,
        is_recurring=data.is_recurring,
    )
    db.add(blocked)
    db.commit()
    db.refresh(blocked)
    return blocked


def remove_blocked_interval(db: Session, provider_id: UUID, blocked_id: UUID) -> None:
    rules = get_rules(db, provider_id)
    blocked = (
        db.query(BlockedInterval)
        .filter(
            BlockedInterval.id == blocked_id,
            BlockedInterval.availability_id == rules.id,
        )
        .first()
    )
    if not blocked:
        raise NotFound("Blocked interval not found")
    db.delete(blocked)
    db.commit()


def clear_blocked_intervals(db: Session, provider_id: UUID, *, commit: bool = True) -> int:
    """Remove every blocked interval for a provider. Returns the count removed."""
    rules = get_rules_or_none(db, provider_id)
    if not rules:
        return 0
    result = db.execute(
        delete(BlockedInterval).where(BlockedInterval.availability_id == rules.id)
    )
    if commit:
        db.commit()
    return result.rowcount or 0
