"""Booking ledger - appointment lifecycle on top of slot inventory.

Slot: available -> booked (conditional claim) -> available on cancel.
Appointment: scheduled -> cancelled | rescheduled | completed.

Local state is the authority. Each transition commits first and only then
mirrors to Google Calendar; mirror failures leave the appointment
``pending`` for the background reconciler.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session, selectinload

from slotsync.core.async_utils import run_async
from slotsync.core.config import settings
from slotsync.core.errors import (
    InvalidTransition,
    NotFound,
    PolicyViolation,
    SlotUnavailable,
)
from slotsync.core.structured_logging import build_log_context
from slotsync.db.enums import (
    ActorType,
    AppointmentStatus,
    CalendarSyncStatus,
    EventTransparency,
    HistoryAction,
    SlotSource,
)
from slotsync.db.models import Appointment, AppointmentHistory, ProviderAvailability, Slot
from slotsync.schemas.appointment import PatientInfo
from slotsync.schemas.auth import Principal
from slotsync.services import availability_service, calendar_sync_service, notification_service
from slotsync.services.calendar_service import CalendarAdapter, ExternalEvent
from slotsync.utils.time_windows import get_timezone, local_midnight

logger = logging.getLogger(__name__)

CANCELLED_IN_CALENDAR_REASON = "Cancelled in Google Calendar"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Queries
# =============================================================================

def get_appointment_with_slot(db: Session, appointment_id: UUID) -> tuple[Appointment, Slot]:
    """Load an appointment together with the slot it holds."""
    row = (
        db.query(Appointment, Slot)
        .join(Slot, Slot.id == Appointment.slot_id)
        .filter(Appointment.id == appointment_id)
        .first()
    )
    if not row:
        raise NotFound("Appointment not found")
    return row[0], row[1]


def get_appointment_detail(db: Session, appointment_id: UUID) -> Appointment:
    """Appointment with slot and history eagerly loaded."""
    appointment = (
        db.query(Appointment)
        .options(selectinload(Appointment.slot), selectinload(Appointment.history))
        .filter(Appointment.id == appointment_id)
        .populate_existing()
        .first()
    )
    if not appointment:
        raise NotFound("Appointment not found")
    return appointment


def list_appointments(
    db: Session,
    *,
    provider_id: UUID | None = None,
    client_id: UUID | None = None,
    status: AppointmentStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Appointment], int]:
    query = db.query(Appointment).join(Slot, Slot.id == Appointment.slot_id)
    if provider_id:
        query = query.filter(Appointment.provider_id == provider_id)
    if client_id:
        query = query.filter(Appointment.client_id == client_id)
    if status:
        query = query.filter(Appointment.status == status.value)
    if start:
        query = query.filter(Slot.start_time >= start)
    if end:
        query = query.filter(Slot.start_time <= end)

    total = query.count()
    items = query.order_by(Slot.start_time).offset(offset).limit(limit).all()
    return items, total


# =============================================================================
# Helpers
# =============================================================================

def _append_history(
    db: Session,
    appointment: Appointment,
    action: HistoryAction,
    actor: ActorType,
    *,
    actor_id: UUID | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> None:
    db.add(
        AppointmentHistory(
            appointment_id=appointment.id,
            action=action.value,
            performed_by=actor.value,
            performed_by_id=actor_id,
            notes=notes,
            timestamp=now or _utcnow(),
        )
    )


def _claim_slot(db: Session, slot_id: UUID, now: datetime) -> bool:
    """Atomically flip a slot to booked. Only one concurrent caller wins."""
    result = db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.is_available.is_(True))
        .values(is_available=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _leave_scheduled(
    db: Session,
    appointment: Appointment,
    status: AppointmentStatus,
    now: datetime,
    **values,
) -> None:
    """
    Conditionally move a scheduled appointment to ``status``.

    Only one concurrent caller wins; the loser rolls back and gets
    ``InvalidTransition``.
    """
    result = db.execute(
        update(Appointment)
        .where(
            Appointment.id == appointment.id,
            Appointment.status == AppointmentStatus.SCHEDULED.value,
        )
        .values(status=status.value, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransition("Appointment is no longer scheduled")


def _release_slot(db: Session, slot: Slot, now: datetime, *, clear_event: bool) -> None:
    values = {"is_available": True, "updated_at": now}
    if clear_event:
        values["external_event_id"] = None
    db.execute(
        update(Slot)
        .where(Slot.id == slot.id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def _check_bookable(
    db: Session,
    rules: ProviderAvailability,
    slot: Slot,
    now: datetime,
) -> None:
    if slot.start_time < now + timedelta(hours=rules.min_lead_time_hours):
        raise SlotUnavailable(
            f"Slot starts within the {rules.min_lead_time_hours}h minimum lead time"
        )
    if slot.start_time > now + timedelta(days=rules.max_advance_booking_days):
        raise PolicyViolation(
            f"Slot is more than {rules.max_advance_booking_days} days in advance"
        )
    if rules.max_appointments_per_day:
        tz = get_timezone(rules.timezone)
        day = slot.start_time.astimezone(tz).date()
        booked_that_day = (
            db.query(func.count(Appointment.id))
            .join(Slot, Slot.id == Appointment.slot_id)
            .filter(
                Appointment.provider_id == slot.provider_id,
                Appointment.status == AppointmentStatus.SCHEDULED.value,
                Slot.start_time >= local_midnight(day, tz),
                Slot.start_time < local_midnight(day + timedelta(days=1), tz),
            )
            .scalar()
        )
        if booked_that_day >= rules.max_appointments_per_day:
            raise PolicyViolation("Daily appointment limit reached for this provider")


def _check_notice(
    principal: Principal,
    slot: Slot,
    now: datetime,
    *,
    allowed: bool,
    notice_hours: int,
    action: str,
) -> None:
    """Patients must respect the notice window; providers are exempt."""
    if principal.is_provider:
        return
    if not allowed:
        raise PolicyViolation(f"Online {action} is disabled for this provider")
    if slot.start_time - now < timedelta(hours=notice_hours):
        raise PolicyViolation(f"{action.capitalize()} requires at least {notice_hours}h notice")


def _mirror(db: Session, action: str, appointment_id: UUID, factory: Callable) -> None:
    """Run a calendar mirror coroutine from sync code, best-effort."""
    try:
        run_async(factory(), timeout=settings.CALENDAR_TIMEOUT_SECONDS * 3)
    except Exception as e:
        db.rollback()
        logger.warning(
            "Calendar mirror %s did not complete: %s",
            action,
            type(e).__name__,
            extra=build_log_context(appointment_id=appointment_id, action=action),
        )


# =============================================================================
# Transitions
# =============================================================================

def book(
    db: Session,
    slot_id: UUID,
    patient: PatientInfo,
    *,
    principal: Principal | None = None,
    calendar: CalendarAdapter | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Book an available slot.

    Raises:
        SlotUnavailable: Slot missing, already taken, or inside the lead time.
        PolicyViolation: Beyond the advance-booking window or daily limit.
    """
    now = now or _utcnow()
    slot = db.get(Slot, slot_id)
    if not slot or not slot.is_available:
        raise SlotUnavailable("Slot is not available")

    rules = availability_service.get_rules(db, slot.provider_id)
    _check_bookable(db, rules, slot, now)

    if not _claim_slot(db, slot.id, now):
        db.rollback()
        raise SlotUnavailable("Slot was just booked by someone else")

    appointment = Appointment(
        slot_id=slot.id,
        provider_id=slot.provider_id,
        client_id=principal.id if principal and not principal.is_provider else None,
        patient_name=patient.patient_name.strip(),
        patient_email=str(patient.patient_email).lower(),
        patient_phone=patient.patient_phone,
        reason_for_visit=patient.reason_for_visit,
        notes=patient.notes,
        status=AppointmentStatus.SCHEDULED.value,
        calendar_sync_status=CalendarSyncStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    db.add(appointment)
    db.flush()
    _append_history(
        db,
        appointment,
        HistoryAction.CREATED,
        principal.actor_type if principal else ActorType.PATIENT,
        actor_id=principal.id if principal else None,
        notes="Appointment booked",
        now=now,
    )
    db.commit()
    db.refresh(appointment)
    db.refresh(slot)

    logger.info(
        "Appointment booked",
        extra=build_log_context(
            provider_id=slot.provider_id,
            appointment_id=appointment.id,
            slot_id=slot.id,
            action="book",
        ),
    )

    _mirror(
        db,
        "create_event",
        appointment.id,
        lambda: calendar_sync_service.mirror_booking(db, appointment, slot, calendar),
    )
    notification_service.notify(
        "booking_confirmation",
        appointment,
        slot,
        timezone_name=rules.timezone,
        provider_id=slot.provider_id,
    )
    return appointment


def cancel(
    db: Session,
    appointment_id: UUID,
    principal: Principal,
    *,
    reason: str | None = None,
    calendar: CalendarAdapter | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Cancel a scheduled appointment and free its slot.

    Raises:
        InvalidTransition: Appointment is not scheduled.
        PolicyViolation: Patient inside the cancellation notice window,
            or online cancellation disabled.
    """
    now = now or _utcnow()
    appointment, slot = get_appointment_with_slot(db, appointment_id)
    if appointment.status != AppointmentStatus.SCHEDULED.value:
        raise InvalidTransition(f"Cannot cancel a {appointment.status} appointment")

    rules = availability_service.get_rules(db, appointment.provider_id)
    _check_notice(
        principal,
        slot,
        now,
        allowed=rules.allow_cancellation,
        notice_hours=rules.min_cancellation_notice_hours,
        action="cancellation",
    )

    _leave_scheduled(
        db,
        appointment,
        AppointmentStatus.CANCELLED,
        now,
        cancelled_by=principal.actor_type.value,
        cancellation_reason=reason,
        cancelled_at=now,
        calendar_sync_status=CalendarSyncStatus.PENDING.value,
    )
    _append_history(
        db,
        appointment,
        HistoryAction.CANCELLED,
        principal.actor_type,
        actor_id=principal.id,
        notes=reason,
        now=now,
    )
    _release_slot(db, slot, now, clear_event=True)
    db.commit()
    db.refresh(appointment)
    db.refresh(slot)

    logger.info(
        "Appointment cancelled",
        extra=build_log_context(
            provider_id=appointment.provider_id,
            appointment_id=appointment.id,
            slot_id=slot.id,
            action="cancel",
        ),
    )

    _mirror(
        db,
        "delete_event",
        appointment.id,
        lambda: calendar_sync_service.mirror_cancellation(db, appointment, calendar),
    )
    notification_service.notify(
        "cancellation",
        appointment,
        slot,
        timezone_name=rules.timezone,
        provider_id=appointment.provider_id,
    )
    return appointment


def reschedule(
    db: Session,
    appointment_id: UUID,
    new_slot_id: UUID,
    principal: Principal,
    *,
    calendar: CalendarAdapter | None = None,
    now: datetime | None = None,
) -> Appointment:
    """
    Move an appointment to another slot.

    The new slot is claimed and the old one freed in the same transaction,
    so occupancy never shows both slots free. The old appointment becomes
    ``rescheduled`` and a new one is returned.

    Raises:
        InvalidTransition: Appointment is not scheduled.
        PolicyViolation: Patient inside the reschedule notice window.
        SlotUnavailable: New slot missing, taken, or inside the lead time.
    """
    now = now or _utcnow()
    appointment, old_slot = get_appointment_with_slot(db, appointment_id)
    if appointment.status != AppointmentStatus.SCHEDULED.value:
        raise InvalidTransition(f"Cannot reschedule a {appointment.status} appointment")

    rules = availability_service.get_rules(db, appointment.provider_id)
    _check_notice(
        principal,
        old_slot,
        now,
        allowed=rules.allow_reschedule,
        notice_hours=rules.min_reschedule_notice_hours,
        action="reschedule",
    )

    new_slot = db.get(Slot, new_slot_id)
    if (
        not new_slot
        or not new_slot.is_available
        or new_slot.provider_id != appointment.provider_id
    ):
        raise SlotUnavailable("New slot is not available")
    _check_bookable(db, rules, new_slot, now)

    _leave_scheduled(
        db,
        appointment,
        AppointmentStatus.RESCHEDULED,
        now,
        calendar_sync_status=CalendarSyncStatus.PENDING.value,
    )
    if not _claim_slot(db, new_slot.id, now):
        db.rollback()
        raise SlotUnavailable("New slot was just booked by someone else")
    _release_slot(db, old_slot, now, clear_event=False)

    new_appointment = Appointment(
        slot_id=new_slot.id,
        provider_id=appointment.provider_id,
        client_id=appointment.client_id,
        patient_name=appointment.patient_name,
        patient_email=appointment.patient_email,
        patient_phone=appointment.patient_phone,
        reason_for_visit=appointment.reason_for_visit,
        notes=appointment.notes,
        status=AppointmentStatus.SCHEDULED.value,
        calendar_sync_status=CalendarSyncStatus.PENDING.value,
        rescheduled_from_id=appointment.id,
        created_at=now,
        updated_at=now,
    )
    db.add(new_appointment)
    db.flush()

    _append_history(
        db,
        appointment,
        HistoryAction.RESCHEDULED,
        principal.actor_type,
        actor_id=principal.id,
        notes=f"Moved to {new_slot.start_time.isoformat()}",
        now=now,
    )
    _append_history(
        db,
        new_appointment,
        HistoryAction.CREATED,
        principal.actor_type,
        actor_id=principal.id,
        notes=f"Rescheduled from {old_slot.start_time.isoformat()}",
        now=now,
    )
    db.commit()
    for obj in (appointment, new_appointment, old_slot, new_slot):
        db.refresh(obj)

    logger.info(
        "Appointment rescheduled",
        extra=build_log_context(
            provider_id=appointment.provider_id,
            appointment_id=new_appointment.id,
            slot_id=new_slot.id,
            action="reschedule",
        ),
    )

    _mirror(
        db,
        "reschedule_events",
        new_appointment.id,
        lambda: calendar_sync_service.mirror_reschedule(
            db, appointment, old_slot, new_appointment, new_slot, calendar
        ),
    )
    notification_service.notify(
        "reschedule",
        new_appointment,
        new_slot,
        timezone_name=rules.timezone,
        provider_id=appointment.provider_id,
    )
    return new_appointment


def complete(
    db: Session,
    appointment_id: UUID,
    principal: Principal,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Mark a scheduled appointment as completed (providers only)."""
    now = now or _utcnow()
    if not principal.is_provider:
        raise PolicyViolation("Only providers can complete appointments")

    appointment, _ = get_appointment_with_slot(db, appointment_id)
    if appointment.status != AppointmentStatus.SCHEDULED.value:
        raise InvalidTransition(f"Cannot complete a {appointment.status} appointment")

    _leave_scheduled(db, appointment, AppointmentStatus.COMPLETED, now)
    _append_history(
        db,
        appointment,
        HistoryAction.COMPLETED,
        ActorType.PROVIDER,
        actor_id=principal.id,
        notes=notes,
        now=now,
    )
    db.commit()
    db.refresh(appointment)
    return appointment


# =============================================================================
# Internal Sync Path (Google -> ledger)
# =============================================================================

def _active_appointment_for_slot(db: Session, slot_id: UUID) -> Appointment | None:
    return (
        db.query(Appointment)
        .filter(
            Appointment.slot_id == slot_id,
            Appointment.status == AppointmentStatus.SCHEDULED.value,
        )
        .first()
    )


def _apply_cancelled_event(
    db: Session, provider_id: UUID, event: ExternalEvent, now: datetime
) -> str:
    appointment = (
        db.query(Appointment)
        .filter(
            Appointment.provider_id == provider_id,
            Appointment.external_event_id == event.id,
            Appointment.status == AppointmentStatus.SCHEDULED.value,
        )
        .first()
    )
    if appointment:
        appointment.status = AppointmentStatus.CANCELLED.value
        appointment.cancelled_by = ActorType.SYSTEM.value
        appointment.cancellation_reason = CANCELLED_IN_CALENDAR_REASON
        appointment.cancelled_at = now
        appointment.updated_at = now
        appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
        _append_history(
            db,
            appointment,
            HistoryAction.CANCELLED,
            ActorType.SYSTEM,
            notes=CANCELLED_IN_CALENDAR_REASON,
            now=now,
        )
        db.flush()

    slots = (
        db.query(Slot)
        .filter(Slot.provider_id == provider_id, Slot.external_event_id == event.id)
        .all()
    )
    for slot in slots:
        if slot.source == SlotSource.EXTERNAL.value:
            db.delete(slot)
            continue
        if _active_appointment_for_slot(db, slot.id):
            continue
        slot.is_available = True
        slot.external_event_id = None
        slot.updated_at = now

    if appointment:
        return "cancelled_appointment"
    return "released" if slots else "ignored"


def apply_external_event(
    db: Session,
    provider_id: UUID,
    event: ExternalEvent,
    *,
    now: datetime | None = None,
) -> str:
    """
    Fold one Google Calendar change into the ledger.

    - cancelled event: cancels the appointment holding it (as "system"),
      drops busy blocks it created, frees slots it was attached to
    - known event: transparency drives availability of its unbooked slot;
      a moved busy block is removed and re-applied as an unknown event
    - unknown busy event: marks overlapping free slots unavailable, or
      records an external busy slot when nothing overlaps

    Never calls the calendar; the caller commits. Returns an outcome label.
    """
    now = now or _utcnow()

    if event.status == "cancelled":
        return _apply_cancelled_event(db, provider_id, event, now)

    if event.is_all_day or not event.start or not event.end:
        return "ignored"

    slot = (
        db.query(Slot)
        .filter(Slot.provider_id == provider_id, Slot.external_event_id == event.id)
        .first()
    )
    if slot:
        if slot.source != SlotSource.EXTERNAL.value:
            if _active_appointment_for_slot(db, slot.id):
                return "unchanged"
            slot.is_available = event.transparency == EventTransparency.TRANSPARENT.value
            slot.updated_at = now
            return "updated"
        if (slot.start_time, slot.end_time) == (event.start, event.end):
            return "unchanged"
        # Moved in Google: drop the old block and place the event afresh
        db.delete(slot)
        db.flush()

    own = (
        db.query(Appointment.id)
        .filter(Appointment.provider_id == provider_id, Appointment.external_event_id == event.id)
        .first()
    )
    if own:
        return "unchanged"

    if event.transparency == EventTransparency.TRANSPARENT.value:
        return "ignored"

    overlapping = (
        db.query(Slot)
        .filter(
            Slot.provider_id == provider_id,
            Slot.start_time < event.end,
            Slot.end_time > event.start,
        )
        .all()
    )
    if not overlapping:
        db.add(
            Slot(
                provider_id=provider_id,
                start_time=event.start,
                end_time=event.end,
                duration_minutes=int((event.end - event.start).total_seconds() // 60),
                appointment_type_name=(event.summary or "Busy")[:100],
                is_available=False,
                external_event_id=event.id,
                source=SlotSource.EXTERNAL.value,
            )
        )
        return "blocked"

    blocked = 0
    for existing in overlapping:
        if existing.is_available:
            existing.is_available = False
            existing.external_event_id = event.id
            existing.updated_at = now
            blocked += 1
    if not blocked:
        logger.warning(
            "Busy calendar event overlaps booked slots only",
            extra=build_log_context(provider_id=provider_id, action="external_conflict"),
        )
        return "conflict"
    return "blocked"
