"""Google Calendar mirroring for booking transitions, plus drift repair.

Mirror helpers run after the local transition is committed. A calendar
failure leaves the appointment ``pending``; ``reconcile_pending`` retries
from the background worker. Nothing here ever rolls back a booking.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from slotsync.core.errors import CalendarError
from slotsync.core.structured_logging import build_log_context
from slotsync.db.enums import AppointmentStatus, CalendarSyncStatus, EventTransparency
from slotsync.db.models import Appointment, Slot, WebhookChannel
from slotsync.services.calendar_service import CalendarAdapter

logger = logging.getLogger(__name__)


# =============================================================================
# Event Payloads
# =============================================================================

def booked_summary(appointment: Appointment, slot: Slot) -> str:
    return f"{slot.appointment_type_name or 'Appointment'}: {appointment.patient_name}"


def available_summary(slot: Slot) -> str:
    return f"Available: {slot.appointment_type_name or 'Appointment'}"


def booked_description(appointment: Appointment) -> str:
    lines = [
        f"Patient: {appointment.patient_name}",
        f"Email: {appointment.patient_email}",
    ]
    if appointment.patient_phone:
        lines.append(f"Phone: {appointment.patient_phone}")
    if appointment.reason_for_visit:
        lines.append(f"Reason: {appointment.reason_for_visit}")
    return "\n".join(lines)


def _attendees(appointment: Appointment) -> list[str]:
    return [appointment.patient_email]


def _log_failure(action: str, appointment: Appointment, error: Exception) -> None:
    logger.warning(
        "Calendar %s failed, left pending: %s",
        action,
        type(error).__name__,
        extra=build_log_context(
            provider_id=appointment.provider_id,
            appointment_id=appointment.id,
            action=action,
        ),
    )


# =============================================================================
# Mirroring
# =============================================================================

async def _occupy(calendar: CalendarAdapter, appointment: Appointment, slot: Slot) -> str:
    """Make the slot busy in Google: reuse its placeholder event or create one."""
    fields = {
        "summary": booked_summary(appointment, slot),
        "description": booked_description(appointment),
        "transparency": EventTransparency.OPAQUE.value,
        "attendees": [{"email": e} for e in _attendees(appointment)],
    }
    if slot.external_event_id:
        await calendar.patch_event(slot.external_event_id, fields)
        return slot.external_event_id
    return await calendar.create_event(
        slot.start_time,
        slot.end_time,
        summary=fields["summary"],
        description=fields["description"],
        attendee_emails=_attendees(appointment),
    )


async def mirror_booking(
    db: Session,
    appointment: Appointment,
    slot: Slot,
    calendar: CalendarAdapter | None,
) -> bool:
    """Create (or adopt) the busy event for a new booking. Returns True when synced."""
    if calendar is None:
        return False
    try:
        event_id = await _occupy(calendar, appointment, slot)
    except CalendarError as e:
        _log_failure("create_event", appointment, e)
        return False

    appointment.external_event_id = event_id
    appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
    slot.external_event_id = event_id
    db.commit()
    return True


async def mirror_cancellation(
    db: Session,
    appointment: Appointment,
    calendar: CalendarAdapter | None,
) -> bool:
    """Delete the cancelled appointment's event. Returns True when synced."""
    if not appointment.external_event_id:
        appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
        db.commit()
        return True
    if calendar is None:
        return False
    try:
        await calendar.delete_event(appointment.external_event_id)
    except CalendarError as e:
        _log_failure("delete_event", appointment, e)
        return False

    appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
    db.commit()
    return True


async def mirror_release(
    db: Session,
    appointment: Appointment,
    old_slot: Slot,
    calendar: CalendarAdapter | None,
) -> bool:
    """Turn a rescheduled-away slot's event back into a transparent placeholder."""
    event_id = old_slot.external_event_id or appointment.external_event_id
    if not event_id or not old_slot.is_available:
        # Nothing to release, or the slot was re-booked and its event reused
        appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
        db.commit()
        return True
    if calendar is None:
        return False
    try:
        await calendar.patch_event(
            event_id,
            {
                "summary": available_summary(old_slot),
                "description": "",
                "transparency": EventTransparency.TRANSPARENT.value,
                "attendees": [],
            },
        )
    except CalendarError as e:
        _log_failure("release_event", appointment, e)
        return False

    old_slot.external_event_id = event_id
    appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
    db.commit()
    return True


async def mirror_reschedule(
    db: Session,
    old_appointment: Appointment,
    old_slot: Slot,
    new_appointment: Appointment,
    new_slot: Slot,
    calendar: CalendarAdapter | None,
) -> bool:
    """Old event becomes transparent/available, new slot's event becomes busy."""
    released = await mirror_release(db, old_appointment, old_slot, calendar)
    booked = await mirror_booking(db, new_appointment, new_slot, calendar)
    return released and booked


# =============================================================================
# Drift Repair
# =============================================================================

async def reconcile_pending(
    db: Session,
    provider_id: UUID,
    calendar: CalendarAdapter,
    *,
    limit: int = 100,
) -> dict[str, int]:
    """
    Retry mirror operations for a provider's pending appointments.

    Also serves as the backfill after a provider first connects a calendar.
    """
    rows = (
        db.query(Appointment, Slot)
        .join(Slot, Slot.id == Appointment.slot_id)
        .filter(
            Appointment.provider_id == provider_id,
            Appointment.calendar_sync_status == CalendarSyncStatus.PENDING.value,
        )
        .order_by(Appointment.created_at)
        .limit(limit)
        .all()
    )

    repaired = 0
    still_pending = 0
    for appointment, slot in rows:
        status = AppointmentStatus(appointment.status)
        if status == AppointmentStatus.SCHEDULED:
            ok = await mirror_booking(db, appointment, slot, calendar)
        elif status == AppointmentStatus.CANCELLED:
            ok = await mirror_cancellation(db, appointment, calendar)
        elif status == AppointmentStatus.RESCHEDULED:
            ok = await mirror_release(db, appointment, slot, calendar)
        else:
            appointment.calendar_sync_status = CalendarSyncStatus.SYNCED.value
            db.commit()
            ok = True
        if ok:
            repaired += 1
        else:
            still_pending += 1

    if rows:
        logger.info(
            "Reconciled pending appointments: repaired=%d pending=%d",
            repaired,
            still_pending,
            extra=build_log_context(provider_id=provider_id, action="reconcile_pending"),
        )
    return {"repaired": repaired, "still_pending": still_pending}


def providers_with_pending(db: Session) -> list[UUID]:
    rows = (
        db.query(Appointment.provider_id)
        .filter(Appointment.calendar_sync_status == CalendarSyncStatus.PENDING.value)
        .distinct()
        .all()
    )
    return [row[0] for row in rows]


# =============================================================================
# Change Pull
# =============================================================================

async def pull_changes(
    db: Session,
    channel: WebhookChannel,
    calendar: CalendarAdapter,
    *,
    now: datetime | None = None,
) -> int:
    """
    Fetch events changed since the channel's last sync and apply them.

    Uses the booking ledger's internal sync path, so nothing is mirrored
    back to Google. The caller owns the transaction.
    """
    from slotsync.services import booking_service

    now = now or datetime.now(timezone.utc)
    events = await calendar.list_events(updated_min=channel.last_sync_time, show_deleted=True)
    for event in events:
        booking_service.apply_external_event(db, channel.provider_id, event, now=now)
    channel.last_sync_time = now
    return len(events)


async def reconcile_all(
    session_factory: Callable[[], Session],
    calendar_factory: Callable,
) -> dict[str, int]:
    """
    Run ``reconcile_pending`` for every provider with pending appointments.

    Each provider uses its own session; failures are logged and skipped.
    Providers without a connected calendar stay pending.
    """
    with session_factory() as db:
        provider_ids = providers_with_pending(db)

    totals = {"providers": 0, "repaired": 0, "still_pending": 0}
    for provider_id in provider_ids:
        with session_factory() as db:
            calendar = calendar_factory(db, provider_id)
            if calendar is None:
                continue
            totals["providers"] += 1
            try:
                result = await reconcile_pending(db, provider_id, calendar)
            except Exception as e:
                db.rollback()
                logger.error(
                    "Reconcile failed: %s",
                    type(e).__name__,
                    extra=build_log_context(provider_id=provider_id, action="reconcile_pending"),
                )
                continue
        totals["repaired"] += result["repaired"]
        totals["still_pending"] += result["still_pending"]
    return totals
