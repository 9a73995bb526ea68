"""Patient/provider notification contract.

Delivery (email/SMS) lives in another service. This module formats the
fields that service needs and hands them to a ``NotificationSender``;
the default sender only logs.
"""

import logging
from datetime import datetime
from typing import Protocol
from uuid import UUID

from slotsync.core.structured_logging import build_log_context
from slotsync.utils.time_windows import get_timezone

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    def send(self, template: str, recipient: str, fields: dict) -> None: ...


class LoggingNotificationSender:
    """Records what would be sent, without patient details."""

    def send(self, template: str, recipient: str, fields: dict) -> None:
        logger.info(
            "Notification queued: %s",
            template,
            extra=build_log_context(
                appointment_id=fields.get("appointment_id"), action=f"notify:{template}"
            ),
        )


_sender: NotificationSender = LoggingNotificationSender()


def get_sender() -> NotificationSender:
    return _sender


def set_sender(sender: NotificationSender) -> None:
    global _sender
    _sender = sender


def format_date(value: datetime, timezone_name: str | None) -> str:
    """e.g. "Monday, January 5, 2026" in the provider's timezone."""
    local = value.astimezone(get_timezone(timezone_name))
    return f"{local.strftime('%A, %B')} {local.day}, {local.year}"


def format_time(value: datetime, timezone_name: str | None) -> str:
    """e.g. "9:05 AM" in the provider's timezone."""
    local = value.astimezone(get_timezone(timezone_name))
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


def build_fields(appointment, slot, timezone_name: str | None) -> dict:
    return {
        "appointment_id": str(appointment.id),
        "patient_name": appointment.patient_name,
        "appointment_type": slot.appointment_type_name or "Appointment",
        "date": format_date(slot.start_time, timezone_name),
        "time": format_time(slot.start_time, timezone_name),
        "duration_minutes": slot.duration_minutes,
        "reason_for_visit": appointment.reason_for_visit or "",
    }


def notify(
    template: str,
    appointment,
    slot,
    *,
    timezone_name: str | None,
    provider_id: UUID,
) -> None:
    """
    Send the patient and provider variants of a notification.

    Best-effort: a failing sender is logged and never affects the booking.
    """
    fields = build_fields(appointment, slot, timezone_name)
    sender = get_sender()
    for recipient, variant in (
        (appointment.patient_email, f"patient_{template}"),
        (str(provider_id), f"provider_{template}"),
    ):
        try:
            sender.send(variant, recipient, fields)
        except Exception as e:
            logger.warning(
                "Notification %s failed: %s",
                variant,
                type(e).__name__,
                extra=build_log_context(appointment_id=appointment.id, action="notify"),
            )
