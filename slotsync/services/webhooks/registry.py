"""Webhook handler registry."""

from __future__ import annotations

from slotsync.services.webhooks.base import WebhookHandler
from slotsync.services.webhooks.google_calendar import GoogleCalendarWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "google_calendar": GoogleCalendarWebhookHandler(),
}


def get_handler(name: str):
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
