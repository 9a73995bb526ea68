"""Service layer modules."""

from slotsync.services.availability_service import (
    get_rules,
    get_rules_or_none,
    initialize_rules,
    upsert_rules,
)
from slotsync.services.calendar_service import (
    ExternalEvent,
    GoogleCalendarClient,
    get_calendar_client,
    store_credentials,
)

__all__ = [
    "get_rules",
    "get_rules_or_none",
    "initialize_rules",
    "upsert_rules",
    "ExternalEvent",
    "GoogleCalendarClient",
    "get_calendar_client",
    "store_credentials",
]
