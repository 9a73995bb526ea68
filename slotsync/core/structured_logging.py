"""Structured logging helpers (PHI-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    provider_id: UUID | str | None = None,
    appointment_id: UUID | str | None = None,
    slot_id: UUID | str | None = None,
    channel_id: str | None = None,
    action: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict carrying identifiers only, never patient fields."""
    context: dict[str, Any] = {}
    if provider_id:
        context["provider_id"] = str(provider_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if slot_id:
        context["slot_id"] = str(slot_id)
    if channel_id:
        context["channel_id"] = channel_id
    if action:
        context["action"] = action
    return context
