"""Webhooks router - external calendar push notifications."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from slotsync.core.config import settings
from slotsync.core.deps import get_calendar_factory, get_db
from slotsync.core.rate_limit import limiter
from slotsync.services.webhooks.registry import get_handler

router = APIRouter()


@router.post("/google-calendar")
@limiter.limit(f"{settings.RATE_LIMIT_WEBHOOK}/minute")
async def receive_google_calendar_webhook(
    request: Request,
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """
    Receive a Google Calendar push notification.

    Security:
    - Required X-Goog-* headers (400 when missing)
    - Optional X-Goog-Signature HMAC and channel token (401 on mismatch)

    Processing:
    - Duplicate message numbers are acknowledged without side effects
    - Change notifications pull updated events into the ledger
    """
    handler = get_handler("google_calendar")
    return await handler.handle(request, db, calendar_factory=calendar_factory)
