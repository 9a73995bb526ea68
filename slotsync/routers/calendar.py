"""Calendar router - Google credentials and push-channel lifecycle (providers only)."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from slotsync.core.deps import get_calendar_factory, get_db, require_provider
from slotsync.core.errors import CalendarError, SchedulingError
from slotsync.core.http_errors import to_http_exception
from slotsync.core.structured_logging import build_log_context
from slotsync.schemas.auth import Principal
from slotsync.schemas.calendar import (
    CalendarConnectRequest,
    CalendarConnectResponse,
    ChannelHealthRead,
    ChannelRenewResponse,
    WebhookChannelRead,
)
from slotsync.services import (
    availability_service,
    calendar_service,
    calendar_sync_service,
    webhook_channel_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_calendar(db: Session, principal: Principal, calendar_factory):
    calendar = calendar_factory(db, principal.id)
    if calendar is None:
        raise HTTPException(status_code=400, detail="Google Calendar not connected")
    return calendar


@router.post("/connect", response_model=CalendarConnectResponse)
async def connect_calendar(
    data: CalendarConnectRequest,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """
    Store OAuth credentials handed over after consent.

    Also initializes default availability when missing, registers the push
    channel, and backfills any appointments booked before the connection.
    A channel failure does not undo the stored credentials.
    """
    try:
        availability_service.initialize_rules(db, principal.id, data.timezone)
    except SchedulingError as e:
        raise to_http_exception(e)

    calendar_service.store_credentials(
        db,
        principal.id,
        refresh_token=data.refresh_token,
        access_token=data.access_token,
        expires_in=data.expires_in,
        calendar_id=data.calendar_id,
        account_email=data.account_email,
    )
    calendar = _require_calendar(db, principal, calendar_factory)

    channel = None
    if data.setup_webhook:
        try:
            channel = await webhook_channel_service.setup(db, principal.id, calendar)
        except CalendarError as e:
            logger.warning(
                "Channel setup after connect failed: %s",
                type(e).__name__,
                extra=build_log_context(provider_id=principal.id, action="calendar_connect"),
            )

    await calendar_sync_service.reconcile_pending(db, principal.id, calendar)

    return CalendarConnectResponse(
        connected=True,
        calendar_id=data.calendar_id,
        channel=WebhookChannelRead.model_validate(channel) if channel else None,
    )


@router.post("/webhook/setup", response_model=WebhookChannelRead)
async def setup_webhook(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """Register a fresh push channel, stopping any previous one."""
    calendar = _require_calendar(db, principal, calendar_factory)
    try:
        channel = await webhook_channel_service.setup(db, principal.id, calendar)
    except CalendarError as e:
        raise to_http_exception(e)
    return WebhookChannelRead.model_validate(channel)


@router.post("/webhook/renew", response_model=ChannelRenewResponse)
async def renew_webhook(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """Renew the channel if it is missing or expires within the renewal threshold."""
    calendar = _require_calendar(db, principal, calendar_factory)
    try:
        renewed = await webhook_channel_service.renew_if_expiring_soon(
            db, principal.id, calendar
        )
    except CalendarError as e:
        raise to_http_exception(e)
    channel = webhook_channel_service.get_channel(db, principal.id)
    return ChannelRenewResponse(
        renewed=renewed,
        channel=WebhookChannelRead.model_validate(channel) if channel else None,
    )


@router.delete("/webhook", status_code=204)
async def stop_webhook(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    stopped = await webhook_channel_service.stop(
        db, principal.id, calendar_factory(db, principal.id)
    )
    if not stopped:
        raise HTTPException(status_code=404, detail="No webhook channel")


@router.get("/webhook/health", response_model=ChannelHealthRead)
def webhook_health(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    """Counts of expiring, expired and stale channels across providers."""
    return ChannelHealthRead(**webhook_channel_service.get_channel_health(db))
