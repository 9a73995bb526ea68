"""Google Calendar push-channel lifecycle.

One active channel per provider. A new channel is registered before the
previous one is stopped, so a refused watch leaves the old channel live;
renewal is just setup run before expiry.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from slotsync.core.config import settings
from slotsync.core.errors import CalendarError
from slotsync.core.security import generate_channel_token
from slotsync.core.structured_logging import build_log_context
from slotsync.db.models import WebhookChannel, WebhookReceipt
from slotsync.services.calendar_service import CalendarAdapter

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_THRESHOLD = timedelta(hours=48)
HEALTH_WINDOW = timedelta(hours=24)


def get_channel(db: Session, provider_id: UUID) -> WebhookChannel | None:
    return db.query(WebhookChannel).filter(WebhookChannel.provider_id == provider_id).first()


def get_channel_by_channel_id(db: Session, channel_id: str) -> WebhookChannel | None:
    return db.query(WebhookChannel).filter(WebhookChannel.channel_id == channel_id).first()


def list_channel_provider_ids(db: Session) -> list[UUID]:
    return [row[0] for row in db.query(WebhookChannel.provider_id).all()]


def _forget_receipts(db: Session, channel_id: str) -> None:
    db.query(WebhookReceipt).filter(WebhookReceipt.channel_id == channel_id).delete(
        synchronize_session=False
    )


async def _stop_remote(
    calendar: CalendarAdapter, provider_id: UUID, channel_id: str, resource_id: str
) -> bool:
    try:
        await calendar.stop_channel(channel_id, resource_id)
    except CalendarError as e:
        logger.warning(
            "Failed to stop previous channel: %s",
            type(e).__name__,
            extra=build_log_context(
                provider_id=provider_id, channel_id=channel_id, action="channel_stop"
            ),
        )
        return False
    return True


async def setup(
    db: Session,
    provider_id: UUID,
    calendar: CalendarAdapter,
    *,
    now: datetime | None = None,
) -> WebhookChannel:
    """
    Register a new push channel for a provider's calendar.

    The previous channel, if any, is superseded in place (keeping its sync
    cursor) and stopped with Google only after the new watch succeeds;
    stop failures are logged. Raises CalendarError if Google refuses the
    new watch, leaving the previous channel untouched.
    """
    now = now or datetime.now(timezone.utc)
    existing = get_channel(db, provider_id)

    channel_id = str(uuid.uuid4())
    token = generate_channel_token()
    requested_expiration = now + timedelta(days=settings.WEBHOOK_CHANNEL_TTL_DAYS)
    result = await calendar.watch(
        channel_id=channel_id,
        address=settings.webhook_callback_url,
        token=token,
        expiration=requested_expiration,
    )

    previous = (existing.channel_id, existing.resource_id) if existing else None
    channel = existing or WebhookChannel(provider_id=provider_id, last_sync_time=now)
    channel.channel_id = channel_id
    channel.resource_id = result.resource_id
    channel.channel_token = token
    channel.calendar_id = getattr(calendar, "calendar_id", "primary")
    channel.expiration_time = result.expiration
    channel.created_at = now
    if existing:
        _forget_receipts(db, previous[0])
    else:
        db.add(channel)
    db.commit()
    db.refresh(channel)

    if previous:
        await _stop_remote(calendar, provider_id, *previous)

    logger.info(
        "Webhook channel registered (expires %s)",
        channel.expiration_time.isoformat(),
        extra=build_log_context(provider_id=provider_id, channel_id=channel_id, action="channel_setup"),
    )
    return channel


async def renew_if_expiring_soon(
    db: Session,
    provider_id: UUID,
    calendar: CalendarAdapter,
    *,
    threshold: timedelta = DEFAULT_RENEWAL_THRESHOLD,
    now: datetime | None = None,
) -> bool:
    """Re-run setup when the channel is missing or expires within ``threshold``."""
    now = now or datetime.now(timezone.utc)
    channel = get_channel(db, provider_id)
    if channel and channel.expiration_time - now >= threshold:
        return False
    await setup(db, provider_id, calendar, now=now)
    return True


async def stop(
    db: Session,
    provider_id: UUID,
    calendar: CalendarAdapter | None,
) -> bool:
    """Stop the provider's channel with Google and delete it locally."""
    channel = get_channel(db, provider_id)
    if not channel:
        return False
    if calendar is not None:
        await _stop_remote(calendar, provider_id, channel.channel_id, channel.resource_id)
    _forget_receipts(db, channel.channel_id)
    db.delete(channel)
    db.commit()
    logger.info(
        "Webhook channel stopped",
        extra=build_log_context(provider_id=provider_id, action="channel_stop"),
    )
    return True


def get_channel_health(db: Session, *, now: datetime | None = None) -> dict:
    """Counts of expiring, expired and stale channels."""
    now = now or datetime.now(timezone.utc)
    total = db.query(func.count(WebhookChannel.id)).scalar() or 0
    expired = (
        db.query(func.count(WebhookChannel.id))
        .filter(WebhookChannel.expiration_time <= now)
        .scalar()
        or 0
    )
    expiring_soon = (
        db.query(func.count(WebhookChannel.id))
        .filter(
            WebhookChannel.expiration_time > now,
            WebhookChannel.expiration_time <= now + HEALTH_WINDOW,
        )
        .scalar()
        or 0
    )
    stale = (
        db.query(func.count(WebhookChannel.id))
        .filter(WebhookChannel.last_sync_time < now - HEALTH_WINDOW)
        .scalar()
        or 0
    )
    return {
        "total_channels": total,
        "expiring_soon": expiring_soon,
        "expired": expired,
        "stale": stale,
        "healthy": expired == 0 and expiring_soon == 0,
    }
