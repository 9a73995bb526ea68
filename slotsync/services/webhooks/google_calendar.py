"""Google Calendar push-notification handler.

Google sends header-only notifications ("something changed on this
calendar"). Validation happens before any write:

1. headers normalized into a ``WebhookNotification`` (400 if incomplete)
2. optional ``X-Goog-Signature`` checked as hex HMAC-SHA256 of the raw body
3. channel token compared against the stored channel (constant time)

Then ``(channel_id, message_number)`` is recorded as a receipt; a repeat
is a no-op. New change notifications trigger a reconciliation pull.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotsync.core.config import settings
from slotsync.core.errors import InvalidNotification, InvalidSignature
from slotsync.core.security import tokens_match, verify_webhook_signature
from slotsync.core.structured_logging import build_log_context
from slotsync.db.models import WebhookReceipt
from slotsync.services import calendar_service, calendar_sync_service, webhook_channel_service

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = {
    "x-goog-channel-id": "channel_id",
    "x-goog-resource-id": "resource_id",
    "x-goog-resource-state": "resource_state",
    "x-goog-message-number": "message_number",
}
OPTIONAL_HEADERS = {
    "x-goog-channel-token": "channel_token",
    "x-goog-signature": "signature",
    "x-goog-channel-expiration": "channel_expiration",
}

# Google resource states
STATE_SYNC = "sync"
STATE_EXISTS = "exists"
STATE_NOT_EXISTS = "not_exists"


@dataclass(frozen=True)
class WebhookNotification:
    channel_id: str
    resource_id: str
    resource_state: str
    message_number: str
    channel_token: str | None = None
    signature: str | None = None
    channel_expiration: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "WebhookNotification":
        """Normalize header names once; raise if any required header is missing."""
        normalized = {k.lower(): v.strip() for k, v in headers.items()}
        missing = [name for name in REQUIRED_HEADERS if not normalized.get(name)]
        if missing:
            raise InvalidNotification(f"Missing required headers: {', '.join(missing)}")
        values = {field: normalized[name] for name, field in REQUIRED_HEADERS.items()}
        for name, field in OPTIONAL_HEADERS.items():
            values[field] = normalized.get(name) or None
        values["resource_state"] = values["resource_state"].lower()
        return cls(**values)


def verify_notification_signature(notification: WebhookNotification, body: bytes) -> None:
    """Reject a supplied signature that does not match WEBHOOK_SECRET."""
    if notification.signature is None:
        return
    if not settings.WEBHOOK_SECRET:
        raise InvalidSignature("Signature supplied but no webhook secret configured")
    if not verify_webhook_signature(body, notification.signature, settings.WEBHOOK_SECRET):
        raise InvalidSignature("Invalid webhook signature")


async def process_notification(
    db: Session,
    notification: WebhookNotification,
    *,
    calendar_factory: Callable = calendar_service.get_calendar_client,
    now: datetime | None = None,
) -> dict:
    """
    Process a verified notification.

    Returns a status dict. Raises InvalidSignature for a bad channel token;
    any failure during the pull rolls back the receipt so Google's
    redelivery is processed again.
    """
    now = now or datetime.now(timezone.utc)
    log_context = build_log_context(channel_id=notification.channel_id, action="google_push")

    channel = webhook_channel_service.get_channel_by_channel_id(db, notification.channel_id)
    if not channel:
        logger.info("Push notification for unknown channel", extra=log_context)
        return {"status": "ignored", "reason": "unknown_channel"}

    if notification.channel_token is not None and not tokens_match(
        channel.channel_token, notification.channel_token
    ):
        raise InvalidSignature("Invalid channel token")

    if notification.resource_id != channel.resource_id:
        logger.info("Push notification for superseded resource", extra=log_context)
        return {"status": "ignored", "reason": "resource_mismatch"}

    db.add(
        WebhookReceipt(
            channel_id=notification.channel_id,
            message_number=notification.message_number,
            resource_state=notification.resource_state,
            received_at=now,
        )
    )
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return {"status": "ignored", "reason": "duplicate"}

    if notification.resource_state == STATE_SYNC:
        db.commit()
        return {"status": "ok", "reason": "sync"}

    calendar = calendar_factory(db, channel.provider_id)
    if calendar is None:
        db.commit()
        logger.warning("Push notification for disconnected calendar", extra=log_context)
        return {"status": "ignored", "reason": "calendar_not_connected"}

    try:
        processed = await calendar_sync_service.pull_changes(db, channel, calendar, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Processed %d calendar changes", processed, extra=log_context)
    return {"status": "ok", "events_processed": processed}


async def _read_body_safe(request: Request) -> bytes:
    max_bytes = settings.WEBHOOK_MAX_PAYLOAD_BYTES
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > max_bytes:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


class GoogleCalendarWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive a Google Calendar push notification.

        Always answers quickly: 200 when processed, 202 when ignored or a
        repeat, 4xx for invalid requests, 500 only for this notification's
        processing failure.
        """
        body = await _read_body_safe(request)

        try:
            notification = WebhookNotification.from_headers(request.headers)
        except InvalidNotification as e:
            logger.warning("Google push rejected: %s", e)
            raise HTTPException(400, str(e))

        try:
            verify_notification_signature(notification, body)
            result = await process_notification(
                db,
                notification,
                calendar_factory=kwargs.get("calendar_factory")
                or calendar_service.get_calendar_client,
                now=kwargs.get("now"),
            )
        except InvalidSignature as e:
            logger.warning(
                "Google push rejected: %s",
                e,
                extra=build_log_context(channel_id=notification.channel_id, action="google_push"),
            )
            raise HTTPException(401, "Invalid signature")
        except Exception:
            logger.exception(
                "Google push processing failed",
                extra=build_log_context(channel_id=notification.channel_id, action="google_push"),
            )
            return JSONResponse(
                status_code=500, content={"status": "error", "reason": "processing_failed"}
            )

        status_code = 200 if result["status"] == "ok" else 202
        return JSONResponse(status_code=status_code, content=result)
