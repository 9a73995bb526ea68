"""Calendar connection and webhook channel schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CalendarConnectRequest(BaseModel):
    """OAuth material handed over by the auth service after consent."""
    refresh_token: str = Field(..., min_length=1)
    access_token: str | None = None
    expires_in: int | None = Field(None, ge=0)
    calendar_id: str = Field("primary", max_length=255)
    account_email: str | None = Field(None, max_length=320)
    timezone: str = Field("UTC", max_length=64)
    setup_webhook: bool = True


class WebhookChannelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    provider_id: UUID
    channel_id: str
    resource_id: str
    calendar_id: str
    expiration_time: datetime
    last_sync_time: datetime


class CalendarConnectResponse(BaseModel):
    connected: bool
    calendar_id: str
    channel: WebhookChannelRead | None = None


class ChannelRenewResponse(BaseModel):
    renewed: bool
    channel: WebhookChannelRead | None


class ChannelHealthRead(BaseModel):
    total_channels: int
    expiring_soon: int
    expired: int
    stale: int
    healthy: bool


class RenewalRunResponse(BaseModel):
    checked: int
    renewed: int
    fresh: int
    failed: int


class ReconcileRunResponse(BaseModel):
    providers: int
    repaired: int
    still_pending: int


class WebhookAck(BaseModel):
    status: str
    reason: str | None = None
    events_processed: int = 0
