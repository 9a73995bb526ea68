"""Calendar service - Google Calendar v3 adapter.

Handles:
- OAuth token storage and refresh
- Event creation/patch/deletion
- Incremental event listing for reconciliation
- Push-notification channel watch/stop

Every call is bounded by CALENDAR_TIMEOUT_SECONDS. A 401 triggers one
credential refresh and retry; timeouts, transport errors, 429 and 5xx
responses surface as ProviderUnavailable.

Note: Requires the calendar.events scope.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Protocol
from urllib.parse import quote
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from slotsync.core.config import settings
from slotsync.core.encryption import decrypt_token, encrypt_token
from slotsync.core.errors import CalendarError, CredentialsExpired, ProviderUnavailable
from slotsync.core.structured_logging import build_log_context
from slotsync.db.enums import EventTransparency
from slotsync.db.models import CalendarCredential

logger = logging.getLogger(__name__)

# Refresh slightly before Google's reported expiry
TOKEN_EXPIRY_SKEW = timedelta(seconds=60)
MAX_EVENTS_PER_PAGE = 250
MAX_EVENTS_TOTAL = 2500


# =============================================================================
# Types
# =============================================================================

class ExternalEvent(NamedTuple):
    """A Google Calendar event, reduced to what reconciliation needs."""
    id: str
    status: str  # confirmed | tentative | cancelled
    start: datetime | None
    end: datetime | None
    transparency: str
    summary: str
    is_all_day: bool


class WatchResult(NamedTuple):
    resource_id: str
    expiration: datetime


class CalendarAdapter(Protocol):
    """Operations the booking ledger and channel manager need from a calendar."""

    async def create_event(
        self,
        start: datetime,
        end: datetime,
        *,
        summary: str,
        description: str | None = None,
        attendee_emails: list[str] | None = None,
        transparency: str = EventTransparency.OPAQUE.value,
    ) -> str: ...

    async def patch_event(self, event_id: str, fields: dict) -> None: ...

    async def delete_event(self, event_id: str) -> None: ...

    async def list_events(
        self,
        *,
        updated_min: datetime | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        show_deleted: bool = True,
    ) -> list[ExternalEvent]: ...

    async def watch(
        self, channel_id: str, address: str, token: str, expiration: datetime
    ) -> WatchResult: ...

    async def stop_channel(self, channel_id: str, resource_id: str) -> None: ...


# =============================================================================
# Parsing
# =============================================================================

def _parse_google_datetime(value: dict) -> tuple[datetime | None, bool]:
    """Parse an event start/end block; returns (instant, is_all_day)."""
    if not value:
        return None, False
    if "dateTime" in value:
        try:
            parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        except ValueError:
            return None, False
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc), False
    if "date" in value:
        try:
            parsed = datetime.fromisoformat(value["date"]).replace(tzinfo=timezone.utc)
        except ValueError:
            return None, True
        return parsed, True
    return None, False


def parse_event(item: dict) -> ExternalEvent:
    start, is_all_day = _parse_google_datetime(item.get("start") or {})
    end, _ = _parse_google_datetime(item.get("end") or {})
    return ExternalEvent(
        id=item.get("id", ""),
        status=item.get("status", "confirmed"),
        start=start,
        end=end,
        transparency=item.get("transparency", EventTransparency.OPAQUE.value),
        summary=item.get("summary", "(No title)"),
        is_all_day=is_all_day,
    )


def _to_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Client
# =============================================================================

class GoogleCalendarClient:
    """Google Calendar client bound to one provider's stored credentials."""

    def __init__(
        self,
        db: Session,
        credential: CalendarCredential,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self.db = db
        self.credential = credential
        self.calendar_id = credential.calendar_id or "primary"
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.CALENDAR_TIMEOUT_SECONDS

    def _client(self, base_url: str = "") -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='')}/events"

    # -------------------------------------------------------------------------
    # Token Management
    # -------------------------------------------------------------------------

    async def _access_token(self) -> str:
        expires_at = self.credential.token_expires_at
        token = decrypt_token(self.credential.access_token_encrypted or "")
        if token and expires_at and expires_at - TOKEN_EXPIRY_SKEW > datetime.now(timezone.utc):
            return token
        return await self.refresh_credentials()

    async def refresh_credentials(self) -> str:
        """
        Exchange the stored refresh token for a new access token.

        Raises:
            CredentialsExpired: Google rejected the refresh token.
            ProviderUnavailable: Token endpoint unreachable or erroring.
        """
        refresh_token = decrypt_token(self.credential.refresh_token_encrypted)
        if not refresh_token:
            raise CredentialsExpired("No refresh token stored")
        try:
            async with self._client() as client:
                response = await client.post(
                    settings.GOOGLE_TOKEN_URL,
                    data={
                        "client_id": settings.GOOGLE_CLIENT_ID,
                        "client_secret": settings.GOOGLE_CLIENT_SECRET,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(f"Token refresh timed out: {type(e).__name__}")
        except httpx.TransportError as e:
            raise ProviderUnavailable(f"Token refresh failed: {type(e).__name__}")

        if response.status_code in (400, 401):
            raise CredentialsExpired("Refresh token rejected by Google")
        if response.status_code != 200:
            raise ProviderUnavailable(
                f"Token refresh returned {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        access_token = data["access_token"]
        self.credential.access_token_encrypted = encrypt_token(access_token)
        self.credential.token_expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=int(data.get("expires_in", 3600))
        )
        if data.get("refresh_token"):
            self.credential.refresh_token_encrypted = encrypt_token(data["refresh_token"])
        self.db.commit()
        logger.info(
            "Refreshed Google access token",
            extra=build_log_context(provider_id=self.credential.provider_id, action="token_refresh"),
        )
        return access_token

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        json: dict | None = None,
        ok_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        token = await self._access_token()
        for attempt in range(2):
            try:
                async with self._client(settings.GOOGLE_API_BASE_URL) as client:
                    response = await client.request(
                        method,
                        path,
                        params=params,
                        json=json,
                        headers={"Authorization": f"Bearer {token}"},
                    )
            except httpx.TimeoutException as e:
                raise ProviderUnavailable(f"Google Calendar timed out: {type(e).__name__}")
            except httpx.TransportError as e:
                raise ProviderUnavailable(f"Google Calendar unreachable: {type(e).__name__}")

            if response.status_code == 401:
                if attempt == 0:
                    token = await self.refresh_credentials()
                    continue
                raise CredentialsExpired("Access token rejected after refresh")
            if response.status_code in ok_statuses:
                return response
            if response.status_code == 429 or response.status_code >= 500:
                raise ProviderUnavailable(
                    f"Google Calendar returned {response.status_code}",
                    status_code=response.status_code,
                )
            if response.status_code >= 400:
                raise CalendarError(f"Google Calendar returned {response.status_code}")
            return response
        raise CredentialsExpired("Access token rejected after refresh")

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def create_event(
        self,
        start: datetime,
        end: datetime,
        *,
        summary: str,
        description: str | None = None,
        attendee_emails: list[str] | None = None,
        transparency: str = EventTransparency.OPAQUE.value,
    ) -> str:
        """Create an event and return its id."""
        body: dict = {
            "summary": summary,
            "start": {"dateTime": _to_rfc3339(start), "timeZone": "UTC"},
            "end": {"dateTime": _to_rfc3339(end), "timeZone": "UTC"},
            "transparency": transparency,
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 60},
                ],
            },
        }
        if description:
            body["description"] = description
        if attendee_emails:
            body["attendees"] = [{"email": e} for e in attendee_emails]

        response = await self._request(
            "POST", self._events_path, json=body, params={"sendUpdates": "none"}
        )
        return response.json()["id"]

    async def patch_event(self, event_id: str, fields: dict) -> None:
        await self._request(
            "PATCH",
            f"{self._events_path}/{quote(event_id, safe='')}",
            json=fields,
            params={"sendUpdates": "none"},
        )

    async def delete_event(self, event_id: str) -> None:
        """Delete an event. Already-gone events (404/410) count as deleted."""
        await self._request(
            "DELETE",
            f"{self._events_path}/{quote(event_id, safe='')}",
            params={"sendUpdates": "none"},
            ok_statuses=(200, 204, 404, 410),
        )

    async def list_events(
        self,
        *,
        updated_min: datetime | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        show_deleted: bool = True,
    ) -> list[ExternalEvent]:
        """
        List events, following nextPageToken.

        - singleEvents=true expands recurring events into instances
        - showDeleted=true so cancellations reach reconciliation
        - caps total results to prevent runaway loops
        """
        events: list[ExternalEvent] = []
        page_token: str | None = None
        while len(events) < MAX_EVENTS_TOTAL:
            params = {
                "singleEvents": "true",
                "showDeleted": "true" if show_deleted else "false",
                "maxResults": str(MAX_EVENTS_PER_PAGE),
            }
            if updated_min:
                params["updatedMin"] = _to_rfc3339(updated_min)
            if time_min:
                params["timeMin"] = _to_rfc3339(time_min)
            if time_max:
                params["timeMax"] = _to_rfc3339(time_max)
            if page_token:
                params["pageToken"] = page_token

            response = await self._request("GET", self._events_path, params=params)
            data = response.json()
            for item in data.get("items", []):
                if item.get("id"):
                    events.append(parse_event(item))

            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return events

    # -------------------------------------------------------------------------
    # Push Channels
    # -------------------------------------------------------------------------

    async def watch(
        self, channel_id: str, address: str, token: str, expiration: datetime
    ) -> WatchResult:
        """Register an events.watch push channel."""
        response = await self._request(
            "POST",
            f"{self._events_path}/watch",
            json={
                "id": channel_id,
                "type": "web_hook",
                "address": address,
                "token": token,
                "expiration": str(int(expiration.timestamp() * 1000)),
            },
        )
        data = response.json()
        expires_ms = data.get("expiration")
        granted = (
            datetime.fromtimestamp(int(expires_ms) / 1000, tz=timezone.utc)
            if expires_ms
            else expiration
        )
        return WatchResult(resource_id=data["resourceId"], expiration=granted)

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        """Stop a push channel. Unknown channels (404) count as stopped."""
        await self._request(
            "POST",
            "/channels/stop",
            json={"id": channel_id, "resourceId": resource_id},
            ok_statuses=(200, 204, 404),
        )


# =============================================================================
# Credentials
# =============================================================================

def get_credential(db: Session, provider_id: UUID) -> CalendarCredential | None:
    return (
        db.query(CalendarCredential)
        .filter(CalendarCredential.provider_id == provider_id)
        .first()
    )


def get_calendar_client(db: Session, provider_id: UUID) -> GoogleCalendarClient | None:
    """Client for a provider's calendar, or None when not connected."""
    credential = get_credential(db, provider_id)
    if not credential or not credential.refresh_token_encrypted:
        return None
    return GoogleCalendarClient(db, credential)


def store_credentials(
    db: Session,
    provider_id: UUID,
    *,
    refresh_token: str,
    access_token: str | None = None,
    expires_in: int | None = None,
    calendar_id: str = "primary",
    account_email: str | None = None,
) -> CalendarCredential:
    """Create or replace a provider's encrypted calendar credentials."""
    credential = get_credential(db, provider_id)
    if not credential:
        credential = CalendarCredential(provider_id=provider_id, refresh_token_encrypted="")
        db.add(credential)

    credential.refresh_token_encrypted = encrypt_token(refresh_token)
    credential.access_token_encrypted = encrypt_token(access_token) if access_token else None
    credential.token_expires_at = (
        datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        if access_token and expires_in
        else None
    )
    credential.calendar_id = calendar_id
    credential.account_email = account_email
    db.commit()
    db.refresh(credential)
    return credential


def list_connected_provider_ids(db: Session) -> list[UUID]:
    return [row[0] for row in db.query(CalendarCredential.provider_id).all()]
