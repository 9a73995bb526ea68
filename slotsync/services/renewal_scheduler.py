"""Periodic push-channel renewal.

Each provider is renewed in its own session; one provider failing never
blocks the rest.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from slotsync.core.config import settings
from slotsync.core.errors import CalendarNotConnected
from slotsync.core.structured_logging import build_log_context
from slotsync.db.enums import ChannelRenewalOutcome
from slotsync.db.session import SessionLocal
from slotsync.services import calendar_service, webhook_channel_service

logger = logging.getLogger(__name__)


class RenewalScheduler:
    """Renews webhook channels that expire within ``threshold``, every ``interval_seconds``."""

    def __init__(
        self,
        *,
        interval_seconds: int | None = None,
        threshold: timedelta | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        calendar_factory: Callable = calendar_service.get_calendar_client,
    ):
        self.interval_seconds = interval_seconds or settings.RENEWAL_INTERVAL_SECONDS
        self.threshold = threshold or timedelta(hours=settings.RENEWAL_THRESHOLD_HOURS)
        self._session_factory = session_factory
        self._calendar_factory = calendar_factory
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _renew_provider(self, provider_id: UUID, now: datetime) -> ChannelRenewalOutcome:
        with self._session_factory() as db:
            try:
                calendar = self._calendar_factory(db, provider_id)
                if calendar is None:
                    raise CalendarNotConnected("No calendar credentials")
                renewed = await webhook_channel_service.renew_if_expiring_soon(
                    db, provider_id, calendar, threshold=self.threshold, now=now
                )
            except Exception as e:
                db.rollback()
                logger.error(
                    "Channel renewal failed: %s",
                    type(e).__name__,
                    extra=build_log_context(provider_id=provider_id, action="channel_renewal"),
                )
                return ChannelRenewalOutcome.FAILED

        outcome = ChannelRenewalOutcome.RENEWED if renewed else ChannelRenewalOutcome.FRESH
        logger.info(
            "Channel renewal outcome: %s",
            outcome.value,
            extra=build_log_context(provider_id=provider_id, action="channel_renewal"),
        )
        return outcome

    async def run_once(self, *, now: datetime | None = None) -> dict[UUID, ChannelRenewalOutcome]:
        """Check every known channel once. Returns the outcome per provider."""
        now = now or datetime.now(timezone.utc)
        with self._session_factory() as db:
            provider_ids = webhook_channel_service.list_channel_provider_ids(db)

        outcomes: dict[UUID, ChannelRenewalOutcome] = {}
        for provider_id in provider_ids:
            outcomes[provider_id] = await self._renew_provider(provider_id, now)
        return outcomes

    async def _loop(self) -> None:
        logger.info(
            "Renewal scheduler starting (interval: %ss, threshold: %s)",
            self.interval_seconds,
            self.threshold,
        )
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Renewal sweep failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Start the background loop on the running event loop."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


def summarize(outcomes: dict[UUID, ChannelRenewalOutcome]) -> dict[str, int]:
    values = list(outcomes.values())
    return {
        "checked": len(values),
        "renewed": values.count(ChannelRenewalOutcome.RENEWED),
        "fresh": values.count(ChannelRenewalOutcome.FRESH),
        "failed": values.count(ChannelRenewalOutcome.FAILED),
    }
