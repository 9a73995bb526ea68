"""
Background worker for calendar drift repair and channel renewal.

Usage:
    python -m slotsync.worker

Periodically retries calendar mirroring for appointments left ``pending``
and renews push channels before they expire. Run as a separate process
when the API's in-process scheduler is disabled.
"""

import asyncio
import logging

from slotsync.core.config import settings
from slotsync.core.structured_logging import build_log_context
from slotsync.db.session import SessionLocal
from slotsync.services import calendar_service, calendar_sync_service
from slotsync.services.renewal_scheduler import RenewalScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def reconcile_once() -> dict[str, int]:
    return await calendar_sync_service.reconcile_all(
        SessionLocal, calendar_service.get_calendar_client
    )


async def worker_loop() -> None:
    """Main worker loop - repairs pending appointments every RECONCILE_INTERVAL_SECONDS."""
    logger.info(
        "Worker starting (reconcile interval: %ss)", settings.RECONCILE_INTERVAL_SECONDS
    )
    while True:
        try:
            totals = await reconcile_once()
            if totals["providers"]:
                logger.info(
                    "Reconcile pass: providers=%d repaired=%d pending=%d",
                    totals["providers"],
                    totals["repaired"],
                    totals["still_pending"],
                )
        except Exception as e:
            logger.error("Error in worker loop: %s", type(e).__name__)
        await asyncio.sleep(settings.RECONCILE_INTERVAL_SECONDS)


async def run() -> None:
    scheduler = RenewalScheduler()
    scheduler.start()
    try:
        await worker_loop()
    finally:
        await scheduler.stop()


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception("Worker crashed", extra=build_log_context(action="worker"))
        raise


if __name__ == "__main__":
    main()
