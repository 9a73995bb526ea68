"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when the in-process scheduler is disabled.
"""

from fastapi import APIRouter, Depends, Header, HTTPException

from slotsync.core.config import settings
from slotsync.core.deps import get_calendar_factory
from slotsync.core.security import tokens_match
from slotsync.db.session import SessionLocal
from slotsync.schemas.calendar import ReconcileRunResponse, RenewalRunResponse
from slotsync.services import calendar_sync_service
from slotsync.services.renewal_scheduler import RenewalScheduler, summarize

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not tokens_match(expected, x_internal_secret):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


@router.post(
    "/renew-channels",
    response_model=RenewalRunResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def renew_channels(calendar_factory=Depends(get_calendar_factory)):
    """
    Renew every webhook channel expiring within the renewal threshold.

    One provider failing is counted and logged; the sweep continues.
    """
    scheduler = RenewalScheduler(session_factory=SessionLocal, calendar_factory=calendar_factory)
    outcomes = await scheduler.run_once()
    return RenewalRunResponse(**summarize(outcomes))


@router.post(
    "/reconcile",
    response_model=ReconcileRunResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def reconcile(calendar_factory=Depends(get_calendar_factory)):
    """Retry calendar mirroring for appointments left pending."""
    totals = await calendar_sync_service.reconcile_all(SessionLocal, calendar_factory)
    return ReconcileRunResponse(**totals)
