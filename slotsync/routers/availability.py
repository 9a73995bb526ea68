"""Availability router - provider working rules and blocked intervals.

Reads are public so the booking widget can render a provider's
appointment types; writes are limited to the provider themself.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotsync.core.deps import get_db, require_provider
from slotsync.core.errors import SchedulingError
from slotsync.core.http_errors import to_http_exception
from slotsync.schemas.auth import Principal
from slotsync.schemas.availability import (
    AvailabilityInitRequest,
    AvailabilityRead,
    AvailabilityUpdate,
    BlockedIntervalCreate,
    BlockedIntervalRead,
    ClearedCountResponse,
)
from slotsync.services import availability_service

router = APIRouter()


@router.post("/initialize", response_model=AvailabilityRead)
def initialize_availability(
    data: AvailabilityInitRequest | None = None,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    """Create the default rule template. Returns existing rules unchanged."""
    try:
        rules = availability_service.initialize_rules(
            db, principal.id, data.timezone if data else None
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return AvailabilityRead.from_model(rules)


@router.get("/{provider_id}", response_model=AvailabilityRead)
def get_availability(
    provider_id: UUID,
    db: Session = Depends(get_db),
):
    try:
        rules = availability_service.get_rules(db, provider_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return AvailabilityRead.from_model(rules)


@router.patch("", response_model=AvailabilityRead)
def update_availability(
    data: AvailabilityUpdate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    """
    Partially update rules.

    Weekly hours and appointment types replace the stored lists when
    given; policy fields merge.
    """
    try:
        rules = availability_service.upsert_rules(db, principal.id, data)
    except SchedulingError as e:
        raise to_http_exception(e)
    return AvailabilityRead.from_model(rules)


# =============================================================================
# Blocked Intervals
# =============================================================================

@router.post("/blocked-intervals", response_model=BlockedIntervalRead, status_code=201)
def add_blocked_interval(
    data: BlockedIntervalCreate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    try:
        blocked = availability_service.add_blocked_interval(db, principal.id, data)
    except SchedulingError as e:
        raise to_http_exception(e)
    return BlockedIntervalRead.model_validate(blocked)


@router.delete("/blocked-intervals/{blocked_id}", status_code=204)
def remove_blocked_interval(
    blocked_id: UUID,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    try:
        availability_service.remove_blocked_interval(db, principal.id, blocked_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@router.delete("/blocked-intervals", response_model=ClearedCountResponse)
def clear_blocked_intervals(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    removed = availability_service.clear_blocked_intervals(db, principal.id)
    return ClearedCountResponse(removed=removed)
