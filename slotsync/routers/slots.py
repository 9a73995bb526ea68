"""Slots router - generation, manual slots and availability listings."""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from slotsync.core.deps import get_calendar_factory, get_db, require_provider
from slotsync.core.errors import SchedulingError
from slotsync.core.http_errors import to_http_exception
from slotsync.schemas.auth import Principal
from slotsync.schemas.slot import (
    CalendarClearResponse,
    ManualSlotCreate,
    SlotGenerateRequest,
    SlotGenerateResponse,
    SlotListResponse,
    SlotRead,
    TodaySlotsResponse,
)
from slotsync.services import slot_service

router = APIRouter()


@router.post("/generate", response_model=SlotGenerateResponse, status_code=201)
def generate_slots(
    data: SlotGenerateRequest,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    """
    Generate available slots over an inclusive date range.

    Re-running over the same range creates nothing new.
    """
    try:
        slots = slot_service.generate_slots(
            db,
            principal.id,
            data.start_date,
            data.end_date,
            appointment_type_id=data.appointment_type_id,
            appointment_type_name=data.appointment_type_name,
            include_weekends=data.include_weekends,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return SlotGenerateResponse(
        created=len(slots),
        slots=[SlotRead.model_validate(s) for s in slots],
    )


@router.post("", response_model=SlotRead, status_code=201)
def create_slot(
    data: ManualSlotCreate,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    try:
        slot = slot_service.create_manual_slot(
            db,
            principal.id,
            data.start_time,
            data.end_time,
            appointment_type_name=data.appointment_type_name,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return SlotRead.model_validate(slot)


@router.get("/available", response_model=SlotListResponse)
def list_available_slots(
    provider_id: UUID,
    start: datetime | None = Query(None, description="Earliest slot start (ISO 8601)"),
    end: datetime | None = Query(None, description="Latest slot start (ISO 8601)"),
    appointment_type: str | None = Query(None, max_length=100),
    limit: int = Query(slot_service.AVAILABLE_SLOTS_LIMIT, ge=1, le=slot_service.AVAILABLE_SLOTS_LIMIT),
    db: Session = Depends(get_db),
):
    """Bookable slots for a provider. Public: used by the booking widget."""
    try:
        slots = slot_service.list_available_slots(
            db,
            provider_id,
            start=start,
            end=end,
            appointment_type_name=appointment_type,
            limit=limit,
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return SlotListResponse(slots=[SlotRead.model_validate(s) for s in slots])


@router.get("/today", response_model=TodaySlotsResponse)
def get_today_slots(
    day: date | None = Query(None, description="Provider-local date, defaults to today"),
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    try:
        summary = slot_service.get_day_summary(db, principal.id, day)
    except SchedulingError as e:
        raise to_http_exception(e)
    return TodaySlotsResponse(**summary)


@router.delete("", response_model=CalendarClearResponse)
async def clear_calendar(
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """
    Remove every slot, appointment and blocked interval for the provider.

    Mirrored Google events are deleted best-effort when a calendar is connected.
    """
    calendar = calendar_factory(db, principal.id)
    summary = await slot_service.clear_provider_calendar(db, principal.id, calendar=calendar)
    return CalendarClearResponse(**summary)
