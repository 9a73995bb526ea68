"""Appointments router - booking ledger transitions.

Booking is open to the public widget (principal optional) and rate
limited. Every other endpoint requires a principal: providers act on
their own appointments, patients on the ones they booked.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from slotsync.core.config import settings
from slotsync.core.deps import (
    get_calendar_factory,
    get_current_principal,
    get_db,
    get_optional_principal,
    require_provider,
)
from slotsync.core.errors import SchedulingError, SlotUnavailable
from slotsync.core.http_errors import to_http_exception
from slotsync.core.rate_limit import limiter
from slotsync.db.enums import AppointmentStatus
from slotsync.db.models import Appointment, Slot
from slotsync.schemas.appointment import (
    AppointmentDetailRead,
    AppointmentHistoryRead,
    AppointmentListResponse,
    AppointmentRead,
    BookingCreate,
    CancelRequest,
    RescheduleRequest,
)
from slotsync.schemas.auth import Principal
from slotsync.schemas.slot import SlotRead
from slotsync.services import booking_service

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================

def _can_access(principal: Principal, appointment: Appointment) -> bool:
    if principal.is_provider:
        return appointment.provider_id == principal.id
    return appointment.client_id == principal.id


def _load_for(db: Session, appointment_id: UUID, principal: Principal) -> tuple[Appointment, Slot]:
    """Load an appointment the principal may act on. Others get 404."""
    try:
        appointment, slot = booking_service.get_appointment_with_slot(db, appointment_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    if not _can_access(principal, appointment):
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment, slot


# =============================================================================
# Booking
# =============================================================================

@router.post("", response_model=AppointmentRead, status_code=201)
@limiter.limit(f"{settings.RATE_LIMIT_BOOKING}/minute")
def book_appointment(
    data: BookingCreate,
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """
    Book an available slot.

    The appointment is committed before the Google event is created; a
    calendar failure leaves it ``pending`` for background repair.
    """
    provider_id = db.query(Slot.provider_id).filter(Slot.id == data.slot_id).scalar()
    if provider_id is None:
        raise to_http_exception(SlotUnavailable("Slot is not available"))
    if principal and principal.is_provider and principal.id != provider_id:
        raise HTTPException(status_code=403, detail="Cannot book another provider's slot")

    try:
        appointment = booking_service.book(
            db,
            data.slot_id,
            data,
            principal=principal,
            calendar=calendar_factory(db, provider_id),
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return AppointmentRead.model_validate(appointment)


@router.get("", response_model=AppointmentListResponse)
def list_appointments(
    status: AppointmentStatus | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """List the caller's appointments, ordered by slot start."""
    items, total = booking_service.list_appointments(
        db,
        provider_id=principal.id if principal.is_provider else None,
        client_id=None if principal.is_provider else principal.id,
        status=status,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return AppointmentListResponse(
        items=[AppointmentRead.model_validate(a) for a in items],
        total=total,
    )


@router.get("/{appointment_id}", response_model=AppointmentDetailRead)
def get_appointment(
    appointment_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        appointment = booking_service.get_appointment_detail(db, appointment_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    if not _can_access(principal, appointment):
        raise HTTPException(status_code=404, detail="Appointment not found")
    return AppointmentDetailRead(
        appointment=AppointmentRead.model_validate(appointment),
        slot=SlotRead.model_validate(appointment.slot),
        history=[AppointmentHistoryRead.model_validate(h) for h in appointment.history],
    )


# =============================================================================
# Transitions
# =============================================================================

@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    appointment_id: UUID,
    data: CancelRequest | None = None,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """Cancel and free the slot. Patients must respect the notice window."""
    appointment, _ = _load_for(db, appointment_id, principal)
    try:
        appointment = booking_service.cancel(
            db,
            appointment.id,
            principal,
            reason=data.reason if data else None,
            calendar=calendar_factory(db, appointment.provider_id),
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return AppointmentRead.model_validate(appointment)


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
    calendar_factory=Depends(get_calendar_factory),
):
    """Move to another slot of the same provider. Returns the new appointment."""
    appointment, _ = _load_for(db, appointment_id, principal)
    new_provider_id = db.query(Slot.provider_id).filter(Slot.id == data.new_slot_id).scalar()
    if new_provider_id != appointment.provider_id:
        raise to_http_exception(SlotUnavailable("Slot is not available"))

    try:
        new_appointment = booking_service.reschedule(
            db,
            appointment.id,
            data.new_slot_id,
            principal,
            calendar=calendar_factory(db, appointment.provider_id),
        )
    except SchedulingError as e:
        raise to_http_exception(e)
    return AppointmentRead.model_validate(new_appointment)


@router.post("/{appointment_id}/complete", response_model=AppointmentRead)
def complete_appointment(
    appointment_id: UUID,
    principal: Principal = Depends(require_provider),
    db: Session = Depends(get_db),
):
    appointment, _ = _load_for(db, appointment_id, principal)
    try:
        appointment = booking_service.complete(db, appointment.id, principal)
    except SchedulingError as e:
        raise to_http_exception(e)
    return AppointmentRead.model_validate(appointment)
