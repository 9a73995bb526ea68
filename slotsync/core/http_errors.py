"""Translate domain exceptions into HTTP errors for routers."""

from fastapi import HTTPException

from slotsync.core.errors import (
    CalendarError,
    InvalidNotification,
    InvalidSignature,
    InvalidTransition,
    NotConfigured,
    NotFound,
    PolicyViolation,
    SchedulingError,
    SlotOverlap,
    SlotUnavailable,
    ValidationFailed,
)

STATUS_BY_ERROR: dict[type[Exception], int] = {
    NotFound: 404,
    NotConfigured: 404,
    SlotUnavailable: 409,
    SlotOverlap: 409,
    InvalidTransition: 409,
    PolicyViolation: 422,
    ValidationFailed: 422,
    InvalidNotification: 400,
    InvalidSignature: 401,
}


def to_http_exception(error: SchedulingError | CalendarError) -> HTTPException:
    """Map a service exception to its HTTP status. Calendar failures are 502."""
    if isinstance(error, CalendarError):
        return HTTPException(status_code=502, detail=f"Calendar error: {error}")
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
