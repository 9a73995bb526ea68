"""FastAPI dependencies for the authenticated principal and database access."""

from typing import Callable, Generator
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from slotsync.core.security import decode_session_token
from slotsync.db.enums import Role
from slotsync.db.session import SessionLocal
from slotsync.schemas.auth import Principal
from slotsync.services import calendar_service
from slotsync.services.calendar_service import CalendarAdapter


# Cookie name shared with the auth service
COOKIE_NAME = "slotsync_session"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _extract_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(COOKIE_NAME)


def _principal_from_token(token: str) -> Principal:
    try:
        payload = decode_session_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    try:
        return Principal(id=UUID(payload["sub"]), role=Role(payload.get("role")))
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session")


def get_current_principal(request: Request) -> Principal:
    """
    Resolve the caller from a Bearer token or session cookie.

    Raises:
        HTTPException 401: Authentication failed
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _principal_from_token(token)


def get_optional_principal(request: Request) -> Principal | None:
    """Principal for endpoints that also serve the public booking widget."""
    token = _extract_token(request)
    if not token:
        return None
    return _principal_from_token(token)


def require_provider(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Capability check: only providers manage availability and calendars."""
    if principal.role != Role.PROVIDER:
        raise HTTPException(status_code=403, detail="Provider role required")
    return principal


def get_calendar_factory() -> Callable[[Session, UUID], CalendarAdapter | None]:
    """Resolves a provider's calendar client; overridden in tests."""
    return calendar_service.get_calendar_client
