"""
Test configuration and fixtures.

Provides:
- File-backed SQLite database, rebuilt for every test
- FakeCalendar standing in for Google Calendar
- JWT token minting for provider and patient principals
- HTTPX AsyncClient wired to the app with overridden dependencies
"""
import os
import tempfile
import uuid
from dataclasses import dataclass
from typing import AsyncGenerator, Generator

# Settings are read at import time; configure before importing slotsync.
_DB_PATH = os.path.join(tempfile.gettempdir(), f"slotsync-test-{uuid.uuid4().hex}.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["FERNET_KEY"] = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["RENEWAL_SCHEDULER_ENABLED"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from slotsync.core.deps import COOKIE_NAME, get_calendar_factory, get_db
from slotsync.core.errors import ProviderUnavailable
from slotsync.core.rate_limit import limiter
from slotsync.core.security import create_session_token
from slotsync.db import models  # noqa: F401 - registers tables
from slotsync.db.base import Base
from slotsync.db.enums import Role
from slotsync.db.session import SessionLocal, engine
from slotsync.main import app
from slotsync.schemas.auth import Principal
from tests.helpers import FakeCalendar


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    A real file database (not a savepoint) so tests can open a second
    session to exercise concurrent claims, and so code that opens its own
    sessions (scheduler, internal endpoints) sees committed rows.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if os.path.exists(_DB_PATH):
        os.remove(_DB_PATH)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield


# =============================================================================
# Calendar Fakes
# =============================================================================

@pytest.fixture
def fake_calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def failing_calendar() -> FakeCalendar:
    return FakeCalendar(fail_with=ProviderUnavailable("Google Calendar returned 503", status_code=503))


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    principal: Principal
    token: str
    cookie_name: str = COOKIE_NAME

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"}


def _auth(role: Role) -> TestAuth:
    principal = Principal(id=uuid.uuid4(), role=role)
    return TestAuth(principal=principal, token=create_session_token(principal.id, role.value))


@pytest.fixture
def provider_auth() -> TestAuth:
    return _auth(Role.PROVIDER)


@pytest.fixture
def patient_auth() -> TestAuth:
    return _auth(Role.PATIENT)


@pytest.fixture
def provider(provider_auth: TestAuth) -> Principal:
    return provider_auth.principal


@pytest.fixture
def patient(patient_auth: TestAuth) -> Principal:
    return patient_auth.principal


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, fake_calendar: FakeCalendar) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient against the app, sharing the test session and FakeCalendar.

    Pass ``headers=auth.headers`` per request for authenticated calls.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_calendar_factory] = lambda: (lambda _db, _provider_id: fake_calendar)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def provider_client(client: AsyncClient, provider_auth: TestAuth) -> AsyncClient:
    """Client authenticated as the provider via session cookie."""
    client.cookies.set(provider_auth.cookie_name, provider_auth.token)
    return client
