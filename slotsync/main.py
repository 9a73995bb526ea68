"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from slotsync.core.config import settings
from slotsync.db.session import engine

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Patient details never leave the service
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slotsync.core.rate_limit import limiter

# ============================================================================
# Channel Renewal
# ============================================================================

from slotsync.services.renewal_scheduler import RenewalScheduler

renewal_scheduler = RenewalScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.RENEWAL_SCHEDULER_ENABLED:
        renewal_scheduler.start()
    yield
    await renewal_scheduler.stop()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    lifespan=lifespan,
    title="slotsync API",
    description="Provider scheduling with Google Calendar sync",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

# ============================================================================
# Routers
# ============================================================================

from slotsync.routers import (
    appointments_router,
    availability_router,
    calendar_router,
    internal_router,
    slots_router,
    webhooks_router,
)

app.include_router(availability_router, prefix="/availability", tags=["availability"])
app.include_router(slots_router, prefix="/slots", tags=["slots"])
app.include_router(appointments_router, prefix="/appointments", tags=["appointments"])
app.include_router(calendar_router, prefix="/calendar", tags=["calendar"])

# Google push notifications (unauthenticated, verified per channel)
app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])

# Internal endpoints (scheduled/cron jobs - protected by INTERNAL_SECRET)
app.include_router(internal_router)

# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": settings.VERSION,
        "renewal_scheduler": renewal_scheduler.is_running,
    }
