"""API routers."""

from slotsync.routers.availability import router as availability_router
from slotsync.routers.slots import router as slots_router
from slotsync.routers.appointments import router as appointments_router
from slotsync.routers.calendar import router as calendar_router
from slotsync.routers.webhooks import router as webhooks_router
from slotsync.routers.internal import router as internal_router

__all__ = [
    "availability_router",
    "slots_router",
    "appointments_router",
    "calendar_router",
    "webhooks_router",
    "internal_router",
]
