"""Rate limiting configuration shared by every API instance."""

import logging
import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from slotsync.core.config import settings
from slotsync.core.deps import COOKIE_NAME
from slotsync.core.security import decode_session_token

logger = logging.getLogger(__name__)

# Counters live in Redis so limits hold across workers and instances.
# Falls back to in-memory only for tests or when Redis is unreachable at boot.
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)


def principal_or_remote_address(request: Request) -> str:
    """Key requests by authenticated principal id, else client address."""
    auth = request.headers.get("authorization", "")
    token = auth[7:] if auth.lower().startswith("bearer ") else None
    token = token or request.cookies.get(COOKIE_NAME)
    if token:
        try:
            payload = decode_session_token(token)
        except Exception:
            payload = None
        if payload and payload.get("sub"):
            return f"principal:{payload['sub']}"
    return get_remote_address(request)


def _build_limiter() -> Limiter:
    if IS_TESTING:
        return Limiter(
            key_func=principal_or_remote_address,
            storage_uri="memory://",
            default_limits=DEFAULT_LIMITS,
        )
    try:
        import redis

        r = redis.from_url(REDIS_URL, socket_connect_timeout=1)
        r.ping()
        return Limiter(
            key_func=principal_or_remote_address,
            storage_uri=REDIS_URL,
            default_limits=DEFAULT_LIMITS,
        )
    except Exception as e:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", e)
        return Limiter(
            key_func=principal_or_remote_address,
            storage_uri="memory://",
            default_limits=DEFAULT_LIMITS,
        )


limiter = _build_limiter()
