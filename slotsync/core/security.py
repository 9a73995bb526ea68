"""Security utilities for principal tokens and channel secrets."""

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from slotsync.core.config import settings


# =============================================================================
# Session Token (JWT issued by the auth service)
# =============================================================================

def create_session_token(user_id: UUID, role: str) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET). Used by the auth
    collaborator and by tests; this service only ever decodes.
    """
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Webhook channel secrets
# =============================================================================

def generate_channel_token() -> str:
    """Random token Google echoes back in X-Goog-Channel-Token."""
    return secrets.token_urlsafe(32)


def compute_webhook_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a raw notification body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature."""
    if not secret or not signature:
        return False
    expected = compute_webhook_signature(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def tokens_match(expected: str | None, provided: str | None) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected, provided)
