"""Domain exceptions for scheduling, booking and calendar sync.

Routers translate these into HTTP status codes; services raise them and
never deal with HTTP directly.
"""


# =============================================================================
# Scheduling / Booking
# =============================================================================

class SchedulingError(Exception):
    """Base exception for scheduling operations."""
    pass


class NotConfigured(SchedulingError):
    """Availability rules requested before the provider initialized them."""
    pass


class NotFound(SchedulingError):
    """Referenced slot, appointment or blocked interval does not exist."""
    pass


class ValidationFailed(SchedulingError):
    """Availability input breaks a rule invariant."""
    pass


class SlotUnavailable(SchedulingError):
    """Slot is taken, missing, or starts inside the lead-time window."""
    pass


class SlotOverlap(SchedulingError):
    """A manual slot would overlap an existing slot."""
    pass


class PolicyViolation(SchedulingError):
    """Booking policy (notice window, advance limit, daily cap) forbids the action."""
    pass


class InvalidTransition(SchedulingError):
    """Appointment is not in a state that allows the requested transition."""
    pass


# =============================================================================
# Webhook ingress
# =============================================================================

class InvalidNotification(SchedulingError):
    """Push notification is missing required headers."""
    pass


class InvalidSignature(SchedulingError):
    """Push notification signature or channel token did not verify."""
    pass


# =============================================================================
# External calendar
# =============================================================================

class CalendarError(Exception):
    """Base exception for external calendar calls."""
    pass


class CalendarNotConnected(CalendarError):
    """Provider has no stored calendar credentials."""
    pass


class CredentialsExpired(CalendarError):
    """Access token rejected and could not be refreshed."""
    pass


class ProviderUnavailable(CalendarError):
    """Calendar API timed out, was unreachable, or returned a server error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
