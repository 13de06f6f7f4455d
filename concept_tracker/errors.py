"""
Concept Tracker — Errors

Exception hierarchy shared by the gateway and the stores.

    ConceptTrackerError
    ├── ConfigurationError      missing connection variables (fatal)
    ├── ConnectivityError       startup verification failed (fatal, retryable)
    ├── NotAuthenticatedError   operation needs a signed-in user
    └── GatewayError            any backend failure
        └── ForbiddenError      role check or backend permission rejection

Stores catch GatewayError and hand back (result, error_message) tuples.
"""

from typing import List, Optional

ACCESS_DENIED = "Access denied"
NOT_AUTHENTICATED = "Not authenticated"

# Postgres / PostgREST codes meaning "you are not allowed to do this"
PERMISSION_DENIED_CODES = frozenset({"42501", "PGRST301", "PGRST302", "401", "403"})


class ConceptTrackerError(Exception):
    """Base class for all concept tracker errors."""


class ConfigurationError(ConceptTrackerError):
    """Required connection variables are missing."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Missing configuration: {', '.join(self.missing)}")


class ConnectivityError(ConceptTrackerError):
    """Backend could not be reached or verified during startup."""


class NotAuthenticatedError(ConceptTrackerError):
    def __init__(self, message: str = NOT_AUTHENTICATED):
        super().__init__(message)


class GatewayError(ConceptTrackerError):
    """A backend call failed."""

    def __init__(self, message: str, code: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.cause = cause


class ForbiddenError(GatewayError):
    """Caller lacks the capability for this operation."""

    def __init__(self, message: str = ACCESS_DENIED, code: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, code=code, cause=cause)


def is_permission_error(exc: BaseException) -> bool:
    """True when a backend exception is a permission / RLS rejection."""
    code = getattr(exc, "code", None)
    if code is not None and str(code) in PERMISSION_DENIED_CODES:
        return True
    message = str(getattr(exc, "message", "") or exc).lower()
    return "permission denied" in message or "row-level security" in message
