"""
Error taxonomy for caseguard.

Each error carries a stable, user-safe public message. Internal detail goes
to the log, never to the caller.
"""

from typing import Optional


class CaseGuardError(Exception):
    """Base for all errors that cross the HTTP boundary."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        # detail is for logs only
        super().__init__(detail or self.public_message)
        self.detail = detail


class Unauthenticated(CaseGuardError):
    """No verified caller identity."""

    status_code = 401
    public_message = "Authentication required"


class Forbidden(CaseGuardError):
    """Caller identity known, insufficient attributes or role."""

    status_code = 403
    public_message = "Access denied"


class InvalidInput(CaseGuardError):
    """Malformed parameters that cannot be safely clamped."""

    status_code = 400
    public_message = "Invalid request"


class RateLimited(CaseGuardError):
    """Per-principal quota exceeded."""

    status_code = 429
    public_message = "Too many requests. Please wait before trying again."

    def __init__(self, status, detail: Optional[str] = None):
        super().__init__(detail)
        self.status = status


class NotFound(CaseGuardError):
    """
    Absent, or present but not visible to the caller.

    The two cases are deliberately merged so that probing cannot confirm
    that a case exists.
    """

    status_code = 404
    public_message = "Not found"


class StoreUnavailable(CaseGuardError):
    """A downstream store failed."""

    status_code = 503
    public_message = "Service temporarily unavailable"
