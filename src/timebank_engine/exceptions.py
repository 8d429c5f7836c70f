"""Domain error taxonomy.

Each class carries the HTTP status the API layer answers with, so services
can raise without knowing about the transport.
"""

from __future__ import annotations


class TimeBankError(Exception):
    """Base class for expected, caller-facing errors."""

    status_code = 400
    code = "TIME_BANK_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(TimeBankError):
    """Malformed or inconsistent input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(TimeBankError):
    """Unknown employee, closure or adjustment for the tenant."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(TimeBankError):
    """Write rejected by the current state (closed period, overlap, decided)."""

    status_code = 409
    code = "CONFLICT"


class PermissionDeniedError(TimeBankError):
    """Caller lacks the role required for a privileged option."""

    status_code = 403
    code = "FORBIDDEN"


class PeriodClosedError(ConflictError):
    """Date falls inside a closed time-bank period."""

    code = "PERIOD_CLOSED"

    def __init__(self, message: str = "period is closed for this date"):
        super().__init__(message)


class PeriodOverlapError(ConflictError):
    """Another closed period overlaps the requested range."""

    code = "PERIOD_OVERLAP"

    def __init__(self, message: str = "another closed period overlaps selected range"):
        super().__init__(message)
