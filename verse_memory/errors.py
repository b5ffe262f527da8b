"""
Error taxonomy for the scheduling service.

Every error carries a stable ``code`` and an HTTP-equivalent ``status_code`` so
the API layer can render it without inspecting the exception type.
"""


class SchedulingError(Exception):
    """Base class for errors surfaced to callers."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False
    headers = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Malformed input. Detected before any mutation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UnauthorizedError(SchedulingError):
    """Missing, expired or unverifiable bearer token."""

    code = "UNAUTHORIZED"
    status_code = 401
    headers = {"WWW-Authenticate": "Bearer"}


class NotFoundError(SchedulingError):
    """Referenced item is absent or belongs to another owner."""

    code = "NOT_FOUND"
    status_code = 404


class StorageError(SchedulingError):
    """Persistence store unavailable; safe to retry with backoff."""

    code = "DATABASE_ERROR"
    status_code = 503
    retryable = True


class InternalError(SchedulingError):
    code = "INTERNAL_ERROR"
    status_code = 500
