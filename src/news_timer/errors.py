"""Error taxonomy shared by the server, the store and the HTTP client."""

from __future__ import annotations


class NewsTimerError(Exception):
    """Base error. Carries the HTTP status and a stable machine code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(message)
        self.message = message


class ValidationError(NewsTimerError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NoSourcesError(ValidationError):
    code = "NO_SOURCES"

    def __init__(self, message: str = "No sources to distribute time across"):
        super().__init__(message)


class NotFoundError(NewsTimerError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Source not found"):
        super().__init__(message)


class ConflictError(NewsTimerError):
    # Duplicate source keys are reported as 400, like every other bad field
    status_code = 400
    code = "CONFLICT"

    def __init__(self, message: str = "Source already exists"):
        super().__init__(message)


class StoreUnavailable(NewsTimerError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)


class InternalError(NewsTimerError):
    pass


# Status -> error class, used by the client to rebuild server errors
_STATUS_ERRORS: dict[int, type[NewsTimerError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: ConflictError,
    503: StoreUnavailable,
}


def error_for_status(status_code: int, message: str, code: str | None = None) -> NewsTimerError:
    """Rebuild a NewsTimerError from an HTTP error response."""
    if code == ConflictError.code:
        return ConflictError(message)
    if code == NoSourcesError.code:
        return NoSourcesError(message)
    cls = _STATUS_ERRORS.get(status_code)
    if cls is None:
        cls = InternalError if status_code >= 500 else ValidationError
    return cls(message)


def is_connectivity_error(exc: BaseException) -> bool:
    """True for failures that mean the store could not be reached."""
    return isinstance(exc, (StoreUnavailable, InternalError))
