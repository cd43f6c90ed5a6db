from abc import ABC


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """

    code: str = "bad_request"


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    code = "not_found"

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class ValidationError(UserError):
    """Raised when user input fails validation."""

    code = "validation_error"


class QuotaExceededError(UserError):
    """Raised when an owner already has the maximum number of private notes."""

    code = "quota_exceeded"

    def __init__(self, message: str = "Private note quota exceeded") -> None:
        super().__init__(message)


class InvalidTransitionError(UserError):
    """Raised when a requested state change is not an edge of the state machine."""

    code = "invalid_transition"


class ConflictError(UserError):
    """Raised when a concurrent writer modified the document first.

    Safe to retry with fresh data.
    """

    code = "conflict"

    def __init__(self, message: str = "Document was modified concurrently") -> None:
        super().__init__(message)


class StorageError(Exception):
    """Raised when the storage backend is unavailable or fails."""

    code = "storage_error"

    def __init__(self, message: str = "Storage unavailable") -> None:
        super().__init__(message)


def error_code(exc: BaseException) -> str:
    """Stable machine-readable code for an exception."""
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        return code
    return "internal_error"
