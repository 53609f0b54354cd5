"""Custom exceptions and error handling utilities."""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class AppException(Exception):
    """Base exception for application errors."""

    kind = "AppException"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the ``{kind, message}`` shape callers receive."""
        return {"kind": self.kind, "message": self.message}


class InvalidSessionData(AppException):
    """Raised when session input is malformed. Nothing is written."""
    kind = "InvalidSessionData"


class SessionNotFound(AppException):
    """Raised when neither the primary nor the backup file is readable."""
    kind = "SessionNotFound"

    def __init__(self, session_id: str, message: Optional[str] = None):
        super().__init__(message or f"Session not found: {session_id}")
        self.session_id = session_id


class StorageWriteFailed(AppException):
    """Raised when the durability protocol could not complete."""
    kind = "StorageWriteFailed"


class StorageUnavailable(StorageWriteFailed):
    """Raised when storage directories or session files cannot be accessed."""
    kind = "StorageUnavailable"


class RenderError(AppException):
    """Base class for render pipeline failures."""
    kind = "RenderError"


class RendererUnavailable(RenderError):
    """Rendering surface failed to launch or died mid-replay. Transient."""
    kind = "RendererUnavailable"
    retryable = True

    def __init__(self, message: str = "", retry_after: int = 10):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retryAfter"] = self.retry_after
        return data


class RendererBusy(RendererUnavailable):
    """All render slots are taken."""
    kind = "RendererBusy"


class EncodeFailed(RenderError):
    """Raised when the post-replay encode step fails."""
    kind = "EncodeFailed"


class RetryBudgetExhausted(RenderError):
    """Raised when the renderer kept failing past the retry budget."""
    kind = "RetryBudgetExhausted"


def to_http_exception(error: AppException) -> HTTPException:
    """
    Convert an application error to an HTTP exception.

    Args:
        error: The application error

    Returns:
        HTTPException with a ``{kind, message}`` detail and status code
    """
    if isinstance(error, InvalidSessionData):
        return validation_error(error)
    if isinstance(error, SessionNotFound):
        return not_found_error(error)
    if isinstance(error, RendererUnavailable):
        return retry_later_error(error)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.to_dict(),
    )


def not_found_error(error: SessionNotFound) -> HTTPException:
    """
    Create a standardized 404 error.

    Args:
        error: The lookup failure

    Returns:
        HTTPException with 404 status
    """
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.to_dict())


def validation_error(error: InvalidSessionData) -> HTTPException:
    """
    Create a standardized 400 validation error.

    Args:
        error: The validation failure

    Returns:
        HTTPException with 400 status
    """
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.to_dict())


def retry_later_error(error: RendererUnavailable) -> HTTPException:
    """
    Create a 503 error telling the caller to retry after a delay.

    Args:
        error: The transient renderer failure

    Returns:
        HTTPException with 503 status and a Retry-After header
    """
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=error.to_dict(),
        headers={"Retry-After": str(error.retry_after)},
    )


def internal_error(operation: str, error: Exception) -> HTTPException:
    """
    Create a 500 error for unexpected failures.

    Args:
        operation: Description of the operation that failed
        error: The unexpected exception

    Returns:
        HTTPException with 500 status
    """
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"kind": "InternalError", "message": f"Failed to {operation}: {error}"},
    )
