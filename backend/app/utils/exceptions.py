"""Custom exceptions and error handling utilities."""
from fastapi import HTTPException, status


class AppException(Exception):
    """Base exception for application errors."""
    pass


class NotFoundError(AppException):
    """Raised when a website, file, or change id references nothing."""
    pass


class ValidationError(AppException):
    """Raised when validation fails."""
    pass


class ResourceExhausted(AppException):
    """Raised when no preview port (or build slot) is available."""
    pass


class ResourceConflict(AppException):
    """Raised when an operation conflicts with an in-flight one or with live state."""
    pass


class BuildFailed(AppException):
    """Raised when a build exits non-zero or misses its startup deadline."""
    pass


class UpstreamTimeout(AppException):
    """Raised when the AI provider or a health check exceeds its bound."""
    pass


class EditRejected(AppException):
    """Raised when an AI edit is below the confidence threshold or malformed."""
    pass


class InvalidTransitionError(AppException):
    """Raised on a build status transition outside the lifecycle table."""
    pass


# Status codes used when a domain error reaches the HTTP layer
STATUS_CODES: dict[type, int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ResourceConflict: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    EditRejected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ResourceExhausted: status.HTTP_503_SERVICE_UNAVAILABLE,
    UpstreamTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
    BuildFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(error: AppException) -> int:
    """Map a domain error to its HTTP status code."""
    for error_type, code in STATUS_CODES.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def handle_database_error(error: Exception, operation: str) -> HTTPException:
    """
    Convert database errors to HTTP exceptions.

    Args:
        error: The database error
        operation: Description of the operation that failed

    Returns:
        HTTPException with appropriate status code
    """
    error_message = str(error)

    if "not found" in error_message.lower() or "does not exist" in error_message.lower():
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Resource not found: {operation}",
        )

    if "duplicate" in error_message.lower() or "unique" in error_message.lower():
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Resource already exists: {operation}",
        )

    # Default to 500 for unknown database errors
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Database error during {operation}: {error_message}",
    )


def validation_error(message: str) -> HTTPException:
    """Create a standardized 400 validation error."""
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)
