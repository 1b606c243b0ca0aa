"""Custom application exceptions."""

from enum import Enum


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class RateLimitException(AppException):
    """Rate limit exceeded exception."""

    def __init__(self, message: str = "Rate limit exceeded"):
        """Initialize with 429 status code."""
        super().__init__(message, status_code=429)


class ActionTokenReason(str, Enum):
    """Why a self-service action token was refused."""

    TOKEN_ALREADY_USED = "TOKEN_ALREADY_USED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    APPOINTMENT_CANCELLED = "APPOINTMENT_CANCELLED"
    WRONG_ACTION_TYPE = "WRONG_ACTION_TYPE"


ACTION_TOKEN_MESSAGES = {
    ActionTokenReason.TOKEN_ALREADY_USED: "This action has already been completed.",
    ActionTokenReason.TOKEN_EXPIRED: (
        "This action link has expired. Please contact us for assistance."
    ),
    ActionTokenReason.APPOINTMENT_CANCELLED: "This appointment has already been cancelled.",
    ActionTokenReason.WRONG_ACTION_TYPE: "Invalid action type for this operation.",
}


class ActionTokenException(BadRequestException):
    """Action token refused, carrying the specific reason."""

    def __init__(self, reason: ActionTokenReason):
        """Initialize with 400 status code and a reason-specific message."""
        self.reason = reason
        super().__init__(ACTION_TOKEN_MESSAGES[reason])
