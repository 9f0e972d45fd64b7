"""
Domain errors raised by the service layer.

Every error carries a stable machine-readable code so the API layer can
pick the HTTP status without inspecting messages. Services raise these and
never raise HTTPException directly.
"""

import functools
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from event_booking.core.logging import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DATABASE_ERROR = "DATABASE_ERROR"


class AppError(Exception):
    """Base application error with code, user-safe message and HTTP status."""

    code: ErrorCode = ErrorCode.DATABASE_ERROR
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": {"code": self.code.value, "message": self.message},
        }


class ValidationError(AppError):
    """Malformed input or a violated business precondition."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class AuthenticationError(AppError):
    code = ErrorCode.AUTHENTICATION_ERROR
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthorizationError(AppError):
    code = ErrorCode.AUTHORIZATION_ERROR
    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    """Referenced resource does not exist."""

    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    """Capacity exceeded, duplicate booking or duplicate unique value."""

    code = ErrorCode.CONFLICT
    status_code = 409


class DatabaseError(AppError):
    """Storage unavailable or a statement failed. Not retried here."""

    code = ErrorCode.DATABASE_ERROR
    status_code = 500

    def __init__(self, message: str = "Database error occurred") -> None:
        super().__init__(message)


def translate_db_errors(message: str):
    """
    Decorator for async service functions: storage failures surface as
    DatabaseError(message) with the original exception chained and logged.
    Domain errors pass through untouched.
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as exc:
                logger.error(
                    "database_error",
                    operation=func.__name__,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise DatabaseError(message) from exc
        return wrapper
    return decorator
