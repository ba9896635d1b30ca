"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── NotFoundError - Resource not found
    ├── PermissionDeniedError - Authorization failures
    └── ConflictError - State conflicts (broken invariants, duplicates)

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "Group has no owner",
        error_code="OWNER_MISSING",
        details={"chat_id": chat.id},
    )

Note:
    Expected rule violations are reported through core.services.ServiceResult.
    These exceptions are for states that should never be reached.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Chat not found",
                "error_code": "CHAT_NOT_FOUND",
                "details": {"chat_id": 123}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails outside a serializer.

    Example:
        raise ValidationError("Missing chatId", error_code="VALIDATION_ERROR")
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        raise NotFoundError(
            f"Chat {chat_id} not found",
            error_code="CHAT_NOT_FOUND",
            details={"chat_id": chat_id},
        )
    """

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when user lacks permission for an operation.

    Note:
        For authentication failures (missing/invalid token), use DRF's
        AuthenticationFailed. Use this for authorization failures.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Broken model invariants detected after a write
    - Concurrent modification conflicts
    - Invalid state transitions

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
