"""
Application-wide exception hierarchy.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input or payload validation failures
    ├── NotFoundError - Expected record is missing
    ├── ConflictError - State conflicts (duplicates, concurrent modification)
    └── ExternalServiceError - Third-party service failures

Every error carries a human-readable message, a machine-readable error_code
and an optional details dict, and renders to a response body with to_dict().

Usage:
    from core.exceptions import ValidationError

    raise ValidationError(
        "Scheduled time precedes session start",
        error_code="INVALID_SCHEDULE",
        details={"field": "transfer.scheduled_time"},
    )
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
        error_code: Machine-readable code (defaults to default_error_code)
        details: Additional context for logs and API responses
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
        Convert the exception to an API response body.

        Returns:
            Dict with error, error_code and (when present) details
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """Raised when input or payload validation fails."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """Raised when a record that must exist cannot be found."""

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with the current state of a record.

    Use for unique constraint races, concurrent modification and state
    transitions that are not allowed from the current state.
    HTTP 409 Conflict is the matching status.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when a call to a third-party service fails.

    Note:
        Log the original error but do not expose provider internals to
        clients. HTTP 502/503 are the matching statuses.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
