"""
Service layer primitives shared by every domain app.

This module provides:
- ServiceResult: Explicit success/failure value for expected outcomes
- BaseService: Logger and transaction helpers for service classes

Expected vs unexpected outcomes:
    - ServiceResult: Business outcomes the caller must branch on
      (invalid metadata, idempotent no-op, provider refusal)
    - Exceptions: Bugs and infrastructure failures (database down, etc.)

Usage:
    from core.services import BaseService, ServiceResult

    class ReviewService(BaseService):
        @classmethod
        def approve(cls, record_id) -> ServiceResult[TransferRecord]:
            with cls.atomic():
                record = TransferRecord.objects.select_for_update().get(id=record_id)
                if not can_proceed(record.approve):
                    return ServiceResult.failure("Not approvable", "INVALID_STATE")
                record.approve()
                record.save()
            cls.get_logger().info("Approved", extra={"record_id": str(record_id)})
            return ServiceResult.success(record)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data on success
        error: Human-readable error on failure
        error_code: Machine-readable code callers branch on
        errors: Field-level errors for validation failures

    Example:
        result = TransferCreator(deps).record_successful_payment(intent)
        if not result:
            logger.warning("Not recorded: %s", result.error_code)
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Alias for success()."""
        return cls(success=True, data=data)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code
            errors: Field-level errors

        Returns:
            ServiceResult with success=False
        """
        return cls(success=False, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from a caught exception.

        The error code defaults to the exception's own error_code attribute
        (application errors) or its upper-cased class name.
        """
        code = error_code or getattr(exc, "error_code", None) or exc.__class__.__name__.upper()
        return cls(success=False, error=str(exc), error_code=code)

    def to_response(self) -> dict[str, Any]:
        """Convert to a JSON-serialisable dict for API responses."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service classes.

    Services hold business logic between the HTTP/task entry points and the
    models. Subclasses either stay stateless (classmethods) or receive their
    collaborators through the constructor.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Run the enclosed block in a database transaction.

        Thin wrapper around django.db.transaction.atomic() that makes
        transaction boundaries explicit in service code. Nested use creates
        savepoints.

        Example:
            with cls.atomic():
                record = TransferRecord.objects.select_for_update().get(id=pk)
                record.mark_ready()
                record.save()
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an exception and convert it to a failed ServiceResult.

        Args:
            exc: The caught exception
            context: Short description of the failing operation
            log_level: Logging level (default ERROR)
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=True)
        return ServiceResult.from_exception(exc)
