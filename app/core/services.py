"""
Base service layer patterns for business logic encapsulation.

- ServiceResult: result wrapper for expected, non-exceptional outcomes
- BaseService: per-service logger and transaction helper

Pattern Comparison:
    - ServiceResult: Use where the caller branches on the outcome
      (webhook handlers report "nothing to do" this way)
    - Exceptions: Use where the API boundary should render the failure
      (core.exceptions carry their own HTTP status)

Usage:
    from core.services import BaseService, ServiceResult

    class FundingService(BaseService):
        @classmethod
        def mark_funded(cls, case_id) -> ServiceResult[Case]:
            with cls.atomic():
                case = Case.objects.select_for_update().get(pk=case_id)
                ...
            cls.get_logger().info("Case funded", extra={"case_id": str(case_id)})
            return ServiceResult.success(case)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        result = dispatch_webhook(event)
        if not result:
            logger.warning(result.error)
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
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
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Design Notes:
        - Use @classmethod (services are stateless)
        - Raise core.exceptions for failures the API must render
        - Return ServiceResult where callers branch on the outcome
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around transaction.atomic() that keeps transaction
        boundaries visible in service code. Nests as a savepoint.
        """
        with transaction.atomic():
            yield
