"""
Base exception classes for application-wide error handling.

Every domain error carries a human message, a machine-readable code, an
optional details dict, and the HTTP status the API boundary renders it
with (see core.exception_handler).

Exception Hierarchy:
    BaseApplicationError (base, 500)
    ├── ValidationError - Bad input, invalid state transition (400)
    ├── PermissionDeniedError - Authorization / feature gating (403)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - Concurrent or duplicate writes (409)
    └── ExternalServiceError - Gateway / object store failures (502)

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError("grossAmountCents must be positive")

    raise NotFoundError(
        f"Case {case_id} not found",
        error_code="CASE_NOT_FOUND",
        details={"case_id": str(case_id)},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.status_code)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description (safe to show clients)
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, ids, etc.)
        status_code: HTTP status used when the error reaches an API view
    """

    default_error_code: str = "APPLICATION_ERROR"
    status_code: int = 500

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
                "error": "Case 1f0c... not found",
                "error_code": "CASE_NOT_FOUND",
                "details": {"case_id": "1f0c..."}
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
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input or a requested state change is invalid.

    Raising this must never be preceded by a partial write: callers rely on
    "400 means nothing changed".
    """

    default_error_code: str = "VALIDATION_ERROR"
    status_code: int = 400


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller may not perform an operation.

    Also used for feature gating with a descriptive error_code, so clients
    can tell "payment not secured" apart from a plain role failure.
    """

    default_error_code: str = "PERMISSION_DENIED"
    status_code: int = 403


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource does not exist."""

    default_error_code: str = "NOT_FOUND"
    status_code: int = 404


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Lost compare-and-swap updates (stale precondition)
    - Unique constraint violations on write-once records
    - Lock contention
    """

    default_error_code: str = "CONFLICT"
    status_code: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    The message must already be sanitized: provider error bodies go to the
    logs, never into `message`.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    status_code: int = 502
