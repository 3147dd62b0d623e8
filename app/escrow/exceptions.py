"""
Escrow-specific exceptions.

Every class specialises one of the core.exceptions categories, so the API
boundary renders it with the matching HTTP status without extra mapping.

Exception Hierarchy:
    core.ValidationError (400)
    ├── InvalidTransitionError - (from, to) pair not in the transition table
    ├── PayoutAccountNotReadyError - paralegal onboarding incomplete
    └── SettlementValidationError - bad action / amount for a settlement

    core.PermissionDeniedError (403)
    └── PaymentNotSecuredError - work attempted before escrow is funded

    core.ConflictError (409)
    ├── TransitionConflictError - lost compare-and-swap on case status
    ├── PayoutAlreadyAppliedError - second payout for the same case
    ├── PayoutRecordedCaseChangedError - transfer recorded, case moved meanwhile
    ├── ReleaseInProgressError - case is locked by a running payout
    ├── AlreadySettledError - conflicting second settlement of a dispute
    └── LockAcquisitionError - distributed lock contention

    core.ExternalServiceError (502)
    ├── StripeError - base for payment gateway failures
    │   ├── StripeCardDeclinedError (permanent)
    │   ├── StripeInsufficientFundsError (permanent)
    │   ├── StripeInvalidAccountError (permanent)
    │   ├── StripeInvalidRequestError (permanent)
    │   ├── StripeRateLimitError (transient)
    │   ├── StripeAPIUnavailableError (transient)
    │   └── StripeTimeoutError (transient)
    ├── SettlementFailedError - settlement step failed, safe to retry
    └── StorageError - object store failure

Usage:
    from escrow.exceptions import InvalidTransitionError

    raise InvalidTransitionError("open", "completed")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# State Machine Exceptions
# =============================================================================


class InvalidTransitionError(ValidationError):
    """
    Raised when a requested status change is not an allowed edge.

    Raised before any write, so the case is guaranteed unchanged.
    """

    default_error_code: str = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        message = f"Invalid status transition: {from_status} -> {to_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            details={"from_status": str(from_status), "to_status": str(to_status)},
        )
        self.from_status = from_status
        self.to_status = to_status


class TransitionConflictError(ConflictError):
    """
    Raised when the case status no longer matches the expected precondition.

    The conditional update matched zero rows: another request moved the case
    first. Callers must re-read the case before deciding what to do.
    """

    default_error_code: str = "TRANSITION_CONFLICT"


# =============================================================================
# Funding / Payout Exceptions
# =============================================================================


class PaymentNotSecuredError(PermissionDeniedError):
    """
    Raised when case work is attempted before escrow is funded.

    Kept distinct from a plain permission failure so clients can prompt the
    attorney to fund the case.
    """

    default_error_code: str = "PAYMENT_NOT_SECURED"

    def __init__(self, message: str = "Work begins once payment is secured.", **kwargs):
        super().__init__(message, **kwargs)


class PayoutAccountNotReadyError(ValidationError):
    """Raised before any money moves when the payee cannot receive payouts."""

    default_error_code: str = "PAYOUT_ACCOUNT_NOT_READY"


class PayoutAlreadyAppliedError(ConflictError):
    """
    Raised when a payout already exists for the case.

    Attributes:
        payout: The existing Payout row, so callers may treat the repeat
            request as already applied
    """

    default_error_code: str = "PAYOUT_ALREADY_APPLIED"

    def __init__(self, message: str, payout=None, **kwargs):
        super().__init__(message, **kwargs)
        self.payout = payout


class PayoutRecordedCaseChangedError(ConflictError):
    """
    Raised when the transfer went out and the Payout was recorded, but the
    caller's status change could not be applied.

    The payout stands; an administrator reconciles the case status.

    Attributes:
        payout: The recorded Payout row
    """

    default_error_code: str = "PAYOUT_RECORDED_CASE_CHANGED"

    def __init__(self, message: str, payout=None, **kwargs):
        super().__init__(message, **kwargs)
        self.payout = payout


class ReleaseInProgressError(ConflictError):
    """Raised when a case change is refused because a payout holds the case."""

    default_error_code: str = "RELEASE_IN_PROGRESS"


# =============================================================================
# Settlement Exceptions
# =============================================================================


class SettlementValidationError(ValidationError):
    default_error_code: str = "INVALID_SETTLEMENT"


class AlreadySettledError(ConflictError):
    """
    Raised when a dispute is settled again with different parameters.

    Attributes:
        settlement: The existing immutable settlement
    """

    default_error_code: str = "ALREADY_SETTLED"

    def __init__(self, message: str, settlement=None, **kwargs):
        super().__init__(message, **kwargs)
        self.settlement = settlement


class SettlementFailedError(ExternalServiceError):
    """
    Raised when a settlement step fails at the payment gateway.

    The message is sanitized. The settlement keeps its last completed step
    and the case stays disputed, so the admin can retry the same action.
    """

    default_error_code: str = "SETTLEMENT_FAILED"


class StorageError(ExternalServiceError):
    default_error_code: str = "STORAGE_ERROR"


# =============================================================================
# Stripe Exceptions
# =============================================================================


class StripeError(ExternalServiceError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code
        decline_code: Card decline code (if applicable)
        is_retryable: Whether the same call may succeed if repeated
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


class StripeCardDeclinedError(StripeError):
    default_error_code: str = "CARD_DECLINED"


class StripeInsufficientFundsError(StripeError):
    """Insufficient funds on the payment method or platform balance."""

    default_error_code: str = "INSUFFICIENT_FUNDS"


class StripeInvalidAccountError(StripeError):
    """Destination connected account missing, restricted or not onboarded."""

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Also raised for webhook signature failures.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"


class StripeRateLimitError(StripeError):
    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Network failure or Stripe 5xx."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The operation may have succeeded on Stripe's side. Retrying with the
    same idempotency key returns the original result.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Attributes:
        details: Contains key and timeout (when blocking)
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    "AlreadySettledError",
    "InvalidTransitionError",
    "LockAcquisitionError",
    "PaymentNotSecuredError",
    "PayoutAccountNotReadyError",
    "PayoutAlreadyAppliedError",
    "PayoutRecordedCaseChangedError",
    "ReleaseInProgressError",
    "SettlementFailedError",
    "SettlementValidationError",
    "StorageError",
    "StripeAPIUnavailableError",
    "StripeCardDeclinedError",
    "StripeError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeTimeoutError",
    "TransitionConflictError",
]
