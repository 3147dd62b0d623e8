"""
Stripe API adapter for escrow operations.

All Stripe calls made by the escrow engine go through StripeAdapter so that
every call carries a bounded timeout, an idempotency key where Stripe
accepts one, structured timing logs, and translation of SDK errors into
escrow.exceptions.StripeError subclasses.

Every gateway object created for a case is tagged with the case's transfer
group ("case_<id>") and metadata case_id, so later webhooks can be traced
back to the case.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Platform webhook signing secret
- STRIPE_CONNECT_WEBHOOK_SECRET: Connected-account webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries made by the SDK (default: 3)

Usage:
    from escrow.adapters import StripeAdapter, CreatePaymentIntentParams

    result = StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=100_000,
            currency="usd",
            transfer_group=case.transfer_group,
            metadata={"case_id": str(case.id)},
            idempotency_key=IdempotencyKeyGenerator.generate("escrow_intent", case.id),
        )
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

import stripe
from django.conf import settings

from escrow.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating the escrow PaymentIntent of a case.

    Attributes:
        amount_cents: Amount held in escrow, in smallest currency unit
        currency: ISO 4217 currency code
        idempotency_key: Unique key for idempotent creation
        transfer_group: Per-case correlation id ("case_<id>")
        metadata: Key-value pairs, must include case_id
        description: Shown in the Stripe dashboard
        receipt_email: Attorney email for the receipt
    """

    amount_cents: int
    currency: str
    idempotency_key: str
    transfer_group: str
    metadata: dict[str, str] = field(default_factory=dict)
    description: str = ""
    receipt_email: str | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.transfer_group:
            raise ValueError("transfer_group is required")


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, succeeded, etc.)
        amount_cents: Amount in cents
        currency: Currency code
        client_secret: Secret for client-side confirmation
        transfer_group: Correlation id the intent was created with
        metadata: Attached metadata
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    transfer_group: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TransferResult:
    """
    Result from Stripe Transfer operations.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred in cents
        currency: Currency code
        destination_account: Destination connected account (acct_xxx)
        transfer_group: Correlation id
        metadata: Attached metadata
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    transfer_group: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Refunded PaymentIntent
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ConnectedAccountResult:
    """
    Result from Stripe Account operations.

    Attributes:
        id: Account ID (acct_xxx)
        details_submitted: Whether the holder finished onboarding forms
        payouts_enabled / charges_enabled: Capability flags
        requirements_due: Fields Stripe still needs
    """

    id: str
    details_submitted: bool = False
    payouts_enabled: bool = False
    charges_enabled: bool = False
    requirements_due: list[str] = field(default_factory=list)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Keys are deterministic, so a retried settlement or payout for the same
    case reuses the key and Stripe returns the original object instead of
    moving money twice.

    Example:
        key = IdempotencyKeyGenerator.generate("payout_transfer", case.id)
        # "payout_transfer:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


def is_retryable_stripe_error(error: Exception) -> bool:
    """True if the error is a transient Stripe failure worth retrying."""
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations used by the escrow engine.

    All methods are classmethods with no instance state, safe to call from
    request threads and Celery workers. Services hold a reference to the
    class and tests swap it through set_stripe_adapter().
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure the Stripe client with API key, timeout and retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _execute(
        cls,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        level: int = logging.INFO,
    ) -> Any:
        """
        Run one Stripe SDK call with timing logs and error translation.

        Raises:
            StripeError: Translated from any SDK exception
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)

        try:
            obj = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "stripe_object_id": getattr(obj, "id", None),
                "duration_ms": duration_ms,
            },
        )
        return obj

    # =========================================================================
    # Payment Intents
    # =========================================================================

    @classmethod
    def create_payment_intent(
        cls,
        params: CreatePaymentIntentParams,
    ) -> PaymentIntentResult:
        """
        Create the escrow PaymentIntent for a case.

        Returns:
            PaymentIntentResult including client_secret

        Raises:
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "transfer_group": params.transfer_group,
            "idempotency_key": params.idempotency_key,
        }

        create_params: dict[str, Any] = {
            "amount": params.amount_cents,
            "currency": params.currency,
            "automatic_payment_methods": {"enabled": True},
            "transfer_group": params.transfer_group,
            "metadata": params.metadata,
        }
        if params.description:
            create_params["description"] = params.description
        if params.receipt_email:
            create_params["receipt_email"] = params.receipt_email

        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.create(
                idempotency_key=params.idempotency_key,
                **create_params,
            ),
        )
        return cls._to_payment_intent_result(intent)

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
        """
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }
        intent = cls._execute(
            log_context,
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
            level=logging.DEBUG,
        )
        return cls._to_payment_intent_result(intent)

    @staticmethod
    def _to_payment_intent_result(intent: Any) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            client_secret=getattr(intent, "client_secret", None),
            transfer_group=getattr(intent, "transfer_group", None),
            metadata=dict(intent.metadata or {}),
        )

    # =========================================================================
    # Money Movement
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund a PaymentIntent fully (amount_cents=None) or partially.

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        refund_params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }
        if amount_cents is not None:
            refund_params["amount"] = amount_cents

        refund = cls._execute(
            log_context,
            lambda: stripe.Refund.create(idempotency_key=idempotency_key, **refund_params),
        )
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=refund.payment_intent,
            metadata=dict(refund.metadata or {}),
        )

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        transfer_group: str,
        currency: str = "usd",
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """
        Transfer funds from the platform balance to a connected account.

        Raises:
            StripeInvalidAccountError: Invalid destination account
            StripeInsufficientFundsError: Insufficient platform balance
        """
        log_context = {
            "operation": "create_transfer",
            "amount_cents": amount_cents,
            "destination_account": destination_account,
            "transfer_group": transfer_group,
            "idempotency_key": idempotency_key,
        }

        transfer = cls._execute(
            log_context,
            lambda: stripe.Transfer.create(
                amount=amount_cents,
                currency=currency,
                destination=destination_account,
                transfer_group=transfer_group,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )
        return TransferResult(
            id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            destination_account=transfer.destination,
            transfer_group=getattr(transfer, "transfer_group", None),
            metadata=dict(transfer.metadata or {}),
        )

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    @classmethod
    def create_connected_account(
        cls,
        email: str,
        idempotency_key: str,
        country: str = "US",
        metadata: dict[str, str] | None = None,
    ) -> ConnectedAccountResult:
        """Create an Express connected account that can receive transfers."""
        log_context = {
            "operation": "create_connected_account",
            "idempotency_key": idempotency_key,
        }
        account = cls._execute(
            log_context,
            lambda: stripe.Account.create(
                type="express",
                country=country,
                email=email,
                business_type="individual",
                capabilities={"transfers": {"requested": True}},
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )
        return cls._to_account_result(account)

    @classmethod
    def create_account_link(
        cls,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> str:
        """
        Create a hosted onboarding link for a connected account.

        Returns:
            The single-use onboarding URL
        """
        log_context = {
            "operation": "create_account_link",
            "account_id": account_id,
        }
        link = cls._execute(
            log_context,
            lambda: stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            ),
        )
        return link.url

    @staticmethod
    def _to_account_result(account: Any) -> ConnectedAccountResult:
        requirements = getattr(account, "requirements", None) or {}
        currently_due = requirements.get("currently_due") if hasattr(requirements, "get") else None
        return ConnectedAccountResult(
            id=account.id,
            details_submitted=bool(getattr(account, "details_submitted", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            requirements_due=list(currently_due or []),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
        connect: bool = False,
    ) -> dict[str, Any]:
        """
        Verify a Stripe webhook and return the parsed event.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header value
            connect: Verify with the connected-account secret instead of
                the platform secret

        Raises:
            StripeInvalidRequestError: Missing secret or invalid signature
        """
        secret = (
            settings.STRIPE_CONNECT_WEBHOOK_SECRET
            if connect
            else settings.STRIPE_WEBHOOK_SECRET
        )
        if not secret or not signature:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
            )

        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except (stripe.SignatureVerificationError, ValueError):
            # Details stay out of the response and logs
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
            ) from None

        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        return json.loads(payload)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe SDK exceptions to escrow exceptions.

        Messages are sanitized: raw provider text is logged at most as a
        code, never returned to API clients.

        Raises:
            StripeError: Always (one of its subclasses)
        """
        logger = cls.get_logger()
        log_context = {
            **log_context,
            "duration_ms": duration_ms,
            "error_type": type(error).__name__,
        }

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    "Insufficient funds",
                    stripe_code=error.code,
                    decline_code=decline_code,
                )
            raise StripeCardDeclinedError(
                "Card was declined",
                stripe_code=error.code,
                decline_code=decline_code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if error.code == "balance_insufficient":
                raise StripeInsufficientFundsError(
                    "Insufficient platform balance for transfer",
                    stripe_code=error.code,
                )
            if (getattr(error, "param", None) or "") in ("destination", "account") or (
                error.code or ""
            ).startswith("account"):
                raise StripeInvalidAccountError(
                    "Destination account cannot receive funds",
                    stripe_code=error.code,
                )
            raise StripeInvalidRequestError(
                "Payment provider rejected the request",
                stripe_code=error.code,
            )

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Payment provider rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context)
            if "timed out" in str(error).lower():
                raise StripeTimeoutError(
                    "Payment provider timed out. Please retry.",
                    stripe_code="timeout",
                )
            raise StripeAPIUnavailableError(
                "Could not connect to payment provider. Please retry.",
                stripe_code="api_connection_error",
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Payment provider authentication failed",
                stripe_code="authentication_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context)
            raise StripeAPIUnavailableError(
                "Payment provider error. Please retry.",
                stripe_code="api_error",
            )

        logger.error(
            "Unexpected error from Stripe",
            extra=log_context,
            exc_info=True,
        )
        raise StripeAPIUnavailableError(
            "Unexpected payment provider error",
            stripe_code="unknown_error",
        )
