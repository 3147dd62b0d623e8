"""
Adapters for the escrow engine's external collaborators.

- StripeAdapter: payment intents, refunds, transfers, connected accounts
  and webhook verification
- CaseObjectStore: S3 objects under cases/<case_id>/

All external calls go through these adapters so that timeouts, error
translation and logging are consistent.

Usage:
    from escrow.adapters import StripeAdapter, IdempotencyKeyGenerator
    from escrow.adapters import get_object_store
"""

from escrow.adapters.storage import CaseObjectStore, get_object_store, set_object_store
from escrow.adapters.stripe_adapter import (
    ConnectedAccountResult,
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    RefundResult,
    StripeAdapter,
    TransferResult,
    is_retryable_stripe_error,
)

__all__ = [
    "CaseObjectStore",
    "ConnectedAccountResult",
    "CreatePaymentIntentParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "RefundResult",
    "StripeAdapter",
    "TransferResult",
    "get_object_store",
    "is_retryable_stripe_error",
    "set_object_store",
]
