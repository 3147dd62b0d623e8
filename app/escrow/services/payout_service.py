"""
Payout calculation and transfer to the paralegal's connected account.

settle() is the only code path that moves escrowed money to a paralegal.
It follows the two-phase pattern used for every gateway call here:

1. Validate and check payout readiness (no money moves on failure)
2. Call Stripe create_transfer OUTSIDE any database transaction
3. In one transaction: insert Payout + PlatformIncome, flip
   payment_released false -> true, and apply the caller's status change

The unique Payout/PlatformIncome constraint on case is what stops a double
payout. A second insert fails loudly and is surfaced as
PayoutAlreadyAppliedError carrying the existing row. The transfer uses a
deterministic idempotency key per case, so a retry after a lost response
gets the original transfer back from Stripe instead of a new one.

Usage:
    from escrow.services import PayoutService, calculate_fee

    fee, net = calculate_fee(100_000)       # (18_000, 82_000)
    result = PayoutService.settle(case.id, 100_000)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Callable

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import PermissionDeniedError, ValidationError
from core.services import BaseService

from escrow.adapters import IdempotencyKeyGenerator, StripeAdapter
from escrow.exceptions import (
    InvalidTransitionError,
    PayoutAccountNotReadyError,
    PayoutAlreadyAppliedError,
    PayoutRecordedCaseChangedError,
    TransitionConflictError,
)
from escrow.locks import case_payout_lock
from escrow.models import Case, ConnectedAccount, Payout, PlatformIncome
from escrow.services.audit_service import AuditService
from escrow.services.case_service import CaseStateMachine, ensure_work_can_begin, get_case
from escrow.state_machines import AuditTargetType, CaseStatus, EscrowStatus

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User


logger = logging.getLogger(__name__)


# =============================================================================
# Fee Calculation
# =============================================================================


def calculate_fee(gross_amount_cents: int, fee_percent: int | None = None) -> tuple[int, int]:
    """
    Split a released amount into platform fee and paralegal payout.

    The fee is rounded half-up to the nearest cent.

    Returns:
        (fee_cents, payout_cents), which always sum to gross_amount_cents

    Example:
        calculate_fee(100_000)  # (18_000, 82_000)
        calculate_fee(50_000)   # (9_000, 41_000)
    """
    if gross_amount_cents < 0:
        raise ValidationError(
            "Amount must not be negative",
            details={"gross_amount_cents": gross_amount_cents},
        )
    if fee_percent is None:
        fee_percent = settings.PLATFORM_FEE_PERCENT

    fee = (Decimal(gross_amount_cents) * Decimal(fee_percent) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    fee_cents = int(fee)
    return fee_cents, gross_amount_cents - fee_cents


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class PayoutResult:
    """
    Outcome of a payout.

    Attributes:
        payout: The Payout row
        fee_amount_cents: Platform fee retained
        already_applied: True if the payout existed before this call
    """

    payout: Payout
    fee_amount_cents: int
    already_applied: bool = False

    @property
    def transfer_id(self) -> str:
        return self.payout.transfer_id


# =============================================================================
# Payout Service
# =============================================================================


class PayoutService(BaseService):
    """
    Service for paying a case's paralegal out of escrow.

    Safety Guarantees:
        - Readiness and amount checks happen before any Stripe call
        - The Stripe call is never inside a transaction that could roll back
        - A failed transfer writes nothing: no Payout, payment_released false
        - Payout, PlatformIncome and payment_released commit together
    """

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    @classmethod
    def get_ready_account(cls, case: Case) -> ConnectedAccount:
        """
        Connected account of the case's paralegal, if it can take payouts.

        Raises:
            PayoutAccountNotReadyError: No paralegal, no account, or
                onboarding incomplete / payouts disabled
        """
        if case.paralegal_id is None:
            raise PayoutAccountNotReadyError(
                "Case has no paralegal to pay",
                details={"case_id": str(case.pk)},
            )

        account = ConnectedAccount.objects.filter(user_id=case.paralegal_id).first()
        if account is None or not account.is_ready_for_payouts:
            raise PayoutAccountNotReadyError(
                "Paralegal has not completed payout onboarding",
                details={
                    "case_id": str(case.pk),
                    "onboarding_status": account.onboarding_status if account else None,
                    "payouts_enabled": account.payouts_enabled if account else False,
                },
            )
        return account

    @classmethod
    def settle(
        cls,
        case_id: uuid.UUID | str,
        gross_amount_cents: int,
        *,
        within_transaction: Callable[[Payout], None] | None = None,
        expected_status: str | None = None,
    ) -> PayoutResult:
        """
        Transfer gross_amount_cents minus the platform fee to the paralegal.

        Args:
            case_id: Case being paid out
            gross_amount_cents: Released amount before fee
            within_transaction: Called with the new Payout inside the same
                transaction that records it (status changes, settlement rows)
            expected_status: Case status required before any money moves,
                checked while the case payout lock is held

        Returns:
            PayoutResult for the new payout

        Raises:
            ValidationError: Amount out of range or escrow not funded
            PayoutAccountNotReadyError: Paralegal cannot receive payouts
            PayoutAlreadyAppliedError: A payout already exists for the case
            TransitionConflictError: Case left expected_status (no money moved)
            PayoutRecordedCaseChangedError: Transfer and Payout are recorded
                but within_transaction could not apply the status change
            StripeError: Transfer failed (nothing was written)
            LockAcquisitionError: Another payout attempt holds the case lock
        """
        with case_payout_lock(case_id):
            return cls._settle_with_lock(
                case_id, gross_amount_cents, within_transaction, expected_status
            )

    @classmethod
    def _settle_with_lock(
        cls,
        case_id: uuid.UUID | str,
        gross_amount_cents: int,
        within_transaction: Callable[[Payout], None] | None,
        expected_status: str | None = None,
    ) -> PayoutResult:
        case = get_case(case_id)
        log_context = {"case_id": str(case.pk), "gross_amount_cents": gross_amount_cents}

        if expected_status is not None and case.status != expected_status:
            raise TransitionConflictError(
                f"Case status is {case.status}, expected {expected_status}",
                details={
                    "case_id": str(case.pk),
                    "expected": expected_status,
                    "actual": case.status,
                },
            )

        # Step 1: Validate (no money moves on failure)
        existing = Payout.objects.filter(case=case).first()
        if existing is not None or case.payment_released:
            raise PayoutAlreadyAppliedError(
                "Funds for this case were already released",
                payout=existing,
                details={"case_id": str(case.pk)},
            )

        if not case.is_funded:
            raise ValidationError(
                "Escrow for this case is not funded",
                error_code="ESCROW_NOT_FUNDED",
                details={"case_id": str(case.pk), "escrow_status": case.escrow_status},
            )

        total = case.settlement_amount_cents
        if gross_amount_cents <= 0 or gross_amount_cents > total:
            raise ValidationError(
                "Released amount must be positive and at most the case total",
                error_code="INVALID_AMOUNT",
                details={"gross_amount_cents": gross_amount_cents, "total_amount_cents": total},
            )

        account = cls.get_ready_account(case)
        fee_cents, payout_cents = calculate_fee(gross_amount_cents)

        # Step 2: Transfer (OUTSIDE transaction); StripeError propagates untouched
        cls.get_logger().info(
            "Creating payout transfer",
            extra={**log_context, "payout_cents": payout_cents, "fee_cents": fee_cents},
        )
        transfer = cls.get_stripe_adapter().create_transfer(
            amount_cents=payout_cents,
            destination_account=account.stripe_account_id,
            idempotency_key=IdempotencyKeyGenerator.generate("payout_transfer", case.pk),
            transfer_group=case.transfer_group,
            currency=case.currency,
            metadata={
                "case_id": str(case.pk),
                "paralegal_id": str(case.paralegal_id),
            },
        )

        # Step 3: Record the payout atomically. Once money has moved the
        # Payout is kept even if the caller's status change fails.
        now = timezone.now()
        state_error: Exception | None = None
        try:
            with cls.atomic():
                payout = Payout.objects.create(
                    case=case,
                    paralegal_id=case.paralegal_id,
                    amount_paid_cents=payout_cents,
                    gross_amount_cents=gross_amount_cents,
                    currency=case.currency,
                    transfer_id=transfer.id,
                )
                PlatformIncome.objects.create(
                    case=case,
                    attorney_id=case.attorney_id,
                    paralegal_id=case.paralegal_id,
                    fee_amount_cents=fee_cents,
                    currency=case.currency,
                )

                rows = Case.objects.filter(pk=case.pk, payment_released=False).update(
                    payment_released=True,
                    payout_transfer_id=transfer.id,
                    paid_out_at=now,
                    escrow_status=EscrowStatus.RELEASED,
                    version=F("version") + 1,
                    updated_at=now,
                )
                if rows != 1:
                    raise IntegrityError("payment_released already set")

                if within_transaction is not None:
                    try:
                        with transaction.atomic():
                            within_transaction(payout)
                    except (TransitionConflictError, InvalidTransitionError) as e:
                        state_error = e
        except IntegrityError:
            existing = Payout.objects.filter(case_id=case.pk).first()
            cls.get_logger().warning(
                "Payout already applied for case",
                extra={**log_context, "transfer_id": transfer.id},
            )
            raise PayoutAlreadyAppliedError(
                "Funds for this case were already released",
                payout=existing,
                details={"case_id": str(case.pk)},
            ) from None

        if state_error is not None:
            cls.get_logger().error(
                "Payout recorded but case status change failed",
                extra={
                    **log_context,
                    "transfer_id": transfer.id,
                    "error_code": getattr(state_error, "error_code", None),
                },
            )
            AuditService.record(
                "payout.recorded.case_changed",
                target_type=AuditTargetType.PAYMENT,
                target_id=transfer.id,
                case=case,
                meta={
                    "payout_cents": payout_cents,
                    "fee_cents": fee_cents,
                    "expected_status": expected_status,
                    "error": str(state_error),
                },
            )
            raise PayoutRecordedCaseChangedError(
                "Funds were transferred but the case changed meanwhile; "
                "an administrator must reconcile it",
                payout=payout,
                details={"case_id": str(case.pk), "transfer_id": transfer.id},
            ) from state_error

        cls.get_logger().info(
            "Payout recorded",
            extra={**log_context, "transfer_id": transfer.id, "payout_cents": payout_cents},
        )
        return PayoutResult(payout=payout, fee_amount_cents=fee_cents)

    @classmethod
    def release_and_complete(
        cls,
        case_id: uuid.UUID | str,
        actor: User,
        request: HttpRequest | None = None,
    ) -> PayoutResult:
        """
        Attorney releases the full escrow: payout, then in_progress -> completed.

        A repeated request on an already completed case returns the
        existing payout with already_applied=True.

        Raises:
            PermissionDeniedError: Actor is not the case attorney
            PaymentNotSecuredError: Escrow was never funded
            InvalidTransitionError: Case is not in progress
            TransitionConflictError: Case left in_progress before money moved
            PayoutRecordedCaseChangedError: Case changed after the transfer
        """
        case = get_case(case_id)
        if case.attorney_id != actor.pk:
            raise PermissionDeniedError(
                "Only the case attorney can release funds",
                details={"case_id": str(case.pk)},
            )

        existing = Payout.objects.filter(case=case).first()
        if existing is not None and case.status in (CaseStatus.COMPLETED, CaseStatus.CLOSED):
            income = PlatformIncome.objects.filter(case=case).first()
            return PayoutResult(
                payout=existing,
                fee_amount_cents=income.fee_amount_cents if income else 0,
                already_applied=True,
            )

        if case.status != CaseStatus.IN_PROGRESS:
            raise InvalidTransitionError(case.status, CaseStatus.COMPLETED)
        ensure_work_can_begin(case)

        def complete_case(payout: Payout) -> None:
            CaseStateMachine.transition(
                case.pk,
                CaseStatus.IN_PROGRESS,
                CaseStatus.COMPLETED,
                actor=actor,
            )
            AuditService.record(
                "payment.release.transfer",
                actor=actor,
                target_type=AuditTargetType.PAYMENT,
                target_id=payout.transfer_id,
                case=case,
                meta={
                    "gross_amount_cents": payout.gross_amount_cents,
                    "payout_cents": payout.amount_paid_cents,
                    "currency": payout.currency,
                },
                request=request,
            )

        return cls.settle(
            case.pk,
            case.settlement_amount_cents,
            within_transaction=complete_case,
            expected_status=CaseStatus.IN_PROGRESS,
        )
