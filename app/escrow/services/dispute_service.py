"""
Dispute lifecycle and settlement.

A party opens a dispute on an in-progress case (in_progress -> disputed).
An admin settles it with exactly one action:

    refund           full refund to the attorney, nothing paid out
    release          full payout to the paralegal net of the platform fee
    release_partial  gross amount paid out net of fee, remainder refunded

Settlement is a resumable saga recorded on DisputeSettlement:

1. The settlement row is created PENDING before any money moves
2. Refund (if any) is issued; refund_id stored, status REFUND_DONE
3. Transfer (if any) through PayoutService.settle; the Payout insert,
   settlement completion, dispute resolution and disputed -> closed all
   commit in one transaction
4. Any gateway failure keeps the last completed step, stores the sanitized
   error, leaves the case disputed and raises SettlementFailedError

Re-submitting the same action resumes from the recorded step. Every
gateway call uses an idempotency key derived from the settlement, so a
step whose response was lost is not repeated at Stripe.

Usage:
    from escrow.services import DisputeService

    outcome = DisputeService.settle_dispute(
        case.id, dispute.id, "release_partial", 50_000, actor=admin
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError
from django.db.models import F
from django.utils import timezone

from core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from core.services import BaseService

from escrow.adapters import IdempotencyKeyGenerator, StripeAdapter, is_retryable_stripe_error
from escrow.exceptions import (
    AlreadySettledError,
    InvalidTransitionError,
    PayoutAlreadyAppliedError,
    SettlementFailedError,
    SettlementValidationError,
    StripeError,
)
from escrow.locks import DistributedLock
from escrow.models import Case, Dispute, DisputeSettlement, Payout
from escrow.services.audit_service import AuditService
from escrow.services.case_service import CaseStateMachine, get_case, no_payout_running
from escrow.services.payout_service import PayoutService, calculate_fee
from escrow.state_machines import (
    AuditTargetType,
    CaseStatus,
    DisputeStatus,
    EscrowStatus,
    SettlementAction,
    SettlementStatus,
)

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User


SETTLEMENT_LOCK_TTL = 180
SETTLEMENT_LOCK_TIMEOUT = 10.0


@dataclass
class SettlementOutcome:
    """
    Result of settle_dispute().

    Attributes:
        settlement: The completed settlement
        transfer_id / refund_id: Gateway ids, None when not applicable
        already_settled: True when an identical settlement already existed
    """

    settlement: DisputeSettlement
    transfer_id: str | None
    refund_id: str | None
    already_settled: bool = False


def settlement_amounts(action: str, total_cents: int, gross_amount_cents: int | None) -> dict:
    """
    Compute the money split for a settlement action.

    Raises:
        SettlementValidationError: Unknown action or amount out of range
    """
    if action not in SettlementAction.values:
        raise SettlementValidationError(
            f"Unknown settlement action '{action}'",
            details={"action": action, "allowed": list(SettlementAction.values)},
        )

    if action == SettlementAction.REFUND:
        gross = 0
    elif action == SettlementAction.RELEASE:
        gross = total_cents
    else:
        if gross_amount_cents is None or not 0 < gross_amount_cents <= total_cents:
            raise SettlementValidationError(
                "Partial release amount must be positive and at most the case total",
                details={
                    "gross_amount_cents": gross_amount_cents,
                    "total_amount_cents": total_cents,
                },
            )
        gross = gross_amount_cents

    fee, payout = calculate_fee(gross) if gross else (0, 0)
    return {
        "gross_amount_cents": gross,
        "refund_amount_cents": total_cents - gross,
        "payout_amount_cents": payout,
        "fee_amount_cents": fee,
    }


class DisputeService(BaseService):
    """Dispute creation, admin notes and settlement."""

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    # =========================================================================
    # Dispute Lifecycle
    # =========================================================================

    @classmethod
    def open_dispute(
        cls,
        case_id: uuid.UUID | str,
        user: User,
        message: str,
        request: HttpRequest | None = None,
    ) -> Dispute:
        """
        Open a dispute and move the case in_progress -> disputed.

        Raises:
            PermissionDeniedError: User is not a party to the case
            ValidationError: Empty message
            InvalidTransitionError: Case is not in progress
            ReleaseInProgressError: A payout is running for the case
            TransitionConflictError: Case changed while the dispute was opened
        """
        case = get_case(case_id)
        if not case.is_party(user):
            raise PermissionDeniedError(
                "Only case parties can open a dispute",
                details={"case_id": str(case.pk)},
            )
        message = (message or "").strip()
        if not message:
            raise ValidationError(
                "Dispute message is required",
                error_code="MESSAGE_REQUIRED",
            )

        if case.status != CaseStatus.IN_PROGRESS:
            raise InvalidTransitionError(case.status, CaseStatus.DISPUTED)

        with no_payout_running(case.pk), cls.atomic():
            case = CaseStateMachine.transition(
                case.pk,
                CaseStatus.IN_PROGRESS,
                CaseStatus.DISPUTED,
                actor=user,
            )
            dispute = Dispute.objects.create(case=case, raised_by=user, message=message)
            AuditService.record(
                "dispute.create",
                actor=user,
                target_type=AuditTargetType.DISPUTE,
                target_id=str(dispute.pk),
                case=case,
                meta={"message_length": len(message)},
                request=request,
            )
        return dispute

    @classmethod
    def get_dispute(cls, case_id: uuid.UUID | str, dispute_id: uuid.UUID | str) -> Dispute:
        try:
            return Dispute.objects.select_related("case").get(pk=dispute_id, case_id=case_id)
        except (Dispute.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError(
                f"Dispute {dispute_id} not found",
                error_code="DISPUTE_NOT_FOUND",
                details={"case_id": str(case_id), "dispute_id": str(dispute_id)},
            ) from None

    @classmethod
    def update_admin_notes(
        cls,
        case_id: uuid.UUID | str,
        dispute_id: uuid.UUID | str,
        notes: str,
        actor: User,
        request: HttpRequest | None = None,
    ) -> Dispute:
        """Replace admin notes. Allowed before and after settlement."""
        dispute = cls.get_dispute(case_id, dispute_id)
        dispute.admin_notes = notes or ""
        dispute.save(update_fields=["admin_notes", "updated_at"])

        AuditService.record(
            "dispute.admin_notes",
            actor=actor,
            target_type=AuditTargetType.DISPUTE,
            target_id=str(dispute.pk),
            case=dispute.case,
            meta={"notes_length": len(dispute.admin_notes)},
            request=request,
        )
        return dispute

    @classmethod
    def list_open_disputes(cls):
        """Open disputes, oldest first, with their case loaded."""
        return Dispute.objects.filter(status=DisputeStatus.OPEN).select_related(
            "case", "raised_by"
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    @classmethod
    def settle_dispute(
        cls,
        case_id: uuid.UUID | str,
        dispute_id: uuid.UUID | str,
        action: str,
        gross_amount_cents: int | None,
        actor: User,
        request: HttpRequest | None = None,
    ) -> SettlementOutcome:
        """
        Apply one settlement action to an open dispute.

        Returns:
            SettlementOutcome; already_settled=True for an identical repeat

        Raises:
            SettlementValidationError: Bad action or amount
            AlreadySettledError: A different settlement already exists
            ValidationError: Dispute not open, case not disputed or not funded
            PayoutAccountNotReadyError: Paralegal cannot receive the transfer
            SettlementFailedError: A gateway step failed; retry the same action
        """
        dispute = cls.get_dispute(case_id, dispute_id)
        case = dispute.case
        amounts = settlement_amounts(action, case.settlement_amount_cents, gross_amount_cents)
        gross = amounts["gross_amount_cents"]

        with DistributedLock(
            f"escrow:settlement:{case.pk}",
            ttl=SETTLEMENT_LOCK_TTL,
            timeout=SETTLEMENT_LOCK_TIMEOUT,
        ):
            existing = DisputeSettlement.objects.filter(case=case).first()
            if existing is not None:
                if existing.dispute_id != dispute.pk or not existing.matches(action, gross):
                    raise AlreadySettledError(
                        "This case already has a different settlement",
                        settlement=existing,
                        details={
                            "case_id": str(case.pk),
                            "action": existing.action,
                            "status": existing.status,
                        },
                    )
                if existing.is_completed:
                    return SettlementOutcome(
                        settlement=existing,
                        transfer_id=existing.transfer_id,
                        refund_id=existing.refund_id,
                        already_settled=True,
                    )
                settlement = existing
            else:
                cls._check_preconditions(case, dispute, amounts)
                try:
                    settlement = DisputeSettlement.objects.create(
                        case=case, dispute=dispute, action=action, **amounts
                    )
                except IntegrityError:
                    raise AlreadySettledError(
                        "This case already has a settlement",
                        details={"case_id": str(case.pk)},
                    ) from None

            DisputeSettlement.objects.filter(pk=settlement.pk).update(
                attempts=F("attempts") + 1,
                updated_at=timezone.now(),
            )
            settlement.refresh_from_db()

            cls.get_logger().info(
                "Settling dispute",
                extra={
                    "case_id": str(case.pk),
                    "dispute_id": str(dispute.pk),
                    "action": action,
                    "settlement_status": settlement.status,
                    "attempt": settlement.attempts,
                },
            )

            settlement = cls._run_settlement(settlement, actor)

        case.refresh_from_db()
        AuditService.record(
            "dispute.settle",
            actor=actor,
            target_type=AuditTargetType.DISPUTE,
            target_id=str(dispute.pk),
            case=case,
            meta={
                "action": action,
                "gross_amount_cents": settlement.gross_amount_cents,
                "refund_amount_cents": settlement.refund_amount_cents,
                "payout_amount_cents": settlement.payout_amount_cents,
                "fee_amount_cents": settlement.fee_amount_cents,
                "transfer_id": settlement.transfer_id,
                "refund_id": settlement.refund_id,
            },
            request=request,
        )
        return SettlementOutcome(
            settlement=settlement,
            transfer_id=settlement.transfer_id,
            refund_id=settlement.refund_id,
        )

    @classmethod
    def _check_preconditions(cls, case: Case, dispute: Dispute, amounts: dict) -> None:
        if not dispute.is_open:
            raise ValidationError(
                "Dispute is not open",
                error_code="DISPUTE_NOT_OPEN",
                details={"dispute_id": str(dispute.pk), "status": dispute.status},
            )
        if case.status != CaseStatus.DISPUTED:
            raise ValidationError(
                "Case is not disputed",
                error_code="CASE_NOT_DISPUTED",
                details={"case_id": str(case.pk), "status": case.status},
            )
        if not case.is_funded:
            raise ValidationError(
                "Escrow for this case is not funded",
                error_code="ESCROW_NOT_FUNDED",
                details={"case_id": str(case.pk), "escrow_status": case.escrow_status},
            )
        if amounts["payout_amount_cents"] > 0:
            # Fail before the refund so a partial release never half-applies
            # for want of a payout account
            PayoutService.get_ready_account(case)

    @classmethod
    def _run_settlement(cls, settlement: DisputeSettlement, actor: User) -> DisputeSettlement:
        case = settlement.case

        # Refund step
        if settlement.requires_refund and not settlement.refund_id:
            try:
                refund = cls.get_stripe_adapter().create_refund(
                    payment_intent_id=case.escrow_intent_id,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "settlement_refund", settlement.pk
                    ),
                    amount_cents=settlement.refund_amount_cents,
                    metadata={"case_id": str(case.pk), "settlement_id": str(settlement.pk)},
                )
            except StripeError as e:
                cls._record_failure(settlement, "refund", e)
                raise SettlementFailedError(
                    "Refund could not be issued; the dispute remains open for retry",
                    details={
                        "case_id": str(case.pk),
                        "step": "refund",
                        "retryable": is_retryable_stripe_error(e),
                    },
                ) from e

            DisputeSettlement.objects.filter(pk=settlement.pk).update(
                refund_id=refund.id,
                status=SettlementStatus.REFUND_DONE,
                last_error="",
                updated_at=timezone.now(),
            )
            settlement.refresh_from_db()

        if not settlement.requires_transfer:
            with cls.atomic():
                Case.objects.filter(pk=case.pk).update(
                    escrow_status=EscrowStatus.REFUNDED,
                    version=F("version") + 1,
                    updated_at=timezone.now(),
                )
                cls._finalize(settlement, actor, transfer_id=None)
            settlement.refresh_from_db()
            return settlement

        # Transfer step
        DisputeSettlement.objects.filter(pk=settlement.pk).update(
            status=SettlementStatus.TRANSFER_PENDING,
            updated_at=timezone.now(),
        )
        try:
            PayoutService.settle(
                case.pk,
                settlement.gross_amount_cents,
                within_transaction=lambda payout: cls._finalize(
                    settlement, actor, transfer_id=payout.transfer_id
                ),
                expected_status=CaseStatus.DISPUTED,
            )
        except PayoutAlreadyAppliedError as e:
            # Payout committed on an earlier attempt; finish the bookkeeping
            payout = e.payout or Payout.objects.filter(case_id=case.pk).first()
            with cls.atomic():
                cls._finalize(settlement, actor, transfer_id=payout.transfer_id if payout else None)
        except StripeError as e:
            cls._record_failure(settlement, "transfer", e)
            raise SettlementFailedError(
                "Transfer could not be issued; the dispute remains open for retry",
                details={
                    "case_id": str(case.pk),
                    "step": "transfer",
                    "retryable": is_retryable_stripe_error(e),
                },
            ) from e

        settlement.refresh_from_db()
        return settlement

    @classmethod
    def _finalize(
        cls,
        settlement: DisputeSettlement,
        actor: User,
        transfer_id: str | None,
    ) -> None:
        """Complete the settlement, resolve the dispute and close the case."""
        now = timezone.now()
        DisputeSettlement.objects.filter(pk=settlement.pk).exclude(
            status=SettlementStatus.COMPLETED
        ).update(
            status=SettlementStatus.COMPLETED,
            transfer_id=transfer_id,
            last_error="",
            settled_at=now,
            settled_by=actor,
            updated_at=now,
        )
        Dispute.objects.filter(pk=settlement.dispute_id).update(
            status=DisputeStatus.RESOLVED,
            resolved_at=now,
            updated_at=now,
        )
        CaseStateMachine.transition(
            settlement.case_id,
            CaseStatus.DISPUTED,
            CaseStatus.CLOSED,
            actor=actor,
            allow_settlement=True,
        )

    @classmethod
    def _record_failure(cls, settlement: DisputeSettlement, step: str, error: StripeError) -> None:
        DisputeSettlement.objects.filter(pk=settlement.pk).update(
            last_error=f"{step}: {error.message}"[:1000],
            updated_at=timezone.now(),
        )
        cls.get_logger().error(
            f"Settlement {step} failed",
            extra={
                "case_id": str(settlement.case_id),
                "settlement_id": str(settlement.pk),
                "error_code": error.error_code,
            },
        )
