"""
Escrow funding: intent creation and payment-provider state sync.

The only way a case becomes funded is handle_payment_succeeded(), which
runs from a verified payment_intent.succeeded webhook. Funding also moves
an ASSIGNED case to IN_PROGRESS; this is the only status transition in the
system that no user triggers.

Gateway objects are matched to cases in this order:
    1. metadata.case_id
    2. Case.escrow_intent_id
    3. Case.payment_intent_id

Webhook-facing methods return ServiceResult with data=None when no case
matches: unknown correlation is logged, never treated as a failure.

Usage:
    from escrow.services import FundingService

    result = FundingService.handle_payment_succeeded(event.event_id, intent)
    intent = FundingService.create_escrow_intent(case.id, actor=attorney)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from django.db.models import F
from django.utils import timezone

from core.exceptions import PermissionDeniedError, ValidationError
from core.services import BaseService, ServiceResult

from escrow.adapters import CreatePaymentIntentParams, IdempotencyKeyGenerator, StripeAdapter
from escrow.models import Case
from escrow.services.audit_service import AuditService
from escrow.services.case_service import CaseStateMachine, get_case
from escrow.state_machines import AuditTargetType, CaseStatus, EscrowStatus

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User


# Stripe rejects card charges below 50 cents
MIN_ESCROW_AMOUNT_CENTS = 50

# Statuses in which the attorney may fund a case
FUNDABLE_STATUSES = [CaseStatus.OPEN, CaseStatus.ASSIGNED]

# Escrow states a payment_intent.succeeded may (re)mark as funded
FUNDABLE_ESCROW_STATUSES = [EscrowStatus.AWAITING_FUNDING, EscrowStatus.FUNDED]

# payment_intent.* events that report progress on a not-yet-funded intent
PENDING_INTENT_EVENTS = {
    "payment_intent.amount_capturable_updated": "requires_capture",
    "payment_intent.processing": "processing",
    "payment_intent.requires_action": "requires_action",
    "payment_intent.canceled": "canceled",
    "payment_intent.payment_failed": "requires_payment_method",
}


@dataclass
class EscrowIntent:
    """What the client needs to confirm the escrow payment."""

    case_id: str
    intent_id: str
    client_secret: str | None
    amount_cents: int
    currency: str
    created: bool


def _parse_case_id(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def case_id_from_transfer_group(transfer_group: str | None) -> uuid.UUID | None:
    """Parse "case_<uuid>" back to the case id."""
    if not transfer_group or not transfer_group.startswith("case_"):
        return None
    return _parse_case_id(transfer_group[len("case_") :])


def find_case(
    *,
    metadata: dict | None = None,
    intent_id: str | None = None,
    transfer_group: str | None = None,
) -> Case | None:
    """
    Resolve the case a gateway object belongs to.

    Tries metadata.case_id (or the transfer group), then the stored
    escrow intent, then the last seen payment intent.
    """
    metadata = metadata or {}
    case_id = _parse_case_id(metadata.get("case_id")) or case_id_from_transfer_group(
        transfer_group
    )
    if case_id is not None:
        case = Case.objects.filter(pk=case_id).first()
        if case is not None:
            return case

    if intent_id:
        case = Case.objects.filter(escrow_intent_id=intent_id).first()
        if case is not None:
            return case
        return Case.objects.filter(payment_intent_id=intent_id).first()

    return None


class FundingService(BaseService):
    """
    Escrow intent creation and webhook-driven funding state.

    Each handle_* method updates the case with conditional UPDATEs and
    returns the refreshed case (or None when nothing matched). Auditing is
    left to the webhook pipeline, which writes one row per event.
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

    # =========================================================================
    # Intent Creation
    # =========================================================================

    @classmethod
    def create_escrow_intent(
        cls,
        case_id: uuid.UUID | str,
        actor: User,
        request: HttpRequest | None = None,
    ) -> EscrowIntent:
        """
        Create (or return) the escrow PaymentIntent for a case.

        The price is locked into locked_total_amount_cents when the intent
        is created. Repeated calls return the existing intent.

        Raises:
            PermissionDeniedError: Actor is not the case attorney
            ValidationError: Case not fundable or amount too small
        """
        case = get_case(case_id)
        if case.attorney_id != actor.pk:
            raise PermissionDeniedError(
                "Only the case attorney can fund this case",
                details={"case_id": str(case.pk)},
            )

        adapter = cls.get_stripe_adapter()

        if case.escrow_intent_id:
            intent = adapter.retrieve_payment_intent(case.escrow_intent_id)
            return EscrowIntent(
                case_id=str(case.pk),
                intent_id=intent.id,
                client_secret=intent.client_secret,
                amount_cents=intent.amount_cents,
                currency=intent.currency,
                created=False,
            )

        if case.status not in FUNDABLE_STATUSES:
            raise ValidationError(
                f"Case cannot be funded while {case.status}",
                error_code="CASE_NOT_FUNDABLE",
                details={"case_id": str(case.pk), "status": case.status},
            )
        if case.total_amount_cents < MIN_ESCROW_AMOUNT_CENTS:
            raise ValidationError(
                "Case amount must be at least $0.50",
                error_code="INVALID_AMOUNT",
                details={"total_amount_cents": case.total_amount_cents},
            )

        amount = case.total_amount_cents
        intent = adapter.create_payment_intent(
            CreatePaymentIntentParams(
                amount_cents=amount,
                currency=case.currency,
                idempotency_key=IdempotencyKeyGenerator.generate("escrow_intent", case.pk),
                transfer_group=case.transfer_group,
                metadata={
                    "case_id": str(case.pk),
                    "attorney_id": str(case.attorney_id),
                },
                description=f"Escrow for case: {case.title}"[:200],
                receipt_email=getattr(actor, "email", None),
            )
        )

        now = timezone.now()
        rows = Case.objects.filter(pk=case.pk, escrow_intent_id__isnull=True).update(
            escrow_intent_id=intent.id,
            payment_intent_id=intent.id,
            locked_total_amount_cents=amount,
            escrow_status=EscrowStatus.AWAITING_FUNDING,
            payment_status=intent.status,
            version=F("version") + 1,
            updated_at=now,
        )
        if rows == 0:
            # A concurrent request stored an intent first; the idempotency
            # key makes it the same intent
            case.refresh_from_db()
            cls.get_logger().info(
                "Escrow intent already stored by concurrent request",
                extra={"case_id": str(case.pk), "intent_id": case.escrow_intent_id},
            )
        else:
            case.refresh_from_db()
            AuditService.record(
                "payment.intent.start",
                actor=actor,
                target_type=AuditTargetType.PAYMENT,
                target_id=intent.id,
                case=case,
                meta={"amount_cents": amount, "currency": case.currency},
                request=request,
            )

        return EscrowIntent(
            case_id=str(case.pk),
            intent_id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=amount,
            currency=intent.currency,
            created=rows == 1,
        )

    # =========================================================================
    # Webhook Handling
    # =========================================================================

    @classmethod
    def handle_payment_succeeded(cls, event_id: str, intent: dict) -> ServiceResult[Case | None]:
        """
        Mark a case funded from a verified payment_intent.succeeded object.

        - escrow_intent_id is set only if unset (never overwritten)
        - the amount/currency snapshot is set only if unset
        - an ASSIGNED case moves to IN_PROGRESS
        - a released or refunded escrow is left untouched
        """
        intent_id = intent.get("id")
        case = find_case(
            metadata=intent.get("metadata"),
            intent_id=intent_id,
            transfer_group=intent.get("transfer_group"),
        )
        log_context = {"event_id": event_id, "payment_intent_id": intent_id}

        if case is None:
            cls.get_logger().info("Funding event matched no case", extra=log_context)
            return ServiceResult.success(None)

        amount = intent.get("amount_received") or intent.get("amount") or 0
        currency = (intent.get("currency") or "").lower()

        with cls.atomic():
            case = get_case(case.pk, for_update=True)
            if case.escrow_status not in FUNDABLE_ESCROW_STATUSES:
                cls.get_logger().warning(
                    "Ignoring funding event for settled escrow",
                    extra={
                        **log_context,
                        "case_id": str(case.pk),
                        "escrow_status": case.escrow_status,
                    },
                )
                return ServiceResult.success(case)

            updates: dict[str, Any] = {
                "payment_intent_id": intent_id,
                "escrow_status": EscrowStatus.FUNDED,
                "payment_status": intent.get("status") or "succeeded",
            }
            if not case.escrow_intent_id:
                updates["escrow_intent_id"] = intent_id
            if case.locked_total_amount_cents is None and amount:
                updates["locked_total_amount_cents"] = amount
            if not case.total_amount_cents and amount:
                updates["total_amount_cents"] = amount
            if not case.currency and currency:
                updates["currency"] = currency

            Case.objects.filter(
                pk=case.pk, escrow_status__in=FUNDABLE_ESCROW_STATUSES
            ).update(
                **updates,
                version=F("version") + 1,
                updated_at=timezone.now(),
            )

            if case.status == CaseStatus.ASSIGNED:
                case = CaseStateMachine.transition(
                    case.pk, CaseStatus.ASSIGNED, CaseStatus.IN_PROGRESS
                )
            else:
                case.refresh_from_db()

        cls.get_logger().info(
            "Case escrow funded",
            extra={**log_context, "case_id": str(case.pk), "amount_cents": amount},
        )
        return ServiceResult.success(case)

    @classmethod
    def handle_payment_pending(
        cls, event_id: str, event_type: str, intent: dict
    ) -> ServiceResult[Case | None]:
        """Record progress of an intent on a case that is not funded yet."""
        intent_id = intent.get("id")
        case = find_case(
            metadata=intent.get("metadata"),
            intent_id=intent_id,
            transfer_group=intent.get("transfer_group"),
        )
        if case is None:
            cls.get_logger().info(
                "Payment intent event matched no case",
                extra={"event_id": event_id, "payment_intent_id": intent_id},
            )
            return ServiceResult.success(None)

        status = intent.get("status") or PENDING_INTENT_EVENTS.get(event_type, "")
        updates: dict[str, Any] = {
            "payment_intent_id": intent_id,
            "payment_status": status,
            "escrow_status": EscrowStatus.AWAITING_FUNDING,
            "version": F("version") + 1,
            "updated_at": timezone.now(),
        }
        currency = (intent.get("currency") or "").lower()
        if currency:
            updates["currency"] = currency

        rows = Case.objects.filter(
            pk=case.pk, escrow_status=EscrowStatus.AWAITING_FUNDING
        ).update(**updates)
        if rows == 0:
            cls.get_logger().info(
                "Ignoring intent progress for funded case",
                extra={"event_id": event_id, "case_id": str(case.pk), "event_type": event_type},
            )
        case.refresh_from_db()
        return ServiceResult.success(case)

    @classmethod
    def handle_checkout_completed(cls, event_id: str, session: dict) -> ServiceResult[Case | None]:
        """Store the checkout session id and backfill the escrow intent."""
        metadata = dict(session.get("metadata") or {})
        if not metadata.get("case_id") and session.get("client_reference_id"):
            metadata["case_id"] = session["client_reference_id"]
        intent_id = session.get("payment_intent")

        case = find_case(metadata=metadata, intent_id=intent_id)
        if case is None:
            cls.get_logger().info(
                "Checkout session matched no case",
                extra={"event_id": event_id, "session_id": session.get("id")},
            )
            return ServiceResult.success(None)

        now = timezone.now()
        Case.objects.filter(pk=case.pk).update(
            escrow_session_id=session.get("id"),
            version=F("version") + 1,
            updated_at=now,
        )
        if intent_id:
            Case.objects.filter(pk=case.pk, escrow_intent_id__isnull=True).update(
                escrow_intent_id=intent_id,
                payment_intent_id=intent_id,
                updated_at=now,
            )
        case.refresh_from_db()
        return ServiceResult.success(case)

    @classmethod
    def handle_refund(cls, event_id: str, event_type: str, obj: dict) -> ServiceResult[Case | None]:
        """
        Sync a refund or refunded charge.

        A fully refunded escrow moves escrow_status FUNDED -> REFUNDED.
        """
        intent_id = obj.get("payment_intent")
        case = find_case(metadata=obj.get("metadata"), intent_id=intent_id)
        if case is None:
            cls.get_logger().info(
                "Refund event matched no case",
                extra={"event_id": event_id, "payment_intent_id": intent_id},
            )
            return ServiceResult.success(None)

        if event_type == "charge.refunded":
            full_refund = bool(obj.get("refunded"))
        else:
            full_refund = (
                obj.get("status") == "succeeded"
                and (obj.get("amount") or 0) >= case.settlement_amount_cents
            )

        if full_refund:
            rows = Case.objects.filter(pk=case.pk, escrow_status=EscrowStatus.FUNDED).update(
                escrow_status=EscrowStatus.REFUNDED,
                version=F("version") + 1,
                updated_at=timezone.now(),
            )
            if rows:
                cls.get_logger().info(
                    "Escrow refunded",
                    extra={"event_id": event_id, "case_id": str(case.pk)},
                )
            case.refresh_from_db()
        return ServiceResult.success(case)

    @classmethod
    def handle_transfer(cls, event_id: str, event_type: str, transfer: dict) -> ServiceResult[Case | None]:
        """Backfill payout_transfer_id, and paid_out_at on transfer.created."""
        case = find_case(
            metadata=transfer.get("metadata"),
            transfer_group=transfer.get("transfer_group"),
        )
        if case is None:
            cls.get_logger().info(
                "Transfer event matched no case",
                extra={"event_id": event_id, "transfer_id": transfer.get("id")},
            )
            return ServiceResult.success(None)

        now = timezone.now()
        if transfer.get("id"):
            Case.objects.filter(pk=case.pk, payout_transfer_id__isnull=True).update(
                payout_transfer_id=transfer["id"],
                updated_at=now,
            )
        if event_type == "transfer.created":
            Case.objects.filter(pk=case.pk, paid_out_at__isnull=True).update(
                paid_out_at=now,
                updated_at=now,
            )
        if event_type in ("transfer.reversed", "transfer.failed"):
            cls.get_logger().warning(
                f"Payout transfer {event_type.split('.')[1]}",
                extra={
                    "event_id": event_id,
                    "case_id": str(case.pk),
                    "transfer_id": transfer.get("id"),
                },
            )
        case.refresh_from_db()
        return ServiceResult.success(case)
