"""
Case state machine and admin case operations.

CaseStateMachine is the only writer of Case.status. The allowed edges are
the @transition methods declared on escrow.models.Case; a transition is:

1. Reject the (from, to) pair if it is not an edge (no write happens)
2. Run the django-fsm transition method on the loaded case
3. Apply it as one conditional UPDATE ... WHERE status = <expected>

Step 3 is a compare-and-swap: of two concurrent requests from the same
state exactly one matches a row, the other gets TransitionConflictError
and must re-read the case.

Usage:
    from escrow.services import CaseStateMachine, CaseService

    case = CaseStateMachine.transition(case.id, "in_progress", "completed", actor=attorney)
    case = CaseService.update_status(case.id, "In Progress", actor=admin, request=request)
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService

from escrow.exceptions import (
    InvalidTransitionError,
    LockAcquisitionError,
    PaymentNotSecuredError,
    ReleaseInProgressError,
    TransitionConflictError,
)
from escrow.locks import case_payout_lock
from escrow.models import ARCHIVABLE_STATUSES, Case
from escrow.services.audit_service import AuditService
from escrow.state_machines import (
    FUNDED_IN_PROGRESS,
    AuditTargetType,
    CaseStatus,
    EscrowStatus,
)

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User


logger = logging.getLogger(__name__)


def get_case(case_id: uuid.UUID | str, *, for_update: bool = False) -> Case:
    """
    Load a case by id.

    Raises:
        NotFoundError: Unknown or malformed id
    """
    queryset = Case.objects.select_for_update() if for_update else Case.objects
    try:
        return queryset.get(pk=case_id)
    except (Case.DoesNotExist, ValueError, DjangoValidationError):
        raise NotFoundError(
            f"Case {case_id} not found",
            error_code="CASE_NOT_FOUND",
            details={"case_id": str(case_id)},
        ) from None


@contextmanager
def no_payout_running(case_id: uuid.UUID | str):
    """
    Hold the case payout lock for a status change that must not race a payout.

    Raises:
        ReleaseInProgressError: A payout currently holds the case
    """
    lock = case_payout_lock(case_id, blocking=False)
    try:
        lock.acquire()
    except LockAcquisitionError:
        raise ReleaseInProgressError(
            "Funds for this case are being released; try again shortly",
            details={"case_id": str(case_id)},
        ) from None
    try:
        yield
    finally:
        lock.release()


class CaseStateMachine:
    """
    Validates and applies case status transitions.

    The transition table is read from the django-fsm declarations on
    Case.status, so the model stays the single source of truth.
    """

    # Edges only a dispute settlement may take
    SETTLEMENT_ONLY = frozenset({"close_by_settlement"})

    _transitions: dict[tuple[str, str], str] | None = None

    @classmethod
    def transitions(cls) -> dict[tuple[str, str], str]:
        """Map of (source, target) -> Case transition method name."""
        if cls._transitions is None:
            field = Case._meta.get_field("status")
            cls._transitions = {
                (str(t.source), str(t.target)): t.name
                for t in field.get_all_transitions(Case)
            }
        return cls._transitions

    @classmethod
    def method_for(
        cls,
        from_status: str,
        to_status: str,
        allow_settlement: bool = False,
    ) -> str | None:
        method = cls.transitions().get((from_status, to_status))
        if method in cls.SETTLEMENT_ONLY and not allow_settlement:
            return None
        return method

    @classmethod
    def is_valid(cls, from_status: str, to_status: str, allow_settlement: bool = False) -> bool:
        return cls.method_for(from_status, to_status, allow_settlement) is not None

    @classmethod
    def allowed_targets(cls, from_status: str, allow_settlement: bool = False) -> list[str]:
        return sorted(
            target
            for (source, target), method in cls.transitions().items()
            if source == from_status
            and (allow_settlement or method not in cls.SETTLEMENT_ONLY)
        )

    @classmethod
    def transition(
        cls,
        case_id: uuid.UUID | str,
        from_expected: str,
        to_requested: str,
        actor: User | None = None,
        *,
        allow_settlement: bool = False,
        extra_fields: dict[str, Any] | None = None,
        audit_action: str | None = None,
        audit_meta: dict[str, Any] | None = None,
        request: HttpRequest | None = None,
    ) -> Case:
        """
        Move a case from from_expected to to_requested.

        Args:
            case_id: Case to transition
            from_expected: Status the caller believes the case is in
            to_requested: Target status (raw strings are normalized)
            actor: Acting user, None for system transitions
            allow_settlement: Permit settlement-only edges
            extra_fields: Further columns written by the same UPDATE
            audit_action: When set, one audit row is written with this action
            audit_meta: Extra audit details
            request: Source request for the audit row

        Returns:
            The case reloaded after the write

        Raises:
            ValidationError: Unknown status string
            InvalidTransitionError: (from, to) is not an allowed edge
            NotFoundError: Case does not exist
            TransitionConflictError: Case is no longer in from_expected
        """
        from_status = CaseStatus.normalize(from_expected)
        to_status = CaseStatus.normalize(to_requested)

        method_name = cls.method_for(from_status, to_status, allow_settlement)
        if method_name is None:
            reason = None
            if (from_status, to_status) in cls.transitions():
                reason = "only a dispute settlement may apply this transition"
            raise InvalidTransitionError(from_status, to_status, reason=reason)

        with transaction.atomic():
            case = get_case(case_id, for_update=True)
            if case.status != from_status:
                raise TransitionConflictError(
                    f"Case status is {case.status}, expected {from_status}",
                    details={
                        "case_id": str(case.id),
                        "expected": from_status,
                        "actual": case.status,
                    },
                )

            # django-fsm re-checks the source state in memory
            getattr(case, method_name)()

            now = timezone.now()
            updates: dict[str, Any] = {
                "status": to_status,
                "version": F("version") + 1,
                "updated_at": now,
            }
            if to_status == CaseStatus.COMPLETED:
                updates["completed_at"] = now
            elif to_status == CaseStatus.CLOSED:
                updates["closed_at"] = now
            updates.update(extra_fields or {})

            rows = Case.objects.filter(pk=case.pk, status=from_status).update(**updates)
            if rows != 1:
                raise TransitionConflictError(
                    "Case was modified concurrently",
                    details={"case_id": str(case.pk), "expected": from_status},
                )

            case.refresh_from_db()

            if audit_action:
                AuditService.record(
                    audit_action,
                    actor=actor,
                    target_type=AuditTargetType.CASE,
                    target_id=str(case.pk),
                    case=case,
                    meta={"from": from_status, "to": to_status, **(audit_meta or {})},
                    request=request,
                )

        logger.info(
            f"Case transitioned {from_status} -> {to_status}",
            extra={
                "case_id": str(case.pk),
                "from_status": from_status,
                "to_status": to_status,
                "actor_id": str(actor.pk) if actor else None,
            },
        )
        return case


class CaseService(BaseService):
    """Admin and party operations on a case outside of money movement."""

    @classmethod
    def update_status(
        cls,
        case_id: uuid.UUID | str,
        raw_status: str,
        actor: User,
        request: HttpRequest | None = None,
    ) -> Case:
        """
        Admin status change along any edge except settlement-only ones.

        Disputes are opened through DisputeService.open_dispute, which also
        creates the Dispute the settlement later resolves.

        Raises:
            ValidationError: Unknown status
            InvalidTransitionError: Not an allowed edge from the current status,
                or the target is disputed
            ReleaseInProgressError: A payout is running for the case
        """
        to_status = CaseStatus.normalize(raw_status)
        case = get_case(case_id)
        if to_status == CaseStatus.DISPUTED:
            raise InvalidTransitionError(
                case.status,
                to_status,
                reason="disputes are opened by a case party",
            )

        with no_payout_running(case.pk):
            return CaseStateMachine.transition(
                case.pk,
                case.status,
                to_status,
                actor=actor,
                audit_action="admin.case.status.update",
                request=request,
            )

    @classmethod
    def assign_paralegal(
        cls,
        case_id: uuid.UUID | str,
        paralegal_id: uuid.UUID | str | int,
        actor: User,
        request: HttpRequest | None = None,
    ) -> Case:
        """
        Hire a paralegal onto an open case (open -> assigned).

        Raises:
            ValidationError: User is missing, inactive or not a paralegal
            InvalidTransitionError: Case is not open
        """
        from authentication.models import User

        paralegal = User.objects.filter(pk=paralegal_id, is_active=True).first()
        if paralegal is None or not paralegal.is_paralegal:
            raise ValidationError(
                "Assignee must be an active paralegal",
                error_code="INVALID_ASSIGNEE",
                details={"paralegal_id": str(paralegal_id)},
            )

        case = get_case(case_id)
        return CaseStateMachine.transition(
            case.pk,
            case.status,
            CaseStatus.ASSIGNED,
            actor=actor,
            extra_fields={"paralegal_id": paralegal.pk},
            audit_action="admin.case.assign",
            audit_meta={"paralegal_id": str(paralegal.pk)},
            request=request,
        )

    @classmethod
    def set_archived(
        cls,
        case_id: uuid.UUID | str,
        archived: bool,
        actor: User,
        request: HttpRequest | None = None,
    ) -> Case:
        """
        Set the archived flag. Status is left untouched.

        Raises:
            ValidationError: Case is not completed or closed
        """
        with cls.atomic():
            case = get_case(case_id, for_update=True)
            if case.status not in ARCHIVABLE_STATUSES:
                raise ValidationError(
                    "Only completed or closed cases can be archived",
                    error_code="CASE_NOT_ARCHIVABLE",
                    details={"case_id": str(case.pk), "status": case.status},
                )

            rows = Case.objects.filter(
                pk=case.pk, status__in=ARCHIVABLE_STATUSES
            ).update(
                archived=archived,
                version=F("version") + 1,
                updated_at=timezone.now(),
            )
            if rows != 1:
                raise TransitionConflictError(
                    "Case was modified concurrently",
                    details={"case_id": str(case.pk)},
                )
            case.refresh_from_db()

            AuditService.record(
                "admin.case.archive",
                actor=actor,
                target_type=AuditTargetType.CASE,
                target_id=str(case.pk),
                case=case,
                meta={"archived": archived},
                request=request,
            )
        return case


def ensure_work_can_begin(case: Case) -> None:
    """
    Gate for features that need active work (messages, files, tasks).

    Raises:
        PaymentNotSecuredError: Escrow has not been funded
    """
    if not (case.escrow_intent_id and case.escrow_status == EscrowStatus.FUNDED):
        raise PaymentNotSecuredError(details={"case_id": str(case.pk)})


def resolve_case_state(case: Case) -> str:
    """
    Display state of a case.

    Returns "funded_in_progress" for a funded, staffed, in-progress case,
    otherwise the normalized status.
    """
    status = CaseStatus.normalize(case.status)
    if status == CaseStatus.IN_PROGRESS and case.paralegal_id and case.is_funded:
        return FUNDED_IN_PROGRESS
    return status.value
