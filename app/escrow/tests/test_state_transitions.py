"""
Tests for the case state machine.

Covers:
1. The transition table read from the django-fsm declarations
2. Rejection of invalid edges before any write
3. Compare-and-swap conflicts
4. Status normalization and the display state
"""

import pytest

from core.exceptions import ValidationError
from escrow.exceptions import (
    InvalidTransitionError,
    PaymentNotSecuredError,
    TransitionConflictError,
)
from escrow.models import AuditLog, Case
from escrow.services import (
    CaseService,
    CaseStateMachine,
    ensure_work_can_begin,
    resolve_case_state,
)
from escrow.state_machines import FUNDED_IN_PROGRESS, CaseStatus
from escrow.tests.factories import CaseFactory


class TestTransitionTable:
    """Allowed edges, without touching the database."""

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            ("open", "assigned"),
            ("assigned", "in_progress"),
            ("in_progress", "disputed"),
            ("in_progress", "completed"),
            ("completed", "closed"),
            ("draft", "cancelled"),
            ("open", "cancelled"),
            ("assigned", "cancelled"),
            ("in_progress", "cancelled"),
        ],
    )
    def test_allowed(self, from_status, to_status):
        assert CaseStateMachine.is_valid(from_status, to_status)

    @pytest.mark.parametrize(
        "from_status,to_status",
        [
            ("open", "in_progress"),
            ("completed", "in_progress"),
            ("disputed", "in_progress"),
            ("closed", "open"),
            ("cancelled", "open"),
            ("draft", "open"),
            ("completed", "cancelled"),
        ],
    )
    def test_rejected(self, from_status, to_status):
        assert not CaseStateMachine.is_valid(from_status, to_status)

    def test_disputed_to_closed_is_settlement_only(self):
        assert not CaseStateMachine.is_valid("disputed", "closed")
        assert CaseStateMachine.is_valid("disputed", "closed", allow_settlement=True)

    def test_terminal_states_have_no_targets(self):
        assert CaseStateMachine.allowed_targets("closed") == []
        assert CaseStateMachine.allowed_targets("cancelled") == []

    def test_disputed_has_no_targets_outside_settlement(self):
        assert CaseStateMachine.allowed_targets("disputed") == []
        assert CaseStateMachine.allowed_targets("disputed", allow_settlement=True) == ["closed"]


class TestStatusNormalization:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("In Progress", CaseStatus.IN_PROGRESS),
            ("in-progress", CaseStatus.IN_PROGRESS),
            ("IN_PROGRESS", CaseStatus.IN_PROGRESS),
            ("canceled", CaseStatus.CANCELLED),
            (" Closed ", CaseStatus.CLOSED),
        ],
    )
    def test_variants(self, raw, expected):
        assert CaseStatus.normalize(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "archived", None])
    def test_unknown_rejected(self, raw):
        with pytest.raises(ValidationError):
            CaseStatus.normalize(raw)


@pytest.mark.django_db
class TestCaseStateMachineTransition:
    """CaseStateMachine.transition() against the database."""

    def test_applies_edge(self, open_case, platform_admin):
        case = CaseStateMachine.transition(open_case.id, "open", "cancelled", actor=platform_admin)

        assert case.status == CaseStatus.CANCELLED
        assert case.version == open_case.version + 1

    def test_invalid_edge_writes_nothing(self, open_case):
        with pytest.raises(InvalidTransitionError):
            CaseStateMachine.transition(open_case.id, "open", "completed")

        open_case.refresh_from_db()
        assert open_case.status == CaseStatus.OPEN
        assert open_case.version == 1

    def test_stale_expectation_conflicts(self, open_case):
        Case.objects.filter(pk=open_case.pk).update(status=CaseStatus.ASSIGNED)

        with pytest.raises(TransitionConflictError):
            CaseStateMachine.transition(open_case.id, "open", "assigned")

    def test_second_identical_transition_conflicts(self, funded_case):
        CaseStateMachine.transition(funded_case.id, "in_progress", "completed")

        with pytest.raises(TransitionConflictError):
            CaseStateMachine.transition(funded_case.id, "in_progress", "completed")

    def test_sets_completed_and_closed_timestamps(self, funded_case):
        case = CaseStateMachine.transition(funded_case.id, "in_progress", "completed")
        assert case.completed_at is not None

        case = CaseStateMachine.transition(case.id, "completed", "closed")
        assert case.closed_at is not None

    def test_settlement_edge_requires_flag(self, dispute):
        with pytest.raises(InvalidTransitionError):
            CaseStateMachine.transition(dispute.case_id, "disputed", "closed")

        case = CaseStateMachine.transition(
            dispute.case_id, "disputed", "closed", allow_settlement=True
        )
        assert case.status == CaseStatus.CLOSED

    def test_writes_audit_when_requested(self, open_case, platform_admin):
        CaseStateMachine.transition(
            open_case.id,
            "open",
            "cancelled",
            actor=platform_admin,
            audit_action="admin.case.status.update",
        )

        entry = AuditLog.objects.get(action="admin.case.status.update")
        assert entry.case_id == open_case.id
        assert entry.actor_role == "admin"
        assert entry.meta == {"from": "open", "to": "cancelled"}


@pytest.mark.django_db
class TestCaseService:
    """Admin case operations."""

    def test_update_status_normalizes(self, funded_case, platform_admin):
        case = CaseService.update_status(funded_case.id, "Completed", actor=platform_admin)
        assert case.status == CaseStatus.COMPLETED

    def test_update_status_cannot_reopen_disputed(self, dispute, platform_admin):
        with pytest.raises(InvalidTransitionError):
            CaseService.update_status(dispute.case_id, "in progress", actor=platform_admin)

    def test_update_status_cannot_open_dispute(self, funded_case, platform_admin):
        with pytest.raises(InvalidTransitionError) as exc_info:
            CaseService.update_status(funded_case.id, "Disputed", actor=platform_admin)

        assert "opened by a case party" in exc_info.value.message
        funded_case.refresh_from_db()
        assert funded_case.status == CaseStatus.IN_PROGRESS

    def test_assign_paralegal(self, open_case, paralegal, platform_admin):
        case = CaseService.assign_paralegal(open_case.id, paralegal.pk, actor=platform_admin)

        assert case.status == CaseStatus.ASSIGNED
        assert case.paralegal_id == paralegal.pk
        assert AuditLog.objects.filter(action="admin.case.assign", case=case).exists()

    def test_assign_rejects_non_paralegal(self, open_case, attorney, platform_admin):
        with pytest.raises(ValidationError):
            CaseService.assign_paralegal(open_case.id, attorney.pk, actor=platform_admin)

    def test_set_archived_keeps_status(self, platform_admin):
        case = CaseFactory(funded=True, status=CaseStatus.COMPLETED)

        updated = CaseService.set_archived(case.id, True, actor=platform_admin)

        assert updated.archived is True
        assert updated.status == CaseStatus.COMPLETED

    def test_set_archived_rejects_active_case(self, funded_case, platform_admin):
        with pytest.raises(ValidationError):
            CaseService.set_archived(funded_case.id, True, actor=platform_admin)


@pytest.mark.django_db
class TestWorkGate:
    def test_funded_case_passes(self, funded_case):
        ensure_work_can_begin(funded_case)

    def test_unfunded_case_blocked(self, assigned_case):
        with pytest.raises(PaymentNotSecuredError):
            ensure_work_can_begin(assigned_case)

    def test_display_state_funded_in_progress(self, funded_case):
        assert resolve_case_state(funded_case) == FUNDED_IN_PROGRESS

    def test_display_state_unfunded_in_progress(self, paralegal):
        case = CaseFactory(paralegal=paralegal, status=CaseStatus.IN_PROGRESS)
        assert resolve_case_state(case) == "in_progress"
