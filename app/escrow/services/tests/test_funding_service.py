"""
Tests for FundingService.

Covers:
1. Escrow intent creation and the price snapshot
2. Case lookup from gateway objects
3. Funding from payment_intent.succeeded (the only path to FUNDED)
   and late events on a released or refunded escrow
4. Pending, checkout, refund and transfer syncs
"""

from __future__ import annotations

import pytest

from core.exceptions import PermissionDeniedError, ValidationError
from escrow.adapters import PaymentIntentResult
from escrow.models import AuditLog
from escrow.services import FundingService, find_case
from escrow.services.funding_service import case_id_from_transfer_group
from escrow.state_machines import CaseStatus, EscrowStatus
from escrow.tests.factories import CaseFactory


def succeeded_intent(case, intent_id="pi_test_funded", amount=100_000, **overrides):
    intent = {
        "id": intent_id,
        "object": "payment_intent",
        "status": "succeeded",
        "amount": amount,
        "amount_received": amount,
        "currency": "usd",
        "transfer_group": case.transfer_group,
        "metadata": {"case_id": str(case.id)},
    }
    intent.update(overrides)
    return intent


# =============================================================================
# Intent Creation
# =============================================================================


@pytest.mark.django_db
class TestCreateEscrowIntent:
    def test_creates_intent_and_locks_price(self, assigned_case, stripe_adapter):
        intent = FundingService.create_escrow_intent(assigned_case.id, assigned_case.attorney)

        assert intent.created is True
        assert intent.intent_id == "pi_test_new"
        assert intent.client_secret == "pi_test_new_secret"
        assert intent.amount_cents == 100_000

        params = stripe_adapter.create_payment_intent.call_args.args[0]
        assert params.amount_cents == 100_000
        assert params.transfer_group == f"case_{assigned_case.id}"
        assert params.metadata["case_id"] == str(assigned_case.id)

        assigned_case.refresh_from_db()
        assert assigned_case.escrow_intent_id == "pi_test_new"
        assert assigned_case.locked_total_amount_cents == 100_000
        assert assigned_case.escrow_status == EscrowStatus.AWAITING_FUNDING
        assert AuditLog.objects.filter(action="payment.intent.start").count() == 1

    def test_creating_intent_does_not_fund(self, assigned_case):
        FundingService.create_escrow_intent(assigned_case.id, assigned_case.attorney)

        assigned_case.refresh_from_db()
        assert assigned_case.is_funded is False
        assert assigned_case.status == CaseStatus.ASSIGNED

    def test_repeat_returns_existing_intent(self, assigned_case, stripe_adapter):
        FundingService.create_escrow_intent(assigned_case.id, assigned_case.attorney)
        stripe_adapter.retrieve_payment_intent.return_value = PaymentIntentResult(
            id="pi_test_new",
            status="requires_payment_method",
            amount_cents=100_000,
            currency="usd",
            client_secret="pi_test_new_secret",
        )

        intent = FundingService.create_escrow_intent(assigned_case.id, assigned_case.attorney)

        assert intent.created is False
        assert intent.intent_id == "pi_test_new"
        assert stripe_adapter.create_payment_intent.call_count == 1

    def test_only_case_attorney(self, assigned_case, paralegal):
        with pytest.raises(PermissionDeniedError):
            FundingService.create_escrow_intent(assigned_case.id, paralegal)

    def test_rejects_tiny_amount(self, attorney):
        case = CaseFactory(attorney=attorney, total_amount_cents=49)
        with pytest.raises(ValidationError):
            FundingService.create_escrow_intent(case.id, attorney)

    def test_rejects_completed_case(self, attorney):
        case = CaseFactory(attorney=attorney, status=CaseStatus.COMPLETED)
        with pytest.raises(ValidationError):
            FundingService.create_escrow_intent(case.id, attorney)


# =============================================================================
# Case Lookup
# =============================================================================


@pytest.mark.django_db
class TestFindCase:
    def test_by_metadata(self, open_case):
        assert find_case(metadata={"case_id": str(open_case.id)}) == open_case

    def test_by_transfer_group(self, open_case):
        assert find_case(transfer_group=open_case.transfer_group) == open_case

    def test_by_escrow_intent(self):
        case = CaseFactory(escrow_intent_id="pi_escrow")
        assert find_case(metadata={}, intent_id="pi_escrow") == case

    def test_by_last_payment_intent(self):
        case = CaseFactory(payment_intent_id="pi_latest")
        assert find_case(intent_id="pi_latest") == case

    def test_malformed_metadata_falls_through(self):
        case = CaseFactory(escrow_intent_id="pi_escrow")
        assert find_case(metadata={"case_id": "garbage"}, intent_id="pi_escrow") == case

    def test_no_match(self, db):
        assert find_case(metadata={}, intent_id="pi_unknown") is None

    def test_transfer_group_parsing(self):
        assert case_id_from_transfer_group("order_123") is None
        assert case_id_from_transfer_group("case_not-a-uuid") is None
        assert case_id_from_transfer_group(None) is None


# =============================================================================
# Funding Webhook
# =============================================================================


@pytest.mark.django_db
class TestHandlePaymentSucceeded:
    def test_funds_and_starts_assigned_case(self, assigned_case):
        result = FundingService.handle_payment_succeeded("evt_1", succeeded_intent(assigned_case))

        assert result.success
        case = result.data
        assert case.pk == assigned_case.pk
        assert case.escrow_status == EscrowStatus.FUNDED
        assert case.escrow_intent_id == "pi_test_funded"
        assert case.locked_total_amount_cents == 100_000
        assert case.status == CaseStatus.IN_PROGRESS
        assert case.is_funded

    def test_does_not_overwrite_escrow_intent(self, assigned_case):
        assigned_case.escrow_intent_id = "pi_original"
        assigned_case.locked_total_amount_cents = 100_000
        assigned_case.save()

        result = FundingService.handle_payment_succeeded(
            "evt_1", succeeded_intent(assigned_case, intent_id="pi_other", amount=90_000)
        )

        case = result.data
        assert case.escrow_intent_id == "pi_original"
        assert case.payment_intent_id == "pi_other"
        assert case.locked_total_amount_cents == 100_000

    def test_open_case_is_funded_without_status_change(self, open_case):
        result = FundingService.handle_payment_succeeded("evt_1", succeeded_intent(open_case))

        assert result.data.escrow_status == EscrowStatus.FUNDED
        assert result.data.status == CaseStatus.OPEN

    def test_unknown_case_is_not_a_failure(self, db):
        result = FundingService.handle_payment_succeeded(
            "evt_1",
            {"id": "pi_nobody", "status": "succeeded", "amount": 100, "metadata": {}},
        )

        assert result.success
        assert result.data is None

    @pytest.mark.parametrize(
        "status, escrow_status, released",
        [
            (CaseStatus.COMPLETED, EscrowStatus.RELEASED, True),
            (CaseStatus.CLOSED, EscrowStatus.REFUNDED, False),
        ],
    )
    def test_late_event_leaves_settled_escrow(self, status, escrow_status, released):
        case = CaseFactory(
            funded=True,
            status=status,
            escrow_status=escrow_status,
            payment_released=released,
        )
        version = case.version

        result = FundingService.handle_payment_succeeded(
            "evt_late_1", succeeded_intent(case, intent_id="pi_late")
        )

        assert result.success
        case.refresh_from_db()
        assert case.escrow_status == escrow_status
        assert case.payment_released is released
        assert case.status == status
        assert case.payment_intent_id != "pi_late"
        assert case.version == version

    def test_writes_no_audit(self, assigned_case):
        FundingService.handle_payment_succeeded("evt_1", succeeded_intent(assigned_case))
        assert AuditLog.objects.count() == 0


# =============================================================================
# Other Payment Events
# =============================================================================


@pytest.mark.django_db
class TestOtherPaymentEvents:
    def test_pending_records_status(self, assigned_case):
        intent = succeeded_intent(assigned_case, status="processing")

        result = FundingService.handle_payment_pending("evt_1", "payment_intent.processing", intent)

        assert result.data.payment_status == "processing"
        assert result.data.escrow_status == EscrowStatus.AWAITING_FUNDING

    def test_pending_never_unfunds(self, funded_case):
        intent = {
            "id": funded_case.escrow_intent_id,
            "status": "requires_action",
            "metadata": {"case_id": str(funded_case.id)},
        }

        result = FundingService.handle_payment_pending(
            "evt_1", "payment_intent.requires_action", intent
        )

        assert result.data.escrow_status == EscrowStatus.FUNDED
        assert result.data.payment_status == "succeeded"

    def test_checkout_completed_backfills_intent(self, assigned_case):
        session = {
            "id": "cs_test_1",
            "client_reference_id": str(assigned_case.id),
            "payment_intent": "pi_from_checkout",
        }

        result = FundingService.handle_checkout_completed("evt_1", session)

        assert result.data.escrow_session_id == "cs_test_1"
        assert result.data.escrow_intent_id == "pi_from_checkout"
        assert result.data.escrow_status == EscrowStatus.AWAITING_FUNDING

    def test_full_charge_refund_marks_refunded(self, funded_case):
        charge = {
            "id": "ch_1",
            "payment_intent": funded_case.escrow_intent_id,
            "refunded": True,
            "metadata": {},
        }

        result = FundingService.handle_refund("evt_1", "charge.refunded", charge)

        assert result.data.escrow_status == EscrowStatus.REFUNDED

    def test_partial_refund_keeps_funded(self, funded_case):
        refund = {
            "id": "re_1",
            "payment_intent": funded_case.escrow_intent_id,
            "status": "succeeded",
            "amount": 50_000,
            "metadata": {},
        }

        result = FundingService.handle_refund("evt_1", "refund.created", refund)

        assert result.data.escrow_status == EscrowStatus.FUNDED

    def test_transfer_created_backfills(self, funded_case):
        transfer = {
            "id": "tr_seen",
            "transfer_group": funded_case.transfer_group,
            "metadata": {},
        }

        result = FundingService.handle_transfer("evt_1", "transfer.created", transfer)

        assert result.data.payout_transfer_id == "tr_seen"
        assert result.data.paid_out_at is not None
