"""
Tests for webhook handlers and dispatch.
"""

from __future__ import annotations

import pytest

from escrow.state_machines import AuditTargetType, EscrowStatus, OnboardingStatus
from escrow.tests.factories import ConnectedAccountFactory, WebhookEventFactory
from escrow.webhooks.handlers import WEBHOOK_HANDLERS, WebhookAuditContext, dispatch_webhook


def webhook(event_type, obj):
    return WebhookEventFactory(
        event_type=event_type,
        payload={"id": "evt_handler", "type": event_type, "data": {"object": obj}},
    )


class TestRegistry:
    @pytest.mark.parametrize(
        "event_type",
        [
            "payment_intent.succeeded",
            "payment_intent.processing",
            "payment_intent.payment_failed",
            "checkout.session.completed",
            "charge.refunded",
            "refund.updated",
            "transfer.created",
            "account.updated",
        ],
    )
    def test_registered(self, event_type):
        assert event_type in WEBHOOK_HANDLERS


@pytest.mark.django_db
class TestDispatch:
    def test_unknown_type_succeeds_with_empty_context(self):
        result = dispatch_webhook(webhook("customer.created", {"id": "cus_1"}))

        assert result.success
        assert isinstance(result.data, WebhookAuditContext)
        assert result.data.case is None
        assert result.data.target_id == "cus_1"
        assert result.data.target_type == AuditTargetType.OTHER

    def test_payment_succeeded_without_id_fails(self):
        result = dispatch_webhook(webhook("payment_intent.succeeded", {"status": "succeeded"}))

        assert not result.success
        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"

    def test_payment_succeeded_context(self, assigned_case):
        intent = {
            "id": "pi_ctx",
            "status": "succeeded",
            "amount": 100_000,
            "amount_received": 100_000,
            "currency": "usd",
            "metadata": {"case_id": str(assigned_case.id)},
        }

        result = dispatch_webhook(webhook("payment_intent.succeeded", intent))

        context = result.data
        assert context.case.pk == assigned_case.pk
        assert context.case.escrow_status == EscrowStatus.FUNDED
        assert context.target_type == AuditTargetType.PAYMENT
        assert context.target_id == "pi_ctx"
        assert context.meta == {"amount_cents": 100_000, "currency": "usd"}

    def test_account_updated_context(self, paralegal):
        account = ConnectedAccountFactory(
            user=paralegal,
            onboarding_status=OnboardingStatus.IN_PROGRESS,
            payouts_enabled=False,
        )
        obj = {
            "id": account.stripe_account_id,
            "details_submitted": True,
            "payouts_enabled": True,
            "charges_enabled": True,
        }

        result = dispatch_webhook(webhook("account.updated", obj))

        context = result.data
        assert context.target_type == AuditTargetType.USER
        assert context.target_id == str(paralegal.pk)
        assert context.meta["onboarding_status"] == OnboardingStatus.COMPLETE
        assert context.meta["payouts_enabled"] is True

    def test_unmatched_refund_has_no_case(self):
        obj = {"id": "re_orphan", "payment_intent": "pi_unknown", "metadata": {}}

        result = dispatch_webhook(webhook("refund.created", obj))

        assert result.success
        assert result.data.case is None
        assert result.data.target_id == "re_orphan"
