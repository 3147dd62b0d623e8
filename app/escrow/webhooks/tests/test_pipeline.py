"""
Tests for WebhookPipeline.

Covers:
1. Dedup by event_id: one mutation and one audit row per event
2. Failure handling: rollback, failed status, retry signal
3. Processing claims, including stale claim reclaim
4. Reprocessing stored events
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from django.utils import timezone

from core.services import ServiceResult
from escrow.exceptions import StripeInvalidRequestError
from escrow.models import AuditLog, Case, WebhookEvent
from escrow.state_machines import CaseStatus, EscrowStatus, WebhookEventStatus
from escrow.tests.factories import WebhookEventFactory, event_body, stripe_event
from escrow.webhooks.pipeline import WebhookPipeline


def funding_event(case, event_id="evt_fund_1", amount=100_000):
    return stripe_event(
        "payment_intent.succeeded",
        {
            "id": "pi_test_funded",
            "object": "payment_intent",
            "status": "succeeded",
            "amount": amount,
            "amount_received": amount,
            "currency": "usd",
            "metadata": {"case_id": str(case.id)},
        },
        event_id=event_id,
    )


@pytest.fixture
def failing_handler(mocker):
    """Register a handler for "test.mutate" that writes, then fails."""

    def handler(webhook_event):
        case_id = webhook_event.get_object()["case_id"]
        Case.objects.filter(pk=case_id).update(title="mutated")
        return ServiceResult.failure("downstream unavailable", error_code="TEST_FAILURE")

    mocker.patch.dict(
        "escrow.webhooks.handlers.WEBHOOK_HANDLERS", {"test.mutate": handler}
    )
    return handler


# =============================================================================
# Processing and Dedup
# =============================================================================


@pytest.mark.django_db
class TestHandle:
    def test_processes_funding_event(self, assigned_case):
        outcome = WebhookPipeline.handle(event_body(funding_event(assigned_case)), "t=1,v1=sig")

        assert outcome.deduped is False
        assert outcome.failed is False
        assert outcome.event.status == WebhookEventStatus.PROCESSED
        assert outcome.event.attempts == 1
        assert outcome.event.processed_at is not None

        assigned_case.refresh_from_db()
        assert assigned_case.escrow_status == EscrowStatus.FUNDED
        assert assigned_case.status == CaseStatus.IN_PROGRESS

        entry = AuditLog.objects.get(action="stripe.payment_intent.succeeded")
        assert entry.case_id == assigned_case.id
        assert entry.target_id == "pi_test_funded"
        assert entry.meta["event_id"] == "evt_fund_1"
        assert entry.actor is None

    def test_duplicate_delivery_is_deduped(self, assigned_case, mocker):
        body = event_body(funding_event(assigned_case))
        spy = mocker.spy(WebhookPipeline, "process")

        WebhookPipeline.handle(body, "t=1,v1=sig")
        outcome = WebhookPipeline.handle(body, "t=1,v1=sig")

        assert outcome.deduped is True
        assert spy.call_count == 1
        assert WebhookEvent.objects.filter(event_id="evt_fund_1").count() == 1
        assert AuditLog.objects.filter(action="stripe.payment_intent.succeeded").count() == 1

    def test_unknown_event_type_is_recorded_and_audited(self, db):
        event = stripe_event("customer.created", {"id": "cus_1"}, event_id="evt_unknown")

        outcome = WebhookPipeline.handle(event_body(event), "t=1,v1=sig")

        assert outcome.event.status == WebhookEventStatus.PROCESSED
        entry = AuditLog.objects.get(action="stripe.customer.created")
        assert entry.target_id == "cus_1"
        assert entry.case is None

    def test_missing_id_rejected(self, db):
        body = event_body({"type": "payment_intent.succeeded", "data": {"object": {}}})

        with pytest.raises(StripeInvalidRequestError):
            WebhookPipeline.handle(body, "t=1,v1=sig")

        assert not WebhookEvent.objects.exists()

    def test_invalid_signature_stores_nothing(self, db, stripe_adapter):
        stripe_adapter.verify_webhook_signature.side_effect = StripeInvalidRequestError(
            "Invalid webhook signature"
        )

        with pytest.raises(StripeInvalidRequestError):
            WebhookPipeline.handle(b"{}", "t=1,v1=bad")

        assert not WebhookEvent.objects.exists()

    def test_connect_account_uses_connect_secret(self, db, stripe_adapter):
        event = stripe_event("account.updated", {"id": "acct_1"}, event_id="evt_connect")

        outcome = WebhookPipeline.handle(event_body(event), "t=1,v1=sig", account_id="acct_1")

        assert stripe_adapter.verify_webhook_signature.call_args.kwargs["connect"] is True
        assert outcome.event.account_id == "acct_1"


# =============================================================================
# Failures
# =============================================================================


@pytest.mark.django_db
class TestFailures:
    def test_handler_failure_rolls_back_and_marks_failed(self, open_case, failing_handler):
        event = stripe_event("test.mutate", {"case_id": str(open_case.id)}, event_id="evt_fail")

        outcome = WebhookPipeline.handle(event_body(event), "t=1,v1=sig")

        assert outcome.failed is True
        assert outcome.should_retry is True
        assert outcome.event.status == WebhookEventStatus.FAILED
        assert outcome.event.last_error == "downstream unavailable"
        assert outcome.event.attempts == 1

        open_case.refresh_from_db()
        assert open_case.title != "mutated"
        assert not AuditLog.objects.filter(action="stripe.test.mutate").exists()

    def test_redelivery_after_failure_is_retried(self, open_case, failing_handler):
        body = event_body(
            stripe_event("test.mutate", {"case_id": str(open_case.id)}, event_id="evt_fail")
        )

        WebhookPipeline.handle(body, "t=1,v1=sig")
        outcome = WebhookPipeline.handle(body, "t=1,v1=sig")

        assert outcome.deduped is False
        assert outcome.event.attempts == 2

    def test_acknowledged_after_max_attempts(self, open_case, failing_handler, settings):
        settings.WEBHOOK_MAX_ATTEMPTS = 2
        body = event_body(
            stripe_event("test.mutate", {"case_id": str(open_case.id)}, event_id="evt_fail")
        )

        first = WebhookPipeline.handle(body, "t=1,v1=sig")
        second = WebhookPipeline.handle(body, "t=1,v1=sig")

        assert first.should_retry is True
        assert second.failed is True
        assert second.acknowledged is True
        assert second.should_retry is False

    def test_malformed_funding_payload_fails(self, db):
        event = stripe_event("payment_intent.succeeded", {"status": "succeeded"})

        outcome = WebhookPipeline.handle(event_body(event), "t=1,v1=sig")

        assert outcome.failed is True
        assert "payment_intent_id" in outcome.event.last_error


# =============================================================================
# Claims
# =============================================================================


@pytest.mark.django_db
class TestClaim:
    def test_fresh_processing_claim_is_deduped(self, assigned_case):
        event = funding_event(assigned_case)
        WebhookEventFactory(
            event_id=event["id"],
            status=WebhookEventStatus.PROCESSING,
            attempts=1,
            last_attempt_at=timezone.now(),
            payload=event,
        )

        outcome = WebhookPipeline.handle(event_body(event), "t=1,v1=sig")

        assert outcome.deduped is True
        assigned_case.refresh_from_db()
        assert assigned_case.escrow_status != EscrowStatus.FUNDED

    def test_stale_processing_claim_is_reclaimed(self, assigned_case, settings):
        event = funding_event(assigned_case)
        WebhookEventFactory(
            event_id=event["id"],
            status=WebhookEventStatus.PROCESSING,
            attempts=1,
            last_attempt_at=timezone.now()
            - timedelta(minutes=settings.WEBHOOK_PROCESSING_STALE_MINUTES + 1),
            payload=event,
        )

        outcome = WebhookPipeline.handle(event_body(event), "t=1,v1=sig")

        assert outcome.deduped is False
        assert outcome.event.status == WebhookEventStatus.PROCESSED
        assert outcome.event.attempts == 2

    def test_processed_event_cannot_be_claimed(self, db):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)
        assert WebhookPipeline.claim(event) is False


@pytest.mark.django_db
class TestReprocess:
    def test_reprocesses_failed_event(self, assigned_case):
        event = funding_event(assigned_case)
        stored = WebhookEventFactory(
            event_id=event["id"],
            status=WebhookEventStatus.FAILED,
            attempts=1,
            payload=event,
        )

        outcome = WebhookPipeline.reprocess(stored)

        assert outcome.event.status == WebhookEventStatus.PROCESSED
        assigned_case.refresh_from_db()
        assert assigned_case.escrow_status == EscrowStatus.FUNDED

    def test_processed_event_is_skipped(self, db):
        stored = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)
        assert WebhookPipeline.reprocess(stored) is None
