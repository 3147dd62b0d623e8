"""
Tests for the Stripe adapter.

Tests cover:
- Parameter validation and idempotency key generation
- Error translation for each SDK exception type
- Request parameters for intents, refunds, transfers and accounts
- Webhook signature verification
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe

from escrow.adapters import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    StripeAdapter,
    is_retryable_stripe_error,
)
from escrow.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)


@dataclass
class MockStripeObject:
    """Stripe API object stand-in with attribute access."""

    values: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "values":
            return self.__dict__["values"]
        return self.values.get(name)


def intent_params(**overrides):
    params = {
        "amount_cents": 100_000,
        "currency": "usd",
        "idempotency_key": "escrow_intent:case:1:abcd1234",
        "transfer_group": "case_123",
        "metadata": {"case_id": "123"},
    }
    params.update(overrides)
    return CreatePaymentIntentParams(**params)


@pytest.fixture(autouse=True)
def mock_http_client():
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_payment_intent_api():
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "id": "pi_test_1",
                "status": "requires_payment_method",
                "amount": 100_000,
                "currency": "usd",
                "client_secret": "pi_test_1_secret",
                "transfer_group": "case_123",
                "metadata": {"case_id": "123"},
            }
        )
        yield mock


@pytest.fixture
def mock_transfer_api():
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "id": "tr_test_1",
                "amount": 82_000,
                "currency": "usd",
                "destination": "acct_dest",
                "transfer_group": "case_123",
                "metadata": {},
            }
        )
        yield mock


# =============================================================================
# Params and Keys
# =============================================================================


class TestCreatePaymentIntentParams:
    def test_valid(self):
        params = intent_params()
        assert params.amount_cents == 100_000
        assert params.transfer_group == "case_123"

    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"amount_cents": 0}, "amount_cents must be positive"),
            ({"idempotency_key": ""}, "idempotency_key is required"),
            ({"currency": ""}, "currency is required"),
            ({"transfer_group": ""}, "transfer_group is required"),
        ],
    )
    def test_invalid(self, overrides, message):
        with pytest.raises(ValueError, match=message):
            intent_params(**overrides)


class TestIdempotencyKeyGenerator:
    def test_format(self):
        entity_id = uuid.uuid4()
        key = IdempotencyKeyGenerator.generate("payout_transfer", entity_id)

        operation, entity, attempt, short_hash = key.split(":")
        assert operation == "payout_transfer"
        assert entity == str(entity_id)
        assert attempt == "1"
        assert len(short_hash) == 8

    def test_deterministic(self):
        entity_id = uuid.uuid4()
        assert IdempotencyKeyGenerator.generate(
            "settlement_refund", entity_id
        ) == IdempotencyKeyGenerator.generate("settlement_refund", entity_id)

    def test_operation_and_attempt_change_key(self):
        entity_id = uuid.uuid4()
        base = IdempotencyKeyGenerator.generate("settlement_refund", entity_id)
        assert base != IdempotencyKeyGenerator.generate("settlement_transfer", entity_id)
        assert base != IdempotencyKeyGenerator.generate("settlement_refund", entity_id, attempt=2)


class TestIsRetryable:
    def test_transient(self):
        assert is_retryable_stripe_error(StripeTimeoutError("timeout"))
        assert is_retryable_stripe_error(StripeRateLimitError("slow down"))
        assert is_retryable_stripe_error(StripeAPIUnavailableError("down"))

    def test_permanent(self):
        assert not is_retryable_stripe_error(StripeCardDeclinedError("declined"))
        assert not is_retryable_stripe_error(StripeInvalidAccountError("bad account"))
        assert not is_retryable_stripe_error(ValueError("not stripe"))


# =============================================================================
# Error Translation
# =============================================================================


class TestErrorTranslation:
    def test_card_declined(self, mock_payment_intent_api):
        error = stripe.CardError(message="Your card was declined.", param=None, code="card_declined")
        error.decline_code = "generic_decline"
        mock_payment_intent_api.create.side_effect = error

        with pytest.raises(StripeCardDeclinedError) as exc_info:
            StripeAdapter.create_payment_intent(intent_params())

        assert exc_info.value.message == "Card was declined"

    def test_insufficient_funds(self, mock_payment_intent_api):
        error = stripe.CardError(message="Insufficient funds.", param=None, code="card_declined")
        error.decline_code = "insufficient_funds"
        mock_payment_intent_api.create.side_effect = error

        with pytest.raises(StripeInsufficientFundsError):
            StripeAdapter.create_payment_intent(intent_params())

    def test_invalid_request_is_sanitized(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = stripe.InvalidRequestError(
            message="No such payment_intent: pi_secret_detail",
            param="payment_intent",
            code="resource_missing",
        )

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.create_payment_intent(intent_params())

        assert "pi_secret_detail" not in exc_info.value.message

    def test_invalid_destination(self, mock_transfer_api):
        mock_transfer_api.create.side_effect = stripe.InvalidRequestError(
            message="No such destination",
            param="destination",
            code="resource_missing",
        )

        with pytest.raises(StripeInvalidAccountError):
            StripeAdapter.create_transfer(82_000, "acct_gone", "key", "case_123")

    def test_platform_balance_insufficient(self, mock_transfer_api):
        mock_transfer_api.create.side_effect = stripe.InvalidRequestError(
            message="Insufficient balance",
            param=None,
            code="balance_insufficient",
        )

        with pytest.raises(StripeInsufficientFundsError):
            StripeAdapter.create_transfer(82_000, "acct_dest", "key", "case_123")

    def test_rate_limit(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = stripe.RateLimitError(
            message="Too many requests"
        )

        with pytest.raises(StripeRateLimitError):
            StripeAdapter.create_payment_intent(intent_params())

    def test_timeout(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = stripe.APIConnectionError(
            message="Request timed out"
        )

        with pytest.raises(StripeTimeoutError):
            StripeAdapter.create_payment_intent(intent_params())

    def test_connection_error(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = stripe.APIConnectionError(
            message="Could not connect to Stripe."
        )

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_payment_intent(intent_params())

    def test_authentication_error(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = stripe.AuthenticationError(
            message="Invalid API Key provided."
        )

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.create_payment_intent(intent_params())

        assert exc_info.value.message == "Payment provider authentication failed"

    def test_api_error(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = stripe.APIError(message="Stripe is down")

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_payment_intent(intent_params())

    def test_unknown_error(self, mock_payment_intent_api):
        mock_payment_intent_api.create.side_effect = RuntimeError("boom")

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.create_payment_intent(intent_params())


# =============================================================================
# Operations
# =============================================================================


class TestOperations:
    def test_create_payment_intent(self, mock_payment_intent_api):
        result = StripeAdapter.create_payment_intent(intent_params())

        assert result.id == "pi_test_1"
        assert result.client_secret == "pi_test_1_secret"
        assert result.metadata == {"case_id": "123"}

        kwargs = mock_payment_intent_api.create.call_args.kwargs
        assert kwargs["amount"] == 100_000
        assert kwargs["transfer_group"] == "case_123"
        assert kwargs["automatic_payment_methods"] == {"enabled": True}
        assert kwargs["idempotency_key"] == "escrow_intent:case:1:abcd1234"

    def test_create_transfer(self, mock_transfer_api):
        result = StripeAdapter.create_transfer(
            amount_cents=82_000,
            destination_account="acct_dest",
            idempotency_key="payout_transfer:case:1:abcd1234",
            transfer_group="case_123",
            metadata={"case_id": "123"},
        )

        assert result.id == "tr_test_1"
        assert result.destination_account == "acct_dest"
        mock_transfer_api.create.assert_called_once_with(
            amount=82_000,
            currency="usd",
            destination="acct_dest",
            transfer_group="case_123",
            metadata={"case_id": "123"},
            idempotency_key="payout_transfer:case:1:abcd1234",
        )

    def test_partial_refund(self):
        with patch("stripe.Refund") as mock_refund_api:
            mock_refund_api.create.return_value = MockStripeObject(
                {
                    "id": "re_test_1",
                    "amount": 50_000,
                    "currency": "usd",
                    "status": "succeeded",
                    "payment_intent": "pi_test_1",
                    "metadata": {},
                }
            )

            result = StripeAdapter.create_refund("pi_test_1", "refund-key", amount_cents=50_000)

        assert result.id == "re_test_1"
        kwargs = mock_refund_api.create.call_args.kwargs
        assert kwargs["payment_intent"] == "pi_test_1"
        assert kwargs["amount"] == 50_000

    def test_full_refund_omits_amount(self):
        with patch("stripe.Refund") as mock_refund_api:
            mock_refund_api.create.return_value = MockStripeObject(
                {"id": "re_full", "amount": 100_000, "currency": "usd", "status": "succeeded"}
            )

            StripeAdapter.create_refund("pi_test_1", "refund-key")

        assert "amount" not in mock_refund_api.create.call_args.kwargs

    def test_create_connected_account(self):
        with patch("stripe.Account") as mock_account_api:
            mock_account_api.create.return_value = MockStripeObject(
                {
                    "id": "acct_new",
                    "details_submitted": False,
                    "payouts_enabled": False,
                    "charges_enabled": False,
                    "requirements": {"currently_due": ["external_account"]},
                }
            )

            result = StripeAdapter.create_connected_account("p@example.com", "acct-key")

        assert result.id == "acct_new"
        assert result.requirements_due == ["external_account"]
        assert mock_account_api.create.call_args.kwargs["type"] == "express"


# =============================================================================
# Webhook Verification
# =============================================================================


class TestVerifyWebhookSignature:
    payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}).encode()

    def test_valid(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = "whsec_platform"
        with patch("stripe.Webhook") as mock_webhook:
            event = StripeAdapter.verify_webhook_signature(self.payload, "t=1,v1=sig")

        assert event["id"] == "evt_1"
        mock_webhook.construct_event.assert_called_once_with(
            self.payload, "t=1,v1=sig", "whsec_platform"
        )

    def test_connect_secret(self, settings):
        settings.STRIPE_CONNECT_WEBHOOK_SECRET = "whsec_connect"
        with patch("stripe.Webhook") as mock_webhook:
            StripeAdapter.verify_webhook_signature(self.payload, "t=1,v1=sig", connect=True)

        assert mock_webhook.construct_event.call_args.args[2] == "whsec_connect"

    def test_bad_signature(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = "whsec_platform"
        with patch("stripe.Webhook") as mock_webhook:
            mock_webhook.construct_event.side_effect = stripe.SignatureVerificationError(
                "Unable to verify", "t=1,v1=bad"
            )
            with pytest.raises(StripeInvalidRequestError):
                StripeAdapter.verify_webhook_signature(self.payload, "t=1,v1=bad")

    def test_missing_secret(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = ""
        with pytest.raises(StripeInvalidRequestError):
            StripeAdapter.verify_webhook_signature(self.payload, "t=1,v1=sig")
