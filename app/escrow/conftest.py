"""
Pytest fixtures shared by every escrow test package.

Every test gets an in-memory Redis stand-in for DistributedLock and an
in-memory object store. Stripe is never called: stripe_adapter is a
MagicMock injected into every service that talks to Stripe.

Usage:
    def test_release(funded_case, ready_account, stripe_adapter):
        stripe_adapter.create_transfer.return_value = make_transfer("tr_1")
        PayoutService.release_and_complete(funded_case.id, funded_case.attorney)
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from escrow.adapters import (
    ConnectedAccountResult,
    PaymentIntentResult,
    set_object_store,
)
from escrow.exceptions import StorageError
from escrow.services import (
    ConnectService,
    DisputeService,
    FundingService,
    PayoutService,
)
from escrow.state_machines import CaseStatus
from escrow.tests.factories import (
    CaseFactory,
    ConnectedAccountFactory,
    DisputeFactory,
    make_refund,
    make_transfer,
)
from escrow.webhooks.pipeline import WebhookPipeline


# =============================================================================
# Fakes
# =============================================================================


class InMemoryObjectStore:
    """Dict-backed stand-in for CaseObjectStore."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail_deletes = False

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data

    def get_object(self, key: str) -> bytes | None:
        return self.objects.get(key)

    def list_keys(self, prefix: str) -> list[str]:
        return [k for k in self.objects if k.startswith(prefix)]

    def delete_prefix(self, prefix: str) -> int:
        if self.fail_deletes:
            raise StorageError("Object store delete failed", details={"prefix": prefix})
        keys = self.list_keys(prefix)
        for key in keys:
            del self.objects[key]
        return len(keys)


class InMemoryRedis:
    """Just enough of redis-py for DistributedLock."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def eval(self, script, numkeys, key, token):
        if self.store.get(key) != token:
            return 0
        del self.store[key]
        return 1


# =============================================================================
# Autouse Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis():
    """Replace Redis for distributed locking."""
    redis = InMemoryRedis()
    with patch("escrow.locks.get_redis_connection", return_value=redis):
        yield redis


@pytest.fixture(autouse=True)
def object_store():
    store = InMemoryObjectStore()
    set_object_store(store)
    yield store
    set_object_store(None)


@pytest.fixture(autouse=True)
def stripe_adapter():
    """
    MagicMock Stripe adapter injected into every Stripe-facing service.

    verify_webhook_signature parses the payload without checking it, so
    tests post plain JSON bodies.
    """
    adapter = MagicMock()
    adapter.verify_webhook_signature.side_effect = (
        lambda payload, signature, connect=False: json.loads(payload)
    )
    adapter.create_transfer.return_value = make_transfer()
    adapter.create_refund.return_value = make_refund()
    adapter.create_payment_intent.return_value = PaymentIntentResult(
        id="pi_test_new",
        status="requires_payment_method",
        amount_cents=100_000,
        currency="usd",
        client_secret="pi_test_new_secret",
    )
    adapter.create_connected_account.return_value = ConnectedAccountResult(id="acct_test_new")
    adapter.create_account_link.return_value = "https://connect.stripe.com/setup/e/acct_test_new"

    services = [PayoutService, DisputeService, FundingService, ConnectService, WebhookPipeline]
    for service in services:
        service.set_stripe_adapter(adapter)
    yield adapter
    for service in services:
        service.set_stripe_adapter(None)


# =============================================================================
# Case Fixtures
# =============================================================================


@pytest.fixture
def open_case(db, attorney):
    return CaseFactory(attorney=attorney)


@pytest.fixture
def assigned_case(db, attorney, paralegal):
    return CaseFactory(attorney=attorney, paralegal=paralegal, status=CaseStatus.ASSIGNED)


@pytest.fixture
def funded_case(db, attorney, paralegal):
    """IN_PROGRESS, $1,000 escrow funded."""
    return CaseFactory(attorney=attorney, paralegal=paralegal, funded=True)


@pytest.fixture
def ready_account(db, paralegal):
    """Payout-ready connected account for the paralegal fixture."""
    return ConnectedAccountFactory(user=paralegal)


@pytest.fixture
def dispute(db, attorney, paralegal):
    """Open dispute on a funded, disputed case."""
    case = CaseFactory(
        attorney=attorney,
        paralegal=paralegal,
        funded=True,
        status=CaseStatus.DISPUTED,
    )
    return DisputeFactory(case=case, raised_by=attorney)
