"""
Factory Boy factories for escrow test data.

Usage:
    from escrow.tests.factories import CaseFactory, ConnectedAccountFactory

    # Open case with a fresh attorney
    case = CaseFactory()

    # Funded, staffed, in-progress case
    case = CaseFactory(funded=True)

    # Payout-ready account for a paralegal
    account = ConnectedAccountFactory(user=case.paralegal)
"""

import json
import uuid

import factory

from authentication.tests.factories import AttorneyFactory, ParalegalFactory
from escrow.adapters import RefundResult, TransferResult
from escrow.models import (
    Case,
    CaseFile,
    CaseMessage,
    ConnectedAccount,
    Dispute,
    WebhookEvent,
)
from escrow.state_machines import (
    CaseStatus,
    DisputeStatus,
    EscrowStatus,
    OnboardingStatus,
    WebhookEventStatus,
)


class CaseFactory(factory.django.DjangoModelFactory):
    """
    Factory for Case.

    Default creates an OPEN $1,000 case without a paralegal.

    Traits:
        funded: IN_PROGRESS with a paralegal and a FUNDED escrow intent
    """

    class Meta:
        model = Case
        skip_postgeneration_save = True

    attorney = factory.SubFactory(AttorneyFactory)
    title = factory.Sequence(lambda n: f"Case {n}")
    description = "Document review"
    total_amount_cents = 100_000
    currency = "usd"
    status = CaseStatus.OPEN

    class Params:
        funded = factory.Trait(
            paralegal=factory.SubFactory(ParalegalFactory),
            status=CaseStatus.IN_PROGRESS,
            escrow_intent_id=factory.LazyFunction(lambda: f"pi_test_{uuid.uuid4().hex[:12]}"),
            payment_intent_id=factory.SelfAttribute("escrow_intent_id"),
            locked_total_amount_cents=factory.SelfAttribute("total_amount_cents"),
            escrow_status=EscrowStatus.FUNDED,
            payment_status="succeeded",
        )


class ConnectedAccountFactory(factory.django.DjangoModelFactory):
    """
    Factory for ConnectedAccount.

    Default creates a COMPLETE account with payouts enabled.
    """

    class Meta:
        model = ConnectedAccount
        skip_postgeneration_save = True

    user = factory.SubFactory(ParalegalFactory)
    stripe_account_id = factory.Sequence(lambda n: f"acct_test_{n}_{uuid.uuid4().hex[:8]}")
    onboarding_status = OnboardingStatus.COMPLETE
    payouts_enabled = True
    charges_enabled = True
    metadata = factory.LazyFunction(dict)


class DisputeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Dispute
        skip_postgeneration_save = True

    case = factory.SubFactory(CaseFactory, funded=True, status=CaseStatus.DISPUTED)
    raised_by = factory.SelfAttribute("case.attorney")
    message = "Deliverable incomplete"
    status = DisputeStatus.OPEN


class CaseFileFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CaseFile
        skip_postgeneration_save = True

    case = factory.SubFactory(CaseFactory, funded=True)
    original_name = factory.Sequence(lambda n: f"exhibit-{n}.pdf")
    storage_key = factory.LazyAttribute(
        lambda o: f"{o.case.storage_prefix}files/{uuid.uuid4().hex}"
    )
    mime_type = "application/pdf"
    size_bytes = 1024
    uploaded_by = factory.SelfAttribute("case.attorney")


class CaseMessageFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CaseMessage
        skip_postgeneration_save = True

    case = factory.SubFactory(CaseFactory, funded=True)
    sender = factory.SelfAttribute("case.attorney")
    body = "Please see attached."


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for WebhookEvent.

    The payload mirrors a Stripe event envelope around data.object.
    """

    class Meta:
        model = WebhookEvent
        skip_postgeneration_save = True

    provider = "stripe"
    event_id = factory.Sequence(lambda n: f"evt_test_{n}_{uuid.uuid4().hex[:8]}")
    event_type = "payment_intent.succeeded"
    status = WebhookEventStatus.RECEIVED
    payload = factory.LazyAttribute(
        lambda o: {"id": o.event_id, "type": o.event_type, "data": {"object": {}}}
    )


# =============================================================================
# Gateway Payload Builders
# =============================================================================


def make_transfer(transfer_id: str = "tr_test_123", amount_cents: int = 82_000) -> TransferResult:
    return TransferResult(
        id=transfer_id,
        amount_cents=amount_cents,
        currency="usd",
        destination_account="acct_test",
    )


def make_refund(refund_id: str = "re_test_123", amount_cents: int = 50_000) -> RefundResult:
    return RefundResult(
        id=refund_id,
        amount_cents=amount_cents,
        currency="usd",
        status="succeeded",
        payment_intent_id="pi_test",
    )


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> dict:
    """Stripe event envelope around a data object."""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def event_body(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")
