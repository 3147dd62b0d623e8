"""
End-to-end case lifecycle through the API.

open -> assigned -> funded (webhook) -> in_progress -> completed (release)
-> closed (archive) -> purged
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from django.utils import timezone
from freezegun import freeze_time

from escrow.models import AuditLog, Case, Payout, PlatformIncome
from escrow.state_machines import CaseStatus, EscrowStatus
from escrow.tests.factories import CaseFactory, event_body, stripe_event
from escrow.workers import purge_expired_cases

BASE = "/api/v1/escrow"


@pytest.mark.django_db
def test_full_case_lifecycle(
    api_client,
    client,
    attorney,
    paralegal,
    platform_admin,
    ready_account,
    object_store,
    django_capture_on_commit_callbacks,
):
    case = CaseFactory(attorney=attorney, total_amount_cents=40_000)

    # Admin assigns the paralegal
    api_client.force_authenticate(platform_admin)
    response = api_client.patch(
        f"{BASE}/admin/cases/{case.id}/assign/",
        {"paralegal_id": str(paralegal.pk)},
        format="json",
    )
    assert response.status_code == 200

    # Attorney starts funding; work stays blocked until the webhook lands
    api_client.force_authenticate(attorney)
    response = api_client.post(f"{BASE}/cases/{case.id}/fund/")
    assert response.status_code == 201
    api_client.force_authenticate(paralegal)
    assert api_client.get(f"{BASE}/cases/{case.id}/workspace/").status_code == 403

    event = stripe_event(
        "payment_intent.succeeded",
        {
            "id": "pi_test_new",
            "status": "succeeded",
            "amount": 40_000,
            "amount_received": 40_000,
            "currency": "usd",
            "metadata": {"case_id": str(case.id)},
        },
        event_id="evt_lifecycle_fund",
    )
    response = client.post(
        f"{BASE}/webhooks/stripe/",
        data=event_body(event),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE="t=1,v1=sig",
    )
    assert response.status_code == 200

    case = Case.objects.get(pk=case.pk)
    assert case.status == CaseStatus.IN_PROGRESS
    assert case.escrow_status == EscrowStatus.FUNDED
    assert api_client.get(f"{BASE}/cases/{case.id}/workspace/").status_code == 200

    # Attorney releases: 18% fee, 82% to the paralegal
    api_client.force_authenticate(attorney)
    response = api_client.post(f"{BASE}/cases/{case.id}/release/")
    assert response.status_code == 200
    assert Payout.objects.get(case=case).amount_paid_cents == 32_800
    assert PlatformIncome.objects.get(case=case).fee_amount_cents == 7_200

    # Close and archive; archive generation runs on commit
    with django_capture_on_commit_callbacks(execute=True):
        response = api_client.post(f"{BASE}/cases/{case.id}/close/")
    assert response.status_code == 200

    case = Case.objects.get(pk=case.pk)
    assert case.status == CaseStatus.CLOSED
    assert case.archive_zip_key in object_store.objects

    # Purge once the delay has passed
    with freeze_time(timezone.now() + timedelta(hours=25)):
        result = purge_expired_cases()
    assert result["purged"] == 1
    assert object_store.list_keys(case.storage_prefix) == []

    actions = list(AuditLog.objects.for_case(case).values_list("action", flat=True))
    for action in (
        "admin.case.assign",
        "payment.intent.start",
        "stripe.payment_intent.succeeded",
        "payment.release.transfer",
        "case.complete.archive",
        "case.purge",
    ):
        assert action in actions
