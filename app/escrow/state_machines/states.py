"""
Enumerations for escrow models.

These are Django TextChoices for database storage and admin integration.
CaseStatus is the canonical status type: raw strings from clients are
normalized once at the API boundary via CaseStatus.normalize().

State Machines Overview:

Case Status (transitions declared on escrow.models.Case):
    open → assigned → in_progress → completed → closed
    in_progress → disputed → closed (settlement only)
    draft/open/assigned/in_progress → cancelled

Escrow Status:
    awaiting_funding → funded → released | refunded

Dispute Status:
    open → resolved (one settlement action) | rejected

Settlement Status (resumable, one row per case):
    pending → refund_done → transfer_pending → completed
    pending → transfer_pending → completed      (release)
    pending → refund_done → completed           (refund)
"""

from __future__ import annotations

import re

from django.db import models

from core.exceptions import ValidationError


class CaseStatus(models.TextChoices):
    """
    Lifecycle status of a case.

    Terminal states: CLOSED, CANCELLED
    Pre-completion states (cancellable): DRAFT, OPEN, ASSIGNED, IN_PROGRESS
    """

    DRAFT = "draft", "Draft"
    OPEN = "open", "Open"
    ASSIGNED = "assigned", "Assigned"
    IN_PROGRESS = "in_progress", "In Progress"
    DISPUTED = "disputed", "Disputed"
    COMPLETED = "completed", "Completed"
    CLOSED = "closed", "Closed"
    CANCELLED = "cancelled", "Cancelled"

    @classmethod
    def normalize(cls, raw) -> CaseStatus:
        """
        Map a client-supplied status string onto the canonical value.

        Accepts case and separator variants ("In Progress", "in-progress")
        and the American spelling "canceled".

        Raises:
            ValidationError: If the value names no known status
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError(
                "Status is required",
                error_code="INVALID_STATUS",
                details={"status": raw},
            )

        key = re.sub(r"[\s\-]+", "_", raw.strip().lower())
        key = _STATUS_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Unknown case status '{raw}'",
                error_code="INVALID_STATUS",
                details={"status": raw, "allowed": list(cls.values)},
            ) from None


_STATUS_ALIASES = {
    "canceled": "cancelled",
    "inprogress": "in_progress",
}

# Display-only state derived by resolve_case_state(); never stored.
FUNDED_IN_PROGRESS = "funded_in_progress"


class EscrowStatus(models.TextChoices):
    """
    State of the money held for a case.

    FUNDED is only ever set from a verified payment_intent.succeeded event.
    """

    AWAITING_FUNDING = "awaiting_funding", "Awaiting Funding"
    FUNDED = "funded", "Funded"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"


class DisputeStatus(models.TextChoices):
    OPEN = "open", "Open"
    RESOLVED = "resolved", "Resolved"
    REJECTED = "rejected", "Rejected"


class SettlementAction(models.TextChoices):
    """
    Mutually exclusive dispute outcomes.

    REFUND: Full refund to the attorney, nothing paid out
    RELEASE: Full amount paid out to the paralegal net of the platform fee
    RELEASE_PARTIAL: gross amount paid out net of fee, remainder refunded
    """

    REFUND = "refund", "Refund"
    RELEASE = "release", "Release"
    RELEASE_PARTIAL = "release_partial", "Release Partial"


class SettlementStatus(models.TextChoices):
    """
    Progress of a dispute settlement.

    A settlement that fails midway keeps the last completed step so that a
    retried admin action resumes instead of repeating money movement.
    """

    PENDING = "pending", "Pending"
    REFUND_DONE = "refund_done", "Refund Done"
    TRANSFER_PENDING = "transfer_pending", "Transfer Pending"
    COMPLETED = "completed", "Completed"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status of an inbound provider event.

    State Flow:
        RECEIVED → PROCESSING → PROCESSED
        RECEIVED → PROCESSING → FAILED → PROCESSING (redelivery / retry)
    """

    RECEIVED = "received", "Received"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class OnboardingStatus(models.TextChoices):
    """Stripe Connect onboarding progress for a paralegal's account."""

    NOT_STARTED = "not_started", "Not Started"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETE = "complete", "Complete"
    REJECTED = "rejected", "Rejected"


class ActorRole(models.TextChoices):
    """Role recorded on audit entries."""

    ATTORNEY = "attorney", "Attorney"
    PARALEGAL = "paralegal", "Paralegal"
    ADMIN = "admin", "Admin"
    SYSTEM = "system", "System"


class AuditTargetType(models.TextChoices):
    USER = "user", "User"
    CASE = "case", "Case"
    MESSAGE = "message", "Message"
    PAYMENT = "payment", "Payment"
    DISPUTE = "dispute", "Dispute"
    DOCUMENT = "document", "Document"
    OTHER = "other", "Other"
