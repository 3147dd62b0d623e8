"""
Case model: the root aggregate of the escrow engine.

A case ties one unit of hired work (attorney buyer, paralegal provider) to
the payment held for it. Payout, PlatformIncome and DisputeSettlement are
write-once facts that reference it.

Status transitions are declared here with django-fsm and applied through
escrow.services.case_service.CaseStateMachine, which turns each transition
into a single conditional UPDATE. Do not assign status and save() directly.

Usage:
    from escrow.models import Case
    from escrow.services import CaseStateMachine

    case = Case.objects.create(attorney=attorney, title="Discovery review",
                               total_amount_cents=100_000)
    CaseStateMachine.transition(case.id, "open", "assigned", actor=admin)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import CaseStatus, EscrowStatus

# Statuses from which a case may still be cancelled
PRE_COMPLETION_STATUSES = [
    CaseStatus.DRAFT,
    CaseStatus.OPEN,
    CaseStatus.ASSIGNED,
    CaseStatus.IN_PROGRESS,
]

# Statuses in which the archived flag may be set
ARCHIVABLE_STATUSES = [CaseStatus.COMPLETED, CaseStatus.CLOSED]


class Case(UUIDPrimaryKeyMixin, BaseModel):
    """
    One hired unit of legal-support work and its escrow.

    Transitions (django-fsm):
        assign:              OPEN -> ASSIGNED
        start_work:          ASSIGNED -> IN_PROGRESS (also applied by funding)
        raise_dispute:       IN_PROGRESS -> DISPUTED
        complete:            IN_PROGRESS -> COMPLETED
        close:               COMPLETED -> CLOSED
        close_by_settlement: DISPUTED -> CLOSED (dispute settlement only)
        cancel:              DRAFT/OPEN/ASSIGNED/IN_PROGRESS -> CANCELLED

    Fields:
        attorney / paralegal: The two parties (paralegal null until hire)
        total_amount_cents: Agreed price in smallest currency unit
        locked_total_amount_cents: Price snapshot taken when escrow is created
        escrow_intent_id: PaymentIntent holding the funds (write-once)
        escrow_status: awaiting_funding / funded / released / refunded
        payment_released: Flips false -> true exactly once
        status: Lifecycle status (django-fsm)
        archived: Independent of status, only for completed/closed cases
        purge_scheduled_for / purged_at: Artifact retention deadline
        version: Incremented on every write for optimistic locking
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    attorney = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="cases_as_attorney",
        help_text="Attorney who posted and pays for the case",
    )

    paralegal = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="cases_as_paralegal",
        help_text="Paralegal hired onto the case (null until assignment)",
    )

    title = models.CharField(
        max_length=300,
        help_text="Short case title",
    )

    description = models.TextField(
        blank=True,
        help_text="Scope of work",
    )

    # ==========================================================================
    # Financial
    # ==========================================================================

    total_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Agreed case price in smallest currency unit",
    )

    locked_total_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Price snapshot taken when escrow was created",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    escrow_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe PaymentIntent ID holding the escrow (pi_xxx)",
    )

    escrow_session_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Checkout Session ID used to fund escrow (cs_xxx)",
    )

    payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Most recent PaymentIntent seen for this case",
    )

    escrow_status = models.CharField(
        max_length=20,
        choices=EscrowStatus.choices,
        default=EscrowStatus.AWAITING_FUNDING,
        db_index=True,
        help_text="State of the held funds",
    )

    payment_status = models.CharField(
        max_length=40,
        blank=True,
        help_text="Last PaymentIntent status reported by Stripe",
    )

    payment_released = models.BooleanField(
        default=False,
        help_text="Whether funds were paid out to the paralegal",
    )

    payout_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Transfer ID of the paralegal payout (tr_xxx)",
    )

    paid_out_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payout transfer was created",
    )

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    status = FSMField(
        default=CaseStatus.OPEN,
        choices=CaseStatus.choices,
        db_index=True,
        help_text="Lifecycle status (managed by CaseStateMachine)",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the case reached COMPLETED",
    )

    closed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the case reached CLOSED",
    )

    # ==========================================================================
    # Archival
    # ==========================================================================

    archived = models.BooleanField(
        default=False,
        help_text="Hidden from active lists (completed/closed cases only)",
    )

    archive_zip_key = models.CharField(
        max_length=512,
        blank=True,
        help_text="Object store key of the generated archive",
    )

    archive_ready_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the archive was last generated",
    )

    purge_scheduled_for = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When stored artifacts become eligible for purge",
    )

    purged_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When stored artifacts were irreversibly deleted",
    )

    # Optimistic locking
    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each write",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Case"
        verbose_name_plural = "Cases"
        indexes = [
            models.Index(fields=["status", "created_at"], name="escrow_case_status_5b1d0e_idx"),
            models.Index(
                fields=["purge_scheduled_for", "purged_at"],
                name="escrow_case_purge_s_8c2f41_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Case({self.id}, {self.status})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=CaseStatus.OPEN, target=CaseStatus.ASSIGNED)
    def assign(self):
        """A paralegal was hired onto the case."""

    @transition(field=status, source=CaseStatus.ASSIGNED, target=CaseStatus.IN_PROGRESS)
    def start_work(self):
        """Work begins. Applied automatically when escrow is funded."""

    @transition(field=status, source=CaseStatus.IN_PROGRESS, target=CaseStatus.DISPUTED)
    def raise_dispute(self):
        pass

    @transition(field=status, source=CaseStatus.IN_PROGRESS, target=CaseStatus.COMPLETED)
    def complete(self):
        pass

    @transition(field=status, source=CaseStatus.COMPLETED, target=CaseStatus.CLOSED)
    def close(self):
        pass

    @transition(field=status, source=CaseStatus.DISPUTED, target=CaseStatus.CLOSED)
    def close_by_settlement(self):
        """Only a dispute settlement may take this edge."""

    @transition(field=status, source=PRE_COMPLETION_STATUSES, target=CaseStatus.CANCELLED)
    def cancel(self):
        pass

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_funded(self) -> bool:
        """Escrow is secured: an intent exists and a webhook confirmed it."""
        return bool(self.escrow_intent_id) and self.escrow_status == EscrowStatus.FUNDED

    @property
    def settlement_amount_cents(self) -> int:
        """Amount held in escrow; the locked snapshot wins over the live price."""
        if self.locked_total_amount_cents is not None:
            return self.locked_total_amount_cents
        return self.total_amount_cents

    @property
    def transfer_group(self) -> str:
        """Correlation id attached to every gateway object for this case."""
        return f"case_{self.id}"

    @property
    def storage_prefix(self) -> str:
        return f"cases/{self.id}/"

    def is_party(self, user) -> bool:
        return user.pk in (self.attorney_id, self.paralegal_id)
