"""
Dispute and DisputeSettlement models.

A case keeps an ordered list of disputes. Only one settlement can ever
exist per case (OneToOne on case); once it reaches COMPLETED it is frozen.
Admin notes live on the Dispute so they stay editable after settlement.

Usage:
    from escrow.models import Dispute, DisputeSettlement

    dispute = Dispute.objects.create(case=case, raised_by=attorney,
                                     message="Deliverable incomplete")
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.exceptions import ConflictError
from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import DisputeStatus, SettlementAction, SettlementStatus


class Dispute(UUIDPrimaryKeyMixin, BaseModel):
    """
    A dispute raised by one of the case parties.

    Fields:
        case: Disputed case
        raised_by: Attorney or paralegal who opened it
        message: Party's description of the problem
        status: open / resolved / rejected
        admin_notes: Free-form admin notes (editable at any time)
        resolved_at: When a settlement resolved it
    """

    case = models.ForeignKey(
        "escrow.Case",
        on_delete=models.CASCADE,
        related_name="disputes",
        help_text="Case under dispute",
    )

    raised_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="disputes_raised",
        help_text="Party who opened the dispute",
    )

    message = models.TextField(
        help_text="Description of the problem",
    )

    status = models.CharField(
        max_length=20,
        choices=DisputeStatus.choices,
        default=DisputeStatus.OPEN,
        db_index=True,
        help_text="Dispute status",
    )

    admin_notes = models.TextField(
        blank=True,
        help_text="Internal admin notes",
    )

    resolved_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the dispute was resolved",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Dispute"
        verbose_name_plural = "Disputes"
        indexes = [
            models.Index(fields=["status", "created_at"], name="escrow_disp_status_3f9a27_idx"),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.id}, case={self.case_id}, {self.status})"

    @property
    def is_open(self) -> bool:
        return self.status == DisputeStatus.OPEN


class DisputeSettlement(UUIDPrimaryKeyMixin, BaseModel):
    """
    The admin-resolved outcome of a case dispute.

    The row is created in PENDING before any money moves and records each
    completed gateway step (refund_id, transfer_id), so a retried settlement
    resumes where the last attempt stopped.

    Status Flow:
        refund:          PENDING -> REFUND_DONE -> COMPLETED
        release:         PENDING -> TRANSFER_PENDING -> COMPLETED
        release_partial: PENDING -> REFUND_DONE -> TRANSFER_PENDING -> COMPLETED

    Fields:
        case: One settlement per case (unique)
        dispute: The dispute this settlement resolves
        action: refund / release / release_partial
        gross_amount_cents: Amount released before platform fee
        refund_amount_cents: Amount returned to the attorney
        payout_amount_cents / fee_amount_cents: Split of the gross amount
        refund_id / transfer_id: Gateway object ids once issued
        status: Saga progress
        last_error: Sanitized error of the last failed attempt
        attempts: Number of settlement attempts
        settled_at / settled_by: Set on completion

    Note:
        A COMPLETED settlement cannot be saved again.
    """

    case = models.OneToOneField(
        "escrow.Case",
        on_delete=models.PROTECT,
        related_name="settlement",
        help_text="Settled case (at most one settlement per case)",
    )

    dispute = models.OneToOneField(
        Dispute,
        on_delete=models.PROTECT,
        related_name="settlement",
        help_text="Dispute resolved by this settlement",
    )

    action = models.CharField(
        max_length=20,
        choices=SettlementAction.choices,
        help_text="Settlement outcome",
    )

    gross_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Amount released to the paralegal before platform fee",
    )

    refund_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Amount refunded to the attorney",
    )

    payout_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Net amount transferred to the paralegal",
    )

    fee_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Platform fee retained from the gross amount",
    )

    refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Refund ID (re_xxx)",
    )

    transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Transfer ID (tr_xxx)",
    )

    status = models.CharField(
        max_length=20,
        choices=SettlementStatus.choices,
        default=SettlementStatus.PENDING,
        db_index=True,
        help_text="Settlement progress",
    )

    last_error = models.TextField(
        blank=True,
        help_text="Sanitized error from the last failed attempt",
    )

    attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of settlement attempts",
    )

    settled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the settlement completed",
    )

    settled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="settlements",
        help_text="Admin who settled the dispute",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Dispute Settlement"
        verbose_name_plural = "Dispute Settlements"

    def __str__(self) -> str:
        return f"DisputeSettlement({self.case_id}, {self.action}, {self.status})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            frozen = DisputeSettlement.objects.filter(
                pk=self.pk, status=SettlementStatus.COMPLETED
            ).exists()
            if frozen:
                raise ConflictError(
                    "Dispute settlement is immutable once completed",
                    error_code="SETTLEMENT_IMMUTABLE",
                    details={"case_id": str(self.case_id)},
                )
        super().save(*args, **kwargs)

    @property
    def is_completed(self) -> bool:
        return self.status == SettlementStatus.COMPLETED

    @property
    def requires_refund(self) -> bool:
        return self.refund_amount_cents > 0

    @property
    def requires_transfer(self) -> bool:
        return self.payout_amount_cents > 0

    def matches(self, action: str, gross_amount_cents: int) -> bool:
        """Whether a repeated settle request asks for the same outcome."""
        return self.action == action and self.gross_amount_cents == gross_amount_cents
