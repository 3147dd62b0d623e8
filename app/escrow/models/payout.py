"""
Payout and PlatformIncome models.

Both are write-once facts, unique per case, inserted in the same database
transaction after the gateway confirmed the transfer. The unique case
constraint is what stops a double payout from a retried or double-clicked
settlement: a second insert raises IntegrityError, which services surface
as PayoutAlreadyAppliedError.

Usage:
    from escrow.models import Payout, PlatformIncome

    with transaction.atomic():
        Payout.objects.create(case=case, paralegal=case.paralegal,
                              amount_paid_cents=82_000, transfer_id="tr_123")
        PlatformIncome.objects.create(case=case, attorney=case.attorney,
                                      paralegal=case.paralegal,
                                      fee_amount_cents=18_000)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class Payout(UUIDPrimaryKeyMixin, BaseModel):
    """
    Net amount transferred to the paralegal for a case.

    Fields:
        case: Paid-out case (unique)
        paralegal: Recipient
        amount_paid_cents: Net amount after platform fee
        gross_amount_cents: Amount released before fee
        currency: ISO 4217 currency code
        transfer_id: Stripe Transfer ID (unique)
    """

    case = models.OneToOneField(
        "escrow.Case",
        on_delete=models.PROTECT,
        related_name="payout",
        help_text="Case this payout settles (one payout per case)",
    )

    paralegal = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payouts",
        help_text="Paralegal receiving the payout",
    )

    amount_paid_cents = models.PositiveBigIntegerField(
        help_text="Net amount transferred, in smallest currency unit",
    )

    gross_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Released amount before platform fee",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    transfer_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Transfer ID (tr_xxx)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout"
        verbose_name_plural = "Payouts"

    def __str__(self) -> str:
        return f"Payout({self.case_id}, {self.amount_paid_cents} {self.currency})"


class PlatformIncome(UUIDPrimaryKeyMixin, BaseModel):
    """
    Platform fee retained from a case payout.

    Fields:
        case: Case the fee was earned on (unique)
        attorney / paralegal: Parties of the case at payout time
        fee_amount_cents: Fee retained
        currency: ISO 4217 currency code
    """

    case = models.OneToOneField(
        "escrow.Case",
        on_delete=models.PROTECT,
        related_name="platform_income",
        help_text="Case this fee was earned on (one row per case)",
    )

    attorney = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Attorney who paid",
    )

    paralegal = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Paralegal who was paid",
    )

    fee_amount_cents = models.PositiveBigIntegerField(
        help_text="Platform fee in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Platform Income"
        verbose_name_plural = "Platform Income"

    def __str__(self) -> str:
        return f"PlatformIncome({self.case_id}, {self.fee_amount_cents} {self.currency})"
