"""
ConnectedAccount model for Stripe Connect payouts.

Each paralegal who can be paid has one Express connected account. Payouts
fail fast with PayoutAccountNotReadyError unless is_ready_for_payouts.
The account.updated webhook keeps the flags in sync.

Usage:
    from escrow.models import ConnectedAccount

    account = ConnectedAccount.objects.get(user=case.paralegal)
    if account.is_ready_for_payouts:
        ...
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F

from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from escrow.state_machines import OnboardingStatus


class ConnectedAccount(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Links a paralegal to their Stripe Connect account.

    Fields:
        user: Paralegal owning the account
        stripe_account_id: Stripe Account ID (acct_xxx), unique
        onboarding_status: not_started / in_progress / complete / rejected
        payouts_enabled / charges_enabled: Capability flags from Stripe
        version: Optimistic locking version
        metadata: Extra Stripe details (requirements due, country)
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="connected_account",
        help_text="Paralegal this connected account belongs to",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
        help_text="Current Stripe Connect onboarding status",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"

    def __str__(self) -> str:
        return f"ConnectedAccount({self.stripe_account_id}, {self.onboarding_status})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment for optimistic locking."""
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    @property
    def is_ready_for_payouts(self) -> bool:
        """Onboarding finished and Stripe has enabled payouts."""
        return (
            self.onboarding_status == OnboardingStatus.COMPLETE and self.payouts_enabled
        )
