"""
Stripe Connect onboarding for paralegals.

A paralegal must own a ConnectedAccount with onboarding complete and
payouts enabled before any transfer is attempted (see
PayoutService.get_ready_account). Onboarding status is kept in sync by the
account.updated webhook.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError

from core.exceptions import PermissionDeniedError
from core.services import BaseService, ServiceResult

from escrow.adapters import IdempotencyKeyGenerator, StripeAdapter
from escrow.models import ConnectedAccount
from escrow.services.audit_service import AuditService
from escrow.state_machines import AuditTargetType, OnboardingStatus

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User


class ConnectService(BaseService):
    """Connected account creation, onboarding links and status sync."""

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    @classmethod
    def get_or_create_account(cls, user: User) -> ConnectedAccount:
        """
        Return the user's connected account, creating it at Stripe if needed.

        The idempotency key is derived from the user, so a retried request
        gets back the same Stripe account.
        """
        account = ConnectedAccount.objects.filter(user=user).first()
        if account is not None:
            return account

        result = cls.get_stripe_adapter().create_connected_account(
            email=user.email,
            idempotency_key=IdempotencyKeyGenerator.generate("connect_account", user.pk),
            metadata={"user_id": str(user.pk)},
        )
        try:
            with cls.atomic():
                account = ConnectedAccount.objects.create(
                    user=user,
                    stripe_account_id=result.id,
                    onboarding_status=OnboardingStatus.IN_PROGRESS,
                    payouts_enabled=result.payouts_enabled,
                    charges_enabled=result.charges_enabled,
                )
        except IntegrityError:
            # Concurrent request created it first
            return ConnectedAccount.objects.get(user=user)

        cls.get_logger().info(
            "Created connected account",
            extra={"user_id": str(user.pk), "account_id": result.id},
        )
        return account

    @classmethod
    def create_onboarding_link(cls, user: User, request: HttpRequest | None = None) -> dict:
        """
        Start (or resume) onboarding and return the hosted onboarding URL.

        Raises:
            PermissionDeniedError: User is not a paralegal
        """
        if not user.is_paralegal:
            raise PermissionDeniedError("Only paralegals can onboard for payouts")

        account = cls.get_or_create_account(user)
        if account.onboarding_status == OnboardingStatus.NOT_STARTED:
            account.onboarding_status = OnboardingStatus.IN_PROGRESS
            account.save(update_fields=["onboarding_status", "version", "updated_at"])

        frontend_url = settings.FRONTEND_URL.rstrip("/")
        url = cls.get_stripe_adapter().create_account_link(
            account.stripe_account_id,
            refresh_url=f"{frontend_url}/payouts/onboarding/refresh",
            return_url=f"{frontend_url}/payouts/onboarding/complete",
        )

        AuditService.record(
            "connect.onboarding.start",
            actor=user,
            target_type=AuditTargetType.USER,
            target_id=str(user.pk),
            meta={"account_id": account.stripe_account_id},
            request=request,
        )
        return {
            "url": url,
            "account_id": account.stripe_account_id,
            "onboarding_status": account.onboarding_status,
        }

    @classmethod
    def sync_account(cls, event_id: str, account_obj: dict) -> ServiceResult[ConnectedAccount | None]:
        """Apply an account.updated object to the matching ConnectedAccount."""
        account_id = account_obj.get("id")
        account = ConnectedAccount.objects.filter(stripe_account_id=account_id).first()
        if account is None:
            cls.get_logger().info(
                "Account event matched no connected account",
                extra={"event_id": event_id, "account_id": account_id},
            )
            return ServiceResult.success(None)

        payouts_enabled = bool(account_obj.get("payouts_enabled"))
        requirements = account_obj.get("requirements") or {}
        disabled_reason = requirements.get("disabled_reason") or ""

        if disabled_reason.startswith("rejected"):
            status = OnboardingStatus.REJECTED
        elif account_obj.get("details_submitted") and payouts_enabled:
            status = OnboardingStatus.COMPLETE
        else:
            status = OnboardingStatus.IN_PROGRESS

        account.onboarding_status = status
        account.payouts_enabled = payouts_enabled
        account.charges_enabled = bool(account_obj.get("charges_enabled"))
        account.set_meta(
            "requirements_due", list(requirements.get("currently_due") or []), save=False
        )
        account.save()

        cls.get_logger().info(
            "Connected account synced",
            extra={"event_id": event_id, "account_id": account_id, "status": status},
        )
        return ServiceResult.success(account)
