"""
AuditLog model: append-only record of every state-changing action.

Rows are written by escrow.services.audit_service.AuditService. Saving an
existing row or deleting a single instance raises. The only removal path is
the queryset-level retention purge.

Usage:
    AuditLog.objects.for_case(case).filter(action="stripe.payment_intent.succeeded")
    AuditLog.objects.purge_older_than(days=365)
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.exceptions import ConflictError
from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import ActorRole, AuditTargetType


class AuditLogQuerySet(models.QuerySet):
    def for_case(self, case):
        return self.filter(case=case)

    def purge_older_than(self, days: int) -> int:
        """Retention policy: delete rows older than `days`. Returns count."""
        cutoff = timezone.now() - timedelta(days=days)
        deleted, _ = self.filter(created_at__lt=cutoff).delete()
        return deleted


class AuditLog(UUIDPrimaryKeyMixin, BaseModel):
    """
    Append-only audit entry.

    Fields:
        actor: User who acted (null for provider webhooks and workers)
        actor_role: attorney / paralegal / admin / system
        action: Dotted action name, e.g. "stripe.payment_intent.succeeded"
        target_type / target_id: What was acted on
        case: Related case, if any
        ip / user_agent / method / path: Request context when available
        meta: Action-specific details (amounts, event ids, ...)
    """

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_entries",
        help_text="User who performed the action (null for system actions)",
    )

    actor_role = models.CharField(
        max_length=20,
        choices=ActorRole.choices,
        default=ActorRole.SYSTEM,
        help_text="Role of the actor at the time of the action",
    )

    action = models.CharField(
        max_length=120,
        db_index=True,
        help_text="Dotted action name",
    )

    target_type = models.CharField(
        max_length=20,
        choices=AuditTargetType.choices,
        default=AuditTargetType.OTHER,
        help_text="Kind of object acted on",
    )

    target_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Identifier of the object acted on",
    )

    case = models.ForeignKey(
        "escrow.Case",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="audit_entries",
        help_text="Related case, if any",
    )

    ip = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="Client IP address",
    )

    user_agent = models.CharField(
        max_length=512,
        blank=True,
        help_text="Client User-Agent header",
    )

    method = models.CharField(
        max_length=10,
        blank=True,
        help_text="HTTP method",
    )

    path = models.CharField(
        max_length=500,
        blank=True,
        help_text="Request path",
    )

    meta = models.JSONField(
        default=dict,
        blank=True,
        help_text="Action-specific details",
    )

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Audit Log"
        verbose_name_plural = "Audit Log"
        indexes = [
            models.Index(fields=["case", "created_at"], name="escrow_audi_case_id_6a0c11_idx"),
            models.Index(fields=["action", "created_at"], name="escrow_audi_action_d2e845_idx"),
        ]

    def __str__(self) -> str:
        return f"AuditLog({self.action}, case={self.case_id})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ConflictError(
                "Audit entries are append-only",
                error_code="AUDIT_APPEND_ONLY",
                details={"audit_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ConflictError(
            "Audit entries are append-only",
            error_code="AUDIT_APPEND_ONLY",
            details={"audit_id": str(self.pk)},
        )
