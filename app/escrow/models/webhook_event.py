"""
WebhookEvent model for provider event deduplication.

Exactly one row exists per provider event id. The row is created by an
atomic insert (the unique constraint on event_id arbitrates concurrent
deliveries) and is then claimed for processing with conditional updates,
see escrow.webhooks.pipeline.

Rows are deleted after WEBHOOK_RETENTION_DAYS by cleanup_old_webhooks.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from escrow.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One inbound payment provider event.

    Fields:
        provider: Event source ("stripe")
        event_id: Provider event id (evt_xxx), unique
        event_type: e.g. "payment_intent.succeeded"
        account_id: Connected account the event came from, if any
        payload: Verified event body
        status: received / processing / processed / failed
        attempts: Number of processing claims
        last_error: Error of the last failed attempt
        last_attempt_at: When the last claim started
        processed_at: When processing succeeded
    """

    provider = models.CharField(
        max_length=20,
        default="stripe",
        help_text="Event source",
    )

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider event ID (evt_xxx) - unique constraint for dedup",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Provider event type (e.g., 'payment_intent.succeeded')",
    )

    account_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Connected account ID from the Stripe-Account header",
    )

    payload = models.JSONField(
        help_text="Verified event payload (JSON)",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.RECEIVED,
        db_index=True,
        help_text="Current processing status",
    )

    attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    last_error = models.TextField(
        blank=True,
        help_text="Error message from the last failed attempt",
    )

    last_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the last processing attempt started",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was successfully processed",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="escrow_webh_status_91c2d4_idx"),
            models.Index(fields=["status", "attempts"], name="escrow_webh_status_e07b6a_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    def get_object(self) -> dict:
        """Return payload.data.object, or {} when the payload is malformed."""
        try:
            obj = self.payload.get("data", {}).get("object", {})
        except (AttributeError, TypeError):
            return {}
        return obj if isinstance(obj, dict) else {}

    def get_object_id(self) -> str | None:
        return self.get_object().get("id")
