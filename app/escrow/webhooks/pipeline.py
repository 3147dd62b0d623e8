"""
Webhook dedup and processing pipeline.

Processing Flow:
1. Verify the signature (connect secret when a Stripe-Account header is
   present). Failure is terminal: 400, nothing stored.
2. Insert the WebhookEvent inside a savepoint. The unique event_id
   constraint decides between concurrent deliveries; a duplicate insert
   loads the existing row instead.
3. Claim the row with a conditional UPDATE (received/failed, or a
   processing claim older than WEBHOOK_PROCESSING_STALE_MINUTES). A
   processed or freshly claimed row is reported as deduped.
4. In one transaction: dispatch to the handler, write the single
   "stripe.<type>" audit row, mark the row processed.
5. On handler failure the transaction rolls back, the row is marked failed
   and the caller answers 5xx so Stripe redelivers. Once attempts reach
   WEBHOOK_MAX_ATTEMPTS the failure is acknowledged instead.

Usage:
    from escrow.webhooks.pipeline import WebhookPipeline

    outcome = WebhookPipeline.handle(request.body, signature, account_header)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from escrow.adapters import StripeAdapter
from escrow.exceptions import StripeInvalidRequestError
from escrow.models import WebhookEvent
from escrow.services.audit_service import AuditService
from escrow.state_machines import WebhookEventStatus
from escrow.webhooks.handlers import WebhookAuditContext, dispatch_webhook

logger = logging.getLogger(__name__)


class WebhookProcessingError(Exception):
    """A handler reported failure for a verified event."""


@dataclass
class WebhookOutcome:
    """
    Result of handling one delivery.

    Attributes:
        event: The stored WebhookEvent
        deduped: Event was already processed (or is being processed)
        failed: Processing raised; the row is marked failed
        acknowledged: A failed event answered 2xx because it exhausted
            WEBHOOK_MAX_ATTEMPTS
    """

    event: WebhookEvent
    deduped: bool = False
    failed: bool = False
    acknowledged: bool = False

    @property
    def should_retry(self) -> bool:
        return self.failed and not self.acknowledged


class WebhookPipeline:
    """Verify, deduplicate, process and audit Stripe webhook deliveries."""

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
    def handle(
        cls,
        payload: bytes,
        signature: str,
        account_id: str | None = None,
    ) -> WebhookOutcome:
        """
        Handle one raw webhook delivery.

        Raises:
            StripeInvalidRequestError: Signature or payload invalid
        """
        event_data = cls.get_stripe_adapter().verify_webhook_signature(
            payload, signature, connect=bool(account_id)
        )

        event_id = event_data.get("id")
        event_type = event_data.get("type")
        if not event_id or not event_type:
            raise StripeInvalidRequestError("Webhook event is missing id or type")

        logger.info(
            f"Received Stripe webhook: {event_type}",
            extra={"event_id": event_id, "event_type": event_type},
        )

        event, created = cls._record(event_data, account_id or event_data.get("account") or "")
        if not created and event.is_processed:
            logger.info(
                "Webhook already processed, returning deduped",
                extra={"event_id": event_id},
            )
            return WebhookOutcome(event=event, deduped=True)

        if not cls.claim(event):
            logger.info(
                "Webhook is being processed by another delivery",
                extra={"event_id": event_id, "status": event.status},
            )
            return WebhookOutcome(event=event, deduped=True)

        return cls.process(event)

    @staticmethod
    def _record(event_data: dict, account_id: str) -> tuple[WebhookEvent, bool]:
        """Insert the event row; load the existing row on a duplicate id."""
        try:
            with transaction.atomic():
                event = WebhookEvent.objects.create(
                    event_id=event_data["id"],
                    event_type=event_data["type"],
                    account_id=account_id,
                    payload=event_data,
                )
            return event, True
        except IntegrityError:
            return WebhookEvent.objects.get(event_id=event_data["id"]), False

    @staticmethod
    def claim(event: WebhookEvent) -> bool:
        """
        Take the processing claim on an event.

        Returns:
            True if this caller now owns processing
        """
        now = timezone.now()
        stale_before = now - timedelta(minutes=settings.WEBHOOK_PROCESSING_STALE_MINUTES)
        rows = (
            WebhookEvent.objects.filter(pk=event.pk)
            .filter(
                Q(status__in=[WebhookEventStatus.RECEIVED, WebhookEventStatus.FAILED])
                | Q(status=WebhookEventStatus.PROCESSING, last_attempt_at__lt=stale_before)
            )
            .update(
                status=WebhookEventStatus.PROCESSING,
                attempts=F("attempts") + 1,
                last_attempt_at=now,
                updated_at=now,
            )
        )
        if rows:
            event.refresh_from_db()
        return rows == 1

    @classmethod
    def process(cls, event: WebhookEvent) -> WebhookOutcome:
        """Run the handler for a claimed event and record the outcome."""
        try:
            with transaction.atomic():
                result = dispatch_webhook(event)
                if not result:
                    raise WebhookProcessingError(result.error or "Webhook handler failed")

                context = result.data or WebhookAuditContext()
                AuditService.record(
                    f"stripe.{event.event_type}",
                    target_type=context.target_type,
                    target_id=context.target_id,
                    case=context.case,
                    meta={"event_id": event.event_id, **context.meta},
                )

                now = timezone.now()
                WebhookEvent.objects.filter(pk=event.pk).update(
                    status=WebhookEventStatus.PROCESSED,
                    processed_at=now,
                    last_error="",
                    updated_at=now,
                )
        except Exception as e:
            return cls._mark_failed(event, e)

        event.refresh_from_db()
        logger.info(
            f"Webhook processed: {event.event_type}",
            extra={"event_id": event.event_id, "attempts": event.attempts},
        )
        return WebhookOutcome(event=event)

    @staticmethod
    def _mark_failed(event: WebhookEvent, error: Exception) -> WebhookOutcome:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        now = timezone.now()
        WebhookEvent.objects.filter(pk=event.pk).update(
            status=WebhookEventStatus.FAILED,
            last_error=message[:2000],
            updated_at=now,
        )
        event.refresh_from_db()

        acknowledged = event.attempts >= settings.WEBHOOK_MAX_ATTEMPTS
        logger.error(
            f"Webhook processing failed: {event.event_type}",
            extra={
                "event_id": event.event_id,
                "attempts": event.attempts,
                "error_type": type(error).__name__,
                "acknowledged": acknowledged,
            },
            exc_info=True,
        )
        return WebhookOutcome(event=event, failed=True, acknowledged=acknowledged)

    @classmethod
    def reprocess(cls, event: WebhookEvent) -> WebhookOutcome | None:
        """
        Retry a stored event from its payload.

        Returns:
            The outcome, or None if the event could not be claimed
        """
        if not cls.claim(event):
            return None
        return cls.process(event)
