"""
Celery tasks for the escrow engine.

This module provides async tasks for:
- Generating case archives after close
- Retrying failed webhook events
- Periodic cleanup of stuck and expired webhook events

Usage:
    from escrow.tasks import generate_case_archive

    generate_case_archive.delay(str(case.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from escrow.exceptions import StorageError
from escrow.models import WebhookEvent
from escrow.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Failed events retried per run
RETRY_BATCH_SIZE = 100


# =============================================================================
# Archive Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(StorageError,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 5},
    acks_late=True,
)
def generate_case_archive(self, case_id: str) -> dict:
    """
    Render and store the archive of a closed case.

    Safe to retry: the archive is written to a stable key.
    """
    from escrow.services.archive_service import ArchiveService

    result = ArchiveService.generate_archive(case_id)
    if result.get("skipped"):
        return {"status": "skipped", "case_id": case_id}
    return {
        "status": "generated",
        "case_id": case_id,
        "key": result["key"],
        "ready_at": result["ready_at"].isoformat(),
    }


# =============================================================================
# Webhook Maintenance Tasks
# =============================================================================


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to reprocess failed webhook events.

    Events are retried from their stored payload while attempts stay below
    WEBHOOK_MAX_ATTEMPTS. Scheduled every 5 minutes.

    Returns:
        Dict with processed / failed counts
    """
    from escrow.webhooks.pipeline import WebhookPipeline

    failed_events = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        attempts__lt=settings.WEBHOOK_MAX_ATTEMPTS,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    processed_count = failed_count = 0
    for event in failed_events:
        outcome = WebhookPipeline.reprocess(event)
        if outcome is None:
            continue
        if outcome.failed:
            failed_count += 1
        else:
            processed_count += 1

    if processed_count or failed_count:
        logger.info(
            f"Retried failed webhooks: {processed_count} processed, {failed_count} failed",
            extra={"processed_count": processed_count, "failed_count": failed_count},
        )

    return {"processed_count": processed_count, "failed_count": failed_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Events left in PROCESSING past WEBHOOK_PROCESSING_STALE_MINUTES (a
    crashed worker or request) are reset to FAILED so they are retried.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=settings.WEBHOOK_PROCESSING_STALE_MINUTES)

    reset_count = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        last_attempt_at__lt=threshold,
    ).update(
        status=WebhookEventStatus.FAILED,
        last_error="Processing timed out - reset for retry",
        updated_at=timezone.now(),
    )

    if reset_count > 0:
        logger.warning(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


@shared_task
def cleanup_old_webhooks(days: int | None = None) -> dict:
    """
    Periodic task to delete webhook events past the retention window.

    Args:
        days: Retention in days (defaults to WEBHOOK_RETENTION_DAYS)

    Returns:
        Dict with count of webhooks deleted
    """
    if days is None:
        days = settings.WEBHOOK_RETENTION_DAYS
    cutoff = timezone.now() - timedelta(days=days)

    deleted_count, _ = WebhookEvent.objects.filter(created_at__lt=cutoff).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================
# Defined in escrow.workers, re-exported so Celery autodiscover finds them.

from escrow.workers import purge_expired_cases  # noqa: E402, F401
