"""
Purge worker for expired case artifacts.

Tasks:
- purge_expired_cases: Periodic purge tick (celery-beat, every
  CASE_PURGE_INTERVAL_SECONDS)

Only one tick runs at a time: the tick takes a non-blocking Redis lock and
skips when another worker holds it.

Usage:
    from escrow.workers import purge_expired_cases

    purge_expired_cases.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from escrow.exceptions import LockAcquisitionError
from escrow.locks import DistributedLock
from escrow.services.archive_service import ArchiveService

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Lock TTL for one purge tick (seconds); bounded storage timeouts x batch
PURGE_LOCK_TTL = 600

PURGE_LOCK_KEY = "escrow:purge"


@shared_task(bind=True)
def purge_expired_cases(self, batch_size: int | None = None) -> dict:
    """
    Purge artifacts of cases past their purge deadline.

    Args:
        batch_size: Cases per tick (defaults to CASE_PURGE_BATCH_LIMIT)

    Returns:
        Dict with processed / purged / failed counts, or
        {"status": "skipped"} when another tick is running
    """
    if batch_size is None:
        batch_size = settings.CASE_PURGE_BATCH_LIMIT

    try:
        with DistributedLock(PURGE_LOCK_KEY, ttl=PURGE_LOCK_TTL, blocking=False):
            stats = ArchiveService.purge_tick(batch_size)
    except LockAcquisitionError:
        logger.info("Purge tick already running, skipping")
        return {"status": "skipped"}

    if stats["processed"]:
        logger.info(
            f"Purge tick complete: purged {stats['purged']} of {stats['processed']} cases",
            extra=stats,
        )
    return {"status": "completed", **stats}
