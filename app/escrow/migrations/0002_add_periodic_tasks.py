"""
Add celery-beat schedules for the escrow background jobs.

Creates periodic tasks for:
- purging stored artifacts of closed cases (every CASE_PURGE_INTERVAL_SECONDS)
- reprocessing failed webhook events (every 5 minutes)
- resetting webhook events stuck in processing (every 15 minutes)
- deleting webhook events past retention (daily)
"""

from django.conf import settings
from django.db import migrations

PURGE_TASK_NAME = "Purge Expired Case Artifacts"

WEBHOOK_TASKS = [
    (
        "Retry Failed Webhook Events",
        "escrow.tasks.retry_failed_webhooks",
        5,
        "minutes",
        "Reprocesses failed webhook events from their stored payload.",
    ),
    (
        "Cleanup Stuck Webhook Events",
        "escrow.tasks.cleanup_stuck_webhooks",
        15,
        "minutes",
        "Marks webhook events stuck in processing as failed so they are retried.",
    ),
    (
        "Cleanup Old Webhook Events",
        "escrow.tasks.cleanup_old_webhooks",
        1,
        "days",
        "Deletes webhook events older than WEBHOOK_RETENTION_DAYS.",
    ),
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for the escrow workers."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # Purge interval is configurable but never below 30 seconds
    interval = max(30, int(getattr(settings, "CASE_PURGE_INTERVAL_SECONDS", 60)))
    schedule, _ = IntervalSchedule.objects.get_or_create(
        every=interval,
        period="seconds",
    )
    PeriodicTask.objects.get_or_create(
        name=PURGE_TASK_NAME,
        defaults={
            "task": "escrow.workers.purge_worker.purge_expired_cases",
            "interval": schedule,
            "enabled": True,
            "description": (
                "Deletes stored objects of cases whose purge deadline has passed. "
                "Bounded to CASE_PURGE_BATCH_LIMIT cases per tick."
            ),
        },
    )

    for name, task, every, period, description in WEBHOOK_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=every,
            period=period,
        )
        PeriodicTask.objects.get_or_create(
            name=name,
            defaults={
                "task": task,
                "interval": schedule,
                "enabled": True,
                "description": description,
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    names = [PURGE_TASK_NAME] + [entry[0] for entry in WEBHOOK_TASKS]
    PeriodicTask.objects.filter(name__in=names).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
