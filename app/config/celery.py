"""
Celery configuration for the Django application.

Celery runs the escrow background work:
- Case archive generation after a case is closed
- The periodic purge tick for expired case artifacts
- Webhook retry and cleanup jobs

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps. Periodic schedules
are stored in the database (django-celery-beat DatabaseScheduler).

Usage:
    from escrow.tasks import generate_case_archive

    generate_case_archive.delay(str(case.id))

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Create Celery application instance
# The name should match the Django project name
app = Celery("config")

# Load configuration from Django settings
# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Auto-discover tasks from all registered Django apps
app.autodiscover_tasks()
