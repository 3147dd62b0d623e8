"""
Escrow app configuration.
"""

from django.apps import AppConfig


class EscrowConfig(AppConfig):
    """Configuration for the escrow application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "escrow"
    verbose_name = "Escrow"

    def ready(self) -> None:
        # Register webhook handlers
        from escrow.webhooks import handlers  # noqa: F401
