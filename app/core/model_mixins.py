"""
Reusable model mixins.

Mixins:
    UUIDPrimaryKeyMixin: Non-guessable UUID primary keys
    MetadataMixin: JSON metadata bag with small helper methods

Usage:
    from core.models import BaseModel
    from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

    class ConnectedAccount(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
        stripe_account_id = models.CharField(max_length=255, unique=True)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID as primary key instead of an auto-increment integer.

    Case ids travel to the payment gateway (metadata, transfer groups) and
    into object store prefixes, so they must not reveal record counts.

    Fields:
        id: UUIDField primary key (generated on instantiation)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class MetadataMixin(models.Model):
    """
    Flexible JSON metadata storage.

    Fields:
        metadata: JSONField for arbitrary key-value data

    Usage:
        account.set_meta("requirements_due", ["external_account"])
        account.get_meta("requirements_due", default=[])
    """

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Flexible key-value metadata storage",
    )

    class Meta:
        abstract = True

    def get_meta(self, key: str, default: Any = None) -> Any:
        """Return a metadata value, or default when the key is absent."""
        return self.metadata.get(key, default)

    def set_meta(self, key: str, value: Any, save: bool = True) -> None:
        """
        Set a metadata value and optionally persist it.

        Args:
            key: Metadata key
            value: JSON-serializable value
            save: Save only metadata/updated_at when True
        """
        self.metadata[key] = value
        if save:
            self.save(update_fields=["metadata", "updated_at"])
