"""
Core base model shared by every persisted record.

BaseModel adds creation/modification timestamps. Identity and metadata
concerns live in core.model_mixins so that append-only logs can opt out of
fields they do not need.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class Case(UUIDPrimaryKeyMixin, BaseModel):
        title = models.CharField(max_length=200)

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract base model providing created_at / updated_at.

    Fields:
        created_at: Set once when the row is inserted (indexed for
            retention and time-window queries)
        updated_at: Refreshed on every save()

    Note:
        Queryset .update() calls do not touch auto_now fields, so code that
        performs conditional updates must set updated_at explicitly.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
