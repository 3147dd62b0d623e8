"""
Case workspace content: stored files and messages.

Only the parts the escrow engine needs are modelled here: enough to gate
access on funding, bundle everything into the case archive, and know which
object store keys a purge removes. Upload presigning and real-time delivery
happen elsewhere.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class CaseFile(UUIDPrimaryKeyMixin, BaseModel):
    """
    A document stored under the case prefix in the object store.

    Fields:
        storage_key: Object key, always under cases/<case_id>/
        original_name: File name as uploaded
        mime_type / size_bytes: Upload metadata
        uploaded_by: Party who uploaded it
    """

    case = models.ForeignKey(
        "escrow.Case",
        on_delete=models.CASCADE,
        related_name="files",
        help_text="Case this document belongs to",
    )

    storage_key = models.CharField(
        max_length=512,
        help_text="Object store key",
    )

    original_name = models.CharField(
        max_length=255,
        help_text="File name as uploaded",
    )

    mime_type = models.CharField(
        max_length=120,
        blank=True,
        help_text="MIME type reported at upload",
    )

    size_bytes = models.PositiveBigIntegerField(
        default=0,
        help_text="Object size in bytes",
    )

    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who uploaded the file",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Case File"
        verbose_name_plural = "Case Files"

    def __str__(self) -> str:
        return f"CaseFile({self.original_name}, case={self.case_id})"


class CaseMessage(UUIDPrimaryKeyMixin, BaseModel):
    """
    A message exchanged between the case parties.

    Fields:
        sender: Party who sent it
        body: Message text
        attachment_key / attachment_name: Optional stored attachment
    """

    case = models.ForeignKey(
        "escrow.Case",
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Case this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="+",
        help_text="User who sent the message",
    )

    body = models.TextField(
        blank=True,
        help_text="Message text",
    )

    attachment_key = models.CharField(
        max_length=512,
        blank=True,
        help_text="Object store key of the attachment",
    )

    attachment_name = models.CharField(
        max_length=255,
        blank=True,
        help_text="Original attachment file name",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Case Message"
        verbose_name_plural = "Case Messages"

    def __str__(self) -> str:
        return f"CaseMessage({self.id}, case={self.case_id})"
