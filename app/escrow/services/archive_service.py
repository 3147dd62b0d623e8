"""
Case archive generation and artifact purge.

When the attorney closes a completed case it is archived and a purge is
scheduled CASE_PURGE_DELAY_HOURS later. The archive zip is written to a
stable key, so regenerating it replaces the previous object.

Archive layout (cases/<id>/archive/case-<id>-v1.zip):
    summary.txt                   human-readable summary
    metadata/case.json            case fields
    metadata/messages.json        message list
    documents/<name>              stored case files
    messages/<ts>-<name>          message attachments

The purge deletes every object under cases/<id>/, then clears the file
references and stamps purged_at. purged_at is only set after the delete
succeeded, so a failed purge is picked up again on the next tick.
"""

from __future__ import annotations

import io
import json
import re
import uuid
import zipfile
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import PermissionDeniedError
from core.services import BaseService

from escrow.adapters.storage import get_object_store
from escrow.exceptions import InvalidTransitionError
from escrow.models import Case, CaseFile, CaseMessage
from escrow.services.audit_service import AuditService
from escrow.services.case_service import CaseStateMachine, get_case
from escrow.state_machines import AuditTargetType, CaseStatus

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User


ARCHIVE_VERSION = "v1"
MAX_FILENAME_LENGTH = 120

# Hard ceiling on cases per purge tick
MAX_PURGE_BATCH = 10

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x7f\\/:*?"<>|]')
_DASH_RUNS = re.compile(r"-{2,}")


def safe_filename(name: str, fallback: str = "file") -> str:
    """Make a name safe to use as a zip entry."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("-", name or "")
    cleaned = _DASH_RUNS.sub("-", cleaned).strip(" .")
    return (cleaned or fallback)[:MAX_FILENAME_LENGTH]


def archive_key_for(case: Case) -> str:
    return f"{case.storage_prefix}archive/case-{case.pk}-{ARCHIVE_VERSION}.zip"


def _unique_name(name: str, used: set[str]) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    counter = 2
    while True:
        candidate = f"{stem}-{counter}.{ext}" if ext else f"{stem}-{counter}"
        if candidate not in used:
            used.add(candidate)
            return candidate
        counter += 1


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


class ArchiveService(BaseService):
    """Close-and-archive flow, archive rendering and purging."""

    @classmethod
    def close_and_archive(
        cls,
        case_id: uuid.UUID | str,
        actor: User,
        request: HttpRequest | None = None,
    ) -> Case:
        """
        Close a completed case, archive it and schedule its purge.

        Archive generation is queued after the transaction commits.
        Repeating the call on a closed, archived case is a no-op.

        Raises:
            PermissionDeniedError: Actor is not the case attorney
            InvalidTransitionError: Case is not completed
        """
        case = get_case(case_id)
        if case.attorney_id != actor.pk:
            raise PermissionDeniedError(
                "Only the case attorney can close this case",
                details={"case_id": str(case.pk)},
            )
        if case.status == CaseStatus.CLOSED and case.archived:
            return case
        if case.status != CaseStatus.COMPLETED:
            raise InvalidTransitionError(case.status, CaseStatus.CLOSED)

        purge_at = timezone.now() + timedelta(hours=settings.CASE_PURGE_DELAY_HOURS)
        with cls.atomic():
            case = CaseStateMachine.transition(
                case.pk,
                CaseStatus.COMPLETED,
                CaseStatus.CLOSED,
                actor=actor,
                extra_fields={"archived": True, "purge_scheduled_for": purge_at},
                audit_action="case.complete.archive",
                audit_meta={"purge_scheduled_for": purge_at.isoformat()},
                request=request,
            )

            from escrow.tasks import generate_case_archive

            case_pk = str(case.pk)
            transaction.on_commit(lambda: generate_case_archive.delay(case_pk))

        return case

    # =========================================================================
    # Archive Generation
    # =========================================================================

    @classmethod
    def generate_archive(cls, case_id: uuid.UUID | str) -> dict:
        """
        Render and store the case archive.

        Returns:
            {"key": <object key>, "ready_at": <datetime>}, or
            {"key": None, "ready_at": None, "skipped": True} once the case
            has been purged

        Raises:
            StorageError: Upload (or a non-missing read) failed
        """
        case = get_case(case_id)
        if case.purged_at is not None:
            cls.get_logger().info(
                "Skipping archive for purged case",
                extra={"case_id": str(case.pk)},
            )
            return {"key": None, "ready_at": None, "skipped": True}

        store = get_object_store()
        files = list(CaseFile.objects.filter(case=case).order_by("created_at"))
        messages = list(
            CaseMessage.objects.filter(case=case).select_related("sender").order_by("created_at")
        )

        missing: list[str] = []
        used_names: set[str] = set()
        buffer = io.BytesIO()

        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for case_file in files:
                data = store.get_object(case_file.storage_key)
                if data is None:
                    missing.append(case_file.original_name)
                    continue
                name = _unique_name(
                    f"documents/{safe_filename(case_file.original_name)}", used_names
                )
                archive.writestr(name, data)

            for message in messages:
                if not message.attachment_key:
                    continue
                data = store.get_object(message.attachment_key)
                if data is None:
                    missing.append(message.attachment_name or message.attachment_key)
                    continue
                stamp = message.created_at.strftime("%Y%m%dT%H%M%SZ")
                filename = safe_filename(message.attachment_name, fallback="attachment")
                name = _unique_name(f"messages/{stamp}-{filename}", used_names)
                archive.writestr(name, data)

            archive.writestr(
                "metadata/case.json",
                json.dumps(cls._case_metadata(case), indent=2),
            )
            archive.writestr(
                "metadata/messages.json",
                json.dumps([cls._message_metadata(m) for m in messages], indent=2),
            )
            archive.writestr("summary.txt", cls._render_summary(case, files, messages, missing))

        key = archive_key_for(case)
        store.put_object(key, buffer.getvalue(), "application/zip")

        ready_at = timezone.now()
        Case.objects.filter(pk=case.pk, purged_at__isnull=True).update(
            archive_zip_key=key,
            archive_ready_at=ready_at,
            version=F("version") + 1,
            updated_at=ready_at,
        )

        cls.get_logger().info(
            "Case archive generated",
            extra={
                "case_id": str(case.pk),
                "key": key,
                "files": len(files),
                "messages": len(messages),
                "missing": len(missing),
            },
        )
        return {"key": key, "ready_at": ready_at}

    @staticmethod
    def _case_metadata(case: Case) -> dict:
        return {
            "id": str(case.pk),
            "title": case.title,
            "description": case.description,
            "status": case.status,
            "attorney_id": str(case.attorney_id),
            "paralegal_id": str(case.paralegal_id) if case.paralegal_id else None,
            "total_amount_cents": case.total_amount_cents,
            "locked_total_amount_cents": case.locked_total_amount_cents,
            "currency": case.currency,
            "escrow_status": case.escrow_status,
            "payment_released": case.payment_released,
            "created_at": _isoformat(case.created_at),
            "completed_at": _isoformat(case.completed_at),
            "closed_at": _isoformat(case.closed_at),
        }

    @staticmethod
    def _message_metadata(message: CaseMessage) -> dict:
        return {
            "id": str(message.pk),
            "sender_id": str(message.sender_id) if message.sender_id else None,
            "body": message.body,
            "attachment_name": message.attachment_name or None,
            "created_at": _isoformat(message.created_at),
        }

    @staticmethod
    def _render_summary(
        case: Case,
        files: list[CaseFile],
        messages: list[CaseMessage],
        missing: list[str],
    ) -> str:
        amount = case.settlement_amount_cents / 100
        lines = [
            f"Case: {case.title}",
            f"Case ID: {case.pk}",
            f"Status: {case.status}",
            f"Attorney: {case.attorney.email}",
            f"Paralegal: {case.paralegal.email if case.paralegal_id else '-'}",
            f"Amount: {amount:,.2f} {case.currency.upper()}",
            f"Escrow: {case.escrow_status}",
            f"Completed: {_isoformat(case.completed_at) or '-'}",
            f"Closed: {_isoformat(case.closed_at) or '-'}",
            "",
            f"Documents: {len(files)}",
            f"Messages: {len(messages)}",
        ]
        if missing:
            lines.append("")
            lines.append("Missing from storage:")
            lines.extend(f"  - {name}" for name in missing)
        lines.append("")
        lines.append(f"Generated: {timezone.now().isoformat()}")
        return "\n".join(lines) + "\n"

    # =========================================================================
    # Purge
    # =========================================================================

    @classmethod
    def purge_case(cls, case: Case) -> int:
        """
        Delete a case's stored objects and clear its file references.

        Returns:
            Number of objects deleted

        Raises:
            StorageError: Deletion failed; purged_at stays unset
        """
        deleted = get_object_store().delete_prefix(case.storage_prefix)

        now = timezone.now()
        with cls.atomic():
            CaseFile.objects.filter(case=case).delete()
            CaseMessage.objects.filter(case=case).exclude(attachment_key="").update(
                attachment_key="",
                attachment_name="",
                updated_at=now,
            )
            rows = Case.objects.filter(pk=case.pk, purged_at__isnull=True).update(
                purged_at=now,
                archive_zip_key="",
                archive_ready_at=None,
                version=F("version") + 1,
                updated_at=now,
            )

        if rows:
            AuditService.record(
                "case.purge",
                target_type=AuditTargetType.CASE,
                target_id=str(case.pk),
                case=case,
                meta={"objects_deleted": deleted},
            )
        cls.get_logger().info(
            "Case artifacts purged",
            extra={"case_id": str(case.pk), "objects_deleted": deleted},
        )
        return deleted

    @classmethod
    def purge_tick(cls, batch_size: int | None = None) -> dict:
        """
        Purge up to batch_size cases whose purge deadline has passed.

        A failure on one case is logged and does not stop the batch.

        Returns:
            {"processed": n, "purged": n, "failed": n}
        """
        if batch_size is None:
            batch_size = settings.CASE_PURGE_BATCH_LIMIT
        batch_size = max(1, min(batch_size, MAX_PURGE_BATCH))

        due = list(
            Case.objects.filter(
                purge_scheduled_for__lte=timezone.now(),
                purged_at__isnull=True,
            ).order_by("purge_scheduled_for")[:batch_size]
        )

        purged = failed = 0
        for case in due:
            try:
                cls.purge_case(case)
                purged += 1
            except Exception:
                failed += 1
                cls.get_logger().exception(
                    "Case purge failed, will retry next tick",
                    extra={"case_id": str(case.pk)},
                )

        return {"processed": len(due), "purged": purged, "failed": failed}
