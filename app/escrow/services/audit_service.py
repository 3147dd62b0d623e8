"""
Audit trail writer.

Every state-changing escrow action writes exactly one AuditLog row through
AuditService.record(). Rows written from an HTTP request also capture the
client IP, user agent, method and path.

Usage:
    from escrow.services import AuditService

    AuditService.record(
        "dispute.create",
        actor=request.user,
        target_type=AuditTargetType.DISPUTE,
        target_id=str(dispute.id),
        case=case,
        meta={"message_length": len(dispute.message)},
        request=request,
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from core.helpers import get_client_ip, get_user_agent
from core.services import BaseService

from escrow.models import AuditLog
from escrow.state_machines import ActorRole, AuditTargetType

if TYPE_CHECKING:
    from django.http import HttpRequest

    from authentication.models import User
    from escrow.models import Case


def actor_role_for(actor: User | None) -> str:
    """Role recorded for an actor; None means a system action."""
    if actor is None or not getattr(actor, "is_authenticated", False):
        return ActorRole.SYSTEM
    if actor.is_platform_admin:
        return ActorRole.ADMIN
    if actor.role in ActorRole.values:
        return actor.role
    return ActorRole.SYSTEM


class AuditService(BaseService):
    """Append-only audit writer."""

    @classmethod
    def record(
        cls,
        action: str,
        *,
        actor: User | None = None,
        target_type: str = AuditTargetType.OTHER,
        target_id: str = "",
        case: Case | None = None,
        meta: dict[str, Any] | None = None,
        request: HttpRequest | None = None,
    ) -> AuditLog:
        """
        Write one audit row.

        Args:
            action: Dotted action name, e.g. "admin.case.assign"
            actor: Acting user, None for webhooks and workers
            target_type / target_id: What was acted on
            case: Related case, if any
            meta: JSON-serializable details
            request: Source request, for ip / user agent / method / path
        """
        if actor is not None and not getattr(actor, "is_authenticated", False):
            actor = None

        entry = AuditLog(
            actor=actor,
            actor_role=actor_role_for(actor),
            action=action,
            target_type=target_type,
            target_id=str(target_id or ""),
            case=case,
            meta=meta or {},
        )
        if request is not None:
            entry.ip = get_client_ip(request) or None
            entry.user_agent = get_user_agent(request)
            entry.method = request.method or ""
            entry.path = (request.path or "")[:500]
        entry.save()

        cls.get_logger().info(
            f"Audit: {action}",
            extra={
                "action": action,
                "actor_id": str(actor.pk) if actor else None,
                "case_id": str(case.pk) if case else None,
                "target_id": entry.target_id,
            },
        )
        return entry

    @classmethod
    def record_from_request(cls, request: HttpRequest, action: str, **kwargs) -> AuditLog:
        """record() with the actor taken from request.user."""
        return cls.record(action, actor=getattr(request, "user", None), request=request, **kwargs)
