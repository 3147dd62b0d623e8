"""
State enums for escrow models.

Usage:
    from escrow.state_machines import CaseStatus, EscrowStatus

    status = CaseStatus.normalize(request.data["status"])
"""

from escrow.state_machines.states import (
    FUNDED_IN_PROGRESS,
    ActorRole,
    AuditTargetType,
    CaseStatus,
    DisputeStatus,
    EscrowStatus,
    OnboardingStatus,
    SettlementAction,
    SettlementStatus,
    WebhookEventStatus,
)

__all__ = [
    "FUNDED_IN_PROGRESS",
    "ActorRole",
    "AuditTargetType",
    "CaseStatus",
    "DisputeStatus",
    "EscrowStatus",
    "OnboardingStatus",
    "SettlementAction",
    "SettlementStatus",
    "WebhookEventStatus",
]
