"""
Escrow service layer.

Services:
    AuditService: Append-only audit trail
    CaseStateMachine / CaseService: Status transitions and admin case actions
    FundingService: Escrow intent creation and funding webhooks
    ConnectService: Paralegal Stripe Connect onboarding
    PayoutService: Fee calculation and payout transfer
    DisputeService: Disputes and settlement
    ArchiveService: Close-and-archive, archive rendering, purge
"""

from escrow.services.archive_service import ArchiveService, safe_filename
from escrow.services.audit_service import AuditService, actor_role_for
from escrow.services.case_service import (
    CaseService,
    CaseStateMachine,
    ensure_work_can_begin,
    get_case,
    resolve_case_state,
)
from escrow.services.connect_service import ConnectService
from escrow.services.dispute_service import DisputeService, SettlementOutcome
from escrow.services.funding_service import EscrowIntent, FundingService, find_case
from escrow.services.payout_service import PayoutResult, PayoutService, calculate_fee

__all__ = [
    "ArchiveService",
    "AuditService",
    "CaseService",
    "CaseStateMachine",
    "ConnectService",
    "DisputeService",
    "EscrowIntent",
    "FundingService",
    "PayoutResult",
    "PayoutService",
    "SettlementOutcome",
    "actor_role_for",
    "calculate_fee",
    "ensure_work_can_begin",
    "find_case",
    "get_case",
    "resolve_case_state",
    "safe_filename",
]
