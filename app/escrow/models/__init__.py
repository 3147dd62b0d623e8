"""
Escrow ledger models.

- Case: Root aggregate (status, escrow, archival)
- Dispute / DisputeSettlement: Disputes and their single, immutable outcome
- Payout / PlatformIncome: Write-once, unique per case
- WebhookEvent: One row per provider event id
- AuditLog: Append-only action log
- ConnectedAccount: Paralegal Stripe Connect account
- CaseFile / CaseMessage: Workspace content bundled into archives
"""

from escrow.models.audit_log import AuditLog
from escrow.models.case import ARCHIVABLE_STATUSES, PRE_COMPLETION_STATUSES, Case
from escrow.models.case_content import CaseFile, CaseMessage
from escrow.models.connected_account import ConnectedAccount
from escrow.models.dispute import Dispute, DisputeSettlement
from escrow.models.payout import Payout, PlatformIncome
from escrow.models.webhook_event import WebhookEvent

__all__ = [
    "ARCHIVABLE_STATUSES",
    "PRE_COMPLETION_STATUSES",
    "AuditLog",
    "Case",
    "CaseFile",
    "CaseMessage",
    "ConnectedAccount",
    "Dispute",
    "DisputeSettlement",
    "Payout",
    "PlatformIncome",
    "WebhookEvent",
]
