"""
Escrow app: attorney/paralegal case escrow.

This app handles:
- Case lifecycle (django-fsm state machine applied by compare-and-swap)
- Escrow funding through Stripe PaymentIntents and webhooks
- Paralegal payouts through Stripe Connect transfers
- Dispute settlement (refund / release / partial release)
- Case archives and scheduled artifact purge
- Append-only audit trail

Related apps:
    - authentication: User model (attorney, paralegal, admin roles)
    - core: Base models, exceptions, service helpers

Usage:
    from escrow.services import CaseStateMachine, DisputeService

    CaseStateMachine.transition(case.id, "open", "assigned", actor=admin)
    DisputeService.settle_dispute(case.id, dispute.id, "release", None, actor=admin)
"""
