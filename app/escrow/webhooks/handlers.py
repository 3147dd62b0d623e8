"""
Webhook event handlers for Stripe events.

This module provides a handler registry and implementations for
processing different Stripe webhook events.

Handlers apply business state only. The pipeline writes the single audit
row per event, using the WebhookAuditContext a handler returns as data.

Usage:
    from escrow.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from core.services import ServiceResult

from escrow.models import Case, WebhookEvent
from escrow.services.connect_service import ConnectService
from escrow.services.funding_service import PENDING_INTENT_EVENTS, FundingService
from escrow.state_machines import AuditTargetType

logger = logging.getLogger(__name__)


@dataclass
class WebhookAuditContext:
    """What the audit row for an event should point at."""

    case: Case | None = None
    target_type: str = AuditTargetType.OTHER
    target_id: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler for one or more types.

    Usage:
        @register_handler("refund.created", "refund.updated")
        def handle_refund(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult[WebhookAuditContext]:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are not errors: they succeed with an empty audit
    context so the event is still recorded and audited.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(
            WebhookAuditContext(target_id=webhook_event.get_object_id() or "")
        )

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_id": webhook_event.event_id},
    )
    return handler(webhook_event)


def _case_context(
    result: ServiceResult,
    target_type: str,
    target_id: str | None,
    **meta,
) -> ServiceResult[WebhookAuditContext]:
    if not result:
        return result
    return ServiceResult.success(
        WebhookAuditContext(
            case=result.data,
            target_type=target_type,
            target_id=target_id or "",
            meta={k: v for k, v in meta.items() if v is not None},
        )
    )


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """Fund the matching case (and start work on an assigned one)."""
    intent = webhook_event.get_object()
    if not intent.get("id"):
        logger.error(
            "payment_intent.succeeded: Could not extract payment_intent_id",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.failure(
            "Could not extract payment_intent_id from webhook",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    result = FundingService.handle_payment_succeeded(webhook_event.event_id, intent)
    return _case_context(
        result,
        AuditTargetType.PAYMENT,
        intent["id"],
        amount_cents=intent.get("amount_received") or intent.get("amount"),
        currency=intent.get("currency"),
    )


@register_handler(*PENDING_INTENT_EVENTS)
def handle_payment_intent_pending(webhook_event: WebhookEvent) -> ServiceResult:
    """Record intent progress on a case that is still awaiting funding."""
    intent = webhook_event.get_object()
    result = FundingService.handle_payment_pending(
        webhook_event.event_id, webhook_event.event_type, intent
    )
    return _case_context(
        result,
        AuditTargetType.PAYMENT,
        intent.get("id"),
        payment_status=intent.get("status"),
        currency=intent.get("currency"),
    )


# =============================================================================
# Checkout Session Handlers
# =============================================================================


@register_handler("checkout.session.completed", "checkout.session.async_payment_succeeded")
def handle_checkout_session(webhook_event: WebhookEvent) -> ServiceResult:
    session = webhook_event.get_object()
    result = FundingService.handle_checkout_completed(webhook_event.event_id, session)
    return _case_context(
        result,
        AuditTargetType.PAYMENT,
        session.get("id"),
        payment_intent_id=session.get("payment_intent"),
    )


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(
    "charge.refunded",
    "refund.created",
    "refund.updated",
    "refund.succeeded",
    "refund.failed",
)
def handle_refund(webhook_event: WebhookEvent) -> ServiceResult:
    obj = webhook_event.get_object()
    result = FundingService.handle_refund(webhook_event.event_id, webhook_event.event_type, obj)
    return _case_context(
        result,
        AuditTargetType.PAYMENT,
        obj.get("id"),
        amount_cents=obj.get("amount_refunded") or obj.get("amount"),
        status=obj.get("status"),
    )


# =============================================================================
# Transfer Handlers
# =============================================================================


@register_handler("transfer.created", "transfer.updated", "transfer.reversed", "transfer.failed")
def handle_transfer(webhook_event: WebhookEvent) -> ServiceResult:
    transfer = webhook_event.get_object()
    result = FundingService.handle_transfer(
        webhook_event.event_id, webhook_event.event_type, transfer
    )
    return _case_context(
        result,
        AuditTargetType.PAYMENT,
        transfer.get("id"),
        amount_cents=transfer.get("amount"),
        destination=transfer.get("destination"),
    )


# =============================================================================
# Connect Handlers
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult:
    account_obj = webhook_event.get_object()
    result = ConnectService.sync_account(webhook_event.event_id, account_obj)
    if not result:
        return result

    account = result.data
    return ServiceResult.success(
        WebhookAuditContext(
            target_type=AuditTargetType.USER,
            target_id=str(account.user_id) if account else "",
            meta={
                "account_id": account_obj.get("id"),
                "onboarding_status": account.onboarding_status if account else None,
                "payouts_enabled": bool(account_obj.get("payouts_enabled")),
            },
        )
    )
