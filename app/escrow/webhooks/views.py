"""
Webhook endpoint view for Stripe.

The endpoint processes events synchronously so that a handler failure can
be answered with a 5xx and Stripe's retry policy redelivers the event.

Responses:
    200 {"received": true}                  processed
    200 {"received": true, "deduped": true} already processed
    200 {"received": true, "failed": true}  failed past WEBHOOK_MAX_ATTEMPTS
    400                                     missing or invalid signature
    500                                     handler failed, retry expected
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from escrow.exceptions import StripeInvalidRequestError
from escrow.webhooks.pipeline import WebhookPipeline

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive a Stripe webhook.

    The Stripe-Account header marks events from connected accounts, which
    are signed with the Connect endpoint secret.
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return JsonResponse({"error": "Missing signature"}, status=400)

    account_id = request.headers.get("Stripe-Account") or None

    try:
        outcome = WebhookPipeline.handle(request.body, signature, account_id)
    except StripeInvalidRequestError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error_code": e.error_code},
        )
        return JsonResponse({"error": "Invalid signature"}, status=400)

    if outcome.deduped:
        return JsonResponse({"received": True, "deduped": True})
    if outcome.should_retry:
        return JsonResponse({"error": "Processing failed"}, status=500)
    if outcome.failed:
        return JsonResponse({"received": True, "failed": True})
    return JsonResponse({"received": True})
