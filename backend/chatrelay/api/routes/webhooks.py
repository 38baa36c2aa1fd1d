"""
Stripe Webhook Handler

Verifies Stripe webhook events and feeds them to the reconciler.
Delivery is at-least-once; every handler is an idempotent upsert keyed
by the Stripe subscription id, so redelivery is harmless.

Handled events:
- checkout.session.completed: re-fetch and apply the new subscription
- customer.subscription.created / updated / deleted: apply the payload
- invoice.payment_succeeded / invoice.payment_failed: re-fetch and apply

Any handler failure answers 500 so Stripe retries the delivery.
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from chatrelay.config.settings import get_settings
from chatrelay.domain.billing import ExternalCheckoutSession, ExternalSubscription, WebhookEvent
from chatrelay.infrastructure.payments.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)
from chatrelay.infrastructure.services.subscription_reconciler import SubscriptionReconciler
from chatrelay.api.dependencies import get_reconciler


logger = logging.getLogger(__name__)

router = APIRouter()

SUBSCRIPTION_EVENTS = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
}

INVOICE_EVENTS = {
    "invoice.payment_succeeded",
    "invoice.payment_failed",
}


# =============================================================================
# Webhook Endpoint
# =============================================================================

@router.post("/billing/webhook")
async def stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
):
    """
    Handle Stripe webhook events.

    The raw body is verified against the signing secret before anything
    is parsed. Returns 200 to acknowledge receipt.
    """
    secret = get_settings().stripe_webhook_secret
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured, rejecting webhook")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook secret not configured"},
        )

    signature = request.headers.get("stripe-signature")
    if not signature:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing Stripe signature"},
        )

    payload = await request.body()

    try:
        event = stripe_service.verify_webhook_signature(payload, signature, secret)
    except StripeServiceError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid signature"},
        )

    logger.info(f"Processing webhook event: {event.type} ({event.id})")

    try:
        await dispatch_event(event, reconciler)
    except Exception as e:
        logger.exception(f"Error processing webhook {event.type} ({event.id}): {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook handler failed"},
        )

    return {"received": True}


async def dispatch_event(event: WebhookEvent, reconciler: SubscriptionReconciler) -> None:
    """Route a verified event to its handler."""
    obj = event.data.object

    if event.type == "checkout.session.completed":
        await reconciler.handle_checkout_completed(ExternalCheckoutSession.from_stripe(obj))

    elif event.type in SUBSCRIPTION_EVENTS:
        await reconciler.upsert_external_subscription_record(
            ExternalSubscription.from_stripe(obj), event.type
        )

    elif event.type in INVOICE_EVENTS:
        await reconciler.handle_invoice_event(obj, event.type)

    else:
        logger.debug(f"Unhandled event type: {event.type}")
