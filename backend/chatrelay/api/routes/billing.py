"""
Billing API Routes

Subscription state, plan catalog, Stripe Checkout, Billing Portal and
cancellation. All endpoints require authentication but none is gated, so
a user whose trial has ended can still reach the upgrade flow.
"""

import logging

from fastapi import APIRouter, Depends

from chatrelay.config.settings import get_settings
from chatrelay.domain.subscription import (
    CheckoutResponse,
    PlanResponse,
    PortalResponse,
    SubscriptionStatusResponse,
    has_active_paid_subscription,
    is_subscription_active,
    plan_to_response,
    subscription_to_response,
)
from chatrelay.infrastructure.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from chatrelay.infrastructure.payments.stripe_service import StripeService, get_stripe_service
from chatrelay.infrastructure.services.subscription_reconciler import SubscriptionReconciler
from chatrelay.infrastructure.services.subscription_service import SubscriptionService
from chatrelay.api.dependencies import (
    BillingRepoDep,
    UserRepoDep,
    get_current_user_id,
    get_reconciler,
    get_subscription_service,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def _status_response(summary) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        **subscription_to_response(summary).model_dump(),
        isActive=is_subscription_active(summary),
    )


# =============================================================================
# Subscription Status Endpoints
# =============================================================================

@router.get("/billing/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription(
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """
    Get the current user's subscription state.

    Creates the trial record if none exists.
    """
    summary = await subscriptions.get_subscription_summary(user_id)
    return _status_response(summary)


@router.get("/billing/plans", response_model=list[PlanResponse])
async def list_plans(
    billing: BillingRepoDep,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    user_id: str = Depends(get_current_user_id),
):
    """Plan catalog, cheapest first."""
    await subscriptions.ensure_default_plans()
    plans = await billing.list_plans()
    return [plan_to_response(plan) for plan in plans]


# =============================================================================
# Checkout Endpoints
# =============================================================================

@router.post("/billing/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    billing: BillingRepoDep,
    users: UserRepoDep,
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Create a Stripe Checkout session for the PRO plan.

    Creates the Stripe customer and its link on first use.

    Returns:
        CheckoutResponse with checkout URL and session ID
    """
    settings = get_settings()

    if not (settings.stripe_price_id and settings.stripe_success_url and settings.stripe_cancel_url):
        raise ConfigurationError(
            "Billing is not configured",
            missing_keys=[
                name for name in ("stripe_price_id", "stripe_success_url", "stripe_cancel_url")
                if not getattr(settings, name)
            ],
        )

    summary = await subscriptions.get_subscription_summary(user_id)
    if has_active_paid_subscription(summary):
        raise ValidationError("Subscription already active")

    user = await users.get_user(user_id)
    if not user:
        raise AuthenticationError("User no longer exists")

    link = await billing.find_customer_link_by_user(user_id)
    if link is None:
        customer = await stripe_service.create_customer(user.email, metadata={"userId": user_id})
        link = await billing.create_customer_link(user_id, customer.id, user.email)

    session = await stripe_service.create_checkout_session(
        customer_id=link.customer_id,
        price_id=settings.stripe_price_id,
        success_url=settings.stripe_success_url,
        cancel_url=settings.stripe_cancel_url,
        user_id=user_id,
    )
    logger.info(f"Checkout session {session.id} created for user {user_id}")

    return CheckoutResponse(url=session.url, id=session.id)


# =============================================================================
# Portal Endpoints
# =============================================================================

@router.post("/billing/portal", response_model=PortalResponse)
async def create_portal_session(
    billing: BillingRepoDep,
    user_id: str = Depends(get_current_user_id),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Create a Stripe Billing Portal session.

    Allows customers to update payment methods, view invoices and
    manage their subscription.
    """
    settings = get_settings()
    if not settings.portal_return_url:
        raise ConfigurationError(
            "Billing is not configured",
            missing_keys=["stripe_portal_return_url"],
        )

    link = await billing.find_customer_link_by_user(user_id)
    if not link:
        raise NotFoundError("No billing account found", operation="portal", table="stripe_customers")

    url = await stripe_service.create_portal_session(link.customer_id, settings.portal_return_url)

    return PortalResponse(url=url)


# =============================================================================
# Cancellation
# =============================================================================

@router.post("/billing/cancel", response_model=SubscriptionStatusResponse)
async def cancel_subscription(
    billing: BillingRepoDep,
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Cancel the user's subscription at the end of the current period.

    The updated Stripe subscription goes through the same reconciliation
    path as webhooks.
    """
    subscription_id = await billing.find_latest_external_subscription(user_id)
    if not subscription_id:
        raise NotFoundError("No subscription to cancel", operation="cancel", table="stripe_subscriptions")

    updated = await stripe_service.cancel_at_period_end(subscription_id)
    await reconciler.upsert_external_subscription_record(updated, "cancel_at_period_end_requested")

    summary = await subscriptions.get_subscription_summary(user_id)
    return _status_response(summary)
