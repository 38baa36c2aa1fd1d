"""
Stripe Payment Service

Clean Architecture infrastructure service for Stripe payment processing.
Handles customers, checkout sessions, billing portal, subscription queries
and webhook verification.

Every network call is awaited through the SDK's async client and bounded
by a timeout; SDK objects are converted into the typed models of
chatrelay.domain.billing before they leave this module.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Optional, TypeVar
import stripe
from stripe import StripeError

from chatrelay.config.settings import get_settings
from chatrelay.domain.billing import (
    ExternalCheckoutSession,
    ExternalCustomer,
    ExternalSubscription,
    WebhookEvent,
)
from chatrelay.infrastructure.exceptions import ChatRelayError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class StripeServiceError(ChatRelayError):
    """Base exception for Stripe service errors."""
    pass


class StripeService:
    """
    Stripe payment processing service.

    All methods are stateless; results are typed gateway models.
    """

    def __init__(self):
        """Initialize Stripe with API key from settings."""
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._timeout = settings.stripe_timeout_seconds
        self._tolerance = settings.stripe_webhook_tolerance_seconds

        if self._api_key:
            stripe.api_key = self._api_key
        stripe.max_network_retries = settings.stripe_max_network_retries

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await an SDK call with the configured timeout, normalizing errors."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Stripe {operation} timed out after {self._timeout}s")
            raise StripeServiceError(
                f"Stripe {operation} timed out",
                details={"operation": operation},
                original_error=e,
            )
        except StripeError as e:
            logger.error(f"Stripe {operation} failed: {e}")
            raise StripeServiceError(
                f"Stripe {operation} failed: {e.user_message or e}",
                details={"operation": operation},
                original_error=e,
            )

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def find_customers_by_email(self, email: str) -> list[ExternalCustomer]:
        """List processor customers registered with an email address."""
        result = await self._call(
            "customer lookup",
            stripe.Customer.list_async(email=email, limit=10),
        )
        return [ExternalCustomer.from_stripe(customer) for customer in result.data]

    async def retrieve_customer(self, customer_id: str) -> Optional[ExternalCustomer]:
        """
        Retrieve a customer by ID.

        Returns:
            ExternalCustomer or None if the customer was deleted
        """
        customer = await self._call(
            "customer retrieval",
            stripe.Customer.retrieve_async(customer_id),
        )
        if customer.get("deleted"):
            return None
        return ExternalCustomer.from_stripe(customer)

    async def create_customer(
        self,
        email: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> ExternalCustomer:
        """
        Create a new Stripe customer.

        Args:
            email: Customer email for receipts
            metadata: Internal identifiers (userId) stored on the customer
        """
        customer = await self._call(
            "customer creation",
            stripe.Customer.create_async(email=email, metadata=metadata or {}),
        )
        logger.info(f"Created Stripe customer {customer.id}")
        return ExternalCustomer.from_stripe(customer)

    # =========================================================================
    # Subscription Queries
    # =========================================================================

    async def list_subscriptions(
        self,
        customer_id: str,
        status: str = "all",
        limit: int = 10,
    ) -> list[ExternalSubscription]:
        """
        List a customer's subscriptions, most recently created first.

        Args:
            customer_id: Stripe customer ID
            status: Stripe status filter ("all" includes canceled)
            limit: Maximum subscriptions to return
        """
        result = await self._call(
            "subscription listing",
            stripe.Subscription.list_async(customer=customer_id, status=status, limit=limit),
        )
        subscriptions = [ExternalSubscription.from_stripe(sub) for sub in result.data]
        return sorted(subscriptions, key=lambda sub: sub.created or 0, reverse=True)

    async def list_all_subscriptions(self, page_size: int = 100) -> AsyncIterator[ExternalSubscription]:
        """Page through every subscription on the account."""
        starting_after: Optional[str] = None

        while True:
            params = {"limit": page_size, "status": "all"}
            if starting_after:
                params["starting_after"] = starting_after

            page = await self._call("subscription listing", stripe.Subscription.list_async(**params))
            for sub in page.data:
                yield ExternalSubscription.from_stripe(sub)

            if not page.has_more or not page.data:
                break
            starting_after = page.data[-1].id

    async def retrieve_subscription(self, subscription_id: str) -> ExternalSubscription:
        """Retrieve a subscription by ID."""
        subscription = await self._call(
            "subscription retrieval",
            stripe.Subscription.retrieve_async(subscription_id),
        )
        return ExternalSubscription.from_stripe(subscription)

    async def cancel_at_period_end(self, subscription_id: str) -> ExternalSubscription:
        """
        Schedule a subscription to cancel at the end of its billing period.

        Returns:
            The updated subscription
        """
        subscription = await self._call(
            "subscription cancellation",
            stripe.Subscription.modify_async(subscription_id, cancel_at_period_end=True),
        )
        logger.info(f"Scheduled cancellation of subscription {subscription_id} at period end")
        return ExternalSubscription.from_stripe(subscription)

    # =========================================================================
    # Checkout Session & Customer Portal
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> ExternalCheckoutSession:
        """
        Create a hosted Checkout Session for a subscription.

        The userId is written to both the session and the subscription
        metadata so webhook reconciliation can resolve the owner.
        """
        metadata = {"userId": user_id}
        session = await self._call(
            "checkout creation",
            stripe.checkout.Session.create_async(
                mode="subscription",
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                allow_promotion_codes=True,
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            ),
        )
        logger.info(f"Created checkout session {session.id} for user {user_id}")
        return ExternalCheckoutSession.from_stripe(session)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a Billing Portal session for self-service management.

        Returns:
            Portal URL
        """
        session = await self._call(
            "portal creation",
            stripe.billing_portal.Session.create_async(customer=customer_id, return_url=return_url),
        )
        logger.info(f"Created portal session for customer {customer_id}")
        return session.url

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
        secret: str,
    ) -> WebhookEvent:
        """
        Verify the signature header and parse the event envelope.

        The body is only parsed after the signature verifies.

        Raises:
            StripeServiceError if the signature or payload is invalid
        """
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(body, signature, secret, self._tolerance)
        except UnicodeDecodeError as e:
            raise StripeServiceError(f"Invalid payload encoding: {e}")
        except stripe.SignatureVerificationError as e:
            raise StripeServiceError(f"Invalid signature: {e}")

        try:
            return WebhookEvent.model_validate(json.loads(body))
        except ValueError as e:
            raise StripeServiceError(f"Invalid payload: {e}")


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_service_instance: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get or create Stripe service singleton."""
    global _stripe_service_instance

    if _stripe_service_instance is None:
        _stripe_service_instance = StripeService()

    return _stripe_service_instance
