"""
Login Sync Service

Read-repair for missed webhooks. On login and on a denied protected
request, asks Stripe what it knows about the user and feeds the answer
through the reconciler. Never raises: a failed sync leaves the user on
their last known state.
"""

import logging
from typing import Optional

from chatrelay.domain.billing import PAID_SIGNAL_STATUSES, ExternalSubscription
from chatrelay.infrastructure.db.repositories.billing_repository import BillingRepository
from chatrelay.infrastructure.db.repositories.user_repository import UserRepository
from chatrelay.infrastructure.payments.stripe_service import StripeService
from chatrelay.infrastructure.services.subscription_reconciler import SubscriptionReconciler
from chatrelay.infrastructure.services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)


class LoginSyncService:
    """Opportunistic Stripe -> local subscription sync."""

    def __init__(
        self,
        billing_repository: BillingRepository,
        user_repository: UserRepository,
        subscriptions: SubscriptionService,
        reconciler: SubscriptionReconciler,
        stripe_service: StripeService,
    ):
        self._billing = billing_repository
        self._users = user_repository
        self._subscriptions = subscriptions
        self._reconciler = reconciler
        self._stripe = stripe_service

    async def sync_if_exists(self, user_id: str) -> bool:
        """
        Best-effort sync of the user's Stripe subscription.

        Returns:
            True if a subscription was applied, False otherwise (including
            on any failure, which is logged and swallowed)
        """
        try:
            link = await self._billing.find_customer_link_by_user(user_id)
            if link:
                return await self._sync_linked_customer(user_id, link.customer_id)
            return await self._sync_by_email(user_id)
        except Exception:
            logger.exception(f"Subscription sync failed for user {user_id}")
            return False

    async def _sync_linked_customer(self, user_id: str, customer_id: str) -> bool:
        subscriptions = await self._stripe.list_subscriptions(customer_id, status="all", limit=1)
        if not subscriptions:
            logger.debug(f"Customer {customer_id} of user {user_id} has no subscriptions")
            return False

        applied = await self._reconciler.upsert_external_subscription_record(
            subscriptions[0], "sync_on_login"
        )
        return applied is not None

    async def _sync_by_email(self, user_id: str) -> bool:
        user = await self._users.get_user(user_id)
        if not user or not user.email:
            return False

        customers = await self._stripe.find_customers_by_email(user.email)
        if not customers:
            return False

        latest: Optional[ExternalSubscription] = None
        latest_customer_id: Optional[str] = None

        for customer in customers:
            subscriptions = await self._stripe.list_subscriptions(customer.id, status="all")
            for sub in subscriptions:
                if sub.status not in PAID_SIGNAL_STATUSES:
                    continue
                if latest is None or (sub.created or 0) > (latest.created or 0):
                    latest = sub
                    latest_customer_id = customer.id

        if latest is None:
            logger.debug(f"No paid Stripe subscription found for user {user_id}")
            return False

        link = await self._billing.create_customer_link(user_id, latest_customer_id, user.email)
        if link is None or link.customer_id != latest_customer_id:
            return False

        await self._subscriptions.ensure_trial_subscription(user_id)
        logger.info(f"Linked user {user_id} to customer {latest_customer_id} by email")

        applied = await self._reconciler.upsert_external_subscription_record(
            latest, "sync_on_login_email_lookup"
        )
        return applied is not None
