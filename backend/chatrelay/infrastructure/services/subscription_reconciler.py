"""
Subscription Reconciler

Applies processor subscription state onto the local subscription record.
Webhooks, login-time sync, the cancel endpoint and the backfill script all
funnel through upsert_external_subscription_record, so there is exactly one
code path that mutates subscription shape from processor data.

Ordering within one call: resolve owner -> ensure record -> upsert mirror
-> set status -> append audit event. Failures before the audit append
propagate (the webhook answers 5xx and the processor retries); the audit
append is best-effort.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from chatrelay.domain.billing import (
    ExternalCheckoutSession,
    ExternalSubscription,
    invoice_subscription_id,
    resolve_plan,
    resolve_status,
)
from chatrelay.domain.subscription import (
    BillingProvider,
    PlanCode,
    SubscriptionOverrides,
    UserSubscription,
    as_utc,
)
from chatrelay.infrastructure.db.repositories.billing_repository import (
    BillingRepository,
    CustomerLink,
    to_uuid,
)
from chatrelay.infrastructure.db.repositories.user_repository import UserRepository
from chatrelay.infrastructure.payments.stripe_service import StripeService
from chatrelay.infrastructure.services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)


class SubscriptionReconciler:
    """Maps processor subscriptions onto internal records, idempotently."""

    def __init__(
        self,
        billing_repository: BillingRepository,
        user_repository: UserRepository,
        subscriptions: SubscriptionService,
        stripe_service: StripeService,
    ):
        self._billing = billing_repository
        self._users = user_repository
        self._subscriptions = subscriptions
        self._stripe = stripe_service

    # =========================================================================
    # Owner Resolution
    # =========================================================================

    async def resolve_customer_link(
        self,
        customer_id: str,
        user_id_hint: Optional[str] = None,
    ) -> Optional[CustomerLink]:
        """
        Find the local user that owns a processor customer.

        Order: existing link, then the userId metadata hint, then the
        customer's email. A link is created when the owner is found by
        hint or email. Never invents a user, and never moves a user who is
        already linked to a different customer.
        """
        if not customer_id:
            return None

        link = await self._billing.find_customer_link_by_customer(customer_id)
        if link:
            return link

        if user_id_hint:
            user = await self._users.get_user(user_id_hint)
            if user:
                logger.info(f"Linking customer {customer_id} to user {user.id} from metadata")
                return await self._link_customer(user.id, customer_id, user.email)
            logger.warning(f"Metadata user {user_id_hint} for customer {customer_id} does not exist")

        customer = await self._stripe.retrieve_customer(customer_id)
        if customer and customer.email:
            user = await self._users.get_user_by_email(customer.email)
            if user:
                logger.info(f"Linking customer {customer_id} to user {user.id} by email")
                return await self._link_customer(user.id, customer_id, customer.email)

        return None

    async def _link_customer(
        self,
        user_id: str,
        customer_id: str,
        email: Optional[str],
    ) -> Optional[CustomerLink]:
        link = await self._billing.create_customer_link(user_id, customer_id, email)
        if link is None or link.customer_id != customer_id:
            logger.warning(
                f"User {user_id} is linked to another customer, not applying {customer_id}"
            )
            return None
        return link

    # =========================================================================
    # Single Upsert Path
    # =========================================================================

    async def upsert_external_subscription_record(
        self,
        subscription: ExternalSubscription,
        event_type: str,
    ) -> Optional[UserSubscription]:
        """
        Apply one processor subscription to the owning user's record.

        Safe to repeat with the same payload: the mirror row is keyed by the
        processor subscription id and the record update is a plain overwrite.

        Returns:
            The updated subscription record, or None if no owner was found
        """
        link = await self.resolve_customer_link(subscription.customer_id, subscription.user_id_hint)
        if link is None:
            logger.warning(
                f"No user found for subscription {subscription.id} "
                f"(customer {subscription.customer_id or 'unknown'}), skipping {event_type}"
            )
            return None

        record = await self._subscriptions.ensure_trial_subscription(link.user_id)

        status = resolve_status(subscription.status)
        plan_code = resolve_plan(subscription.status)
        trial_ends_at = self._trial_window(record, subscription, plan_code)

        mirror_id = await self._billing.upsert_external_subscription(
            subscription.id,
            {
                "stripe_customer_id": to_uuid(link.id),
                "user_subscription_id": to_uuid(record.id),
                "plan_code": plan_code,
                "status": status,
                "current_period_start": subscription.current_period_start,
                "current_period_end": subscription.current_period_end,
                "cancel_at_period_end": subscription.cancel_at_period_end,
                "canceled_at": subscription.canceled_at,
                "subscription_created": subscription.created,
                "raw_data": subscription.raw,
            },
        )

        updated = await self._subscriptions.set_subscription_status(
            link.user_id,
            status,
            SubscriptionOverrides(
                plan_code=plan_code,
                provider=BillingProvider.STRIPE,
                trial_ends_at=trial_ends_at,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
            ),
        )

        if mirror_id:
            try:
                await self._billing.append_subscription_event(mirror_id, event_type, subscription.raw)
            except Exception as e:
                # State is already applied; a lost audit row must not trigger a retry
                logger.warning(f"Failed to record {event_type} for subscription {subscription.id}: {e}")

        logger.info(
            f"Applied {event_type} for subscription {subscription.id}: "
            f"user {link.user_id} -> {plan_code.value}/{status.value}"
        )
        return updated

    @staticmethod
    def _trial_window(
        record: UserSubscription,
        subscription: ExternalSubscription,
        plan_code: PlanCode,
    ) -> Optional[datetime]:
        """
        Trial end to store alongside the mapped plan.

        A downgrade back to TRIAL closes the window at the earliest of the
        processor trial end, the cancellation time (or now) and the local
        trial end. A TRIAL without an end would grant access indefinitely.
        """
        if plan_code != PlanCode.TRIAL:
            return subscription.trial_end

        candidates = [
            as_utc(subscription.trial_end),
            as_utc(subscription.canceled_at) or datetime.now(timezone.utc),
            as_utc(record.trial_ends_at),
        ]
        return min(value for value in candidates if value is not None)

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def handle_checkout_completed(
        self,
        session: ExternalCheckoutSession,
    ) -> Optional[UserSubscription]:
        """
        Handle a completed checkout session.

        Only paid sessions are acted upon, and the subscription is always
        re-fetched from the processor rather than trusted from the event.
        """
        if not session.is_paid:
            logger.info(f"Checkout {session.id} not paid ({session.payment_status}), ignoring")
            return None

        if not session.subscription_id:
            logger.warning(f"Checkout {session.id} completed without a subscription")
            return None

        subscription = await self._stripe.retrieve_subscription(session.subscription_id)

        updates = {}
        if not subscription.user_id_hint and session.user_id_hint:
            updates["metadata"] = {**subscription.metadata, "userId": session.user_id_hint}
        if not subscription.customer_id and session.customer_id:
            updates["customer_id"] = session.customer_id
        if updates:
            subscription = subscription.model_copy(update=updates)

        return await self.upsert_external_subscription_record(
            subscription, "checkout.session.completed"
        )

    async def handle_invoice_event(
        self,
        invoice: dict,
        event_type: str,
    ) -> Optional[UserSubscription]:
        """Re-fetch the invoice's subscription and apply it."""
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.debug(f"{event_type} for invoice {invoice.get('id')} has no subscription")
            return None

        subscription = await self._stripe.retrieve_subscription(subscription_id)
        return await self.upsert_external_subscription_record(subscription, event_type)
