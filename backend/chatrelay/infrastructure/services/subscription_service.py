"""
Subscription Service

Owns the one-per-user subscription record: seeds the plan catalog,
lazily creates the default trial, serves the summary read model and
applies targeted status updates for the reconciliation paths.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from chatrelay.config.settings import get_settings
from chatrelay.domain.subscription import (
    DEFAULT_PLANS,
    BillingProvider,
    PlanCode,
    SubscriptionOverrides,
    SubscriptionStatus,
    SubscriptionSummary,
    UserSubscription,
)
from chatrelay.infrastructure.db.repositories.billing_repository import BillingRepository
from chatrelay.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Subscription summary service.

    Args:
        repository: Billing repository
        trial_duration_hours: Trial window for new records; 0 or less
            means the trial never expires. Defaults to settings.
    """

    def __init__(
        self,
        repository: BillingRepository,
        trial_duration_hours: Optional[int] = None,
    ):
        self._repo = repository
        if trial_duration_hours is None:
            trial_duration_hours = get_settings().trial_duration_hours
        self._trial_hours = trial_duration_hours

    def trial_end_from(self, now: datetime) -> Optional[datetime]:
        if self._trial_hours <= 0:
            return None
        return now + timedelta(hours=self._trial_hours)

    async def ensure_default_plans(self) -> None:
        """Idempotently seed the plan catalog."""
        await self._repo.upsert_plan_definitions(DEFAULT_PLANS)

    async def ensure_trial_subscription(self, user_id: str) -> UserSubscription:
        """
        Return the user's subscription record, creating the default trial if absent.

        Concurrent first calls for the same user race on the unique user_id
        key; the losers re-read the winner's row instead of failing.
        """
        await self.ensure_default_plans()

        existing = await self._repo.find_subscription(user_id)
        if existing:
            return existing

        created = await self._repo.insert_subscription_if_absent(
            user_id,
            plan_code=PlanCode.TRIAL,
            status=SubscriptionStatus.TRIALING,
            provider=BillingProvider.INTERNAL,
            trial_ends_at=self.trial_end_from(datetime.now(timezone.utc)),
        )
        if created:
            logger.info(f"Created trial subscription for user {user_id}")

        record = await self._repo.find_subscription(user_id)
        if record is None:
            raise DatabaseError(
                f"Subscription for user {user_id} missing after insert",
                operation="ensure_trial",
                table="user_subscriptions",
            )
        return record

    async def get_subscription_summary(self, user_id: str) -> SubscriptionSummary:
        """Read the user's summary, creating the trial record on first touch."""
        record = await self._repo.find_subscription(user_id)
        if record is None:
            record = await self.ensure_trial_subscription(user_id)
        return SubscriptionSummary.from_record(record)

    async def set_subscription_status(
        self,
        user_id: str,
        status: SubscriptionStatus,
        overrides: Optional[SubscriptionOverrides] = None,
    ) -> UserSubscription:
        """
        Set the status and any explicitly provided override fields.

        Fields not set on ``overrides`` are left as they are.
        """
        await self.ensure_trial_subscription(user_id)

        fields = {"status": status}
        if overrides is not None:
            fields.update(overrides.model_dump(exclude_unset=True))
            # A None plan/provider/flag is never meaningful; only timestamps may be cleared
            for key in ("plan_code", "provider", "cancel_at_period_end"):
                if key in fields and fields[key] is None:
                    del fields[key]

        record = await self._repo.update_subscription(user_id, fields)
        if record is None:
            raise DatabaseError(
                f"Subscription for user {user_id} disappeared during update",
                operation="set_status",
                table="user_subscriptions",
            )

        logger.info(
            f"Subscription for user {user_id} set to "
            f"{record.plan_code.value}/{record.status.value}"
        )
        return record
