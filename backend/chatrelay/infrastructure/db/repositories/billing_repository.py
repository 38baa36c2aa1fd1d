"""
Billing Repository

Data access layer for plans, subscription records, customer links, the
Stripe subscription mirror and its audit log.

Every method runs in its own short transaction, and every write that can
race (trial creation, plan seeding, link creation, mirror upsert) uses a
native INSERT ... ON CONFLICT on the table's unique key instead of
read-modify-write.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlmodel import select
from sqlalchemy import update

from chatrelay.infrastructure.db.database import get_db_manager, get_session_context
from chatrelay.infrastructure.db.models.base import utcnow
from chatrelay.infrastructure.db.models.plan import PlanModel
from chatrelay.infrastructure.db.models.subscription import UserSubscriptionModel
from chatrelay.infrastructure.db.models.stripe import (
    StripeCustomerModel,
    StripeSubscriptionModel,
    SubscriptionEventModel,
)
from chatrelay.domain.subscription import (
    BillingProvider,
    PlanCode,
    PlanDefinition,
    SubscriptionStatus,
    UserSubscription,
    as_utc,
)


logger = logging.getLogger(__name__)


def to_uuid(value: Any) -> Optional[UUID]:
    """Parse a UUID from str/UUID; returns None for anything unparseable."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class CustomerLink:
    """Lightweight view of a stripe_customers row."""

    __slots__ = ("id", "user_id", "customer_id", "email")

    def __init__(self, id: str, user_id: str, customer_id: str, email: Optional[str]):
        self.id = id
        self.user_id = user_id
        self.customer_id = customer_id
        self.email = email

    @classmethod
    def from_model(cls, model: StripeCustomerModel) -> "CustomerLink":
        return cls(
            id=str(model.id),
            user_id=str(model.user_id),
            customer_id=model.customer_id,
            email=model.email,
        )


class BillingRepository:
    """
    Repository for subscription billing data.

    Maps database rows onto domain models; callers never see SQLModel
    instances for the subscription record.
    """

    # =========================================================================
    # Plan Catalog
    # =========================================================================

    async def upsert_plan_definitions(self, plans: list[PlanDefinition]) -> None:
        """Insert or refresh catalog rows keyed by code (last writer wins)."""
        db = get_db_manager()
        now = utcnow()
        rows = [
            {
                "code": plan.code.value,
                "name": plan.name,
                "description": plan.description,
                "price_cents": plan.price_cents,
                "currency": plan.currency,
                "interval": plan.interval,
                "trial_period_days": plan.trial_period_days,
                "created_at": now,
                "updated_at": now,
            }
            for plan in plans
        ]

        async with get_session_context() as session:
            stmt = db.insert(PlanModel).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["code"],
                set_={
                    "name": stmt.excluded.name,
                    "description": stmt.excluded.description,
                    "price_cents": stmt.excluded.price_cents,
                    "currency": stmt.excluded.currency,
                    "interval": stmt.excluded.interval,
                    "trial_period_days": stmt.excluded.trial_period_days,
                    "updated_at": now,
                },
            )
            await session.execute(stmt)

    async def list_plans(self) -> list[PlanDefinition]:
        async with get_session_context() as session:
            result = await session.execute(select(PlanModel).order_by(PlanModel.price_cents))
            return [
                PlanDefinition(
                    code=PlanCode(model.code),
                    name=model.name,
                    description=model.description,
                    price_cents=model.price_cents,
                    currency=model.currency,
                    interval=model.interval,
                    trial_period_days=model.trial_period_days,
                )
                for model in result.scalars().all()
            ]

    # =========================================================================
    # Subscription Records
    # =========================================================================

    async def find_subscription(self, user_id: str) -> Optional[UserSubscription]:
        """
        Get the subscription record for a user.

        Args:
            user_id: Internal user ID

        Returns:
            UserSubscription domain model or None
        """
        user_uuid = to_uuid(user_id)
        if user_uuid is None:
            return None

        async with get_session_context() as session:
            statement = select(UserSubscriptionModel).where(
                UserSubscriptionModel.user_id == user_uuid
            )
            result = await session.execute(statement)
            model = result.scalar_one_or_none()

            if model:
                return self._to_domain(model)

            return None

    async def insert_subscription_if_absent(
        self,
        user_id: str,
        plan_code: PlanCode,
        status: SubscriptionStatus,
        provider: BillingProvider,
        trial_ends_at: Optional[datetime],
    ) -> bool:
        """
        Insert a subscription record unless one already exists for the user.

        Returns:
            True if this call created the row, False if it already existed
        """
        db = get_db_manager()
        now = utcnow()

        async with get_session_context() as session:
            stmt = db.insert(UserSubscriptionModel).values(
                id=uuid4(),
                user_id=to_uuid(user_id),
                plan_code=plan_code.value,
                status=status.value,
                provider=provider.value,
                trial_ends_at=trial_ends_at,
                current_period_end=None,
                cancel_at_period_end=False,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["user_id"])
            result = await session.execute(stmt)
            return bool(result.rowcount)

    async def update_subscription(
        self,
        user_id: str,
        fields: dict[str, Any],
    ) -> Optional[UserSubscription]:
        """
        Apply a partial update to a user's subscription in one statement.

        Args:
            user_id: User ID
            fields: Column values to write; absent keys are left untouched

        Returns:
            Updated subscription or None if the user has no record
        """
        values = {
            key: value.value if hasattr(value, "value") else value
            for key, value in fields.items()
        }
        values["updated_at"] = utcnow()

        async with get_session_context() as session:
            await session.execute(
                update(UserSubscriptionModel)
                .where(UserSubscriptionModel.user_id == to_uuid(user_id))
                .values(**values)
            )

        logger.debug(f"Updated subscription for user {user_id}: {sorted(fields)}")
        return await self.find_subscription(user_id)

    # =========================================================================
    # Customer Links
    # =========================================================================

    async def find_customer_link_by_user(self, user_id: str) -> Optional[CustomerLink]:
        user_uuid = to_uuid(user_id)
        if user_uuid is None:
            return None

        async with get_session_context() as session:
            result = await session.execute(
                select(StripeCustomerModel).where(StripeCustomerModel.user_id == user_uuid)
            )
            model = result.scalar_one_or_none()
            return CustomerLink.from_model(model) if model else None

    async def find_customer_link_by_customer(self, customer_id: str) -> Optional[CustomerLink]:
        async with get_session_context() as session:
            result = await session.execute(
                select(StripeCustomerModel).where(StripeCustomerModel.customer_id == customer_id)
            )
            model = result.scalar_one_or_none()
            return CustomerLink.from_model(model) if model else None

    async def create_customer_link(
        self,
        user_id: str,
        customer_id: str,
        email: Optional[str] = None,
    ) -> Optional[CustomerLink]:
        """
        Link a user to a processor customer.

        Conflicts on either unique key are ignored; the user's existing link
        (which may point at a different customer) is returned instead.
        """
        db = get_db_manager()
        now = utcnow()

        async with get_session_context() as session:
            stmt = db.insert(StripeCustomerModel).values(
                id=uuid4(),
                user_id=to_uuid(user_id),
                customer_id=customer_id,
                email=email,
                created_at=now,
                updated_at=now,
            )
            await session.execute(stmt.on_conflict_do_nothing())

        link = await self.find_customer_link_by_user(user_id)
        if link and link.customer_id != customer_id:
            logger.warning(
                f"User {user_id} already linked to customer {link.customer_id}, "
                f"ignoring {customer_id}"
            )
        return link

    # =========================================================================
    # Stripe Subscription Mirror & Audit Log
    # =========================================================================

    async def upsert_external_subscription(
        self,
        subscription_id: str,
        fields: dict[str, Any],
    ) -> Optional[str]:
        """
        Create or update the mirror row keyed by the processor subscription id.

        Returns:
            Internal id of the mirror row
        """
        db = get_db_manager()
        now = utcnow()
        values = {
            key: value.value if hasattr(value, "value") else value
            for key, value in fields.items()
        }

        async with get_session_context() as session:
            stmt = db.insert(StripeSubscriptionModel).values(
                id=uuid4(),
                subscription_id=subscription_id,
                created_at=now,
                updated_at=now,
                **values,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["subscription_id"],
                set_={
                    **{key: getattr(stmt.excluded, key) for key in values},
                    "updated_at": now,
                },
            )
            await session.execute(stmt)

            result = await session.execute(
                select(StripeSubscriptionModel.id).where(
                    StripeSubscriptionModel.subscription_id == subscription_id
                )
            )
            row_id = result.scalar_one_or_none()
            return str(row_id) if row_id else None

    async def count_external_subscriptions(self, subscription_id: str) -> int:
        async with get_session_context() as session:
            result = await session.execute(
                select(StripeSubscriptionModel.id).where(
                    StripeSubscriptionModel.subscription_id == subscription_id
                )
            )
            return len(result.all())

    async def find_latest_external_subscription(self, user_id: str) -> Optional[str]:
        """Processor id of the user's most recently created subscription."""
        link = await self.find_customer_link_by_user(user_id)
        if not link:
            return None

        async with get_session_context() as session:
            result = await session.execute(
                select(StripeSubscriptionModel.subscription_id)
                .where(StripeSubscriptionModel.stripe_customer_id == to_uuid(link.id))
                .order_by(
                    StripeSubscriptionModel.subscription_created.desc(),
                    StripeSubscriptionModel.created_at.desc(),
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def append_subscription_event(
        self,
        external_subscription_id: str,
        event_type: str,
        payload: dict,
    ) -> None:
        async with get_session_context() as session:
            session.add(
                SubscriptionEventModel(
                    stripe_subscription_id=to_uuid(external_subscription_id),
                    type=event_type,
                    payload=payload,
                )
            )

    async def list_subscription_events(self, external_subscription_id: str) -> list[dict]:
        async with get_session_context() as session:
            result = await session.execute(
                select(SubscriptionEventModel)
                .where(
                    SubscriptionEventModel.stripe_subscription_id
                    == to_uuid(external_subscription_id)
                )
                .order_by(SubscriptionEventModel.created_at)
            )
            return [
                {"type": model.type, "payload": model.payload}
                for model in result.scalars().all()
            ]

    # =========================================================================
    # Mapping Methods
    # =========================================================================

    def _to_domain(self, model: UserSubscriptionModel) -> UserSubscription:
        """Convert database model to domain entity."""
        return UserSubscription(
            id=str(model.id),
            user_id=str(model.user_id),
            plan_code=PlanCode(model.plan_code),
            status=SubscriptionStatus(model.status),
            provider=BillingProvider(model.provider),
            trial_ends_at=as_utc(model.trial_ends_at),
            current_period_end=as_utc(model.current_period_end),
            cancel_at_period_end=model.cancel_at_period_end or False,
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )


# =============================================================================
# Singleton Instance
# =============================================================================

_billing_repo_instance: Optional[BillingRepository] = None


def get_billing_repository() -> BillingRepository:
    """Get or create billing repository singleton."""
    global _billing_repo_instance

    if _billing_repo_instance is None:
        _billing_repo_instance = BillingRepository()

    return _billing_repo_instance
