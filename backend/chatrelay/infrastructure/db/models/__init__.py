"""
SQLModel ORM Models for Chat Relay

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from chatrelay.infrastructure.db.models.base import (
    BaseModel,
    TimestampMixin,
    UUIDMixin,
)
from chatrelay.infrastructure.db.models.user import UserModel
from chatrelay.infrastructure.db.models.plan import PlanModel
from chatrelay.infrastructure.db.models.subscription import UserSubscriptionModel
from chatrelay.infrastructure.db.models.stripe import (
    StripeCustomerModel,
    StripeSubscriptionModel,
    SubscriptionEventModel,
)


__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    # Users & plans
    "UserModel",
    "PlanModel",
    # Subscriptions
    "UserSubscriptionModel",
    "StripeCustomerModel",
    "StripeSubscriptionModel",
    "SubscriptionEventModel",
]
