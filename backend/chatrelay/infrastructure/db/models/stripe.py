"""
Stripe Mirror Database Models

Customer links, the subscription mirror and its audit event log.
Live access decisions never read these tables; they read user_subscriptions.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from chatrelay.infrastructure.db.models.base import BaseModel, utcnow


def _json_column(nullable: bool = True) -> Column:
    return Column(JSON().with_variant(JSONB(), "postgresql"), nullable=nullable)


class StripeCustomerModel(BaseModel, table=True):
    """At most one processor customer per user."""
    
    __tablename__ = "stripe_customers"
    
    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True, nullable=False)
    customer_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    email: Optional[str] = Field(default=None, max_length=255)


class StripeSubscriptionModel(BaseModel, table=True):
    """Mirror of the processor subscription, keyed by its subscription id."""
    
    __tablename__ = "stripe_subscriptions"
    
    subscription_id: str = Field(max_length=255, unique=True, index=True, nullable=False)
    stripe_customer_id: UUID = Field(foreign_key="stripe_customers.id", index=True, nullable=False)
    user_subscription_id: Optional[UUID] = Field(
        default=None, foreign_key="user_subscriptions.id", index=True
    )
    
    plan_code: Optional[str] = Field(default=None, max_length=20)
    status: str = Field(max_length=30, nullable=False)
    current_period_start: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    subscription_created: Optional[int] = Field(default=None)
    
    raw_data: Optional[dict] = Field(default=None, sa_column=_json_column())


class SubscriptionEventModel(SQLModel, table=True):
    """Append-only audit log of applied subscription events."""
    
    __tablename__ = "subscription_events"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    stripe_subscription_id: UUID = Field(
        foreign_key="stripe_subscriptions.id", index=True, nullable=False
    )
    type: str = Field(max_length=100, nullable=False)
    payload: dict = Field(sa_column=_json_column(nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow, nullable=False, sa_type=DateTime(timezone=True)
    )
