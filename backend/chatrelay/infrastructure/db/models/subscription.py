"""
Subscription Database Model

SQLModel table for the one-per-user subscription record.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import Field

from chatrelay.infrastructure.db.models.base import BaseModel


class UserSubscriptionModel(BaseModel, table=True):
    """
    Maps to the 'user_subscriptions' table.
    
    The unique constraint on user_id is what makes lazy trial creation
    safe under concurrent first access.
    """
    
    __tablename__ = "user_subscriptions"
    
    user_id: UUID = Field(foreign_key="users.id", unique=True, index=True, nullable=False)
    plan_code: str = Field(foreign_key="plans.code", default="trial", max_length=20)
    status: str = Field(default="trialing", max_length=30)
    provider: str = Field(default="internal", max_length=20)
    
    trial_ends_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_at_period_end: bool = Field(default=False)
