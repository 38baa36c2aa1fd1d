"""
Plan Database Model

Static plan catalog, seeded idempotently by the subscription service.
"""

from typing import Optional

from sqlmodel import Field

from chatrelay.infrastructure.db.models.base import TimestampMixin


class PlanModel(TimestampMixin, table=True):
    """Maps to the 'plans' table, keyed by plan code."""
    
    __tablename__ = "plans"
    
    code: str = Field(primary_key=True, max_length=20)
    name: str = Field(nullable=False)
    description: Optional[str] = Field(default=None)
    price_cents: int = Field(default=0)
    currency: str = Field(default="usd", max_length=3)
    interval: str = Field(default="month", max_length=20)
    trial_period_days: int = Field(default=0)
