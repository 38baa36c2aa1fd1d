"""
Subscription Domain Models

Domain models for subscription management following Clean Architecture.
Enums, DTOs, the plan catalog and the pure access rules for the
subscription bounded context.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class PlanCode(str, Enum):
    """Coarse entitlement tiers."""
    FREE = "free"
    TRIAL = "trial"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status (mirrors the Stripe status set)."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"


class BillingProvider(str, Enum):
    """Who owns the subscription state."""
    INTERNAL = "internal"
    STRIPE = "stripe"


# =============================================================================
# Domain Entities
# =============================================================================

class PlanDefinition(BaseModel):
    """Immutable plan catalog row."""
    code: PlanCode
    name: str
    description: Optional[str] = None
    price_cents: int = 0
    currency: str = "usd"
    interval: str = "month"
    trial_period_days: int = 0

    class Config:
        from_attributes = True


class UserSubscription(BaseModel):
    """One-per-user subscription record."""
    id: Optional[str] = None
    user_id: str
    plan_code: PlanCode = PlanCode.TRIAL
    status: SubscriptionStatus = SubscriptionStatus.TRIALING
    provider: BillingProvider = BillingProvider.INTERNAL
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubscriptionSummary(BaseModel):
    """Denormalized read model used for access decisions."""
    plan_code: PlanCode
    status: SubscriptionStatus
    provider: BillingProvider
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    @classmethod
    def from_record(cls, record: UserSubscription) -> "SubscriptionSummary":
        return cls(
            plan_code=record.plan_code,
            status=record.status,
            provider=record.provider,
            trial_ends_at=record.trial_ends_at,
            current_period_end=record.current_period_end,
            cancel_at_period_end=record.cancel_at_period_end,
        )


class SubscriptionOverrides(BaseModel):
    """
    Partial update for a subscription record.

    Only fields explicitly set are written; an explicit ``None`` clears a
    nullable timestamp, an omitted field is left untouched.
    """
    plan_code: Optional[PlanCode] = None
    provider: Optional[BillingProvider] = None
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None


# =============================================================================
# Request/Response DTOs
# =============================================================================

class SubscriptionResponse(BaseModel):
    """Client-facing subscription shape."""
    plan: str
    subscriptionStatus: str
    trialEndsAt: Optional[str] = None
    currentPeriodEnd: Optional[str] = None
    cancelAtPeriodEnd: bool = False


class SubscriptionStatusResponse(SubscriptionResponse):
    """Subscription shape plus the access verdict."""
    isActive: bool = Field(description="Whether the user may use protected features")


class PlanResponse(BaseModel):
    """Public plan catalog entry."""
    code: str
    name: str
    description: Optional[str] = None
    priceCents: int
    currency: str
    interval: str
    trialPeriodDays: int


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    url: Optional[str] = None
    id: str


class PortalResponse(BaseModel):
    """Response DTO for portal session creation."""
    url: str


# =============================================================================
# Plan Catalog
# =============================================================================

DEFAULT_PLANS: list[PlanDefinition] = [
    PlanDefinition(
        code=PlanCode.FREE,
        name="Free",
        description="Free tier with limited capabilities",
        price_cents=0,
    ),
    PlanDefinition(
        code=PlanCode.TRIAL,
        name="Trial",
        description="Trial plan for newly registered users",
        price_cents=0,
    ),
    PlanDefinition(
        code=PlanCode.PRO,
        name="Pro",
        description="Pro subscription billed monthly",
        price_cents=500,
    ),
    PlanDefinition(
        code=PlanCode.ENTERPRISE,
        name="Enterprise",
        description="Custom contracts, billed by agreement",
        price_cents=0,
    ),
]


# =============================================================================
# Access Rules (Business Logic)
# =============================================================================

PAID_PLANS = {PlanCode.PRO, PlanCode.ENTERPRISE}

# Only these statuses count as "paid and current" on a paid plan
ALLOWED_PAID_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_subscription_active(
    summary: SubscriptionSummary,
    now: Optional[datetime] = None,
) -> bool:
    """
    Decide whether a subscription grants access.

    Paid plans trust only ACTIVE and TRIALING; every other status denies.
    A TRIAL plan is active until canceled or until its trial window ends
    (no window means an unlimited trial). Any other plan denies.
    """
    if summary.plan_code in PAID_PLANS:
        return summary.status in ALLOWED_PAID_STATUSES

    if summary.plan_code == PlanCode.TRIAL:
        if summary.status == SubscriptionStatus.CANCELED:
            return False
        if summary.trial_ends_at is None:
            return True
        current = now or datetime.now(timezone.utc)
        return as_utc(summary.trial_ends_at) >= as_utc(current)

    return False


def has_active_paid_subscription(summary: SubscriptionSummary) -> bool:
    """True for an active PRO/ENTERPRISE subscription."""
    return summary.plan_code in PAID_PLANS and is_subscription_active(summary)


def to_iso8601(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).isoformat().replace("+00:00", "Z")


def subscription_to_response(summary: SubscriptionSummary) -> SubscriptionResponse:
    """Map a summary to the client-facing shape."""
    return SubscriptionResponse(
        plan=summary.plan_code.value,
        subscriptionStatus=summary.status.value,
        trialEndsAt=to_iso8601(summary.trial_ends_at),
        currentPeriodEnd=to_iso8601(summary.current_period_end),
        cancelAtPeriodEnd=summary.cancel_at_period_end,
    )


def plan_to_response(plan: PlanDefinition) -> PlanResponse:
    return PlanResponse(
        code=plan.code.value,
        name=plan.name,
        description=plan.description,
        priceCents=plan.price_cents,
        currency=plan.currency,
        interval=plan.interval,
        trialPeriodDays=plan.trial_period_days,
    )
