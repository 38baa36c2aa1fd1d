"""
Billing Gateway Domain Models

Typed views of the payment processor's objects. Stripe responses are
converted into these models at the adapter boundary so reconciliation
code never reads unchecked fields.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

from chatrelay.domain.subscription import PlanCode, SubscriptionStatus


def to_plain(value: Any) -> Any:
    """Recursively convert SDK objects (dict subclasses) into plain JSON data."""
    if isinstance(value, Mapping):
        return {str(key): to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def _object_id(value: Any) -> Optional[str]:
    """Stripe references arrive either as an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return value.get("id")
    return None


def _metadata(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


class ExternalCustomer(BaseModel):
    """Processor customer."""
    id: str
    email: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Mapping) -> "ExternalCustomer":
        return cls(
            id=obj["id"],
            email=obj.get("email"),
            metadata=_metadata(obj.get("metadata")),
        )


class ExternalSubscription(BaseModel):
    """Processor subscription, reduced to the fields reconciliation needs."""
    id: str
    customer_id: str
    status: str
    created: Optional[int] = None
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_stripe(cls, obj: Mapping) -> "ExternalSubscription":
        """
        Build from a Stripe subscription object or webhook payload.

        Newer API versions moved the billing period onto subscription
        items; the first item is used when the top-level fields are absent.
        """
        raw = to_plain(obj)
        period_start = raw.get("current_period_start")
        period_end = raw.get("current_period_end")

        items = (raw.get("items") or {}).get("data") or []
        if items and (period_start is None or period_end is None):
            first_item = items[0]
            period_start = period_start or first_item.get("current_period_start")
            period_end = period_end or first_item.get("current_period_end")

        return cls(
            id=raw["id"],
            customer_id=_object_id(raw.get("customer")) or "",
            status=raw.get("status") or "",
            created=raw.get("created"),
            trial_end=raw.get("trial_end"),
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=bool(raw.get("cancel_at_period_end")),
            canceled_at=raw.get("canceled_at"),
            metadata=_metadata(raw.get("metadata")),
            raw=raw,
        )

    @property
    def user_id_hint(self) -> Optional[str]:
        return self.metadata.get("userId") or self.metadata.get("user_id")


class ExternalCheckoutSession(BaseModel):
    """Processor checkout session."""
    id: str
    url: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    payment_status: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj: Mapping) -> "ExternalCheckoutSession":
        return cls(
            id=obj["id"],
            url=obj.get("url"),
            customer_id=_object_id(obj.get("customer")),
            subscription_id=_object_id(obj.get("subscription")),
            payment_status=obj.get("payment_status"),
            metadata=_metadata(obj.get("metadata")),
        )

    @property
    def user_id_hint(self) -> Optional[str]:
        return self.metadata.get("userId") or self.metadata.get("user_id")

    @property
    def is_paid(self) -> bool:
        return self.payment_status in CHECKOUT_PAID_STATUSES


class WebhookEventData(BaseModel):
    object: dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    """Verified webhook envelope."""
    id: Optional[str] = None
    type: str
    data: WebhookEventData = Field(default_factory=WebhookEventData)


# =============================================================================
# Status Mapping (Business Logic)
# =============================================================================

CHECKOUT_PAID_STATUSES = {"paid", "no_payment_required"}

# Processor statuses that drop the user back to the TRIAL plan label
STATUS_PLAN_DOWNGRADE = {"canceled", "incomplete_expired", "unpaid"}

# Statuses that signal the customer has paid (or is mid-dunning) during login sync
PAID_SIGNAL_STATUSES = {"active", "trialing", "past_due"}

STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.INCOMPLETE_EXPIRED,
    "unpaid": SubscriptionStatus.UNPAID,
    "paused": SubscriptionStatus.PAUSED,
}


def resolve_status(processor_status: str) -> SubscriptionStatus:
    """Map a processor status; unknown values fall back to PAUSED (denies access)."""
    return STATUS_MAP.get(processor_status, SubscriptionStatus.PAUSED)


def resolve_plan(processor_status: str) -> PlanCode:
    return PlanCode.TRIAL if processor_status in STATUS_PLAN_DOWNGRADE else PlanCode.PRO


def invoice_subscription_id(invoice: Mapping) -> Optional[str]:
    """Subscription referenced by an invoice (top-level or, on newer API versions, under parent)."""
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id

    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _object_id(details.get("subscription"))
