"""
Access API Routes

The gated endpoint the frontend calls before rendering protected pages.
"""

from fastapi import APIRouter, Depends

from chatrelay.domain.subscription import (
    SubscriptionStatusResponse,
    SubscriptionSummary,
    subscription_to_response,
)
from chatrelay.api.dependencies import require_active_subscription


router = APIRouter()


@router.get("/access/verify", response_model=SubscriptionStatusResponse)
async def verify_access(
    summary: SubscriptionSummary = Depends(require_active_subscription),
):
    """Confirm access; denied users receive the 402 upgrade payload instead."""
    return SubscriptionStatusResponse(
        **subscription_to_response(summary).model_dump(),
        isActive=True,
    )
