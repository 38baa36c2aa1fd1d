"""
API Dependencies

FastAPI dependency injection for authentication, subscription services
and the access gate.

Security: JWT tokens are HS256-signed with the configured secret and
always verified (signature, expiry, subject). Never decode without
verification.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from chatrelay.config.settings import get_settings
from chatrelay.domain.subscription import SubscriptionSummary, to_iso8601, is_subscription_active
from chatrelay.infrastructure.db.repositories import get_billing_repository, get_user_repository
from chatrelay.infrastructure.exceptions import SubscriptionRequiredError
from chatrelay.infrastructure.payments.stripe_service import get_stripe_service
from chatrelay.infrastructure.services.login_sync_service import LoginSyncService
from chatrelay.infrastructure.services.subscription_reconciler import SubscriptionReconciler
from chatrelay.infrastructure.services.subscription_service import SubscriptionService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


# =============================================================================
# Tokens
# =============================================================================

def create_access_token(user_id: str, email: str) -> str:
    """Issue a signed access token for a user."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=settings.access_token_expire_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Verify a token and return its claims."""
    settings = get_settings()
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["exp", "sub"]},
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify user ID from the bearer token.

    Returns:
        Authenticated user ID (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return user_id


# =============================================================================
# Services
# =============================================================================

def get_subscription_service() -> SubscriptionService:
    return SubscriptionService(get_billing_repository())


def get_reconciler() -> SubscriptionReconciler:
    return SubscriptionReconciler(
        get_billing_repository(),
        get_user_repository(),
        get_subscription_service(),
        get_stripe_service(),
    )


def get_login_sync_service() -> LoginSyncService:
    return LoginSyncService(
        get_billing_repository(),
        get_user_repository(),
        get_subscription_service(),
        get_reconciler(),
        get_stripe_service(),
    )


# =============================================================================
# Access Gate
# =============================================================================

async def require_active_subscription(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    login_sync: LoginSyncService = Depends(get_login_sync_service),
) -> SubscriptionSummary:
    """
    Allow the request only for users with an active subscription.

    An inactive summary gets one read-repair sync against Stripe before
    the request is denied, so a missed webhook does not lock out a payer.

    Raises:
        SubscriptionRequiredError: rendered as 402 by the app handler
    """
    summary = await subscriptions.get_subscription_summary(user_id)

    if not is_subscription_active(summary):
        if await login_sync.sync_if_exists(user_id):
            summary = await subscriptions.get_subscription_summary(user_id)

    if not is_subscription_active(summary):
        logger.info(
            f"Access denied for user {user_id}: "
            f"{summary.plan_code.value}/{summary.status.value}"
        )
        raise SubscriptionRequiredError(
            plan=summary.plan_code.value,
            subscription_status=summary.status.value,
            trial_ends_at=to_iso8601(summary.trial_ends_at),
        )

    request.state.subscription = summary
    return summary


# =============================================================================
# Re-export DB dependencies for a single import source
# Routers should import from api.dependencies, not db.dependencies directly.
# =============================================================================
from chatrelay.infrastructure.db.dependencies import (  # noqa: E402, F401
    BillingRepoDep,
    UserRepoDep,
)
