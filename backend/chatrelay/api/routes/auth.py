"""
Auth API Routes

Registration, login and the current-user endpoint. Registration creates
the user's trial; login runs a best-effort Stripe sync so a payment whose
webhook was missed is picked up before the frontend routes the user.
"""

import logging

from fastapi import APIRouter, Depends, status

from chatrelay.domain.auth import (
    AuthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    User,
    UserResponse,
)
from chatrelay.domain.subscription import subscription_to_response
from chatrelay.infrastructure.exceptions import AuthenticationError
from chatrelay.infrastructure.passwords import hash_password, verify_password
from chatrelay.infrastructure.services.login_sync_service import LoginSyncService
from chatrelay.infrastructure.services.subscription_service import SubscriptionService
from chatrelay.api.dependencies import (
    UserRepoDep,
    create_access_token,
    get_current_user_id,
    get_login_sync_service,
    get_subscription_service,
)


logger = logging.getLogger(__name__)

router = APIRouter()


def _user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name)


@router.post(
    "/auth/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    request: RegisterRequest,
    users: UserRepoDep,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """
    Register a new user and start their trial.

    Raises:
        DuplicateError: email already registered (409)
    """
    user = await users.create_user(
        email=request.email,
        password_hash=hash_password(request.password),
        name=request.name,
    )

    await subscriptions.ensure_trial_subscription(user.id)
    summary = await subscriptions.get_subscription_summary(user.id)

    return AuthResponse(
        token=create_access_token(user.id, user.email),
        user=_user_response(user),
        subscription=subscription_to_response(summary),
    )


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    users: UserRepoDep,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
    login_sync: LoginSyncService = Depends(get_login_sync_service),
):
    """
    Authenticate with email and password.

    Raises:
        AuthenticationError: unknown email or wrong password (401)
    """
    found = await users.get_password_hash(request.email)
    if not found or not verify_password(request.password, found[1]):
        raise AuthenticationError("Invalid email or password")

    user = found[0]
    await login_sync.sync_if_exists(user.id)
    summary = await subscriptions.get_subscription_summary(user.id)

    logger.info(f"User {user.id} logged in")
    return AuthResponse(
        token=create_access_token(user.id, user.email),
        user=_user_response(user),
        subscription=subscription_to_response(summary),
    )


@router.get("/auth/me", response_model=MeResponse)
async def me(
    users: UserRepoDep,
    user_id: str = Depends(get_current_user_id),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """Current user and subscription state (not gated)."""
    user = await users.get_user(user_id)
    if not user:
        raise AuthenticationError("User no longer exists")

    summary = await subscriptions.get_subscription_summary(user_id)
    return MeResponse(
        user=_user_response(user),
        subscription=subscription_to_response(summary),
    )
