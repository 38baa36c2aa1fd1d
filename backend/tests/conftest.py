"""
Test configuration and fixtures for Chat Relay.

Provides shared fixtures for unit and integration tests: a fresh SQLite
database per test, a Stripe gateway mock that still verifies webhook
signatures for real, and helpers for signed webhook requests.
"""

import hashlib
import hmac
import json
import os
import time
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

WEBHOOK_SECRET = "whsec_test_chatrelay"

# Settings are cached on first import; pin the test configuration before that
os.environ.update({
    "ENVIRONMENT": "testing",
    "DATABASE_URL": "sqlite+aiosqlite:///./test-chatrelay.db",
    "JWT_SECRET": "test-jwt-secret-with-enough-bytes-for-hs256",
    "TRIAL_DURATION_HOURS": "4",
    "STRIPE_SECRET_KEY": "sk_test_chatrelay",
    "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
    "STRIPE_PRICE_ID": "price_test_pro",
    "STRIPE_SUCCESS_URL": "http://localhost:5173/billing/success",
    "STRIPE_CANCEL_URL": "http://localhost:5173/update-plan",
})


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def db(tmp_path, monkeypatch):
    """Point the database manager at a fresh SQLite file with all tables created."""
    from chatrelay.infrastructure.db import database

    monkeypatch.setattr(
        database.settings,
        "database_url",
        f"sqlite+aiosqlite:///{tmp_path / 'chatrelay-test.db'}",
    )
    manager = database.get_db_manager()
    await manager.close()
    await manager.create_tables()

    yield manager

    await manager.close()


@pytest.fixture
def billing_repo(db):
    from chatrelay.infrastructure.db.repositories import BillingRepository
    return BillingRepository()


@pytest.fixture
def user_repo(db):
    from chatrelay.infrastructure.db.repositories import UserRepository
    return UserRepository()


@pytest.fixture
def subscription_service(billing_repo):
    from chatrelay.infrastructure.services.subscription_service import SubscriptionService
    return SubscriptionService(billing_repo, trial_duration_hours=4)


@pytest.fixture
def reconciler(billing_repo, user_repo, subscription_service, mock_stripe):
    from chatrelay.infrastructure.services.subscription_reconciler import SubscriptionReconciler
    return SubscriptionReconciler(billing_repo, user_repo, subscription_service, mock_stripe)


@pytest.fixture
def login_sync(billing_repo, user_repo, subscription_service, reconciler, mock_stripe):
    from chatrelay.infrastructure.services.login_sync_service import LoginSyncService
    return LoginSyncService(billing_repo, user_repo, subscription_service, reconciler, mock_stripe)


@pytest.fixture
async def user(user_repo):
    """A registered user with no subscription record yet."""
    return await user_repo.create_user("ada@example.com", "not-a-real-hash", name="Ada")


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_stripe(monkeypatch):
    """
    Mock for StripeService, installed as the process-wide instance.

    Network operations are AsyncMocks; webhook verification is delegated
    to a real StripeService so signatures are checked for real.
    """
    from chatrelay.infrastructure.payments import stripe_service as module

    real = module.StripeService()
    mock = MagicMock(spec=module.StripeService)
    mock.find_customers_by_email = AsyncMock(return_value=[])
    mock.retrieve_customer = AsyncMock(return_value=None)
    mock.create_customer = AsyncMock()
    mock.list_subscriptions = AsyncMock(return_value=[])
    mock.retrieve_subscription = AsyncMock()
    mock.cancel_at_period_end = AsyncMock()
    mock.create_checkout_session = AsyncMock()
    mock.create_portal_session = AsyncMock()
    mock.verify_webhook_signature.side_effect = real.verify_webhook_signature

    monkeypatch.setattr(module, "_stripe_service_instance", mock)
    return mock


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from chatrelay.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app, db, mock_stripe) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client bound to the per-test database and Stripe mock."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth_headers(user_id: str, email: str = "ada@example.com") -> dict:
    from chatrelay.api.dependencies import create_access_token
    return {"Authorization": f"Bearer {create_access_token(user_id, email)}"}


# =============================================================================
# Stripe Payload Helpers
# =============================================================================

def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header (t=...,v1=HMAC-SHA256) for a payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_test") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode("utf-8")


async def post_event(client: AsyncClient, event_type: str, obj: dict, event_id: str = "evt_test"):
    """POST a correctly signed webhook event."""
    payload = make_event(event_type, obj, event_id)
    return await client.post(
        "/api/billing/webhook",
        content=payload,
        headers={"stripe-signature": sign_payload(payload), "content-type": "application/json"},
    )


def stripe_subscription(
    sub_id: str = "sub_test",
    customer: str = "cus_test",
    status: str = "active",
    created: Optional[int] = None,
    metadata: Optional[dict] = None,
    cancel_at_period_end: bool = False,
    trial_end: Optional[int] = None,
) -> dict:
    """A Stripe subscription object as it appears in API responses and webhooks."""
    now = int(time.time())
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "created": created or now,
        "trial_end": trial_end,
        "current_period_start": now,
        "current_period_end": now + 30 * 24 * 3600,
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": now if status == "canceled" else None,
        "metadata": metadata or {},
        "items": {"object": "list", "data": []},
    }


def external_subscription(**kwargs):
    from chatrelay.domain.billing import ExternalSubscription
    return ExternalSubscription.from_stripe(stripe_subscription(**kwargs))
