"""
Integration Tests for Webhooks (Stripe)

Verifies:
- Secret/signature checks (500 / 400) with no side effects
- Subscription events mapped onto the local record
- Idempotent redelivery (no duplicate mirror rows)
- Checkout and invoice events re-fetch the subscription
- Handler failures answer 500 so Stripe retries
"""

import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from chatrelay.api.dependencies import get_reconciler
from chatrelay.domain.subscription import BillingProvider, PlanCode, SubscriptionStatus
from chatrelay.infrastructure.payments.stripe_service import StripeServiceError

from conftest import (
    auth_headers,
    external_subscription,
    make_event,
    post_event,
    sign_payload,
    stripe_subscription,
)


@pytest.fixture
async def linked_user(user, billing_repo):
    """A user already linked to Stripe customer cus_test."""
    await billing_repo.create_customer_link(user.id, "cus_test", user.email)
    return user


class TestWebhookVerification:

    async def test_missing_secret_returns_500(self, async_client, monkeypatch):
        from chatrelay.config.settings import get_settings
        monkeypatch.setattr(get_settings(), "stripe_webhook_secret", None)

        response = await post_event(async_client, "customer.subscription.updated", stripe_subscription())
        assert response.status_code == 500

    async def test_missing_signature_returns_400(self, async_client):
        response = await async_client.post(
            "/api/billing/webhook",
            content=make_event("customer.subscription.updated", stripe_subscription()),
        )
        assert response.status_code == 400

    async def test_invalid_signature_never_touches_store(self, app, async_client, billing_repo):
        reconciler = MagicMock()
        app.dependency_overrides[get_reconciler] = lambda: reconciler

        payload = make_event("customer.subscription.updated", stripe_subscription())
        response = await async_client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, secret="whsec_wrong")},
        )

        assert response.status_code == 400
        assert reconciler.mock_calls == []
        assert await billing_repo.count_external_subscriptions("sub_test") == 0

    async def test_tampered_body_is_rejected(self, async_client, linked_user, billing_repo):
        payload = make_event("customer.subscription.updated", stripe_subscription())
        signature = sign_payload(payload)
        tampered = payload.replace(b'"active"', b'"canceled"')

        response = await async_client.post(
            "/api/billing/webhook",
            content=tampered,
            headers={"stripe-signature": signature},
        )

        assert response.status_code == 400
        assert await billing_repo.find_subscription(linked_user.id) is None

    async def test_stale_timestamp_is_rejected(self, async_client):
        payload = make_event("customer.subscription.updated", stripe_subscription())
        response = await async_client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"stripe-signature": sign_payload(payload, timestamp=int(time.time()) - 3600)},
        )
        assert response.status_code == 400


class TestSubscriptionEvents:

    async def test_active_subscription_grants_pro(self, async_client, linked_user, billing_repo):
        response = await post_event(
            async_client, "customer.subscription.created", stripe_subscription(status="active")
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

        record = await billing_repo.find_subscription(linked_user.id)
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.plan_code == PlanCode.PRO
        assert record.provider == BillingProvider.STRIPE
        assert record.current_period_end is not None

    async def test_canceled_subscription_downgrades_to_trial(self, async_client, linked_user, billing_repo):
        await post_event(async_client, "customer.subscription.created", stripe_subscription(status="active"))
        response = await post_event(
            async_client, "customer.subscription.deleted", stripe_subscription(status="canceled")
        )

        assert response.status_code == 200
        record = await billing_repo.find_subscription(linked_user.id)
        assert record.status == SubscriptionStatus.CANCELED
        assert record.plan_code == PlanCode.TRIAL

    async def test_past_due_keeps_pro_label(self, async_client, linked_user, billing_repo):
        await post_event(async_client, "customer.subscription.updated", stripe_subscription(status="past_due"))

        record = await billing_repo.find_subscription(linked_user.id)
        assert record.plan_code == PlanCode.PRO
        assert record.status == SubscriptionStatus.PAST_DUE

    async def test_redelivery_is_idempotent(self, async_client, linked_user, billing_repo):
        sub = stripe_subscription(status="active", cancel_at_period_end=True)

        first = await post_event(async_client, "customer.subscription.updated", sub, event_id="evt_1")
        state_after_first = await billing_repo.find_subscription(linked_user.id)
        second = await post_event(async_client, "customer.subscription.updated", sub, event_id="evt_1")
        state_after_second = await billing_repo.find_subscription(linked_user.id)

        assert first.status_code == second.status_code == 200
        assert await billing_repo.count_external_subscriptions("sub_test") == 1

        fields = ("id", "plan_code", "status", "provider", "trial_ends_at",
                  "current_period_end", "cancel_at_period_end")
        for field in fields:
            assert getattr(state_after_first, field) == getattr(state_after_second, field)

    async def test_each_delivery_is_audited(self, async_client, linked_user, billing_repo):
        sub = stripe_subscription(status="active")
        await post_event(async_client, "customer.subscription.created", sub)
        await post_event(async_client, "customer.subscription.updated", sub)

        mirror_id = await _mirror_id(billing_repo, "sub_test")
        events = await billing_repo.list_subscription_events(mirror_id)
        assert [event["type"] for event in events] == [
            "customer.subscription.created",
            "customer.subscription.updated",
        ]
        assert events[0]["payload"]["id"] == "sub_test"

    async def test_unknown_customer_is_acknowledged(self, async_client, user, billing_repo, mock_stripe):
        response = await post_event(
            async_client, "customer.subscription.updated", stripe_subscription(customer="cus_nobody")
        )

        assert response.status_code == 200
        assert await billing_repo.find_subscription(user.id) is None
        assert await billing_repo.count_external_subscriptions("sub_test") == 0

    async def test_metadata_hint_links_customer(self, async_client, user, billing_repo):
        sub = stripe_subscription(customer="cus_new", metadata={"userId": user.id})
        await post_event(async_client, "customer.subscription.created", sub)

        link = await billing_repo.find_customer_link_by_user(user.id)
        assert link.customer_id == "cus_new"
        assert (await billing_repo.find_subscription(user.id)).status == SubscriptionStatus.ACTIVE

    async def test_unhandled_event_type_is_acknowledged(self, async_client):
        response = await post_event(async_client, "customer.created", {"id": "cus_1"})
        assert response.status_code == 200
        assert response.json() == {"received": True}


class TestDowngradeRevokesAccess:
    """unpaid and incomplete_expired land on TRIAL and must not reopen access."""

    @pytest.mark.parametrize("processor_status", ["unpaid", "incomplete_expired"])
    async def test_expired_trial_stays_closed(self, async_client, linked_user, billing_repo,
                                               subscription_service, processor_status):
        await subscription_service.ensure_trial_subscription(linked_user.id)
        expired_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        await billing_repo.update_subscription(linked_user.id, {"trial_ends_at": expired_at})
        headers = auth_headers(linked_user.id, linked_user.email)
        assert (await async_client.get("/api/access/verify", headers=headers)).status_code == 402

        await post_event(
            async_client,
            "customer.subscription.updated",
            stripe_subscription(status=processor_status, trial_end=None),
        )

        record = await billing_repo.find_subscription(linked_user.id)
        assert record.plan_code == PlanCode.TRIAL
        assert record.trial_ends_at is not None
        response = await async_client.get("/api/access/verify", headers=headers)
        assert response.status_code == 402
        assert response.json()["metadata"]["subscriptionStatus"] == processor_status

    @pytest.mark.parametrize("processor_status", ["unpaid", "incomplete_expired"])
    async def test_running_trial_is_closed(self, async_client, linked_user, billing_repo, processor_status):
        headers = auth_headers(linked_user.id, linked_user.email)
        await post_event(async_client, "customer.subscription.created", stripe_subscription(status="active"))

        await post_event(
            async_client,
            "customer.subscription.updated",
            stripe_subscription(status=processor_status, trial_end=None),
        )

        record = await billing_repo.find_subscription(linked_user.id)
        assert record.trial_ends_at <= datetime.now(timezone.utc)
        assert (await async_client.get("/api/access/verify", headers=headers)).status_code == 402


class TestCheckoutAndInvoiceEvents:

    async def test_paid_checkout_refetches_subscription(self, async_client, user, billing_repo, mock_stripe):
        mock_stripe.retrieve_subscription.return_value = external_subscription(customer="cus_checkout")

        response = await post_event(async_client, "checkout.session.completed", {
            "id": "cs_1",
            "customer": "cus_checkout",
            "subscription": "sub_test",
            "payment_status": "paid",
            "metadata": {"userId": user.id},
        })

        assert response.status_code == 200
        mock_stripe.retrieve_subscription.assert_awaited_once_with("sub_test")
        record = await billing_repo.find_subscription(user.id)
        assert record.plan_code == PlanCode.PRO
        assert record.status == SubscriptionStatus.ACTIVE

    async def test_unpaid_checkout_is_ignored(self, async_client, user, billing_repo, mock_stripe):
        response = await post_event(async_client, "checkout.session.completed", {
            "id": "cs_1",
            "customer": "cus_checkout",
            "subscription": "sub_test",
            "payment_status": "unpaid",
            "metadata": {"userId": user.id},
        })

        assert response.status_code == 200
        mock_stripe.retrieve_subscription.assert_not_called()
        assert await billing_repo.find_subscription(user.id) is None

    async def test_invoice_failure_refetches_subscription(self, async_client, linked_user, billing_repo, mock_stripe):
        mock_stripe.retrieve_subscription.return_value = external_subscription(status="past_due")

        response = await post_event(async_client, "invoice.payment_failed", {
            "id": "in_1",
            "customer": "cus_test",
            "subscription": "sub_test",
            "status": "open",
        })

        assert response.status_code == 200
        mock_stripe.retrieve_subscription.assert_awaited_once_with("sub_test")
        assert (await billing_repo.find_subscription(linked_user.id)).status == SubscriptionStatus.PAST_DUE

    async def test_gateway_failure_returns_500(self, async_client, linked_user, mock_stripe):
        mock_stripe.retrieve_subscription.side_effect = StripeServiceError("Stripe subscription retrieval timed out")

        response = await post_event(async_client, "invoice.payment_succeeded", {
            "id": "in_1",
            "subscription": "sub_test",
        })

        assert response.status_code == 500


async def _mirror_id(billing_repo, subscription_id: str) -> str:
    from sqlalchemy import select
    from chatrelay.infrastructure.db.database import get_session_context
    from chatrelay.infrastructure.db.models import StripeSubscriptionModel

    async with get_session_context() as session:
        result = await session.execute(
            select(StripeSubscriptionModel.id).where(
                StripeSubscriptionModel.subscription_id == subscription_id
            )
        )
        return str(result.scalar_one())
