"""
Integration tests for SubscriptionReconciler and LoginSyncService.

The Stripe gateway is mocked; the database is real (SQLite).
"""

from unittest.mock import AsyncMock

import pytest

from chatrelay.domain.billing import ExternalCustomer
from chatrelay.domain.subscription import BillingProvider, PlanCode, SubscriptionStatus
from chatrelay.infrastructure.payments.stripe_service import StripeServiceError

from conftest import external_subscription


class TestOwnerResolution:

    async def test_existing_link_wins(self, reconciler, billing_repo, user, mock_stripe):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)

        link = await reconciler.resolve_customer_link("cus_test", user_id_hint="someone-else")

        assert link.user_id == user.id
        mock_stripe.retrieve_customer.assert_not_called()

    async def test_unknown_hint_falls_back_to_email(self, reconciler, billing_repo, user, mock_stripe):
        mock_stripe.retrieve_customer.return_value = ExternalCustomer(id="cus_mail", email="ADA@example.com")

        link = await reconciler.resolve_customer_link(
            "cus_mail", user_id_hint="00000000-0000-0000-0000-000000000000"
        )

        assert link.user_id == user.id
        assert (await billing_repo.find_customer_link_by_customer("cus_mail")).user_id == user.id

    async def test_never_invents_a_user(self, reconciler, billing_repo, mock_stripe):
        mock_stripe.retrieve_customer.return_value = ExternalCustomer(id="cus_x", email="ghost@example.com")

        assert await reconciler.resolve_customer_link("cus_x") is None
        assert await billing_repo.find_customer_link_by_customer("cus_x") is None

    async def test_missing_customer_id(self, reconciler):
        assert await reconciler.resolve_customer_link("") is None

    async def test_hint_for_user_linked_elsewhere_is_refused(self, reconciler, billing_repo, user):
        await billing_repo.create_customer_link(user.id, "cus_a", user.email)

        assert await reconciler.resolve_customer_link("cus_b", user_id_hint=user.id) is None
        assert (await billing_repo.find_customer_link_by_user(user.id)).customer_id == "cus_a"

    async def test_email_match_for_user_linked_elsewhere_is_refused(self, reconciler, billing_repo, user, mock_stripe):
        await billing_repo.create_customer_link(user.id, "cus_a", user.email)
        mock_stripe.retrieve_customer.return_value = ExternalCustomer(id="cus_b", email=user.email)

        assert await reconciler.resolve_customer_link("cus_b") is None


class TestUpsertExternalSubscriptionRecord:

    async def test_full_path(self, reconciler, billing_repo, user):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)

        record = await reconciler.upsert_external_subscription_record(
            external_subscription(status="trialing", cancel_at_period_end=True),
            "customer.subscription.created",
        )

        assert record.user_id == user.id
        assert record.plan_code == PlanCode.PRO
        assert record.status == SubscriptionStatus.TRIALING
        assert record.provider == BillingProvider.STRIPE
        assert record.cancel_at_period_end is True
        assert await billing_repo.count_external_subscriptions("sub_test") == 1
        assert await billing_repo.find_latest_external_subscription(user.id) == "sub_test"

    async def test_other_customer_cannot_overwrite_paying_user(self, reconciler, billing_repo, user):
        await billing_repo.create_customer_link(user.id, "cus_a", user.email)
        await reconciler.upsert_external_subscription_record(
            external_subscription(sub_id="sub_a", customer="cus_a", status="active"),
            "customer.subscription.created",
        )

        result = await reconciler.upsert_external_subscription_record(
            external_subscription(
                sub_id="sub_b", customer="cus_b", status="canceled", metadata={"userId": user.id}
            ),
            "customer.subscription.deleted",
        )

        assert result is None
        record = await billing_repo.find_subscription(user.id)
        assert record.plan_code == PlanCode.PRO
        assert record.status == SubscriptionStatus.ACTIVE
        assert await billing_repo.count_external_subscriptions("sub_b") == 0

    async def test_unresolved_owner_is_noop(self, reconciler, billing_repo):
        result = await reconciler.upsert_external_subscription_record(
            external_subscription(customer="cus_unknown"),
            "customer.subscription.updated",
        )

        assert result is None
        assert await billing_repo.count_external_subscriptions("sub_test") == 0

    async def test_audit_failure_does_not_fail_the_update(self, reconciler, billing_repo, user, monkeypatch):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)
        monkeypatch.setattr(
            billing_repo,
            "append_subscription_event",
            AsyncMock(side_effect=RuntimeError("audit table unavailable")),
        )

        record = await reconciler.upsert_external_subscription_record(
            external_subscription(status="active"),
            "customer.subscription.updated",
        )

        assert record.status == SubscriptionStatus.ACTIVE
        billing_repo.append_subscription_event.assert_awaited_once()

    async def test_latest_subscription_by_created(self, reconciler, billing_repo, user):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)

        await reconciler.upsert_external_subscription_record(
            external_subscription(sub_id="sub_new", created=2_000_000_000), "backfill"
        )
        await reconciler.upsert_external_subscription_record(
            external_subscription(sub_id="sub_old", created=1_000_000_000, status="canceled"), "backfill"
        )

        assert await billing_repo.find_latest_external_subscription(user.id) == "sub_new"


class TestLoginSync:

    async def test_gateway_failure_is_swallowed(self, login_sync, billing_repo, user, mock_stripe):
        mock_stripe.find_customers_by_email.side_effect = StripeServiceError("Stripe customer lookup timed out")

        assert await login_sync.sync_if_exists(user.id) is False

    async def test_linked_customer_latest_subscription(self, login_sync, billing_repo, user, mock_stripe):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)
        mock_stripe.list_subscriptions.return_value = [external_subscription(status="active")]

        assert await login_sync.sync_if_exists(user.id) is True

        mock_stripe.list_subscriptions.assert_awaited_once_with("cus_test", status="all", limit=1)
        record = await billing_repo.find_subscription(user.id)
        assert record.plan_code == PlanCode.PRO
        assert record.status == SubscriptionStatus.ACTIVE

        mirror_events = await _event_types(billing_repo, "sub_test")
        assert mirror_events == ["sync_on_login"]

    async def test_linked_customer_without_subscriptions(self, login_sync, billing_repo, user, mock_stripe):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)

        assert await login_sync.sync_if_exists(user.id) is False

    async def test_email_lookup_links_paid_customer(self, login_sync, billing_repo, user, mock_stripe):
        mock_stripe.find_customers_by_email.return_value = [
            ExternalCustomer(id="cus_old", email=user.email),
            ExternalCustomer(id="cus_paid", email=user.email),
        ]

        async def list_subscriptions(customer_id, status="all", limit=10):
            if customer_id == "cus_old":
                return [external_subscription(sub_id="sub_old", customer="cus_old", status="canceled", created=3_000)]
            return [external_subscription(sub_id="sub_paid", customer="cus_paid", status="past_due", created=2_000)]

        mock_stripe.list_subscriptions.side_effect = list_subscriptions

        assert await login_sync.sync_if_exists(user.id) is True

        link = await billing_repo.find_customer_link_by_user(user.id)
        assert link.customer_id == "cus_paid"
        record = await billing_repo.find_subscription(user.id)
        assert record.plan_code == PlanCode.PRO
        assert record.status == SubscriptionStatus.PAST_DUE
        assert await _event_types(billing_repo, "sub_paid") == ["sync_on_login_email_lookup"]

    async def test_email_lookup_ignores_unpaid_history(self, login_sync, billing_repo, user, mock_stripe):
        mock_stripe.find_customers_by_email.return_value = [ExternalCustomer(id="cus_old", email=user.email)]
        mock_stripe.list_subscriptions.return_value = [
            external_subscription(customer="cus_old", status="incomplete_expired")
        ]

        assert await login_sync.sync_if_exists(user.id) is False
        assert await billing_repo.find_customer_link_by_user(user.id) is None

    @pytest.mark.parametrize("user_id", ["not-a-uuid", "00000000-0000-0000-0000-000000000000"])
    async def test_unknown_user(self, login_sync, db, user_id):
        assert await login_sync.sync_if_exists(user_id) is False


async def _event_types(billing_repo, subscription_id: str) -> list[str]:
    from sqlalchemy import select
    from chatrelay.infrastructure.db.database import get_session_context
    from chatrelay.infrastructure.db.models import StripeSubscriptionModel

    async with get_session_context() as session:
        result = await session.execute(
            select(StripeSubscriptionModel.id).where(
                StripeSubscriptionModel.subscription_id == subscription_id
            )
        )
        mirror_id = result.scalar_one()

    events = await billing_repo.list_subscription_events(str(mirror_id))
    return [event["type"] for event in events]
