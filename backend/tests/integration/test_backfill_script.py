"""
Integration tests for scripts/backfill_stripe_subscriptions.py.
"""

from unittest.mock import AsyncMock, MagicMock

from chatrelay.domain.subscription import SubscriptionStatus
from scripts.backfill_stripe_subscriptions import backfill_subscriptions

from conftest import external_subscription


def paging(*subscriptions):
    async def list_all_subscriptions(page_size=100):
        for sub in subscriptions:
            yield sub
    return list_all_subscriptions


class TestBackfill:

    async def test_counts_synced_and_skipped(self, reconciler, billing_repo, user, mock_stripe):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)
        mock_stripe.list_all_subscriptions = paging(
            external_subscription(sub_id="sub_known", status="active"),
            external_subscription(sub_id="sub_orphan", customer="cus_orphan"),
        )

        stats = await backfill_subscriptions(reconciler, mock_stripe)

        assert stats == {"processed": 2, "synced": 1, "skipped": 1, "failed": 0}
        assert (await billing_repo.find_subscription(user.id)).status == SubscriptionStatus.ACTIVE

    async def test_failure_does_not_stop_the_run(self, mock_stripe):
        mock_stripe.list_all_subscriptions = paging(
            external_subscription(sub_id="sub_1"),
            external_subscription(sub_id="sub_2"),
        )
        reconciler = MagicMock()
        reconciler.upsert_external_subscription_record = AsyncMock(
            side_effect=[RuntimeError("db down"), MagicMock(user_id="u-1", status=SubscriptionStatus.ACTIVE)]
        )

        stats = await backfill_subscriptions(reconciler, mock_stripe)

        assert stats == {"processed": 2, "synced": 1, "skipped": 0, "failed": 1}

    async def test_limit(self, mock_stripe):
        mock_stripe.list_all_subscriptions = paging(
            *[external_subscription(sub_id=f"sub_{i}") for i in range(5)]
        )
        reconciler = MagicMock()
        reconciler.upsert_external_subscription_record = AsyncMock(return_value=None)

        stats = await backfill_subscriptions(reconciler, mock_stripe, limit=2)

        assert stats["processed"] == 2
        assert reconciler.upsert_external_subscription_record.await_count == 2

    async def test_user_ends_on_newest_subscription(self, reconciler, billing_repo, user, mock_stripe):
        await billing_repo.create_customer_link(user.id, "cus_test", user.email)
        mock_stripe.list_all_subscriptions = paging(
            external_subscription(sub_id="sub_new", status="active", created=2_000_000_000),
            external_subscription(sub_id="sub_old", status="canceled", created=1_600_000_000),
        )

        stats = await backfill_subscriptions(reconciler, mock_stripe)

        assert stats["synced"] == 2
        record = await billing_repo.find_subscription(user.id)
        assert record.status == SubscriptionStatus.ACTIVE
        assert await billing_repo.find_latest_external_subscription(user.id) == "sub_new"
