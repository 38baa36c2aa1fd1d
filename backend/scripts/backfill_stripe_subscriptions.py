"""
Backfill Stripe Subscriptions

Pages through every subscription on the Stripe account and runs each one
through the reconciler, repairing local state for users whose webhooks
were never delivered (e.g. before the endpoint was configured).

Usage:
    cd backend
    python scripts/backfill_stripe_subscriptions.py [--limit N] [--page-size N]
"""

import asyncio
import argparse
import logging
from typing import Optional

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from chatrelay.infrastructure.db.database import close_db, init_db
from chatrelay.infrastructure.payments.stripe_service import StripeService
from chatrelay.infrastructure.services.subscription_reconciler import SubscriptionReconciler

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def backfill_subscriptions(
    reconciler: SubscriptionReconciler,
    stripe_service: StripeService,
    limit: Optional[int] = None,
    page_size: int = 100,
) -> dict:
    """
    Reconcile every Stripe subscription.

    Subscriptions are applied oldest first, so a user with several ends on
    their most recently created one. A failure on one subscription is
    logged and counted; the run continues.

    Returns:
        Counts of processed, synced (owner found and applied), skipped
        (no owner) and failed subscriptions
    """
    stats = {"processed": 0, "synced": 0, "skipped": 0, "failed": 0}

    # Stripe lists newest first
    subscriptions = [
        subscription
        async for subscription in stripe_service.list_all_subscriptions(page_size=page_size)
    ]
    subscriptions.sort(key=lambda subscription: subscription.created or 0)
    if limit is not None:
        subscriptions = subscriptions[:limit]
    logger.info(f"Backfilling {len(subscriptions)} subscriptions")

    for subscription in subscriptions:
        stats["processed"] += 1
        try:
            applied = await reconciler.upsert_external_subscription_record(subscription, "backfill")
        except Exception as e:
            stats["failed"] += 1
            logger.error(f"✗ Failed to backfill {subscription.id}: {e}")
            continue

        if applied is None:
            stats["skipped"] += 1
        else:
            stats["synced"] += 1
            logger.info(f"✓ {subscription.id} -> user {applied.user_id} ({applied.status.value})")

    return stats


async def main():
    parser = argparse.ArgumentParser(description="Backfill local subscriptions from Stripe")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of subscriptions to process (default: all)"
    )
    parser.add_argument(
        "--page-size",
        type=int,
        default=100,
        help="Stripe list page size (default: 100)"
    )
    args = parser.parse_args()

    from chatrelay.api.dependencies import get_reconciler
    from chatrelay.infrastructure.payments.stripe_service import get_stripe_service

    await init_db()
    try:
        stats = await backfill_subscriptions(
            get_reconciler(),
            get_stripe_service(),
            limit=args.limit,
            page_size=args.page_size,
        )
    finally:
        await close_db()

    print("\n=== Backfill Complete ===")
    print(f"Processed: {stats['processed']}")
    print(f"Synced: {stats['synced']}")
    print(f"Skipped: {stats['skipped']}")
    print(f"Failed: {stats['failed']}")


if __name__ == "__main__":
    asyncio.run(main())
