"""
Repository Layer for Chat Relay

Exports all repository classes for dependency injection.
"""

from chatrelay.infrastructure.db.repositories.billing_repository import (
    BillingRepository,
    CustomerLink,
    get_billing_repository,
)
from chatrelay.infrastructure.db.repositories.user_repository import (
    UserRepository,
    get_user_repository,
)


__all__ = [
    "BillingRepository",
    "CustomerLink",
    "UserRepository",
    "get_billing_repository",
    "get_user_repository",
]
