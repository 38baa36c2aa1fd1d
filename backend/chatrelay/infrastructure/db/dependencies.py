"""
Dependency Injection Providers for Chat Relay

Provides FastAPI dependencies for repositories.
"""

from typing import Annotated

from fastapi import Depends

from chatrelay.infrastructure.db.repositories import (
    BillingRepository,
    UserRepository,
    get_billing_repository,
    get_user_repository,
)


# Type aliases for repository dependencies
BillingRepoDep = Annotated[BillingRepository, Depends(get_billing_repository)]
UserRepoDep = Annotated[UserRepository, Depends(get_user_repository)]
