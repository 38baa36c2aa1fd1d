"""
Database Infrastructure Package for Chat Relay

Exports database utilities, models, and repositories.
"""

from chatrelay.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session_context,
    init_db,
    close_db,
)

from chatrelay.infrastructure.db.dependencies import (
    BillingRepoDep,
    UserRepoDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "BillingRepoDep",
    "UserRepoDep",
]
