"""Database infrastructure — engine, the journal ORM model and its repository."""

from escrow_marketplace.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from escrow_marketplace.infrastructure.database.orm_models import (
    Base,
    LedgerEventRecord,
)
from escrow_marketplace.infrastructure.database.repositories import EventRepository

__all__ = [
    "Base",
    "LedgerEventRecord",
    "EventRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
