"""Application services — use case orchestration."""

from escrow_marketplace.services.journal_service import JournalService
from escrow_marketplace.services.marketplace_service import (
    MarketplaceService,
    get_marketplace,
    reset_marketplace,
)

__all__ = ["JournalService", "MarketplaceService", "get_marketplace", "reset_marketplace"]
