"""Journal Service — persists committed ledger events to the audit table.

The in-memory ledger keeps its own journal; this service copies a
transaction's events into the database after the transaction has committed,
so the audit trail outlives the process. A reverted transaction has no
receipt and therefore never reaches the table.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_marketplace.infrastructure.database.repositories import EventRepository
from escrow_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_marketplace.infrastructure.database.orm_models import LedgerEventRecord
    from escrow_marketplace.ledger import Receipt

logger = get_logger(__name__)


class JournalService:
    """Writes and reads the persistent audit journal."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._event_repo = EventRepository(session)

    async def record_receipt(self, receipt: Receipt) -> int:
        """Append every event of a committed transaction. Returns the row count.

        On failure the session is rolled back before the error propagates, so
        no partial transaction is left behind.
        """
        try:
            for event in receipt.events:
                await self._event_repo.record(event, actor=receipt.sender)
        except Exception:
            await self._session.rollback()
            raise
        logger.debug(
            "journal.recorded",
            tx_id=receipt.tx_id,
            method=receipt.method,
            events=len(receipt.events),
        )
        return len(receipt.events)

    async def get_sale_history(self, sale_id: int) -> list[LedgerEventRecord]:
        return await self._event_repo.get_by_sale(sale_id)

    async def get_transaction(self, tx_id: str) -> list[LedgerEventRecord]:
        return await self._event_repo.get_by_tx(tx_id)
