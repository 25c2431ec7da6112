"""Repository for the audit journal.

Accepts an AsyncSession and never manages its own transaction; committing is
the caller's responsibility.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from escrow_marketplace.infrastructure.database.orm_models import LedgerEventRecord

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_marketplace.ledger.memory import LedgerEvent


class EventRepository:
    """Data access for the append-only ledger event journal."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event: LedgerEvent, actor: str | None = None) -> LedgerEventRecord:
        """Append one committed ledger event. This is the ONLY write operation."""
        sale_id = event.data.get("sale_id")
        row = LedgerEventRecord(
            tx_id=event.tx_id,
            sequence=event.sequence,
            contract_address=event.address,
            event_type=event.event_type.value,
            sale_id=sale_id if isinstance(sale_id, int) else None,
            actor=actor,
            payload=dict(event.data),
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get_by_sale(self, sale_id: int) -> list[LedgerEventRecord]:
        """Fetch every event for a sale in journal order."""
        result = await self._session.execute(
            select(LedgerEventRecord)
            .where(LedgerEventRecord.sale_id == sale_id)
            .order_by(LedgerEventRecord.sequence.asc())
        )
        return list(result.scalars().all())

    async def get_by_tx(self, tx_id: str) -> list[LedgerEventRecord]:
        """Fetch the events committed by one transaction."""
        result = await self._session.execute(
            select(LedgerEventRecord)
            .where(LedgerEventRecord.tx_id == tx_id)
            .order_by(LedgerEventRecord.sequence.asc())
        )
        return list(result.scalars().all())
