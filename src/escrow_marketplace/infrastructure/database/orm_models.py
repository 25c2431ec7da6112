"""SQLAlchemy 2.0 ORM models for the marketplace audit journal.

One table:
    ledger_events — append-only copy of every event the ledger committed.

Contract state is NOT stored here; it lives in the settlement layer. This table
answers "what happened to sale 7, and in which transaction" after the fact.

Design decisions:
    - UUID primary keys; (tx_id, sequence) is unique per ledger journal.
    - Portable JSON payload (JSONB on PostgreSQL, JSON elsewhere) so the
      same model runs against SQLite in development and tests.
    - sale_id and actor are denormalized out of the payload for indexing.
    - No UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class LedgerEventRecord(Base):
    """Immutable audit record of a committed ledger event."""

    __tablename__ = "ledger_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    tx_id: Mapped[str] = mapped_column(
        String(66),
        nullable=False,
        comment="Ledger transaction that committed this event",
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position in the ledger journal",
    )
    contract_address: Mapped[str] = mapped_column(
        String(42),
        nullable=False,
        comment="Address that emitted the event",
    )
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., SALE_POSTED, SALE_ACCEPTED)",
    )
    sale_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Sale the event concerns, if any",
    )
    actor: Mapped[str | None] = mapped_column(
        String(42),
        nullable=True,
        comment="Account that signed the transaction",
    )
    payload: Mapped[dict | None] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("tx_id", "sequence", name="uq_ledger_event_tx_sequence"),
        Index("idx_ledger_event_sale", "sale_id"),
        Index("idx_ledger_event_type", "event_type"),
        Index("idx_ledger_event_address", "contract_address"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEventRecord seq={self.sequence} type={self.event_type} "
            f"sale={self.sale_id}>"
        )
