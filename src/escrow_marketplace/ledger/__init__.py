"""Settlement layer — the in-memory reference ledger and the contract base class."""

from escrow_marketplace.ledger.contract import (
    CallContext,
    Contract,
    external,
    view,
)
from escrow_marketplace.ledger.memory import (
    SYSTEM_ADDRESS,
    InMemoryLedger,
    LedgerEvent,
    Receipt,
    derive_address,
)

__all__ = [
    "CallContext",
    "Contract",
    "external",
    "view",
    "SYSTEM_ADDRESS",
    "InMemoryLedger",
    "LedgerEvent",
    "Receipt",
    "derive_address",
]
