"""Domain enumerations for the Escrow Marketplace.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class SaleStatus(enum.StrEnum):
    """Lifecycle states of an escrow instance.

    State transitions are enforced by the EscrowStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    OPEN = "OPEN"
    NEGO = "NEGO"
    HOLD = "HOLD"
    DONE = "DONE"


class EventType(enum.StrEnum):
    """Types of events recorded in the ledger journal.

    Every committed state change emits at least one event.
    The journal is append-only and mirrors what the ledger committed.
    """

    # Ledger events
    TRANSFER = "TRANSFER"
    MINT = "MINT"
    CONTRACT_DEPLOYED = "CONTRACT_DEPLOYED"

    # Registry events
    SALE_POSTED = "SALE_POSTED"
    SALE_CLOSED = "SALE_CLOSED"
    SALE_FORCE_CLOSED = "SALE_FORCE_CLOSED"
    TEMPLATE_UPDATED = "TEMPLATE_UPDATED"
    MAESTER_UPDATED = "MAESTER_UPDATED"
    OPERATOR_UPDATED = "OPERATOR_UPDATED"

    # Negotiation events
    BID_PLACED = "BID_PLACED"
    BID_HELD = "BID_HELD"
    BID_CANCELLED = "BID_CANCELLED"
    BID_REFUSED = "BID_REFUSED"
    PRICE_ADJUSTED = "PRICE_ADJUSTED"

    # Settlement events
    SALE_ACCEPTED = "SALE_ACCEPTED"
    SALE_REVOKED = "SALE_REVOKED"
    TABLE_SWEPT = "TABLE_SWEPT"
    BACKFLIP = "BACKFLIP"
    OPERATOR_REASSIGNED = "OPERATOR_REASSIGNED"


class AuthorizationPolicyType(enum.StrEnum):
    """Shapes of the registry's administrative authorization.

    Selected via settings.registry_authorization_policy.
    """

    SINGLE = "single"
    LIST = "list"
