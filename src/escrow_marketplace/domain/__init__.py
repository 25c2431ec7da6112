"""Domain layer — pure marketplace rules with zero framework dependencies."""

from escrow_marketplace.domain.authorization import (
    AuthorizationPolicy,
    AuthorizationPolicyFactory,
    MaesterListPolicy,
    SingleMaesterPolicy,
)
from escrow_marketplace.domain.enums import (
    AuthorizationPolicyType,
    EventType,
    SaleStatus,
)
from escrow_marketplace.domain.exceptions import (
    AuthorizationError,
    InvalidStateTransitionError,
    MarketplaceError,
    SaleNotFoundError,
    StateError,
)
from escrow_marketplace.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "AuthorizationPolicy",
    "AuthorizationPolicyFactory",
    "MaesterListPolicy",
    "SingleMaesterPolicy",
    "AuthorizationPolicyType",
    "EventType",
    "SaleStatus",
    "AuthorizationError",
    "InvalidStateTransitionError",
    "MarketplaceError",
    "SaleNotFoundError",
    "StateError",
    "EscrowStateMachine",
    "validate_transition",
]
