"""Marketplace contracts — the escrow instance and the registry that creates it."""

from escrow_marketplace.contracts.escrow import (
    FEE_DIVISOR,
    EscrowInstance,
    EscrowState,
)
from escrow_marketplace.contracts.registry import Registry, RegistryState

__all__ = [
    "FEE_DIVISOR",
    "EscrowInstance",
    "EscrowState",
    "Registry",
    "RegistryState",
]
