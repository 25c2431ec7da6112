"""Shared test fixtures for the escrow marketplace test suite.

Provides:
    - Well-known party addresses
    - A ledger with the escrow template registered and a registry deployed
    - A helper for posting a sale
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import pytest

from escrow_marketplace.contracts import EscrowInstance, Registry
from escrow_marketplace.ledger import InMemoryLedger

TEMPLATE = "escrow-instance/v1"

DEPLOYER = "0x" + "de" * 20
MAESTER = "0x" + "a1" * 20
OPERATOR = "0x" + "0f" * 20
SELLER = "0x" + "5e" * 20
AGENT = "0x" + "ae" * 20
BUYER = "0x" + "b1" * 20
RIVAL = "0x" + "b2" * 20
STRANGER = "0x" + "99" * 20


class Market:
    """A ledger plus registry, with shortcuts for the common calls."""

    def __init__(self, ledger: InMemoryLedger, registry: str) -> None:
        self.ledger = ledger
        self.registry = registry

    def post(self, sale_id: int = 1, price: int = 100, portion: int = 10) -> str:
        receipt = self.ledger.execute(
            SELLER, self.registry, "post_sale", AGENT, portion, SELLER, sale_id, price
        )
        return receipt.result

    def call(self, sender: str, address: str, method: str, *args, value: int = 0):
        return self.ledger.execute(sender, address, method, *args, value=value).result

    def view(self, address: str, method: str, *args):
        return self.ledger.view(address, method, *args)

    def balance(self, address: str) -> int:
        return self.ledger.balance_of(address)


def build_market(policy: str = "single", maesters: list[str] | None = None) -> Market:
    ledger = InMemoryLedger()
    ledger.register_template(TEMPLATE, EscrowInstance)
    receipt = ledger.deploy(
        DEPLOYER, Registry, TEMPLATE, maesters or [MAESTER], OPERATOR, policy
    )
    return Market(ledger, receipt.result)


@pytest.fixture
def market() -> Market:
    """A fresh marketplace with BUYER and RIVAL funded with 1000 each."""
    m = build_market()
    m.ledger.mint(BUYER, 1_000)
    m.ledger.mint(RIVAL, 1_000)
    return m


@pytest.fixture
def list_market() -> Market:
    """A marketplace using the maester-list policy."""
    return build_market(policy="list", maesters=[MAESTER, STRANGER])
