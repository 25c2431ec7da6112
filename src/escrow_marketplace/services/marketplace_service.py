"""Marketplace Service — application layer over one ledger and its registry.

Coordinates:
    - genesis (template registration, registry deployment, faucet)
    - every registry and instance operation, addressed by sale id
    - read-side snapshots for the API and MCP tools

The service holds no marketplace state of its own beyond a sale id -> address
index of every instance it has seen posted. The registry forgets an instance
once it is DONE, but the operator still needs to reach it to sweep the table.

Both REST routes and MCP tools call into this service, so business rules are
enforced in one place (and ultimately by the contracts themselves).
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from escrow_marketplace.config import Settings, get_settings
from escrow_marketplace.contracts import EscrowInstance, Registry
from escrow_marketplace.domain.exceptions import (
    MarketplaceError,
    SaleNotFoundError,
    StateError,
)
from escrow_marketplace.ledger import InMemoryLedger
from escrow_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from escrow_marketplace.ledger import LedgerEvent, Receipt

logger = get_logger(__name__)


class MarketplaceService:
    """Runs marketplace operations against a ledger-hosted registry."""

    def __init__(self, ledger: InMemoryLedger, registry: str, settings: Settings) -> None:
        self._ledger = ledger
        self._registry = registry
        self._settings = settings
        self._instances: dict[int, str] = {}

    @classmethod
    def bootstrap(
        cls,
        settings: Settings | None = None,
        ledger: InMemoryLedger | None = None,
    ) -> MarketplaceService:
        """Register the escrow template and deploy a fresh registry."""
        settings = settings or get_settings()
        ledger = ledger or InMemoryLedger()
        template = settings.escrow_template_ref

        if not ledger.has_template(template):
            ledger.register_template(template, EscrowInstance)
        receipt = ledger.deploy(
            settings.genesis_deployer,
            Registry,
            template,
            settings.registry_maester_list,
            settings.registry_operator,
            settings.registry_authorization_policy,
        )
        logger.info(
            "marketplace.bootstrapped",
            registry=receipt.result,
            template=template,
            policy=settings.registry_authorization_policy,
        )
        return cls(ledger, receipt.result, settings)

    @property
    def ledger(self) -> InMemoryLedger:
        return self._ledger

    @property
    def registry_address(self) -> str:
        return self._registry

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def fund(self, address: str, amount: int) -> Receipt:
        """Credit test funds to an address (development faucet)."""
        if not self._settings.faucet_enabled:
            raise MarketplaceError("Faucet is disabled", code="FAUCET_DISABLED")
        return self._ledger.mint(address, amount)

    def balance_of(self, address: str) -> int:
        return self._ledger.balance_of(address)

    # ------------------------------------------------------------------
    # Registry operations
    # ------------------------------------------------------------------

    def post_sale(
        self,
        caller: str,
        agent: str,
        portion: int,
        seller: str,
        sale_id: int,
        price: int,
    ) -> Receipt:
        receipt = self._ledger.execute(
            caller, self._registry, "post_sale", agent, portion, seller, sale_id, price
        )
        self._instances[sale_id] = receipt.result
        return receipt

    def lookup(self, sale_id: int) -> str:
        return self._ledger.view(self._registry, "lookup", sale_id)

    def update_template(self, caller: str, template: str) -> Receipt:
        return self._ledger.execute(caller, self._registry, "update_template", template)

    def update_maester(self, caller: str, keys: str | list[str]) -> Receipt:
        return self._ledger.execute(caller, self._registry, "update_maester", keys)

    def update_operator(self, caller: str, key: str) -> Receipt:
        return self._ledger.execute(caller, self._registry, "update_operator", key)

    def epstein(self, caller: str, sale_id: int) -> Receipt:
        """Force-close a sale (maester only)."""
        return self._ledger.execute(caller, self._registry, "epstein", sale_id)

    # ------------------------------------------------------------------
    # Instance operations
    # ------------------------------------------------------------------

    def bid(self, caller: str, sale_id: int, amount: int, value: int = 0) -> Receipt:
        return self._on_sale(caller, sale_id, "bid", amount, value=value)

    def hold(self, caller: str, sale_id: int) -> Receipt:
        return self._on_sale(caller, sale_id, "hold")

    def cancel(self, caller: str, sale_id: int) -> Receipt:
        return self._on_sale(caller, sale_id, "cancel")

    def refuse(self, caller: str, sale_id: int) -> Receipt:
        return self._on_sale(caller, sale_id, "refuse")

    def adjust(self, caller: str, sale_id: int, price: int) -> Receipt:
        return self._on_sale(caller, sale_id, "adjust", price)

    def accept(self, caller: str, sale_id: int) -> Receipt:
        return self._on_sale(caller, sale_id, "accept")

    def revoke(self, caller: str, sale_id: int) -> Receipt:
        return self._on_sale(caller, sale_id, "revoke")

    def sweep_the_table(self, caller: str, sale_id: int) -> Receipt:
        return self._on_sale(caller, sale_id, "sweep_the_table")

    def reassign(self, caller: str, sale_id: int, operator: str) -> Receipt:
        return self._on_sale(caller, sale_id, "reassign", operator)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def instance_address(self, sale_id: int) -> str:
        """Address of the live instance for sale_id, or of the last one posted."""
        try:
            return self.lookup(sale_id)
        except SaleNotFoundError:
            address = self._instances.get(sale_id)
            if address is None:
                raise
            return address

    def get_sale(self, sale_id: int) -> dict[str, Any]:
        """Full snapshot of a sale's instance."""
        address = self.instance_address(sale_id)
        view = self._ledger.view
        try:
            buyer = view(address, "buyer")
        except StateError:
            buyer = None
        return {
            "sale_id": sale_id,
            "address": address,
            "status": view(address, "status"),
            "price": view(address, "price"),
            "seller": view(address, "seller"),
            "agent": view(address, "agent"),
            "portion": view(address, "portion"),
            "buyer": buyer,
            "operator": view(address, "operator"),
            "registry": view(address, "registry"),
            "balance": self._ledger.balance_of(address),
            "active": sale_id in self.active_sales(),
            "allowed_events": view(address, "allowed_events"),
        }

    def get_status(self, sale_id: int) -> dict[str, Any]:
        """Lightweight status check with the operations legal next."""
        address = self.instance_address(sale_id)
        return {
            "sale_id": sale_id,
            "status": self._ledger.view(address, "status"),
            "allowed_events": self._ledger.view(address, "allowed_events"),
        }

    def active_sales(self) -> list[int]:
        return self._ledger.view(self._registry, "sales")

    def registry_info(self) -> dict[str, Any]:
        view = self._ledger.view
        return {
            "address": self._registry,
            "template": view(self._registry, "template"),
            "operator": view(self._registry, "operator"),
            "maesters": view(self._registry, "maesters"),
            "policy": self._settings.registry_authorization_policy,
            "sales": self.active_sales(),
        }

    def events(self, sale_id: int | None = None) -> list[LedgerEvent]:
        """Committed ledger events, optionally narrowed to one sale."""
        events = list(self._ledger.events)
        if sale_id is None:
            return events
        address = self._instances.get(sale_id)
        return [
            e
            for e in events
            if e.data.get("sale_id") == sale_id
            or (address is not None and address in (e.address, e.data.get("to")))
        ]

    def total_supply(self) -> int:
        return self._ledger.total_supply()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _on_sale(self, caller: str, sale_id: int, method: str, *args: Any, value: int = 0) -> Receipt:
        address = self.instance_address(sale_id)
        logger.debug("marketplace.dispatch", sale_id=sale_id, method=method, caller=caller)
        return self._ledger.execute(caller, address, method, *args, value=value)


# ---------------------------------------------------------------------------
# Process-wide instance
# ---------------------------------------------------------------------------

_marketplace: MarketplaceService | None = None
_marketplace_lock = threading.Lock()


def get_marketplace() -> MarketplaceService:
    """Return the process-wide marketplace, bootstrapping it on first use."""
    global _marketplace
    with _marketplace_lock:
        if _marketplace is None:
            _marketplace = MarketplaceService.bootstrap()
        return _marketplace


def reset_marketplace() -> None:
    """Drop the process-wide marketplace; the next get_marketplace() starts fresh."""
    global _marketplace
    with _marketplace_lock:
        _marketplace = None
        logger.info("marketplace.reset")
