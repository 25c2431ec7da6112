"""Registry — creates escrow instances and tracks the live ones by sale id.

The registry owns the sale table (id -> instance address) and is the only
thing that mutates it, through exactly three paths:
    post_sale  adds an entry after instantiating the current template
    close      removes an entry when the mapped instance reports it finished
    epstein    removes an entry and forces the instance to DONE

It never moves funds itself. Two administrative tiers guard the rest:
    maester(s) force-close sales and replace the template
    operator   ("tsuriai") receives fees and rotates the maester(s)
Who counts as a maester is decided by the pluggable AuthorizationPolicy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from escrow_marketplace.domain.authorization import AuthorizationPolicyFactory
from escrow_marketplace.domain.enums import AuthorizationPolicyType, EventType
from escrow_marketplace.domain.exceptions import (
    AuthorizationError,
    DuplicateSaleError,
    InstantiationError,
    InvalidAmountError,
    InvalidKeyError,
    SaleNotFoundError,
)
from escrow_marketplace.ledger.contract import Contract, external, view
from escrow_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from escrow_marketplace.ledger.memory import InMemoryLedger

logger = get_logger(__name__)


class RegistryState(BaseModel):
    """Mutable fields of the registry."""

    contracts: dict[int, str] = Field(default_factory=dict)
    template: str
    maesters: list[str]
    operator: str


def _address(value: object, name: str) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidKeyError(f"Invalid {name} address: {value!r}")
    return value


class Registry(Contract):
    """Sale registry and escrow factory."""

    def __init__(
        self,
        ledger: InMemoryLedger,
        address: str,
        template: str,
        maesters: str | Sequence[str],
        operator: str,
        policy: str = AuthorizationPolicyType.SINGLE.value,
    ) -> None:
        super().__init__(ledger, address)
        self.policy = AuthorizationPolicyFactory.create(policy)
        self.state = RegistryState(
            template=_address(template, "template"),
            maesters=self.policy.normalize(maesters),
            operator=_address(operator, "operator"),
        )

    # ------------------------------------------------------------------
    # Sale lifecycle
    # ------------------------------------------------------------------

    @external
    def post_sale(
        self,
        agent: str,
        portion: int,
        seller: str,
        sale_id: int,
        price: int,
    ) -> str:
        """Instantiate a new escrow instance for `sale_id` and register it."""
        if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
            raise InvalidAmountError(f"price must be a positive integer, got {price!r}")
        if not isinstance(portion, int) or isinstance(portion, bool) or portion < 0:
            raise InvalidAmountError(f"portion must be a non-negative integer, got {portion!r}")
        if sale_id in self.state.contracts:
            raise DuplicateSaleError(sale_id)

        template = self.state.template
        handle = self._instantiate(
            template,
            self.state.operator,
            self.address,
            agent,
            portion,
            seller,
            sale_id,
            price,
        )
        if handle is None:
            raise InstantiationError(template, sale_id)

        self.state.contracts[sale_id] = handle
        self._emit(
            EventType.SALE_POSTED,
            sale_id=sale_id,
            instance=handle,
            seller=seller,
            agent=agent,
            portion=portion,
            price=price,
            template=template,
        )
        logger.info("registry.sale_posted", sale_id=sale_id, instance=handle, price=price)
        return handle

    @external
    def close(self, sale_id: int) -> bool:
        """Deregister a sale at the request of its own instance.

        An unmapped id is reported with False instead of aborting, since an
        instance closing twice is an expected race and not a fault.
        """
        handle = self.state.contracts.get(sale_id)
        if handle is None:
            logger.info("registry.close_unmapped", sale_id=sale_id, caller=self.msg.sender)
            return False
        if self.msg.sender != handle:
            raise AuthorizationError(self.msg.sender, f"instance {handle}")

        del self.state.contracts[sale_id]
        self._emit(EventType.SALE_CLOSED, sale_id=sale_id, instance=handle)
        logger.info("registry.sale_closed", sale_id=sale_id, instance=handle)
        return True

    @external
    def epstein(self, sale_id: int) -> bool:
        """Force-close a sale: drop it from the table and drive it to DONE."""
        caller = self.msg.sender
        if not self.policy.is_maester(self.state.maesters, caller):
            raise AuthorizationError(caller, "maester")

        handle = self.state.contracts.pop(sale_id, None)
        if handle is None:
            return False

        self._call(handle, "do_a_backflip")
        self._emit(EventType.SALE_FORCE_CLOSED, sale_id=sale_id, instance=handle, maester=caller)
        logger.warning("registry.sale_force_closed", sale_id=sale_id, instance=handle, maester=caller)
        return True

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @external
    def update_template(self, template: str) -> None:
        """Replace the template used by future post_sale calls."""
        caller = self.msg.sender
        if not self.policy.is_maester(self.state.maesters, caller):
            raise AuthorizationError(caller, "maester")
        previous = self.state.template
        self.state.template = _address(template, "template")
        self._emit(EventType.TEMPLATE_UPDATED, previous=previous, template=template)
        logger.info("registry.template_updated", previous=previous, template=template)

    @external
    def update_maester(self, keys: str | Sequence[str]) -> None:
        """Rotate the maester key(s); the accepted shape depends on the policy."""
        caller = self.msg.sender
        if not self.policy.can_manage(self.state.maesters, self.state.operator, caller):
            raise AuthorizationError(caller, "operator")
        previous = list(self.state.maesters)
        self.state.maesters = self.policy.normalize(keys)
        self._emit(EventType.MAESTER_UPDATED, previous=previous, maesters=list(self.state.maesters))
        logger.info("registry.maester_updated", policy=self.policy.name, count=len(self.state.maesters))

    @external
    def update_operator(self, key: str) -> None:
        """Rotate the operator (tsuriai) and repoint every live sale's fees."""
        caller = self.msg.sender
        if caller != self.state.operator:
            raise AuthorizationError(caller, "operator")
        key = _address(key, "operator")
        previous = self.state.operator
        self.state.operator = key
        for handle in self.state.contracts.values():
            self._call(handle, "reassign", key)
        self._emit(EventType.OPERATOR_UPDATED, previous=previous, operator=key)
        logger.info(
            "registry.operator_updated",
            previous=previous,
            operator=key,
            reassigned=len(self.state.contracts),
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @view
    def lookup(self, sale_id: int) -> str:
        handle = self.state.contracts.get(sale_id)
        if handle is None:
            raise SaleNotFoundError(sale_id)
        return handle

    @view
    def template(self) -> str:
        return self.state.template

    @view
    def operator(self) -> str:
        return self.state.operator

    @view
    def maesters(self) -> list[str]:
        return list(self.state.maesters)

    @view
    def is_maester(self, address: str) -> bool:
        return self.policy.is_maester(self.state.maesters, address)

    @view
    def sales(self) -> list[int]:
        return sorted(self.state.contracts)
