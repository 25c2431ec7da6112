"""Contract base class and entry-point decorators.

A contract is a Python object living at a ledger address. Its mutable fields
live in a single pydantic model (`self.state`) so the ledger can save and
restore them as a unit when a call reverts. Balances are never stored on the
contract; `self.balance` reads the ledger every time.

Only methods decorated with @external (state-changing) or @view (read-only)
are reachable through the ledger. Everything else is internal. An external
method accepts attached funds only when declared `@external(payable=True)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel

    from escrow_marketplace.domain.enums import EventType
    from escrow_marketplace.ledger.memory import InMemoryLedger

ENTRY_ATTR = "__ledger_entry__"
PAYABLE_ATTR = "__ledger_payable__"
EXTERNAL = "external"
VIEW = "view"


def external(fn: Callable | None = None, *, payable: bool = False) -> Callable:
    """Mark a contract method as a state-changing entry point.

    Usable bare (`@external`) or with arguments (`@external(payable=True)`).
    """

    def mark(method: Callable) -> Callable:
        setattr(method, ENTRY_ATTR, EXTERNAL)
        setattr(method, PAYABLE_ATTR, payable)
        return method

    if fn is None:
        return mark
    return mark(fn)


def view(fn: Callable) -> Callable:
    """Mark a contract method as a read-only query."""
    setattr(fn, ENTRY_ATTR, VIEW)
    return fn


def entry_kind(contract: Contract, method: str) -> str | None:
    """Return "external", "view" or None for a method name on a contract."""
    fn = getattr(type(contract), method, None)
    return getattr(fn, ENTRY_ATTR, None)


def is_payable(contract: Contract, method: str) -> bool:
    fn = getattr(type(contract), method, None)
    return bool(getattr(fn, PAYABLE_ATTR, False))


@dataclass(frozen=True)
class CallContext:
    """Authenticated identity of the current call.

    Attributes:
        sender: The direct invoker (an account or a calling contract).
        origin: The account that initiated the top-level transaction.
        value: Funds attached to this call, already credited to the callee.
    """

    sender: str
    origin: str
    value: int = 0


class Contract:
    """Base class for everything deployed on the ledger."""

    state: BaseModel

    def __init__(self, ledger: InMemoryLedger, address: str) -> None:
        self.ledger = ledger
        self.address = address

    @property
    def msg(self) -> CallContext:
        """Context of the call currently executing on this contract."""
        return self.ledger.context

    @property
    def balance(self) -> int:
        """Funds in this contract's custody, read fresh from the ledger."""
        return self.ledger.balance_of(self.address)

    def _send(self, to: str, amount: int) -> int:
        if amount > 0:
            self.ledger.transfer(self.address, to, amount)
        return amount

    def _sweep(self, to: str) -> int:
        """Send the entire current balance to `to`. Returns the amount moved."""
        return self._send(to, self.balance)

    def _call(self, address: str, method: str, *args: Any, value: int = 0) -> Any:
        return self.ledger.call(self.address, address, method, *args, value=value)

    def _instantiate(self, template: str, *args: Any) -> str | None:
        return self.ledger.instantiate(template, *args)

    def _emit(self, event_type: EventType, **data: Any) -> None:
        self.ledger.emit(self.address, event_type, **data)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} address={self.address}>"
