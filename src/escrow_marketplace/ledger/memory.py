"""In-memory reference settlement layer.

Provides the primitives the marketplace contracts depend on:
    - atomic value transfer between addresses
    - fresh balance queries
    - authenticated caller identity (direct sender vs. transaction origin)
    - atomic instantiation of a contract from a registered template

Every call (top-level or nested) opens a checkpoint that records the prior
value of each balance it touches and the state of each contract it enters.
If anything inside raises, the checkpoint is rolled back, so a rejected
operation leaves no partial effect. A checkpoint that succeeds is folded into
its parent, keeping the earliest recorded value per key. Calls are serialized by a re-entrant lock;
nested calls from contract code re-enter it.

This is a simulation harness. It does not implement consensus, signatures, or
transaction ordering beyond "one call at a time".

Usage:
    ledger = InMemoryLedger()
    ledger.mint(alice, 1_000)
    receipt = ledger.deploy(alice, Registry, "escrow/v1", [maester], operator)
    registry = receipt.result
    ledger.execute(alice, registry, "post_sale", agent, 10, alice, 1, 100)
"""

from __future__ import annotations

import hashlib
import threading
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from escrow_marketplace.domain.enums import EventType
from escrow_marketplace.domain.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    UnknownContractError,
)
from escrow_marketplace.ledger.contract import (
    EXTERNAL,
    VIEW,
    CallContext,
    entry_kind,
    is_payable,
)
from escrow_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from pydantic import BaseModel

    from escrow_marketplace.ledger.contract import Contract

logger = get_logger(__name__)

SYSTEM_ADDRESS = "0x" + "0" * 40


def derive_address(creator: str, nonce: int) -> str:
    """Deterministic 20-byte hex address for the nonce-th contract made by creator."""
    digest = hashlib.sha256(f"{creator}:{nonce}".encode()).hexdigest()
    return "0x" + digest[:40]


@dataclass(frozen=True)
class LedgerEvent:
    """A committed event in the ledger journal."""

    tx_id: str
    sequence: int
    address: str
    event_type: EventType
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "tx_id": self.tx_id,
            "sequence": self.sequence,
            "address": self.address,
            "event_type": self.event_type.value,
            "data": self.data,
        }


@dataclass(frozen=True)
class Receipt:
    """Outcome of a committed top-level transaction."""

    tx_id: str
    sender: str
    target: str
    method: str
    result: Any = None
    events: tuple[LedgerEvent, ...] = ()


@dataclass(frozen=True)
class _Frame:
    context: CallContext
    address: str


@dataclass
class _Checkpoint:
    """Prior values of everything a call changed, keyed by address.

    None in `balances` or `nonces` means the key did not exist yet.
    """

    pending: int
    balances: dict[str, int | None] = field(default_factory=dict)
    states: dict[str, BaseModel] = field(default_factory=dict)
    nonces: dict[str, int | None] = field(default_factory=dict)
    created: list[str] = field(default_factory=list)


class InMemoryLedger:
    """Process-local ledger holding balances, contracts and the event journal."""

    def __init__(self) -> None:
        self._balances: dict[str, int] = {}
        self._contracts: dict[str, Contract] = {}
        self._templates: dict[str, type[Contract]] = {}
        self._nonces: dict[str, int] = {}
        self._frames: list[_Frame] = []
        self._checkpoints: list[_Checkpoint] = []
        self._pending: list[tuple[str, EventType, dict]] = []
        self._journal: list[LedgerEvent] = []
        self._tx_count = 0
        # Salts tx ids so two ledgers never share one in the audit journal.
        self._ledger_id = uuid.uuid4().hex
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def context(self) -> CallContext:
        """Identity of the innermost executing call."""
        if not self._frames:
            raise RuntimeError("No call is executing on the ledger")
        return self._frames[-1].context

    @property
    def events(self) -> tuple[LedgerEvent, ...]:
        """Committed events, oldest first."""
        return tuple(self._journal)

    def balance_of(self, address: str) -> int:
        return self._balances.get(address, 0)

    def total_supply(self) -> int:
        return sum(self._balances.values())

    def contract_at(self, address: str) -> Contract:
        contract = self._contracts.get(address)
        if contract is None:
            raise UnknownContractError(address)
        return contract

    def has_template(self, template: str) -> bool:
        return template in self._templates

    # ------------------------------------------------------------------
    # Genesis / system operations
    # ------------------------------------------------------------------

    def register_template(self, template: str, contract_cls: type[Contract]) -> None:
        """Make contract_cls instantiable under the reference `template`."""
        with self._lock:
            self._templates[template] = contract_cls
            logger.info("ledger.template_registered", template=template, cls=contract_cls.__name__)

    def mint(self, address: str, amount: int) -> Receipt:
        """Credit new funds to an address (genesis allocation or dev faucet)."""
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmountError(f"Mint amount must be a positive integer, got {amount!r}")
        with self._lock:
            self._ensure_idle()
            tx_id = self._next_tx_id(SYSTEM_ADDRESS, address, "mint")
            self._balances[address] = self.balance_of(address) + amount
            self._pending.append((address, EventType.MINT, {"to": address, "amount": amount}))
            events = self._commit_pending(tx_id)
            logger.info("ledger.minted", to=address, amount=amount)
            return Receipt(tx_id, SYSTEM_ADDRESS, address, "mint", amount, events)

    def deploy(self, sender: str, contract_cls: type[Contract], *args: Any) -> Receipt:
        """Deploy a contract in its own transaction. The receipt result is its address."""
        with self._lock:
            self._ensure_idle()
            tx_id = self._next_tx_id(sender, contract_cls.__name__, "deploy")
            self._begin()
            try:
                address = self._create(sender, sender, contract_cls, args)
            except Exception as exc:
                self._rollback()
                logger.warning("ledger.deploy_reverted", cls=contract_cls.__name__, error=str(exc))
                raise
            self._release()
            events = self._commit_pending(tx_id)
            logger.info("ledger.deployed", address=address, cls=contract_cls.__name__)
            return Receipt(tx_id, sender, address, "deploy", address, events)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def execute(
        self,
        sender: str,
        address: str,
        method: str,
        *args: Any,
        value: int = 0,
    ) -> Receipt:
        """Run a top-level transaction and return its receipt.

        Raises whatever the contract raised; in that case nothing changed.
        """
        with self._lock:
            self._ensure_idle()
            tx_id = self._next_tx_id(sender, address, method)
            try:
                result = self.call(sender, address, method, *args, value=value)
            except Exception as exc:
                logger.warning(
                    "ledger.tx_reverted",
                    tx_id=tx_id,
                    sender=sender,
                    target=address,
                    method=method,
                    error=str(exc),
                )
                raise
            events = self._commit_pending(tx_id)
            logger.debug(
                "ledger.tx_committed",
                tx_id=tx_id,
                sender=sender,
                target=address,
                method=method,
                events=len(events),
            )
            return Receipt(tx_id, sender, address, method, result, events)

    def call(
        self,
        sender: str,
        address: str,
        method: str,
        *args: Any,
        value: int = 0,
    ) -> Any:
        """Invoke an @external method, crediting `value` from sender first.

        Used directly by contract code for nested calls; the outer transaction
        goes through execute(). All effects of this call are undone if it raises.
        """
        with self._lock:
            contract = self.contract_at(address)
            if entry_kind(contract, method) != EXTERNAL:
                raise UnknownContractError(address, method)
            if not isinstance(value, int) or value < 0:
                raise InvalidAmountError(f"Attached value must be a non-negative integer, got {value!r}")
            if value and not is_payable(contract, method):
                raise InvalidAmountError(f"{method} does not accept attached value")

            origin = self._frames[0].context.origin if self._frames else sender
            self._begin()
            self._save_state(address)
            self._frames.append(_Frame(CallContext(sender, origin, value), address))
            try:
                self._move(sender, address, value)
                result = getattr(contract, method)(*args)
            except Exception:
                self._rollback()
                raise
            finally:
                self._frames.pop()
            self._release()
            return result

    def view(self, address: str, method: str, *args: Any) -> Any:
        """Invoke a @view method. Views never open a transaction."""
        with self._lock:
            contract = self.contract_at(address)
            if entry_kind(contract, method) != VIEW:
                raise UnknownContractError(address, method)
            return getattr(contract, method)(*args)

    # ------------------------------------------------------------------
    # Primitives used by contract code
    # ------------------------------------------------------------------

    def transfer(self, src: str, dst: str, amount: int) -> None:
        """Move funds out of the executing contract's own custody."""
        if not self._frames or self._frames[-1].address != src:
            raise RuntimeError(f"Only the executing contract may transfer from {src}")
        self._move(src, dst, amount)

    def instantiate(self, template: str, *args: Any) -> str | None:
        """Create a contract from a registered template on behalf of the caller.

        Returns the new address, or None if the template is unknown or its
        constructor rejects the arguments. On None nothing has changed.
        """
        if not self._frames:
            raise RuntimeError("instantiate() must be called from contract code")
        contract_cls = self._templates.get(template)
        if contract_cls is None:
            logger.warning("ledger.unknown_template", template=template)
            return None
        frame = self._frames[-1]
        self._begin()
        try:
            address = self._create(frame.address, frame.context.origin, contract_cls, args)
        except Exception as exc:
            self._rollback()
            logger.warning("ledger.instantiation_failed", template=template, error=str(exc))
            return None
        self._release()
        return address

    def emit(self, address: str, event_type: EventType, **data: Any) -> None:
        """Queue an event; it is journaled only if the transaction commits."""
        if not self._frames:
            raise RuntimeError("emit() must be called from contract code")
        self._pending.append((address, event_type, data))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self._frames:
            raise RuntimeError("A transaction is already executing; use call() from contract code")

    def _next_tx_id(self, sender: str, target: str, method: str) -> str:
        self._tx_count += 1
        raw = f"{self._ledger_id}:{self._tx_count}:{sender}:{target}:{method}"
        return "0x" + hashlib.sha256(raw.encode()).hexdigest()

    def _move(self, src: str, dst: str, amount: int) -> None:
        if not isinstance(amount, int) or amount < 0:
            raise InvalidAmountError(f"Transfer amount must be a non-negative integer, got {amount!r}")
        if amount == 0:
            return
        available = self.balance_of(src)
        if available < amount:
            raise InsufficientFundsError(required=amount, available=available)
        self._save_balance(src)
        self._save_balance(dst)
        self._balances[src] = available - amount
        self._balances[dst] = self.balance_of(dst) + amount
        self._pending.append(
            (src, EventType.TRANSFER, {"from": src, "to": dst, "amount": amount})
        )

    def _create(
        self,
        creator: str,
        origin: str,
        contract_cls: type[Contract],
        args: tuple,
    ) -> str:
        checkpoint = self._checkpoints[-1]
        checkpoint.nonces.setdefault(creator, self._nonces.get(creator))
        nonce = self._nonces.get(creator, 0)
        self._nonces[creator] = nonce + 1
        address = derive_address(creator, nonce)
        self._frames.append(_Frame(CallContext(creator, origin, 0), address))
        try:
            contract = contract_cls(self, address, *args)
        finally:
            self._frames.pop()
        self._contracts[address] = contract
        checkpoint.created.append(address)
        self._pending.append(
            (address, EventType.CONTRACT_DEPLOYED, {"creator": creator, "cls": contract_cls.__name__})
        )
        return address

    def _begin(self) -> None:
        self._checkpoints.append(_Checkpoint(pending=len(self._pending)))

    def _save_balance(self, address: str) -> None:
        if self._checkpoints:
            self._checkpoints[-1].balances.setdefault(address, self._balances.get(address))

    def _save_state(self, address: str) -> None:
        # Only the entered contract is copied; its code cannot reach other contracts' state.
        saved = self._checkpoints[-1].states
        if address not in saved:
            saved[address] = self._contracts[address].state.model_copy(deep=True)

    def _release(self) -> None:
        """Fold a successful checkpoint into its parent, or drop it at top level."""
        checkpoint = self._checkpoints.pop()
        if not self._checkpoints:
            return
        parent = self._checkpoints[-1]
        for address, balance in checkpoint.balances.items():
            parent.balances.setdefault(address, balance)
        for address, state in checkpoint.states.items():
            parent.states.setdefault(address, state)
        for creator, nonce in checkpoint.nonces.items():
            parent.nonces.setdefault(creator, nonce)
        parent.created.extend(checkpoint.created)

    def _rollback(self) -> None:
        checkpoint = self._checkpoints.pop()
        for address in checkpoint.created:
            self._contracts.pop(address, None)
        for address, state in checkpoint.states.items():
            if address in self._contracts:
                self._contracts[address].state = state
        for address, balance in checkpoint.balances.items():
            if balance is None:
                self._balances.pop(address, None)
            else:
                self._balances[address] = balance
        for creator, nonce in checkpoint.nonces.items():
            if nonce is None:
                self._nonces.pop(creator, None)
            else:
                self._nonces[creator] = nonce
        del self._pending[checkpoint.pending:]

    def _commit_pending(self, tx_id: str) -> tuple[LedgerEvent, ...]:
        start = len(self._journal)
        events = tuple(
            LedgerEvent(tx_id, start + i, address, event_type, data)
            for i, (address, event_type, data) in enumerate(self._pending)
        )
        self._journal.extend(events)
        self._pending.clear()
        return events
