"""Escrow Instance — the per-sale negotiation and settlement contract.

One instance exists per sale. It custodies the buyer's funds while the seller
and buyer negotiate, and pays everyone out when the seller accepts.

Legal transitions come from EscrowStateMachine; this module adds the caller
and balance guards and moves the money. Every method checks, in order:
state, caller, amounts. The ledger reverts the whole call on any error.

Settlement cascade (accept), each step re-reading the balance:
    1. refund anything above the price to the buyer
    2. fee = balance // FEE_DIVISOR to the operator
    3. commission = balance // portion to the agent (if portion > 0)
    4. everything left to the seller
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel
from statemachine.exceptions import TransitionNotAllowed

from escrow_marketplace.domain.enums import EventType, SaleStatus
from escrow_marketplace.domain.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidKeyError,
    InvalidStateTransitionError,
    StateError,
)
from escrow_marketplace.domain.state_machine import EscrowStateMachine, validate_transition
from escrow_marketplace.ledger.contract import Contract, external, view
from escrow_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from escrow_marketplace.ledger.memory import InMemoryLedger

logger = get_logger(__name__)

FEE_DIVISOR = 50


class EscrowState(BaseModel):
    """Mutable fields of an escrow instance. The balance lives on the ledger."""

    sale_id: int
    seller: str
    agent: str
    portion: int
    price: int
    buyer: str | None = None
    status: SaleStatus = SaleStatus.OPEN
    operator: str
    registry: str


def _positive_int(value: object, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidAmountError(f"{name} must be a positive integer, got {value!r}")
    return value


class EscrowInstance(Contract):
    """Per-sale escrow; created only by Registry.post_sale."""

    def __init__(
        self,
        ledger: InMemoryLedger,
        address: str,
        operator: str,
        registry: str,
        agent: str,
        portion: int,
        seller: str,
        sale_id: int,
        price: int,
    ) -> None:
        super().__init__(ledger, address)
        _positive_int(price, "price")
        if not isinstance(portion, int) or portion < 0:
            raise InvalidAmountError(f"portion must be a non-negative integer, got {portion!r}")
        self.state = EscrowState(
            sale_id=sale_id,
            seller=seller,
            agent=agent,
            portion=portion,
            price=price,
            operator=operator,
            registry=registry,
        )

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    @external(payable=True)
    def bid(self, amount: int) -> None:
        """Open a negotiation (OPEN) or restate the offer (NEGO/HOLD).

        From OPEN anyone may bid by attaching at least the price. From
        NEGO/HOLD only the current buyer may, and anything held above
        `amount` is refunded.
        """
        caller = self.msg.sender
        new_status = self._fire("bid")
        price = self.state.price

        if self.state.status == SaleStatus.OPEN:
            self._require_amount(amount)
            if self.msg.value < price:
                raise InsufficientFundsError(required=price, available=self.msg.value)
            self.state.buyer = caller
            refund = 0
        else:
            self._require_buyer(caller)
            self._require_amount(amount)
            balance = self.balance
            if balance < price:
                raise InsufficientFundsError(required=price, available=balance)
            refund = self._send(caller, balance - amount) if balance > amount else 0

        self.state.status = new_status
        self._emit(
            EventType.BID_PLACED,
            sale_id=self.state.sale_id,
            buyer=caller,
            amount=amount,
            attached=self.msg.value,
            refund=refund,
        )
        logger.info(
            "escrow.bid_placed",
            sale_id=self.state.sale_id,
            buyer=caller,
            amount=amount,
            refund=refund,
        )

    @external
    def hold(self) -> None:
        """Buyer pauses the negotiation (NEGO -> HOLD)."""
        new_status = self._fire("hold")
        self._require_buyer(self.msg.sender)
        self.state.status = new_status
        self._emit(EventType.BID_HELD, sale_id=self.state.sale_id, buyer=self.msg.sender)
        logger.info("escrow.held", sale_id=self.state.sale_id)

    @external
    def cancel(self) -> None:
        """Buyer walks away, paying the operator fee on the way out."""
        new_status = self._fire("cancel")
        buyer = self._require_buyer(self.msg.sender)

        fee = self._send(self.state.operator, self.balance // FEE_DIVISOR)
        refund = self._sweep(buyer)

        self.state.buyer = None
        self.state.status = new_status
        self._emit(
            EventType.BID_CANCELLED,
            sale_id=self.state.sale_id,
            buyer=buyer,
            fee=fee,
            refund=refund,
        )
        logger.info("escrow.cancelled", sale_id=self.state.sale_id, fee=fee, refund=refund)

    @external
    def refuse(self) -> None:
        """Seller rejects the current buyer, who gets everything back."""
        new_status = self._fire("refuse")
        self._require_seller(self.msg.sender)
        buyer = self.state.buyer

        refund = self._sweep(buyer)

        self.state.buyer = None
        self.state.status = new_status
        self._emit(EventType.BID_REFUSED, sale_id=self.state.sale_id, buyer=buyer, refund=refund)
        logger.info("escrow.refused", sale_id=self.state.sale_id, refund=refund)

    @external
    def adjust(self, price: int) -> None:
        """Seller changes the price of a live sale.

        With a buyer, funds held above the new price go back to the buyer.
        Without one, any stray balance goes to the operator.
        """
        new_status = self._fire("adjust")
        self._require_seller(self.msg.sender)
        _positive_int(price, "price")

        buyer = self.state.buyer
        if buyer is not None:
            balance = self.balance
            refund = self._send(buyer, balance - price) if balance > price else 0
            swept = 0
        else:
            refund = 0
            # TODO: confirm whether a stray balance with no buyer should go back to the seller
            swept = self._sweep(self.state.operator)

        old_price = self.state.price
        self.state.price = price
        self.state.status = new_status
        self._emit(
            EventType.PRICE_ADJUSTED,
            sale_id=self.state.sale_id,
            old_price=old_price,
            new_price=price,
            refund=refund,
            swept=swept,
        )
        logger.info(
            "escrow.price_adjusted",
            sale_id=self.state.sale_id,
            old_price=old_price,
            new_price=price,
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    @external
    def accept(self) -> bool:
        """Seller settles the sale and the instance deregisters itself."""
        new_status = self._fire("accept")
        self._require_seller(self.msg.sender)
        price = self.state.price
        balance = self.balance
        if balance < price:
            raise InsufficientFundsError(required=price, available=balance)

        # Order matters: each step sees the balance left by the previous one.
        buyer = self.state.buyer
        refund = self._send(buyer, balance - price) if balance > price else 0
        fee = self._send(self.state.operator, self.balance // FEE_DIVISOR)
        commission = 0
        if self.state.portion > 0:
            commission = self._send(self.state.agent, self.balance // self.state.portion)
        proceeds = self._sweep(self.state.seller)

        self.state.status = new_status
        self._emit(
            EventType.SALE_ACCEPTED,
            sale_id=self.state.sale_id,
            buyer=buyer,
            refund=refund,
            fee=fee,
            commission=commission,
            proceeds=proceeds,
        )
        logger.info(
            "escrow.accepted",
            sale_id=self.state.sale_id,
            fee=fee,
            commission=commission,
            proceeds=proceeds,
        )
        self._deregister()
        return True

    @external
    def revoke(self) -> bool:
        """Seller withdraws the sale for good."""
        new_status = self._fire("revoke")
        self._require_seller(self.msg.sender)

        if self.state.status == SaleStatus.OPEN:
            recipient = self.state.operator
        else:
            recipient = self.state.buyer
        amount = self._sweep(recipient)

        self.state.status = new_status
        self._emit(
            EventType.SALE_REVOKED,
            sale_id=self.state.sale_id,
            recipient=recipient,
            amount=amount,
        )
        logger.info("escrow.revoked", sale_id=self.state.sale_id, recipient=recipient, amount=amount)
        self._deregister()
        return True

    @external
    def sweep_the_table(self) -> bool:
        """Operator collects whatever is left on a finished sale."""
        self._fire("sweep_the_table")
        if self.msg.sender != self.state.operator:
            raise AuthorizationError(self.msg.sender, "operator")
        amount = self._sweep(self.state.operator)
        if amount:
            self._emit(EventType.TABLE_SWEPT, sale_id=self.state.sale_id, amount=amount)
        logger.info("escrow.table_swept", sale_id=self.state.sale_id, amount=amount)
        return True

    # ------------------------------------------------------------------
    # Administrative
    # ------------------------------------------------------------------

    @external
    def do_a_backflip(self) -> bool:
        """Forced termination, callable only by the owning registry."""
        new_status = self._fire("do_a_backflip")
        if self.msg.sender != self.state.registry:
            raise AuthorizationError(self.msg.sender, "registry")
        previous = self.state.status
        self.state.status = new_status
        amount = self._sweep(self.state.operator)
        self._emit(
            EventType.BACKFLIP,
            sale_id=self.state.sale_id,
            previous_status=previous.value,
            swept=amount,
        )
        logger.warning(
            "escrow.force_terminated",
            sale_id=self.state.sale_id,
            previous_status=previous.value,
            swept=amount,
        )
        return True

    @external
    def reassign(self, operator: str) -> None:
        """Point fees at a new operator. Registry or current operator only."""
        new_status = self._fire("reassign")
        caller = self.msg.sender
        if caller not in (self.state.registry, self.state.operator):
            raise AuthorizationError(caller, "registry or operator")
        if not isinstance(operator, str) or not operator:
            raise InvalidKeyError(f"Invalid operator address: {operator!r}")
        previous = self.state.operator
        self.state.operator = operator
        self.state.status = new_status
        self._emit(
            EventType.OPERATOR_REASSIGNED,
            sale_id=self.state.sale_id,
            previous=previous,
            operator=operator,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @view
    def price(self) -> int:
        return self.state.price

    @view
    def status(self) -> str:
        return self.state.status.value

    @view
    def agent(self) -> str:
        return self.state.agent

    @view
    def seller(self) -> str:
        return self.state.seller

    @view
    def buyer(self) -> str:
        if self.state.buyer is None:
            raise StateError(f"Sale {self.state.sale_id} has no buyer ({self.state.status.value})")
        return self.state.buyer

    @view
    def operator(self) -> str:
        return self.state.operator

    @view
    def registry(self) -> str:
        return self.state.registry

    @view
    def sale_id(self) -> int:
        return self.state.sale_id

    @view
    def portion(self) -> int:
        return self.state.portion

    @view
    def allowed_events(self) -> list[str]:
        return EscrowStateMachine(self.state.status.value).get_allowed_events()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fire(self, event_name: str) -> SaleStatus:
        """Validate a transition and return the status it leads to.

        Raises InvalidStateTransitionError if the transition is illegal.
        The caller assigns the returned status once its own guards pass.
        """
        current = self.state.status.value
        try:
            return SaleStatus(validate_transition(current, event_name))
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(current, event_name) from err

    def _require_buyer(self, caller: str) -> str:
        if self.state.buyer is None or caller != self.state.buyer:
            raise AuthorizationError(caller, "buyer")
        return caller

    def _require_seller(self, caller: str) -> str:
        if caller != self.state.seller:
            raise AuthorizationError(caller, "seller")
        return caller

    def _require_amount(self, amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount < self.state.price:
            raise InvalidAmountError(
                f"Bid {amount!r} is below the asking price {self.state.price}"
            )

    def _deregister(self) -> None:
        closed = self._call(self.state.registry, "close", self.state.sale_id)
        if not closed:
            logger.warning("escrow.deregister_unmapped", sale_id=self.state.sale_id)
