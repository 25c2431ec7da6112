"""Tests for the EscrowInstance contract: guards, fund movements and rollback."""

from __future__ import annotations

import pytest
from conftest import AGENT, BUYER, MAESTER, OPERATOR, RIVAL, SELLER, STRANGER, Market

from escrow_marketplace.domain.enums import EventType
from escrow_marketplace.domain.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidKeyError,
    InvalidStateTransitionError,
    SaleNotFoundError,
    StateError,
)


def open_bid(market: Market, instance: str, amount: int = 100, value: int = 100) -> None:
    market.call(BUYER, instance, "bid", amount, value=value)


class TestFreshInstance:
    def test_initial_views(self, market: Market) -> None:
        instance = market.post(price=100, portion=10)
        assert market.view(instance, "status") == "OPEN"
        assert market.view(instance, "price") == 100
        assert market.view(instance, "seller") == SELLER
        assert market.view(instance, "agent") == AGENT
        assert market.view(instance, "portion") == 10
        assert market.view(instance, "operator") == OPERATOR
        assert market.view(instance, "registry") == market.registry
        assert market.view(instance, "sale_id") == 1
        assert market.balance(instance) == 0

    def test_buyer_view_fails_without_buyer(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(StateError, match="no buyer"):
            market.view(instance, "buyer")


class TestOpeningBid:
    def test_opening_bid_moves_to_nego(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        assert market.view(instance, "status") == "NEGO"
        assert market.view(instance, "buyer") == BUYER
        assert market.balance(instance) == 100
        assert market.balance(BUYER) == 900

    def test_amount_below_price(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InvalidAmountError, match="below the asking price"):
            open_bid(market, instance, amount=99, value=100)
        assert market.view(instance, "status") == "OPEN"
        assert market.balance(BUYER) == 1_000

    def test_attached_value_below_price(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InsufficientFundsError):
            open_bid(market, instance, amount=100, value=60)
        assert market.view(instance, "status") == "OPEN"
        assert market.balance(instance) == 0
        assert market.balance(BUYER) == 1_000

    def test_overpayment_is_kept_until_restated(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance, amount=100, value=150)
        assert market.balance(instance) == 150

    def test_bid_event(self, market: Market) -> None:
        instance = market.post()
        receipt = market.ledger.execute(BUYER, instance, "bid", 100, value=100)
        placed = [e for e in receipt.events if e.event_type == EventType.BID_PLACED]
        assert placed[0].data["buyer"] == BUYER
        assert placed[0].data["attached"] == 100


class TestRebid:
    def test_restating_refunds_excess(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance, amount=100, value=150)
        market.call(BUYER, instance, "bid", 100)
        assert market.balance(instance) == 100
        assert market.balance(BUYER) == 900

    def test_top_up(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(BUYER, instance, "bid", 120, value=20)
        assert market.balance(instance) == 120
        assert market.view(instance, "status") == "NEGO"

    def test_only_buyer_may_rebid(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        with pytest.raises(AuthorizationError):
            market.call(RIVAL, instance, "bid", 200, value=200)
        assert market.balance(RIVAL) == 1_000

    def test_rebid_below_price(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        with pytest.raises(InvalidAmountError):
            market.call(BUYER, instance, "bid", 50)
        assert market.balance(instance) == 100

    def test_bid_from_hold_resumes(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(BUYER, instance, "hold")
        market.call(BUYER, instance, "bid", 100)
        assert market.view(instance, "status") == "NEGO"


class TestHold:
    def test_buyer_holds(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(BUYER, instance, "hold")
        assert market.view(instance, "status") == "HOLD"

    def test_only_buyer_holds(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        with pytest.raises(AuthorizationError):
            market.call(SELLER, instance, "hold")

    def test_hold_requires_nego(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InvalidStateTransitionError):
            market.call(BUYER, instance, "hold")


class TestCancel:
    def test_cancel_pays_fee_and_refunds(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(BUYER, instance, "cancel")

        assert market.balance(OPERATOR) == 2
        assert market.balance(BUYER) == 998
        assert market.balance(instance) == 0
        assert market.view(instance, "status") == "OPEN"
        with pytest.raises(StateError):
            market.view(instance, "buyer")

    def test_cancel_from_hold(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(BUYER, instance, "hold")
        market.call(BUYER, instance, "cancel")
        assert market.view(instance, "status") == "OPEN"

    def test_small_balance_pays_no_fee(self, market: Market) -> None:
        instance = market.post(price=30)
        open_bid(market, instance, amount=30, value=30)
        market.call(BUYER, instance, "cancel")
        assert market.balance(OPERATOR) == 0
        assert market.balance(BUYER) == 1_000

    def test_only_buyer_cancels(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        with pytest.raises(AuthorizationError):
            market.call(SELLER, instance, "cancel")

    def test_reopened_sale_takes_new_buyer(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(BUYER, instance, "cancel")
        market.call(RIVAL, instance, "bid", 100, value=100)
        assert market.view(instance, "buyer") == RIVAL


class TestRefuse:
    def test_refuse_refunds_everything(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance, value=130)
        market.call(SELLER, instance, "refuse")
        assert market.balance(BUYER) == 1_000
        assert market.balance(instance) == 0
        assert market.view(instance, "status") == "OPEN"

    def test_only_seller_refuses(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        with pytest.raises(AuthorizationError):
            market.call(BUYER, instance, "refuse")

    def test_refuse_requires_a_negotiation(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InvalidStateTransitionError):
            market.call(SELLER, instance, "refuse")


class TestAdjust:
    def test_lowering_refunds_buyer(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(SELLER, instance, "adjust", 80)
        assert market.view(instance, "price") == 80
        assert market.balance(instance) == 80
        assert market.balance(BUYER) == 920
        assert market.view(instance, "status") == "NEGO"

    def test_raising_blocks_accept_until_topped_up(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(SELLER, instance, "adjust", 120)
        with pytest.raises(InsufficientFundsError):
            market.call(SELLER, instance, "accept")
        market.call(BUYER, instance, "bid", 120, value=20)
        assert market.call(SELLER, instance, "accept") is True

    def test_open_sale_without_balance(self, market: Market) -> None:
        instance = market.post()
        market.call(SELLER, instance, "adjust", 70)
        assert market.view(instance, "price") == 70
        assert market.balance(OPERATOR) == 0

    def test_only_seller_adjusts(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(AuthorizationError):
            market.call(STRANGER, instance, "adjust", 1)

    @pytest.mark.parametrize("price", [0, -10])
    def test_price_must_be_positive(self, market: Market, price: int) -> None:
        instance = market.post()
        with pytest.raises(InvalidAmountError):
            market.call(SELLER, instance, "adjust", price)
        assert market.view(instance, "price") == 100


class TestAccept:
    def test_settlement_cascade(self, market: Market) -> None:
        instance = market.post(price=100, portion=10)
        open_bid(market, instance)
        assert market.call(SELLER, instance, "accept") is True

        assert market.balance(OPERATOR) == 2
        assert market.balance(AGENT) == 9
        assert market.balance(SELLER) == 89
        assert market.balance(instance) == 0
        assert market.view(instance, "status") == "DONE"

    def test_excess_is_refunded_before_fees(self, market: Market) -> None:
        instance = market.post(price=100, portion=10)
        open_bid(market, instance, amount=100, value=150)
        market.call(SELLER, instance, "accept")
        assert market.balance(BUYER) == 900
        assert market.balance(OPERATOR) == 2
        assert market.balance(AGENT) == 9
        assert market.balance(SELLER) == 89

    def test_zero_portion_pays_no_commission(self, market: Market) -> None:
        instance = market.post(price=100, portion=0)
        open_bid(market, instance)
        market.call(SELLER, instance, "accept")
        assert market.balance(AGENT) == 0
        assert market.balance(SELLER) == 98

    def test_accept_deregisters(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(SELLER, instance, "accept")
        with pytest.raises(SaleNotFoundError):
            market.view(market.registry, "lookup", 1)
        assert market.view(instance, "buyer") == BUYER

    def test_accept_from_open(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InvalidStateTransitionError) as excinfo:
            market.call(SELLER, instance, "accept")
        assert excinfo.value.current_state == "OPEN"
        assert excinfo.value.attempted_event == "accept"

    def test_accept_refuses_attached_value(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.ledger.mint(SELLER, 50)

        with pytest.raises(InvalidAmountError, match="does not accept attached value"):
            market.call(SELLER, instance, "accept", value=50)

        assert market.balance(SELLER) == 50
        assert market.balance(instance) == 100
        assert market.view(instance, "status") == "NEGO"

    def test_only_seller_accepts(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        with pytest.raises(AuthorizationError):
            market.call(BUYER, instance, "accept")
        assert market.view(instance, "status") == "NEGO"
        assert market.view(market.registry, "lookup", 1) == instance

    def test_event_reports_the_split(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        receipt = market.ledger.execute(SELLER, instance, "accept")
        accepted = next(e for e in receipt.events if e.event_type == EventType.SALE_ACCEPTED)
        assert accepted.data["fee"] == 2
        assert accepted.data["commission"] == 9
        assert accepted.data["proceeds"] == 89
        closed = [e for e in receipt.events if e.event_type == EventType.SALE_CLOSED]
        assert len(closed) == 1


class TestRevoke:
    def test_revoke_open_sale(self, market: Market) -> None:
        instance = market.post()
        assert market.call(SELLER, instance, "revoke") is True
        assert market.view(instance, "status") == "DONE"
        assert market.view(market.registry, "sales") == []

    def test_revoke_refunds_buyer(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance, value=140)
        market.call(BUYER, instance, "hold")
        market.call(SELLER, instance, "revoke")
        assert market.balance(BUYER) == 1_000
        assert market.balance(OPERATOR) == 0

    def test_revoke_twice(self, market: Market) -> None:
        instance = market.post()
        market.call(SELLER, instance, "revoke")
        with pytest.raises(InvalidStateTransitionError):
            market.call(SELLER, instance, "revoke")

    def test_only_seller_revokes(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(AuthorizationError):
            market.call(MAESTER, instance, "revoke")


class TestDoneState:
    def test_nothing_reopens_a_done_sale(self, market: Market) -> None:
        instance = market.post()
        market.call(SELLER, instance, "revoke")
        with pytest.raises(InvalidStateTransitionError):
            market.call(BUYER, instance, "bid", 100, value=100)
        with pytest.raises(InvalidStateTransitionError):
            market.call(SELLER, instance, "adjust", 10)
        assert market.balance(BUYER) == 1_000

    def test_sweep_collects_stray_funds(self, market: Market) -> None:
        instance = market.post()
        market.call(SELLER, instance, "revoke")
        market.ledger.mint(instance, 5)
        assert market.balance(instance) == 5

        receipt = market.ledger.execute(OPERATOR, instance, "sweep_the_table")
        assert receipt.result is True
        assert market.balance(OPERATOR) == 5
        assert market.balance(instance) == 0
        assert EventType.TABLE_SWEPT in [e.event_type for e in receipt.events]

    def test_sweep_with_nothing_to_collect(self, market: Market) -> None:
        instance = market.post()
        market.call(SELLER, instance, "revoke")
        receipt = market.ledger.execute(OPERATOR, instance, "sweep_the_table")
        assert receipt.result is True
        assert EventType.TABLE_SWEPT not in [e.event_type for e in receipt.events]

    def test_sweep_requires_done(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InvalidStateTransitionError):
            market.call(OPERATOR, instance, "sweep_the_table")

    def test_only_operator_sweeps(self, market: Market) -> None:
        instance = market.post()
        market.call(SELLER, instance, "revoke")
        with pytest.raises(AuthorizationError):
            market.call(SELLER, instance, "sweep_the_table")


class TestAdministrative:
    def test_backflip_only_from_registry(self, market: Market) -> None:
        instance = market.post()
        for caller in (MAESTER, OPERATOR, SELLER):
            with pytest.raises(AuthorizationError):
                market.call(caller, instance, "do_a_backflip")
        assert market.view(instance, "status") == "OPEN"

    def test_operator_reassigns(self, market: Market) -> None:
        instance = market.post()
        market.call(OPERATOR, instance, "reassign", STRANGER)
        assert market.view(instance, "operator") == STRANGER

        open_bid(market, instance)
        market.call(BUYER, instance, "cancel")
        assert market.balance(STRANGER) == 2
        assert market.balance(OPERATOR) == 0

    def test_reassign_keeps_status(self, market: Market) -> None:
        instance = market.post()
        open_bid(market, instance)
        market.call(OPERATOR, instance, "reassign", STRANGER)
        assert market.view(instance, "status") == "NEGO"

    def test_stranger_cannot_reassign(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(AuthorizationError):
            market.call(SELLER, instance, "reassign", SELLER)

    def test_reassign_rejects_empty_address(self, market: Market) -> None:
        instance = market.post()
        with pytest.raises(InvalidKeyError):
            market.call(OPERATOR, instance, "reassign", "")

    def test_allowed_events_view(self, market: Market) -> None:
        instance = market.post()
        assert "bid" in market.view(instance, "allowed_events")
        assert "accept" not in market.view(instance, "allowed_events")
