#!/usr/bin/env python3
"""Escrow Marketplace — End-to-End Simulation.

Runs scripted scenarios with SellerBot, BuyerBot and MaesterBot agents against
a freshly bootstrapped marketplace:

    Scenario 1: Happy Path
        - Seller posts a sale at 100 with an agent on portion 10
        - Buyer bids 100 attaching 100 -> NEGO
        - Seller accepts -> operator 2, agent 9, seller 89, sale leaves the registry

    Scenario 2: Cancel and Re-bid
        - Buyer overpays, restates the bid and gets the excess back
        - Buyer cancels (fee to the operator), a second buyer takes the sale
        - Seller adjusts the price down; the excess goes back to the new buyer

    Scenario 3: Forced Termination
        - Buyer funds a sale and holds it
        - Maester force-closes: DONE, deposit swept to the operator, sale unmapped

Usage:
    # Journal to SQLite in-memory (no database server needed):
    python simulation.py --sqlite

    # Journal to the configured DATABASE_URL:
    python simulation.py

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from escrow_marketplace.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from escrow_marketplace.config import Settings  # noqa: E402
from escrow_marketplace.services.journal_service import JournalService  # noqa: E402
from escrow_marketplace.services.marketplace_service import MarketplaceService  # noqa: E402

MAESTER = "0x" + "a1" * 20
OPERATOR = "0x" + "0f" * 20
AGENT = "0x" + "ae" * 20

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize the journal database and create its table."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        from escrow_marketplace.infrastructure.database.orm_models import Base

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            echo=False,
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from escrow_marketplace.infrastructure.database.engine import init_db

        await init_db()


def get_session() -> Any:
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from escrow_marketplace.infrastructure.database.engine import _get_session_factory

    return _get_session_factory()()


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from escrow_marketplace.infrastructure.database.engine import close_db

        await close_db()


def new_marketplace() -> MarketplaceService:
    """A fresh ledger and registry for one scenario."""
    settings = Settings(
        registry_maesters=MAESTER,
        registry_operator=OPERATOR,
        faucet_enabled=True,
    )
    return MarketplaceService.bootstrap(settings)


async def journal(receipt: Any) -> None:
    async with get_session() as session:
        await JournalService(session).record_receipt(receipt)
        await session.commit()


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SellerBot:
    """Simulated seller that lists, adjusts and settles sales."""

    market: MarketplaceService
    address: str = "0x" + "5e" * 20

    async def post(self, sale_id: int, price: int, portion: int = 10) -> str:
        receipt = self.market.post_sale(self.address, AGENT, portion, self.address, sale_id, price)
        await journal(receipt)
        logger.info("SELLER: sale posted", sale_id=sale_id, price=price, instance=receipt.result)
        return receipt.result

    async def adjust(self, sale_id: int, price: int) -> None:
        await journal(self.market.adjust(self.address, sale_id, price))
        logger.info("SELLER: price adjusted", sale_id=sale_id, price=price)

    async def accept(self, sale_id: int) -> None:
        await journal(self.market.accept(self.address, sale_id))
        logger.info("SELLER: sale accepted", sale_id=sale_id)


@dataclass
class BuyerBot:
    """Simulated buyer that bids, holds and walks away."""

    market: MarketplaceService
    address: str = "0x" + "b0" * 20

    def fund(self, amount: int) -> None:
        self.market.fund(self.address, amount)

    async def bid(self, sale_id: int, amount: int, attach: int = 0) -> None:
        await journal(self.market.bid(self.address, sale_id, amount, value=attach))
        logger.info("BUYER: bid placed", buyer=self.address[:10], sale_id=sale_id, amount=amount)

    async def hold(self, sale_id: int) -> None:
        await journal(self.market.hold(self.address, sale_id))
        logger.info("BUYER: negotiation held", sale_id=sale_id)

    async def cancel(self, sale_id: int) -> None:
        await journal(self.market.cancel(self.address, sale_id))
        logger.info("BUYER: bid cancelled", sale_id=sale_id)


@dataclass
class MaesterBot:
    """Simulated administrator."""

    market: MarketplaceService
    address: str = MAESTER

    async def force_close(self, sale_id: int) -> bool:
        receipt = self.market.epstein(self.address, sale_id)
        await journal(receipt)
        logger.info("MAESTER: force close", sale_id=sale_id, closed=receipt.result)
        return receipt.result


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_balances(market: MarketplaceService, **parties: str) -> None:
    for name, address in parties.items():
        print(f"  {name:<10} {market.balance_of(address):>6}")
    print(f"  {'supply':<10} {market.total_supply():>6}")


async def print_audit_trail(sale_id: int) -> None:
    """Print the persisted audit trail for a sale."""
    async with get_session() as session:
        rows = await JournalService(session).get_sale_history(sale_id)
    print("\n  Audit Trail:")
    for i, row in enumerate(rows, 1):
        print(f"    {i}. [{row.event_type}] {row.payload} (by {row.actor})")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path — bid, accept, cascade payout")
    market = new_marketplace()
    seller, buyer = SellerBot(market), BuyerBot(market)
    buyer.fund(100)

    section("Seller posts sale #1 at 100")
    await seller.post(1, price=100, portion=10)

    section("Buyer bids 100 attaching 100")
    await buyer.bid(1, 100, attach=100)
    print(f"  Status: {market.get_status(1)['status']}")

    section("Seller accepts")
    await seller.accept(1)
    print_balances(market, seller=seller.address, agent=AGENT, operator=OPERATOR, buyer=buyer.address)
    assert market.balance_of(OPERATOR) == 2
    assert market.balance_of(AGENT) == 9
    assert market.balance_of(seller.address) == 89
    print(f"  Registered sales: {market.active_sales()}")

    await print_audit_trail(1)


# ===========================================================================
# Scenario 2: Cancel and Re-bid
# ===========================================================================
async def scenario_2_cancel_and_rebid() -> None:
    banner("SCENARIO 2: Cancel and Re-bid — refunds, fee, price adjust")
    market = new_marketplace()
    seller = SellerBot(market)
    first = BuyerBot(market, address="0x" + "b1" * 20)
    second = BuyerBot(market, address="0x" + "b2" * 20)
    first.fund(200)
    second.fund(200)

    await seller.post(2, price=100, portion=0)

    section("First buyer overpays, then restates at the price")
    await first.bid(2, 100, attach=150)
    await first.bid(2, 100)
    print_balances(market, first=first.address)

    section("First buyer cancels")
    await first.cancel(2)
    print_balances(market, first=first.address, operator=OPERATOR)

    section("Second buyer takes the sale, seller drops the price to 80")
    await second.bid(2, 100, attach=100)
    await seller.adjust(2, 80)
    print_balances(market, second=second.address)

    section("Seller accepts at 80")
    await seller.accept(2)
    print_balances(market, seller=seller.address, operator=OPERATOR, second=second.address)

    await print_audit_trail(2)


# ===========================================================================
# Scenario 3: Forced Termination
# ===========================================================================
async def scenario_3_forced_termination() -> None:
    banner("SCENARIO 3: Forced Termination — maester closes a held sale")
    market = new_marketplace()
    seller, buyer, maester = SellerBot(market), BuyerBot(market), MaesterBot(market)
    buyer.fund(100)

    await seller.post(3, price=100)
    await buyer.bid(3, 100, attach=100)
    await buyer.hold(3)
    print(f"  Status: {market.get_status(3)['status']}")

    section("Maester force-closes sale #3")
    await maester.force_close(3)
    snapshot = market.get_sale(3)
    print(f"  Status: {snapshot['status']}  registered: {snapshot['active']}")
    print_balances(market, buyer=buyer.address, operator=OPERATOR)

    section("Force-closing again is a no-op")
    closed = await maester.force_close(3)
    print(f"  Closed: {closed}")

    await print_audit_trail(3)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_cancel_and_rebid,
    3: scenario_3_forced_termination,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when scenario is 0."""
    await init_database(use_sqlite=use_sqlite)
    try:
        if scenario == 0:
            print("\n  ESCROW MARKETPLACE — SIMULATION")
            print(f"  Journal: {'SQLite (in-memory)' if use_sqlite else 'configured database'}\n")
            for fn in SCENARIOS.values():
                await fn()
            banner("ALL SCENARIOS COMPLETED SUCCESSFULLY")
        elif scenario in SCENARIOS:
            await SCENARIOS[scenario]()
        else:
            print(f"Unknown scenario {scenario}. Available: {', '.join(map(str, SCENARIOS))}")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Escrow Marketplace Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Journal to SQLite in-memory instead of DATABASE_URL.",
    )
    args = parser.parse_args()
    asyncio.run(run(args.scenario, use_sqlite=args.sqlite))
