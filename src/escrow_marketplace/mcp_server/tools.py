"""MCP Tool definitions for the escrow marketplace.

These tools expose the marketplace to AI agents over the Model Context
Protocol. An agent acts under the address it passes as `caller`; the contracts
decide whether that address may do what it asks.

Tools:
    - post_sale: List a new sale
    - place_bid: Open or restate a bid, attaching funds
    - accept_sale: Seller settles a sale
    - check_sale: Status, price, buyer and allowed operations of a sale
    - force_close: Maester force-closes a sale

The MCP server is mounted into FastAPI at /mcp via app.mount(). Each tool
manages its own database session for the audit journal (no FastAPI Depends).
A journal failure after the ledger has committed does not turn the result
into an error; the payload reports it as `journal_recorded: false`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mcp.server.fastmcp import FastMCP

from escrow_marketplace.domain.exceptions import MarketplaceError
from escrow_marketplace.logging_config import get_logger
from escrow_marketplace.services.marketplace_service import get_marketplace

if TYPE_CHECKING:
    from escrow_marketplace.ledger import Receipt

logger = get_logger(__name__)

mcp = FastMCP(
    "Escrow Marketplace",
    json_response=True,
)


async def _journal(receipt: Receipt) -> None:
    """Persist a committed receipt. The ledger has already committed either way."""
    from escrow_marketplace.infrastructure.database.engine import _get_session_factory
    from escrow_marketplace.services.journal_service import JournalService

    factory = _get_session_factory()
    async with factory() as session:
        await JournalService(session).record_receipt(receipt)
        await session.commit()


async def _record(tool: str, receipt: Receipt) -> bool:
    """Journal a committed receipt. Returns False if the write failed."""
    try:
        await _journal(receipt)
    except Exception as exc:
        logger.error(
            "mcp.journal_failed",
            tool=tool,
            tx_id=receipt.tx_id,
            error=str(exc),
            exc_info=True,
        )
        return False
    return True


def _rejected(tool: str, exc: MarketplaceError) -> dict:
    logger.info("mcp.rejected", tool=tool, code=exc.code, error=exc.message)
    return {"error": exc.code, "message": exc.message}


@mcp.tool()
async def post_sale(
    caller: str,
    sale_id: int,
    seller: str,
    agent: str,
    portion: int,
    price: int,
) -> dict:
    """List a new sale and create its escrow instance.

    Args:
        caller: Your address.
        sale_id: Identifier for the sale; must not be in use.
        seller: Address that receives the proceeds.
        agent: Address that receives the commission.
        portion: Commission divisor (agent gets balance // portion); 0 for none.
        price: Asking price in whole units.

    Returns:
        The instance address and status. Next step: a buyer places a bid.
    """
    svc = get_marketplace()
    try:
        receipt = svc.post_sale(caller, agent, portion, seller, sale_id, price)
    except MarketplaceError as exc:
        return _rejected("post_sale", exc)
    except Exception as exc:
        logger.exception("mcp.post_sale.error")
        return {"error": "INTERNAL_ERROR", "message": str(exc)}

    recorded = await _record("post_sale", receipt)
    return {
        "sale_id": sale_id,
        "address": receipt.result,
        "status": "OPEN",
        "tx_id": receipt.tx_id,
        "journal_recorded": recorded,
        "message": "Sale posted. Next step: a buyer bids at least the price.",
    }


@mcp.tool()
async def place_bid(caller: str, sale_id: int, amount: int, attach: int = 0) -> dict:
    """Open a negotiation on an OPEN sale, or restate your bid as its buyer.

    Args:
        caller: Your address.
        sale_id: The sale to bid on.
        amount: Your offer; must be at least the asking price.
        attach: Funds to move from your balance into escrow with the bid.
            Opening bids must attach at least the price.

    Returns:
        Sale status after the bid and any refund you received.
    """
    svc = get_marketplace()
    try:
        receipt = svc.bid(caller, sale_id, amount, value=attach)
        status = svc.get_status(sale_id)
    except MarketplaceError as exc:
        return _rejected("place_bid", exc)
    except Exception as exc:
        logger.exception("mcp.place_bid.error")
        return {"error": "INTERNAL_ERROR", "message": str(exc)}

    recorded = await _record("place_bid", receipt)
    refund = next(
        (e.data.get("refund", 0) for e in receipt.events if e.event_type == "BID_PLACED"),
        0,
    )
    return {
        "sale_id": sale_id,
        "status": status["status"],
        "refund": refund,
        "tx_id": receipt.tx_id,
        "journal_recorded": recorded,
        "allowed_events": status["allowed_events"],
    }


@mcp.tool()
async def accept_sale(caller: str, sale_id: int) -> dict:
    """Settle a sale as its seller.

    Pays, in order: any excess back to the buyer, the operator fee, the agent
    commission, and the rest to you.

    Args:
        caller: Your address (must be the seller).
        sale_id: The sale to settle.

    Returns:
        The amounts paid out.
    """
    svc = get_marketplace()
    try:
        receipt = svc.accept(caller, sale_id)
    except MarketplaceError as exc:
        return _rejected("accept_sale", exc)
    except Exception as exc:
        logger.exception("mcp.accept_sale.error")
        return {"error": "INTERNAL_ERROR", "message": str(exc)}

    recorded = await _record("accept_sale", receipt)
    settled = next(
        (e.data for e in receipt.events if e.event_type == "SALE_ACCEPTED"),
        {},
    )
    return {
        "sale_id": sale_id,
        "status": "DONE",
        "refund": settled.get("refund", 0),
        "fee": settled.get("fee", 0),
        "commission": settled.get("commission", 0),
        "proceeds": settled.get("proceeds", 0),
        "tx_id": receipt.tx_id,
        "journal_recorded": recorded,
    }


@mcp.tool()
async def check_sale(sale_id: int) -> dict:
    """Check the current state of a sale.

    Args:
        sale_id: The sale to inspect.

    Returns:
        Status, price, buyer, custodied balance and the operations legal next.
    """
    try:
        return get_marketplace().get_sale(sale_id)
    except MarketplaceError as exc:
        return _rejected("check_sale", exc)
    except Exception as exc:
        logger.exception("mcp.check_sale.error")
        return {"error": "INTERNAL_ERROR", "message": str(exc)}


@mcp.tool()
async def force_close(caller: str, sale_id: int) -> dict:
    """Force-close a sale as a maester.

    The sale goes to DONE, leaves the registry, and its balance (including a
    buyer's deposit) is swept to the operator.

    Args:
        caller: Your address (must be a maester).
        sale_id: The sale to close.

    Returns:
        Whether a registered sale was closed.
    """
    svc = get_marketplace()
    try:
        receipt = svc.epstein(caller, sale_id)
    except MarketplaceError as exc:
        return _rejected("force_close", exc)
    except Exception as exc:
        logger.exception("mcp.force_close.error")
        return {"error": "INTERNAL_ERROR", "message": str(exc)}

    recorded = await _record("force_close", receipt)
    return {
        "sale_id": sale_id,
        "closed": bool(receipt.result),
        "tx_id": receipt.tx_id,
        "journal_recorded": recorded,
    }
