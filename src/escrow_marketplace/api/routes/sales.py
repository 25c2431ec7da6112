"""Sale REST API routes.

HTTP interface for listing sales, negotiating, settling and inspecting them.
The MCP tools in mcp_server/tools.py call the same service layer.

Routes:
    POST   /api/v1/sales                      — Post a new sale
    GET    /api/v1/sales/{id}                 — Sale snapshot
    GET    /api/v1/sales/{id}/status          — Status and allowed operations
    GET    /api/v1/sales/{id}/events          — In-memory ledger events
    GET    /api/v1/sales/{id}/history         — Persisted audit journal
    POST   /api/v1/sales/{id}/bid             — Place or restate a bid
    POST   /api/v1/sales/{id}/hold            — Buyer pauses
    POST   /api/v1/sales/{id}/cancel          — Buyer walks away
    POST   /api/v1/sales/{id}/refuse          — Seller rejects the buyer
    POST   /api/v1/sales/{id}/adjust          — Seller changes the price
    POST   /api/v1/sales/{id}/accept          — Seller settles
    POST   /api/v1/sales/{id}/revoke          — Seller withdraws
    POST   /api/v1/sales/{id}/sweep           — Operator sweeps a DONE sale
    POST   /api/v1/sales/{id}/reassign        — Repoint one sale's fees
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from escrow_marketplace.api.deps import (
    get_caller,
    get_idempotency_store,
    get_journal,
    get_marketplace_service,
)
from escrow_marketplace.api.routes.common import commit
from escrow_marketplace.infrastructure.redis_client import IdempotencyStore
from escrow_marketplace.schemas.marketplace import (
    AdjustPriceRequest,
    BidRequest,
    JournalEventResponse,
    LedgerEventResponse,
    PostSaleRequest,
    ReassignRequest,
    ReceiptResponse,
    SaleResponse,
    SaleStatusResponse,
)
from escrow_marketplace.services.journal_service import JournalService
from escrow_marketplace.services.marketplace_service import MarketplaceService

router = APIRouter(prefix="/api/v1/sales", tags=["Sales"])


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ReceiptResponse,
    status_code=201,
    summary="Post a new sale",
)
async def post_sale(
    body: PostSaleRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """Instantiate an escrow instance for the sale. The receipt result is its address."""
    return await commit(
        request,
        caller,
        lambda: svc.post_sale(
            caller, body.agent, body.portion, body.seller, body.sale_id, body.price
        ),
        journal,
        store,
    )


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


@router.post("/{sale_id}/bid", response_model=ReceiptResponse, summary="Place or restate a bid")
async def bid(
    sale_id: int,
    body: BidRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """From OPEN attach at least the price; from NEGO/HOLD only the buyer may bid."""
    return await commit(
        request,
        caller,
        lambda: svc.bid(caller, sale_id, body.amount, value=body.value),
        journal,
        store,
    )


@router.post("/{sale_id}/hold", response_model=ReceiptResponse, summary="Buyer pauses")
async def hold(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(request, caller, lambda: svc.hold(caller, sale_id), journal, store)


@router.post("/{sale_id}/cancel", response_model=ReceiptResponse, summary="Buyer walks away")
async def cancel(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """Refund the buyer less the operator fee and reopen the sale."""
    return await commit(request, caller, lambda: svc.cancel(caller, sale_id), journal, store)


@router.post("/{sale_id}/refuse", response_model=ReceiptResponse, summary="Seller rejects the buyer")
async def refuse(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(request, caller, lambda: svc.refuse(caller, sale_id), journal, store)


@router.post("/{sale_id}/adjust", response_model=ReceiptResponse, summary="Seller changes the price")
async def adjust(
    sale_id: int,
    body: AdjustPriceRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(
        request, caller, lambda: svc.adjust(caller, sale_id, body.price), journal, store
    )


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@router.post("/{sale_id}/accept", response_model=ReceiptResponse, summary="Seller settles")
async def accept(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """Pay out refund, fee, commission and proceeds; the sale leaves the registry."""
    return await commit(request, caller, lambda: svc.accept(caller, sale_id), journal, store)


@router.post("/{sale_id}/revoke", response_model=ReceiptResponse, summary="Seller withdraws")
async def revoke(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(request, caller, lambda: svc.revoke(caller, sale_id), journal, store)


@router.post("/{sale_id}/sweep", response_model=ReceiptResponse, summary="Operator sweeps a DONE sale")
async def sweep_the_table(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(
        request, caller, lambda: svc.sweep_the_table(caller, sale_id), journal, store
    )


@router.post("/{sale_id}/reassign", response_model=ReceiptResponse, summary="Repoint one sale's fees")
async def reassign(
    sale_id: int,
    body: ReassignRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(
        request, caller, lambda: svc.reassign(caller, sale_id, body.operator), journal, store
    )


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get("/{sale_id}", response_model=SaleResponse, summary="Sale snapshot")
async def get_sale(
    sale_id: int,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> SaleResponse:
    return SaleResponse(**svc.get_sale(sale_id))


@router.get(
    "/{sale_id}/status",
    response_model=SaleStatusResponse,
    summary="Status and allowed operations",
)
async def get_status(
    sale_id: int,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> SaleStatusResponse:
    return SaleStatusResponse(**svc.get_status(sale_id))


@router.get(
    "/{sale_id}/events",
    response_model=list[LedgerEventResponse],
    summary="Ledger events for a sale",
)
async def get_events(
    sale_id: int,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> list[LedgerEventResponse]:
    svc.instance_address(sale_id)
    return [LedgerEventResponse(**e.to_dict()) for e in svc.events(sale_id)]


@router.get(
    "/{sale_id}/history",
    response_model=list[JournalEventResponse],
    summary="Persisted audit trail",
)
async def get_history(
    sale_id: int,
    journal: JournalService = Depends(get_journal),
) -> list[JournalEventResponse]:
    rows = await journal.get_sale_history(sale_id)
    return [JournalEventResponse.model_validate(r) for r in rows]
