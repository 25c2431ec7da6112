"""Ledger REST API routes.

Routes:
    GET    /api/v1/ledger/balances/{address}     — Balance of an address
    POST   /api/v1/ledger/faucet                 — Credit test funds (development)
    GET    /api/v1/ledger/events                 — Committed in-memory events
    GET    /api/v1/ledger/transactions/{tx_id}   — Persisted events of one transaction
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from escrow_marketplace.api.deps import (
    get_idempotency_store,
    get_journal,
    get_marketplace_service,
)
from escrow_marketplace.api.routes.common import commit
from escrow_marketplace.infrastructure.redis_client import IdempotencyStore
from escrow_marketplace.schemas.marketplace import (
    BalanceResponse,
    FundRequest,
    JournalEventResponse,
    LedgerEventResponse,
    ReceiptResponse,
)
from escrow_marketplace.services.journal_service import JournalService
from escrow_marketplace.services.marketplace_service import MarketplaceService

router = APIRouter(prefix="/api/v1/ledger", tags=["Ledger"])


@router.get("/balances/{address}", response_model=BalanceResponse, summary="Balance of an address")
async def get_balance(
    address: str,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> BalanceResponse:
    return BalanceResponse(address=address, balance=svc.balance_of(address))


@router.post("/faucet", response_model=ReceiptResponse, status_code=201, summary="Credit test funds")
async def faucet(
    body: FundRequest,
    request: Request,
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """Mint to an address. There is no caller header; the recipient keys idempotency."""
    return await commit(
        request,
        body.address,
        lambda: svc.fund(body.address, body.amount),
        journal,
        store,
    )


@router.get("/events", response_model=list[LedgerEventResponse], summary="Committed ledger events")
async def get_events(
    limit: int = Query(default=100, ge=1, le=1000),
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> list[LedgerEventResponse]:
    """Most recent events last."""
    return [LedgerEventResponse(**e.to_dict()) for e in svc.events()[-limit:]]


@router.get(
    "/transactions/{tx_id}",
    response_model=list[JournalEventResponse],
    summary="Persisted events of one transaction",
)
async def get_transaction(
    tx_id: str,
    journal: JournalService = Depends(get_journal),
) -> list[JournalEventResponse]:
    rows = await journal.get_transaction(tx_id)
    return [JournalEventResponse.model_validate(r) for r in rows]
