"""Registry REST API routes.

Routes:
    GET    /api/v1/registry                             — Configuration and active sales
    GET    /api/v1/registry/sales/{id}                  — Instance address for a sale
    PUT    /api/v1/registry/template                    — Replace the template (maester)
    PUT    /api/v1/registry/maesters                    — Rotate maester key(s) (operator)
    PUT    /api/v1/registry/operator                    — Rotate the operator (operator)
    POST   /api/v1/registry/sales/{id}/force-close      — Force-close a sale (maester)
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
    ReceiptResponse,
    RegistryResponse,
    UpdateMaesterRequest,
    UpdateOperatorRequest,
    UpdateTemplateRequest,
)
from escrow_marketplace.services.journal_service import JournalService
from escrow_marketplace.services.marketplace_service import MarketplaceService

router = APIRouter(prefix="/api/v1/registry", tags=["Registry"])


@router.get("", response_model=RegistryResponse, summary="Registry configuration")
async def get_registry(
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> RegistryResponse:
    return RegistryResponse(**svc.registry_info())


@router.get("/sales/{sale_id}", summary="Look up a sale's instance")
async def lookup(
    sale_id: int,
    svc: MarketplaceService = Depends(get_marketplace_service),
) -> dict:
    """Only sales still registered resolve; DONE sales return 404."""
    return {"sale_id": sale_id, "address": svc.lookup(sale_id)}


@router.put("/template", response_model=ReceiptResponse, summary="Replace the escrow template")
async def update_template(
    body: UpdateTemplateRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(
        request, caller, lambda: svc.update_template(caller, body.template), journal, store
    )


@router.put("/maesters", response_model=ReceiptResponse, summary="Rotate maester key(s)")
async def update_maester(
    body: UpdateMaesterRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    return await commit(
        request, caller, lambda: svc.update_maester(caller, body.keys), journal, store
    )


@router.put("/operator", response_model=ReceiptResponse, summary="Rotate the operator")
async def update_operator(
    body: UpdateOperatorRequest,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """Every live sale's fees move to the new operator in the same transaction."""
    return await commit(
        request, caller, lambda: svc.update_operator(caller, body.operator), journal, store
    )


@router.post(
    "/sales/{sale_id}/force-close",
    response_model=ReceiptResponse,
    summary="Force-close a sale",
)
async def force_close(
    sale_id: int,
    request: Request,
    caller: str = Depends(get_caller),
    svc: MarketplaceService = Depends(get_marketplace_service),
    journal: JournalService = Depends(get_journal),
    store: IdempotencyStore | None = Depends(get_idempotency_store),
) -> ReceiptResponse:
    """Drive the sale to DONE and sweep its balance to the operator.

    The receipt result is False when the sale was not registered.
    """
    return await commit(request, caller, lambda: svc.epstein(caller, sale_id), journal, store)
