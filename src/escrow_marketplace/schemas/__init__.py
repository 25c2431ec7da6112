"""Pydantic API schemas."""

from escrow_marketplace.schemas.marketplace import (
    AdjustPriceRequest,
    BalanceResponse,
    BidRequest,
    FundRequest,
    HealthResponse,
    JournalEventResponse,
    LedgerEventResponse,
    PostSaleRequest,
    ReassignRequest,
    ReceiptResponse,
    RegistryResponse,
    SaleResponse,
    SaleStatusResponse,
    UpdateMaesterRequest,
    UpdateOperatorRequest,
    UpdateTemplateRequest,
)

__all__ = [
    "AdjustPriceRequest",
    "BalanceResponse",
    "BidRequest",
    "FundRequest",
    "HealthResponse",
    "JournalEventResponse",
    "LedgerEventResponse",
    "PostSaleRequest",
    "ReassignRequest",
    "ReceiptResponse",
    "RegistryResponse",
    "SaleResponse",
    "SaleStatusResponse",
    "UpdateMaesterRequest",
    "UpdateOperatorRequest",
    "UpdateTemplateRequest",
]
