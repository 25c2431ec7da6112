"""Pydantic schemas for the marketplace API.

Request/response shapes for the REST API and MCP tools, kept separate from the
contract state models and the ORM journal model. Amounts are integers in the
ledger's smallest unit; there is no fractional currency.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - needed at runtime by pydantic
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ADDRESS_FIELD = {
    "min_length": 3,
    "max_length": 42,
    "examples": ["0x742d35cc6634c0532925a3b844bc9e7595f2bd18"],
}

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class PostSaleRequest(BaseModel):
    """Request body for listing a new sale."""

    sale_id: int = Field(..., ge=0, description="Caller-chosen sale identifier")
    seller: str = Field(..., description="Address that receives the proceeds", **ADDRESS_FIELD)
    agent: str = Field(..., description="Address that receives the commission", **ADDRESS_FIELD)
    portion: int = Field(
        ...,
        ge=0,
        description="Commission divisor; the agent gets balance // portion, 0 for none",
        examples=[10],
    )
    price: int = Field(..., gt=0, description="Asking price", examples=[100])


class BidRequest(BaseModel):
    """Request body for placing or restating a bid."""

    amount: int = Field(..., gt=0, description="Offer; must be at least the price")
    value: int = Field(
        default=0,
        ge=0,
        description="Funds attached to the call, moved from the caller into escrow",
    )


class AdjustPriceRequest(BaseModel):
    """Request body for a seller changing the asking price."""

    price: int = Field(..., gt=0)


class ReassignRequest(BaseModel):
    """Request body for pointing one sale's fees at a new operator."""

    operator: str = Field(..., **ADDRESS_FIELD)


class UpdateTemplateRequest(BaseModel):
    """Request body for replacing the escrow template."""

    template: str = Field(..., min_length=1, max_length=128, examples=["escrow-instance/v2"])


class UpdateMaesterRequest(BaseModel):
    """Request body for rotating the maester key(s).

    A single address under the single-maester policy, a list under the list policy.
    """

    keys: str | list[str]


class UpdateOperatorRequest(BaseModel):
    """Request body for rotating the operator (tsuriai)."""

    operator: str = Field(..., **ADDRESS_FIELD)


class FundRequest(BaseModel):
    """Request body for the development faucet."""

    address: str = Field(..., **ADDRESS_FIELD)
    amount: int = Field(..., gt=0)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class LedgerEventResponse(BaseModel):
    """A committed ledger event."""

    tx_id: str
    sequence: int
    address: str
    event_type: str
    data: dict[str, Any]


class ReceiptResponse(BaseModel):
    """Outcome of a committed ledger transaction."""

    tx_id: str
    sender: str
    target: str
    method: str
    result: Any = None
    events: list[LedgerEventResponse] = Field(default_factory=list)

    @classmethod
    def from_receipt(cls, receipt: Any) -> ReceiptResponse:
        return cls(
            tx_id=receipt.tx_id,
            sender=receipt.sender,
            target=receipt.target,
            method=receipt.method,
            result=receipt.result,
            events=[LedgerEventResponse(**e.to_dict()) for e in receipt.events],
        )


class SaleResponse(BaseModel):
    """Snapshot of a sale's escrow instance."""

    sale_id: int
    address: str
    status: str
    price: int
    seller: str
    agent: str
    portion: int
    buyer: str | None
    operator: str
    registry: str
    balance: int
    active: bool
    allowed_events: list[str]


class SaleStatusResponse(BaseModel):
    """Lightweight status check response."""

    sale_id: int
    status: str
    allowed_events: list[str] = Field(
        description="Operations the state machine permits from the current status"
    )


class RegistryResponse(BaseModel):
    """Registry configuration and active sales."""

    address: str
    template: str
    operator: str
    maesters: list[str]
    policy: str
    sales: list[int]


class BalanceResponse(BaseModel):
    address: str
    balance: int


class JournalEventResponse(BaseModel):
    """A persisted audit journal row."""

    model_config = ConfigDict(from_attributes=True)

    tx_id: str
    sequence: int
    contract_address: str
    event_type: str
    sale_id: int | None
    actor: str | None
    payload: dict | None
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    ledger: str = "unknown"
    database: str = "unknown"
    redis: str = "unknown"
