"""Shared plumbing for routes that open a ledger transaction.

Every state-changing route goes through commit(): replay a stored response
for a known Idempotency-Key, otherwise run the transaction, remember the
response under the key and then copy its events to the audit journal.
A journal failure after the ledger has committed is logged, and the
committed receipt is still returned.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_marketplace.domain.exceptions import DuplicateOperationError
from escrow_marketplace.logging_config import get_logger
from escrow_marketplace.schemas.marketplace import ReceiptResponse

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import Request

    from escrow_marketplace.infrastructure.redis_client import IdempotencyStore
    from escrow_marketplace.ledger import Receipt
    from escrow_marketplace.services.journal_service import JournalService

logger = get_logger(__name__)


def _fingerprint(request: Request, caller: str) -> str:
    return f"{request.method} {request.url.path} {caller}"


async def commit(
    request: Request,
    caller: str,
    run: Callable[[], Receipt],
    journal: JournalService,
    store: IdempotencyStore | None,
) -> ReceiptResponse:
    """Run one ledger transaction for a route and return its receipt."""
    key = request.headers.get("Idempotency-Key")
    fingerprint = _fingerprint(request, caller)

    if key and store is not None:
        cached = await store.get(key)
        if cached is not None:
            if cached.get("fingerprint") != fingerprint:
                raise DuplicateOperationError(key)
            return ReceiptResponse(**cached["response"])
    elif key:
        logger.warning("idempotency.store_unavailable", key=key)

    receipt = run()
    response = ReceiptResponse.from_receipt(receipt)

    if key and store is not None:
        await store.put(
            key,
            {"fingerprint": fingerprint, "response": response.model_dump(mode="json")},
        )

    try:
        await journal.record_receipt(receipt)
    except Exception as exc:
        logger.error(
            "journal.record_failed",
            tx_id=receipt.tx_id,
            method=receipt.method,
            error=str(exc),
            exc_info=True,
        )
    return response
