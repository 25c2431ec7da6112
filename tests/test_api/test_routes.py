"""HTTP tests for the REST routes, with the journal and idempotency store faked.

The app is built with create_app() and driven by TestClient without entering
the lifespan, so no database or Redis connection is opened.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import AGENT, BUYER, MAESTER, OPERATOR, SELLER, STRANGER, TEMPLATE
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from escrow_marketplace.api.deps import (
    get_idempotency_store,
    get_journal,
    get_marketplace_service,
)
from escrow_marketplace.config import Settings
from escrow_marketplace.main import create_app
from escrow_marketplace.services.marketplace_service import MarketplaceService


class FakeIdempotencyStore:
    """Dict-backed stand-in with the same set-if-absent semantics."""

    def __init__(self) -> None:
        self.entries: dict[str, dict] = {}

    async def get(self, key: str) -> dict | None:
        return self.entries.get(key)

    async def put(self, key: str, response: dict) -> None:
        self.entries.setdefault(key, response)


@pytest.fixture
def service() -> MarketplaceService:
    svc = MarketplaceService.bootstrap(
        Settings(
            escrow_template_ref=TEMPLATE,
            registry_maesters=MAESTER,
            registry_operator=OPERATOR,
            registry_authorization_policy="single",
            faucet_enabled=True,
        )
    )
    svc.fund(BUYER, 1_000)
    return svc


@pytest.fixture
def journal() -> MagicMock:
    fake = MagicMock()
    fake.record_receipt = AsyncMock(return_value=0)
    fake.get_sale_history = AsyncMock(return_value=[])
    fake.get_transaction = AsyncMock(return_value=[])
    return fake


@pytest.fixture
def store() -> FakeIdempotencyStore:
    return FakeIdempotencyStore()


@pytest.fixture
def client(service, journal, store) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_marketplace_service] = lambda: service
    app.dependency_overrides[get_journal] = lambda: journal
    app.dependency_overrides[get_idempotency_store] = lambda: store
    return TestClient(app)


def as_(address: str, **headers: str) -> dict[str, str]:
    return {"X-Caller-Address": address, **headers}


def post_sale(client: TestClient, sale_id: int = 1, price: int = 100):
    return client.post(
        "/api/v1/sales",
        json={
            "sale_id": sale_id,
            "seller": SELLER,
            "agent": AGENT,
            "portion": 10,
            "price": price,
        },
        headers=as_(SELLER),
    )


def bid(client: TestClient, sale_id: int = 1, amount: int = 100, value: int = 100, **headers):
    return client.post(
        f"/api/v1/sales/{sale_id}/bid",
        json={"amount": amount, "value": value},
        headers=as_(BUYER, **headers),
    )


class TestSalesRoutes:
    def test_post_sale(self, client: TestClient, service: MarketplaceService, journal) -> None:
        response = post_sale(client)
        assert response.status_code == 201
        body = response.json()
        assert body["method"] == "post_sale"
        assert body["result"] == service.lookup(1)
        assert any(e["event_type"] == "SALE_POSTED" for e in body["events"])
        journal.record_receipt.assert_awaited_once()

    def test_request_id_header(self, client: TestClient) -> None:
        response = post_sale(client)
        assert response.headers["X-Request-ID"]

    def test_caller_header_required(self, client: TestClient) -> None:
        response = client.post("/api/v1/sales/1/hold")
        assert response.status_code == 422

    def test_full_negotiation(self, client: TestClient, service: MarketplaceService) -> None:
        post_sale(client)
        assert bid(client).status_code == 200
        assert client.post("/api/v1/sales/1/hold", headers=as_(BUYER)).status_code == 200
        accepted = client.post("/api/v1/sales/1/accept", headers=as_(SELLER))

        assert accepted.status_code == 200
        assert accepted.json()["result"] is True
        assert service.balance_of(OPERATOR) == 2
        assert service.balance_of(AGENT) == 9
        assert service.balance_of(SELLER) == 89

    def test_get_sale(self, client: TestClient) -> None:
        post_sale(client, price=150)
        response = client.get("/api/v1/sales/1")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OPEN"
        assert body["price"] == 150
        assert body["buyer"] is None
        assert body["active"] is True

    def test_get_status(self, client: TestClient) -> None:
        post_sale(client)
        bid(client)
        body = client.get("/api/v1/sales/1/status").json()
        assert body["status"] == "NEGO"
        assert "accept" in body["allowed_events"]

    def test_adjust_cancel_refuse(self, client: TestClient, service: MarketplaceService) -> None:
        post_sale(client)
        bid(client)
        adjusted = client.post(
            "/api/v1/sales/1/adjust", json={"price": 80}, headers=as_(SELLER)
        )
        assert adjusted.status_code == 200
        assert service.balance_of(BUYER) == 920

        assert client.post("/api/v1/sales/1/refuse", headers=as_(SELLER)).status_code == 200
        bid(client, amount=80, value=80)
        assert client.post("/api/v1/sales/1/cancel", headers=as_(BUYER)).status_code == 200
        assert service.balance_of(BUYER) == 999

    def test_revoke_sweep_reassign(self, client: TestClient) -> None:
        post_sale(client)
        reassigned = client.post(
            "/api/v1/sales/1/reassign", json={"operator": STRANGER}, headers=as_(OPERATOR)
        )
        assert reassigned.status_code == 200
        assert client.post("/api/v1/sales/1/revoke", headers=as_(SELLER)).status_code == 200
        swept = client.post("/api/v1/sales/1/sweep", headers=as_(STRANGER))
        assert swept.status_code == 200
        assert client.get("/api/v1/sales/1").json()["status"] == "DONE"

    def test_events_and_history(self, client: TestClient, journal) -> None:
        post_sale(client)
        events = client.get("/api/v1/sales/1/events").json()
        assert events[0]["event_type"] in {"CONTRACT_DEPLOYED", "SALE_POSTED"}

        assert client.get("/api/v1/sales/1/history").json() == []
        journal.get_sale_history.assert_awaited_once_with(1)


class TestErrorMapping:
    def test_unknown_sale_is_404(self, client: TestClient) -> None:
        response = client.get("/api/v1/sales/99")
        assert response.status_code == 404
        assert response.json()["error"] == "SALE_NOT_FOUND"

    def test_events_of_unknown_sale_is_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/sales/99/events").status_code == 404

    def test_wrong_party_is_403(self, client: TestClient) -> None:
        post_sale(client)
        bid(client)
        response = client.post("/api/v1/sales/1/accept", headers=as_(STRANGER))
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_illegal_transition_is_409(self, client: TestClient) -> None:
        post_sale(client)
        response = client.post("/api/v1/sales/1/accept", headers=as_(SELLER))
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"

    def test_duplicate_sale_is_409(self, client: TestClient) -> None:
        post_sale(client)
        response = post_sale(client)
        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_SALE"

    def test_low_bid_is_400(self, client: TestClient, service: MarketplaceService) -> None:
        post_sale(client)
        response = bid(client, amount=50, value=100)
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_AMOUNT"
        assert service.balance_of(BUYER) == 1_000

    def test_unfunded_bid_is_400(self, client: TestClient) -> None:
        post_sale(client)
        response = client.post(
            "/api/v1/sales/1/bid",
            json={"amount": 100, "value": 100},
            headers=as_(STRANGER),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INSUFFICIENT_FUNDS"

    def test_body_validation_is_422(self, client: TestClient) -> None:
        post_sale(client)
        assert bid(client, amount=0).status_code == 422

    def test_failed_call_is_not_journaled(self, client: TestClient, journal) -> None:
        post_sale(client)
        journal.record_receipt.reset_mock()
        client.post("/api/v1/sales/1/accept", headers=as_(SELLER))
        journal.record_receipt.assert_not_awaited()


class TestIdempotency:
    def test_replay_returns_stored_receipt(
        self, client: TestClient, service: MarketplaceService
    ) -> None:
        post_sale(client)
        first = bid(client, **{"Idempotency-Key": "bid-1"})
        second = bid(client, **{"Idempotency-Key": "bid-1"})

        assert first.status_code == second.status_code == 200
        assert first.json()["tx_id"] == second.json()["tx_id"]
        assert service.balance_of(BUYER) == 900

    def test_key_reused_on_another_route_is_409(self, client: TestClient) -> None:
        post_sale(client)
        bid(client, **{"Idempotency-Key": "shared"})
        response = client.post(
            "/api/v1/sales/1/hold", headers=as_(BUYER, **{"Idempotency-Key": "shared"})
        )
        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_OPERATION"

    def test_journal_failure_still_stores_the_key(
        self, client: TestClient, service: MarketplaceService, journal, store
    ) -> None:
        post_sale(client)
        journal.record_receipt.side_effect = RuntimeError("db down")

        first = bid(client, **{"Idempotency-Key": "bid-db-down"})
        retry = bid(client, **{"Idempotency-Key": "bid-db-down"})

        assert first.status_code == retry.status_code == 200
        assert first.json()["tx_id"] == retry.json()["tx_id"]
        assert "bid-db-down" in store.entries
        assert service.balance_of(BUYER) == 900
        assert journal.record_receipt.await_count == 1

    def test_keyed_faucet_mints_once(
        self, client: TestClient, service: MarketplaceService, journal
    ) -> None:
        journal.record_receipt.side_effect = RuntimeError("db down")
        payload = {"address": STRANGER, "amount": 40}
        headers = {"Idempotency-Key": "faucet-1"}

        first = client.post("/api/v1/ledger/faucet", json=payload, headers=headers)
        retry = client.post("/api/v1/ledger/faucet", json=payload, headers=headers)

        assert first.status_code == retry.status_code == 201
        assert first.json()["tx_id"] == retry.json()["tx_id"]
        assert service.balance_of(STRANGER) == 40

    def test_faucet_key_reused_for_another_address_is_409(self, client: TestClient) -> None:
        headers = {"Idempotency-Key": "faucet-2"}
        client.post("/api/v1/ledger/faucet", json={"address": STRANGER, "amount": 1}, headers=headers)
        response = client.post(
            "/api/v1/ledger/faucet", json={"address": SELLER, "amount": 1}, headers=headers
        )
        assert response.status_code == 409

    def test_without_store_every_request_runs(
        self, client: TestClient, service: MarketplaceService
    ) -> None:
        client.app.dependency_overrides[get_idempotency_store] = lambda: None
        post_sale(client)
        bid(client, **{"Idempotency-Key": "k"})
        response = bid(client, **{"Idempotency-Key": "k"})
        assert response.status_code == 200
        assert service.balance_of(BUYER) == 900


class TestRegistryRoutes:
    def test_get_registry(self, client: TestClient, service: MarketplaceService) -> None:
        post_sale(client)
        body = client.get("/api/v1/registry").json()
        assert body["address"] == service.registry_address
        assert body["template"] == TEMPLATE
        assert body["maesters"] == [MAESTER]
        assert body["sales"] == [1]

    def test_lookup(self, client: TestClient, service: MarketplaceService) -> None:
        post_sale(client)
        body = client.get("/api/v1/registry/sales/1").json()
        assert body == {"sale_id": 1, "address": service.lookup(1)}
        assert client.get("/api/v1/registry/sales/2").status_code == 404

    def test_force_close(self, client: TestClient, service: MarketplaceService) -> None:
        post_sale(client)
        bid(client)
        response = client.post("/api/v1/registry/sales/1/force-close", headers=as_(MAESTER))
        assert response.status_code == 200
        assert response.json()["result"] is True
        assert service.balance_of(OPERATOR) == 100

    def test_force_close_unregistered(self, client: TestClient) -> None:
        response = client.post("/api/v1/registry/sales/5/force-close", headers=as_(MAESTER))
        assert response.status_code == 200
        assert response.json()["result"] is False

    def test_force_close_requires_maester(self, client: TestClient) -> None:
        post_sale(client)
        response = client.post("/api/v1/registry/sales/1/force-close", headers=as_(SELLER))
        assert response.status_code == 403

    def test_update_template(self, client: TestClient) -> None:
        response = client.put(
            "/api/v1/registry/template",
            json={"template": "escrow-instance/v2"},
            headers=as_(MAESTER),
        )
        assert response.status_code == 200
        assert client.get("/api/v1/registry").json()["template"] == "escrow-instance/v2"

    def test_update_template_requires_maester(self, client: TestClient) -> None:
        response = client.put(
            "/api/v1/registry/template",
            json={"template": "escrow-instance/v2"},
            headers=as_(OPERATOR),
        )
        assert response.status_code == 403

    def test_rotate_maester_and_operator(self, client: TestClient) -> None:
        assert client.put(
            "/api/v1/registry/maesters", json={"keys": STRANGER}, headers=as_(OPERATOR)
        ).status_code == 200
        assert client.put(
            "/api/v1/registry/operator", json={"operator": STRANGER}, headers=as_(OPERATOR)
        ).status_code == 200
        body = client.get("/api/v1/registry").json()
        assert body["maesters"] == [STRANGER]
        assert body["operator"] == STRANGER

    def test_single_policy_rejects_key_list(self, client: TestClient) -> None:
        response = client.put(
            "/api/v1/registry/maesters",
            json={"keys": [MAESTER, STRANGER]},
            headers=as_(OPERATOR),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_KEY"


class TestLedgerRoutes:
    def test_faucet_and_balance(self, client: TestClient, journal) -> None:
        response = client.post("/api/v1/ledger/faucet", json={"address": STRANGER, "amount": 40})
        assert response.status_code == 201
        assert response.json()["result"] == 40
        journal.record_receipt.assert_awaited_once()

        balance = client.get(f"/api/v1/ledger/balances/{STRANGER}").json()
        assert balance == {"address": STRANGER, "balance": 40}

    def test_events_limit(self, client: TestClient) -> None:
        post_sale(client)
        events = client.get("/api/v1/ledger/events", params={"limit": 2}).json()
        assert len(events) == 2
        assert events[-1]["event_type"] == "SALE_POSTED"

    def test_transaction_lookup(self, client: TestClient, journal) -> None:
        assert client.get("/api/v1/ledger/transactions/0xabc").json() == []
        journal.get_transaction.assert_awaited_once_with("0xabc")


class TestHealth:
    def test_health_reports_components(self, client: TestClient, service, monkeypatch) -> None:
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        monkeypatch.setattr(
            "escrow_marketplace.infrastructure.database.engine._get_engine", lambda: engine
        )
        monkeypatch.setattr(
            "escrow_marketplace.services.marketplace_service.get_marketplace", lambda: service
        )

        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["ledger"] == "healthy"
        assert body["database"] == "healthy"
        assert body["redis"].startswith("unavailable")
