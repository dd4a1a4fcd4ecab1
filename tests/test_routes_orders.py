"""
Order Routes Tests
HTTP surface over the fake chain, including error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from ark_orders.client import ArkClient
from ark_orders.main import create_app
from ark_orders.observability.audit import OrderAuditLog


@pytest.fixture
def api(chain, registry, fast_settings, deterministic_time, offerer):
    ark = ArkClient(chain, registry, settings=fast_settings, clock=deterministic_time,
                    default_account=offerer)
    with TestClient(create_app(client=ark, settings=fast_settings)) as tc:
        yield tc


@pytest.fixture
def offer_body(chain, broker):
    return {
        "broker_id": broker,
        "token_address": chain.collectible,
        "token_id": 1,
        "start_amount": 100,
    }


class TestOrderRoutes:

    def test_health(self, api, registry):
        response = api.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["network"] == "development"
        assert body["chain_id"] == hex(registry.chain_id)
        assert body["signer_configured"] is True
        assert body["in_flight_submissions"] == 0

    def test_create_offer_then_status(self, api, chain, offerer, offer_body):
        chain.mint_currency(offerer.address, 1000)

        response = api.post("/orders/offers", json=offer_body)

        assert response.status_code == 200
        created = response.json()
        assert created["status"] == "Open"
        assert created["order_type"] == "Offer"

        status = api.get(f"/orders/{created['order_hash']}/status")
        assert status.json() == {"order_hash": created["order_hash"], "status": "Open", "terminal": False}

        kind = api.get(f"/orders/{created['order_hash']}/type")
        assert kind.json()["order_type"] == "Offer"

    def test_listing_and_cancel(self, api, chain, offerer, offer_body):
        chain.mint_token(offerer.address, 1)
        created = api.post("/orders/listings", json=offer_body).json()

        response = api.post("/orders/cancel", json={
            "order_hash": created["order_hash"], "token_address": offer_body["token_address"], "token_id": 1,
        })

        assert response.status_code == 200
        assert response.json()["transaction_hash"] == chain.broadcasts("cancel_order")[0][2]
        status = api.get(f"/orders/{created['order_hash']}/status").json()
        assert status["status"] == "Cancelled"
        assert status["terminal"] is True

    def test_wait_for_status(self, api, chain, offerer, offer_body):
        chain.mint_currency(offerer.address, 1000)
        created = api.post("/orders/offers", json=offer_body).json()

        response = api.get(f"/orders/{created['order_hash']}/status", params={"wait_for": "Open", "timeout": 1})

        assert response.json()["status"] == "Open"

    def test_missing_field_is_422(self, api, offer_body):
        offer_body.pop("token_id")
        response = api.post("/orders/offers", json=offer_body)
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_business_rule_violation_is_409(self, api, chain, offerer, offer_body):
        chain.mint_currency(offerer.address, 1000)
        offer_body["end_amount"] = 10

        response = api.post("/orders/offers", json=offer_body)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "SUBMISSION_ERROR"
        assert body["details"]["step"] == "build"

    def test_cancel_unknown_order_is_409(self, api, chain):
        response = api.post("/orders/cancel", json={
            "order_hash": "0xdead", "token_address": chain.collectible, "token_id": 1,
        })

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "CANCELLATION_ERROR"
        assert body["details"]["reason"] == "order not found"
        assert chain.broadcasts() == []

    def test_status_timeout_is_504(self, api, chain):
        chain.raw_status[0xfeed] = [0, 42]
        response = api.get("/orders/0xfeed/status", params={"wait_for": "Open", "timeout": 0.01})
        assert response.status_code == 504
        assert response.json()["details"]["retryable"] is True

    def test_interface_failure_is_502(self, api, chain):
        chain.missing_interfaces.add(chain.orderbook)
        response = api.get("/orders/0xfeed/status")
        assert response.status_code == 502
        assert response.json()["error"] == "INTERFACE_ERROR"


class TestNoSigner:

    def test_write_without_account_is_500(self, chain, registry, fast_settings, offer_body):
        ark = ArkClient(chain, registry, settings=fast_settings)
        with TestClient(create_app(client=ark, settings=fast_settings)) as api:
            response = api.post("/orders/offers", json=offer_body)
        assert response.status_code == 500
        assert response.json()["error"] == "CONFIG_ERROR"


class TestAuditRoute:

    def test_recent_events(self, chain, registry, fast_settings, deterministic_time, offerer, offer_body, temp_dir):
        audit = OrderAuditLog(str(temp_dir / "orders"))
        ark = ArkClient(chain, registry, settings=fast_settings, clock=deterministic_time,
                        audit=audit, default_account=offerer)
        chain.mint_currency(offerer.address, 1000)

        with TestClient(create_app(client=ark, settings=fast_settings)) as api:
            created = api.post("/orders/offers", json=offer_body).json()
            response = api.get("/orders/audit", params={"lines": 1})

        body = response.json()
        assert body["enabled"] is True
        assert [e["event"] for e in body["events"]] == ["order_created"]
        assert body["events"][0]["order_hash"] == created["order_hash"]

    def test_disabled_audit(self, api):
        body = api.get("/orders/audit").json()
        assert body == {"enabled": False, "events": []}
