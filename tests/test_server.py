"""
Tests for the HTTP API.

Uses FastAPI's TestClient against an app wired to the in-process fakes.
"""

import pytest
from fastapi.testclient import TestClient

from relay_wallet.config import AppConfig, RelayConfig
from relay_wallet.server.app import create_app

from conftest import TEST_ADDRESS, TEST_MNEMONIC, proposal_event, request_event


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client(broker):
    with TestClient(create_app(broker)) as c:
        yield c


@pytest.fixture
def wallet(client):
    resp = client.post("/wallet/create", json={"mnemonic": TEST_MNEMONIC})
    assert resp.status_code == 200
    return resp.json()


def _push(client, event_type, event):
    resp = client.post("/relay/events", json={"type": event_type, "event": event})
    assert resp.status_code == 200, resp.text
    return resp


# =============================================================================
# Wallet
# =============================================================================


class TestWalletRoutes:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_create(self, wallet):
        assert wallet == {"address": TEST_ADDRESS, "mnemonic": TEST_MNEMONIC}

    def test_create_without_body_generates(self, client):
        resp = client.post("/wallet/create")
        assert resp.status_code == 200
        assert len(resp.json()["mnemonic"].split()) == 12

    def test_create_invalid_mnemonic(self, client):
        resp = client.post("/wallet/create", json={"mnemonic": "nope"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_params"

    def test_connect_requires_wallet(self, client):
        resp = client.post("/wallet/connect", json={"uri": "wc:abc@2"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Wallet not initialized", "code": "not_initialized"}

    def test_connect(self, client, wallet, relay):
        resp = client.post("/wallet/connect", json={"uri": "wc:abc@2"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert relay.last("pair") == "wc:abc@2"

    def test_connect_failure(self, client, wallet, relay, collaborator_error):
        relay.fail_with = collaborator_error
        resp = client.post("/wallet/connect", json={"uri": "wc:abc@2"})
        assert resp.status_code == 502
        assert resp.json() == {
            "success": False,
            "error": "relay: connection refused",
            "code": "pairing_failed",
        }

    def test_status(self, client, wallet):
        data = client.get("/wallet/status").json()
        assert data["initialized"] is True
        assert data["address"] == TEST_ADDRESS
        assert data["history"][0]["type"] == "wallet_created"


# =============================================================================
# Session and request decisions
# =============================================================================


class TestDecisionRoutes:
    def test_full_flow(self, client, wallet, relay):
        _push(client, "session_proposal", proposal_event())
        pending = client.get("/wallet/status").json()["pendingRequests"]
        assert pending[0][0] == "session_proposal"

        resp = client.post("/wallet/approve-session")
        assert resp.status_code == 200
        session = resp.json()["session"]
        assert session["topic"] == "topic-abc"
        assert session["namespaces"]["eip155"]["accounts"] == [f"eip155:1:{TEST_ADDRESS}"]

        _push(client, "session_request", request_event(request_id=100))
        resp = client.post("/wallet/approve-request", json={})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["requestId"] == 100
        assert body["result"].startswith("0x")

        status = client.get("/wallet/status").json()
        assert status["connected"] is True
        assert status["pendingRequests"] == []

    def test_approve_session_nothing_pending(self, client, wallet):
        resp = client.post("/wallet/approve-session")
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    def test_reject_session(self, client, relay):
        _push(client, "session_proposal", proposal_event(proposal_id=5))
        resp = client.post("/wallet/reject-session")
        assert resp.json() == {"success": True}
        assert relay.last("reject")[0] == 5

    def test_reject_request(self, client, relay):
        _push(client, "session_request", request_event(request_id=100))
        resp = client.post("/wallet/reject-request", json={"requestId": "100"})
        assert resp.json() == {"success": True}
        assert relay.last("respond")[1]["error"]["code"] == 5000

    def test_reject_request_requires_id(self, client):
        resp = client.post("/wallet/reject-request", json={})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_params"

    def test_reject_unknown_request(self, client):
        resp = client.post("/wallet/reject-request", json={"requestId": 42})
        assert resp.status_code == 404

    def test_impersonated_sign_is_422(self, client):
        client.post("/wallet/create", json={"address": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"})
        _push(client, "session_request", request_event(request_id=100))
        resp = client.post("/wallet/approve-request", json={"requestId": 100})
        assert resp.status_code == 422
        assert resp.json()["code"] == "unsupported_operation"

    def test_sign_transaction_is_501(self, client, wallet):
        _push(client, "session_request", request_event(request_id=1, method="eth_signTransaction", params=[{}]))
        resp = client.post("/wallet/approve-request")
        assert resp.status_code == 501


# =============================================================================
# Relay webhook
# =============================================================================


class TestRelayEvents:
    def test_unknown_event_type(self, client):
        resp = client.post("/relay/events", json={"type": "bogus", "event": {}})
        assert resp.status_code == 400

    def test_error_event_is_logged_only(self, client, broker):
        resp = client.post("/relay/events", json={"type": "error", "event": {"message": "x"}})
        assert resp.status_code == 200
        assert broker.status()["history"] == []

    def test_secret_enforced(self, broker):
        config = AppConfig(relay=RelayConfig(events_secret="s3cret"))
        with TestClient(create_app(broker, config)) as client:
            event = {"type": "session_proposal", "event": proposal_event()}

            assert client.post("/relay/events", json=event).status_code == 401
            bad = client.post("/relay/events", json=event, headers={"X-Relay-Secret": "nope"})
            assert bad.status_code == 401

            ok = client.post("/relay/events", json=event, headers={"X-Relay-Secret": "s3cret"})
            assert ok.status_code == 200
