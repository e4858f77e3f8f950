"""Shared fixtures: in-process fakes for the relay and the JSON-RPC node."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from relay_wallet.core.broker import NegotiationPolicy, SessionBroker
from relay_wallet.errors import CollaboratorFailure

# Hardhat / Anvil default mnemonic and its first account.
TEST_MNEMONIC = "test test test test test test test test test test test junk"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
IMPERSONATED = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
RPC_URL = "http://127.0.0.1:8545"


class FakeRelay:
    """Records every outbound relay call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.session_topic = "topic-abc"

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def pair(self, uri: str) -> Any:
        self.calls.append(("pair", uri))
        self._maybe_fail()
        return {"topic": "pairing-topic", "active": False}

    async def approve_session(self, proposal_id: Any, relay_protocol: str, namespaces: dict) -> dict:
        self.calls.append(("approve_session", (proposal_id, relay_protocol, namespaces)))
        self._maybe_fail()
        return {"topic": self.session_topic, "peer": {"metadata": {"name": "dApp"}}}

    async def reject(self, proposal_id: Any, reason: dict) -> None:
        self.calls.append(("reject", (proposal_id, reason)))
        self._maybe_fail()

    async def respond(self, topic: str, response: dict) -> None:
        self.calls.append(("respond", (topic, response)))
        self._maybe_fail()

    def last(self, name: str) -> Any:
        for call, args in reversed(self.calls):
            if call == name:
                return args
        raise AssertionError(f"no {name} call recorded")


class FakeNode:
    """Stands in for :class:`relay_wallet.wallet.provider.RpcNode`."""

    def __init__(self) -> None:
        self.rpc_url = RPC_URL
        self.impersonated: list[str] = []
        self.signed: list[tuple[bytes, dict]] = []
        self.sent_as: list[tuple[str, dict]] = []
        self.fail_with: Optional[Exception] = None

    def impersonate(self, address: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.impersonated.append(address)

    def send_signed_transaction(self, private_key: bytes, tx: dict) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.signed.append((private_key, tx))
        return "0x" + "ab" * 32

    def send_as(self, address: str, tx: dict) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent_as.append((address, tx))
        return "0x" + "cd" * 32


def proposal_event(
    proposal_id: int = 1,
    optional: Optional[dict] = None,
    required: Optional[dict] = None,
) -> dict:
    params: dict = {
        "optionalNamespaces": optional if optional is not None else {
            "eip155": {
                "chains": ["eip155:1"],
                "methods": ["eth_sendTransaction"],
                "events": ["chainChanged"],
            }
        },
        "relays": [{"protocol": "irn"}],
    }
    if required is not None:
        params["requiredNamespaces"] = required
    return {"id": proposal_id, "params": params}


def request_event(
    request_id: int = 100,
    method: str = "personal_sign",
    params: Optional[list] = None,
    topic: str = "topic-abc",
) -> dict:
    return {
        "id": request_id,
        "topic": topic,
        "params": {
            "request": {"method": method, "params": params if params is not None else ["0x68656c6c6f", TEST_ADDRESS]},
            "chainId": "eip155:1",
        },
    }


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def broker(relay: FakeRelay, node: FakeNode) -> SessionBroker:
    return SessionBroker(relay, node, NegotiationPolicy(rpc_url=RPC_URL))


@pytest.fixture
def collaborator_error() -> CollaboratorFailure:
    return CollaboratorFailure("relay", "connection refused")
