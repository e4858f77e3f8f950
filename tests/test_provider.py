"""
Tests for the web3 node wrapper.

The Web3 instance is replaced by a stub that answers the handful of calls
RpcNode makes; signing still goes through eth-account.
"""

import pytest
from eth_account import Account
from web3 import Web3

from relay_wallet.errors import CollaboratorFailure
from relay_wallet.wallet.provider import RpcNode

from conftest import IMPERSONATED, TEST_ADDRESS

TEST_PRIVATE_KEY = bytes.fromhex("ac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80")
GWEI = 10**9


# =============================================================================
# Fixtures
# =============================================================================


class StubProvider:
    def __init__(self):
        self.requests = []
        self.response = {"jsonrpc": "2.0", "id": 1, "result": None}
        self.fail_with = None

    def make_request(self, method, params):
        self.requests.append((method, params))
        if self.fail_with is not None:
            raise self.fail_with
        return self.response


class StubAccounts:
    """Delegates to eth-account, remembering what was signed."""

    def __init__(self):
        self.signed = []

    def from_key(self, private_key):
        return Account.from_key(private_key)

    def sign_transaction(self, tx, private_key):
        self.signed.append(dict(tx))
        return Account.sign_transaction(tx, private_key)


class StubEth:
    def __init__(self):
        self.account = StubAccounts()
        self.chain_id = 31337
        self.gas_price = 3 * GWEI
        self.latest_block = {"number": 1, "baseFeePerGas": 10 * GWEI}
        self.estimated = []
        self.raw_sent = []
        self.fail_with = None

    def get_transaction_count(self, address, block_identifier):
        if self.fail_with is not None:
            raise self.fail_with
        assert block_identifier == "pending"
        return 7

    def get_block(self, block_identifier):
        return self.latest_block

    def estimate_gas(self, tx):
        self.estimated.append(dict(tx))
        return 21000

    def send_raw_transaction(self, raw):
        self.raw_sent.append(raw)
        return b"\x11" * 32


class StubWeb3:
    def __init__(self):
        self.provider = StubProvider()
        self.eth = StubEth()


@pytest.fixture
def w3():
    return StubWeb3()


@pytest.fixture
def rpc(w3):
    node = RpcNode("http://127.0.0.1:8545")
    node._w3 = w3
    return node


# =============================================================================
# Raw RPC
# =============================================================================


class TestSend:
    def test_returns_result(self, rpc, w3):
        w3.provider.response = {"jsonrpc": "2.0", "id": 1, "result": "0x7a69"}
        assert rpc.send("eth_chainId", []) == "0x7a69"
        assert w3.provider.requests == [("eth_chainId", [])]

    def test_error_response_wrapped(self, rpc, w3):
        w3.provider.response = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}}
        with pytest.raises(CollaboratorFailure) as exc:
            rpc.send("anvil_impersonateAccount", [IMPERSONATED])
        assert exc.value.collaborator == "rpc"
        assert "method not found" in exc.value.message

    def test_transport_error_wrapped(self, rpc, w3):
        w3.provider.fail_with = ConnectionError("connection refused")
        with pytest.raises(CollaboratorFailure, match="connection refused"):
            rpc.send("eth_chainId", [])

    def test_impersonate(self, rpc, w3):
        rpc.impersonate(IMPERSONATED)
        assert w3.provider.requests == [("anvil_impersonateAccount", [IMPERSONATED])]

    def test_send_as_forces_sender(self, rpc, w3):
        w3.provider.response = {"jsonrpc": "2.0", "id": 1, "result": "0x" + "cd" * 32}
        tx = {"from": TEST_ADDRESS, "to": TEST_ADDRESS, "value": "0x1"}

        assert rpc.send_as(IMPERSONATED, tx) == "0x" + "cd" * 32

        method, params = w3.provider.requests[0]
        assert method == "eth_sendTransaction"
        assert params == [{"from": IMPERSONATED, "to": TEST_ADDRESS, "value": "0x1"}]
        assert tx["from"] == TEST_ADDRESS

    def test_web3_is_lazy_and_cached(self):
        node = RpcNode("http://127.0.0.1:8545", request_timeout=5)
        assert node._w3 is None
        assert node.w3 is node.w3
        assert isinstance(node.w3, Web3)


# =============================================================================
# Locally signed transactions
# =============================================================================


class TestSendSignedTransaction:
    def test_fills_missing_fields_eip1559(self, rpc, w3):
        tx_hash = rpc.send_signed_transaction(
            TEST_PRIVATE_KEY, {"from": TEST_ADDRESS, "to": IMPERSONATED, "value": 5}
        )

        assert tx_hash == "0x" + "11" * 32
        (signed,) = w3.eth.account.signed
        assert signed == {
            "to": IMPERSONATED,
            "value": 5,
            "nonce": 7,
            "chainId": 31337,
            "maxFeePerGas": 2 * 10 * GWEI + 1_500_000_000,
            "maxPriorityFeePerGas": 1_500_000_000,
            "gas": 21000,
        }
        assert w3.eth.estimated[0]["from"] == TEST_ADDRESS
        assert Account.recover_transaction(w3.eth.raw_sent[0]) == TEST_ADDRESS

    def test_legacy_gas_price_without_base_fee(self, rpc, w3):
        w3.eth.latest_block = {"number": 1}
        rpc.send_signed_transaction(TEST_PRIVATE_KEY, {"to": IMPERSONATED, "value": 1})

        (signed,) = w3.eth.account.signed
        assert signed["gasPrice"] == 3 * GWEI
        assert "maxFeePerGas" not in signed

    def test_priority_fee_clamped_to_max_fee(self, rpc, w3):
        rpc.send_signed_transaction(
            TEST_PRIVATE_KEY, {"to": IMPERSONATED, "value": 1, "maxFeePerGas": GWEI}
        )
        (signed,) = w3.eth.account.signed
        assert signed["maxFeePerGas"] == GWEI
        assert signed["maxPriorityFeePerGas"] == GWEI

    def test_supplied_fields_kept(self, rpc, w3):
        rpc.send_signed_transaction(
            TEST_PRIVATE_KEY,
            {"to": IMPERSONATED, "value": 1, "nonce": 2, "chainId": 1, "gas": 50000, "gasPrice": GWEI},
        )
        (signed,) = w3.eth.account.signed
        assert signed == {
            "to": IMPERSONATED,
            "value": 1,
            "nonce": 2,
            "chainId": 1,
            "gas": 50000,
            "gasPrice": GWEI,
        }
        assert w3.eth.estimated == []

    def test_node_errors_wrapped(self, rpc, w3):
        w3.eth.fail_with = ConnectionError("node down")
        with pytest.raises(CollaboratorFailure) as exc:
            rpc.send_signed_transaction(TEST_PRIVATE_KEY, {"to": IMPERSONATED, "value": 1})
        assert exc.value.collaborator == "rpc"
        assert "node down" in exc.value.message
        assert w3.eth.raw_sent == []
