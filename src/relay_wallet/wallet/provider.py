"""Web3 JSON-RPC node wrapper used by both signer backends."""

from __future__ import annotations

import logging
from typing import Any, Optional

from web3 import Web3

from relay_wallet.errors import BrokerError, CollaboratorFailure

logger = logging.getLogger("relay_wallet.wallet.provider")

_QUANTITY_FIELDS = (
    "value",
    "gas",
    "gasPrice",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "nonce",
    "chainId",
    "type",
)
_FIELD_ALIASES = {"input": "data", "gasLimit": "gas"}


def _to_int(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    return value


def normalize_transaction(tx: dict) -> dict:
    """Convert a dApp-supplied ``eth_sendTransaction`` object for local signing.

    Hex quantities become ints, ``input``/``gasLimit`` are renamed to the
    field names eth-account expects, and ``to`` is checksummed. Empty values
    are dropped.
    """
    out: dict = {}
    for key, value in tx.items():
        if value is None or value == "":
            continue
        key = _FIELD_ALIASES.get(key, key)
        if key in _QUANTITY_FIELDS:
            try:
                value = _to_int(value)
            except ValueError as exc:
                raise ValueError(f"Invalid quantity for '{key}': {value!r}") from exc
        out[key] = value
    if out.get("to"):
        out["to"] = Web3.to_checksum_address(out["to"])
    return out


class RpcNode:
    """Lazily-connected JSON-RPC node (Anvil or any EVM endpoint).

    All methods are blocking; the broker calls them through
    ``asyncio.to_thread``.
    """

    def __init__(self, rpc_url: str, request_timeout: float = 30.0) -> None:
        self.rpc_url = rpc_url
        self.request_timeout = request_timeout
        self._w3: Optional[Web3] = None

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = Web3(
                Web3.HTTPProvider(
                    self.rpc_url, request_kwargs={"timeout": self.request_timeout}
                )
            )
        return self._w3

    # ------------------------------------------------------------------
    # Raw RPC
    # ------------------------------------------------------------------

    def send(self, method: str, params: list) -> Any:
        """Send a raw JSON-RPC call and return its ``result``."""
        logger.debug(f"rpc -> {method} {params}")
        try:
            response = self.w3.provider.make_request(method, params)
        except Exception as exc:
            raise CollaboratorFailure("rpc", f"{method} failed: {exc}") from exc
        error = response.get("error")
        if error:
            message = error.get("message", error) if isinstance(error, dict) else error
            raise CollaboratorFailure("rpc", f"{method} failed: {message}")
        return response.get("result")

    def impersonate(self, address: str) -> None:
        """Ask the node to accept transactions from *address* without a signature."""
        self.send("anvil_impersonateAccount", [address])
        logger.info(f"Node is impersonating {address}")

    def send_as(self, address: str, tx: dict) -> str:
        """Submit *tx* unsigned; the node executes it as *address*."""
        payload = dict(tx)
        payload["from"] = address
        return self.send("eth_sendTransaction", [payload])

    # ------------------------------------------------------------------
    # Locally signed transactions
    # ------------------------------------------------------------------

    def send_signed_transaction(self, private_key: bytes, tx: dict) -> str:
        """Fill in missing fields, sign with *private_key*, and submit raw.

        Uses EIP-1559 fee parameters with a legacy gas price fallback.

        Returns the transaction hash as a 0x-prefixed hex string.
        """
        try:
            return self._send_signed_transaction(private_key, tx)
        except BrokerError:
            raise
        except Exception as exc:
            raise CollaboratorFailure("rpc", f"eth_sendRawTransaction failed: {exc}") from exc

    def _send_signed_transaction(self, private_key: bytes, tx: dict) -> str:
        w3 = self.w3
        account = w3.eth.account.from_key(private_key)
        tx = dict(tx)
        tx.pop("from", None)

        if "nonce" not in tx:
            tx["nonce"] = w3.eth.get_transaction_count(account.address, "pending")
        if "chainId" not in tx:
            tx["chainId"] = w3.eth.chain_id

        if "gasPrice" not in tx and "maxFeePerGas" not in tx:
            # Try EIP-1559 first, fall back to legacy gas price
            latest = w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is not None:
                max_priority = Web3.to_wei(1.5, "gwei")
                tx["maxFeePerGas"] = base_fee * 2 + max_priority
                tx["maxPriorityFeePerGas"] = max_priority
            else:
                tx["gasPrice"] = w3.eth.gas_price
        elif "maxFeePerGas" in tx and "maxPriorityFeePerGas" not in tx:
            tx["maxPriorityFeePerGas"] = min(Web3.to_wei(1.5, "gwei"), tx["maxFeePerGas"])

        if "gas" not in tx:
            tx["gas"] = w3.eth.estimate_gas({**tx, "from": account.address})

        signed = w3.eth.account.sign_transaction(tx, private_key)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)
