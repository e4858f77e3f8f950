"""Signer backends and JSON-RPC method dispatch.

A signer is chosen once, when the wallet identity is created:

* :class:`KeySigner` holds the private key, signs messages locally and
  submits locally-signed transactions.
* :class:`ImpersonationSigner` holds only an address. The node executes its
  transactions; it never produces message signatures, so an impersonated
  account can't mint portable proofs of ownership.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from relay_wallet.core.models import SigningRequest
from relay_wallet.errors import (
    InvalidParams,
    MethodNotImplemented,
    UnsupportedMethod,
    UnsupportedOperation,
)
from relay_wallet.wallet.chains import parse_chain
from relay_wallet.wallet.identity import ImpersonatedIdentity, KeyIdentity, WalletIdentity
from relay_wallet.wallet.provider import RpcNode, normalize_transaction

logger = logging.getLogger("relay_wallet.wallet.signers")


def decode_message(message: Any) -> bytes:
    """``personal_sign`` payloads are hex data or plain UTF-8 text."""
    if isinstance(message, bytes):
        return message
    if not isinstance(message, str):
        raise InvalidParams(f"personal_sign message must be a string, got {type(message).__name__}")
    if message.startswith(("0x", "0X")):
        try:
            return bytes.fromhex(message[2:])
        except ValueError:
            pass
    return message.encode("utf-8")


class Signer(ABC):
    """Capability interface shared by both backends."""

    impersonated: bool = False

    def __init__(self, node: RpcNode) -> None:
        self.node = node

    @property
    @abstractmethod
    def address(self) -> str: ...

    @abstractmethod
    async def sign_message(self, message: bytes) -> str:
        """EIP-191 personal-message signature as 0x-hex."""

    @abstractmethod
    async def send_transaction(self, tx: dict, chain_id: Optional[str] = None) -> str:
        """Submit *tx* from this wallet and return its hash."""

    def _check_sender(self, tx: dict) -> None:
        sender = tx.get("from")
        if sender and str(sender).lower() != self.address.lower():
            raise UnsupportedOperation(
                f"Transaction sender {sender} is not the wallet address {self.address}"
            )


class KeySigner(Signer):
    def __init__(self, identity: KeyIdentity, node: RpcNode) -> None:
        super().__init__(node)
        self.identity = identity

    @property
    def address(self) -> str:
        return self.identity.address

    async def sign_message(self, message: bytes) -> str:
        signed = Account.sign_message(
            encode_defunct(primitive=message), private_key=self.identity.private_key
        )
        return Web3.to_hex(signed.signature)

    async def send_transaction(self, tx: dict, chain_id: Optional[str] = None) -> str:
        self._check_sender(tx)
        try:
            prepared = normalize_transaction(tx)
        except ValueError as exc:
            raise InvalidParams(str(exc)) from exc
        if "chainId" not in prepared and chain_id:
            numeric = parse_chain(chain_id).numeric
            if numeric is not None:
                prepared["chainId"] = numeric
        return await asyncio.to_thread(
            self.node.send_signed_transaction, self.identity.private_key, prepared
        )


class ImpersonationSigner(Signer):
    impersonated = True

    def __init__(self, identity: ImpersonatedIdentity, node: RpcNode) -> None:
        super().__init__(node)
        self.identity = identity

    @property
    def address(self) -> str:
        return self.identity.address

    async def sign_message(self, message: bytes) -> str:
        raise UnsupportedOperation(
            "cannot sign arbitrary messages for an impersonated account"
        )

    async def send_transaction(self, tx: dict, chain_id: Optional[str] = None) -> str:
        self._check_sender(tx)
        return await asyncio.to_thread(self.node.send_as, self.address, tx)


def signer_for(identity: WalletIdentity, node: RpcNode) -> Signer:
    if isinstance(identity, ImpersonatedIdentity):
        return ImpersonationSigner(identity, node)
    return KeySigner(identity, node)


# ---------------------------------------------------------------------------
# Method dispatch
# ---------------------------------------------------------------------------

def _first_param(request: SigningRequest) -> Any:
    if not request.params:
        raise InvalidParams(f"{request.method} request {request.id} has no params")
    return request.params[0]


async def dispatch(signer: Signer, request: SigningRequest) -> Any:
    """Run *request* against *signer* and return the JSON-RPC result."""
    method = request.method
    if method == "personal_sign":
        return await signer.sign_message(decode_message(_first_param(request)))
    if method == "eth_sendTransaction":
        tx = _first_param(request)
        if not isinstance(tx, dict):
            raise InvalidParams("eth_sendTransaction expects a transaction object")
        return await signer.send_transaction(tx, chain_id=request.chain_id)
    if method == "eth_signTransaction":
        raise MethodNotImplemented("eth_signTransaction not implemented")
    raise UnsupportedMethod(f"Unsupported method: {method}")
