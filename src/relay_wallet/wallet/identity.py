"""Wallet identities: mnemonic-derived keys or impersonated addresses."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from eth_account import Account
from mnemonic import Mnemonic
from web3 import Web3

from relay_wallet.errors import ConfigurationError, InvalidParams

# BIP-44 path for the first Ethereum account, same as ethers' fromPhrase.
DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0/0"
VALID_STRENGTHS = (128, 160, 192, 224, 256)

Account.enable_unaudited_hdwallet_features()


@dataclass(frozen=True)
class KeyIdentity:
    """An address whose private key this process holds."""

    address: str
    private_key: bytes = field(repr=False)
    mnemonic: Optional[str] = field(default=None, repr=False)

    impersonated = False

    def to_dict(self) -> dict:
        data: dict = {"address": self.address}
        if self.mnemonic:
            data["mnemonic"] = self.mnemonic
        return data


@dataclass(frozen=True)
class ImpersonatedIdentity:
    """An address the node acts as; no key material is held."""

    address: str

    impersonated = True

    def to_dict(self) -> dict:
        return {"address": self.address, "impersonated": True}


WalletIdentity = Union[KeyIdentity, ImpersonatedIdentity]


def normalize_mnemonic(phrase: str) -> str:
    return " ".join(phrase.strip().lower().split())


def generate_mnemonic(strength: int = 128) -> str:
    """Generate a BIP-39 English mnemonic (128 bits = 12 words, 256 = 24).

    Raises
    ------
    ConfigurationError
        If *strength* is not a valid BIP-39 entropy size or generation fails.
    """
    if strength not in VALID_STRENGTHS:
        raise ConfigurationError(
            f"Mnemonic strength must be one of {VALID_STRENGTHS}, got {strength}"
        )
    try:
        return Mnemonic("english").generate(strength=strength)
    except Exception as exc:
        raise ConfigurationError(f"Failed to generate mnemonic: {exc}") from exc


def identity_from_mnemonic(
    phrase: str, derivation_path: str = DEFAULT_DERIVATION_PATH
) -> KeyIdentity:
    """Derive the account at *derivation_path* from a BIP-39 phrase.

    Deterministic: the same phrase always yields the same address.

    Raises
    ------
    InvalidParams
        If the phrase fails the BIP-39 word list / checksum check.
    """
    phrase = normalize_mnemonic(phrase)
    if not Mnemonic("english").check(phrase):
        raise InvalidParams("Invalid BIP-39 mnemonic phrase")
    acct = Account.from_mnemonic(phrase, account_path=derivation_path)
    return KeyIdentity(address=acct.address, private_key=bytes(acct.key), mnemonic=phrase)


def identity_from_private_key(private_key: Union[str, bytes]) -> KeyIdentity:
    """Wrap a raw private key supplied directly by the operator."""
    try:
        acct = Account.from_key(private_key)
    except Exception as exc:
        raise InvalidParams(f"Invalid private key: {exc}") from exc
    return KeyIdentity(address=acct.address, private_key=bytes(acct.key))


def impersonated_identity(address: str) -> ImpersonatedIdentity:
    """Checksum *address* and wrap it as an impersonated identity."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidParams(f"Invalid address to impersonate: {address!r}")
    return ImpersonatedIdentity(address=Web3.to_checksum_address(address))
