"""CAIP-2 chain identifier helpers for EVM namespaces."""

from __future__ import annotations

from dataclasses import dataclass

EIP155 = "eip155"


@dataclass(frozen=True)
class ChainId:
    """A parsed CAIP-2 chain identifier such as ``eip155:1``."""

    namespace: str
    reference: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.reference}"

    @property
    def numeric(self) -> int | None:
        """The reference as an integer, for EVM chains."""
        try:
            return int(self.reference)
        except ValueError:
            return None


def parse_chain(chain: str) -> ChainId:
    """Split ``"<namespace>:<reference>"``. A bare value is treated as a reference."""
    namespace, sep, reference = chain.rpartition(":")
    if not sep:
        return ChainId(namespace="", reference=chain)
    return ChainId(namespace=namespace, reference=reference)


def chain_reference(chain: str) -> str:
    """Last colon-delimited segment of *chain* (its numeric reference for EVM)."""
    return chain.split(":")[-1]


def namespace_of(key: str) -> str:
    """Namespace part of a namespace key; ``eip155:1`` -> ``eip155``."""
    return key.split(":", 1)[0]


def account_id(chain: str, address: str) -> str:
    """CAIP-10 account identifier."""
    return f"{chain}:{address}"
