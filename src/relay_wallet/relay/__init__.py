"""Relay collaborator (WalletConnect bridge client)."""

from relay_wallet.relay.client import USER_REJECTED, BridgeRelayClient, RelayClient

__all__ = ["USER_REJECTED", "BridgeRelayClient", "RelayClient"]
