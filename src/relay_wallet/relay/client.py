"""Relay collaborator: the outbound side of the WalletConnect session protocol.

The relay transport itself (pairing URIs, encrypted relay messaging) runs in
a WalletKit bridge sidecar. This module speaks to that bridge over HTTP; the
bridge pushes inbound ``session_proposal`` / ``session_request`` /
``session_delete`` events back to this service's ``/relay/events`` webhook.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from relay_wallet.errors import CollaboratorFailure

logger = logging.getLogger("relay_wallet.relay")

# WalletConnect SDK error for an operator-declined proposal or request.
USER_REJECTED = {"code": 5000, "message": "User rejected."}


class RelayClient(Protocol):
    async def pair(self, uri: str) -> Any: ...

    async def approve_session(
        self, proposal_id: Any, relay_protocol: str, namespaces: dict
    ) -> dict: ...

    async def reject(self, proposal_id: Any, reason: dict) -> None: ...

    async def respond(self, topic: str, response: dict) -> None: ...


class BridgeRelayClient:
    """:class:`RelayClient` backed by the HTTP bridge.

    Parameters
    ----------
    bridge_url:
        Base URL of the bridge sidecar.
    project_id:
        WalletConnect project id, forwarded on every call.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        bridge_url: str,
        project_id: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.bridge_url = bridge_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.bridge_url,
            timeout=timeout,
            headers={"X-Project-Id": project_id},
            transport=transport,
        )

    async def _post(self, path: str, payload: dict) -> Any:
        try:
            resp = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise CollaboratorFailure("relay", f"{path} failed: {exc}") from exc
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error") or resp.text
            except (ValueError, AttributeError):
                detail = resp.text
            raise CollaboratorFailure("relay", f"{path} returned {resp.status_code}: {detail}")
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise CollaboratorFailure("relay", f"{path} returned invalid JSON") from exc

    async def start(self, metadata: dict) -> None:
        """Initialise the bridge's WalletKit instance with our wallet metadata."""
        await self._post("/init", {"metadata": metadata})
        logger.info(f"Relay bridge initialised at {self.bridge_url}")

    async def pair(self, uri: str) -> Any:
        return await self._post("/pair", {"uri": uri})

    async def approve_session(
        self, proposal_id: Any, relay_protocol: str, namespaces: dict
    ) -> dict:
        session = await self._post(
            "/sessions/approve",
            {"id": proposal_id, "relayProtocol": relay_protocol, "namespaces": namespaces},
        )
        if not isinstance(session, dict) or not session.get("topic"):
            raise CollaboratorFailure("relay", "approve_session returned no session topic")
        return session

    async def reject(self, proposal_id: Any, reason: dict) -> None:
        await self._post("/sessions/reject", {"id": proposal_id, "reason": reason})

    async def respond(self, topic: str, response: dict) -> None:
        await self._post("/requests/respond", {"topic": topic, "response": response})

    async def aclose(self) -> None:
        await self._client.aclose()
