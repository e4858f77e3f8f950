"""SessionBroker - owns the wallet identity, the active session, and the pending queue.

Inbound relay events and operator commands both land here. State lives in
one :class:`BrokerState` guarded by an ``asyncio.Lock`` that is only held
while state is read or written, never across relay or RPC I/O: a decision
first *claims* its pending item under the lock, performs the I/O, then
re-acquires the lock to commit (or to release the claim on failure).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from relay_wallet.core.history import EventLog
from relay_wallet.core.models import (
    ApprovedSession,
    HistoryEntry,
    HistoryType,
    PairingOutcome,
    RequestId,
    SessionProposal,
    SigningRequest,
    SigningResult,
    dump,
)
from relay_wallet.core.namespaces import DEFAULT_EXTENSION_METHOD, negotiate
from relay_wallet.core.registry import PendingRequestRegistry
from relay_wallet.errors import (
    BrokerError,
    CollaboratorFailure,
    InvalidParams,
    NotInitialized,
)
from relay_wallet.relay.client import USER_REJECTED, RelayClient
from relay_wallet.wallet.identity import (
    WalletIdentity,
    generate_mnemonic,
    identity_from_mnemonic,
    identity_from_private_key,
    impersonated_identity,
)
from relay_wallet.wallet.provider import RpcNode
from relay_wallet.wallet.signers import Signer, dispatch, signer_for

logger = logging.getLogger("relay_wallet.broker")


@dataclass
class BrokerState:
    identity: Optional[WalletIdentity] = None
    signer: Optional[Signer] = None
    session: Optional[ApprovedSession] = None
    registry: PendingRequestRegistry = field(default_factory=PendingRequestRegistry)
    history: EventLog = field(default_factory=EventLog)


@dataclass
class NegotiationPolicy:
    """Knobs the negotiator needs besides the proposal itself."""

    rpc_url: str
    extension_method: Optional[str] = DEFAULT_EXTENSION_METHOD
    allowed_namespaces: Sequence[str] = ("eip155",)
    allowed_chains: Sequence[str] = ()


class SessionBroker:
    """Single-wallet, single-session WalletConnect broker.

    Parameters
    ----------
    relay:
        Outbound relay collaborator (pair / approve / reject / respond).
    node:
        JSON-RPC node used by the signer backends and for impersonation.
    policy:
        Negotiation settings; ``policy.rpc_url`` is advertised in ``rpcMap``.
    history_store:
        Optional object with an async ``append(entry)``; new history entries
        are mirrored to it best-effort.
    mnemonic_strength:
        Entropy bits for generated mnemonics (128 = 12 words).
    """

    def __init__(
        self,
        relay: RelayClient,
        node: RpcNode,
        policy: NegotiationPolicy,
        history_store: Any = None,
        mnemonic_strength: int = 128,
    ) -> None:
        self.relay = relay
        self.node = node
        self.policy = policy
        self.history_store = history_store
        self.mnemonic_strength = mnemonic_strength
        self.state = BrokerState()
        self._lock = asyncio.Lock()
        self._writes: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _record(self, entry_type: HistoryType, **context: Any) -> HistoryEntry:
        entry = self.state.history.append(entry_type, **context)
        if self.history_store is not None:
            task = asyncio.get_running_loop().create_task(self._persist(entry))
            self._writes.add(task)
            task.add_done_callback(self._writes.discard)
        return entry

    async def _persist(self, entry: HistoryEntry) -> None:
        try:
            await self.history_store.append(entry)
        except Exception as e:
            logger.warning(f"Failed to persist history entry {entry.type.value}: {e}")

    async def flush_history(self) -> None:
        """Wait for in-flight history writes (called on shutdown)."""
        if self._writes:
            await asyncio.gather(*list(self._writes))

    def restore_history(self, entries: Sequence[HistoryEntry]) -> int:
        count = self.state.history.restore(entries)
        logger.info(f"Restored {count} history entries")
        return count

    # ------------------------------------------------------------------
    # Wallet identity
    # ------------------------------------------------------------------

    async def create_wallet(
        self,
        mnemonic: Optional[str] = None,
        impersonate_address: Optional[str] = None,
        private_key: Optional[str] = None,
    ) -> dict:
        """Create (or replace) the wallet identity.

        *impersonate_address* wins over *mnemonic*; a raw *private_key* is
        used only when neither is given. With no input a fresh mnemonic is
        generated. Returns ``{address, mnemonic}`` or
        ``{address, impersonated: True}``.
        """
        if impersonate_address:
            identity = impersonated_identity(impersonate_address)
            await asyncio.to_thread(self.node.impersonate, identity.address)
        elif mnemonic:
            identity = identity_from_mnemonic(mnemonic)
        elif private_key:
            identity = identity_from_private_key(private_key)
        else:
            identity = identity_from_mnemonic(generate_mnemonic(self.mnemonic_strength))

        async with self._lock:
            self.state.identity = identity
            self.state.signer = signer_for(identity, self.node)
            self._record(
                HistoryType.WALLET_CREATED,
                address=identity.address,
                impersonated=identity.impersonated,
            )
        kind = "impersonated" if identity.impersonated else "key"
        logger.info(f"Wallet created ({kind}): {identity.address}")
        return identity.to_dict()

    def _require_signer(self) -> Signer:
        if self.state.signer is None:
            raise NotInitialized("Wallet not initialized")
        return self.state.signer

    # ------------------------------------------------------------------
    # Pairing
    # ------------------------------------------------------------------

    async def pair(self, uri: str) -> PairingOutcome:
        """Start a WalletConnect pairing. Relay failures are returned, not raised."""
        self._require_signer()
        if not uri or not uri.strip():
            raise InvalidParams("WalletConnect URI is required")

        logger.info(f"Attempting to pair with URI: {uri}")
        try:
            connection = await self.relay.pair(uri.strip())
        except BrokerError as e:
            outcome = PairingOutcome(success=False, error=e.message)
        except Exception as e:
            outcome = PairingOutcome(success=False, error=str(e))
        else:
            outcome = PairingOutcome(success=True, connection=connection)

        async with self._lock:
            if outcome.success:
                self._record(
                    HistoryType.PAIRING_ATTEMPT, success=True, connection=outcome.connection
                )
            else:
                logger.error(f"Pairing failed: {outcome.error}")
                self._record(HistoryType.PAIRING_ATTEMPT, success=False, error=outcome.error)
        return outcome

    # ------------------------------------------------------------------
    # Inbound relay events
    # ------------------------------------------------------------------

    async def on_session_proposal(self, event: dict | SessionProposal) -> SessionProposal:
        proposal = (
            event if isinstance(event, SessionProposal) else SessionProposal.from_event(event)
        )
        async with self._lock:
            superseded = self.state.registry.put_proposal(proposal)
            context: dict = {"proposal": dump(proposal)}
            if superseded is not None and superseded.id != proposal.id:
                logger.warning(
                    f"Session proposal {superseded.id} superseded by {proposal.id} before a decision"
                )
                context["superseded"] = superseded.id
            self._record(HistoryType.SESSION_PROPOSAL, **context)
        logger.info(f"Session proposal {proposal.id} pending")
        return proposal

    async def on_session_request(self, event: dict | SigningRequest) -> SigningRequest:
        request = (
            event if isinstance(event, SigningRequest) else SigningRequest.from_event(event)
        )
        async with self._lock:
            self.state.registry.add_request(request)
            self._record(HistoryType.SESSION_REQUEST, request=dump(request))
        logger.info(f"Session request {request.id} pending: {request.method}")
        return request

    async def on_session_delete(self, event: dict) -> None:
        async with self._lock:
            previous = self.state.session
            self.state.session = None
            self._record(HistoryType.SESSION_DELETED, event=event)
        if previous is not None:
            logger.info(f"Session {previous.topic} deleted by peer")
        else:
            logger.info("session_delete received with no active session")

    async def handle_event(self, event_type: str, payload: dict) -> Any:
        """Route a webhook event to its handler."""
        handlers = {
            "session_proposal": self.on_session_proposal,
            "session_request": self.on_session_request,
            "session_delete": self.on_session_delete,
        }
        handler = handlers.get(event_type)
        if handler is None:
            raise InvalidParams(f"Unknown relay event type: {event_type!r}")
        logger.debug(f"Relay event {event_type}: {payload}")
        return await handler(payload)

    # ------------------------------------------------------------------
    # Session decisions
    # ------------------------------------------------------------------

    async def approve_session(self) -> ApprovedSession:
        async with self._lock:
            proposal = self.state.registry.claim_proposal()
            signer = self.state.signer
            if signer is None:
                self.state.registry.release_proposal(proposal)
                raise NotInitialized("Wallet not initialized")

        try:
            namespaces = negotiate(
                proposal,
                signer.address,
                self.policy.rpc_url,
                extension_method=self.policy.extension_method,
                allowed_namespaces=self.policy.allowed_namespaces,
                allowed_chains=self.policy.allowed_chains,
            )
            wire_namespaces = {k: dump(v) for k, v in namespaces.items()}
            raw = await self.relay.approve_session(
                proposal.id, proposal.relay_protocol, wire_namespaces
            )
            try:
                topic, peer, expiry = raw["topic"], raw.get("peer"), raw.get("expiry")
            except (KeyError, TypeError, AttributeError) as e:
                raise CollaboratorFailure(
                    "relay", f"approve_session returned no session: {e}"
                ) from e
            session = ApprovedSession(
                topic=topic,
                relay_protocol=proposal.relay_protocol,
                namespaces=namespaces,
                peer=peer,
                expiry=expiry,
            )
        except BaseException:
            async with self._lock:
                self.state.registry.release_proposal(proposal)
            raise

        async with self._lock:
            self.state.session = session
            self.state.registry.remove_proposal(proposal)
            self._record(HistoryType.SESSION_APPROVED, session=dump(session))
        logger.info(f"Session {session.topic} approved for proposal {proposal.id}")
        return session

    async def reject_session(self) -> None:
        async with self._lock:
            proposal = self.state.registry.claim_proposal()

        try:
            await self.relay.reject(proposal.id, USER_REJECTED)
        except BaseException:
            async with self._lock:
                self.state.registry.release_proposal(proposal)
            raise

        async with self._lock:
            self.state.registry.remove_proposal(proposal)
            self._record(HistoryType.SESSION_REJECTED, proposal=dump(proposal))
        logger.info(f"Session proposal {proposal.id} rejected")

    # ------------------------------------------------------------------
    # Request decisions
    # ------------------------------------------------------------------

    async def approve_request(self, request_id: Optional[RequestId] = None) -> SigningResult:
        """Approve *request_id*, or the most recent pending request if omitted."""
        async with self._lock:
            request = self.state.registry.claim(request_id)
            signer = self.state.signer
            if signer is None:
                self.state.registry.release(request)
                raise NotInitialized("Wallet not initialized")

        try:
            result = await dispatch(signer, request)
            await self.relay.respond(
                request.topic,
                {"id": request.id, "jsonrpc": "2.0", "result": result},
            )
        except BaseException as e:
            async with self._lock:
                self.state.registry.release(request)
            if isinstance(e, CollaboratorFailure):
                logger.warning(f"Request {request.id} failed: {e.message}")
            raise

        async with self._lock:
            self.state.registry.remove(request)
            self._record(HistoryType.REQUEST_APPROVED, request=dump(request), result=result)
        logger.info(f"Request {request.id} ({request.method}) approved")
        return SigningResult(request_id=request.id, method=request.method, result=result)

    async def reject_request(self, request_id: RequestId) -> None:
        if request_id is None or str(request_id).strip() == "":
            raise InvalidParams("requestId is required")
        async with self._lock:
            request = self.state.registry.claim(request_id)

        try:
            await self.relay.respond(
                request.topic,
                {"id": request.id, "jsonrpc": "2.0", "error": USER_REJECTED},
            )
        except BaseException:
            async with self._lock:
                self.state.registry.release(request)
            raise

        async with self._lock:
            self.state.registry.remove(request)
            self._record(HistoryType.REQUEST_REJECTED, request=dump(request))
        logger.info(f"Request {request.id} rejected")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict:
        identity = self.state.identity
        session = self.state.session
        return {
            "initialized": identity is not None,
            "address": identity.address if identity else None,
            "impersonated": bool(identity and identity.impersonated),
            "connected": session is not None,
            "session": dump(session) if session else None,
            "pendingRequests": self.state.registry.entries(),
            "history": self.state.history.to_json(),
        }
