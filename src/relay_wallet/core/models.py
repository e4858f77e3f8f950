"""Pydantic models for proposals, sessions, requests and history entries.

Inbound relay payloads arrive as loosely-shaped JSON; the ``from_event``
constructors pull out the fields the broker relies on and raise
:class:`~relay_wallet.errors.InvalidParams` for anything malformed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relay_wallet.errors import InvalidParams

RequestId = Union[int, str]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class HistoryType(str, Enum):
    WALLET_CREATED = "wallet_created"
    PAIRING_ATTEMPT = "pairing_attempt"
    SESSION_PROPOSAL = "session_proposal"
    SESSION_REQUEST = "session_request"
    SESSION_APPROVED = "session_approved"
    SESSION_REJECTED = "session_rejected"
    SESSION_DELETED = "session_deleted"
    REQUEST_APPROVED = "request_approved"
    REQUEST_REJECTED = "request_rejected"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def request_key(request_id: RequestId) -> str:
    """Registry key for a request id.

    Relay ids are integers but the operator usually types them as strings.
    """
    return str(request_id).strip()


# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------

class Namespace(BaseModel):
    """Capabilities requested for one ecosystem (e.g. ``eip155``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    chains: list[str] = Field(default_factory=list)
    methods: list[str] = Field(default_factory=list)
    events: list[str] = Field(default_factory=list)


class ApprovedNamespace(Namespace):
    """A granted namespace, with the wallet's accounts and RPC endpoints."""

    accounts: list[str] = Field(default_factory=list)
    rpc_map: dict[str, str] = Field(default_factory=dict, alias="rpcMap")


class RelayOffer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    protocol: str = "irn"


# ---------------------------------------------------------------------------
# Session proposal / approved session
# ---------------------------------------------------------------------------

class SessionProposal(BaseModel):
    """Immutable snapshot of an inbound ``session_proposal`` event."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    id: RequestId
    required_namespaces: dict[str, Namespace] = Field(
        default_factory=dict, alias="requiredNamespaces"
    )
    optional_namespaces: dict[str, Namespace] = Field(
        default_factory=dict, alias="optionalNamespaces"
    )
    relays: list[RelayOffer] = Field(default_factory=list)
    proposer: Optional[dict[str, Any]] = None
    expiry: Optional[int] = Field(default=None, alias="expiryTimestamp")

    @classmethod
    def from_event(cls, event: dict) -> SessionProposal:
        if not isinstance(event, dict):
            raise InvalidParams("session_proposal event must be an object")
        params = event.get("params") or {}
        if not isinstance(params, dict):
            raise InvalidParams("session_proposal params must be an object")
        data = {k: v for k, v in params.items() if v is not None}
        data.setdefault("id", event.get("id"))
        if data["id"] is None:
            raise InvalidParams("session_proposal event has no id")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidParams(f"Malformed session_proposal: {exc}") from exc

    @property
    def relay_protocol(self) -> str:
        return self.relays[0].protocol if self.relays else "irn"


class ApprovedSession(BaseModel):
    """The single active session held by the broker."""

    model_config = ConfigDict(populate_by_name=True)

    topic: str
    relay_protocol: str = Field(alias="relayProtocol")
    namespaces: dict[str, ApprovedNamespace]
    peer: Optional[dict[str, Any]] = None
    expiry: Optional[int] = None
    approved_at: datetime = Field(default_factory=_utcnow, alias="approvedAt")


# ---------------------------------------------------------------------------
# Signing requests
# ---------------------------------------------------------------------------

class SigningRequest(BaseModel):
    """One JSON-RPC call the paired dApp wants the wallet to perform."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: RequestId
    topic: str
    method: str
    params: list[Any] = Field(default_factory=list)
    chain_id: Optional[str] = Field(default=None, alias="chainId")
    received_at: datetime = Field(default_factory=_utcnow, alias="receivedAt")

    @classmethod
    def from_event(cls, event: dict) -> SigningRequest:
        if not isinstance(event, dict):
            raise InvalidParams("session_request event must be an object")
        params = event.get("params") or {}
        inner = params.get("request") if isinstance(params, dict) else None
        if not isinstance(inner, dict) or not inner.get("method"):
            raise InvalidParams("session_request event has no request.method")
        rpc_params = inner.get("params")
        if rpc_params is None:
            rpc_params = []
        elif not isinstance(rpc_params, list):
            rpc_params = [rpc_params]
        try:
            return cls(
                id=event["id"],
                topic=event["topic"],
                method=inner["method"],
                params=rpc_params,
                chain_id=params.get("chainId"),
            )
        except (KeyError, ValidationError) as exc:
            raise InvalidParams(f"Malformed session_request: {exc}") from exc

    @property
    def key(self) -> str:
        return request_key(self.id)


class SigningResult(BaseModel):
    request_id: RequestId = Field(alias="requestId")
    method: str
    result: Any

    model_config = ConfigDict(populate_by_name=True)


class PairingOutcome(BaseModel):
    success: bool
    connection: Optional[Any] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

class HistoryEntry(BaseModel):
    """One append-only event-log record."""

    model_config = ConfigDict(frozen=True)

    type: HistoryType
    timestamp: datetime = Field(default_factory=_utcnow)
    context: dict[str, Any] = Field(default_factory=dict)


def dump(model: BaseModel) -> dict:
    """JSON-ready dict of a model, using wire (camelCase) field names."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
