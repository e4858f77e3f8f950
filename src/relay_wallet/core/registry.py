"""Pending proposal / request registry."""

from __future__ import annotations

import logging
from typing import Any, Optional

from relay_wallet.core.models import (
    RequestId,
    SessionProposal,
    SigningRequest,
    dump,
    request_key,
)
from relay_wallet.errors import NotFound

logger = logging.getLogger("relay_wallet.registry")

PROPOSAL_KEY = "session_proposal"
MOST_RECENT_KEY = "session_request"


class PendingRequestRegistry:
    """Holds the one pending session proposal and the pending signing requests.

    Items being decided are *claimed*: they stay visible in :meth:`entries`
    but a second claim fails with :class:`NotFound` until the first decision
    either removes the item or releases it after a failure.
    """

    def __init__(self) -> None:
        self.proposal: Optional[SessionProposal] = None
        self._proposal_claimed = False
        self._requests: dict[str, SigningRequest] = {}
        self._claimed: set[str] = set()
        self.most_recent_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Session proposal slot
    # ------------------------------------------------------------------

    def put_proposal(self, proposal: SessionProposal) -> Optional[SessionProposal]:
        """Store *proposal*, returning the unresolved one it supersedes.

        A re-delivery of the proposal being decided keeps its claim.
        """
        superseded = self.proposal
        self.proposal = proposal
        if superseded is None or superseded.id != proposal.id:
            self._proposal_claimed = False
        return superseded

    def claim_proposal(self) -> SessionProposal:
        if self.proposal is None:
            raise NotFound("No pending session proposal")
        if self._proposal_claimed:
            raise NotFound(
                f"Session proposal {self.proposal.id} is already being processed"
            )
        self._proposal_claimed = True
        return self.proposal

    def release_proposal(self, proposal: SessionProposal) -> None:
        if self.proposal is not None and self.proposal.id == proposal.id:
            self._proposal_claimed = False

    def remove_proposal(self, proposal: SessionProposal) -> None:
        """Clear the slot, unless a newer proposal has replaced *proposal*."""
        if self.proposal is not None and self.proposal.id == proposal.id:
            self.proposal = None
            self._proposal_claimed = False

    # ------------------------------------------------------------------
    # Signing requests
    # ------------------------------------------------------------------

    def add_request(self, request: SigningRequest) -> None:
        key = request.key
        if key in self._requests:
            logger.warning(f"Request {key} re-delivered; replacing pending entry")
            # Re-insert so it counts as the newest.
            del self._requests[key]
        self._requests[key] = request
        self.most_recent_id = key

    def get(self, request_id: RequestId) -> Optional[SigningRequest]:
        return self._requests.get(request_key(request_id))

    def resolve(self, request_id: Optional[RequestId] = None) -> SigningRequest:
        """Look up *request_id*, or the most recent request when omitted."""
        if request_id is None or request_key(request_id) == "":
            if self.most_recent_id is None:
                raise NotFound("No pending requests")
            key = self.most_recent_id
        else:
            key = request_key(request_id)
        request = self._requests.get(key)
        if request is None:
            raise NotFound(f"Request {key} not found")
        return request

    def claim(self, request_id: Optional[RequestId] = None) -> SigningRequest:
        request = self.resolve(request_id)
        if request.key in self._claimed:
            raise NotFound(f"Request {request.key} is already being processed")
        self._claimed.add(request.key)
        return request

    def release(self, request: SigningRequest) -> None:
        self._claimed.discard(request.key)

    def remove(self, request: SigningRequest) -> None:
        """Drop *request*; the most-recent marker falls back to the newest survivor."""
        key = request.key
        self._requests.pop(key, None)
        self._claimed.discard(key)
        if self.most_recent_id == key:
            self.most_recent_id = next(reversed(self._requests), None)

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, request_id: object) -> bool:
        return request_key(request_id) in self._requests  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Status rendering
    # ------------------------------------------------------------------

    def entries(self) -> list[list[Any]]:
        """Registry contents as ``[key, entry]`` pairs for status output."""
        pairs: list[list[Any]] = []
        if self.proposal is not None:
            pairs.append([PROPOSAL_KEY, dump(self.proposal)])
        if self.most_recent_id is not None:
            pairs.append([MOST_RECENT_KEY, self.most_recent_id])
        for key, request in self._requests.items():
            pairs.append([key, dump(request)])
        return pairs
