"""Session broker core: models, pending registry, event log, negotiation.

The broker itself lives in :mod:`relay_wallet.core.broker`.
"""

from relay_wallet.core.models import (
    ApprovedNamespace,
    ApprovedSession,
    HistoryEntry,
    HistoryType,
    Namespace,
    PairingOutcome,
    SessionProposal,
    SigningRequest,
    SigningResult,
)

__all__ = [
    "ApprovedNamespace",
    "ApprovedSession",
    "HistoryEntry",
    "HistoryType",
    "Namespace",
    "PairingOutcome",
    "SessionProposal",
    "SigningRequest",
    "SigningResult",
]
