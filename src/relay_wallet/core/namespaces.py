"""Namespace negotiation: what a session proposal asks for vs. what we grant.

The wallet first builds the namespaces it could *support* for the
proposal (one account per chain, the requested methods plus the operator
extension method, one RPC endpoint per chain reference). That set is then
matched against the proposal: every required namespace must be fully
covered, and only capabilities the dApp actually asked for (required or
optional) are granted.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from relay_wallet.core.models import ApprovedNamespace, Namespace, SessionProposal
from relay_wallet.errors import UnsupportedOperation
from relay_wallet.wallet.chains import account_id, chain_reference, namespace_of

logger = logging.getLogger("relay_wallet.namespaces")

DEFAULT_EXTENSION_METHOD = "anvil_sign"


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _chains_of(key: str, namespace: Namespace) -> list[str]:
    # A chain-scoped key ("eip155:1") without a chains list means that chain.
    if namespace.chains:
        return list(namespace.chains)
    if ":" in key:
        return [key]
    return []


def _merge(namespaces: dict[str, Namespace]) -> dict[str, Namespace]:
    """Fold chain-scoped keys into their namespace key, preserving order."""
    merged: dict[str, Namespace] = {}
    for key, ns in namespaces.items():
        name = namespace_of(key)
        current = merged.get(name, Namespace())
        merged[name] = Namespace(
            chains=_dedupe([*current.chains, *_chains_of(key, ns)]),
            methods=_dedupe([*current.methods, *ns.methods]),
            events=_dedupe([*current.events, *ns.events]),
        )
    return merged


def build_supported_namespaces(
    requested: dict[str, Namespace],
    address: str,
    rpc_url: str,
    extension_method: Optional[str] = DEFAULT_EXTENSION_METHOD,
    allowed_namespaces: Optional[Iterable[str]] = None,
    allowed_chains: Optional[Iterable[str]] = None,
) -> dict[str, ApprovedNamespace]:
    """Namespaces this wallet can serve for the *requested* capabilities."""
    allowed_ns = set(allowed_namespaces) if allowed_namespaces else None
    allowed_ch = set(allowed_chains) if allowed_chains else None

    supported: dict[str, ApprovedNamespace] = {}
    for name, ns in _merge(requested).items():
        if allowed_ns is not None and name not in allowed_ns:
            logger.info(f"Namespace '{name}' is not served by this wallet")
            continue
        chains = [c for c in ns.chains if allowed_ch is None or c in allowed_ch]
        methods = list(ns.methods)
        if extension_method:
            methods = _dedupe([*methods, extension_method])
        supported[name] = ApprovedNamespace(
            chains=chains,
            methods=methods,
            events=list(ns.events),
            accounts=[account_id(c, address) for c in chains],
            rpc_map={chain_reference(c): rpc_url for c in chains},
        )
    return supported


def _require(required: dict[str, Namespace], supported: dict[str, ApprovedNamespace]) -> None:
    for name, ns in required.items():
        have = supported.get(name)
        if have is None:
            raise UnsupportedOperation(
                f"Required namespace '{name}' is not supported by this wallet"
            )
        for label, wanted, offered in (
            ("chains", ns.chains, have.chains),
            ("methods", ns.methods, have.methods),
            ("events", ns.events, have.events),
        ):
            missing = [item for item in wanted if item not in offered]
            if missing:
                raise UnsupportedOperation(
                    f"Required {label} not supported in '{name}': {', '.join(missing)}"
                )


def negotiate(
    proposal: SessionProposal,
    address: str,
    rpc_url: str,
    extension_method: Optional[str] = DEFAULT_EXTENSION_METHOD,
    allowed_namespaces: Optional[Iterable[str]] = None,
    allowed_chains: Optional[Iterable[str]] = None,
) -> dict[str, ApprovedNamespace]:
    """Compute the approved namespaces for *proposal*.

    Raises :class:`UnsupportedOperation` when a required namespace cannot be
    satisfied. The result never contains a chain, method or event that the
    proposal did not request.
    """
    required = _merge(proposal.required_namespaces)
    optional = _merge(proposal.optional_namespaces)

    requested: dict[str, Namespace] = {}
    for name in _dedupe([*optional, *required]):
        parts = [ns for ns in (optional.get(name), required.get(name)) if ns]
        requested[name] = Namespace(
            chains=_dedupe(c for ns in parts for c in ns.chains),
            methods=_dedupe(m for ns in parts for m in ns.methods),
            events=_dedupe(e for ns in parts for e in ns.events),
        )

    supported = build_supported_namespaces(
        requested,
        address,
        rpc_url,
        extension_method=extension_method,
        allowed_namespaces=allowed_namespaces,
        allowed_chains=allowed_chains,
    )
    _require(required, supported)

    approved: dict[str, ApprovedNamespace] = {}
    for name, have in supported.items():
        asked = requested[name]
        chains = [c for c in have.chains if c in asked.chains]
        methods = [m for m in have.methods if m in asked.methods]
        events = [e for e in have.events if e in asked.events]
        approved[name] = ApprovedNamespace(
            chains=chains,
            methods=methods,
            events=events,
            accounts=[a for a in have.accounts if a.rsplit(":", 1)[0] in chains],
            rpc_map={ref: url for ref, url in have.rpc_map.items()
                     if any(chain_reference(c) == ref for c in chains)},
        )
        logger.debug(f"Approved namespace {name}: {approved[name].model_dump(by_alias=True)}")
    return approved
