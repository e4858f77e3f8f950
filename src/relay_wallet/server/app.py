"""FastAPI HTTP surface for the session broker."""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional, Union

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from relay_wallet.config import AppConfig, validate_runtime_config
from relay_wallet.core.broker import NegotiationPolicy, SessionBroker
from relay_wallet.core.models import dump
from relay_wallet.errors import BrokerError
from relay_wallet.relay.client import BridgeRelayClient
from relay_wallet.storage.database import HistoryDatabase
from relay_wallet.wallet.provider import RpcNode

logger = logging.getLogger("relay_wallet.server")


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class CreateWalletBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mnemonic: Optional[str] = None
    address: Optional[str] = None
    private_key: Optional[str] = Field(default=None, alias="privateKey")


class ConnectBody(BaseModel):
    uri: str = ""


class RequestIdBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_id: Optional[Union[int, str]] = Field(default=None, alias="requestId")


class RelayEventBody(BaseModel):
    type: str
    event: dict[str, Any] = Field(default_factory=dict)


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


def build_broker(config: AppConfig) -> SessionBroker:
    """Wire the broker to its real collaborators from *config*."""
    relay = BridgeRelayClient(
        config.relay.bridge_url,
        config.relay.project_id,
        timeout=config.relay.request_timeout,
    )
    node = RpcNode(config.node.rpc_url, request_timeout=config.node.request_timeout)
    store = HistoryDatabase(Path(config.history.db_path)) if config.history.db_path else None
    policy = NegotiationPolicy(
        rpc_url=config.node.rpc_url,
        extension_method=config.wallet.extension_method,
        allowed_namespaces=config.wallet.allowed_namespaces,
        allowed_chains=config.wallet.allowed_chains,
    )
    broker = SessionBroker(
        relay,
        node,
        policy,
        history_store=store,
        mnemonic_strength=config.wallet.mnemonic_strength,
    )
    return broker


def create_app(broker: SessionBroker, config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI app around *broker*.

    When *config* is given, startup initialises the relay bridge and restores
    persisted history, and shutdown closes both.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config is not None:
            relay = broker.relay
            if hasattr(relay, "start"):
                await relay.start(config.metadata.model_dump())
            if broker.history_store is not None:
                await broker.history_store.connect()
                broker.restore_history(await broker.history_store.load())
        logger.info("Relay wallet API started")
        yield
        await broker.flush_history()
        if broker.history_store is not None:
            await broker.history_store.close()
        if hasattr(broker.relay, "aclose"):
            await broker.relay.aclose()

    app = FastAPI(title="Relay Wallet", lifespan=lifespan)
    app.state.broker = broker
    app.state.events_secret = config.relay.events_secret if config else ""

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError):
        logger.warning(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # ------------------------------------------------------------------
    # Wallet commands
    # ------------------------------------------------------------------

    @app.post("/wallet/create")
    async def wallet_create(body: Optional[CreateWalletBody] = None):
        body = body or CreateWalletBody()
        return await broker.create_wallet(
            mnemonic=body.mnemonic,
            impersonate_address=body.address,
            private_key=body.private_key,
        )

    @app.post("/wallet/connect")
    async def wallet_connect(body: Optional[ConnectBody] = None):
        outcome = await broker.pair((body or ConnectBody()).uri)
        if not outcome.success:
            return JSONResponse(
                status_code=502,
                content={"success": False, "error": outcome.error, "code": "pairing_failed"},
            )
        return {"success": True, "connection": outcome.connection}

    @app.post("/wallet/approve-session")
    async def wallet_approve_session():
        session = await broker.approve_session()
        return {"success": True, "session": dump(session)}

    @app.post("/wallet/reject-session")
    async def wallet_reject_session():
        await broker.reject_session()
        return {"success": True}

    @app.post("/wallet/approve-request")
    async def wallet_approve_request(body: Optional[RequestIdBody] = None):
        result = await broker.approve_request((body or RequestIdBody()).request_id)
        return {"success": True, "requestId": result.request_id, "result": result.result}

    @app.post("/wallet/reject-request")
    async def wallet_reject_request(body: Optional[RequestIdBody] = None):
        await broker.reject_request((body or RequestIdBody()).request_id)
        return {"success": True}

    @app.get("/wallet/status")
    async def wallet_status():
        return broker.status()

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Relay bridge webhook
    # ------------------------------------------------------------------

    @app.post("/relay/events")
    async def relay_events(
        body: RelayEventBody,
        x_relay_secret: Optional[str] = Header(default=None),
    ):
        secret = app.state.events_secret
        if secret and not hmac.compare_digest(x_relay_secret or "", secret):
            return JSONResponse(
                status_code=401, content={"error": "Invalid relay secret", "code": "unauthorized"}
            )
        if body.type == "error":
            logger.error(f"Relay bridge error: {body.event}")
            return {"success": True}
        await broker.handle_event(body.type, body.event)
        return {"success": True}

    return app


# ------------------------------------------------------------------
# Runner
# ------------------------------------------------------------------


def run_server(config: AppConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Validate *config*, wire the broker, and serve until interrupted."""
    validate_runtime_config(config)
    broker = build_broker(config)
    app = create_app(broker, config)
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.server.log_level,
    )
