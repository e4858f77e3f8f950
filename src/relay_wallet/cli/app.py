"""CLI for relay-wallet - drive the wallet server from the terminal."""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, NoReturn, Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="relay-wallet",
    help="Remote-controlled WalletConnect wallet: pair with dApps and approve their requests.",
    no_args_is_help=True,
)
console = Console()

_api_url: str = "http://localhost:4000"
_raw: bool = False


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"relay-wallet {version('relay-wallet')}")
        raise typer.Exit()


@app.callback()
def main(
    url: str = typer.Option(
        f"http://localhost:{os.environ.get('PORT', '4000')}",
        "--url",
        "-U",
        help="Base URL of the wallet server",
        envvar="RELAY_WALLET_URL",
    ),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON without formatting"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Remote-controlled WalletConnect wallet: pair with dApps and approve their requests."""
    global _api_url, _raw
    _api_url = url.rstrip("/")
    _raw = raw


# ------------------------------------------------------------------
# HTTP helpers
# ------------------------------------------------------------------


class ApiError(Exception):
    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


def _api(path: str, method: str = "GET", body: Optional[dict] = None) -> Any:
    """Call the wallet server and return the decoded JSON body."""
    try:
        resp = httpx.request(method, f"{_api_url}{path}", json=body, timeout=60.0)
    except httpx.HTTPError as e:
        raise ApiError(f"Cannot reach wallet server at {_api_url}: {e}") from e
    try:
        data = resp.json()
    except ValueError:
        data = {"error": resp.text}
    if resp.status_code >= 400:
        message = data.get("error") if isinstance(data, dict) else None
        raise ApiError(message or f"HTTP error! status: {resp.status_code}", resp.status_code)
    return data


def _output(title: str, data: Any, style: str = "green") -> None:
    if _raw:
        console.print(json.dumps(data), soft_wrap=True, markup=False, highlight=False)
        return
    console.print(f"[{style}]{title}[/{style}]")
    console.print_json(data=data)


def _pending_proposal_id(status_data: dict) -> Any:
    for key, entry in status_data.get("pendingRequests", []):
        if key == "session_proposal" and isinstance(entry, dict):
            return entry.get("id")
    return None


def _fail(action: str, e: ApiError) -> NoReturn:
    console.print(f"[red]Failed to {action}: {e}[/red]")
    raise typer.Exit(1)


# ------------------------------------------------------------------
# serve / init
# ------------------------------------------------------------------


@app.command()
def serve(
    config_path: Path = typer.Option(
        None, "--config", "-c", help="Config file (default: ./relay-wallet.yaml)",
        envvar="RELAY_WALLET_CONFIG",
    ),
    host: str = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (overrides config)", envvar="PORT"),
):
    """Run the wallet HTTP server."""
    from relay_wallet.config import default_config_path, load_config
    from relay_wallet.errors import ConfigurationError
    from relay_wallet.server.app import run_server

    config = load_config(config_path or default_config_path())
    logging.basicConfig(
        level=config.server.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    console.print(f"[bold green]Starting relay wallet at http://{bind_host}:{bind_port}[/bold green]")
    try:
        run_server(config, host=bind_host, port=bind_port)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def init(
    config_path: Path = typer.Option(
        None, "--config", "-c", help="Where to write the config (default: ./relay-wallet.yaml)",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a config template that reads secrets from the environment."""
    from relay_wallet.config import AppConfig, default_config_path, save_config

    path = config_path or default_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]{path} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    save_config(AppConfig(), path)
    console.print(Panel(
        f"Config written to [cyan]{path}[/cyan]\n\n"
        f"[dim]Set WALLET_CONNECT_PROJECT_ID and JSON_RPC_URL (and RELAY_BRIDGE_URL if the\n"
        f"bridge is not on http://127.0.0.1:4100), then run 'relay-wallet serve'.[/dim]",
        title="Relay Wallet",
    ))


# ------------------------------------------------------------------
# wallet commands
# ------------------------------------------------------------------


@app.command()
def create(
    mnemonic: str = typer.Option(None, "--mnemonic", "-m", help="Optional mnemonic phrase"),
    address: str = typer.Option(None, "--address", "-a", help="Optional address to impersonate"),
):
    """Create a new wallet (replaces the current one)."""
    payload: dict = {}
    if mnemonic:
        payload["mnemonic"] = mnemonic
    if address:
        payload["address"] = address
    try:
        data = _api("/wallet/create", "POST", payload)
    except ApiError as e:
        _fail("create wallet", e)
    _output("Wallet created successfully:", data)


@app.command()
def connect(
    uri: str = typer.Option(..., "--uri", "-u", help="WalletConnect URI"),
    approve: bool = typer.Option(True, "--approve/--no-approve", help="Approve the resulting session proposal"),
    wait: float = typer.Option(10.0, "--wait", "-w", help="Seconds to wait for the session proposal"),
):
    """Connect to a dApp using WalletConnect."""
    try:
        stale = _pending_proposal_id(_api("/wallet/status")) if approve else None
        data = _api("/wallet/connect", "POST", {"uri": uri})
    except ApiError as e:
        _fail("connect", e)
    _output("Connection initiated:", data)
    if not approve:
        return

    # The proposal arrives asynchronously through the relay.
    deadline = time.monotonic() + wait
    while True:
        try:
            current = _pending_proposal_id(_api("/wallet/status"))
        except ApiError as e:
            _fail("connect", e)
        if current is not None and current != stale:
            break
        if time.monotonic() >= deadline:
            console.print("[yellow]No session proposal received yet.[/yellow] "
                          "Run 'relay-wallet approve-session' once it arrives.")
            raise typer.Exit(1)
        time.sleep(0.5)

    try:
        session = _api("/wallet/approve-session", "POST")
    except ApiError as e:
        _fail("approve session", e)
    _output("Session approved:", session)


@app.command("approve-session")
def approve_session():
    """Approve the pending session proposal."""
    try:
        data = _api("/wallet/approve-session", "POST")
    except ApiError as e:
        _fail("approve session", e)
    _output("Session approved:", data)


@app.command("reject-session")
def reject_session():
    """Reject the pending session proposal."""
    try:
        data = _api("/wallet/reject-session", "POST")
    except ApiError as e:
        _fail("reject session", e)
    _output("Session rejected:", data)


@app.command("approve-request")
def approve_request(
    request_id: str = typer.Option(
        None, "--id", "-i", help="Request ID to approve (uses latest if not specified)"
    ),
):
    """Approve a signing / transaction request."""
    payload = {"requestId": request_id} if request_id else {}
    try:
        data = _api("/wallet/approve-request", "POST", payload)
    except ApiError as e:
        _fail("approve request", e)
    _output("Request approved:", data)


@app.command("reject-request")
def reject_request(
    request_id: str = typer.Option(..., "--id", "-i", help="Request ID to reject"),
):
    """Reject a signing / transaction request."""
    try:
        data = _api("/wallet/reject-request", "POST", {"requestId": request_id})
    except ApiError as e:
        _fail("reject request", e)
    _output("Request rejected:", data)


@app.command()
def status(
    history: int = typer.Option(10, "--history", "-n", help="How many history entries to show"),
):
    """Show wallet, session, pending requests and recent history."""
    try:
        data = _api("/wallet/status")
    except ApiError as e:
        _fail("get status", e)

    if _raw:
        _output("Wallet Status:", data)
        return

    address = data.get("address") or "-"
    kind = " (impersonated)" if data.get("impersonated") else ""
    session = data.get("session") or {}
    console.print(Panel(
        f"Initialized: {'[green]yes[/green]' if data.get('initialized') else '[red]no[/red]'}\n"
        f"Address:     [cyan]{address}[/cyan]{kind}\n"
        f"Connected:   {'[green]yes[/green]' if data.get('connected') else '[dim]no[/dim]'}"
        + (f"\nTopic:       [dim]{session.get('topic')}[/dim]" if session else ""),
        title="Wallet Status",
    ))

    pending = [(k, v) for k, v in data.get("pendingRequests", []) if k != "session_request"]
    if pending:
        table = Table(title="Pending")
        table.add_column("Key", style="cyan")
        table.add_column("Kind")
        table.add_column("Detail", style="dim")
        for key, entry in pending:
            if key == "session_proposal":
                name = (entry.get("proposer") or {}).get("metadata", {}).get("name", "")
                table.add_row(str(entry.get("id")), "session proposal", name)
            else:
                table.add_row(key, entry.get("method", ""), json.dumps(entry.get("params", []))[:60])
        console.print(table)
    else:
        console.print("[dim]No pending proposals or requests.[/dim]")

    entries = data.get("history", [])[-history:] if history > 0 else []
    if entries:
        table = Table(title="History")
        table.add_column("Time", style="dim")
        table.add_column("Type", style="cyan")
        table.add_column("Context", style="dim")
        for entry in entries:
            table.add_row(
                entry.get("timestamp", "")[:19],
                entry.get("type", ""),
                json.dumps(entry.get("context", {}))[:80],
            )
        console.print(table)


if __name__ == "__main__":
    app()
