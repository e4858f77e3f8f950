"""Configuration system for relay-wallet.

Loads settings from a YAML file (default ``relay-wallet.yaml`` in the
working directory), supports environment variable expansion, and falls back
to defaults that read everything from the environment when no file exists.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from relay_wallet.errors import ConfigurationError


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    ``${VAR:-default}`` falls back to *default*. If the variable is not set
    and has no default the placeholder is left as-is so that validation can
    catch it later.
    """

    def _replace(match: re.Match) -> str:
        name, sep, default = match.group(1).partition(":-")
        if name in os.environ:
            return os.environ[name]
        return default if sep else match.group(0)

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class RelayConfig(BaseModel):
    """WalletConnect relay bridge settings."""

    project_id: str = "${WALLET_CONNECT_PROJECT_ID}"
    bridge_url: str = "${RELAY_BRIDGE_URL:-http://127.0.0.1:4100}"
    events_secret: str = "${RELAY_EVENTS_SECRET:-}"
    request_timeout: float = 30.0


class NodeConfig(BaseModel):
    """JSON-RPC node used for signing, submission and impersonation."""

    rpc_url: str = "${JSON_RPC_URL}"
    request_timeout: float = 30.0


class WalletConfig(BaseModel):
    """Identity and namespace-negotiation settings."""

    mnemonic_strength: int = 128    # 128 = 12 words, 256 = 24 words
    extension_method: Optional[str] = "anvil_sign"
    allowed_namespaces: list[str] = Field(default_factory=lambda: ["eip155"])
    allowed_chains: list[str] = Field(default_factory=list)  # empty = any


class ServerConfig(BaseModel):
    """HTTP API settings."""

    host: str = "0.0.0.0"
    port: int = 4000
    log_level: str = "info"


class HistoryConfig(BaseModel):
    """Event-log persistence. Empty ``db_path`` keeps history in memory only."""

    db_path: str = ""


class MetadataConfig(BaseModel):
    """Wallet metadata shown to dApps during pairing."""

    name: str = "CLI & HTTP Wallet"
    description: str = "A CLI & HTTP API-controlled Ethereum wallet"
    url: str = "${BASE_URL:-http://localhost:4000}"
    icons: list[str] = Field(
        default_factory=lambda: ["https://walletconnect.org/walletconnect-logo.png"]
    )


class AppConfig(BaseModel):
    """Root configuration object."""

    relay: RelayConfig = Field(default_factory=RelayConfig)
    node: NodeConfig = Field(default_factory=NodeConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    metadata: MetadataConfig = Field(default_factory=MetadataConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_NAME = "relay-wallet.yaml"


def default_config_path(base: Path | None = None) -> Path:
    """Return ``<base>/relay-wallet.yaml`` (base defaults to the cwd)."""
    if base is None:
        base = Path.cwd()
    return base / DEFAULT_CONFIG_NAME


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation, both in the file and in the built-in defaults. A missing
    file is not an error: the defaults are used.
    """
    raw_data: dict = {}
    if path is not None and path.exists():
        raw_text = path.read_text(encoding="utf-8")
        raw_data = yaml.safe_load(raw_text) or {}
    # Round-trip the defaults so their placeholders get expanded too.
    merged = AppConfig.model_validate(raw_data).model_dump(mode="python")
    expanded = _expand_env_recursive(merged)
    return AppConfig.model_validate(expanded)


def save_config(config: AppConfig, path: Path) -> None:
    """Serialize an :class:`AppConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)


def validate_runtime_config(config: AppConfig) -> None:
    """Fail fast on settings the server cannot start without.

    Raises
    ------
    ConfigurationError
        If the WalletConnect project id or the JSON-RPC URL is missing.
    """
    required = {
        "relay.project_id (WALLET_CONNECT_PROJECT_ID)": config.relay.project_id,
        "node.rpc_url (JSON_RPC_URL)": config.node.rpc_url,
        "relay.bridge_url (RELAY_BRIDGE_URL)": config.relay.bridge_url,
    }
    missing = [
        name for name, value in required.items()
        if not value.strip() or _ENV_VAR_RE.search(value)
    ]
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
