"""Shared configuration for the solaudit tooling."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

CLUSTER_NAMES = ("localnet", "devnet", "testnet", "mainnet-beta")


@dataclass(frozen=True)
class ClusterConfig:
    """RPC and websocket endpoints for one Solana cluster."""

    name: str
    endpoint: str
    label: str
    ws_endpoint: Optional[str] = None
    is_custom: bool = False

    @property
    def websocket_endpoint(self) -> str:
        if self.ws_endpoint:
            return self.ws_endpoint
        # Solana serves pubsub on rpc port + 1 for local validators
        parsed = urlparse(self.endpoint)
        scheme = "wss" if parsed.scheme == "https" else "ws"
        netloc = parsed.netloc
        if parsed.port:
            netloc = f"{parsed.hostname}:{parsed.port + 1}"
        return f"{scheme}://{netloc}{parsed.path}"


CLUSTER_CONFIGS: Dict[str, ClusterConfig] = {
    "localnet": ClusterConfig(
        name="localnet",
        endpoint="http://localhost:8899",
        ws_endpoint="ws://localhost:8900",
        label="Localnet",
    ),
    "devnet": ClusterConfig(name="devnet", endpoint="https://api.devnet.solana.com", label="Devnet"),
    "testnet": ClusterConfig(name="testnet", endpoint="https://api.testnet.solana.com", label="Testnet"),
    "mainnet-beta": ClusterConfig(
        name="mainnet-beta",
        endpoint="https://api.mainnet-beta.solana.com",
        label="Mainnet",
    ),
}

DEFAULT_PROGRAM_IDS = {
    "swap": "877w653ayrjqM6fT5yjCuPuTABo8h7N6ffF3es1HRrxm",
    "staking": "CvDs2FSKiNAmtdGmY3LaVcCpqAudK3otmrG3ksmUBzpG",
    "estate": "J8qubfQ5SdvYiJLo5V2mMspZp9as75RePwstVXrtJxo8",
    "app_factory": "4HsYtGADv25mPs1CqicceHK1BuaLhBD66ZFjZ8jnJZr3",
}

# Transaction risk heuristics
BASE_INSTRUCTION_COST = 5000
INDICATOR_COST = 2000
LARGE_PAYLOAD_BYTES = 32
CPI_ACCOUNT_THRESHOLD = 3

# Live monitoring
STATS_REPORT_INTERVAL = 30.0
RAPID_UPDATE_WINDOW = 10.0
RAPID_UPDATE_THRESHOLD = 5
HIGH_VALUE_LAMPORTS = 1_000_000_000
LARGE_ACCOUNT_DATA_BYTES = 10_000

LAMPORTS_PER_SOL = 1_000_000_000
TEST_TOKEN_DECIMALS = 6
TEST_TOKEN_MINT_AMOUNT = 1_000_000 * 10**TEST_TOKEN_DECIMALS

REQUEST_TIMEOUT = float(os.getenv("SOLAUDIT_REQUEST_TIMEOUT", "30"))
HISTORY_LIMIT = int(os.getenv("SOLAUDIT_HISTORY_LIMIT", "100"))

EXPLORER_BASE_URL = "https://explorer.solana.com"


def _is_standard_endpoint(url: str) -> bool:
    return any(config.endpoint == url for config in CLUSTER_CONFIGS.values())


def validate_cluster_name(name: str) -> str:
    """Lower-cased cluster name, or localnet with a warning when it is unknown."""
    normalized = name.strip().lower()
    if normalized in CLUSTER_CONFIGS:
        return normalized
    logging.warning("Invalid cluster name: %s, defaulting to localnet", name)
    return "localnet"


def resolve_cluster(env: Optional[Mapping[str, str]] = None) -> ClusterConfig:
    """Build the active cluster from SOLAUDIT_* environment variables."""
    env = os.environ if env is None else env
    rpc_url = env.get("SOLAUDIT_RPC_URL")
    ws_url = env.get("SOLAUDIT_WS_URL")

    if rpc_url and not _is_standard_endpoint(rpc_url):
        return ClusterConfig(
            name="localnet",
            endpoint=rpc_url,
            ws_endpoint=ws_url,
            label=f"Custom ({urlparse(rpc_url).hostname})",
            is_custom=True,
        )

    return CLUSTER_CONFIGS[validate_cluster_name(env.get("SOLAUDIT_CLUSTER", "localnet"))]


def available_clusters() -> List[ClusterConfig]:
    return list(CLUSTER_CONFIGS.values())


def program_ids(env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Default program ids with any SOLAUDIT_*_PROGRAM_ID overrides applied."""
    env = os.environ if env is None else env
    return {
        key: env.get(f"SOLAUDIT_{key.upper()}_PROGRAM_ID") or default
        for key, default in DEFAULT_PROGRAM_IDS.items()
    }


def explorer_url(cluster: ClusterConfig, signature: str, kind: str = "tx") -> str:
    """Solana Explorer link for a transaction or address."""
    suffix = "" if cluster.name == "mainnet-beta" else f"?cluster={cluster.name}"
    return f"{EXPLORER_BASE_URL}/{kind}/{signature}{suffix}"
