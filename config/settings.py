from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple


def _env_bool(name: str, default: str = "0") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    try:
        return float((os.getenv(name, "") or "").strip() or default)
    except Exception:
        return float(default)


def _env_int(name: str, default: int) -> int:
    try:
        return int((os.getenv(name, "") or "").strip() or default)
    except Exception:
        return int(default)


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip()


def _env_list(name: str, default: str = "") -> Tuple[str, ...]:
    raw = _env_str(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())


# Meteora program id (mainnet)
METEORA_PROGRAM_ID = "M2mx93ekt1fmXSVkTrUL9xVFHkmME8HTUi5Cyc5aF7K"

DEFAULT_RPC_HTTP = "https://api.mainnet-beta.solana.com"
DEFAULT_JUPITER_API = "https://quote-api.jup.ag/v6"
DEFAULT_METEORA_API = "https://api.meteora.ag/pools"
DEFAULT_CREATION_MARKERS = "initialize,createPool,createLiquidity"


def _ws_from_http(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


@dataclass(frozen=True)
class Settings:
    # --- MODE ---
    mode: str = "REAL"  # PAPER / REAL

    # --- RPC ---
    program_id: str = METEORA_PROGRAM_ID
    rpc_http: str = DEFAULT_RPC_HTTP
    rpc_urls: Tuple[str, ...] = ()
    rpc_ws: str = _ws_from_http(DEFAULT_RPC_HTTP)
    rpc_timeout_s: float = 20.0
    rpc_rps: float = 3.0
    rpc_concurrency: int = 4
    rpc_retries: int = 4
    rpc_backoff_base_s: float = 0.35
    rpc_backoff_cap_s: float = 6.0
    commitment: str = "confirmed"

    # --- monitoring ---
    ws_reconnect_interval_s: float = 5.0
    creation_markers: Tuple[str, ...] = tuple(DEFAULT_CREATION_MARKERS.split(","))

    # --- listing ---
    jupiter_api: str = DEFAULT_JUPITER_API
    meteora_api: str = DEFAULT_METEORA_API
    listing_max_attempts: int = 30
    listing_interval_s: float = 10.0
    listing_http_timeout_s: float = 5.0

    # --- liquidity ---
    lp_percentage: float = 80.0
    min_sol_balance: float = 0.1
    tx_max_retries: int = 3
    tx_skip_preflight: bool = True

    # --- notify / wallet ---
    discord_webhook_url: str = ""
    keypair_path: str = ""
    private_key: str = ""

    log_level: str = "INFO"

    @property
    def paper(self) -> bool:
        return self.mode == "PAPER"

    @classmethod
    def from_env(cls) -> "Settings":
        rpc_http = _env_str("RPC_URL", _env_str("RPC_HTTP", DEFAULT_RPC_HTTP))
        return cls(
            mode=_env_str("MODE", "REAL").upper(),
            program_id=_env_str("METEORA_PROGRAM_ID", METEORA_PROGRAM_ID),
            rpc_http=rpc_http,
            rpc_urls=_env_list("RPC_URLS"),
            rpc_ws=_env_str("RPC_WS", _ws_from_http(rpc_http)),
            rpc_timeout_s=_env_float("RPC_TIMEOUT_S", 20.0),
            rpc_rps=_env_float("RPC_RPS", 3.0),
            rpc_concurrency=_env_int("RPC_CONC", 4),
            rpc_retries=_env_int("RPC_RETRIES", 4),
            rpc_backoff_base_s=_env_float("RPC_BACKOFF_BASE_S", 0.35),
            rpc_backoff_cap_s=_env_float("RPC_BACKOFF_CAP_S", 6.0),
            commitment=_env_str("COMMITMENT", "confirmed"),
            ws_reconnect_interval_s=_env_float("WS_RECONNECT_INTERVAL_S", 5.0),
            creation_markers=_env_list("POOL_CREATION_MARKERS", DEFAULT_CREATION_MARKERS),
            jupiter_api=_env_str("JUPITER_API", DEFAULT_JUPITER_API),
            meteora_api=_env_str("METEORA_API", DEFAULT_METEORA_API),
            listing_max_attempts=_env_int("LISTING_MAX_ATTEMPTS", 30),
            listing_interval_s=_env_float("LISTING_INTERVAL_S", 10.0),
            listing_http_timeout_s=_env_float("LISTING_HTTP_TIMEOUT_S", 5.0),
            lp_percentage=_env_float("LP_PERCENTAGE", 80.0),
            min_sol_balance=_env_float("MIN_SOL_BALANCE", 0.1),
            tx_max_retries=_env_int("TX_MAX_RETRIES", 3),
            tx_skip_preflight=_env_bool("TX_SKIP_PREFLIGHT", "1"),
            discord_webhook_url=_env_str("DISCORD_WEBHOOK_URL"),
            keypair_path=_env_str("KEYPAIR_PATH"),
            private_key=_env_str("PRIVATE_KEY"),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )
