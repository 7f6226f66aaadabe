from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigError(RuntimeError):
    """
    Raised when the process environment is missing or has an invalid setting.

    Fatal at startup.
    """


_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
_URL_RE = re.compile(r"^https?://\S+$")

DEFAULT_CHAIN_ID = 8453
DEFAULT_OPENSEA_API_URL = "https://api.opensea.io"
DEFAULT_BURN_ADDRESS = "0x000000000000000000000000000000000000dEaD"
DEFAULT_LEGACY_STATE_FILE = "bot-state.json"
DEFAULT_LOOP_INTERVAL_MS = 15_000
DEFAULT_ACTION_COOLDOWN_MS = 5_000
DEFAULT_MAX_LISTING_CHECKS_PER_TICK = 3
DEFAULT_LOG_FETCH_THROTTLE_MS = 0
DEFAULT_RELIST_MARKUP_BPS = 12_000
DEFAULT_LISTING_DURATION_SECONDS = 7 * 24 * 60 * 60


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def _require(env: Mapping[str, str], name: str) -> str:
    v = _get(env, name)
    if v is None:
        raise ConfigError(f"Missing required environment variable: {name}")
    return v


def _address(env: Mapping[str, str], name: str, *, required: bool = False, default: str | None = None) -> Optional[str]:
    v = _require(env, name) if required else (_get(env, name) or default)
    if v is None:
        return None
    if not _ADDRESS_RE.match(v):
        raise ConfigError(f"{name} must be a 0x-prefixed 20-byte hex address")
    return v


def _int(env: Mapping[str, str], name: str, *, default: int | None, minimum: int) -> Optional[int]:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        v = int(raw, 10)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer (got {raw!r})") from e
    if v < minimum:
        raise ConfigError(f"{name} must be >= {minimum} (got {v})")
    return v


def derive_state_db_path(legacy_path: str | None) -> str:
    """
    The SQLite store lives next to the legacy JSON snapshot: `bot-state.json` -> `bot-state.db`.
    """
    if not legacy_path:
        return "bot-state.db"
    if legacy_path.lower().endswith(".json"):
        return legacy_path[: -len(".json")] + ".db"
    return f"{legacy_path}.db"


@dataclass(frozen=True)
class BotConfig:
    rpc_url: str
    treasury_address: str
    operator_private_key: str = ""
    chain_id: int = DEFAULT_CHAIN_ID

    opensea_api_url: str = DEFAULT_OPENSEA_API_URL
    opensea_api_key: str = ""

    target_collection: Optional[str] = None
    target_collection_slug: Optional[str] = None
    target_token_id: Optional[str] = None

    token_address: Optional[str] = None
    buyback_router_address: Optional[str] = None
    weth_address: Optional[str] = None
    burn_address: str = DEFAULT_BURN_ADDRESS

    legacy_state_file: str = DEFAULT_LEGACY_STATE_FILE
    state_db_file: str = "bot-state.db"

    loop_interval_ms: int = DEFAULT_LOOP_INTERVAL_MS
    action_cooldown_ms: int = DEFAULT_ACTION_COOLDOWN_MS
    max_listing_checks_per_tick: int = DEFAULT_MAX_LISTING_CHECKS_PER_TICK
    log_fetch_throttle_ms: int = DEFAULT_LOG_FETCH_THROTTLE_MS
    buyback_chunk_wei: Optional[int] = None
    relist_markup_bps: int = DEFAULT_RELIST_MARKUP_BPS
    listing_duration_seconds: int = DEFAULT_LISTING_DURATION_SECONDS

    log_level: str = "INFO"

    def __repr__(self) -> str:
        # Never render the operator key.
        return (
            f"BotConfig(rpc_url={self.rpc_url!r}, treasury_address={self.treasury_address!r}, "
            f"chain_id={self.chain_id}, state_db_file={self.state_db_file!r})"
        )

    @property
    def tax_monitoring_enabled(self) -> bool:
        return self.token_address is not None

    @property
    def buyback_enabled(self) -> bool:
        return bool(self.token_address and self.buyback_router_address and self.weth_address)

    @property
    def purchase_target_configured(self) -> bool:
        return bool(self.target_collection or self.target_collection_slug)

    def to_log_dict(self) -> dict[str, object]:
        return {
            "treasury": self.treasury_address,
            "chain_id": self.chain_id,
            "state_db_file": self.state_db_file,
            "target_collection": self.target_collection,
            "target_collection_slug": self.target_collection_slug,
            "target_token_id": self.target_token_id,
            "token_address": self.token_address,
            "loop_interval_ms": self.loop_interval_ms,
            "action_cooldown_ms": self.action_cooldown_ms,
            "buyback_chunk_wei": self.buyback_chunk_wei,
            "relist_markup_bps": self.relist_markup_bps,
        }


def load_config(env: Mapping[str, str] | None = None, *, dotenv: bool = True) -> BotConfig:
    """
    Build a validated `BotConfig` from the environment.

    A `.env` file in the working directory is loaded first (existing variables win).
    """
    if env is None:
        if dotenv:
            load_dotenv(override=False)
        env = os.environ

    rpc_url = _require(env, "RPC_URL")
    if not _URL_RE.match(rpc_url):
        raise ConfigError("RPC_URL must be an http(s) URL")

    private_key = _require(env, "OPERATOR_PRIVATE_KEY")
    if not _PRIVATE_KEY_RE.match(private_key):
        raise ConfigError("OPERATOR_PRIVATE_KEY must be a 0x-prefixed 32-byte hex key")

    opensea_api_url = _get(env, "OPENSEA_API_URL") or DEFAULT_OPENSEA_API_URL
    if not _URL_RE.match(opensea_api_url):
        raise ConfigError("OPENSEA_API_URL must be an http(s) URL")

    target_collection = _address(env, "TARGET_COLLECTION")
    target_token_id = _get(env, "TARGET_TOKEN_ID")
    if target_token_id is not None and target_collection is None:
        raise ConfigError("TARGET_COLLECTION must be provided when TARGET_TOKEN_ID is set")

    legacy_state_file = _get(env, "STATE_FILE") or DEFAULT_LEGACY_STATE_FILE
    state_db_file = _get(env, "STATE_DB_FILE") or derive_state_db_path(legacy_state_file)

    buyback_chunk_wei = _int(env, "BUYBACK_CHUNK_WEI", default=None, minimum=0)
    if buyback_chunk_wei == 0:
        buyback_chunk_wei = None

    return BotConfig(
        rpc_url=rpc_url,
        treasury_address=str(_address(env, "TREASURY_ADDRESS", required=True)),
        operator_private_key=private_key,
        chain_id=int(_int(env, "CHAIN_ID", default=DEFAULT_CHAIN_ID, minimum=1) or DEFAULT_CHAIN_ID),
        opensea_api_url=opensea_api_url.rstrip("/"),
        opensea_api_key=_require(env, "OPENSEA_API_KEY"),
        target_collection=target_collection,
        target_collection_slug=_get(env, "TARGET_COLLECTION_SLUG"),
        target_token_id=target_token_id,
        token_address=_address(env, "TOKEN_ADDRESS"),
        buyback_router_address=_address(env, "BUYBACK_ROUTER_ADDRESS"),
        weth_address=_address(env, "WETH_ADDRESS"),
        burn_address=str(_address(env, "BURN_ADDRESS", default=DEFAULT_BURN_ADDRESS)),
        legacy_state_file=legacy_state_file,
        state_db_file=state_db_file,
        loop_interval_ms=int(_int(env, "LOOP_INTERVAL_MS", default=DEFAULT_LOOP_INTERVAL_MS, minimum=1)),
        action_cooldown_ms=int(_int(env, "ACTION_COOLDOWN_MS", default=DEFAULT_ACTION_COOLDOWN_MS, minimum=0)),
        max_listing_checks_per_tick=int(
            _int(env, "MAX_LISTING_CHECKS_PER_TICK", default=DEFAULT_MAX_LISTING_CHECKS_PER_TICK, minimum=1)
        ),
        log_fetch_throttle_ms=int(_int(env, "LOG_FETCH_THROTTLE_MS", default=DEFAULT_LOG_FETCH_THROTTLE_MS, minimum=0)),
        buyback_chunk_wei=buyback_chunk_wei,
        relist_markup_bps=int(_int(env, "RELIST_MARKUP_BPS", default=DEFAULT_RELIST_MARKUP_BPS, minimum=1)),
        listing_duration_seconds=int(
            _int(env, "LISTING_DURATION_SECONDS", default=DEFAULT_LISTING_DURATION_SECONDS, minimum=1)
        ),
        log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
    )
