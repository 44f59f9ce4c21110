from decimal import Decimal
import os
from typing import Mapping, Optional

from dotenv import load_dotenv

from flowtracer.core.errors import ConfigError
from flowtracer.core.models import CrawlConfig

load_dotenv()


def _csv(value: Optional[str]) -> tuple:
    return tuple(s.strip() for s in (value or "").split(",") if s.strip())


def _bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ---- RPC endpoints ----
RPC_HTTP = os.environ.get("RPC_HTTP") or os.environ.get("RPC_URL") or "https://api.mainnet-beta.solana.com"
RPC_WSS = os.environ.get("RPC_WSS") or "wss://api.mainnet-beta.solana.com"

RPC_REQUESTS_PER_SEC = float(os.environ.get("RPC_REQUESTS_PER_SEC", "8"))
RPC_TIMEOUT_SEC = float(os.environ.get("RPC_TIMEOUT_SEC", "20"))

# ---- Logging ----
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def load_crawl_config(env: Optional[Mapping[str, str]] = None) -> CrawlConfig:
    """
    Build the crawl configuration from environment variables.

    Raises ConfigError for unusable values; seeds are only checked by
    CrawlConfig.validate() so the CLI can still override them.
    """
    env = os.environ if env is None else env

    def get(name: str, default: str) -> str:
        v = env.get(name)
        return default if v is None or v == "" else v

    try:
        return CrawlConfig(
            seeds=_csv(env.get("WATCH_ADDRS") or env.get("SEED_ADDR")),
            rpc_http=env.get("RPC_HTTP") or env.get("RPC_URL") or RPC_HTTP,
            rpc_wss=env.get("RPC_WSS") or RPC_WSS,
            min_native=Decimal(get("MIN_SOL", "0.2")),
            min_token_units=int(Decimal(get("MIN_SPL_UNITS", "1000000"))),
            max_depth=int(get("MAX_DEPTH", "6")),
            top_children=int(get("TOP_CHILDREN", "3")),
            backfill_enabled=_bool(env.get("BACKFILL_ALL"), True),
            backfill_limit=int(get("BACKFILL_LIMIT", "0")),
            max_backfill_addresses=int(get("MAX_BACKFILL_ADDRS", "0")),
            page_size=int(get("PAGE_SIZE", "25")),
            req_delay_ms=int(get("REQ_DELAY_MS", "250")),
            tx_delay_ms=int(get("TX_DELAY_MS", "150")),
            max_retries=int(get("MAX_RETRIES", "3")),
            retry_base_ms=int(get("RETRY_BASE_MS", "500")),
            rate_limit_cooldown_ms=int(get("RATE_LIMIT_COOLDOWN_MS", "1500")),
            settle_window_ms=int(get("SETTLE_WINDOW_MS", "1000")),
            live_queue_size=int(get("LIVE_QUEUE_SIZE", "10000")),
            ignore_addresses=frozenset(_csv(env.get("CEX_HOT_WALLETS"))),
        )
    except (ArithmeticError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e
