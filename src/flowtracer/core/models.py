from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, Tuple

from flowtracer.core.errors import ConfigError


# Configuration model

@dataclass(frozen=True)
class CrawlConfig:
    """
    Run configuration for a crawl.

    Thresholds:
      - min_native is compared in major units (SOL) after scaling lamports down.
      - min_token_units is compared against raw token units; mint decimals are
        not resolved, so the same threshold applies to every token.
    """

    seeds: Tuple[str, ...]
    rpc_http: str = "https://api.mainnet-beta.solana.com"
    rpc_wss: str = "wss://api.mainnet-beta.solana.com"

    min_native: Decimal = Decimal("0.2")
    min_token_units: int = 1_000_000
    max_depth: int = 6
    top_children: int = 3

    backfill_enabled: bool = True
    backfill_limit: int = 0              # 0 = unlimited (signatures)
    max_backfill_addresses: int = 0      # 0 = unlimited (addresses)

    # throttling / anti-429
    page_size: int = 25
    req_delay_ms: int = 250              # pause between signature pages
    tx_delay_ms: int = 150               # pause between transactions
    max_retries: int = 3
    retry_base_ms: int = 500
    rate_limit_cooldown_ms: int = 1500
    settle_window_ms: int = 1000
    settle_confirmations: int = 2

    live_queue_size: int = 10_000
    ignore_addresses: FrozenSet[str] = field(default_factory=frozenset)

    def validate(self) -> "CrawlConfig":
        if not self.seeds:
            raise ConfigError("No seed addresses configured (WATCH_ADDRS or SEED_ADDR)")
        if not self.rpc_http:
            raise ConfigError("No RPC HTTP endpoint configured (RPC_HTTP)")
        if self.max_depth < 0:
            raise ConfigError("max_depth must be >= 0")
        if self.top_children <= 0:
            raise ConfigError("top_children must be > 0")
        if self.page_size <= 0:
            raise ConfigError("page_size must be > 0")
        if self.max_retries <= 0:
            raise ConfigError("max_retries must be > 0")
        if self.settle_confirmations <= 0:
            raise ConfigError("settle_confirmations must be > 0")
        for name in ("req_delay_ms", "tx_delay_ms", "retry_base_ms", "rate_limit_cooldown_ms",
                     "settle_window_ms", "backfill_limit", "max_backfill_addresses"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        return self

    def is_ignored(self, address: str) -> bool:
        return address in self.ignore_addresses


# Crawl results

@dataclass(frozen=True)
class ExpansionCandidate:

    from_address: str
    to_address: str
    amount: Decimal
    depth: int
    signature: str
