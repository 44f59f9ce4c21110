from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import requests
from solders.pubkey import Pubkey

from flowtracer.config import settings
from flowtracer.adapters.ledger.rate_limiter import RetryPolicy, SimpleRateLimiter
from flowtracer.adapters.ledger.solana_parser import parse_signature_page, parse_transaction
from flowtracer.adapters.ledger.solana_ws_subscriber import SolanaLogsSubscriber
from flowtracer.core.dto import ParsedTransaction, SignatureInfo
from flowtracer.core.errors import DataSourceError, RateLimitError
from flowtracer.ports.ledger_port import LedgerPort, LogCallback


RATE_LIMIT_CODES = {429, -32429}


class SolanaRpcLedgerAdapter(LedgerPort):

    def __init__(
        self,
        rpc_http: str = settings.RPC_HTTP,
        retry: Optional[RetryPolicy] = None,
        subscriber: Optional[SolanaLogsSubscriber] = None,
        requests_per_sec: float = settings.RPC_REQUESTS_PER_SEC,
        timeout_sec: float = settings.RPC_TIMEOUT_SEC,
        commitment: str = "confirmed",
        session: Optional[Any] = None,
    ) -> None:
        self._url = rpc_http
        self._retry = retry or RetryPolicy()
        self._subscriber = subscriber
        self._timeout = timeout_sec
        self._commitment = commitment

        self._rl = SimpleRateLimiter(requests_per_sec)
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

        self._owner_cache: Dict[str, Optional[str]] = {}

    # ---------- internal ----------

    def _post(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        self._rl.wait()
        resp = self._session.post(self._url, json=payload, timeout=self._timeout)
        if resp.status_code == 429:
            raise RateLimitError(f"{method}: HTTP 429 Too Many Requests")
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise DataSourceError(f"Invalid {method} response: {data}")

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            if code in RATE_LIMIT_CODES:
                raise RateLimitError(f"{method}: {code} {message}")
            raise DataSourceError(f"{method}: {code} {message}")

        return data.get("result")

    def _call(self, method: str, params: List[Any]) -> Any:
        return self._retry.call(lambda: self._post(method, params), label=method)

    # ---------- port methods ----------

    def list_signatures(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 25,
    ) -> List[SignatureInfo]:
        opts: Dict[str, Any] = {"limit": int(limit), "commitment": self._commitment}
        if before:
            opts["before"] = before
        result = self._call("getSignaturesForAddress", [address, opts])
        return parse_signature_page(result)

    def get_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        result = self._call("getTransaction", [
            signature,
            {
                "encoding": "jsonParsed",
                "commitment": self._commitment,
                "maxSupportedTransactionVersion": 0,
            },
        ])
        return parse_transaction(signature, result)

    def resolve_token_account_owner(self, token_account: str) -> Optional[str]:
        if token_account in self._owner_cache:
            return self._owner_cache[token_account]

        result = self._call("getAccountInfo", [
            token_account,
            {"encoding": "jsonParsed", "commitment": self._commitment},
        ])
        value = (result or {}).get("value") if isinstance(result, dict) else None
        data = (value or {}).get("data")
        owner = None
        if isinstance(data, dict):
            info = (data.get("parsed") or {}).get("info") or {}
            owner = info.get("owner") or None

        self._owner_cache[token_account] = owner
        return owner

    def subscribe_logs(self, address: str, callback: LogCallback) -> Any:
        if self._subscriber is None:
            raise DataSourceError("No websocket endpoint configured for log subscriptions")
        return self._subscriber.subscribe(address, callback)

    def is_valid_address(self, address: str) -> bool:
        if not address:
            return False
        try:
            Pubkey.from_string(address)
        except Exception:
            return False
        return True
