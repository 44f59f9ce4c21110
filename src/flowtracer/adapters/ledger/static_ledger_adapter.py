from flowtracer.ports.ledger_port import LedgerPort, LogCallback
from flowtracer.core.dto import LogNotification, ParsedTransaction, SignatureInfo
from typing import Dict, List, Optional


class StaticLedgerAdapter(LedgerPort):
    """
    In-memory ledger for dev/testing.

    history maps an address to its signatures oldest-first; list_signatures serves
    them newest-first in pages, like the RPC does. push() plays the role of the
    websocket transport and fires subscription callbacks synchronously.
    """

    def __init__(self,
                 history: Optional[Dict[str, List[str]]] = None,
                 transactions: Optional[Dict[str, ParsedTransaction]] = None,
                 token_owners: Optional[Dict[str, str]] = None,
                 invalid_addresses: Optional[set] = None,
                 failures: Optional[Dict[str, List[Exception]]] = None,
                 ):
        self._history = {k: list(v) for k, v in (history or {}).items()}
        self._txs = dict(transactions or {})
        self._owners = dict(token_owners or {})
        self._invalid = set(invalid_addresses or ())
        # signature -> exceptions raised by get_transaction before it succeeds
        self._failures = {k: list(v) for k, v in (failures or {}).items()}
        self._subs: Dict[int, tuple] = {}
        self.calls: List[tuple] = []

    def add_transaction(self, address, tx: ParsedTransaction):
        self._history.setdefault(address, []).append(tx.signature)
        self._txs[tx.signature] = tx

    def list_signatures(self, address, before=None, limit=25):
        self.calls.append(("list_signatures", address, before))
        newest_first = list(reversed(self._history.get(address, [])))
        start = 0
        if before is not None:
            if before not in newest_first:
                return []
            start = newest_first.index(before) + 1
        return [SignatureInfo(signature=s) for s in newest_first[start:start + limit]]

    def get_transaction(self, signature):
        self.calls.append(("get_transaction", signature))
        pending = self._failures.get(signature)
        if pending:
            raise pending.pop(0)
        return self._txs.get(signature)

    def resolve_token_account_owner(self, token_account):
        self.calls.append(("resolve_token_account_owner", token_account))
        owner = self._owners.get(token_account)
        if isinstance(owner, Exception):
            raise owner
        return owner

    def subscribe_logs(self, address, callback: LogCallback):
        handle = len(self._subs) + 1
        self._subs[handle] = (address, callback)
        return handle

    def is_valid_address(self, address):
        return super().is_valid_address(address) and address not in self._invalid

    # ---- test helpers ----

    def subscribed_addresses(self) -> List[str]:
        return [a for a, _cb in self._subs.values()]

    def push(self, address: str, signature: str) -> int:
        fired = 0
        for sub_address, callback in list(self._subs.values()):
            if sub_address == address:
                callback(LogNotification(address=address, signature=signature))
                fired += 1
        return fired

    def transactions_fetched(self) -> List[str]:
        return [c[1] for c in self.calls if c[0] == "get_transaction"]
