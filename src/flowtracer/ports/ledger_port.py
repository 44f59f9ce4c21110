from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from flowtracer.core.dto import LogNotification, ParsedTransaction, SignatureInfo

LogCallback = Callable[[LogNotification], None]


class LedgerPort(ABC):
    """
    Abstract Class for reading ledger history and following new activity.
    """

    # --- Signature history (newest-first pages) ---

    @abstractmethod
    def list_signatures(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 25,
    ) -> List[SignatureInfo]:
        raise NotImplementedError

    # --- Parsed transactions ---

    @abstractmethod
    def get_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        raise NotImplementedError

    # --- Token account -> owning wallet ---

    @abstractmethod
    def resolve_token_account_owner(self, token_account: str) -> Optional[str]:
        raise NotImplementedError

    # --- Push subscription; the callback may run on a transport thread ---

    @abstractmethod
    def subscribe_logs(self, address: str, callback: LogCallback) -> Any:
        raise NotImplementedError

    # --- Address syntax check ---

    def is_valid_address(self, address: str) -> bool:
        return bool(address) and address.strip() == address
