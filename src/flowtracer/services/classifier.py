from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List

from flowtracer.core.dto import TOKEN_PROGRAM_IDS, NativeTransfer, ParsedTransaction, TokenTransfer
from flowtracer.core.enums import CrawlEvent
from flowtracer.core.models import ExpansionCandidate
from flowtracer.core.state import CrawlState
from flowtracer.ports.ledger_port import LedgerPort


logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal("1000000000")
MINT_MARKER = "Instruction: InitializeMint"


class TransactionClassifier:
    """
    Turns one transaction into the set of accounts worth following.

    - Outflows only: native transfers sent by the account, token transfers it
      authorised.
    - Amounts are aggregated per destination, then the largest top_children
      destinations are kept.
    - Each signature is handled at most once per crawl (CrawlState.seen).
    """

    def __init__(self, ledger: LedgerPort, state: CrawlState) -> None:
        self.ledger = ledger
        self.state = state
        self.cfg = state.config

    def classify(self, from_address: str, observed_depth: int, signature: str) -> List[ExpansionCandidate]:
        # mark before fetching so a concurrent rediscovery is a no-op
        if not self.state.mark_seen(signature):
            return []

        tx = self.ledger.get_transaction(signature)
        if tx is None:
            return []

        if any(MINT_MARKER in line for line in tx.log_messages):
            self.state.events.emit(
                CrawlEvent.MINT_INITIALIZATION_OBSERVED,
                address=from_address,
                signature=signature,
            )

        dests = self.aggregate(from_address, tx)
        if not dests:
            return []

        return self.expand(from_address, observed_depth, signature, dests)

    # -------------------------
    # Aggregation
    # -------------------------

    def aggregate(self, from_address: str, tx: ParsedTransaction) -> Dict[str, Decimal]:
        dests: Dict[str, Decimal] = {}

        for ins in tx.instructions:
            if isinstance(ins, NativeTransfer):
                if ins.source != from_address:
                    continue
                amount = Decimal(ins.lamports) / LAMPORTS_PER_SOL
                if amount < self.cfg.min_native:
                    continue
                to = ins.destination

            elif isinstance(ins, TokenTransfer):
                if ins.program_id not in TOKEN_PROGRAM_IDS:
                    continue
                if from_address not in ins.authorities:
                    continue
                # raw units: decimals differ per mint and are not looked up
                amount = Decimal(ins.amount_raw)
                if amount < Decimal(self.cfg.min_token_units):
                    continue
                to = ins.destination_owner or self._resolve_owner(ins.destination)

            else:
                continue

            if self.cfg.is_ignored(to):
                continue
            dests[to] = dests.get(to, Decimal("0")) + amount

        return dests

    def _resolve_owner(self, token_account: str) -> str:
        # best-effort: fall back to the token account itself
        try:
            owner = self.ledger.resolve_token_account_owner(token_account)
        except Exception as e:
            logger.debug("Owner lookup failed for %s: %s", token_account, e)
            return token_account
        return owner or token_account

    # -------------------------
    # Top-N expansion
    # -------------------------

    def top_destinations(self, dests: Dict[str, Decimal]) -> List[tuple]:
        # sorted() is stable: ties keep first-encountered order
        ranked = sorted(dests.items(), key=lambda kv: kv[1], reverse=True)
        return ranked[: self.cfg.top_children]

    def expand(
        self,
        from_address: str,
        observed_depth: int,
        signature: str,
        dests: Dict[str, Decimal],
    ) -> List[ExpansionCandidate]:
        out: List[ExpansionCandidate] = []
        next_depth = observed_depth + 1

        for to, amount in self.top_destinations(dests):
            if next_depth > self.cfg.max_depth:
                self.state.events.emit(
                    CrawlEvent.DEPTH_EXCEEDED_WARNING,
                    from_address=from_address,
                    to_address=to,
                    depth=next_depth,
                    max_depth=self.cfg.max_depth,
                )
                continue

            self.state.events.emit(
                CrawlEvent.EXPANSION_EDGE,
                from_address=from_address,
                to_address=to,
                amount=amount,
                depth=next_depth,
                signature=signature,
            )
            out.append(
                ExpansionCandidate(
                    from_address=from_address,
                    to_address=to,
                    amount=amount,
                    depth=next_depth,
                    signature=signature,
                )
            )

        return out
