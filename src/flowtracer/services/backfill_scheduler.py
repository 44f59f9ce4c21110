from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional

from flowtracer.core.enums import CrawlEvent
from flowtracer.core.errors import is_rate_limited
from flowtracer.core.models import ExpansionCandidate
from flowtracer.core.state import CrawlState, QueueItem
from flowtracer.ports.ledger_port import LedgerPort
from flowtracer.services.classifier import TransactionClassifier


logger = logging.getLogger(__name__)

ExpansionHandler = Callable[[List[ExpansionCandidate]], None]


class BackfillScheduler:
    """
    Breadth-first historical replay of every discovered address.

    Addresses are replayed one at a time in FIFO order; each address's history is
    walked back page by page and every page is classified oldest-first. Addresses
    discovered while replaying join the tail of the queue.
    """

    def __init__(
        self,
        ledger: LedgerPort,
        state: CrawlState,
        classifier: Optional[TransactionClassifier] = None,
        on_expansion: Optional[ExpansionHandler] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.state = state
        self.cfg = state.config
        self.classifier = classifier or TransactionClassifier(ledger, state)
        self.on_expansion = on_expansion or self.accept_all
        self._sleep = sleep
        self._limit_reported = False

    # -------------------------
    # Queue
    # -------------------------

    def seed(self, addresses: Iterable[str]) -> None:
        for a in addresses:
            self.enqueue(a, 0)

    def enqueue(self, address: str, depth: int) -> bool:
        st = self.state
        if depth > self.cfg.max_depth:
            return False
        if not self.ledger.is_valid_address(address):
            logger.debug("Skipping malformed address %r", address)
            return False

        st.registry.observe(address, depth)

        if address in st.backfilled or address in st.enqueued:
            return False

        cap = self.cfg.max_backfill_addresses
        if cap and (len(st.backfilled) + len(st.enqueued)) >= cap:
            return False

        st.enqueued.add(address)
        st.queue.append(QueueItem(address, depth))
        return True

    def accept_all(self, candidates: List[ExpansionCandidate]) -> None:
        for c in candidates:
            self.enqueue(c.to_address, c.depth)

    # -------------------------
    # Replay
    # -------------------------

    def _limit_reached(self) -> bool:
        limit = self.cfg.backfill_limit
        if not limit or len(self.state.seen) < limit:
            return False
        if not self._limit_reported:
            self._limit_reported = True
            self.state.events.emit(CrawlEvent.BACKFILL_LIMIT_REACHED, limit=limit)
        return True

    def _cooldown(self, what: str) -> None:
        ms = self.cfg.rate_limit_cooldown_ms
        self.state.events.emit(CrawlEvent.RATE_LIMIT_COOLDOWN, target=what, pause_ms=ms)
        self._sleep(ms / 1000.0)

    def _classify(self, address: str, signature: str) -> bool:
        """Classify one signature; a rate-limited fetch is retried after a cooldown."""
        st = self.state
        cooldowns = 0
        while True:
            try:
                candidates = self.classifier.classify(address, st.current_depth(address), signature)
            except Exception as e:
                if is_rate_limited(e) and cooldowns < self.cfg.max_retries:
                    cooldowns += 1
                    # classify() marked it seen before fetching
                    st.seen.discard(signature)
                    self._cooldown(signature)
                    continue
                logger.warning("Transaction %s skipped: %s", signature, e)
                return False

            if candidates:
                self.on_expansion(candidates)
            return True

    def run_one_address(self, address: str) -> int:
        st = self.state
        if address in st.backfilled:
            return 0
        st.backfilled.add(address)

        if self._limit_reached():
            return 0

        st.events.emit(CrawlEvent.BACKFILL_ADDRESS_STARTED, address=address,
                       depth=st.current_depth(address))

        before: Optional[str] = None
        count = 0
        page_cooldowns = 0

        while True:
            try:
                sigs = self.ledger.list_signatures(address, before=before, limit=self.cfg.page_size)
            except Exception as e:
                if is_rate_limited(e) and page_cooldowns < self.cfg.max_retries:
                    page_cooldowns += 1
                    self._cooldown(address)
                    continue
                logger.warning("Signature page failed for %s (before=%s): %s", address, before, e)
                break
            page_cooldowns = 0

            if not sigs:
                break

            # pages come newest-first; the cursor walks further back in time
            before = sigs[-1].signature

            for s in reversed(sigs):
                if self._limit_reached():
                    logger.info("Backfill interrupted for %s (signature limit reached)", address)
                    return count

                if s.signature not in st.seen and self._classify(address, s.signature):
                    count += 1

                self._sleep(self.cfg.tx_delay_ms / 1000.0)

            self._sleep(self.cfg.req_delay_ms / 1000.0)

        st.events.emit(CrawlEvent.BACKFILL_ADDRESS_FINISHED, address=address, signatures=count)
        return count

    def drain(self) -> None:
        """
        Run the queue to completion.

        The queue only counts as drained after it has been seen empty across
        settle_confirmations consecutive settle windows.
        """
        st = self.state
        confirmations = 0
        while True:
            while st.queue:
                item = st.queue.popleft()
                st.enqueued.discard(item.address)
                self.run_one_address(item.address)

            self._sleep(self.cfg.settle_window_ms / 1000.0)
            if st.queue:
                confirmations = 0
                continue

            confirmations += 1
            if confirmations >= self.cfg.settle_confirmations:
                return
