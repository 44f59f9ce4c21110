from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

from flowtracer.core.dto import LogNotification
from flowtracer.core.enums import CrawlEvent, CrawlPhase
from flowtracer.core.errors import is_rate_limited
from flowtracer.core.models import ExpansionCandidate
from flowtracer.core.state import CrawlState
from flowtracer.ports.ledger_port import LedgerPort
from flowtracer.services.classifier import TransactionClassifier


logger = logging.getLogger(__name__)


class PhaseController:
    """One-way BACKFILLING -> LIVE switch; the only writer of the crawl phase."""

    def __init__(self, state: CrawlState) -> None:
        self.state = state
        self._phase = CrawlPhase.BACKFILLING

    @property
    def phase(self) -> CrawlPhase:
        return self._phase

    @property
    def is_live(self) -> bool:
        return self._phase is CrawlPhase.LIVE

    def go_live(self) -> bool:
        if self._phase is CrawlPhase.LIVE:
            return False
        self._phase = CrawlPhase.LIVE
        self.state.events.emit(
            CrawlEvent.BACKFILL_PHASE_COMPLETE,
            addresses=len(self.state.registry),
            backfilled=len(self.state.backfilled),
            signatures=len(self.state.seen),
        )
        return True


class LiveSubscriptionManager:
    """
    Follows every known address once the crawl is live.

    Transport callbacks only hand notifications over to a bounded queue; the crawl
    thread drains it with process_pending(), so classification never runs on the
    transport thread.
    """

    def __init__(
        self,
        ledger: LedgerPort,
        state: CrawlState,
        phase: PhaseController,
        classifier: Optional[TransactionClassifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.state = state
        self.phase = phase
        self.cfg = state.config
        self.classifier = classifier or TransactionClassifier(ledger, state)
        self.inbox: "queue.Queue[LogNotification]" = queue.Queue(maxsize=self.cfg.live_queue_size)
        self.dropped = 0
        self._sleep = sleep

    # -------------------------
    # Subscriptions
    # -------------------------

    def watch(self, address: str, depth: int) -> bool:
        st = self.state
        if depth > self.cfg.max_depth:
            return False
        if not self.ledger.is_valid_address(address):
            return False

        st.registry.observe(address, depth)
        if address in st.watch:
            return False

        handle = self.ledger.subscribe_logs(address, self.on_notification)
        st.watch[address] = handle
        st.events.emit(
            CrawlEvent.SUBSCRIPTION_OPENED,
            address=address,
            depth=st.current_depth(address, depth),
        )
        return True

    def subscribe_all(self) -> int:
        opened = 0
        for address, depth in self.state.registry.items():
            try:
                if self.watch(address, depth):
                    opened += 1
            except Exception as e:
                logger.error("Subscription failed for %s: %s", address, e)
        return opened

    def accept_all(self, candidates: List[ExpansionCandidate]) -> None:
        # discovered after the transition: followed live, never backfilled
        for c in candidates:
            try:
                self.watch(c.to_address, c.depth)
            except Exception as e:
                logger.error("Subscription failed for %s: %s", c.to_address, e)

    # -------------------------
    # Notification intake (transport thread)
    # -------------------------

    def on_notification(self, note: LogNotification) -> None:
        if not self.phase.is_live:
            self.dropped += 1
            return
        if not note.signature:
            return
        # blocks the transport when the crawl thread falls behind
        self.inbox.put(note)

    # -------------------------
    # Processing (crawl thread)
    # -------------------------

    def handle(self, note: LogNotification) -> List[ExpansionCandidate]:
        st = self.state
        if note.signature in st.seen:
            return []

        cooldowns = 0
        while True:
            try:
                candidates = self.classifier.classify(
                    note.address, st.current_depth(note.address), note.signature
                )
                break
            except Exception as e:
                if not is_rate_limited(e) or cooldowns >= self.cfg.max_retries:
                    raise
                cooldowns += 1
                st.seen.discard(note.signature)
                self._cooldown(note.signature)

        if candidates:
            self.accept_all(candidates)
        return candidates

    def _cooldown(self, what: str) -> None:
        ms = self.cfg.rate_limit_cooldown_ms
        self.state.events.emit(CrawlEvent.RATE_LIMIT_COOLDOWN, target=what, pause_ms=ms)
        self._sleep(ms / 1000.0)

    def process_pending(self, timeout: Optional[float] = None) -> int:
        """Handle queued notifications; waits up to timeout for the first one."""
        handled = 0
        block = timeout is not None
        while True:
            try:
                note = self.inbox.get(block=block, timeout=timeout)
            except queue.Empty:
                return handled
            block = False

            try:
                self.handle(note)
            except Exception as e:
                logger.error("Live notification %s for %s failed: %s", note.signature, note.address, e)
            finally:
                self.inbox.task_done()
            handled += 1

    def run_forever(self, stop: Optional[threading.Event] = None, poll_sec: float = 1.0) -> None:
        stop = stop or threading.Event()
        while not stop.is_set():
            self.process_pending(timeout=poll_sec)
