from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from flowtracer.core.events import EventSink
from flowtracer.core.models import CrawlConfig, ExpansionCandidate
from flowtracer.core.state import CrawlState
from flowtracer.ports.ledger_port import LedgerPort
from flowtracer.services.backfill_scheduler import BackfillScheduler
from flowtracer.services.classifier import TransactionClassifier
from flowtracer.services.live_subscriptions import LiveSubscriptionManager, PhaseController


logger = logging.getLogger(__name__)


class CrawlerService:
    """
    Builds a fund-flow graph from the configured seeds.

    - Phase 1: breadth-first backfill of every discovered address's history.
    - Phase 2: push subscriptions on every known address, same classification.
    - Expansion routing depends on the phase: queue for backfill, or subscribe.
    """

    def __init__(
        self,
        ledger: LedgerPort,
        config: CrawlConfig,
        events: Optional[EventSink] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.config = config.validate()
        self.state = CrawlState(config, events)

        self.classifier = TransactionClassifier(ledger, self.state)
        self.phase = PhaseController(self.state)
        self.backfill = BackfillScheduler(
            ledger,
            self.state,
            classifier=self.classifier,
            on_expansion=self.route_expansion,
            sleep=sleep,
        )
        self.live = LiveSubscriptionManager(
            ledger, self.state, self.phase, classifier=self.classifier, sleep=sleep
        )

    def route_expansion(self, candidates: List[ExpansionCandidate]) -> None:
        if self.phase.is_live:
            self.live.accept_all(candidates)
        else:
            self.backfill.accept_all(candidates)

    def run_backfill(self) -> None:
        self.backfill.seed(self.config.seeds)
        if self.config.backfill_enabled:
            self.backfill.drain()
        else:
            logger.info("Backfill disabled, going live on %d seed(s)", len(self.state.registry))
            self.state.queue.clear()
            self.state.enqueued.clear()

    def go_live(self) -> int:
        if not self.phase.go_live():
            return 0
        return self.live.subscribe_all()

    def run(self, stop: Optional[threading.Event] = None, backfill_only: bool = False) -> None:
        self.run_backfill()
        self.go_live()
        if backfill_only:
            return
        self.live.run_forever(stop)
