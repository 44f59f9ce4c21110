import unittest
from decimal import Decimal

from flowtracer.adapters.ledger.static_ledger_adapter import StaticLedgerAdapter
from flowtracer.core.dto import NativeTransfer, ParsedTransaction
from flowtracer.core.enums import CrawlEvent
from flowtracer.core.errors import RateLimitError, RetryExhaustedError
from flowtracer.core.models import CrawlConfig
from flowtracer.core.state import CrawlState
from flowtracer.services.backfill_scheduler import BackfillScheduler

from event_recorder import RecordingSink

SOL = 10**9


def _tx(sig, *transfers):
    return ParsedTransaction(
        signature=sig,
        instructions=tuple(NativeTransfer(source=s, destination=d, lamports=a * SOL) for s, d, a in transfers),
    )


class BackfillSchedulerTests(unittest.TestCase):
    def _make(self, ledger, **overrides):
        defaults = dict(
            seeds=("A",),
            min_native=Decimal("0.2"),
            top_children=3,
            max_depth=6,
            page_size=2,
            settle_window_ms=1000,
            req_delay_ms=250,
            tx_delay_ms=150,
            rate_limit_cooldown_ms=1500,
        )
        defaults.update(overrides)
        cfg = CrawlConfig(**defaults)
        sink = RecordingSink()
        state = CrawlState(cfg, sink)
        sleeps = []
        sched = BackfillScheduler(ledger, state, sleep=sleeps.append)
        return sched, state, sink, sleeps

    def test_history_is_replayed_oldest_first_across_pages(self) -> None:
        ledger = StaticLedgerAdapter()
        for i in range(5):
            ledger.add_transaction("A", _tx(f"s{i}"))
        sched, _state, _sink, _sleeps = self._make(ledger, page_size=2)

        count = sched.run_one_address("A")

        self.assertEqual(count, 5)
        # pages newest-first [s4 s3] [s2 s1] [s0], each reversed before classification
        self.assertEqual(ledger.transactions_fetched(), ["s3", "s4", "s1", "s2", "s0"])
        cursors = [c[2] for c in ledger.calls if c[0] == "list_signatures"]
        self.assertEqual(cursors, [None, "s3", "s1", "s0"])

    def test_throttling_delays_between_transactions_and_pages(self) -> None:
        ledger = StaticLedgerAdapter()
        ledger.add_transaction("A", _tx("s0"))
        ledger.add_transaction("A", _tx("s1"))
        sched, _state, _sink, sleeps = self._make(ledger, page_size=5)

        sched.run_one_address("A")

        self.assertEqual(sleeps, [0.15, 0.15, 0.25])

    def test_bfs_discovers_and_replays_children(self) -> None:
        txs = [_tx("a1", ("A", "B", 5), ("A", "C", 2)), _tx("b1", ("B", "D", 1)), _tx("c1")]
        ledger = StaticLedgerAdapter(
            history={"A": ["a1"], "B": ["a1", "b1"], "C": ["c1"]},
            transactions={t.signature: t for t in txs},
        )
        sched, state, sink, _sleeps = self._make(ledger)

        sched.seed(["A"])
        sched.drain()

        started = [e["address"] for e in sink.of(CrawlEvent.BACKFILL_ADDRESS_STARTED)]
        self.assertEqual(started, ["A", "B", "C", "D"])
        self.assertEqual(state.registry.min_depth("D"), 2)
        # a1 was shared by A and B but fetched only once
        self.assertEqual(ledger.transactions_fetched().count("a1"), 1)
        self.assertEqual(state.backfilled, {"A", "B", "C", "D"})
        self.assertFalse(state.queue)
        self.assertFalse(state.enqueued)

    def test_enqueue_rules(self) -> None:
        ledger = StaticLedgerAdapter(invalid_addresses={"BAD"})
        sched, state, _sink, _sleeps = self._make(ledger, max_depth=2)

        self.assertTrue(sched.enqueue("A", 0))
        self.assertFalse(sched.enqueue("A", 0))        # already queued
        self.assertFalse(sched.enqueue("DEEP", 3))     # beyond max depth
        self.assertFalse(sched.enqueue("BAD", 1))      # malformed
        state.backfilled.add("DONE")
        self.assertFalse(sched.enqueue("DONE", 1))     # already backfilled

        self.assertNotIn("DEEP", state.registry)
        self.assertNotIn("BAD", state.registry)
        self.assertEqual([q.address for q in state.queue], ["A"])

    def test_rediscovery_lowers_depth_without_requeue(self) -> None:
        ledger = StaticLedgerAdapter()
        sched, state, _sink, _sleeps = self._make(ledger)

        sched.enqueue("X", 4)
        sched.enqueue("X", 2)

        self.assertEqual(state.registry.min_depth("X"), 2)
        self.assertEqual(len(state.queue), 1)

    def test_address_cap(self) -> None:
        ledger = StaticLedgerAdapter()
        sched, state, _sink, _sleeps = self._make(ledger, max_backfill_addresses=2)

        self.assertTrue(sched.enqueue("A", 0))
        self.assertTrue(sched.enqueue("B", 1))
        self.assertFalse(sched.enqueue("C", 1))
        # depth still tracked for live subscription later
        self.assertEqual(state.registry.min_depth("C"), 1)

    def test_signature_cap_stops_backfill(self) -> None:
        ledger = StaticLedgerAdapter()
        for i in range(6):
            ledger.add_transaction("A", _tx(f"s{i}"))
        ledger.add_transaction("B", _tx("b0"))
        sched, state, sink, _sleeps = self._make(ledger, page_size=10, backfill_limit=3)

        self.assertEqual(sched.run_one_address("A"), 3)
        self.assertEqual(sched.run_one_address("B"), 0)
        self.assertEqual(len(state.seen), 3)
        self.assertEqual(len(sink.of(CrawlEvent.BACKFILL_LIMIT_REACHED)), 1)

    def test_failed_transaction_is_skipped(self) -> None:
        ledger = StaticLedgerAdapter(failures={"s0": [RetryExhaustedError("getTransaction", 3, TimeoutError("t"))]})
        ledger.add_transaction("A", _tx("s0", ("A", "X", 1)))
        ledger.add_transaction("A", _tx("s1", ("A", "Y", 1)))
        sched, state, _sink, sleeps = self._make(ledger, page_size=10)

        sched.run_one_address("A")

        self.assertIn("s0", state.seen)
        self.assertEqual([q.address for q in state.queue], ["Y"])
        self.assertNotIn(1.5, sleeps)

    def test_rate_limited_transaction_triggers_cooldown(self) -> None:
        ledger = StaticLedgerAdapter(failures={"s0": [RateLimitError("HTTP 429")]})
        ledger.add_transaction("A", _tx("s0"))
        sched, _state, sink, sleeps = self._make(ledger, page_size=10)

        sched.run_one_address("A")

        self.assertEqual(sleeps, [1.5, 0.15, 0.25])
        self.assertEqual(len(sink.of(CrawlEvent.RATE_LIMIT_COOLDOWN)), 1)

    def test_rate_limited_transaction_is_classified_after_cooldown(self) -> None:
        limited = RetryExhaustedError("getTransaction", 3, RateLimitError("HTTP 429"))
        ledger = StaticLedgerAdapter(failures={"s0": [limited]})
        ledger.add_transaction("A", _tx("s0", ("A", "X", 5)))
        sched, state, sink, _sleeps = self._make(ledger, page_size=10)

        self.assertEqual(sched.run_one_address("A"), 1)

        self.assertEqual(ledger.transactions_fetched(), ["s0", "s0"])
        self.assertEqual(sink.of(CrawlEvent.RATE_LIMIT_COOLDOWN), [{"target": "s0", "pause_ms": 1500}])
        self.assertEqual(state.registry.min_depth("X"), 1)
        self.assertEqual([q.address for q in state.queue], ["X"])
        self.assertIn("s0", state.seen)

    def test_rate_limited_transaction_gives_up_after_max_retries(self) -> None:
        ledger = StaticLedgerAdapter(failures={"s0": [RateLimitError("HTTP 429")] * 3})
        ledger.add_transaction("A", _tx("s0", ("A", "X", 5)))
        sched, state, sink, _sleeps = self._make(ledger, page_size=10, max_retries=2)

        self.assertEqual(sched.run_one_address("A"), 0)

        self.assertEqual(ledger.transactions_fetched(), ["s0", "s0", "s0"])
        self.assertEqual(len(sink.of(CrawlEvent.RATE_LIMIT_COOLDOWN)), 2)
        self.assertNotIn("X", state.registry)
        self.assertIn("s0", state.seen)

    def test_page_failure_ends_address_without_raising(self) -> None:
        class _Broken(StaticLedgerAdapter):
            def list_signatures(self, address, before=None, limit=25):
                raise RetryExhaustedError("getSignaturesForAddress", 3, ConnectionError("down"))

        sched, state, sink, _sleeps = self._make(_Broken())

        self.assertEqual(sched.run_one_address("A"), 0)
        self.assertIn("A", state.backfilled)
        self.assertEqual(len(sink.of(CrawlEvent.BACKFILL_ADDRESS_FINISHED)), 1)

    def test_drain_requires_consecutive_empty_settle_windows(self) -> None:
        ledger = StaticLedgerAdapter()
        sched, state, _sink, _sleeps = self._make(ledger, settle_confirmations=2, settle_window_ms=1000)
        windows = []
        late = ["LATE"]

        def sleep(s):
            if s == 1.0:
                windows.append(len(state.queue))
                # work discovered by an in-flight classification shows up during the first window
                if late:
                    sched.enqueue(late.pop(), 1)

        sched._sleep = sleep
        sched.seed(["A"])
        sched.drain()

        # window 1 saw new work, then two empty windows in a row
        self.assertEqual(len(windows), 3)
        self.assertIn("LATE", state.backfilled)


if __name__ == "__main__":
    unittest.main()
