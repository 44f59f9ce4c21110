import json
import os
import tempfile
import unittest
from decimal import Decimal
from unittest import mock

from flowtracer.cli import main as cli
from flowtracer.core.enums import CrawlEvent
from flowtracer.core.events import EventSink
from flowtracer.io.event_writer import JsonlEventWriter
from flowtracer.io.schemas import event_to_dict


class EventOutputTests(unittest.TestCase):
    def test_event_to_dict_keeps_decimals_as_strings(self) -> None:
        d = event_to_dict("expansion_edge", {"amount": Decimal("8.500000000"), "depth": 1}, ts=12.0)

        self.assertEqual(d, {"ts": 12.0, "event": "expansion_edge", "data": {"amount": "8.500000000", "depth": 1}})

    def test_writer_appends_one_line_per_event(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "out", "events.jsonl")
            with JsonlEventWriter(path) as writer:
                sink = EventSink(writer)
                sink.emit(CrawlEvent.SUBSCRIPTION_OPENED, address="A", depth=0)
                sink.emit(CrawlEvent.EXPANSION_EDGE, from_address="A", to_address="X",
                          amount=Decimal("5"), depth=1, signature="s")

            with open(path, encoding="utf-8") as f:
                rows = [json.loads(line) for line in f]

        self.assertEqual([r["event"] for r in rows], ["subscription_opened", "expansion_edge"])
        self.assertEqual(rows[1]["data"]["amount"], "5")
        self.assertEqual(writer.count, 2)


class CliTests(unittest.TestCase):
    def test_missing_seeds_is_config_error(self) -> None:
        with mock.patch.dict(os.environ, {"WATCH_ADDRS": "", "SEED_ADDR": ""}):
            self.assertEqual(cli.main(["--use-static"]), 2)

    def test_static_run_completes_backfill(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "events.jsonl")
            code = cli.main(["--use-static", "--seed", "A", "--events-out", path])
            with open(path, encoding="utf-8") as f:
                events = [json.loads(line)["event"] for line in f]

        self.assertEqual(code, 0)
        self.assertIn("backfill_phase_complete", events)
        self.assertIn("subscription_opened", events)

    def test_overrides(self) -> None:
        args = cli.build_arg_parser().parse_args(
            ["--seed", "A", "--seed", "B", "--max-depth", "2", "--min-sol", "1.5", "--no-backfill"]
        )
        cfg = cli._apply_overrides(cli.settings.load_crawl_config({}), args)

        self.assertEqual(cfg.seeds, ("A", "B"))
        self.assertEqual(cfg.max_depth, 2)
        self.assertEqual(cfg.min_native, Decimal("1.5"))
        self.assertFalse(cfg.backfill_enabled)


if __name__ == "__main__":
    unittest.main()
