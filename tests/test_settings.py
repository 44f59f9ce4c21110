import unittest
from decimal import Decimal

from flowtracer.config.settings import load_crawl_config
from flowtracer.core.errors import ConfigError
from flowtracer.core.models import CrawlConfig


class LoadCrawlConfigTests(unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = load_crawl_config({"WATCH_ADDRS": "A"})

        self.assertEqual(cfg.seeds, ("A",))
        self.assertEqual(cfg.min_native, Decimal("0.2"))
        self.assertEqual(cfg.min_token_units, 1000000)
        self.assertEqual(cfg.max_depth, 6)
        self.assertEqual(cfg.top_children, 3)
        self.assertEqual(cfg.page_size, 25)
        self.assertEqual((cfg.req_delay_ms, cfg.tx_delay_ms), (250, 150))
        self.assertEqual((cfg.max_retries, cfg.retry_base_ms), (3, 500))
        self.assertTrue(cfg.backfill_enabled)
        self.assertEqual(cfg.validate(), cfg)

    def test_seed_lists_and_ignore_list(self) -> None:
        cfg = load_crawl_config({
            "SEED_ADDR": " A , B,,C ",
            "CEX_HOT_WALLETS": "HOT1,HOT2",
            "MIN_SPL_UNITS": "1e6",
            "BACKFILL_ALL": "false",
        })

        self.assertEqual(cfg.seeds, ("A", "B", "C"))
        self.assertEqual(cfg.ignore_addresses, frozenset({"HOT1", "HOT2"}))
        self.assertTrue(cfg.is_ignored("HOT1"))
        self.assertEqual(cfg.min_token_units, 1000000)
        self.assertFalse(cfg.backfill_enabled)

    def test_watch_addrs_wins_over_seed_addr(self) -> None:
        cfg = load_crawl_config({"WATCH_ADDRS": "W", "SEED_ADDR": "S"})

        self.assertEqual(cfg.seeds, ("W",))

    def test_missing_seeds_fail_validation(self) -> None:
        cfg = load_crawl_config({})

        with self.assertRaises(ConfigError):
            cfg.validate()

    def test_bad_numbers(self) -> None:
        with self.assertRaises(ConfigError):
            load_crawl_config({"WATCH_ADDRS": "A", "MAX_DEPTH": "deep"})
        with self.assertRaises(ConfigError):
            load_crawl_config({"WATCH_ADDRS": "A", "MIN_SOL": "lots"})

    def test_validation_rejects_nonsense_knobs(self) -> None:
        with self.assertRaises(ConfigError):
            load_crawl_config({"WATCH_ADDRS": "A", "TOP_CHILDREN": "0"}).validate()
        with self.assertRaises(ConfigError):
            load_crawl_config({"WATCH_ADDRS": "A", "TX_DELAY_MS": "-1"}).validate()
        with self.assertRaises(ConfigError):
            CrawlConfig(seeds=("A",), rpc_http="").validate()


if __name__ == "__main__":
    unittest.main()
