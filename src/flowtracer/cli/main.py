from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import logging
import sys
import threading
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from flowtracer.config import settings
from flowtracer.core.errors import ConfigError
from flowtracer.core.events import EventSink
from flowtracer.core.models import CrawlConfig
from flowtracer.io.event_writer import JsonlEventWriter
from flowtracer.services.crawler_service import CrawlerService

from flowtracer.adapters.ledger.rate_limiter import RetryPolicy
from flowtracer.adapters.ledger.solana_rpc_adapter import SolanaRpcLedgerAdapter
from flowtracer.adapters.ledger.solana_ws_subscriber import SolanaLogsSubscriber
from flowtracer.adapters.ledger.static_ledger_adapter import StaticLedgerAdapter


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="flowtracer", description="Fund-flow crawler (backfill, then live)")
    p.add_argument("--seed", action="append", default=[], help="Seed address (repeatable; overrides WATCH_ADDRS)")
    p.add_argument("--max-depth", type=int, help="Maximum hop count from a seed")
    p.add_argument("--top-children", type=int, help="Destinations followed per transaction")
    p.add_argument("--min-sol", type=str, help="Native transfer threshold in SOL")
    p.add_argument("--min-token-units", type=int, help="Token transfer threshold in raw units")
    p.add_argument("--backfill-only", action="store_true", help="Stop after the backfill phase")
    p.add_argument("--no-backfill", action="store_true", help="Skip history replay and go live immediately")
    p.add_argument("--use-static", action="store_true", help="Use static adapter (dev/testing)")
    p.add_argument("--events-out", help="Append emitted events to this JSON-lines file")
    p.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level (default from LOG_LEVEL)")
    return p


def _apply_overrides(cfg: CrawlConfig, args: argparse.Namespace) -> CrawlConfig:
    changes: Dict[str, Any] = {}
    if args.seed:
        changes["seeds"] = tuple(s.strip() for s in args.seed if s.strip())
    if args.max_depth is not None:
        changes["max_depth"] = args.max_depth
    if args.top_children is not None:
        changes["top_children"] = args.top_children
    if args.min_sol is not None:
        try:
            changes["min_native"] = Decimal(args.min_sol)
        except InvalidOperation as e:
            raise ConfigError(f"Invalid --min-sol value: {args.min_sol}") from e
    if args.min_token_units is not None:
        changes["min_token_units"] = args.min_token_units
    if args.no_backfill:
        changes["backfill_enabled"] = False
    return dataclasses.replace(cfg, **changes) if changes else cfg


def _make_progress_reporter(cfg: CrawlConfig) -> Callable[[str, Dict[str, Any]], None]:
    counts = {"edges": 0, "mints": 0, "subs": 0}

    def _short_addr(addr: str) -> str:
        if not addr:
            return ""
        if len(addr) <= 12:
            return addr
        return f"{addr[:6]}...{addr[-4:]}"

    def _ts() -> str:
        return dt.datetime.now().strftime("%H:%M:%S")

    def progress(event: str, data: dict) -> None:
        if event == "expansion_edge":
            counts["edges"] += 1
            print(
                f"[{_ts()}] -> {_short_addr(data['from_address'])} -> {_short_addr(data['to_address'])} "
                f"| amt~{data['amount']} | depth {data['depth']}/{cfg.max_depth} | sig={data['signature']}"
            )
            return
        if event == "mint_initialization_observed":
            counts["mints"] += 1
            print(f"[{_ts()}] InitializeMint | signer~{data['address']} | sig={data['signature']}")
            return
        if event == "backfill_address_started":
            print(f"[{_ts()}] Backfill {data['address']} (depth {data['depth']}) ...")
            return
        if event == "backfill_address_finished":
            print(f"[{_ts()}] Backfill done for {_short_addr(data['address'])} ({data['signatures']} signature(s))")
            return
        if event == "subscription_opened":
            counts["subs"] += 1
            return
        if event == "backfill_phase_complete":
            print(
                f"[{_ts()}] Backfill complete • {data['addresses']} address(es) • "
                f"{data['signatures']} signature(s) • {counts['edges']} edge(s) • "
                f"{counts['mints']} mint(s) -> going live"
            )
            return
        if event == "fatal_call_error":
            print(f"[{_ts()}] Error: {data.get('label')} failed after {data.get('attempts')} attempts: "
                  f"{data.get('error')}", file=sys.stderr)

    return progress


def _fanout(callbacks: List[Callable[[str, Dict[str, Any]], None]]) -> Callable[[str, Dict[str, Any]], None]:
    def emit(event: str, data: Dict[str, Any]) -> None:
        for cb in callbacks:
            cb(event, data)
    return emit


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        cfg = _apply_overrides(settings.load_crawl_config(), args).validate()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    callbacks: List[Callable[[str, Dict[str, Any]], None]] = [_make_progress_reporter(cfg)]
    writer: Optional[JsonlEventWriter] = None
    if args.events_out:
        writer = JsonlEventWriter(args.events_out)
        callbacks.append(writer)
    events = EventSink(_fanout(callbacks))

    print("--- Fund-flow crawler (breadth-first backfill -> live logs) ---")
    print("Seeds:", ", ".join(cfg.seeds))
    print(f"MIN_SOL={cfg.min_native} | MIN_SPL_UNITS={cfg.min_token_units} | "
          f"TOP_CHILDREN={cfg.top_children} | MAX_DEPTH={cfg.max_depth}")
    print(f"Throttle -> PAGE_SIZE={cfg.page_size} | REQ_DELAY_MS={cfg.req_delay_ms} | "
          f"TX_DELAY_MS={cfg.tx_delay_ms} | RETRIES={cfg.max_retries}")

    # Ports
    subscriber: Optional[SolanaLogsSubscriber] = None
    if args.use_static:
        ledger = StaticLedgerAdapter()
        adapter_label = "StaticLedgerAdapter (dev/testing)"
    else:
        subscriber = SolanaLogsSubscriber(ws_url=cfg.rpc_wss)
        ledger = SolanaRpcLedgerAdapter(
            rpc_http=cfg.rpc_http,
            retry=RetryPolicy(cfg.max_retries, cfg.retry_base_ms, events=events),
            subscriber=subscriber,
        )
        adapter_label = "SolanaRpcLedgerAdapter"
    print(f"Adapter: {adapter_label}")

    svc = CrawlerService(ledger, cfg, events=events)
    stop = threading.Event()
    try:
        svc.run(stop=stop, backfill_only=args.backfill_only or args.use_static)
    except KeyboardInterrupt:
        stop.set()
        print("Interrupted.")
    except Exception as exc:
        print(f"Error: {exc.__class__.__name__}: {exc}", file=sys.stderr)
        return 1
    finally:
        if subscriber is not None:
            subscriber.stop()
        if writer is not None:
            writer.close()
            print(f"Wrote: {writer.path} ({writer.count} event(s))")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
