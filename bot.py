#!/usr/bin/env python3
"""
bot.py — Main entry point for the Whale Watch tracker.

Runs a continuous polling loop that:
  1. Lists candidate instruments from every configured feed.
  2. Fetches each instrument's snapshot, pacing requests.
  3. Detects large orders and volume spikes, skipping anything already alerted.
  4. Sends each new event to the configured webhook / Telegram chat.
  5. Compacts the seen-order ledger, sleeps for the poll interval and repeats.

A small read-only HTTP API (/events, /stats, /health) is served alongside.

Usage:
    python bot.py              # normal operation (poller + read API)
    python bot.py --once       # single scan then exit (useful for testing)
    python bot.py --dry-run    # print alerts to the console instead of sending
    python bot.py --no-api     # poller only, no HTTP server
"""

from __future__ import annotations

import argparse
import logging
import signal

import uvicorn

import config
from api import create_app
from chain_client import ChainClient
from dedup import DedupLedger
from detectors import EventDetector
from enrichment import WalletAgeLookup
from kalshi_client import KalshiClient
from notifier import build_notifier
from polymarket_client import PolymarketClient
from recent_events import RecentEventsRing
from scheduler import PollScheduler
from sources import SourceAdapter

# ── Logging setup ────────────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("whale_watch")

FEED_TYPES: dict[str, type[SourceAdapter]] = {
    "kalshi":     KalshiClient,
    "polymarket": PolymarketClient,
    "chain":      ChainClient,
}


def build_feeds(names: list[str]) -> list[SourceAdapter]:
    feeds: list[SourceAdapter] = []
    for name in names:
        feed_cls = FEED_TYPES.get(name)
        if feed_cls is None:
            logger.warning("Unknown feed '%s' in FEEDS — skipping.", name)
            continue
        feeds.append(feed_cls())
    return feeds


def build_scheduler(dry_run: bool = False) -> PollScheduler:
    ledger = DedupLedger()
    return PollScheduler(
        feeds=build_feeds(config.FEEDS),
        detector=EventDetector(ledger),
        ring=RecentEventsRing(),
        notifier=build_notifier(dry_run=dry_run),
        enrichment=WalletAgeLookup(),
    )


def _log_banner(scheduler: PollScheduler, dry_run: bool) -> None:
    if dry_run:
        alerts = "console (dry run)"
    elif scheduler.notifier.enabled:
        alerts = ", ".join(s.name for s in scheduler.notifier.sinks)
    else:
        alerts = "disabled"

    logger.info("=" * 60)
    logger.info("  🚀 Whale Watch starting")
    logger.info("=" * 60)
    logger.info("  Feeds           : %s", ", ".join(f.name for f in scheduler.feeds) or "(none)")
    logger.info("  Min order size  : $%s", f"{scheduler.detector.min_trade_size:,.0f}")
    logger.info("  Volume spike    : $%s", f"{scheduler.detector.volume_spike_threshold:,.0f}")
    logger.info("  Poll interval   : %.1fs", scheduler.poll_interval)
    logger.info("  Request delay   : %dms", config.REQUEST_DELAY_MS)
    logger.info("  Ledger          : compact %d → %d", scheduler.ledger.max_size, scheduler.ledger.target_size)
    logger.info("  Alerts          : %s", alerts)
    logger.info("  Wallet age      : %s", "enabled" if scheduler.enrichment and scheduler.enrichment.enabled else "disabled")
    logger.info("=" * 60)


# ── Main entry point ─────────────────────────────────────────────────────────

def main() -> None:
    parser = argparse.ArgumentParser(description="Whale Watch market tracker")
    parser.add_argument("--once",    action="store_true",
                        help="Run a single scan cycle and exit.")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print alerts to the console instead of sending them.")
    parser.add_argument("--no-api",  action="store_true",
                        help="Run the poller without the HTTP read API.")
    args = parser.parse_args()

    scheduler = build_scheduler(dry_run=args.dry_run)
    _log_banner(scheduler, args.dry_run)

    if args.once:
        report = scheduler.run_once()
        logger.info(
            "Checked %d instruments, %d new event(s), %d failure(s).",
            report.instruments_checked, len(report.events),
            len(report.failed_feeds) + report.failed_instruments,
        )
        return

    if args.no_api:
        def _shutdown_handler(signum, frame):
            logger.info("Received signal %s — shutting down gracefully.", signum)
            scheduler.stop()

        signal.signal(signal.SIGINT, _shutdown_handler)
        signal.signal(signal.SIGTERM, _shutdown_handler)
        scheduler.run_forever()
        return

    app = create_app(
        ring=scheduler.ring,
        ledger=scheduler.ledger,
        min_trade_size=scheduler.detector.min_trade_size,
        scheduler=scheduler,
        mode="+".join(f.name for f in scheduler.feeds) + "-monitoring",
    )
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
