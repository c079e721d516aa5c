"""
scheduler.py — The repeating poll cycle.

One cycle walks every feed:

  list instruments → for each instrument: fetch snapshot → detect → notify
  → compact the seen-order ledger

and the next cycle starts ``POLL_INTERVAL_MS`` after the previous one has
finished, so cycles never overlap.  Failures are isolated: a feed whose
listing fails is skipped for this cycle, an instrument whose snapshot fails is
skipped and the rest carry on.  Nothing is retried inside a cycle; the next
cycle is the retry.

Consecutive upstream calls are spaced at least ``REQUEST_DELAY_MS`` apart and
consecutive notifications at least ``NOTIFY_DELAY_MS`` apart.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import config
from dedup import DedupLedger
from detectors import DetectedEvent, EventDetector
from enrichment import WalletAgeLookup
from notifier import Notifier, NotifyOutcome
from recent_events import RecentEventsRing
from sources import SourceAdapter, SourceError, utcnow

logger = logging.getLogger(__name__)


class Pacer:
    """Enforces a minimum gap between consecutive calls."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    def wait(self) -> None:
        if self._last is not None and self.min_interval > 0:
            remaining = self._last + self.min_interval - self._clock()
            if remaining > 0:
                self._sleep(remaining)
        self._last = self._clock()


@dataclass
class CycleReport:
    started_at:          datetime
    finished_at:         datetime | None = None
    instruments_checked: int = 0
    failed_feeds:        list[str] = field(default_factory=list)
    failed_instruments:  int = 0
    events:              list[DetectedEvent] = field(default_factory=list)
    notify_outcomes:     dict[str, int] = field(default_factory=dict)
    compacted:           int = 0
    aborted:             bool = False


class PollScheduler:
    """Owns the poll cycle; the ledger, ring and detector are passed in."""

    def __init__(
        self,
        feeds: list[SourceAdapter],
        detector: EventDetector,
        ring: RecentEventsRing,
        notifier: Notifier,
        enrichment: WalletAgeLookup | None = None,
        poll_interval: float | None = None,
        request_delay: float | None = None,
        notify_delay: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.feeds = list(feeds)
        self.detector = detector
        self.ring = ring
        self.notifier = notifier
        self.enrichment = enrichment
        self.poll_interval = (
            config.POLL_INTERVAL_MS / 1000 if poll_interval is None else poll_interval
        )
        self._request_pacer = Pacer(
            config.REQUEST_DELAY_MS / 1000 if request_delay is None else request_delay,
            clock=clock, sleep=sleep,
        )
        self._notify_pacer = Pacer(
            config.NOTIFY_DELAY_MS / 1000 if notify_delay is None else notify_delay,
            clock=clock, sleep=sleep,
        )
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.cycles = 0
        self.events_detected = 0

    @property
    def ledger(self) -> DedupLedger:
        return self.detector.ledger

    # ── One cycle ─────────────────────────────────────────────────────────────

    def run_once(self) -> CycleReport:
        report = CycleReport(started_at=utcnow())
        logger.info("🔍 Starting scan cycle %d...", self.cycles + 1)

        listed_any = False
        for feed in self.feeds:
            if self._stop.is_set():
                break
            if self._scan_feed(feed, report):
                listed_any = True

        report.aborted = bool(self.feeds) and not listed_any and not self._stop.is_set()
        if report.aborted:
            logger.warning("No feed could list instruments; cycle aborted, state kept.")

        if self.ledger.needs_compaction():
            report.compacted = self.ledger.compact()

        self.cycles += 1
        self.events_detected += len(report.events)
        report.finished_at = utcnow()

        if report.events:
            logger.info("🐋 Found %d NEW event(s).", len(report.events))
        else:
            logger.info("💤 No new events detected.")
        return report

    def _scan_feed(self, feed: SourceAdapter, report: CycleReport) -> bool:
        """Scan one feed.  Returns False when its instrument listing failed."""
        self._request_pacer.wait()
        try:
            instruments = feed.list_candidate_instruments()
        except SourceError as exc:
            logger.warning("❌ Error listing %s instruments: %s", feed.name, exc)
            report.failed_feeds.append(feed.name)
            return False

        if not instruments:
            logger.warning("⚠️ No active %s instruments found.", feed.name)
            return True

        if feed.provides_volume:
            self.detector.baselines.retain({i.id for i in instruments})

        logger.info("📊 Checking %d %s instruments...", len(instruments), feed.name)
        for instrument in instruments:
            if self._stop.is_set():
                break
            report.instruments_checked += 1
            self._request_pacer.wait()
            try:
                snapshot = feed.fetch_snapshot(instrument.id)
                events = self.detector.detect(instrument, snapshot, source=feed.name)
            except SourceError as exc:
                logger.warning("Skipping %s %s this cycle: %s", feed.name, instrument.id, exc)
                report.failed_instruments += 1
                continue
            except Exception:
                logger.exception("Unexpected error on %s %s; skipping.", feed.name, instrument.id)
                report.failed_instruments += 1
                continue

            for event in events:
                try:
                    self._commit(event, report)
                except Exception:
                    logger.exception("Could not commit event %s; skipping.", event.fingerprint)
        return True

    def _commit(self, event: DetectedEvent, report: CycleReport) -> None:
        event = self._enrich(event)
        self.ring.push(event)
        report.events.append(event)

        if self.notifier.enabled:
            self._notify_pacer.wait()
        outcome = self.notifier.notify(event)
        report.notify_outcomes[outcome] = report.notify_outcomes.get(outcome, 0) + 1
        if outcome == NotifyOutcome.FAILED:
            logger.warning("Alert for %s was not delivered.", event.instrument_id)

    def _enrich(self, event: DetectedEvent) -> DetectedEvent:
        if not event.wallet or self.enrichment is None or not self.enrichment.enabled:
            return event
        self._request_pacer.wait()
        try:
            age = self.enrichment.age_days(event.wallet)
        except Exception:
            logger.exception("Wallet-age lookup failed for %s.", event.wallet)
            return event
        if age is None:
            return event
        return dataclasses.replace(event, wallet_age_days=age)

    # ── Driver ────────────────────────────────────────────────────────────────

    def run_forever(self) -> None:
        """Run cycles back to back, ``poll_interval`` apart, until stopped."""
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Scan cycle failed.")
            self._stop.wait(self.poll_interval)

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="poll-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        """Stop starting new cycles.  An in-flight cycle stops at the next instrument."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        logger.info(
            "📊 Final stats: %d events detected, %d unique orders seen.",
            self.events_detected, len(self.ledger),
        )

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
