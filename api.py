"""
api.py — Read-only HTTP endpoints over the tracker's in-memory state.

  GET /events  → recent detected events, newest first
  GET /stats   → aggregates over the recent events
  GET /health  → liveness and counters

The endpoints only read copies of the ring and ledger; they never feed back
into detection, and upstream flakiness never turns into an error here.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from dedup import DedupLedger
from recent_events import RecentEventsRing
from scheduler import PollScheduler

logger = logging.getLogger(__name__)


class EventOut(BaseModel):
    instrument_id: str
    display_name: str
    side: str
    detection_kind: str
    fingerprint: str
    unit_price: float
    quantity: float
    notional_value: float
    observed_at: datetime
    source: str
    url: str
    wallet: str | None = None
    wallet_age_days: float | None = None


class ConfigOut(BaseModel):
    minTradeSize: float


class EventsOut(BaseModel):
    events: list[EventOut]
    count: int
    config: ConfigOut


class StatsOut(BaseModel):
    totalEvents: int
    totalVolume: float
    avgEventSize: float
    lastUpdate: datetime | None
    uniqueFingerprintsTracked: int


class HealthOut(BaseModel):
    status: str
    uptimeSeconds: float
    eventsDetected: int
    uniqueFingerprintsTracked: int
    mode: str


def create_app(
    ring: RecentEventsRing,
    ledger: DedupLedger,
    min_trade_size: float,
    scheduler: PollScheduler | None = None,
    mode: str = "monitoring",
) -> FastAPI:
    """
    Build the read API.  When ``scheduler`` is given it is started with the
    app and stopped (final counters logged) when the server shuts down.
    """
    started = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
            logger.info("Poll scheduler started.")
        yield
        if scheduler is not None:
            logger.info("👋 Shutting down gracefully.")
            scheduler.stop(timeout=5)

    app = FastAPI(title="Whale Watch", version="0.1.0", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["GET"], allow_headers=["*"])

    @app.get("/events", response_model=EventsOut)
    def list_events(limit: int | None = Query(None, ge=1)):
        events = ring.snapshot()
        if limit is not None:
            events = events[:limit]
        return {
            "events": [e.to_dict() for e in events],
            "count": len(events),
            "config": {"minTradeSize": min_trade_size},
        }

    @app.get("/stats", response_model=StatsOut)
    def stats():
        agg = ring.aggregate()
        return {
            "totalEvents": agg.count,
            "totalVolume": agg.total_notional,
            "avgEventSize": agg.average_notional,
            "lastUpdate": agg.most_recent_at,
            "uniqueFingerprintsTracked": len(ledger),
        }

    @app.get("/health", response_model=HealthOut)
    def health():
        return {
            "status": "ok",
            "uptimeSeconds": time.monotonic() - started,
            "eventsDetected": scheduler.events_detected if scheduler is not None else len(ring),
            "uniqueFingerprintsTracked": len(ledger),
            "mode": mode,
        }

    return app
