"""
Unit tests for the read-only HTTP API (FastAPI TestClient, no network).

Tests cover:
- /events payload shape, newest-first order and ?limit=
- /stats aggregates, including the empty ring
- /health counters
- the scheduler lifecycle bound to the app lifespan
"""

from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from api import create_app
from dedup import DedupLedger
from recent_events import RecentEventsRing

from fakes import make_event


class TestApi:

    def setup_method(self) -> None:
        self.ring = RecentEventsRing(capacity=10)
        self.ledger = DedupLedger(max_size=100, target_size=50)
        self.client = TestClient(create_app(self.ring, self.ledger, min_trade_size=15000))

    def push(self, instrument_id, notional, minutes):
        event = make_event(instrument_id, notional=notional, minutes=minutes)
        self.ledger.record_seen(event.fingerprint)
        self.ring.push(event)

    def test_events_empty(self) -> None:
        resp = self.client.get("/events")
        assert resp.status_code == 200
        assert resp.json() == {"events": [], "count": 0, "config": {"minTradeSize": 15000}}

    def test_events_newest_first(self) -> None:
        self.push("A", 100, 0)
        self.push("B", 300, 5)
        body = self.client.get("/events").json()

        assert body["count"] == 2
        assert [e["instrument_id"] for e in body["events"]] == ["B", "A"]
        event = body["events"][0]
        assert event["notional_value"] == 300
        assert event["detection_kind"] == "threshold-order"
        assert event["observed_at"].startswith("2026-10-19T12:05:00")
        assert event["wallet"] is None

    def test_events_limit(self) -> None:
        for i in range(4):
            self.push(f"M{i}", 100, i)
        body = self.client.get("/events", params={"limit": 2}).json()
        assert body["count"] == 2
        assert [e["instrument_id"] for e in body["events"]] == ["M3", "M2"]

    def test_events_limit_must_be_positive(self) -> None:
        assert self.client.get("/events", params={"limit": 0}).status_code == 422

    def test_stats_empty(self) -> None:
        body = self.client.get("/stats").json()
        assert body == {
            "totalEvents": 0,
            "totalVolume": 0,
            "avgEventSize": 0,
            "lastUpdate": None,
            "uniqueFingerprintsTracked": 0,
        }

    def test_stats(self) -> None:
        self.push("A", 100, 0)
        self.push("B", 300, 5)
        body = self.client.get("/stats").json()

        assert body["totalEvents"] == 2
        assert body["totalVolume"] == 400
        assert body["avgEventSize"] == 200
        assert body["lastUpdate"].startswith("2026-10-19T12:05:00")
        assert body["uniqueFingerprintsTracked"] == 2

    def test_health_without_scheduler(self) -> None:
        self.push("A", 100, 0)
        body = self.client.get("/health").json()

        assert body["status"] == "ok"
        assert body["uptimeSeconds"] >= 0
        assert body["eventsDetected"] == 1
        assert body["uniqueFingerprintsTracked"] == 1
        assert body["mode"] == "monitoring"

    def test_post_not_allowed(self) -> None:
        assert self.client.post("/events").status_code == 405


class TestLifespan:

    def test_scheduler_started_and_stopped(self) -> None:
        scheduler = MagicMock(events_detected=7)
        app = create_app(RecentEventsRing(capacity=5), DedupLedger(max_size=10, target_size=5),
                         min_trade_size=200, scheduler=scheduler, mode="kalshi-monitoring")

        with TestClient(app) as client:
            scheduler.start.assert_called_once_with()
            body = client.get("/health").json()
            assert body["eventsDetected"] == 7
            assert body["mode"] == "kalshi-monitoring"
            scheduler.stop.assert_not_called()

        scheduler.stop.assert_called_once_with(timeout=5)
