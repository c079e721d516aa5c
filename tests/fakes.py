"""Test doubles shared by the unit tests: scripted feeds, sinks and HTTP responses."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from dedup import fingerprint
from detectors import DetectedEvent, DetectionKind
from sources import (
    Instrument,
    OrderBookSnapshot,
    RawObservation,
    SourceAdapter,
    SourceError,
)

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_instrument(instrument_id: str, name: str = "") -> Instrument:
    return Instrument(
        id=instrument_id,
        display_name=name or f"Market {instrument_id}",
        url=f"https://example.test/markets/{instrument_id}",
    )


def make_book(instrument_id: str, levels, observed_at: datetime = T0) -> OrderBookSnapshot:
    """``levels`` is a list of (side, price_cents, quantity)."""
    return OrderBookSnapshot(observations=[
        RawObservation(
            instrument_id=instrument_id,
            side=side,
            unit_price=price,
            quantity=quantity,
            observed_at=observed_at,
        )
        for side, price, quantity in levels
    ])


def make_event(instrument_id: str = "X", notional: float = 210.0, minutes: int = 0,
               side: str = "YES", price: float = 42, quantity: float = 500) -> DetectedEvent:
    return DetectedEvent(
        instrument_id=instrument_id,
        display_name=f"Market {instrument_id}",
        side=side,
        detection_kind=DetectionKind.THRESHOLD_ORDER,
        fingerprint=fingerprint(instrument_id, side, price, quantity),
        unit_price=price,
        quantity=quantity,
        notional_value=notional,
        observed_at=T0 + timedelta(minutes=minutes),
        source="kalshi",
        url=f"https://example.test/markets/{instrument_id}",
    )


class FakeFeed(SourceAdapter):
    """
    Scripted feed.  ``snapshots`` maps instrument id → snapshot (or a
    callable returning one, or an exception to raise).
    """

    def __init__(self, name="fake", instruments=(), snapshots=None,
                 list_error=None, provides_volume=False):
        self.name = name
        self.provides_volume = provides_volume
        self.instruments = list(instruments)
        self.snapshots = dict(snapshots or {})
        self.list_error = list_error
        self.calls = []

    def list_candidate_instruments(self):
        self.calls.append(("list", None))
        if self.list_error is not None:
            raise self.list_error
        return list(self.instruments)

    def fetch_snapshot(self, instrument_id):
        self.calls.append(("fetch", instrument_id))
        snapshot = self.snapshots.get(instrument_id)
        if isinstance(snapshot, Exception):
            raise snapshot
        if callable(snapshot):
            return snapshot()
        if snapshot is None:
            raise SourceError(f"no snapshot scripted for {instrument_id}")
        return snapshot


class RecordingSink:
    name = "recording"

    def __init__(self, result=True):
        self.result = result
        self.messages = []

    def send(self, message):
        self.messages.append(message)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def json_response(payload, status_error=None):
    resp = MagicMock()
    resp.json.return_value = payload
    if status_error is not None:
        resp.raise_for_status.side_effect = status_error
    return resp


# ── Chain fixtures ───────────────────────────────────────────────────────────

TOKEN_ID = 71321045679252212594626385532706912750332728571942532289631379312455583992563
MAKER = "0x" + "11" * 20
TAKER = "0x" + "22" * 20


def _word(value: int) -> str:
    return f"{value:064x}"


def order_filled_log(maker_asset, taker_asset, maker_amount, taker_amount,
                     maker=MAKER, indexed_taker=False, block=0x65):
    topics = ["0xd0a08e8c" + "0" * 56, "0x" + "aa" * 32, "0x" + "0" * 24 + maker[2:]]
    words = [maker_asset, taker_asset, maker_amount, taker_amount, 0]
    if indexed_taker:
        topics.append("0x" + "0" * 24 + TAKER[2:])
    else:
        words.insert(0, int(TAKER, 16))
    return {
        "topics": topics,
        "data": "0x" + "".join(_word(w) for w in words),
        "blockNumber": hex(block),
    }


def whale_buy_log(**kwargs):
    """Maker pays 21,000 USDC for 50,000 shares (42¢)."""
    return order_filled_log(0, TOKEN_ID, 21_000 * 10**6, 50_000 * 10**6, **kwargs)


class FakeRpc:
    """Answers eth_blockNumber / eth_getLogs like a JSON-RPC node."""

    def __init__(self, head, logs=()):
        self.head = head
        self.logs = list(logs)
        self.error = None
        self.requests = []

    def post(self, url, json=None, timeout=None):
        self.requests.append(json)
        if self.error is not None:
            return json_response({"jsonrpc": "2.0", "id": json["id"], "error": self.error})
        if json["method"] == "eth_blockNumber":
            return json_response({"jsonrpc": "2.0", "id": json["id"], "result": hex(self.head)})
        if json["method"] == "eth_getLogs":
            return json_response({"jsonrpc": "2.0", "id": json["id"], "result": list(self.logs)})
        raise AssertionError(f"unexpected method {json['method']}")

    def methods(self):
        return [r["method"] for r in self.requests]

    def session(self):
        session = MagicMock()
        session.post.side_effect = self.post
        return session
