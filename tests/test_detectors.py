"""
Unit tests for detection.

Tests cover:
- notional value arithmetic and the inclusive threshold boundary
- zero / negative sizes dropped silently
- EventDetector suppresses already-seen orders across polls
- volume-spike baseline seeding, unconditional baseline update, side inference
- stale baseline eviction
"""

from datetime import timedelta

import pytest

from dedup import DedupLedger
from detectors import (
    ANY_SIDE,
    DetectionKind,
    EventDetector,
    VolumeBaselines,
    detect_large_orders,
    detect_volume_spike,
    infer_side,
    notional_value,
)
from sources import VolumeSnapshot

from fakes import T0, make_book, make_instrument

X = make_instrument("X", "Will X happen?")


def volume(instrument_id, cumulative, last_price=None, minutes=0):
    return VolumeSnapshot(
        instrument_id=instrument_id,
        cumulative_volume=cumulative,
        observed_at=T0 + timedelta(minutes=minutes),
        last_price=last_price,
    )


class TestNotional:

    def test_cents_times_contracts(self) -> None:
        assert notional_value(42, 500) == 210.0

    def test_custom_minor_units(self) -> None:
        assert notional_value(4200, 5, minor_units_per_major=1000) == 21.0

    def test_invalid_scale_is_zero(self) -> None:
        assert notional_value(42, 500, minor_units_per_major=0) == 0.0


class TestLargeOrders:

    def test_example_accepted_at_200(self) -> None:
        events = detect_large_orders(X, make_book("X", [("YES", 42, 500)]), min_trade_size=200)
        assert len(events) == 1
        event = events[0]
        assert event.notional_value == 210.0
        assert event.detection_kind == DetectionKind.THRESHOLD_ORDER
        assert event.side == "YES"
        assert event.display_name == "Will X happen?"
        assert event.url == X.url

    def test_example_rejected_at_211(self) -> None:
        assert detect_large_orders(X, make_book("X", [("YES", 42, 500)]), min_trade_size=211) == []

    def test_threshold_is_inclusive(self) -> None:
        assert len(detect_large_orders(X, make_book("X", [("NO", 1, 21000)]), min_trade_size=210)) == 1

    def test_one_minor_unit_below_rejected(self) -> None:
        assert detect_large_orders(X, make_book("X", [("NO", 1, 20999)]), min_trade_size=210) == []

    @pytest.mark.parametrize("price,quantity", [(0, 500), (42, 0), (-42, 500), (42, -500)])
    def test_non_positive_values_dropped(self, price, quantity) -> None:
        book = make_book("X", [("YES", price, quantity)])
        assert detect_large_orders(X, book, min_trade_size=0) == []

    def test_both_sides_checked(self) -> None:
        book = make_book("X", [("YES", 42, 500), ("NO", 58, 500), ("NO", 10, 1)])
        events = detect_large_orders(X, book, min_trade_size=200)
        assert [e.side for e in events] == ["YES", "NO"]


class TestEventDetector:

    def setup_method(self) -> None:
        self.ledger = DedupLedger(max_size=100, target_size=50)
        self.detector = EventDetector(self.ledger, min_trade_size=200, volume_spike_threshold=1000)

    def test_same_order_twice_yields_one_event(self) -> None:
        first = self.detector.detect(X, make_book("X", [("YES", 42, 500)]))
        again = self.detector.detect(
            X, make_book("X", [("YES", 42, 500)], observed_at=T0 + timedelta(seconds=30)),
        )
        assert len(first) == 1
        assert again == []
        assert len(self.ledger) == 1

    def test_duplicate_levels_in_one_snapshot_yield_one_event(self) -> None:
        events = self.detector.detect(X, make_book("X", [("YES", 42, 500), ("YES", 42, 500)]))
        assert len(events) == 1

    def test_changed_size_is_a_new_order(self) -> None:
        self.detector.detect(X, make_book("X", [("YES", 42, 500)]))
        events = self.detector.detect(X, make_book("X", [("YES", 42, 600)]))
        assert len(events) == 1
        assert events[0].notional_value == 252.0

    def test_below_threshold_not_recorded(self) -> None:
        self.detector.detect(X, make_book("X", [("YES", 1, 1)]))
        assert len(self.ledger) == 0

    def test_source_name_attached(self) -> None:
        events = self.detector.detect(X, make_book("X", [("YES", 42, 500)]), source="kalshi")
        assert events[0].source == "kalshi"

    def test_unknown_snapshot_ignored(self) -> None:
        assert self.detector.detect(X, object()) == []

    def test_first_volume_reading_only_seeds(self) -> None:
        assert self.detector.detect(X, volume("X", 10_000_000)) == []
        assert self.detector.baselines.get("X") == 10_000_000

    def test_volume_spike_fires_on_delta(self) -> None:
        self.detector.detect(X, volume("X", 5000))
        events = self.detector.detect(X, volume("X", 6500, last_price=72, minutes=1))
        assert len(events) == 1
        event = events[0]
        assert event.detection_kind == DetectionKind.VOLUME_SPIKE
        assert event.notional_value == 1500
        assert event.side == "YES"

    def test_repeated_spike_reading_not_realerted(self) -> None:
        self.detector.detect(X, volume("X", 5000))
        self.detector.detect(X, volume("X", 6500, minutes=1))
        self.detector.baselines.update("X", 5000, T0)
        assert self.detector.detect(X, volume("X", 6500, minutes=2)) == []


class TestVolumeSpike:

    def setup_method(self) -> None:
        self.baselines = VolumeBaselines()

    def spike(self, snapshot, threshold=1000, infer=True):
        return detect_volume_spike(X, snapshot, self.baselines, threshold, infer)

    def test_baseline_updated_when_no_spike(self) -> None:
        self.spike(volume("X", 5000))
        assert self.spike(volume("X", 5500)) == []
        assert self.baselines.get("X") == 5500
        # Measured from 5500, not 5000.
        assert self.spike(volume("X", 6400)) == []
        assert len(self.spike(volume("X", 7400))) == 1

    def test_volume_decrease_ignored(self) -> None:
        self.spike(volume("X", 5000))
        assert self.spike(volume("X", 1000)) == []
        assert self.baselines.get("X") == 1000

    def test_side_inferred_below_midpoint(self) -> None:
        self.spike(volume("X", 0))
        assert self.spike(volume("X", 2000, last_price=30))[0].side == "NO"

    def test_side_inference_can_be_disabled(self) -> None:
        self.spike(volume("X", 0))
        assert self.spike(volume("X", 2000, last_price=80), infer=False)[0].side == ANY_SIDE

    def test_infer_side_unknown_price(self) -> None:
        assert infer_side(None) == ANY_SIDE
        assert infer_side(50) == "YES"

    def test_retain_drops_unlisted_instruments(self) -> None:
        self.baselines.update("X", 1, T0)
        self.baselines.update("Y", 1, T0)
        assert self.baselines.retain({"X"}) == 1
        assert "X" in self.baselines
        assert "Y" not in self.baselines
