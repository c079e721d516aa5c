"""
detectors.py — Turn feed snapshots into detected whale events.

Two detection kinds run against every snapshot a feed returns:

  - threshold-order:  a resting order (or a fresh fill) whose notional value,
                      ``price × quantity / minor_units_per_major``, is at least
                      ``MIN_TRADE_SIZE``.
  - volume-spike:     a market whose cumulative traded volume grew by at least
                      ``VOLUME_SPIKE_THRESHOLD`` since the previous cycle.  The
                      first reading of a market only seeds its baseline.

Every candidate carries a fingerprint.  ``EventDetector.detect`` runs the
candidates through the seen-order ledger and returns only the ones that have
never been alerted on; those are the committed events.

Zero, negative or missing prices and sizes yield a notional of zero or less
and are silently dropped.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

import config
from dedup import DedupLedger, fingerprint
from sources import Instrument, OrderBookSnapshot, VolumeSnapshot

logger = logging.getLogger(__name__)


class DetectionKind:
    THRESHOLD_ORDER = "threshold-order"
    VOLUME_SPIKE    = "volume-spike"


# Emoji badges for notification headers
SIDE_EMOJI = {
    "YES":  "📈",
    "BUY":  "📈",
    "NO":   "📉",
    "SELL": "📉",
}

# Volume spikes whose direction is unknown
ANY_SIDE = "ANY"


# ── Event dataclass ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DetectedEvent:
    """One qualifying observation.  Immutable once created."""

    # Identity
    instrument_id:   str
    display_name:    str
    side:            str          # YES | NO | BUY | SELL | ANY
    detection_kind:  str          # threshold-order | volume-spike
    fingerprint:     str

    # Size
    unit_price:      float        # minor units (cents)
    quantity:        float        # contracts/shares, or volume delta for spikes
    notional_value:  float        # major units (USD)

    observed_at:     datetime
    source:          str = ""
    url:             str = ""

    # Optional enrichment
    wallet:          str | None = None
    wallet_age_days: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["observed_at"] = self.observed_at.isoformat()
        return data


# ── Helpers ──────────────────────────────────────────────────────────────────

def notional_value(unit_price: float, quantity: float, minor_units_per_major: int = 100) -> float:
    """Price × quantity in major currency units (e.g. 42¢ × 500 → $210.00)."""
    if minor_units_per_major <= 0:
        return 0.0
    return round(unit_price * quantity / minor_units_per_major, 6)


def infer_side(last_price: float | None) -> str:
    """YES when the market trades at or above 50¢, NO below, ANY when unknown."""
    if last_price is None:
        return ANY_SIDE
    return "YES" if last_price >= 50 else "NO"


class VolumeBaselines:
    """Last cumulative volume seen per instrument (the per-instrument baseline)."""

    def __init__(self) -> None:
        self._readings: dict[str, tuple[float, datetime]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._readings)

    def __contains__(self, instrument_id: str) -> bool:
        return instrument_id in self._readings

    def get(self, instrument_id: str) -> float | None:
        reading = self._readings.get(instrument_id)
        return reading[0] if reading else None

    def update(self, instrument_id: str, volume: float, observed_at: datetime) -> float | None:
        """Store ``volume`` as the new baseline and return the previous one."""
        with self._lock:
            previous = self._readings.get(instrument_id)
            self._readings[instrument_id] = (volume, observed_at)
        return previous[0] if previous else None

    def retain(self, instrument_ids: set[str]) -> int:
        """Forget instruments that are no longer listed.  Returns how many were dropped."""
        with self._lock:
            stale = [i for i in self._readings if i not in instrument_ids]
            for instrument_id in stale:
                del self._readings[instrument_id]
        if stale:
            logger.debug("Dropped %d stale volume baselines.", len(stale))
        return len(stale)


# ── 1. Large orders ──────────────────────────────────────────────────────────

def detect_large_orders(
    instrument: Instrument,
    snapshot: OrderBookSnapshot,
    min_trade_size: float,
    source: str = "",
) -> list[DetectedEvent]:
    """Flag every order in ``snapshot`` whose notional reaches ``min_trade_size``."""
    events: list[DetectedEvent] = []
    for obs in snapshot.observations:
        value = notional_value(obs.unit_price, obs.quantity, snapshot.minor_units_per_major)
        if value <= 0 or value < min_trade_size:
            continue
        events.append(DetectedEvent(
            instrument_id=obs.instrument_id,
            display_name=obs.display_name or instrument.display_name,
            side=obs.side,
            detection_kind=DetectionKind.THRESHOLD_ORDER,
            fingerprint=fingerprint(obs.instrument_id, obs.side, obs.unit_price, obs.quantity),
            unit_price=obs.unit_price,
            quantity=obs.quantity,
            notional_value=value,
            observed_at=obs.observed_at,
            source=source,
            url=instrument.url,
            wallet=obs.wallet,
        ))
    return events


# ── 2. Volume spikes ─────────────────────────────────────────────────────────

def detect_volume_spike(
    instrument: Instrument,
    snapshot: VolumeSnapshot,
    baselines: VolumeBaselines,
    threshold: float,
    infer_spike_side: bool = True,
    source: str = "",
) -> list[DetectedEvent]:
    """
    Compare the current cumulative volume against the stored baseline.

    The baseline is always moved to the current reading, whether or not a
    spike fired, and the very first reading of an instrument never fires.
    """
    current = snapshot.cumulative_volume
    previous = baselines.update(snapshot.instrument_id, current, snapshot.observed_at)
    if previous is None:
        return []

    delta = current - previous
    if delta <= 0 or delta < threshold:
        return []

    side = infer_side(snapshot.last_price) if infer_spike_side else ANY_SIDE
    price = snapshot.last_price or 0.0
    return [DetectedEvent(
        instrument_id=snapshot.instrument_id,
        display_name=instrument.display_name,
        side=side,
        detection_kind=DetectionKind.VOLUME_SPIKE,
        # The cumulative volume pins this spike to one reading.
        fingerprint=fingerprint(snapshot.instrument_id, f"SPIKE-{side}", price, current),
        unit_price=price,
        quantity=delta,
        notional_value=round(delta, 6),
        observed_at=snapshot.observed_at,
        source=source,
        url=instrument.url,
    )]


# ── Detector ─────────────────────────────────────────────────────────────────

class EventDetector:
    """Runs both detection kinds and keeps only events the ledger has not seen."""

    def __init__(
        self,
        ledger: DedupLedger,
        min_trade_size: float | None = None,
        volume_spike_threshold: float | None = None,
        infer_spike_side: bool | None = None,
        baselines: VolumeBaselines | None = None,
    ) -> None:
        self.ledger = ledger
        self.min_trade_size = config.MIN_TRADE_SIZE if min_trade_size is None else min_trade_size
        self.volume_spike_threshold = (
            config.VOLUME_SPIKE_THRESHOLD if volume_spike_threshold is None else volume_spike_threshold
        )
        self.infer_spike_side = config.INFER_SPIKE_SIDE if infer_spike_side is None else infer_spike_side
        self.baselines = baselines if baselines is not None else VolumeBaselines()

    def candidates(self, instrument: Instrument, snapshot: Any, source: str = "") -> list[DetectedEvent]:
        if isinstance(snapshot, OrderBookSnapshot):
            return detect_large_orders(instrument, snapshot, self.min_trade_size, source)
        if isinstance(snapshot, VolumeSnapshot):
            return detect_volume_spike(
                instrument, snapshot, self.baselines,
                self.volume_spike_threshold, self.infer_spike_side, source,
            )
        logger.debug("Ignoring unsupported snapshot type %s.", type(snapshot).__name__)
        return []

    def detect(self, instrument: Instrument, snapshot: Any, source: str = "") -> list[DetectedEvent]:
        """Return the novel events in ``snapshot`` and mark them as seen."""
        return [
            event for event in self.candidates(instrument, snapshot, source)
            if self.ledger.observe(event.fingerprint)
        ]
