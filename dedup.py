"""
dedup.py — Order fingerprints and the bounded seen-fingerprint ledger.

A fingerprint identifies an order the way an outside observer would: the
instrument it rests on, its side, its price and its size.  The observation
time is deliberately *not* part of the key, so the same resting order seen on
two consecutive polls maps to the same fingerprint and is alerted only once.

The ledger remembers every fingerprint that has been alerted on.  It is soft-
bounded: once it holds more than ``max_size`` entries, ``compact()`` keeps only
the ``target_size`` most recently inserted ones.  An evicted order that is
still resting will alert again; that rare re-alert is the price of bounded
memory.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any

import config

logger = logging.getLogger(__name__)

SEPARATOR = "|"


def _escape(text: str) -> str:
    """Keep the separator out of the first three key parts."""
    return text.replace("%", "%25").replace(SEPARATOR, "%7C")


def _canonical_number(value: Any) -> str:
    """Render 42, 42.0 and "42" identically so equal prices share a key."""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return _escape(str(value))
    if number.is_integer():
        return str(int(number))
    return repr(number)


def fingerprint(instrument_id: str, side: str, unit_price: Any, quantity: Any) -> str:
    """
    Build the deduplication key for one observed order.

    Layout is ``side|price|quantity|instrument_id``.  Side, price and quantity
    are escaped so they never contain the separator; the free-form instrument
    id goes last and the key splits back into its four parts unambiguously:
    two different orders can never share a fingerprint.
    """
    side_key = _escape(str(side).strip().upper())
    return SEPARATOR.join((
        side_key,
        _canonical_number(unit_price),
        _canonical_number(quantity),
        str(instrument_id),
    ))


class DedupLedger:
    """Insertion-ordered set of fingerprints that have already been alerted on."""

    def __init__(
        self,
        max_size: int | None = None,
        target_size: int | None = None,
    ) -> None:
        self.max_size = config.LEDGER_MAX_SIZE if max_size is None else max_size
        self.target_size = config.LEDGER_TARGET_SIZE if target_size is None else target_size
        if not 0 <= self.target_size < self.max_size:
            raise ValueError(
                f"ledger target size ({self.target_size}) must be below "
                f"max size ({self.max_size})"
            )
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, fp: str) -> bool:
        return fp in self._seen

    def is_novel(self, fp: str) -> bool:
        return fp not in self._seen

    def record_seen(self, fp: str) -> None:
        """
        Insert ``fp``.  Recording a fingerprint that is already present moves
        it to the most-recent end, so orders that keep showing up outlive
        stale ones at compaction time.
        """
        with self._lock:
            if fp in self._seen:
                self._seen.move_to_end(fp)
            else:
                self._seen[fp] = None

    def observe(self, fp: str) -> bool:
        """Record ``fp`` and report whether it was new."""
        novel = self.is_novel(fp)
        self.record_seen(fp)
        return novel

    def needs_compaction(self) -> bool:
        return len(self._seen) > self.max_size

    def compact(self) -> int:
        """
        Drop all but the ``target_size`` most recent fingerprints when the
        ledger has grown past ``max_size``.  Returns how many were evicted.
        """
        with self._lock:
            if len(self._seen) <= self.max_size:
                return 0
            evicted = len(self._seen) - self.target_size
            for _ in range(evicted):
                self._seen.popitem(last=False)
        logger.info("Compacted seen-order ledger: evicted %d, kept %d.", evicted, self.target_size)
        return evicted

    def snapshot(self) -> list[str]:
        """Fingerprints oldest-first."""
        with self._lock:
            return list(self._seen)
