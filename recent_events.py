"""
recent_events.py — Bounded, most-recent-first buffer of detected events.

Feeds the read API.  Pushing past capacity silently drops the oldest event.
Readers always get a copy, so a dashboard request in the middle of a poll
cycle never sees a half-updated container.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime

import config
from detectors import DetectedEvent


@dataclass(frozen=True)
class EventStats:
    count:                int
    total_notional:       float
    average_notional:     float
    most_recent_at:       datetime | None


class RecentEventsRing:

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity = config.RECENT_EVENTS_MAX if capacity is None else capacity
        if self.capacity <= 0:
            raise ValueError("recent events capacity must be positive")
        self._events: deque[DetectedEvent] = deque(maxlen=self.capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def push(self, event: DetectedEvent) -> None:
        with self._lock:
            self._events.appendleft(event)

    def snapshot(self) -> list[DetectedEvent]:
        """Events newest-first."""
        with self._lock:
            return list(self._events)

    def aggregate(self) -> EventStats:
        events = self.snapshot()
        total = sum(e.notional_value for e in events)
        return EventStats(
            count=len(events),
            total_notional=total,
            average_notional=total / len(events) if events else 0.0,
            most_recent_at=events[0].observed_at if events else None,
        )
