"""
sources.py — Shared types and plumbing for upstream market-data feeds.

Every feed implements the same two calls:

  list_candidate_instruments()   → which markets to look at this cycle
  fetch_snapshot(instrument_id)  → what those markets look like right now

Both raise ``SourceError`` on a transient upstream failure (network error,
timeout, 5xx, unparseable body).  The scheduler skips the failed unit for this
cycle and tries again on the next one.  Missing or odd fields inside an
otherwise valid response are *not* errors: they default to zero.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

import config

logger = logging.getLogger(__name__)


class SourceError(Exception):
    """A transient upstream failure; the unit of work is retried next cycle."""


def build_session(max_retries: int | None = None) -> requests.Session:
    """Return a requests Session mounted with the configured retry policy."""
    session = requests.Session()
    retries = Retry(
        total=config.MAX_RETRIES if max_retries is None else max_retries,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "POST"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"Accept": "application/json"})
    return session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (ValueError, TypeError):
        return default


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return int(value, 16)
        return int(value) if value is not None else default
    except (ValueError, TypeError):
        return default


# ── Data model ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Instrument:
    """A tradable market as returned by a feed's listing call."""

    id:           str
    display_name: str
    url:          str = ""
    metadata:     dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RawObservation:
    """
    One order (or fill) reduced to the fields detection needs.

    ``unit_price`` is in minor currency units (cents for the prediction
    markets polled here).  ``display_name`` and ``wallet`` are only filled by
    feeds whose observations span several instruments.
    """

    instrument_id: str
    side:          str
    unit_price:    float
    quantity:      float
    observed_at:   datetime
    display_name:  str = ""
    wallet:        str | None = None


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Resting orders (or fresh fills) for threshold-order detection."""

    observations:          list[RawObservation]
    minor_units_per_major: int = 100


@dataclass(frozen=True)
class VolumeSnapshot:
    """A market's cumulative traded volume, for volume-spike detection."""

    instrument_id:     str
    cumulative_volume: float
    observed_at:       datetime
    last_price:        float | None = None   # minor units


Snapshot = Union[OrderBookSnapshot, VolumeSnapshot]


# ── Feed contract ────────────────────────────────────────────────────────────

class SourceAdapter(ABC):
    """
    Base class for upstream feeds.

    Subclasses set ``name`` (used in logs and on detected events) and
    ``provides_volume`` (True when snapshots are ``VolumeSnapshot`` and the
    detector should keep per-instrument volume baselines for the feed).
    """

    name: str = "source"
    provides_volume: bool = False

    def __init__(self, session: requests.Session | None = None, timeout: float | None = None):
        self.session = session or build_session()
        self.timeout = config.REQUEST_TIMEOUT if timeout is None else timeout

    @abstractmethod
    def list_candidate_instruments(self) -> list[Instrument]:
        """Return the instruments to check this cycle. Raises SourceError."""

    @abstractmethod
    def fetch_snapshot(self, instrument_id: str) -> Snapshot:
        """Return the current snapshot for one instrument. Raises SourceError."""

    def _get_json(self, url: str, params: dict | None = None) -> Any:
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise SourceError(f"{self.name}: GET {url} failed: {exc}") from exc

    def close(self) -> None:
        self.session.close()
