"""
polymarket_client.py — Cumulative-volume feed over the Polymarket Gamma API.

Lists the most active open markets and re-reads each market's lifetime traded
volume.  The detector compares consecutive readings to spot sudden bursts of
volume; the first reading of a market only seeds its baseline.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import requests

import config
from sources import Instrument, SourceAdapter, VolumeSnapshot, _safe_float, utcnow

logger = logging.getLogger(__name__)

MARKET_URL = "https://polymarket.com/event/{slug}"


def _parse_prices(market: dict) -> list[float]:
    raw = market.get("outcomePrices", "[]")
    try:
        prices = json.loads(raw) if isinstance(raw, str) else raw
        return [float(p) for p in prices]
    except (json.JSONDecodeError, TypeError, ValueError):
        return []


def _market_slug(market: dict) -> str:
    events = market.get("events") or []
    if events and isinstance(events[0], dict) and events[0].get("slug"):
        return events[0]["slug"]
    return market.get("slug", "")


def _last_price_cents(market: dict) -> float | None:
    """Last traded YES price in cents, falling back to the quoted YES price."""
    last = market.get("lastTradePrice")
    if last is not None:
        return _safe_float(last) * 100
    prices = _parse_prices(market)
    if prices:
        return prices[0] * 100
    return None


def parse_volume(market_id: str, market: Any) -> VolumeSnapshot:
    if not isinstance(market, dict):
        market = {}
    volume = market.get("volumeNum")
    if volume is None:
        volume = market.get("volume")
    return VolumeSnapshot(
        instrument_id=market_id,
        cumulative_volume=_safe_float(volume),
        observed_at=utcnow(),
        last_price=_last_price_cents(market),
    )


class PolymarketClient(SourceAdapter):
    """Lifetime volume of the most active open Polymarket markets."""

    name = "polymarket"
    provides_volume = True

    def __init__(
        self,
        base_url: str | None = None,
        market_limit: int | None = None,
        page_pause: float | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.base_url = (base_url or config.GAMMA_API_BASE).rstrip("/")
        self.market_limit = config.POLYMARKET_MARKET_LIMIT if market_limit is None else market_limit
        self.page_pause = config.REQUEST_DELAY_MS / 1000 if page_pause is None else page_pause

    def list_candidate_instruments(self) -> list[Instrument]:
        """
        Fetch active, non-closed markets ordered by 24-hour volume descending,
        paging with ``offset`` until ``market_limit`` markets are collected.
        """
        markets: list[dict[str, Any]] = []
        offset = 0

        while len(markets) < self.market_limit:
            limit = min(config.PAGE_SIZE, self.market_limit - len(markets))
            params = {
                "active": "true",
                "closed": "false",
                "order": "volume24hr",
                "ascending": "false",
                "limit": limit,
                "offset": offset,
            }
            page = self._get_json(f"{self.base_url}/markets", params=params)
            if not page or not isinstance(page, list):
                break  # no more results

            markets.extend(page)
            offset += limit

            # If we got fewer results than requested, we've exhausted the data.
            if len(page) < limit:
                break

            time.sleep(self.page_pause)

        instruments = [
            Instrument(
                id=str(m["id"]),
                display_name=m.get("question") or "Unknown Market",
                url=MARKET_URL.format(slug=_market_slug(m)),
            )
            for m in markets
            if isinstance(m, dict) and m.get("id") is not None
        ]
        logger.info("Fetched %d active markets from Gamma API.", len(instruments))
        return instruments

    def fetch_snapshot(self, instrument_id: str) -> VolumeSnapshot:
        market = self._get_json(f"{self.base_url}/markets/{instrument_id}")
        return parse_volume(instrument_id, market)
