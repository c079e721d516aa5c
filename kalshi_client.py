"""
kalshi_client.py — Order-book feed over the Kalshi public trade API.

Lists open markets and fetches each market's order book.  Kalshi quotes
prices in cents and sizes in contracts, so an order's notional in dollars is
``price × count / 100``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

import config
from sources import (
    Instrument,
    OrderBookSnapshot,
    RawObservation,
    SourceAdapter,
    _safe_float,
    utcnow,
)

logger = logging.getLogger(__name__)

MARKET_URL = "https://kalshi.com/markets/{ticker}"


def _parse_level(level: Any) -> tuple[float, float]:
    """Accept both ``[price, count]`` pairs and ``{"price", "count"}`` objects."""
    if isinstance(level, dict):
        return _safe_float(level.get("price")), _safe_float(level.get("count"))
    if isinstance(level, (list, tuple)) and len(level) >= 2:
        return _safe_float(level[0]), _safe_float(level[1])
    return 0.0, 0.0


def parse_orderbook(ticker: str, payload: Any) -> list[RawObservation]:
    """Flatten a Kalshi order-book response into one observation per level."""
    if not isinstance(payload, dict):
        return []
    book = payload.get("orderbook", payload)
    if not isinstance(book, dict):
        return []

    observed_at = utcnow()
    observations: list[RawObservation] = []
    for side in ("yes", "no"):
        for level in book.get(side) or []:
            price, count = _parse_level(level)
            observations.append(RawObservation(
                instrument_id=ticker,
                side=side.upper(),
                unit_price=price,
                quantity=count,
                observed_at=observed_at,
            ))
    return observations


class KalshiClient(SourceAdapter):
    """Resting orders on open Kalshi markets."""

    name = "kalshi"

    def __init__(
        self,
        base_url: str | None = None,
        market_limit: int | None = None,
        page_pause: float | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.base_url = (base_url or config.KALSHI_API_BASE).rstrip("/")
        self.market_limit = config.KALSHI_MARKET_LIMIT if market_limit is None else market_limit
        self.page_pause = config.REQUEST_DELAY_MS / 1000 if page_pause is None else page_pause

    def list_candidate_instruments(self) -> list[Instrument]:
        """
        Fetch open markets, following Kalshi's cursor pagination until
        ``market_limit`` markets have been collected.
        """
        markets: list[dict[str, Any]] = []
        cursor = ""

        while len(markets) < self.market_limit:
            params = {"status": "open", "limit": min(config.PAGE_SIZE, self.market_limit - len(markets))}
            if cursor:
                params["cursor"] = cursor
            data = self._get_json(f"{self.base_url}/markets", params=params)
            if not isinstance(data, dict):
                break
            page = data.get("markets") or []
            markets.extend(page)

            cursor = data.get("cursor") or ""
            if not page or not cursor:
                break
            # Polite pause between pages to avoid hammering the API.
            time.sleep(self.page_pause)

        instruments = [
            Instrument(
                id=m["ticker"],
                display_name=m.get("title") or "Unknown Market",
                url=MARKET_URL.format(ticker=m["ticker"]),
            )
            for m in markets[:self.market_limit]
            if isinstance(m, dict) and m.get("ticker")
        ]
        logger.info("Fetched %d open markets from Kalshi.", len(instruments))
        return instruments

    def fetch_snapshot(self, instrument_id: str) -> OrderBookSnapshot:
        data = self._get_json(f"{self.base_url}/markets/{instrument_id}/orderbook")
        return OrderBookSnapshot(
            observations=parse_orderbook(instrument_id, data),
            minor_units_per_major=100,
        )
