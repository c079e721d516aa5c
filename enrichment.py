"""
enrichment.py — Optional wallet-age lookup via the Polygonscan API.

The age of a wallet is the time since its first on-chain transaction.  Fresh
wallets placing large bets are worth a second look, so events that carry a
wallet address get the age attached before they are alerted on.  Without an
API key, or when the lookup fails, the age is simply unknown (None).
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone

import requests

import config
from sources import _safe_int, build_session

logger = logging.getLogger(__name__)


class WalletAgeLookup:

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
        cache_size: int | None = None,
    ) -> None:
        self.api_key = config.POLYGONSCAN_API_KEY if api_key is None else api_key
        self.base_url = base_url or config.POLYGONSCAN_API_BASE
        self.session = session or build_session()
        self.timeout = config.REQUEST_TIMEOUT if timeout is None else timeout
        self.cache_size = config.WALLET_CACHE_SIZE if cache_size is None else cache_size
        # Least recently used wallets are evicted first.
        self._first_seen: OrderedDict[str, datetime] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def first_transaction_at(self, wallet: str) -> datetime | None:
        """Timestamp of the wallet's oldest transaction, cached once known."""
        wallet = wallet.lower()
        if wallet in self._first_seen:
            self._first_seen.move_to_end(wallet)
            return self._first_seen[wallet]
        if not self.enabled:
            return None

        params = {
            "module": "account",
            "action": "txlist",
            "address": wallet,
            "startblock": 0,
            "endblock": 99999999,
            "page": 1,
            "offset": 1,   # only the first tx
            "sort": "asc",
            "apikey": self.api_key,
        }
        try:
            resp = self.session.get(self.base_url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Polygonscan lookup failed for %s…: %s", wallet[:10], exc)
            return None

        if not isinstance(data, dict) or data.get("status") != "1":
            return None
        result = data.get("result")
        if not isinstance(result, list) or not result or not isinstance(result[0], dict):
            return None
        timestamp = _safe_int(result[0].get("timeStamp"))
        if timestamp <= 0:
            return None

        try:
            first_seen = datetime.fromtimestamp(timestamp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Polygonscan returned an unusable timestamp for %s…: %r", wallet[:10], timestamp)
            return None

        self._remember(wallet, first_seen)
        return first_seen

    def _remember(self, wallet: str, first_seen: datetime) -> None:
        self._first_seen[wallet] = first_seen
        while len(self._first_seen) > self.cache_size:
            self._first_seen.popitem(last=False)

    def age_days(self, wallet: str, now: datetime | None = None) -> float | None:
        first_seen = self.first_transaction_at(wallet)
        if first_seen is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - first_seen).total_seconds() / 86400)
