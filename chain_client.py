"""
chain_client.py — Log-based feed: CTF Exchange fills on Polygon.

Polls ``eth_getLogs`` for ``OrderFilled`` events emitted by the Polymarket CTF
Exchange and turns each fill into an observation (token, side, price, size,
maker wallet).

The feed keeps a block cursor.  The very first fetch only records the current
chain head and returns nothing, so a restart never replays a flood of
historical fills; only blocks mined after that first fetch are scanned.  The
cursor advances only after a successful ``eth_getLogs``, so a failed fetch is
retried from the same block next cycle.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

import config
from sources import (
    Instrument,
    OrderBookSnapshot,
    RawObservation,
    SourceAdapter,
    SourceError,
    _safe_int,
    utcnow,
)

logger = logging.getLogger(__name__)

# USDC.e and outcome tokens both use 6 decimals.
TOKEN_DECIMALS = 1_000_000
EXPLORER_ADDRESS_URL = "https://polygonscan.com/address/{address}"

_WORD = 64  # hex chars per ABI word


def _words(data: str) -> list[str]:
    data_hex = data[2:] if data.startswith("0x") else data
    return [data_hex[i:i + _WORD] for i in range(0, len(data_hex) - _WORD + 1, _WORD)]


def parse_order_filled(log: dict[str, Any]) -> RawObservation | None:
    """
    Decode one OrderFilled log.

    OrderFilled(bytes32 indexed orderHash, address indexed maker,
                address taker, uint256 makerAssetId, uint256 takerAssetId,
                uint256 makerAmountFilled, uint256 takerAmountFilled, uint256 fee)

    Deployments that index ``taker`` carry five data words instead of six;
    both layouts are accepted.  Asset id 0 is USDC: a maker paying USDC is
    buying outcome tokens.  Returns None for logs that cannot be decoded.
    """
    topics = log.get("topics") or []
    words = _words(log.get("data") or "")
    if len(topics) < 3:
        return None
    if len(words) >= 6:
        words = words[1:6]
    elif len(words) == 5:
        words = words[:5]
    else:
        return None

    try:
        maker_asset, taker_asset, maker_amount, taker_amount, _fee = (int(w, 16) for w in words)
    except ValueError:
        return None

    if maker_asset == 0:
        side, token_id, usdc, shares = "BUY", taker_asset, maker_amount, taker_amount
    else:
        side, token_id, usdc, shares = "SELL", maker_asset, taker_amount, maker_amount

    if shares <= 0:
        return None

    token = str(token_id)
    return RawObservation(
        instrument_id=token,
        side=side,
        unit_price=usdc * 100 / shares,
        quantity=shares / TOKEN_DECIMALS,
        observed_at=utcnow(),
        display_name=f"Polymarket token {token[:10]}…",
        wallet="0x" + topics[2][-40:],
    )


class ChainClient(SourceAdapter):
    """OrderFilled logs of one exchange contract, scanned block range by block range."""

    name = "chain"

    def __init__(
        self,
        rpc_url: str | None = None,
        exchange_address: str | None = None,
        topic: str | None = None,
        max_block_range: int | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(session=session, timeout=timeout)
        self.rpc_url = rpc_url or config.POLYGON_RPC_URL
        self.exchange_address = exchange_address or config.CTF_EXCHANGE_ADDRESS
        self.topic = topic or config.ORDER_FILLED_TOPIC
        self.max_block_range = config.MAX_BLOCK_RANGE if max_block_range is None else max_block_range
        self.last_block: int | None = None
        self._request_id = 0

    @property
    def primed(self) -> bool:
        return self.last_block is not None

    def _rpc(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            resp = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise SourceError(f"chain: {method} failed: {exc}") from exc
        if not isinstance(data, dict) or "error" in data:
            error = data.get("error") if isinstance(data, dict) else data
            raise SourceError(f"chain: {method} returned error: {error}")
        return data.get("result")

    def block_number(self) -> int:
        """Current chain head.  Raises SourceError instead of guessing a height."""
        result = self._rpc("eth_blockNumber", [])
        head = _safe_int(result, default=-1) if isinstance(result, (str, int)) else -1
        if isinstance(result, bool) or head <= 0:
            raise SourceError(f"chain: eth_blockNumber returned unusable head {result!r}")
        return head

    def get_logs(self, from_block: int, to_block: int) -> list[dict[str, Any]]:
        result = self._rpc("eth_getLogs", [{
            "address": self.exchange_address,
            "topics": [self.topic],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }])
        return result if isinstance(result, list) else []

    def list_candidate_instruments(self) -> list[Instrument]:
        return [Instrument(
            id=self.exchange_address,
            display_name="Polymarket CTF Exchange",
            url=EXPLORER_ADDRESS_URL.format(address=self.exchange_address),
        )]

    def fetch_snapshot(self, instrument_id: str) -> OrderBookSnapshot:
        head = self.block_number()

        if self.last_block is None:
            self.last_block = head
            logger.info("Chain feed starting at block %d; earlier fills are ignored.", head)
            return OrderBookSnapshot(observations=[])

        if head <= self.last_block:
            return OrderBookSnapshot(observations=[])

        from_block = self.last_block + 1
        to_block = min(head, from_block + self.max_block_range - 1)
        logs = self.get_logs(from_block, to_block)
        self.last_block = to_block

        observations = []
        for log in logs:
            obs = parse_order_filled(log) if isinstance(log, dict) else None
            if obs is not None:
                observations.append(obs)
        logger.debug(
            "Scanned blocks %d-%d: %d logs, %d fills.",
            from_block, to_block, len(logs), len(observations),
        )
        return OrderBookSnapshot(observations=observations, minor_units_per_major=100)
