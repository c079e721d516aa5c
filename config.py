"""
config.py — Centralized configuration for the Whale Watch tracker.

All settings are loaded from environment variables (a local ``.env`` file is
read first, without overriding variables already set in the environment).
Defaults mirror the public-API setup the tracker was built for; tune the
thresholds to the size of order you actually care about.
"""

import os

from dotenv import load_dotenv

load_dotenv(override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# ── Upstream API Base URLs ───────────────────────────────────────────────────
KALSHI_API_BASE: str = os.environ.get(
    "KALSHI_API_BASE", "https://api.elections.kalshi.com/trade-api/v2"
)
GAMMA_API_BASE: str = os.environ.get("GAMMA_API_BASE", "https://gamma-api.polymarket.com")
POLYGONSCAN_API_BASE: str = os.environ.get(
    "POLYGONSCAN_API_BASE", "https://api.polygonscan.com/api"
)
POLYGON_RPC_URL: str = os.environ.get("POLYGON_RPC_URL", "https://polygon-rpc.com")

# ── Feeds ────────────────────────────────────────────────────────────────────
# Comma-separated list of upstream feeds to poll each cycle.
#   kalshi      resting orders in Kalshi order books
#   polymarket  cumulative traded volume of Polymarket markets
#   chain       OrderFilled logs from the Polymarket CTF exchange on Polygon
FEEDS: list[str] = [
    f.strip().lower() for f in os.environ.get("FEEDS", "kalshi").split(",") if f.strip()
]

# Instruments listed per feed per cycle.
KALSHI_MARKET_LIMIT: int = int(os.environ.get("KALSHI_MARKET_LIMIT", "100"))
POLYMARKET_MARKET_LIMIT: int = int(os.environ.get("POLYMARKET_MARKET_LIMIT", "100"))
PAGE_SIZE: int = 100

# ── Chain Log Source ─────────────────────────────────────────────────────────
CTF_EXCHANGE_ADDRESS: str = os.environ.get(
    "CTF_EXCHANGE_ADDRESS", "0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E"
)
# keccak256("OrderFilled(bytes32,address,address,uint256,uint256,uint256,uint256,uint256)")
ORDER_FILLED_TOPIC: str = os.environ.get(
    "ORDER_FILLED_TOPIC",
    "0xd0a08e8c493f9c94f29311604c9de1b4e8c8d4c06bd0c789af57f2d65bfec0f6",
)
# Maximum number of blocks requested in a single eth_getLogs call.
MAX_BLOCK_RANGE: int = int(os.environ.get("MAX_BLOCK_RANGE", "2000"))

# ── Detection Thresholds ─────────────────────────────────────────────────────

# 1. Large resting orders / fills
#    Alert when price × quantity (in USD) is at least this much.
MIN_TRADE_SIZE: float = float(os.environ.get("MIN_TRADE_SIZE", "15000"))

# 2. Volume Spike
#    Alert when a market's cumulative volume grew by at least this many USD
#    since the previous cycle.
VOLUME_SPIKE_THRESHOLD: float = float(os.environ.get("VOLUME_SPIKE_THRESHOLD", "50000"))
#    Label volume spikes YES/NO from the last traded price (above 50¢ → YES).
INFER_SPIKE_SIDE: bool = _env_bool("INFER_SPIKE_SIDE", "true")

# ── Polling & Pacing ─────────────────────────────────────────────────────────
# Delay (ms) between the end of one cycle and the start of the next.
POLL_INTERVAL_MS: int = int(os.environ.get("POLL_INTERVAL_MS", "30000"))
# Minimum gap (ms) between two consecutive upstream requests.
REQUEST_DELAY_MS: int = int(os.environ.get("REQUEST_DELAY_MS", "200"))
# Minimum gap (ms) between two consecutive notification sends.
NOTIFY_DELAY_MS: int = int(os.environ.get("NOTIFY_DELAY_MS", "500"))

# ── Bounded Retention ────────────────────────────────────────────────────────
# Seen-fingerprint ledger: compact down to LEDGER_TARGET_SIZE once it grows
# past LEDGER_MAX_SIZE.
LEDGER_MAX_SIZE: int = int(os.environ.get("LEDGER_MAX_SIZE", "5000"))
LEDGER_TARGET_SIZE: int = int(os.environ.get("LEDGER_TARGET_SIZE", "2500"))
# Recent events exposed on the read API.
RECENT_EVENTS_MAX: int = int(os.environ.get("RECENT_EVENTS_MAX", "100"))

# ── Notifications ────────────────────────────────────────────────────────────
# Discord-compatible webhook. Empty disables webhook alerts silently.
NOTIFY_WEBHOOK_URL: str = os.environ.get(
    "NOTIFY_WEBHOOK_URL", os.environ.get("DISCORD_WEBHOOK", "")
)
NOTIFY_USERNAME: str = os.environ.get("NOTIFY_USERNAME", "Whale Watch")
TELEGRAM_BOT_TOKEN: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_CHAT_ID: str = os.environ.get("TELEGRAM_CHAT_ID", "")

# ── Enrichment ───────────────────────────────────────────────────────────────
# Optional Polygonscan key used to look up how old a trading wallet is.
POLYGONSCAN_API_KEY: str = os.environ.get("POLYGONSCAN_API_KEY", "")
# Wallet first-seen timestamps kept in memory.
WALLET_CACHE_SIZE: int = int(os.environ.get("WALLET_CACHE_SIZE", "1000"))

# ── Read API ─────────────────────────────────────────────────────────────────
HOST: str = os.environ.get("HOST", "0.0.0.0")
PORT: int = int(os.environ.get("PORT", "3000"))

# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

# ── HTTP Settings ────────────────────────────────────────────────────────────
REQUEST_TIMEOUT: int = int(os.environ.get("REQUEST_TIMEOUT", "10"))
NOTIFY_TIMEOUT: int = int(os.environ.get("NOTIFY_TIMEOUT", "10"))
# Inline retries per request. Transient failures are normally left for the
# next cycle, so this stays at 0 unless an upstream needs it.
MAX_RETRIES: int = int(os.environ.get("MAX_RETRIES", "0"))
