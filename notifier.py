"""
notifier.py — Format detected events and deliver them, best effort.

Delivery never blocks or undoes detection: a failed send is logged and
reported as ``NotifyOutcome.FAILED``, and the event stays "seen" either way.
Pacing between consecutive sends is the scheduler's job, not ours.

Message format (Discord embed; Telegram gets the same content as HTML):

  🐋 WHALE ALERT - LARGE ORDER
  @everyone 🚨 LARGE ORDER detected! $21,000.00 on YES!
  ────────────────────────────────
  📊 Market:      Will X happen by March?
  📈 Side:        YES
  💰 Order Size:  $21,000.00
  📈 Price:       42¢
  🔗 Link:        → View Market & Trade ←
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

import requests
import telegram
from telegram.constants import ParseMode

import config
from detectors import SIDE_EMOJI, DetectedEvent, DetectionKind
from sources import build_session

logger = logging.getLogger(__name__)


class NotifyOutcome:
    SENT                = "sent"
    SKIPPED_NO_ENDPOINT = "skipped-no-endpoint"
    FAILED              = "failed"


# Discord embed colours
COLOR_UP      = 3066993    # green
COLOR_DOWN    = 15158332   # red
COLOR_NEUTRAL = 3447003    # blue

KIND_LABELS = {
    DetectionKind.THRESHOLD_ORDER: ("LARGE ORDER", "💰 Order Size"),
    DetectionKind.VOLUME_SPIKE:    ("VOLUME SPIKE", "💰 Volume Added"),
}


@dataclass
class NotificationMessage:
    title:       str
    description: str
    color:       int
    url:         str = ""
    footer:      str = ""
    timestamp:   str = ""
    fields:      list[tuple[str, str, bool]] = field(default_factory=list)  # name, value, inline


# ── Formatting ────────────────────────────────────────────────────────────────

def _usd(amount: float) -> str:
    return f"${amount:,.2f}"


def _price(unit_price: float) -> str:
    return f"{unit_price:.0f}¢" if float(unit_price).is_integer() else f"{unit_price:.1f}¢"


def _trunc(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[:max_len - 1] + "…"


def _color_for(side: str) -> int:
    emoji = SIDE_EMOJI.get(side)
    if emoji == "📈":
        return COLOR_UP
    if emoji == "📉":
        return COLOR_DOWN
    return COLOR_NEUTRAL


def format_message(event: DetectedEvent) -> NotificationMessage:
    """Build the structured alert for one event."""
    label, size_name = KIND_LABELS.get(event.detection_kind, ("EVENT", "💰 Size"))
    amount = _usd(event.notional_value)
    side_emoji = SIDE_EMOJI.get(event.side, "🔹")

    fields = [
        ("📊 Market", _trunc(event.display_name, 250), False),
        (f"{side_emoji} Side", event.side, True),
        (size_name, amount, True),
        ("📈 Price", _price(event.unit_price), True),
    ]
    if event.wallet:
        fields.append(("👛 Wallet", f"{event.wallet[:10]}…{event.wallet[-6:]}", True))
    if event.wallet_age_days is not None:
        fields.append(("🕒 Wallet Age", f"{event.wallet_age_days:.1f} days", True))
    if event.url:
        fields.append(("🔗 Link", f"[→ View Market & Trade ←]({event.url})", False))

    source = event.source.capitalize() if event.source else "Whale Watch"
    return NotificationMessage(
        title=f"🐋 {source.upper()} WHALE ALERT - {label}",
        description=f"@everyone 🚨 **{label}** detected! {amount} on {event.side}!",
        color=_color_for(event.side),
        url=event.url,
        footer=f"{source} Whale Watch | Live Order Monitoring",
        timestamp=event.observed_at.astimezone(timezone.utc).isoformat(),
        fields=fields,
    )


# ── Sinks ─────────────────────────────────────────────────────────────────────

class DiscordWebhookSink:
    """Posts an embed to a Discord-compatible webhook."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        username: str | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = url
        self.username = username or config.NOTIFY_USERNAME
        self.session = session or build_session(max_retries=0)
        self.timeout = config.NOTIFY_TIMEOUT if timeout is None else timeout

    def payload(self, message: NotificationMessage) -> dict:
        embed = {
            "title": message.title,
            "description": message.description,
            "color": message.color,
            "fields": [
                {"name": name, "value": value, "inline": inline}
                for name, value, inline in message.fields
            ],
            "footer": {"text": message.footer},
            "timestamp": message.timestamp or datetime.now(timezone.utc).isoformat(),
        }
        if message.url:
            embed["url"] = message.url
        return {"embeds": [embed], "username": self.username}

    def send(self, message: NotificationMessage) -> bool:
        try:
            resp = self.session.post(self.url, json=self.payload(message), timeout=self.timeout)
            resp.raise_for_status()
            return True
        except requests.RequestException as exc:
            logger.error("Webhook send failed: %s", exc)
            return False


def _esc(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def format_html(message: NotificationMessage) -> str:
    """Render a message as Telegram HTML."""
    parts = [f"<b>{_esc(message.title)}</b>", _esc(message.description.replace("**", "")), "─" * 32]
    for name, value, _inline in message.fields:
        if name.endswith("Link"):
            continue
        parts.append(f"{_esc(name)}: <b>{_esc(value)}</b>")
    if message.url:
        parts += ["", f'🔗 <a href="{message.url}">View Market &amp; Trade</a>']
    return "\n".join(parts)


def _run(coro):
    """Run a coroutine in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TelegramSink:
    """
    Sends the alert as an HTML message to one Telegram chat.

    Every send runs on its own event loop, so the Bot (and its HTTP client)
    is opened and shut down inside that loop.
    """

    name = "telegram"

    def __init__(self, token: str, chat_id: str) -> None:
        self.token = token
        self.chat_id = chat_id

    async def _send_async(self, text: str) -> bool:
        try:
            async with telegram.Bot(token=self.token) as bot:
                await bot.send_message(
                    chat_id=self.chat_id,
                    text=text,
                    parse_mode=ParseMode.HTML,
                    disable_web_page_preview=True,
                )
            return True
        except telegram.error.TelegramError as exc:
            logger.error("Telegram send failed: %s", exc)
            return False

    def send(self, message: NotificationMessage) -> bool:
        return _run(self._send_async(format_html(message)))


class ConsoleSink:
    """Prints alerts to stdout (used by --dry-run)."""

    name = "console"

    def send(self, message: NotificationMessage) -> bool:
        print("\n" + "═" * 65)
        print(f"  {message.title}")
        print(f"  {message.description.replace('**', '')}")
        print("  " + "─" * 61)
        for name, value, _inline in message.fields:
            print(f"  {name}: {value}")
        print("═" * 65)
        return True


# ── Notifier ──────────────────────────────────────────────────────────────────

class Notifier:
    """Fans one event out to every configured sink.  Never raises."""

    def __init__(self, sinks: list | None = None) -> None:
        self.sinks = list(sinks or [])
        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self.sinks)

    def notify(self, event: DetectedEvent) -> str:
        if not self.sinks:
            return NotifyOutcome.SKIPPED_NO_ENDPOINT

        try:
            message = format_message(event)
        except Exception:
            logger.exception("Could not format alert for %s.", event.instrument_id)
            self.failed += 1
            return NotifyOutcome.FAILED

        delivered = False
        for sink in self.sinks:
            try:
                ok = sink.send(message)
            except Exception:
                logger.exception("Notification sink %s raised.", getattr(sink, "name", sink))
                ok = False
            delivered = delivered or ok

        if delivered:
            self.sent += 1
            logger.info(
                "  ✓ Alert sent: %s… - %s %s",
                event.display_name[:50], _usd(event.notional_value), event.side,
            )
            return NotifyOutcome.SENT
        self.failed += 1
        return NotifyOutcome.FAILED


def build_notifier(dry_run: bool = False) -> Notifier:
    """Wire the sinks enabled by configuration."""
    if dry_run:
        return Notifier([ConsoleSink()])
    sinks: list = []
    if config.NOTIFY_WEBHOOK_URL:
        sinks.append(DiscordWebhookSink(config.NOTIFY_WEBHOOK_URL))
    if config.TELEGRAM_BOT_TOKEN and config.TELEGRAM_CHAT_ID:
        sinks.append(TelegramSink(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_CHAT_ID))
    return Notifier(sinks)
