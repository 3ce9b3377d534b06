"""Output formatting for chainwatch.

Two audiences:
- CLI results (events list, whales top, config show) → json, jsonl, or a
  Rich table. All functions return strings; the caller writes to stdout.
- Alert text for notification sinks → Telegram-flavoured HTML, one message
  per event or one summary per batch.
"""

from __future__ import annotations

import html
import io
import json
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from chainwatch.models import (
    DomainEvent,
    LargeTrade,
    LargeTransfer,
    Migration,
    MintCreated,
    OrderWall,
    short_address,
)

VALID_FORMATS = {"json", "jsonl", "table"}

SOLSCAN_URL = "https://solscan.io"
TELEGRAM_MAX_CHARS = 4096
DEFAULT_MEGA_WHALE_USD = Decimal(500_000)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, set and tuple values."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


def format_output(data: Any, fmt: str) -> str:
    """
    Format data for stdout output.

    Args:
        data: Result dict, list, or any JSON-serialisable value.
        fmt: "json" | "jsonl" | "table"

    Raises:
        ValueError: If fmt is not a recognised format.
    """
    fmt = fmt.lower()
    if fmt not in VALID_FORMATS:
        raise ValueError(f"Unknown format {fmt!r}. Valid: {sorted(VALID_FORMATS)}")

    if fmt == "jsonl":
        return format_jsonl(data)
    if fmt == "table":
        return format_table(data)
    return format_json(data)


# ── JSON ─────────────────────────────────────────────────────────────────────


def format_json(data: Any) -> str:
    """Pretty-print data as JSON (2-space indent)."""
    return json.dumps(data, indent=2, cls=DecimalEncoder, ensure_ascii=False)


def format_jsonl(data: Any) -> str:
    """One JSON object per line; lists under "events"/"whales" are unrolled."""
    if isinstance(data, dict):
        for key in ("events", "whales"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if isinstance(data, list):
        return "\n".join(json.dumps(item, cls=DecimalEncoder) for item in data)
    return json.dumps(data, cls=DecimalEncoder)


# ── Table ────────────────────────────────────────────────────────────────────


def format_table(data: Any) -> str:
    """
    Format as a Rich terminal table.

    Handles event lists (dict with 'events'), whale leaderboards (dict with
    'whales'); anything else is printed as highlighted JSON.
    """
    buf = io.StringIO()
    console = Console(file=buf, highlight=False, markup=True, width=120)

    if isinstance(data, dict) and "events" in data:
        _render_events_table(console, data)
    elif isinstance(data, dict) and "whales" in data:
        _render_whales_table(console, data)
    else:
        console.print_json(json.dumps(data, cls=DecimalEncoder))

    return buf.getvalue()


def _kind_color(kind: str) -> str:
    return {
        "mint_created": "green",
        "migration": "magenta",
        "large_transfer": "yellow",
        "large_trade": "cyan",
        "order_wall": "blue",
    }.get(kind, "dim")


def _event_summary(event: dict[str, Any]) -> str:
    kind = event.get("kind")
    if kind == "mint_created":
        return f"{event.get('name', '')} (${event.get('symbol', '')}) {short_address(event.get('mint', ''))}"
    if kind == "migration":
        return f"{event.get('destination', '')} {short_address(event.get('token_address', ''))}"
    if kind == "large_transfer":
        sol = Decimal(event.get("lamports", 0)) / Decimal(1_000_000_000)
        return f"{sol:,.4f} SOL {short_address(event.get('source', ''))} → {short_address(event.get('destination', ''))}"
    if kind == "large_trade":
        side = "BUY" if event.get("side") == "B" else "SELL"
        return f"{side} {event.get('coin', '')} ${float(event.get('value', 0)):,.0f}"
    if kind == "order_wall":
        return f"{event.get('coin', '')} {len(event.get('levels', []))} level(s)"
    return ""


def _render_events_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Recent Events", show_header=True, header_style="bold blue")
    table.add_column("ID", justify="right")
    table.add_column("Kind")
    table.add_column("Summary")
    table.add_column("Signature / ID", style="cyan", no_wrap=True)
    table.add_column("Recorded")

    for row in data.get("events", []):
        event = row.get("event", {})
        kind = row.get("kind", event.get("kind", ""))
        table.add_row(
            str(row.get("id", "")),
            Text(kind, style=_kind_color(kind)),
            _event_summary(event),
            short_address(row.get("ref", "")) if row.get("ref") else "—",
            str(row.get("recorded_at", ""))[:19],
        )

    console.print(table)
    console.print(f"Total: [bold]{data.get('count', len(data.get('events', [])))}[/bold] events")


def _render_whales_table(console: Console, data: dict[str, Any]) -> None:
    table = Table(title="Top Whales", show_header=True, header_style="bold blue")
    table.add_column("#", justify="right")
    table.add_column("Address", style="cyan", no_wrap=True)
    table.add_column("Volume USD", justify="right")
    table.add_column("Trades", justify="right")
    table.add_column("Coins")
    table.add_column("Last Seen")

    for rank, w in enumerate(data.get("whales", []), start=1):
        table.add_row(
            str(rank),
            short_address(w.get("address", ""), 8, 6),
            f"${float(w.get('total_volume', 0)):,.0f}",
            str(w.get("trade_count", 0)),
            ", ".join(w.get("symbols") or []) or "—",
            str(w.get("last_seen") or "")[:19],
        )

    console.print(table)


# ── Alert text ───────────────────────────────────────────────────────────────


def _money(value: Decimal | float) -> str:
    return f"${float(value):,.2f}"


def render_alert(event: DomainEvent, mega_whale_usd: Decimal = DEFAULT_MEGA_WHALE_USD) -> str:
    """Render one event as a Telegram HTML message."""
    esc = html.escape

    if isinstance(event, MintCreated):
        return (
            "🎉 <b>NEW PUMP.FUN TOKEN</b>\n\n"
            f"📛 Name: {esc(event.name)}\n"
            f"🏷️ Symbol: ${esc(event.symbol)}\n"
            f"🪙 Mint: <code>{event.mint}</code>\n"
            f"👤 Creator: <code>{event.creator}</code>\n"
            f"📊 Bonding curve: <code>{event.bonding_curve}</code>\n"
            f"🔗 Metadata: {esc(event.uri)}\n"
            f"🎰 Slot: {event.slot}\n\n"
            f'<a href="{SOLSCAN_URL}/token/{event.mint}">Token</a> · '
            f'<a href="{SOLSCAN_URL}/tx/{event.signature}">TX</a> · '
            f'<a href="{SOLSCAN_URL}/account/{event.creator}">Creator</a>'
        )

    if isinstance(event, Migration):
        lines = [
            f"🚀 <b>MIGRATION → {event.destination.upper()}</b>\n",
            f"🪙 Token: <code>{event.token_address}</code>",
        ]
        if event.pool_address:
            lines.append(f"🏊 Pool: <code>{event.pool_address}</code>")
        if event.lp_mint:
            lines.append(f"💧 LP mint: <code>{event.lp_mint}</code>")
        if event.quote_mint:
            lines.append(f"💱 Quote: <code>{event.quote_mint}</code>")
        if event.bonding_curve:
            lines.append(f"📊 Bonding curve: <code>{event.bonding_curve}</code>")
        lines.append(f"🎰 Slot: {event.slot}\n")
        lines.append(
            f'<a href="{SOLSCAN_URL}/token/{event.token_address}">Token</a> · '
            f'<a href="{SOLSCAN_URL}/tx/{event.signature}">TX</a>'
        )
        return "\n".join(lines)

    if isinstance(event, LargeTransfer):
        return (
            "💸 <b>HIGH VALUE TRANSFER</b>\n\n"
            f"💰 Amount: {event.sol:,.4f} SOL\n"
            f"📤 From: <code>{event.source}</code>\n"
            f"📥 To: <code>{event.destination}</code>\n"
            f"🎰 Slot: {event.slot}\n\n"
            f'<a href="{SOLSCAN_URL}/tx/{event.signature}">TX</a> · '
            f'<a href="{SOLSCAN_URL}/account/{event.source}">From</a> · '
            f'<a href="{SOLSCAN_URL}/account/{event.destination}">To</a>'
        )

    if isinstance(event, LargeTrade):
        emoji, side = ("🟢", "BUY") if event.is_buy else ("🔴", "SELL")
        lines = [
            "🐋 <b>WHALE TRADE ALERT</b> 🐋\n",
            f"{emoji} {side} {esc(event.coin)}\n",
            f"💰 Size: {event.size:,.2f} contracts",
            f"💵 Price: {_money(event.price)}",
            f"📊 Value: {_money(event.value)}",
            f"👤 Trader: {short_address(event.user)}",
        ]
        if event.user != "Unknown":
            lines.append(f"🔗 Address: <code>{event.user}</code>")
        if event.tx_hash:
            lines.append(f"📝 TX Hash: <code>{event.tx_hash}</code>")
        if event.trade_id is not None:
            lines.append(f"🆔 Trade ID: {event.trade_id}")
        lines.append(f"🕐 Time: {event.timestamp}")
        if event.value >= mega_whale_usd:
            lines.append("\n🚨 <b>MEGA WHALE!</b> 🚨")
        return "\n".join(lines)

    if isinstance(event, OrderWall):
        levels = "\n".join(
            f"{'🟢' if lvl.side == 'BID' else '🔴'} {lvl.side}: "
            f"{_money(lvl.price)} × {lvl.size:,.2f} = {_money(lvl.value)}"
            for lvl in event.levels
        )
        return (
            "🐳 <b>WHALE WALL DETECTED</b> 🐳\n\n"
            f"📈 {esc(event.coin)} Orderbook\n\n"
            f"{levels}\n\n"
            f"🕐 {event.timestamp}"
        )

    raise TypeError(f"Cannot render {type(event).__name__}")


def _batch_line(index: int, event: DomainEvent, mega_whale_usd: Decimal) -> str:
    if isinstance(event, LargeTrade):
        emoji, side = ("🟢", "BUY") if event.is_buy else ("🔴", "SELL")
        line = (
            f"{index}. {emoji} {side} {html.escape(event.coin)}\n"
            f"   💰 {_money(event.value)} | 👤 {short_address(event.user)}"
        )
        if event.value >= mega_whale_usd:
            line += "\n   🚨 MEGA WHALE!"
        return line
    if isinstance(event, LargeTransfer):
        return f"{index}. 💸 {event.sol:,.4f} SOL {short_address(event.source)} → {short_address(event.destination)}"
    if isinstance(event, MintCreated):
        return f"{index}. 🎉 {html.escape(event.name)} (${html.escape(event.symbol)}) {short_address(event.mint)}"
    if isinstance(event, Migration):
        return f"{index}. 🚀 {event.destination} {short_address(event.token_address)}"
    if isinstance(event, OrderWall):
        return f"{index}. 🐳 {html.escape(event.coin)} wall {_money(event.notional)}"
    return f"{index}. {event.kind}"


def render_batch(
    events: Sequence[DomainEvent], mega_whale_usd: Decimal = DEFAULT_MEGA_WHALE_USD
) -> str:
    """Summary message for a batch: count, total notional, one line per event."""
    total = sum((e.notional for e in events), Decimal(0))
    header = f"🐋 <b>WHALE ACTIVITY BATCH</b> ({len(events)} alerts, {_money(total)} total) 🐋\n\n"
    body = "\n\n".join(_batch_line(i, e, mega_whale_usd) for i, e in enumerate(events, start=1))
    text = header + body
    if len(text) > TELEGRAM_MAX_CHARS:
        text = text[: TELEGRAM_MAX_CHARS - 20].rsplit("\n", 1)[0] + "\n… (truncated)"
    return text


def render_stats(snapshot: dict[str, Any]) -> str:
    """One-paragraph plain-text stats report for logs."""
    counts = ", ".join(f"{k}={v}" for k, v in sorted(snapshot.get("events", {}).items())) or "none"
    messages = ", ".join(f"{k}={v}" for k, v in sorted(snapshot.get("messages", {}).items())) or "none"
    parts = [
        f"uptime={snapshot.get('uptime_seconds', 0):.0f}s",
        f"events[{counts}]",
        f"messages[{messages}]",
        f"transfer_volume={float(snapshot.get('transfer_volume_sol', 0)):,.4f} SOL",
        f"whales={snapshot.get('whale_count', 0)}",
    ]
    largest = snapshot.get("largest_transfer")
    if largest:
        parts.append(f"largest_transfer={float(largest['sol']):,.4f} SOL ({short_address(largest['signature'])})")
    return " ".join(parts)


# ── Utility ──────────────────────────────────────────────────────────────────


def mask_secret(value: str) -> str:
    """
    Mask a credential for safe display.

    'abcdefg123' → 'abcd****'
    '' → '****'
    """
    if not value or len(value) <= 4:
        return "****"
    return value[:4] + "****"
