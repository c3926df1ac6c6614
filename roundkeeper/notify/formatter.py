"""Post text for lifecycle events."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from urllib.parse import quote

from roundkeeper.engine.payout_calculator import implied_odds
from roundkeeper.models.accounts import PoolTotals, Side
from roundkeeper.models.reports import PRICE_DECIMALS

LAMPORTS_PER_SOL = 1_000_000_000
BLINK_PREFIX = "https://dial.to/?action=solana-action:"

EVENT_ROUND_STARTED = "round_started"
EVENT_BETTING_CLOSED = "betting_closed"
EVENT_ROUND_SETTLED = "round_settled"


def format_price(scaled: int) -> str:
    """Human price from an 8-decimal fixed-point integer.

    Tiny prices use exponent notation; precision shrinks as the price grows;
    from 100 up the value is comma-grouped with at most two decimals.
    """
    price = Decimal(scaled).scaleb(-PRICE_DECIMALS)
    if price <= 0:
        return "0"
    if price < Decimal("0.0001"):
        mantissa, exponent = f"{price:.2e}".split("e")
        return f"{mantissa}e{int(exponent):+d}"
    if price < Decimal("0.01"):
        return f"{price:.6f}"
    if price < 1:
        return f"{price:.4f}"
    if price < 100:
        return f"{price:.2f}"
    rounded = price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{rounded:,.2f}"
    return text.rstrip("0").rstrip(".")


def format_sol(lamports: int) -> str:
    return f"{Decimal(lamports) / LAMPORTS_PER_SOL:.2f}"


def percent_change(start: int, end: int) -> Decimal:
    if start <= 0:
        return Decimal(0)
    return (Decimal(end - start) / Decimal(start)) * 100


def blink_url(round_id: int, base_url: str) -> str:
    """Wallet action link that opens the bet form for ``round_id``."""
    action_url = f"{base_url.rstrip('/')}/api/actions/bet?round={round_id}"
    return BLINK_PREFIX + quote(action_url, safe="")


def round_started_text(payload: dict[str, Any], base_url: str) -> str:
    symbol = payload["symbol"].upper()
    name = payload.get("name") or symbol
    hours = payload.get("betting_hours", 12)
    return (
        f"🎲 Round #{payload['round_id']} is LIVE!\n\n"
        f"${symbol} ({name}) - up or down by the close?\n\n"
        f"📊 Starting price: ${format_price(payload['start_price'])}\n"
        f"⏰ Betting closes in {hours} hours\n\n"
        "🟢 LONG = price goes UP\n"
        "🔴 SHORT = price goes DOWN\n\n"
        "Early stakes earn up to 1.5x weight.\n\n"
        f"{blink_url(payload['round_id'], base_url)}"
    )


def betting_closed_text(payload: dict[str, Any]) -> str:
    symbol = payload["symbol"].upper()
    pools = PoolTotals(
        short=int(payload.get("short_pool", 0)),
        long=int(payload.get("long_pool", 0)),
    )
    shares = implied_odds(pools)
    long_pct = round(shares[Side.LONG] * 100) if pools.total else 50
    short_pct = round(shares[Side.SHORT] * 100) if pools.total else 50
    change = percent_change(payload["start_price"], payload["current_price"])
    direction = "UP" if change >= 0 else "DOWN"
    return (
        f"🔒 Betting is CLOSED for Round #{payload['round_id']}!\n\n"
        f"${symbol} is {direction} {abs(change):.2f}% from start "
        f"(${format_price(payload['current_price'])})\n\n"
        f"🟢 LONG pool: {format_sol(pools.long)} SOL ({long_pct}%)\n"
        f"🔴 SHORT pool: {format_sol(pools.short)} SOL ({short_pct}%)\n\n"
        f"Settlement in {payload.get('hours_to_end', 12)} hours."
    )


def round_settled_text(payload: dict[str, Any]) -> str:
    symbol = payload["symbol"].upper()
    start, end = payload["start_price"], payload["end_price"]
    change = percent_change(start, end)
    change_str = f"+{change:.2f}" if change >= 0 else f"{change:.2f}"
    winner = str(payload["winning_side"]).upper()
    outcome = "📈 PUMPED!" if winner == "LONG" else "📉 DUMPED!"
    paid = int(payload.get("winners_paid", 0))
    return (
        f"🏁 Round #{payload['round_id']} SETTLED!\n\n"
        f"${symbol} {outcome}\n\n"
        f"📊 Start: ${format_price(start)}\n"
        f"📊 End: ${format_price(end)}\n"
        f"{'📈' if change >= 0 else '📉'} Change: {change_str}%\n\n"
        f"🏆 {winner} WINS!\n\n"
        f"💰 Total Pool: {format_sol(int(payload.get('total_pool', 0)))} SOL\n"
        f"👥 {paid} winner{'' if paid == 1 else 's'} paid out\n\n"
        "Next round starting soon..."
    )


def render(event_kind: str, payload: dict[str, Any], base_url: str) -> str:
    if event_kind == EVENT_ROUND_STARTED:
        return round_started_text(payload, base_url)
    if event_kind == EVENT_BETTING_CLOSED:
        return betting_closed_text(payload)
    if event_kind == EVENT_ROUND_SETTLED:
        return round_settled_text(payload)
    msg = f"Unknown event kind: {event_kind}"
    raise ValueError(msg)
