"""Weighted pari-mutuel payout math.

All amounts are integer base units (lamports). Fees are taken when a stake
is placed, so nothing here re-applies a fee. Winners get their stake back
plus a share of the losing pool proportional to their weighted stake.
"""

from __future__ import annotations

from decimal import Decimal

from roundkeeper.engine.weights import weighted_amount
from roundkeeper.models.accounts import Bet, PoolTotals, Side

BPS_DENOMINATOR = 10_000


def determine_winning_side(start_price: int, end_price: int, tie_winner: Side = Side.SHORT) -> Side:
    """Strictly higher end price wins for LONG; a tie goes to ``tie_winner``."""
    if end_price > start_price:
        return Side.LONG
    if end_price < start_price:
        return Side.SHORT
    return tie_winner


def tie_winner_from_setting(value: str) -> Side:
    """Map the ``settlement.tie_winner`` setting ("short"/"long") to a Side."""
    try:
        return Side[value.strip().upper()]
    except KeyError as exc:
        msg = f"tie_winner must be 'short' or 'long', got {value!r}"
        raise ValueError(msg) from exc


def compute_payout(
    stake: int,
    weight: int,
    side: Side,
    winning_side: Side,
    raw_pools: PoolTotals,
    weighted_pools: PoolTotals,
) -> int:
    """Amount paid to one bet at settlement.

    ``stake`` is the post-fee pool contribution. A losing bet pays 0. A
    winning bet pays its stake plus
    ``floor(losing_pool * weighted_stake / winning_weighted_pool)``, with the
    bonus forced to 0 when either pool it divides by or from is empty.
    """
    if stake < 0:
        msg = f"stake must be >= 0, got {stake}"
        raise ValueError(msg)
    if side is not winning_side:
        return 0

    weighted_stake = weighted_amount(stake, weight)
    losing_pool = raw_pools.for_side(winning_side.opposite)
    winning_weighted_pool = weighted_pools.for_side(winning_side)
    if winning_weighted_pool == 0 or losing_pool == 0:
        return stake
    bonus = losing_pool * weighted_stake // winning_weighted_pool
    return stake + bonus


def net_stake(
    amount: int,
    fee_bps: int,
    referrer_fee_bps: int = 0,
    has_referrer: bool = False,
) -> tuple[int, int, int]:
    """Split a placed amount the way the program does.

    Returns:
        (pool contribution, treasury fee, referrer fee)
    """
    treasury_fee = amount * fee_bps // BPS_DENOMINATOR
    referrer_fee = amount * referrer_fee_bps // BPS_DENOMINATOR if has_referrer else 0
    return amount - treasury_fee - referrer_fee, treasury_fee, referrer_fee


def implied_odds(pools: PoolTotals) -> dict[Side, Decimal]:
    """Share of the raw pool on each side; zeros for an empty pool."""
    total = pools.total
    if total == 0:
        return {Side.SHORT: Decimal(0), Side.LONG: Decimal(0)}
    return {
        Side.SHORT: Decimal(pools.short) / Decimal(total),
        Side.LONG: Decimal(pools.long) / Decimal(total),
    }


def potential_payout(
    stake: int,
    weight: int,
    side: Side,
    raw_pools: PoolTotals,
    weighted_pools: PoolTotals,
) -> int:
    """Quote for a prospective stake if ``side`` wins and pools stay as-is.

    The stake is added to its own side's raw and weighted pools first.
    """
    w = weighted_amount(stake, weight)
    if side is Side.LONG:
        raw_after = PoolTotals(short=raw_pools.short, long=raw_pools.long + stake)
        weighted_after = PoolTotals(short=weighted_pools.short, long=weighted_pools.long + w)
    else:
        raw_after = PoolTotals(short=raw_pools.short + stake, long=raw_pools.long)
        weighted_after = PoolTotals(short=weighted_pools.short + w, long=weighted_pools.long)
    return compute_payout(stake, weight, side, side, raw_after, weighted_after)


def round_payouts(
    bets: list[Bet],
    winning_side: Side,
    raw_pools: PoolTotals,
    weighted_pools: PoolTotals,
) -> dict[int, int]:
    """Payout per bet index for a settled round."""
    return {
        bet.bet_index: compute_payout(
            bet.amount, bet.weight, bet.side, winning_side, raw_pools, weighted_pools,
        )
        for bet in bets
    }
