"""Ledger account models: MarketConfig, Round, Bet and their enums."""

from __future__ import annotations

from enum import Enum, IntEnum

from pydantic import BaseModel, Field


class SchemaGeneration(str, Enum):
    LEGACY = "legacy"
    CURRENT = "current"


class RoundStatus(IntEnum):
    OPEN = 0
    LOCKED = 1
    SETTLING = 2
    SETTLED = 3

    @property
    def accepts_settlement(self) -> bool:
        return self in (RoundStatus.OPEN, RoundStatus.LOCKED)

    @property
    def is_terminal(self) -> bool:
        return self is RoundStatus.SETTLED


class Side(IntEnum):
    """Program side values. SHORT is the "down" side, LONG the "up" side."""

    SHORT = 0
    LONG = 1

    @property
    def opposite(self) -> Side:
        return Side.LONG if self is Side.SHORT else Side.SHORT


class PoolTotals(BaseModel):
    """Per-side amounts in base units (lamports)."""

    short: int = 0
    long: int = 0

    def for_side(self, side: Side) -> int:
        return self.long if side is Side.LONG else self.short

    @property
    def total(self) -> int:
        return self.short + self.long

    model_config = {"frozen": True}


class MarketConfig(BaseModel):
    """Singleton program configuration account."""

    admin: str
    fee_bps: int
    referrer_fee_bps: int = 0
    min_bet: int
    max_bet: int
    treasury: str
    round_counter: int
    bump: int = 0
    generation: SchemaGeneration = SchemaGeneration.CURRENT
    trailing_bytes: int = 0

    @property
    def latest_round_id(self) -> int | None:
        """Id of the most recently created round, None before the first."""
        return self.round_counter - 1 if self.round_counter > 0 else None

    model_config = {"frozen": True}


class Round(BaseModel):
    """One betting cycle."""

    round_id: int
    asset_symbol: str
    start_price: int
    end_price: int = 0
    start_time: int
    betting_end_time: int
    end_time: int
    status: RoundStatus = RoundStatus.OPEN
    short_pool: int = 0
    long_pool: int = 0
    short_weighted_pool: int = 0
    long_weighted_pool: int = 0
    bet_count: int = 0
    payouts_processed: int = 0
    winning_side: Side | None = None
    bump: int = 0
    generation: SchemaGeneration = SchemaGeneration.CURRENT
    trailing_bytes: int = 0

    @property
    def raw_pools(self) -> PoolTotals:
        return PoolTotals(short=self.short_pool, long=self.long_pool)

    @property
    def weighted_pools(self) -> PoolTotals:
        return PoolTotals(short=self.short_weighted_pool, long=self.long_weighted_pool)

    @property
    def total_pool(self) -> int:
        return self.short_pool + self.long_pool

    @property
    def remaining_payouts(self) -> int:
        return max(0, self.bet_count - self.payouts_processed)

    @property
    def payouts_complete(self) -> bool:
        return self.payouts_processed >= self.bet_count

    @property
    def is_finished(self) -> bool:
        """Settled, or settling with nothing left to pay out."""
        return self.status.is_terminal or (
            self.status is RoundStatus.SETTLING and self.payouts_complete
        )

    def has_ended(self, now: int) -> bool:
        return now >= self.end_time

    def betting_closed(self, now: int) -> bool:
        return self.status is not RoundStatus.OPEN or now >= self.betting_end_time

    def seconds_remaining(self, now: int) -> int:
        return max(0, self.end_time - now)

    def invariant_violations(self) -> list[str]:
        """Report broken invariants in decoded state. Never raises."""
        problems: list[str] = []
        if self.payouts_processed > self.bet_count:
            problems.append(
                f"payouts_processed {self.payouts_processed} > bet_count {self.bet_count}"
            )
        if self.short_weighted_pool < self.short_pool:
            problems.append("short_weighted_pool below short_pool")
        if self.long_weighted_pool < self.long_pool:
            problems.append("long_weighted_pool below long_pool")
        settled_like = self.status in (RoundStatus.SETTLING, RoundStatus.SETTLED)
        if settled_like and self.winning_side is None:
            problems.append(f"status {self.status.name} without winning_side")
        if not settled_like and self.winning_side is not None:
            problems.append(f"winning_side set while {self.status.name}")
        if not (self.start_time <= self.betting_end_time <= self.end_time):
            problems.append("timestamps out of order")
        return problems

    model_config = {"frozen": True}


class Bet(BaseModel):
    """A single stake within a round."""

    round_id: int
    bettor: str
    side: Side
    amount: int
    original_amount: int
    bet_time: int = 0
    weight: int = 100
    bet_index: int
    paid_out: bool = False
    referrer: str | None = None
    bump: int = 0
    generation: SchemaGeneration = SchemaGeneration.CURRENT
    trailing_bytes: int = 0

    @property
    def weighted_amount(self) -> int:
        return self.amount * self.weight // 100

    model_config = {"frozen": True}


class RoundSnapshot(BaseModel):
    """A round together with the bets read alongside it."""

    round: Round
    bets: list[Bet] = Field(default_factory=list)
    missing_indices: list[int] = Field(default_factory=list)

    @property
    def unpaid(self) -> list[Bet]:
        return [b for b in self.bets if not b.paid_out]
