"""Domain models: ledger accounts and invocation reports."""

from __future__ import annotations

from roundkeeper.models.accounts import (
    Bet,
    MarketConfig,
    PoolTotals,
    Round,
    RoundSnapshot,
    RoundStatus,
    SchemaGeneration,
    Side,
)
from roundkeeper.models.reports import (
    ActionKind,
    ActionReport,
    ActionStatus,
    BatchReport,
    FixedPointPrice,
    KeeperReport,
    PayoutMismatch,
)

__all__ = [
    "ActionKind",
    "ActionReport",
    "ActionStatus",
    "BatchReport",
    "Bet",
    "FixedPointPrice",
    "KeeperReport",
    "MarketConfig",
    "PayoutMismatch",
    "PoolTotals",
    "Round",
    "RoundSnapshot",
    "RoundStatus",
    "SchemaGeneration",
    "Side",
]
