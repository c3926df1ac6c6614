"""Protocol interfaces for the keeper's external collaborators.

The keeper depends only on these; concrete clients are injected.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from roundkeeper.ledger.instructions import Operation
    from roundkeeper.models.accounts import Bet, MarketConfig, Round, RoundSnapshot
    from roundkeeper.models.reports import FixedPointPrice


@runtime_checkable
class PriceSource(Protocol):
    """Protocol for price oracles (Pyth Hermes)."""

    async def fetch_price(self, feed_id: str) -> FixedPointPrice: ...


@runtime_checkable
class Broadcaster(Protocol):
    """Protocol for the social broadcast channel."""

    async def post(self, text: str) -> str: ...


@runtime_checkable
class OperationSender(Protocol):
    """Protocol for sending a list of operations as one transaction."""

    async def send(self, operations: list[Operation]) -> str: ...


@runtime_checkable
class LedgerView(Protocol):
    """Protocol for typed reads of live market state."""

    async def read_config(self) -> MarketConfig: ...

    async def read_round(self, round_id: int) -> Round: ...

    async def read_rounds(self, round_ids: list[int]) -> dict[int, Round]: ...

    async def read_bets(self, round_id: int, count: int) -> tuple[list[Bet], list[int]]: ...

    async def snapshot(self, round_id: int) -> RoundSnapshot: ...

    async def recent_assets(self, before_round: int, window: int) -> list[str]: ...
