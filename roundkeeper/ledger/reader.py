"""Typed reads of live market state. Nothing here is cached."""

from __future__ import annotations

from roundkeeper.core.errors import AccountNotFoundError, DecodeError
from roundkeeper.core.logging import get_logger
from roundkeeper.ledger.addresses import AddressDeriver
from roundkeeper.ledger.codec import decode_bet, decode_config, decode_round
from roundkeeper.ledger.rpc import LedgerRpcClient
from roundkeeper.models.accounts import Bet, MarketConfig, Round, RoundSnapshot

logger = get_logger(__name__)


class LedgerReader:
    """Reads and decodes Config, Round and Bet accounts."""

    def __init__(self, rpc: LedgerRpcClient, deriver: AddressDeriver) -> None:
        self._rpc = rpc
        self._deriver = deriver

    @property
    def deriver(self) -> AddressDeriver:
        return self._deriver

    async def read_config(self) -> MarketConfig:
        address = self._deriver.config()
        data = await self._rpc.get_account_data(address)
        if data is None:
            raise AccountNotFoundError("config", address)
        return decode_config(data)

    async def read_round(self, round_id: int) -> Round:
        address = self._deriver.round(round_id)
        data = await self._rpc.get_account_data(address)
        if data is None:
            raise AccountNotFoundError("round", address)
        return decode_round(data)

    async def read_bet(self, round_id: int, bet_index: int) -> Bet:
        address = self._deriver.bet(round_id, bet_index)
        data = await self._rpc.get_account_data(address)
        if data is None:
            raise AccountNotFoundError("bet", address)
        return decode_bet(data)

    async def read_rounds(self, round_ids: list[int]) -> dict[int, Round]:
        """Batch-read rounds. Missing or malformed records are left out."""
        if not round_ids:
            return {}
        addresses = [self._deriver.round(rid) for rid in round_ids]
        raw = await self._rpc.get_multiple_accounts(addresses)
        rounds: dict[int, Round] = {}
        for rid, data in zip(round_ids, raw):
            if data is None:
                continue
            try:
                rounds[rid] = decode_round(data)
            except DecodeError as exc:
                logger.warning("reader.round_undecodable", round_id=rid, error=str(exc))
        return rounds

    async def read_bets(self, round_id: int, count: int) -> tuple[list[Bet], list[int]]:
        """Read bets ``0..count-1``.

        Returns:
            (decoded bets in index order, indices that were absent or malformed)
        """
        if count <= 0:
            return [], []
        addresses = [self._deriver.bet(round_id, i) for i in range(count)]
        raw = await self._rpc.get_multiple_accounts(addresses)
        bets: list[Bet] = []
        missing: list[int] = []
        for index, data in enumerate(raw):
            if data is None:
                missing.append(index)
                continue
            try:
                bets.append(decode_bet(data))
            except DecodeError as exc:
                logger.warning(
                    "reader.bet_undecodable",
                    round_id=round_id,
                    bet_index=index,
                    error=str(exc),
                )
                missing.append(index)
        if missing:
            logger.warning("reader.bets_missing", round_id=round_id, indices=missing)
        return bets, missing

    async def snapshot(self, round_id: int) -> RoundSnapshot:
        """Round plus all of its bets.

        Indices the batch read could not return are retried one at a time;
        only those still absent or malformed stay in ``missing_indices``.
        """
        round_ = await self.read_round(round_id)
        bets, missing = await self.read_bets(round_id, round_.bet_count)
        still_missing: list[int] = []
        for index in missing:
            try:
                bet = await self.read_bet(round_id, index)
            except (AccountNotFoundError, DecodeError):
                still_missing.append(index)
                continue
            logger.info("reader.bet_recovered", round_id=round_id, bet_index=index)
            bets.append(bet)
        bets.sort(key=lambda b: b.bet_index)
        return RoundSnapshot(round=round_, bets=bets, missing_indices=still_missing)

    async def recent_assets(self, before_round: int, window: int) -> list[str]:
        """Asset symbols of the ``window`` rounds preceding ``before_round``."""
        if window <= 0 or before_round <= 0:
            return []
        ids = list(range(max(0, before_round - window), before_round))
        rounds = await self.read_rounds(ids)
        return [rounds[rid].asset_symbol for rid in ids if rid in rounds]
