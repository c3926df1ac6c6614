"""Instruction builders for the market program.

Each builder returns an ``Operation``: a solders ``Instruction`` plus the
bookkeeping the batch submitter needs (a stable key, the round it targets).
Account order mirrors the program's account structs.
"""

from __future__ import annotations

from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from roundkeeper.ledger.addresses import AddressDeriver
from roundkeeper.ledger.codec import encode_instruction
from roundkeeper.models.accounts import Side


@dataclass(frozen=True)
class Operation:
    """One ledger write, addressable by ``key`` in batch reports."""

    key: str
    kind: str
    round_id: int
    instruction: Instruction
    bet_index: int | None = None


def _pk(value: str | Pubkey) -> Pubkey:
    return value if isinstance(value, Pubkey) else Pubkey.from_string(value)


def _meta(value: str | Pubkey, *, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=_pk(value), is_signer=signer, is_writable=writable)


class InstructionBuilder:
    """Builds operations for one program, signed by one admin."""

    def __init__(self, deriver: AddressDeriver, admin: str | Pubkey) -> None:
        self._deriver = deriver
        self._program = _pk(deriver.program_id)
        self._admin = _pk(admin)

    @property
    def admin(self) -> Pubkey:
        return self._admin

    def _ix(self, kind: str, params: dict, accounts: list[AccountMeta]) -> Instruction:
        return Instruction(self._program, encode_instruction(kind, params), accounts)

    def initialize(
        self,
        treasury: str,
        *,
        fee_bps: int,
        referrer_fee_bps: int,
        min_bet: int,
        max_bet: int,
    ) -> Operation:
        ix = self._ix(
            "initialize",
            {
                "fee_bps": fee_bps,
                "referrer_fee_bps": referrer_fee_bps,
                "min_bet": min_bet,
                "max_bet": max_bet,
            },
            [
                _meta(self._deriver.config(), writable=True),
                _meta(self._admin, signer=True, writable=True),
                _meta(treasury),
                _meta(SYSTEM_PROGRAM_ID),
            ],
        )
        return Operation(key="initialize", kind="initialize", round_id=0, instruction=ix)

    def start_round(self, round_id: int, asset_symbol: str, start_price: int) -> Operation:
        ix = self._ix(
            "start_round",
            {"asset_symbol": asset_symbol, "start_price": start_price},
            [
                _meta(self._deriver.config(), writable=True),
                _meta(self._deriver.round(round_id), writable=True),
                _meta(self._deriver.vault(round_id)),
                _meta(self._admin, signer=True, writable=True),
                _meta(SYSTEM_PROGRAM_ID),
            ],
        )
        return Operation(
            key=f"start:{round_id}", kind="start_round", round_id=round_id, instruction=ix,
        )

    def settle_round(self, round_id: int, end_price: int) -> Operation:
        ix = self._ix(
            "settle_round",
            {"end_price": end_price},
            [
                _meta(self._deriver.config()),
                _meta(self._deriver.round(round_id), writable=True),
                _meta(self._admin, signer=True),
            ],
        )
        return Operation(
            key=f"settle:{round_id}", kind="settle_round", round_id=round_id, instruction=ix,
        )

    def process_payout(self, round_id: int, bet_index: int, bettor: str) -> Operation:
        ix = self._ix(
            "process_payout",
            {},
            [
                _meta(self._deriver.round(round_id), writable=True),
                _meta(self._deriver.bet(round_id, bet_index), writable=True),
                _meta(self._deriver.vault(round_id), writable=True),
                _meta(bettor, writable=True),
                _meta(SYSTEM_PROGRAM_ID),
            ],
        )
        return Operation(
            key=f"payout:{round_id}:{bet_index}",
            kind="process_payout",
            round_id=round_id,
            instruction=ix,
            bet_index=bet_index,
        )

    def place_bet(
        self,
        bettor: str | Pubkey,
        treasury: str,
        round_id: int,
        bet_index: int,
        side: Side,
        amount: int,
        referrer: str | None = None,
    ) -> Operation:
        """Stake from ``bettor``. Used by tooling; the keeper never bets."""
        # the program takes its own id in the optional referrer slot for None
        referrer_meta = (
            _meta(referrer, writable=True) if referrer else _meta(self._program)
        )
        ix = self._ix(
            "place_bet",
            {"side": int(side), "amount": amount},
            [
                _meta(self._deriver.config()),
                _meta(self._deriver.round(round_id), writable=True),
                _meta(self._deriver.bet(round_id, bet_index), writable=True),
                _meta(self._deriver.vault(round_id), writable=True),
                _meta(treasury, writable=True),
                _meta(bettor, signer=True, writable=True),
                referrer_meta,
                _meta(SYSTEM_PROGRAM_ID),
            ],
        )
        return Operation(
            key=f"bet:{round_id}:{bet_index}",
            kind="place_bet",
            round_id=round_id,
            instruction=ix,
            bet_index=bet_index,
        )
