"""Tests for program-derived addresses and instruction builders."""

from __future__ import annotations

import struct

import pytest
from conftest import PROGRAM_ID
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from roundkeeper.ledger.addresses import (
    AddressDeriver,
    bet_seeds,
    derive_address,
    round_seeds,
    u32_le,
    u64_le,
    vault_seeds,
)
from roundkeeper.ledger.instructions import InstructionBuilder
from roundkeeper.ledger.schema import DISCRIMINATORS
from roundkeeper.models.accounts import Side


class TestSeeds:
    def test_round_seed_encoding(self) -> None:
        assert round_seeds(5) == (b"round", b"\x05\x00\x00\x00\x00\x00\x00\x00")

    def test_bet_seed_encoding(self) -> None:
        assert bet_seeds(1, 258) == (b"bet", u64_le(1), b"\x02\x01\x00\x00")

    def test_vault_seed_encoding(self) -> None:
        assert vault_seeds(0) == (b"vault", bytes(8))

    @pytest.mark.parametrize("value", [-1, 2**64])
    def test_u64_out_of_range(self, value: int) -> None:
        with pytest.raises(ValueError, match="u64"):
            u64_le(value)

    def test_u32_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="u32"):
            u32_le(2**32)


class TestAddressDeriver:
    def test_matches_sdk_search(self) -> None:
        expected, bump = Pubkey.find_program_address(
            [b"round", struct.pack("<Q", 42)], Pubkey.from_string(PROGRAM_ID),
        )
        address, derived_bump = derive_address(PROGRAM_ID, round_seeds(42))
        assert address == str(expected)
        assert derived_bump == bump

    def test_deterministic(self) -> None:
        assert AddressDeriver(PROGRAM_ID).bet(3, 7) == AddressDeriver(PROGRAM_ID).bet(3, 7)

    def test_distinct_per_kind_and_id(self) -> None:
        deriver = AddressDeriver(PROGRAM_ID)
        addresses = {
            deriver.config(),
            deriver.round(1),
            deriver.round(2),
            deriver.vault(1),
            deriver.bet(1, 0),
            deriver.bet(1, 1),
            deriver.bet(2, 0),
        }
        assert len(addresses) == 7

    def test_addresses_are_off_curve(self) -> None:
        deriver = AddressDeriver(PROGRAM_ID)
        assert not Pubkey.from_string(deriver.round(9)).is_on_curve()

    def test_invalid_program_id(self) -> None:
        with pytest.raises(ValueError):
            AddressDeriver("not-a-key")


class TestInstructionBuilder:
    def test_settle_round(self, builder: InstructionBuilder) -> None:
        op = builder.settle_round(4, 275_000_000)
        assert op.key == "settle:4"
        assert op.kind == "settle_round"
        ix = op.instruction
        assert str(ix.program_id) == PROGRAM_ID
        assert bytes(ix.data)[:8] == DISCRIMINATORS["settle_round"]
        round_meta = ix.accounts[1]
        assert str(round_meta.pubkey) == AddressDeriver(PROGRAM_ID).round(4)
        assert round_meta.is_writable is True
        assert ix.accounts[2].pubkey == builder.admin
        assert ix.accounts[2].is_signer is True

    def test_start_round_accounts(self, builder: InstructionBuilder) -> None:
        op = builder.start_round(0, "WIF", 250_000_000)
        deriver = AddressDeriver(PROGRAM_ID)
        keys = [str(m.pubkey) for m in op.instruction.accounts]
        assert keys[:3] == [deriver.config(), deriver.round(0), deriver.vault(0)]
        assert op.instruction.accounts[-1].pubkey == SYSTEM_PROGRAM_ID
        assert op.key == "start:0"

    def test_process_payout(self, builder: InstructionBuilder) -> None:
        bettor = str(Pubkey.new_unique())
        op = builder.process_payout(4, 2, bettor)
        assert op.key == "payout:4:2"
        assert op.bet_index == 2
        assert bytes(op.instruction.data) == DISCRIMINATORS["process_payout"]
        metas = op.instruction.accounts
        assert str(metas[1].pubkey) == AddressDeriver(PROGRAM_ID).bet(4, 2)
        assert str(metas[3].pubkey) == bettor
        assert metas[3].is_writable is True
        assert not any(m.is_signer for m in metas)

    def test_place_bet_without_referrer_uses_program_slot(self, builder: InstructionBuilder) -> None:
        bettor = Pubkey.new_unique()
        op = builder.place_bet(bettor, str(Pubkey.new_unique()), 1, 0, Side.SHORT, 10_000_000)
        referrer_meta = op.instruction.accounts[6]
        assert str(referrer_meta.pubkey) == PROGRAM_ID
        assert referrer_meta.is_writable is False

    def test_place_bet_with_referrer(self, builder: InstructionBuilder) -> None:
        referrer = str(Pubkey.new_unique())
        op = builder.place_bet(
            Pubkey.new_unique(), str(Pubkey.new_unique()), 1, 0, Side.LONG, 10_000_000, referrer,
        )
        assert str(op.instruction.accounts[6].pubkey) == referrer
        assert bytes(op.instruction.data)[8] == 1
