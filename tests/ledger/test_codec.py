"""Tests for the account codec: generations, padding, trailing data, instructions."""

from __future__ import annotations

import struct

import pytest
from conftest import make_bet, make_config, make_round, new_key
from hypothesis import given, settings
from hypothesis import strategies as st

from roundkeeper.core.errors import DecodeError, RecordTooShortError, TrailingDataError
from roundkeeper.ledger.codec import (
    decode_account,
    decode_bet,
    decode_config,
    decode_round,
    encode_bet,
    encode_config,
    encode_instruction,
    encode_round,
    identify_account,
)
from roundkeeper.ledger.schema import (
    BET_TAG,
    DISCRIMINATORS,
    ROUND_TAG,
)
from roundkeeper.models.accounts import Bet, Round, RoundStatus, SchemaGeneration, Side


def _legacy_round_bytes(
    *,
    round_id: int = 3,
    symbol: str = "WIF",
    start_price: int = 250_000_000,
    end_price: int = 0,
    start_time: int = 1_700_000_000,
    end_time: int = 1_700_086_400,
    status: int = 0,
    short_pool: int = 1_000_000_000,
    long_pool: int = 4_000_000_000,
    bet_count: int = 4,
    payouts_processed: int = 0,
    winning_side: int | None = None,
    bump: int = 255,
) -> bytes:
    raw = bytearray(ROUND_TAG)
    raw += struct.pack("<Q", round_id)
    raw += struct.pack("<I", len(symbol)) + symbol.encode()
    raw += struct.pack("<qqqq", start_price, end_price, start_time, end_time)
    raw += bytes([status])
    raw += struct.pack("<QQ", short_pool, long_pool)
    raw += struct.pack("<II", bet_count, payouts_processed)
    raw += bytes([0]) if winning_side is None else bytes([1, winning_side])
    raw += bytes([bump])
    return bytes(raw) + bytes(90 - len(raw))


class TestRoundCodec:
    def test_current_round_offsets(self, sample_round: Round) -> None:
        data = encode_round(sample_round)
        assert len(data) == 114
        assert data[:8] == ROUND_TAG
        assert struct.unpack_from("<Q", data, 8)[0] == 7
        assert struct.unpack_from("<I", data, 16)[0] == len("BONK")
        assert data[20:24] == b"BONK"

    def test_current_round_decodes(self, sample_round: Round) -> None:
        decoded = decode_round(encode_round(sample_round))
        assert decoded == sample_round
        assert decoded.generation is SchemaGeneration.CURRENT
        assert decoded.trailing_bytes == 0

    def test_legacy_90_byte_round(self) -> None:
        data = _legacy_round_bytes()
        assert len(data) == 90
        decoded = decode_round(data)
        assert decoded.generation is SchemaGeneration.LEGACY
        assert decoded.betting_end_time == decoded.end_time
        assert decoded.short_weighted_pool == decoded.short_pool
        assert decoded.long_weighted_pool == decoded.long_pool
        assert decoded.asset_symbol == "WIF"
        assert decoded.bet_count == 4

    def test_legacy_round_reencodes_identically(self) -> None:
        data = _legacy_round_bytes(status=2, winning_side=1, end_price=275_000_000, payouts_processed=2)
        assert encode_round(decode_round(data)) == data

    def test_settled_round_winning_side(self) -> None:
        decoded = decode_round(_legacy_round_bytes(status=3, winning_side=0, payouts_processed=4))
        assert decoded.status is RoundStatus.SETTLED
        assert decoded.winning_side is Side.SHORT

    def test_unknown_status_rejected(self) -> None:
        with pytest.raises(DecodeError, match="status"):
            decode_round(_legacy_round_bytes(status=9))

    def test_invalid_option_discriminant(self) -> None:
        data = bytearray(_legacy_round_bytes())
        # option byte sits right after the two u32 counters
        option_offset = 8 + 8 + 4 + 3 + 32 + 1 + 16 + 8
        data[option_offset] = 7
        with pytest.raises(DecodeError, match="option"):
            decode_round(bytes(data))

    def test_truncated_round_too_short(self) -> None:
        with pytest.raises(RecordTooShortError):
            decode_round(_legacy_round_bytes()[:40])

    def test_string_length_past_end(self) -> None:
        data = bytearray(_legacy_round_bytes())
        struct.pack_into("<I", data, 16, 15)
        with pytest.raises(DecodeError):
            decode_round(bytes(data)[:30])

    def test_trailing_data_tolerated_by_default(self, sample_round: Round) -> None:
        data = bytearray(encode_round(sample_round))
        data[-1] = 0xAB
        decoded = decode_round(bytes(data))
        assert decoded.trailing_bytes > 0
        assert decoded.round_id == sample_round.round_id

    def test_trailing_data_strict_raises(self, sample_round: Round) -> None:
        data = bytearray(encode_round(sample_round))
        data[-1] = 0xAB
        with pytest.raises(TrailingDataError) as exc_info:
            decode_round(bytes(data), strict=True)
        assert exc_info.value.trailing_bytes > 0

    def test_zero_padding_is_not_trailing(self, sample_round: Round) -> None:
        data = encode_round(sample_round) + bytes(16)
        assert decode_round(data, strict=True).trailing_bytes == 0

    def test_strict_rejects_wrong_tag(self, sample_round: Round) -> None:
        data = BET_TAG + encode_round(sample_round)[8:]
        assert decode_round(data).round_id == sample_round.round_id
        with pytest.raises(DecodeError, match="type tag"):
            decode_round(data, strict=True)


class TestConfigCodec:
    def test_current_config_offsets(self) -> None:
        config = make_config(round_counter=42, fee_bps=300, referrer_fee_bps=100)
        data = encode_config(config)
        assert len(data) == 101
        assert struct.unpack_from("<H", data, 40)[0] == 300
        assert struct.unpack_from("<H", data, 42)[0] == 100
        assert struct.unpack_from("<Q", data, 92)[0] == 42
        assert decode_config(data) == config

    def test_legacy_config_defaults_referrer_fee(self) -> None:
        legacy = make_config(
            round_counter=9, referrer_fee_bps=0, generation=SchemaGeneration.LEGACY,
        )
        data = encode_config(legacy)
        assert len(data) == 99
        decoded = decode_config(data)
        assert decoded.generation is SchemaGeneration.LEGACY
        assert decoded.referrer_fee_bps == 0
        assert decoded.round_counter == 9
        assert decoded.latest_round_id == 8


class TestBetCodec:
    def test_current_bet_roundtrip(self, sample_bet: Bet) -> None:
        data = encode_bet(sample_bet)
        assert len(data) == 120
        assert decode_bet(data) == sample_bet

    def test_bet_without_referrer(self) -> None:
        bet = make_bet(1, 0, Side.SHORT, 5_000_000)
        decoded = decode_bet(encode_bet(bet))
        assert decoded.referrer is None

    def test_legacy_bet_defaults(self) -> None:
        bettor = new_key()
        legacy = Bet(
            round_id=2,
            bettor=bettor,
            side=Side.LONG,
            amount=975_000_000,
            original_amount=975_000_000,
            bet_index=5,
            paid_out=True,
            bump=200,
            generation=SchemaGeneration.LEGACY,
        )
        data = encode_bet(legacy)
        assert len(data) == 63
        decoded = decode_bet(data)
        assert decoded.generation is SchemaGeneration.LEGACY
        assert decoded.original_amount == 975_000_000
        assert decoded.weight == 100
        assert decoded.bet_time == 0
        assert decoded.referrer is None
        assert decoded.bettor == bettor
        assert decoded.paid_out is True

    def test_invalid_bool_rejected(self, sample_bet: Bet) -> None:
        data = bytearray(encode_bet(sample_bet))
        paid_out_offset = 8 + 8 + 32 + 1 + 8 + 8 + 8 + 8 + 4
        data[paid_out_offset] = 2
        with pytest.raises(DecodeError, match="bool"):
            decode_bet(bytes(data))


class TestIdentify:
    def test_identify_by_tag(self, sample_round: Round, sample_bet: Bet) -> None:
        assert identify_account(encode_round(sample_round)) == "round"
        assert identify_account(encode_bet(sample_bet)) == "bet"
        assert identify_account(encode_config(make_config())) == "config"
        assert identify_account(b"\x00" * 40) is None
        assert identify_account(b"\x01") is None

    def test_decode_account_routes(self, sample_bet: Bet) -> None:
        assert isinstance(decode_account(encode_bet(sample_bet)), Bet)

    def test_decode_account_unknown(self) -> None:
        with pytest.raises(DecodeError, match="Unrecognized"):
            decode_account(b"\xff" * 100)


class TestInstructions:
    def test_settle_round_payload(self) -> None:
        data = encode_instruction("settle_round", {"end_price": 275_000_000})
        assert data[:8] == bytes.fromhex("286512011f81344d")
        assert struct.unpack("<q", data[8:])[0] == 275_000_000

    def test_start_round_payload(self) -> None:
        data = encode_instruction("start_round", {"asset_symbol": "BONK", "start_price": 2_500})
        assert data[:8] == DISCRIMINATORS["start_round"]
        assert data[8:12] == struct.pack("<I", 4)
        assert data[12:16] == b"BONK"
        assert struct.unpack("<q", data[16:])[0] == 2_500

    def test_process_payout_has_no_params(self) -> None:
        assert encode_instruction("process_payout") == DISCRIMINATORS["process_payout"]

    def test_initialize_packing(self) -> None:
        data = encode_instruction(
            "initialize",
            {"fee_bps": 250, "referrer_fee_bps": 50, "min_bet": 10, "max_bet": 20},
        )
        assert len(data) == 8 + 2 + 2 + 8 + 8
        assert struct.unpack("<HHQQ", data[8:]) == (250, 50, 10, 20)

    def test_place_bet_packing(self) -> None:
        data = encode_instruction("place_bet", {"side": int(Side.LONG), "amount": 1_000})
        assert data[8] == 1
        assert struct.unpack("<Q", data[9:])[0] == 1_000

    def test_unknown_instruction(self) -> None:
        with pytest.raises(ValueError, match="Unknown instruction"):
            encode_instruction("withdraw", {})

    def test_missing_param(self) -> None:
        with pytest.raises(ValueError, match="end_price"):
            encode_instruction("settle_round", {})

    def test_out_of_range_param(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            encode_instruction("initialize", {
                "fee_bps": 70_000, "referrer_fee_bps": 0, "min_bet": 0, "max_bet": 0,
            })


_symbols = st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ", min_size=1, max_size=10)
_u64 = st.integers(min_value=0, max_value=2**63)
_u32 = st.integers(min_value=0, max_value=1_000)


@st.composite
def _rounds(draw: st.DrawFn) -> Round:
    bet_count = draw(_u32)
    short_pool, long_pool = draw(_u64), draw(_u64)
    status = draw(st.sampled_from(list(RoundStatus)))
    settled = status in (RoundStatus.SETTLING, RoundStatus.SETTLED)
    return make_round(
        draw(st.integers(min_value=0, max_value=2**32)),
        asset_symbol=draw(_symbols),
        start_price=draw(st.integers(min_value=1, max_value=2**62)),
        end_price=draw(st.integers(min_value=0, max_value=2**62)),
        status=status,
        short_pool=short_pool,
        long_pool=long_pool,
        short_weighted_pool=short_pool,
        long_weighted_pool=long_pool,
        bet_count=bet_count,
        payouts_processed=draw(st.integers(min_value=0, max_value=bet_count)),
        winning_side=draw(st.sampled_from(list(Side))) if settled else None,
        generation=draw(st.sampled_from(list(SchemaGeneration))),
    )


class TestCodecProperties:
    @given(_rounds())
    @settings(max_examples=60)
    def test_generated_rounds_survive_encode_decode(self, round_: Round) -> None:
        decoded = decode_round(encode_round(round_))
        assert decoded.round_id == round_.round_id
        assert decoded.asset_symbol == round_.asset_symbol
        assert decoded.status is round_.status
        assert decoded.winning_side == round_.winning_side
        assert decoded.generation is round_.generation
        assert decoded.short_weighted_pool >= decoded.short_pool
        assert decode_round(encode_round(decoded)) == decoded
