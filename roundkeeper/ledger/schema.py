"""Declarative layouts for the market's accounts and instruction payloads.

Each layout is an ordered field list interpreted by the generic reader and
writer in ``roundkeeper.ledger.codec``. Offsets are never written by hand:
they fall out of the field order and widths.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from roundkeeper.models.accounts import SchemaGeneration

TAG_SIZE = 8
PUBKEY_SIZE = 32
MAX_SYMBOL_LEN = 16


class FieldType(str, Enum):
    U8 = "u8"
    BOOL = "bool"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    I64 = "i64"
    PUBKEY = "pubkey"
    STRING = "string"
    OPTION_U8 = "option_u8"
    OPTION_PUBKEY = "option_pubkey"

    @property
    def fixed_width(self) -> int | None:
        """Width in bytes, or None for variable-width types."""
        return _FIXED_WIDTHS.get(self)

    @property
    def min_width(self) -> int:
        """Smallest encoding: empty string / None option."""
        if self is FieldType.STRING:
            return 4
        if self in (FieldType.OPTION_U8, FieldType.OPTION_PUBKEY):
            return 1
        width = self.fixed_width
        assert width is not None
        return width


_FIXED_WIDTHS: dict[FieldType, int] = {
    FieldType.U8: 1,
    FieldType.BOOL: 1,
    FieldType.U16: 2,
    FieldType.U32: 4,
    FieldType.U64: 8,
    FieldType.I64: 8,
    FieldType.PUBKEY: PUBKEY_SIZE,
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: FieldType


@dataclass(frozen=True)
class RecordSchema:
    """Layout of one account record for one schema generation."""

    kind: str
    generation: SchemaGeneration
    tag: bytes
    fields: tuple[FieldSpec, ...]
    account_size: int

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def min_size(self) -> int:
        """Bytes needed for the tag plus every field at its minimum width."""
        return TAG_SIZE + sum(f.type.min_width for f in self.fields)


def _f(name: str, type_: FieldType) -> FieldSpec:
    return FieldSpec(name=name, type=type_)


U8, BOOL, U16, U32, U64, I64 = (
    FieldType.U8, FieldType.BOOL, FieldType.U16, FieldType.U32, FieldType.U64, FieldType.I64,
)
PUBKEY, STRING = FieldType.PUBKEY, FieldType.STRING
OPTION_U8, OPTION_PUBKEY = FieldType.OPTION_U8, FieldType.OPTION_PUBKEY

# Account type tags (first 8 bytes of sha256("account:<Name>")).
CONFIG_TAG = bytes.fromhex("9b0caae01efacc82")
ROUND_TAG = bytes.fromhex("577fa533494e74ae")
BET_TAG = bytes.fromhex("9317233b0f4b9b20")

CONFIG_CURRENT = RecordSchema(
    kind="config",
    generation=SchemaGeneration.CURRENT,
    tag=CONFIG_TAG,
    fields=(
        _f("admin", PUBKEY),
        _f("fee_bps", U16),
        _f("referrer_fee_bps", U16),
        _f("min_bet", U64),
        _f("max_bet", U64),
        _f("treasury", PUBKEY),
        _f("round_counter", U64),
        _f("bump", U8),
    ),
    account_size=101,
)

CONFIG_LEGACY = RecordSchema(
    kind="config",
    generation=SchemaGeneration.LEGACY,
    tag=CONFIG_TAG,
    fields=(
        _f("admin", PUBKEY),
        _f("fee_bps", U16),
        _f("min_bet", U64),
        _f("max_bet", U64),
        _f("treasury", PUBKEY),
        _f("round_counter", U64),
        _f("bump", U8),
    ),
    account_size=99,
)

ROUND_CURRENT = RecordSchema(
    kind="round",
    generation=SchemaGeneration.CURRENT,
    tag=ROUND_TAG,
    fields=(
        _f("round_id", U64),
        _f("asset_symbol", STRING),
        _f("start_price", I64),
        _f("end_price", I64),
        _f("start_time", I64),
        _f("betting_end_time", I64),
        _f("end_time", I64),
        _f("status", U8),
        _f("short_pool", U64),
        _f("long_pool", U64),
        _f("short_weighted_pool", U64),
        _f("long_weighted_pool", U64),
        _f("bet_count", U32),
        _f("payouts_processed", U32),
        _f("winning_side", OPTION_U8),
        _f("bump", U8),
    ),
    # symbol space reserved on-chain is 4 + 10
    account_size=114,
)

ROUND_LEGACY = RecordSchema(
    kind="round",
    generation=SchemaGeneration.LEGACY,
    tag=ROUND_TAG,
    fields=(
        _f("round_id", U64),
        _f("asset_symbol", STRING),
        _f("start_price", I64),
        _f("end_price", I64),
        _f("start_time", I64),
        _f("end_time", I64),
        _f("status", U8),
        _f("short_pool", U64),
        _f("long_pool", U64),
        _f("bet_count", U32),
        _f("payouts_processed", U32),
        _f("winning_side", OPTION_U8),
        _f("bump", U8),
    ),
    account_size=90,
)

BET_CURRENT = RecordSchema(
    kind="bet",
    generation=SchemaGeneration.CURRENT,
    tag=BET_TAG,
    fields=(
        _f("round_id", U64),
        _f("bettor", PUBKEY),
        _f("side", U8),
        _f("amount", U64),
        _f("original_amount", U64),
        _f("bet_time", I64),
        _f("weight", U64),
        _f("bet_index", U32),
        _f("paid_out", BOOL),
        _f("referrer", OPTION_PUBKEY),
        _f("bump", U8),
    ),
    account_size=120,
)

BET_LEGACY = RecordSchema(
    kind="bet",
    generation=SchemaGeneration.LEGACY,
    tag=BET_TAG,
    fields=(
        _f("round_id", U64),
        _f("bettor", PUBKEY),
        _f("side", U8),
        _f("amount", U64),
        _f("bet_index", U32),
        _f("paid_out", BOOL),
        _f("bump", U8),
    ),
    account_size=63,
)

SCHEMAS: dict[str, dict[SchemaGeneration, RecordSchema]] = {
    "config": {SchemaGeneration.CURRENT: CONFIG_CURRENT, SchemaGeneration.LEGACY: CONFIG_LEGACY},
    "round": {SchemaGeneration.CURRENT: ROUND_CURRENT, SchemaGeneration.LEGACY: ROUND_LEGACY},
    "bet": {SchemaGeneration.CURRENT: BET_CURRENT, SchemaGeneration.LEGACY: BET_LEGACY},
}

TAG_TO_KIND: dict[bytes, str] = {
    CONFIG_TAG: "config",
    ROUND_TAG: "round",
    BET_TAG: "bet",
}


def schema_for(kind: str, length: int) -> RecordSchema:
    """Pick the generation by total record length.

    A record at least as long as the current allocation is current;
    anything shorter is read with the legacy layout.
    """
    generations = SCHEMAS[kind]
    current = generations[SchemaGeneration.CURRENT]
    if length >= current.account_size:
        return current
    return generations[SchemaGeneration.LEGACY]


# Instruction payload layouts (parameters after the 8-byte discriminator).
INSTRUCTION_PARAMS: dict[str, tuple[FieldSpec, ...]] = {
    "initialize": (
        _f("fee_bps", U16),
        _f("referrer_fee_bps", U16),
        _f("min_bet", U64),
        _f("max_bet", U64),
    ),
    "start_round": (
        _f("asset_symbol", STRING),
        _f("start_price", I64),
    ),
    "place_bet": (
        _f("side", U8),
        _f("amount", U64),
    ),
    "settle_round": (
        _f("end_price", I64),
    ),
    "process_payout": (),
}

# First 8 bytes of sha256("global:<instruction_name>"); opaque constants.
DISCRIMINATORS: dict[str, bytes] = {
    "initialize": bytes.fromhex("afaf6d1f0d989bed"),
    "start_round": bytes.fromhex("90902b07c12ad9d7"),
    "place_bet": bytes.fromhex("de3e43dc3fa67e21"),
    "settle_round": bytes.fromhex("286512011f81344d"),
    "process_payout": bytes.fromhex("30c08139e6a1e994"),
}
