"""Binary codec for Config/Round/Bet accounts and instruction payloads.

One generic reader and one generic writer interpret the field lists in
``roundkeeper.ledger.schema``. All integers are little-endian. Strings are
a u32 length followed by raw UTF-8; Option<T> is a one-byte discriminant
followed by T only when present.
"""

from __future__ import annotations

import struct
from collections.abc import Mapping
from typing import Any

from solders.pubkey import Pubkey

from roundkeeper.core.errors import DecodeError, RecordTooShortError, TrailingDataError
from roundkeeper.core.logging import get_logger
from roundkeeper.ledger.schema import (
    DISCRIMINATORS,
    INSTRUCTION_PARAMS,
    MAX_SYMBOL_LEN,
    PUBKEY_SIZE,
    SCHEMAS,
    TAG_SIZE,
    TAG_TO_KIND,
    FieldSpec,
    FieldType,
    RecordSchema,
    schema_for,
)
from roundkeeper.models.accounts import (
    Bet,
    MarketConfig,
    Round,
    RoundStatus,
    SchemaGeneration,
    Side,
)

logger = get_logger(__name__)

_INT_FORMATS: dict[FieldType, struct.Struct] = {
    FieldType.U8: struct.Struct("<B"),
    FieldType.U16: struct.Struct("<H"),
    FieldType.U32: struct.Struct("<I"),
    FieldType.U64: struct.Struct("<Q"),
    FieldType.I64: struct.Struct("<q"),
}


# ------------------------------------------------------------------
# Generic field reader / writer
# ------------------------------------------------------------------


class _Reader:
    """Cursor over one record's bytes."""

    def __init__(self, data: bytes, record: str) -> None:
        self._data = data
        self._record = record
        self.offset = 0

    def take(self, n: int, field: str) -> bytes:
        end = self.offset + n
        if end > len(self._data):
            msg = (
                f"{self._record} record too short for field '{field}': "
                f"need {end} bytes, have {len(self._data)}"
            )
            raise RecordTooShortError(msg, record=self._record, length=len(self._data))
        chunk = self._data[self.offset:end]
        self.offset = end
        return chunk

    def read(self, spec: FieldSpec) -> Any:
        ftype = spec.type
        if ftype in _INT_FORMATS:
            fmt = _INT_FORMATS[ftype]
            return fmt.unpack(self.take(fmt.size, spec.name))[0]
        if ftype is FieldType.BOOL:
            return self._read_bool(spec.name)
        if ftype is FieldType.PUBKEY:
            return str(Pubkey.from_bytes(self.take(PUBKEY_SIZE, spec.name)))
        if ftype is FieldType.STRING:
            return self._read_string(spec.name)
        if ftype is FieldType.OPTION_U8:
            if not self._read_option_flag(spec.name):
                return None
            return self.take(1, spec.name)[0]
        if ftype is FieldType.OPTION_PUBKEY:
            if not self._read_option_flag(spec.name):
                return None
            return str(Pubkey.from_bytes(self.take(PUBKEY_SIZE, spec.name)))
        msg = f"Unsupported field type: {ftype}"
        raise DecodeError(msg, record=self._record)

    def _read_bool(self, name: str) -> bool:
        raw = self.take(1, name)[0]
        if raw > 1:
            msg = f"{self._record}.{name}: invalid bool byte {raw}"
            raise DecodeError(msg, record=self._record, length=len(self._data))
        return raw == 1

    def _read_option_flag(self, name: str) -> bool:
        flag = self.take(1, name)[0]
        if flag > 1:
            msg = f"{self._record}.{name}: invalid option discriminant {flag}"
            raise DecodeError(msg, record=self._record, length=len(self._data))
        return flag == 1

    def _read_string(self, name: str) -> str:
        (length,) = _INT_FORMATS[FieldType.U32].unpack(self.take(4, name))
        if length > MAX_SYMBOL_LEN:
            msg = f"{self._record}.{name}: string length {length} exceeds {MAX_SYMBOL_LEN}"
            raise DecodeError(msg, record=self._record, length=len(self._data))
        raw = self.take(length, name)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            msg = f"{self._record}.{name}: invalid UTF-8"
            raise DecodeError(msg, record=self._record, length=len(self._data)) from exc

    def trailing(self) -> int:
        """Bytes after the last field up to the last non-zero byte."""
        return len(self._data[self.offset:].rstrip(b"\x00"))


def _write_field(out: bytearray, spec: FieldSpec, value: Any) -> None:
    ftype = spec.type
    try:
        if ftype in _INT_FORMATS:
            out += _INT_FORMATS[ftype].pack(int(value))
        elif ftype is FieldType.BOOL:
            out.append(1 if value else 0)
        elif ftype is FieldType.PUBKEY:
            out += _pubkey_bytes(value)
        elif ftype is FieldType.STRING:
            raw = str(value).encode("utf-8")
            out += _INT_FORMATS[FieldType.U32].pack(len(raw))
            out += raw
        elif ftype is FieldType.OPTION_U8:
            if value is None:
                out.append(0)
            else:
                out += bytes((1, int(value)))
        elif ftype is FieldType.OPTION_PUBKEY:
            if value is None:
                out.append(0)
            else:
                out.append(1)
                out += _pubkey_bytes(value)
        else:
            msg = f"Unsupported field type: {ftype}"
            raise ValueError(msg)
    except struct.error as exc:
        msg = f"Field '{spec.name}' value {value!r} out of range for {ftype.value}"
        raise ValueError(msg) from exc


def _pubkey_bytes(value: Any) -> bytes:
    if isinstance(value, Pubkey):
        return bytes(value)
    return bytes(Pubkey.from_string(str(value)))


def read_record(
    schema: RecordSchema,
    data: bytes,
    *,
    strict: bool = False,
) -> tuple[dict[str, Any], int]:
    """Decode ``data`` with ``schema``.

    Returns:
        (field values, count of unknown non-zero trailing bytes)
    """
    record = schema.kind
    reader = _Reader(bytes(data), record)
    tag = reader.take(TAG_SIZE, "tag")
    if strict and tag != schema.tag:
        msg = f"{record} record has unexpected type tag {tag.hex()}"
        raise DecodeError(msg, record=record, length=len(data))

    values = {spec.name: reader.read(spec) for spec in schema.fields}

    trailing = reader.trailing()
    if trailing:
        if strict:
            msg = f"{record} record has {trailing} unknown trailing bytes"
            raise TrailingDataError(
                msg, record=record, length=len(data), trailing_bytes=trailing,
            )
        logger.warning(
            "codec.trailing_data",
            record=record,
            generation=schema.generation.value,
            length=len(data),
            trailing_bytes=trailing,
        )
    return values, trailing


def write_record(schema: RecordSchema, values: Mapping[str, Any]) -> bytes:
    """Encode ``values`` with ``schema``, zero-padded to the allocated size."""
    out = bytearray(schema.tag)
    for spec in schema.fields:
        if spec.name not in values:
            msg = f"Missing field '{spec.name}' for {schema.kind} ({schema.generation.value})"
            raise ValueError(msg)
        _write_field(out, spec, values[spec.name])
    if len(out) < schema.account_size:
        out += bytes(schema.account_size - len(out))
    return bytes(out)


# ------------------------------------------------------------------
# Typed records
# ------------------------------------------------------------------


def _enum_value(enum_cls: Any, raw: int, record: str, field: str, length: int) -> Any:
    try:
        return enum_cls(raw)
    except ValueError as exc:
        msg = f"{record}.{field}: unknown value {raw}"
        raise DecodeError(msg, record=record, length=length) from exc


def decode_config(data: bytes, *, strict: bool = False) -> MarketConfig:
    schema = schema_for("config", len(data))
    values, trailing = read_record(schema, data, strict=strict)
    values.setdefault("referrer_fee_bps", 0)
    return MarketConfig(**values, generation=schema.generation, trailing_bytes=trailing)


def decode_round(data: bytes, *, strict: bool = False) -> Round:
    """Decode a Round account.

    Legacy records carry no betting-close time and no weighted pools:
    betting closes at ``end_time`` and the weighted pools equal the raw ones.
    """
    schema = schema_for("round", len(data))
    values, trailing = read_record(schema, data, strict=strict)
    values.setdefault("betting_end_time", values["end_time"])
    values.setdefault("short_weighted_pool", values["short_pool"])
    values.setdefault("long_weighted_pool", values["long_pool"])
    values["status"] = _enum_value(RoundStatus, values["status"], "round", "status", len(data))
    if values["winning_side"] is not None:
        values["winning_side"] = _enum_value(
            Side, values["winning_side"], "round", "winning_side", len(data),
        )
    return Round(**values, generation=schema.generation, trailing_bytes=trailing)


def decode_bet(data: bytes, *, strict: bool = False) -> Bet:
    schema = schema_for("bet", len(data))
    values, trailing = read_record(schema, data, strict=strict)
    values.setdefault("original_amount", values["amount"])
    values.setdefault("bet_time", 0)
    values.setdefault("weight", 100)
    values.setdefault("referrer", None)
    values["side"] = _enum_value(Side, values["side"], "bet", "side", len(data))
    return Bet(**values, generation=schema.generation, trailing_bytes=trailing)


def _encode_model(kind: str, generation: SchemaGeneration, values: dict[str, Any]) -> bytes:
    return write_record(SCHEMAS[kind][generation], values)


def encode_config(config: MarketConfig) -> bytes:
    return _encode_model("config", config.generation, config.model_dump())


def encode_round(round_: Round) -> bytes:
    values = round_.model_dump()
    values["status"] = int(round_.status)
    values["winning_side"] = None if round_.winning_side is None else int(round_.winning_side)
    return _encode_model("round", round_.generation, values)


def encode_bet(bet: Bet) -> bytes:
    values = bet.model_dump()
    values["side"] = int(bet.side)
    return _encode_model("bet", bet.generation, values)


def identify_account(data: bytes) -> str | None:
    """Map a record's type tag to "config", "round" or "bet"; None if unknown."""
    if len(data) < TAG_SIZE:
        return None
    return TAG_TO_KIND.get(bytes(data[:TAG_SIZE]))


_DECODERS = {
    "config": decode_config,
    "round": decode_round,
    "bet": decode_bet,
}


def decode_account(data: bytes, *, strict: bool = False) -> MarketConfig | Round | Bet:
    """Decode any market account, routed by its type tag."""
    kind = identify_account(data)
    if kind is None:
        msg = f"Unrecognized account type tag ({len(data)} bytes)"
        raise DecodeError(msg, length=len(data))
    return _DECODERS[kind](data, strict=strict)


# ------------------------------------------------------------------
# Instructions
# ------------------------------------------------------------------


def encode_instruction(kind: str, params: Mapping[str, Any] | None = None) -> bytes:
    """Discriminator followed by tightly packed parameters in declared order."""
    if kind not in DISCRIMINATORS:
        msg = f"Unknown instruction: {kind}"
        raise ValueError(msg)
    params = params or {}
    out = bytearray(DISCRIMINATORS[kind])
    for spec in INSTRUCTION_PARAMS[kind]:
        if spec.name not in params:
            msg = f"Missing parameter '{spec.name}' for {kind}"
            raise ValueError(msg)
        _write_field(out, spec, params[spec.name])
    return bytes(out)
