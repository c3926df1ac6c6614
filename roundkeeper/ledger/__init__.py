"""Ledger layer: account codec, addresses, instructions and RPC reads."""

from __future__ import annotations

from roundkeeper.ledger.addresses import AddressDeriver, derive_address
from roundkeeper.ledger.codec import (
    decode_bet,
    decode_config,
    decode_round,
    encode_bet,
    encode_config,
    encode_instruction,
    encode_round,
    identify_account,
)
from roundkeeper.ledger.instructions import InstructionBuilder, Operation
from roundkeeper.ledger.reader import LedgerReader
from roundkeeper.ledger.rpc import LedgerRpcClient

__all__ = [
    "AddressDeriver",
    "InstructionBuilder",
    "LedgerReader",
    "LedgerRpcClient",
    "Operation",
    "decode_bet",
    "decode_config",
    "decode_round",
    "derive_address",
    "encode_bet",
    "encode_config",
    "encode_instruction",
    "encode_round",
    "identify_account",
]
