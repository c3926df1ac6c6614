"""Program-derived addresses for the market's accounts."""

from __future__ import annotations

import struct
from functools import lru_cache

from solders.pubkey import Pubkey

_U64_MAX = 2**64 - 1
_U32_MAX = 2**32 - 1


def u64_le(value: int) -> bytes:
    if not 0 <= value <= _U64_MAX:
        msg = f"value out of u64 range: {value}"
        raise ValueError(msg)
    return struct.pack("<Q", value)


def u32_le(value: int) -> bytes:
    if not 0 <= value <= _U32_MAX:
        msg = f"value out of u32 range: {value}"
        raise ValueError(msg)
    return struct.pack("<I", value)


def config_seeds() -> tuple[bytes, ...]:
    return (b"config",)


def round_seeds(round_id: int) -> tuple[bytes, ...]:
    return (b"round", u64_le(round_id))


def bet_seeds(round_id: int, bet_index: int) -> tuple[bytes, ...]:
    return (b"bet", u64_le(round_id), u32_le(bet_index))


def vault_seeds(round_id: int) -> tuple[bytes, ...]:
    return (b"vault", u64_le(round_id))


@lru_cache(maxsize=4096)
def _find(program_id: str, seeds: tuple[bytes, ...]) -> tuple[str, int]:
    address, bump = Pubkey.find_program_address(list(seeds), Pubkey.from_string(program_id))
    return str(address), bump


def derive_address(program_id: str | Pubkey, seeds: tuple[bytes, ...]) -> tuple[str, int]:
    """Deterministic (address, bump) for ``seeds`` under ``program_id``.

    Memoized per (program id, seed tuple); the search itself is the SDK's.
    """
    return _find(str(program_id), tuple(bytes(s) for s in seeds))


class AddressDeriver:
    """Address book for one deployed program."""

    def __init__(self, program_id: str | Pubkey) -> None:
        self._program_id = str(program_id)
        # validate eagerly so a bad id fails at startup
        Pubkey.from_string(self._program_id)

    @property
    def program_id(self) -> str:
        return self._program_id

    def config(self) -> str:
        return derive_address(self._program_id, config_seeds())[0]

    def round(self, round_id: int) -> str:
        return derive_address(self._program_id, round_seeds(round_id))[0]

    def bet(self, round_id: int, bet_index: int) -> str:
        return derive_address(self._program_id, bet_seeds(round_id, bet_index))[0]

    def vault(self, round_id: int) -> str:
        return derive_address(self._program_id, vault_seeds(round_id))[0]
