"""Build, sign, send and confirm one transaction per batch of operations."""

from __future__ import annotations

import json
import re

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from roundkeeper.config.loader import ConfigError
from roundkeeper.core.logging import get_logger
from roundkeeper.ledger.instructions import Operation
from roundkeeper.ledger.rpc import LedgerRpcClient

logger = get_logger(__name__)

# a 64-byte secret key in base58; the SDK decoder aborts on anything else
_BASE58_SECRET = re.compile(r"[1-9A-HJ-NP-Za-km-z]{86,88}")


def load_keypair(secret: str) -> Keypair:
    """Parse a keypair from a JSON byte array or a base58 secret key."""
    secret = secret.strip()
    # never echo the secret itself
    msg = "Admin keypair is not a JSON byte array or base58 secret key"
    try:
        if secret.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        if _BASE58_SECRET.fullmatch(secret):
            return Keypair.from_base58_string(secret)
    except (ValueError, TypeError) as exc:
        raise ConfigError(msg) from exc
    raise ConfigError(msg)


class TransactionSender:
    """Signs operations with the admin keypair and submits them."""

    def __init__(
        self,
        rpc: LedgerRpcClient,
        keypair: Keypair,
        *,
        confirm_timeout_seconds: float = 60.0,
        confirm_poll_seconds: float = 2.0,
    ) -> None:
        self._rpc = rpc
        self._keypair = keypair
        self._confirm_timeout = confirm_timeout_seconds
        self._confirm_poll = confirm_poll_seconds

    @property
    def payer(self) -> str:
        return str(self._keypair.pubkey())

    def build(self, operations: list[Operation], blockhash: str) -> bytes:
        payer = self._keypair.pubkey()
        recent = Hash.from_string(blockhash)
        message = Message.new_with_blockhash(
            [op.instruction for op in operations], payer, recent,
        )
        tx = Transaction([self._keypair], message, recent)
        return bytes(tx)

    async def send(self, operations: list[Operation]) -> str:
        """Send ``operations`` atomically in one transaction and confirm it.

        Returns:
            The transaction signature.
        """
        if not operations:
            msg = "send() needs at least one operation"
            raise ValueError(msg)
        blockhash = await self._rpc.get_latest_blockhash()
        raw = self.build(operations, blockhash)
        signature = await self._rpc.send_transaction(raw)
        logger.info(
            "sender.tx_sent",
            signature=signature,
            operations=[op.key for op in operations],
        )
        await self._rpc.confirm_transaction(
            signature,
            timeout_seconds=self._confirm_timeout,
            poll_seconds=self._confirm_poll,
        )
        logger.info("sender.tx_confirmed", signature=signature, commitment=self._rpc.commitment)
        return signature
