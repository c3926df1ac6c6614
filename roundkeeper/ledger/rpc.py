"""Minimal async JSON-RPC client for the ledger node.

Only the handful of calls the keeper needs, over a shared httpx client.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
from typing import Any

import httpx

from roundkeeper.core.errors import LedgerRpcError, SubmissionError
from roundkeeper.core.logging import get_logger

logger = get_logger(__name__)

# getMultipleAccounts accepts at most 100 keys per call
_MAX_MULTIPLE_ACCOUNTS = 100

# confirmation statuses that satisfy each commitment level
_SATISFIES: dict[str, tuple[str, ...]] = {
    "processed": ("processed", "confirmed", "finalized"),
    "confirmed": ("confirmed", "finalized"),
    "finalized": ("finalized",),
}


def _is_program_error(error: dict[str, Any]) -> bool:
    """Preflight rejected the transaction because an instruction failed."""
    data = error.get("data") or {}
    err = data.get("err") if isinstance(data, dict) else None
    return isinstance(err, dict) and "InstructionError" in err


class LedgerRpcClient:
    """Async client for the handful of ledger RPC methods the keeper uses."""

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._commitment = commitment
        self._timeout = timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    @property
    def commitment(self) -> str:
        return self._commitment

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> LedgerRpcClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # JSON-RPC core
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        client = await self._get_client()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await client.post(self._rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            retryable = status == 429 or status >= 500
            msg = f"{method}: HTTP {status}"
            raise LedgerRpcError(msg, retryable=retryable) from exc
        except (httpx.TransportError, ValueError) as exc:
            msg = f"{method}: {type(exc).__name__}: {exc}"
            raise LedgerRpcError(msg, retryable=True) from exc

        if "error" in data:
            error = data["error"] or {}
            if method == "sendTransaction":
                msg = f"sendTransaction rejected: {error.get('message', error)}"
                raise SubmissionError(msg, retryable=not _is_program_error(error))
            msg = f"{method}: RPC error {error.get('code')}: {error.get('message')}"
            raise LedgerRpcError(msg, retryable=False)
        return data.get("result")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account_data(self, address: str) -> bytes | None:
        """Raw account bytes, or None when the account does not exist."""
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self._commitment}],
        )
        value = (result or {}).get("value")
        return _decode_account_value(value)

    async def get_multiple_accounts(self, addresses: list[str]) -> list[bytes | None]:
        out: list[bytes | None] = []
        for start in range(0, len(addresses), _MAX_MULTIPLE_ACCOUNTS):
            chunk = addresses[start:start + _MAX_MULTIPLE_ACCOUNTS]
            result = await self._rpc(
                "getMultipleAccounts",
                [chunk, {"encoding": "base64", "commitment": self._commitment}],
            )
            values = (result or {}).get("value") or [None] * len(chunk)
            out.extend(_decode_account_value(v) for v in values)
        return out

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc("getLatestBlockhash", [{"commitment": self._commitment}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as exc:
            msg = f"getLatestBlockhash: unexpected result {result!r}"
            raise LedgerRpcError(msg, retryable=True) from exc

    async def get_signature_statuses(self, signatures: list[str]) -> list[dict[str, Any] | None]:
        result = await self._rpc(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": False}],
        )
        return list((result or {}).get("value") or [None] * len(signatures))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_transaction(self, raw_tx: bytes) -> str:
        """Submit a signed transaction, returning its signature."""
        encoded = base64.b64encode(raw_tx).decode("ascii")
        signature = await self._rpc(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self._commitment}],
        )
        if not isinstance(signature, str):
            msg = f"sendTransaction returned no signature: {signature!r}"
            raise SubmissionError(msg)
        return signature

    async def confirm_transaction(
        self,
        signature: str,
        *,
        timeout_seconds: float = 60.0,
        poll_seconds: float = 2.0,
    ) -> None:
        """Poll until ``signature`` reaches the configured commitment.

        Raises:
            SubmissionError: The transaction failed on-chain (not retryable)
                or was not seen confirmed within ``timeout_seconds``.
        """
        wanted = _SATISFIES.get(self._commitment, ("confirmed", "finalized"))
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + timeout_seconds
        while True:
            statuses = await self.get_signature_statuses([signature])
            status = statuses[0] if statuses else None
            if status is not None:
                if status.get("err") is not None:
                    msg = f"transaction {signature} failed: {status['err']}"
                    raise SubmissionError(msg, retryable=False, signature=signature)
                if status.get("confirmationStatus") in wanted:
                    return
            if loop.time() >= give_up_at:
                # it may still land; the keeper re-reads state instead of resending
                msg = f"transaction {signature} not confirmed after {timeout_seconds}s"
                raise SubmissionError(msg, retryable=False, signature=signature)
            await asyncio.sleep(poll_seconds)


def _decode_account_value(value: dict[str, Any] | None) -> bytes | None:
    if not value:
        return None
    data = value.get("data")
    if isinstance(data, list) and data:
        return base64.b64decode(data[0])
    msg = f"unexpected account data encoding: {type(data).__name__}"
    raise LedgerRpcError(msg, retryable=False)
