"""Pyth Hermes price client.

One HTTP attempt per ``fetch_price`` call; the caller owns retry policy.
Prices are normalized to integers with 8 implied decimals, the unit the
market program stores start and end prices in.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import httpx

from roundkeeper.core.errors import OracleError, OracleNoDataError
from roundkeeper.core.logging import get_logger
from roundkeeper.models.reports import PRICE_DECIMALS, FixedPointPrice

logger = get_logger(__name__)

_LATEST_PATH = "/v2/updates/price/latest"


def normalize_price(mantissa: Any, exponent: int) -> int:
    """``round(mantissa * 10**(8 + exponent))``, rounding half up.

    Raises:
        OracleNoDataError: mantissa is not a finite number.
    """
    try:
        value = Decimal(str(mantissa))
    except (InvalidOperation, ValueError) as exc:
        msg = f"unparseable price mantissa: {mantissa!r}"
        raise OracleNoDataError(msg) from exc
    if not value.is_finite():
        msg = f"non-finite price mantissa: {mantissa!r}"
        raise OracleNoDataError(msg)
    scaled = value.scaleb(PRICE_DECIMALS + int(exponent))
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class PythPriceOracle:
    """Fetches the latest price for a Pyth feed from Hermes."""

    def __init__(
        self,
        hermes_url: str = "https://hermes.pyth.network",
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._hermes_url = hermes_url.rstrip("/")
        self._timeout = timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def fetch_price(self, feed_id: str) -> FixedPointPrice:
        """Latest price for ``feed_id`` (with or without the 0x prefix).

        Raises:
            OracleError: Transport failure, timeout, 429 or 5xx (retryable),
                or any other HTTP error (not retryable).
            OracleNoDataError: The feed answered without a usable price.
        """
        bare_id = feed_id.removeprefix("0x")
        client = await self._get_client()
        try:
            resp = await client.get(
                f"{self._hermes_url}{_LATEST_PATH}",
                params={"ids[]": bare_id},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            retryable = status == 429 or status >= 500
            msg = f"hermes HTTP {status} for feed {bare_id[:12]}"
            raise OracleError(msg, retryable=retryable) from exc
        except httpx.TransportError as exc:
            msg = f"hermes transport error: {type(exc).__name__}: {exc}"
            raise OracleError(msg, retryable=True) from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            msg = "hermes returned non-JSON body"
            raise OracleNoDataError(msg) from exc

        price = self._parse(payload, bare_id)
        logger.debug(
            "oracle.price_fetched",
            feed_id=bare_id[:12],
            value=price.value,
            confidence=price.confidence,
            publish_time=price.publish_time,
        )
        return price

    @staticmethod
    def _parse(payload: Any, bare_id: str) -> FixedPointPrice:
        try:
            entry = payload["parsed"][0]["price"]
            mantissa = entry["price"]
            conf = entry["conf"]
            expo = int(entry["expo"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            msg = f"no parsed price for feed {bare_id[:12]}"
            raise OracleNoDataError(msg) from exc

        value = normalize_price(mantissa, expo)
        confidence = normalize_price(conf, expo)
        if value <= 0:
            msg = f"non-positive price {value} for feed {bare_id[:12]}"
            raise OracleNoDataError(msg)
        if Decimal(str(conf)).is_zero():
            msg = f"zero confidence for feed {bare_id[:12]}"
            raise OracleNoDataError(msg)
        return FixedPointPrice(
            feed_id=bare_id,
            value=value,
            confidence=confidence,
            publish_time=int(entry.get("publish_time") or 0),
        )
