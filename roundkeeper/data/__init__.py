"""External market data: oracle price feeds."""

from __future__ import annotations

from roundkeeper.data.price_oracle import PythPriceOracle, normalize_price

__all__ = [
    "PythPriceOracle",
    "normalize_price",
]
