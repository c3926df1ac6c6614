"""Random asset draw with a cooldown on recently used assets."""

from __future__ import annotations

import random
from collections.abc import Iterable

from roundkeeper.config.loader import ConfigError
from roundkeeper.config.settings import AssetSpec
from roundkeeper.core.logging import get_logger

logger = get_logger(__name__)


def choose_asset(
    catalog: list[AssetSpec],
    recent_symbols: Iterable[str],
    rng: random.Random | None = None,
) -> AssetSpec:
    """Pick an asset not used in the recent rounds.

    Falls back to the full catalog when every asset is cooling down.
    """
    if not catalog:
        msg = "Asset catalog is empty"
        raise ConfigError(msg)
    rng = rng or random.Random()
    cooling = {s.upper() for s in recent_symbols}
    candidates = [a for a in catalog if a.symbol not in cooling]
    if not candidates:
        logger.info("asset_selector.cooldown_exhausted", cooling=sorted(cooling))
        candidates = list(catalog)
    choice = rng.choice(candidates)
    logger.debug(
        "asset_selector.chosen",
        symbol=choice.symbol,
        candidates=len(candidates),
        cooling=len(cooling),
    )
    return choice
