"""Early-bet weight tiers.

The betting window is split into four equal bands. Stakes placed earlier
carry a larger multiplier (x100) in the weighted pools.
"""

from __future__ import annotations

WEIGHT_TIERS: tuple[int, ...] = (150, 130, 115, 100)
BASE_WEIGHT = 100


def weight_for_elapsed(elapsed_seconds: int, betting_window_seconds: int) -> int:
    """Multiplier for a stake placed ``elapsed_seconds`` after round start.

    Negative elapsed time falls in the first band; anything at or past the
    end of the window falls in the last.
    """
    if betting_window_seconds <= 0:
        msg = f"betting_window_seconds must be > 0, got {betting_window_seconds}"
        raise ValueError(msg)
    if elapsed_seconds < 0:
        return WEIGHT_TIERS[0]
    band = elapsed_seconds * len(WEIGHT_TIERS) // betting_window_seconds
    return WEIGHT_TIERS[min(band, len(WEIGHT_TIERS) - 1)]


def weighted_amount(amount: int, weight: int) -> int:
    return amount * weight // BASE_WEIGHT
