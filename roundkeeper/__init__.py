"""Round keeper for the left/right candle wagering program."""

__version__ = "0.4.0"
