"""Indicator calculation and caching."""

from .cache import IndicatorCache
from .calculator import (
    IndicatorAlert,
    IndicatorEngine,
    IndicatorSnapshot,
    bars_to_frame,
    rsi_series,
)

__all__ = [
    "IndicatorAlert",
    "IndicatorCache",
    "IndicatorEngine",
    "IndicatorSnapshot",
    "bars_to_frame",
    "rsi_series",
]
