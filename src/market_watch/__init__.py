"""
Market Watch - support/resistance, setup scoring and chart pattern tracking

Derives indicators, support/resistance levels, scored trade setups and
inverse head-and-shoulders / falling wedge theses from OHLCV bars.
"""

__version__ = "1.0.0"

from .models import (
    Confidence,
    Direction,
    LevelType,
    PivotPoint,
    PriceBar,
    SetupStatus,
    SetupType,
    SupportResistanceLevel,
    TradingSetup,
)

__all__ = [
    "Confidence",
    "Direction",
    "LevelType",
    "PivotPoint",
    "PriceBar",
    "SetupStatus",
    "SetupType",
    "SupportResistanceLevel",
    "TradingSetup",
]
