"""Shared machinery for geometric pattern detectors."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from market_watch.levels.pivots import PivotExtractor
from market_watch.models import PivotPoint, PriceBar
from market_watch.patterns.models import ComponentStage, GeometricPattern, PatternPoint, ThesisComponent

logger = logging.getLogger(__name__)


# Candidate enumeration is O(n^2) for wedges and O(n^3) for head-and-shoulders,
# so only the most recent pivots of each kind are searched.
MAX_PIVOTS = 60
VOLUME_RATIO_PERIOD = 20


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def volume_ratio_at(bars: List[PriceBar], index: int, period: int = VOLUME_RATIO_PERIOD) -> float:
    """Bar volume against the mean of the preceding period - 1 bars.

    Returns 1.0 when there is not enough history before the bar.
    """
    if index < period or index >= len(bars):
        return 1.0
    previous = bars[index - period + 1:index]
    avg = sum(b.volume for b in previous) / len(previous)
    if avg <= 0:
        return 1.0
    return bars[index].volume / avg


def to_point(label: str, pivot: PivotPoint, bars: List[PriceBar]) -> PatternPoint:
    """Convert a pivot to a labelled pattern vertex."""
    return PatternPoint(
        label=label,
        timestamp=pivot.timestamp,
        price=pivot.price,
        volume=pivot.volume,
        volume_ratio=volume_ratio_at(bars, pivot.index),
        index=pivot.index,
    )


def recent(pivots: List[PivotPoint], limit: int = MAX_PIVOTS) -> List[PivotPoint]:
    """The most recent `limit` pivots, still in time order."""
    return pivots[-limit:] if len(pivots) > limit else pivots


def component(key: str, name: str, description: str, stage: ComponentStage,
              weight: float, required: bool = False) -> ThesisComponent:
    return ThesisComponent(key=key, name=name, description=description,
                           stage=stage, weight=weight, required=required)


class PatternDetector(ABC):
    """Base class: windowing, pivot extraction and best-candidate selection.

    Subclasses implement `search`, returning every accepted candidate.
    """

    name = "pattern"

    def __init__(self, config):
        self.config = config
        self.extractor = PivotExtractor(strength=config.pivot_strength)

    def window(self, bars: List[PriceBar]) -> List[PriceBar]:
        """Bars within the lookback period of the last bar."""
        if not bars:
            return []
        start = bars[-1].timestamp - timedelta(days=self.config.lookback_days)
        return [b for b in bars if b.timestamp >= start]

    def detect(self, symbol: str, bars: List[PriceBar], now: Optional[datetime] = None) -> Optional[GeometricPattern]:
        """Find the best pattern in the bar window.

        Args:
            symbol: Instrument symbol
            bars: Bars in ascending order
            now: Detection time, defaults to the last bar's timestamp

        Returns:
            Highest quality pattern, or None if too little data or no match
        """
        window = self.window(bars)
        if len(window) < self.config.min_bars:
            logger.debug(f"{symbol}: {len(window)} bars, need {self.config.min_bars} for {self.name}")
            return None

        now = now or window[-1].timestamp
        highs, lows = self.extractor.extract(window)
        candidates = self.search(symbol, window, recent(highs), recent(lows), now)
        if not candidates:
            logger.debug(f"{symbol}: no {self.name} found")
            return None

        best = max(candidates, key=lambda p: (p.quality_score, p.duration_hours))
        logger.info(f"🔍 {symbol}: {self.name} detected, quality {best.quality_score:.1f}")
        return best

    @abstractmethod
    def search(self, symbol: str, bars: List[PriceBar], highs: List[PivotPoint],
               lows: List[PivotPoint], now: datetime) -> List[GeometricPattern]:
        """Every accepted candidate built from the given pivots."""
        pass
