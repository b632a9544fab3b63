"""Pivot (swing high / swing low) extraction."""

from typing import List, Tuple

from market_watch.models import PivotKind, PivotPoint, PriceBar


class PivotExtractor:
    """Finds local price extrema over a symmetric neighbourhood.

    Bar i is a pivot high when its high is strictly greater than every high
    in the k bars on either side. Equal highs disqualify, so a flat top
    produces no pivot. Pivot lows mirror this on lows.
    """

    def __init__(self, strength: int = 5):
        """Initialize extractor.

        Args:
            strength: Number of neighbours k checked on each side
        """
        if strength < 1:
            raise ValueError("strength must be >= 1")
        self.strength = strength

    def extract(self, bars: List[PriceBar]) -> Tuple[List[PivotPoint], List[PivotPoint]]:
        """Scan bars for pivots.

        Args:
            bars: Bars in ascending time order

        Returns:
            (pivot_highs, pivot_lows), each in time order
        """
        k = self.strength
        highs: List[PivotPoint] = []
        lows: List[PivotPoint] = []

        for i in range(k, len(bars) - k):
            bar = bars[i]
            neighbours = bars[i - k:i] + bars[i + 1:i + k + 1]

            is_high = all(bar.high > other.high for other in neighbours)
            is_low = all(bar.low < other.low for other in neighbours)
            if is_high and is_low:
                # Outside bar engulfing the whole window: ambiguous, skip
                continue
            if is_high:
                highs.append(self._pivot(bar, i, PivotKind.HIGH, bar.high))
            elif is_low:
                lows.append(self._pivot(bar, i, PivotKind.LOW, bar.low))

        return highs, lows

    def extract_all(self, bars: List[PriceBar]) -> List[PivotPoint]:
        """Pivot highs and lows merged in time order."""
        highs, lows = self.extract(bars)
        return sorted(highs + lows, key=lambda p: (p.timestamp, p.kind.value))

    def _pivot(self, bar: PriceBar, index: int, kind: PivotKind, price: float) -> PivotPoint:
        return PivotPoint(
            symbol=bar.symbol,
            timestamp=bar.timestamp,
            price=price,
            kind=kind,
            window_strength=self.strength,
            volume=bar.volume,
            index=index,
        )
