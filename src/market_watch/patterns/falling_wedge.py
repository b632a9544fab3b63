"""Falling wedge detection."""

import logging
from datetime import datetime
from itertools import combinations, product
from typing import List, Optional

from market_watch.config import FallingWedgeConfig
from market_watch.models import PivotPoint, PriceBar
from market_watch.patterns.base import PatternDetector, component, hours_between, to_point
from market_watch.patterns.models import ComponentStage, FallingWedgePattern, Thesis

logger = logging.getLogger(__name__)


# Pair enumeration is quadratic per line and the two lines are crossed,
# so the wedge search uses a tighter pivot bound than MAX_PIVOTS.
WEDGE_MAX_PIVOTS = 25
IDEAL_DURATION_HOURS = 240.0  # 10 days
TOUCH_TOLERANCE = 0.01

F, B, T = ComponentStage.FORMATION, ComponentStage.BREAKOUT, ComponentStage.TARGET


def new_thesis() -> Thesis:
    """Thesis components for a falling wedge, in order."""
    return Thesis(
        breakout_key="upper_trendline_break",
        components=[
            component("downtrend_established", "Downtrend Established", "Upper trend line slopes down", F, 10, True),
            component("converging_trend_lines", "Converging Trend Lines", "Trend lines converge", F, 10, True),
            component("minimum_touch_points", "Minimum Touch Points", "Enough pivots touch the trend lines", F, 10, True),
            component("volume_decline", "Volume Decline", "Volume contracts through the wedge", F, 10),
            component("upper_trendline_break", "Upper Trend Line Break", "Price trades above the upper line", B, 15, True),
            component("breakout_volume", "Breakout Volume", "Breakout on heavy volume", B, 10),
            component("close_above_trendline", "Close Above Trend Line", "Bar closes above the upper line", B, 10),
            component("partial_target_1", "Partial Target 1", "50% of the measured move reached", T, 5),
            component("partial_target_2", "Partial Target 2", "75% of the measured move reached", T, 5),
            component("full_target", "Full Target", "Measured move target reached", T, 15),
        ],
    )


def volume_profile(bars: List[PriceBar], start: datetime, end: datetime, decrease_ratio: float = 0.8) -> str:
    """Compare late to early volume inside the pattern.

    Returns "decreasing" below decrease_ratio, "increasing" above 1.2,
    otherwise "stable".
    """
    inside = [b for b in bars if start <= b.timestamp <= end]
    if len(inside) < 2:
        return "stable"
    half = len(inside) // 2
    early = sum(b.volume for b in inside[:half]) / half
    late = sum(b.volume for b in inside[half:]) / (len(inside) - half)
    if early <= 0:
        return "stable"
    ratio = late / early
    if ratio < decrease_ratio:
        return "decreasing"
    if ratio > 1.2:
        return "increasing"
    return "stable"


class FallingWedgeDetector(PatternDetector):
    """Finds falling wedges from pairs of high and low pivots.

    Each pair of highs defines a candidate upper line and each pair of lows
    a candidate lower line; every combination of the two is validated.
    """

    name = "falling wedge"

    def __init__(self, config: Optional[FallingWedgeConfig] = None):
        super().__init__(config or FallingWedgeConfig())

    def search(self, symbol: str, bars: List[PriceBar], highs: List[PivotPoint],
               lows: List[PivotPoint], now: datetime) -> List[FallingWedgePattern]:
        cfg = self.config
        highs = highs[-WEDGE_MAX_PIVOTS:]
        lows = lows[-WEDGE_MAX_PIVOTS:]

        # Only pairs that can possibly form each line survive to the cross product
        uppers = [(a, b) for a, b in combinations(highs, 2)
                  if b.price < a.price and hours_between(a.timestamp, b.timestamp) <= cfg.max_duration_hours]
        lowers = [(a, b) for a, b in combinations(lows, 2)
                  if b.price > a.price and hours_between(a.timestamp, b.timestamp) <= cfg.max_duration_hours]

        found = []
        for (u1, u2), (l1, l2) in product(uppers, lowers):
            pattern = self.evaluate(symbol, u1, u2, l1, l2, bars, now, highs=highs, lows=lows)
            if pattern is not None:
                found.append(pattern)
        return found

    def evaluate(
        self,
        symbol: str,
        upper_start: PivotPoint,
        upper_end: PivotPoint,
        lower_start: PivotPoint,
        lower_end: PivotPoint,
        bars: List[PriceBar],
        now: datetime,
        highs: Optional[List[PivotPoint]] = None,
        lows: Optional[List[PivotPoint]] = None,
    ) -> Optional[FallingWedgePattern]:
        """Validate two trend lines and build the pattern if they qualify."""
        cfg = self.config

        upper_hours = hours_between(upper_start.timestamp, upper_end.timestamp)
        lower_hours = hours_between(lower_start.timestamp, lower_end.timestamp)
        if upper_hours <= 0 or lower_hours <= 0:
            return None

        upper_slope = (upper_end.price - upper_start.price) / upper_hours
        lower_slope = (lower_end.price - lower_start.price) / lower_hours
        if not (upper_slope < 0 and lower_slope > 0 and abs(upper_slope) > abs(lower_slope)):
            return None

        start = min(upper_start.timestamp, lower_start.timestamp)
        end = max(upper_end.timestamp, lower_end.timestamp)
        duration = hours_between(start, end)
        if not cfg.min_duration_hours <= duration <= cfg.max_duration_hours:
            return None

        def upper_at(when: datetime) -> float:
            return upper_start.price + upper_slope * hours_between(upper_start.timestamp, when)

        def lower_at(when: datetime) -> float:
            return lower_start.price + lower_slope * hours_between(lower_start.timestamp, when)

        start_width = upper_at(start) - lower_at(start)
        end_width = upper_at(end) - lower_at(end)
        if start_width <= 0 or end_width <= 0:
            return None

        convergence = (start_width - end_width) / start_width
        if not cfg.min_convergence <= convergence <= cfg.max_convergence:
            return None

        max_high = max(upper_start.price, upper_end.price)
        min_low = min(lower_start.price, lower_end.price)
        height = (max_high - min_low) / max_high
        if height < cfg.min_wedge_height:
            return None

        breakout_level = upper_at(end)
        pattern_height = max_high - min_low

        pattern = FallingWedgePattern(
            symbol=symbol,
            upper_start=to_point("upper_start", upper_start, bars),
            upper_end=to_point("upper_end", upper_end, bars),
            lower_start=to_point("lower_start", lower_start, bars),
            lower_end=to_point("lower_end", lower_end, bars),
            upper_slope=upper_slope,
            lower_slope=lower_slope,
            convergence_percent=convergence * 100,
            height_percent=height * 100,
            pattern_height=pattern_height,
            breakout_level=breakout_level,
            target_price=breakout_level + pattern_height,
            volume_profile=volume_profile(bars, start, end, cfg.volume_decrease_ratio),
            duration_hours=duration,
            start_time=start,
            end_time=end,
            thesis=new_thesis(),
            detected_at=now,
            last_updated=now,
        )
        touches = self.count_touches(pattern, highs or [upper_start, upper_end], lows or [lower_start, lower_end])
        self.evaluate_initial_thesis(pattern, touches, now)
        pattern.quality_score = self.quality(pattern)
        return pattern

    @staticmethod
    def count_touches(pattern: FallingWedgePattern, highs: List[PivotPoint], lows: List[PivotPoint]) -> int:
        """Pivots inside the pattern lying within 1% of their trend line."""
        touches = 0
        for pivot in highs:
            if pattern.start_time <= pivot.timestamp <= pattern.end_time:
                line = pattern.upper_line_at(pivot.timestamp)
                if line > 0 and abs(pivot.price - line) / line <= TOUCH_TOLERANCE:
                    touches += 1
        for pivot in lows:
            if pattern.start_time <= pivot.timestamp <= pattern.end_time:
                line = pattern.lower_line_at(pivot.timestamp)
                if line > 0 and abs(pivot.price - line) / line <= TOUCH_TOLERANCE:
                    touches += 1
        return touches

    def evaluate_initial_thesis(self, pattern: FallingWedgePattern, touches: int, now: datetime) -> None:
        """Complete the formation components that hold at detection time."""
        thesis = pattern.thesis

        thesis.component("downtrend_established").complete(pattern.upper_end.timestamp, 90.0, [
            f"Upper line falls {abs(pattern.upper_slope):.4f}/hour",
            f"From ${pattern.upper_start.price:.2f} to ${pattern.upper_end.price:.2f}",
        ])
        thesis.component("converging_trend_lines").complete(pattern.end_time, 85.0, [
            f"Convergence {pattern.convergence_percent:.1f}%",
            f"Slopes: upper {pattern.upper_slope:.4f}, lower {pattern.lower_slope:.4f}",
        ])
        if touches >= self.config.min_touch_points:
            thesis.component("minimum_touch_points").complete(pattern.end_time, 80.0, [
                f"{touches} pivots touch the trend lines",
            ])
        if pattern.volume_profile == "decreasing":
            thesis.component("volume_decline").complete(pattern.end_time, 75.0, [
                "Volume decreasing through the wedge",
            ])
        thesis.advance_phase()

    @staticmethod
    def quality(pattern: FallingWedgePattern) -> float:
        """Pattern quality 0-100.

        convergence (25) + volume profile (20) + duration (15, best at ten days)
        + height (20) + slope difference (20).
        """
        score = min(25.0, pattern.convergence_percent * 2.5)
        score += {"decreasing": 20.0, "stable": 10.0, "increasing": 5.0}.get(pattern.volume_profile, 0.0)

        deviation = abs(pattern.duration_hours - IDEAL_DURATION_HOURS) / IDEAL_DURATION_HOURS
        score += max(0.0, 15.0 - deviation * 15.0)

        if pattern.breakout_level > 0:
            score += min(20.0, pattern.pattern_height / pattern.breakout_level * 100 * 2)
        score += min(20.0, abs(pattern.upper_slope - pattern.lower_slope) * 100)
        return min(100.0, score)
