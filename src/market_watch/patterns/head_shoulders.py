"""Inverse head-and-shoulders detection."""

import logging
from datetime import datetime
from itertools import combinations
from typing import List, Optional

from market_watch.config import HeadShouldersConfig
from market_watch.models import PivotPoint, PriceBar
from market_watch.patterns.base import PatternDetector, component, hours_between, to_point
from market_watch.patterns.models import (
    ComponentStage,
    InverseHeadShouldersPattern,
    Thesis,
)

logger = logging.getLogger(__name__)


IDEAL_DURATION_HOURS = 168.0  # 1 week
HEAD_LOWER_LOW_PERCENT = 3.0

F, B, T = ComponentStage.FORMATION, ComponentStage.BREAKOUT, ComponentStage.TARGET


def new_thesis() -> Thesis:
    """Thesis components for an inverse head-and-shoulders, in order."""
    return Thesis(
        breakout_key="neckline_breakout",
        components=[
            component("left_shoulder_formed", "Left Shoulder Formed", "Initial low forms the left shoulder", F, 10, True),
            component("left_shoulder_volume", "Left Shoulder Volume", "Above average volume on the left shoulder", F, 5),
            component("head_formed", "Head Formed", "Lower low forms the head", F, 15, True),
            component("head_volume_spike", "Head Volume Spike", "Volume spike at the head", F, 8),
            component("head_lower_low", "Head Lower Low", "Head clearly below the left shoulder", F, 12),
            component("right_shoulder_formed", "Right Shoulder Formed", "Higher low forms the right shoulder", F, 10, True),
            component("right_shoulder_symmetry", "Right Shoulder Symmetry", "Shoulders are balanced", F, 8),
            component("right_shoulder_volume", "Right Shoulder Volume", "Above average volume on the right shoulder", F, 5),
            component("neckline_established", "Neckline Established", "Neckline drawn across the two peaks", F, 12, True),
            component("target_projected", "Target Projected", "Measured move target projected", F, 3),
            component("neckline_breakout", "Neckline Breakout", "Close above the neckline", B, 15, True),
            component("breakout_volume", "Breakout Volume", "Breakout on heavy volume", B, 10),
            component("neckline_retest", "Neckline Retest", "Pullback holds the neckline", B, 6),
            component("partial_target_1", "Partial Target 1", "50% of the measured move reached", T, 4),
            component("partial_target_2", "Partial Target 2", "75% of the measured move reached", T, 4),
            component("full_target", "Full Target", "Measured move target reached", T, 5),
        ],
    )


def symmetry_score(left_height: float, right_height: float) -> float:
    """Balance of the two shoulder heights, 0-100."""
    if left_height <= 0 or right_height <= 0:
        return 0.0
    avg = (left_height + right_height) / 2
    return max(0.0, (1 - abs(left_height - right_height) / avg) * 100)


class InverseHeadShouldersDetector(PatternDetector):
    """Finds inverse head-and-shoulders bottoms in low pivots.

    Every ordered triple of low pivots is tried as (left shoulder, head,
    right shoulder); the pivot lists are bounded by MAX_PIVOTS.
    """

    name = "inverse head and shoulders"

    def __init__(self, config: Optional[HeadShouldersConfig] = None):
        super().__init__(config or HeadShouldersConfig())

    def search(self, symbol: str, bars: List[PriceBar], highs: List[PivotPoint],
               lows: List[PivotPoint], now: datetime) -> List[InverseHeadShouldersPattern]:
        found = []
        for left, head, right in combinations(lows, 3):
            pattern = self.evaluate(symbol, left, head, right, highs, bars, now)
            if pattern is not None:
                found.append(pattern)
        return found

    def evaluate(
        self,
        symbol: str,
        left: PivotPoint,
        head: PivotPoint,
        right: PivotPoint,
        highs: List[PivotPoint],
        bars: List[PriceBar],
        now: datetime,
    ) -> Optional[InverseHeadShouldersPattern]:
        """Validate one low triple and build the pattern if it qualifies."""
        cfg = self.config

        duration = hours_between(left.timestamp, right.timestamp)
        if not cfg.min_duration_hours <= duration <= cfg.max_duration_hours:
            return None

        shallower = min(left.price, right.price)
        if shallower <= 0 or (shallower - head.price) / shallower < cfg.min_head_depth:
            return None

        if abs(left.price - right.price) / shallower > cfg.max_shoulder_asymmetry:
            return None

        left_peak = self._highest_between(highs, left.timestamp, head.timestamp)
        right_peak = self._highest_between(highs, head.timestamp, right.timestamp)
        if left_peak is None or right_peak is None:
            return None

        peak_hours = hours_between(left_peak.timestamp, right_peak.timestamp)
        if peak_hours <= 0:
            return None

        neckline = (left_peak.price + right_peak.price) / 2
        height = neckline - head.price
        if height <= 0:
            return None

        pattern = InverseHeadShouldersPattern(
            symbol=symbol,
            left_shoulder=to_point("left_shoulder", left, bars),
            head=to_point("head", head, bars),
            right_shoulder=to_point("right_shoulder", right, bars),
            left_peak=to_point("left_peak", left_peak, bars),
            right_peak=to_point("right_peak", right_peak, bars),
            neckline_level=neckline,
            neckline_slope=(right_peak.price - left_peak.price) / peak_hours,
            pattern_height=height,
            target_price=neckline + height * cfg.target_multiplier,
            symmetry_score=symmetry_score(left_peak.price - left.price, right_peak.price - right.price),
            duration_hours=duration,
            thesis=new_thesis(),
            detected_at=now,
            last_updated=now,
        )
        self.evaluate_initial_thesis(pattern, now)
        pattern.quality_score = self.quality(pattern)
        return pattern

    @staticmethod
    def _highest_between(highs: List[PivotPoint], start: datetime, end: datetime) -> Optional[PivotPoint]:
        between = [p for p in highs if start < p.timestamp < end]
        if not between:
            return None
        return max(between, key=lambda p: p.price)

    def evaluate_initial_thesis(self, pattern: InverseHeadShouldersPattern, now: datetime) -> None:
        """Complete the formation components that hold at detection time."""
        cfg = self.config
        thesis = pattern.thesis
        ls, head, rs = pattern.left_shoulder, pattern.head, pattern.right_shoulder

        thesis.component("left_shoulder_formed").complete(ls.timestamp, 95.0, [
            f"Left shoulder low at ${ls.price:.2f} on {ls.timestamp:%Y-%m-%d}",
            f"Left peak at ${pattern.left_peak.price:.2f}",
        ])
        if ls.volume_ratio > 1.0:
            thesis.component("left_shoulder_volume").complete(ls.timestamp, 70.0, [
                f"Left shoulder volume {ls.volume_ratio:.2f}x average",
            ])

        thesis.component("head_formed").complete(head.timestamp, 95.0, [
            f"Head low at ${head.price:.2f} on {head.timestamp:%Y-%m-%d}",
            "Head forms lower low than shoulders",
        ])
        if head.volume_ratio >= cfg.min_volume_increase:
            thesis.component("head_volume_spike").complete(head.timestamp, 80.0, [
                f"Head volume {head.volume_ratio:.2f}x average",
            ])

        depth = (ls.price - head.price) / ls.price * 100
        if depth >= HEAD_LOWER_LOW_PERCENT:
            thesis.component("head_lower_low").complete(head.timestamp, 90.0, [
                f"Head is {depth:.1f}% lower than left shoulder",
            ])

        thesis.component("right_shoulder_formed").complete(rs.timestamp, 95.0, [
            f"Right shoulder low at ${rs.price:.2f} on {rs.timestamp:%Y-%m-%d}",
            f"Right peak at ${pattern.right_peak.price:.2f}",
        ])
        if pattern.symmetry_score >= cfg.min_symmetry_score:
            thesis.component("right_shoulder_symmetry").complete(rs.timestamp, pattern.symmetry_score, [
                f"Shoulder symmetry score: {pattern.symmetry_score:.1f}%",
            ])
        if rs.volume_ratio > 1.0:
            thesis.component("right_shoulder_volume").complete(rs.timestamp, 70.0, [
                f"Right shoulder volume {rs.volume_ratio:.2f}x average",
            ])

        thesis.component("neckline_established").complete(now, 85.0, [
            f"Neckline level at ${pattern.neckline_level:.2f}",
            f"Neckline slope: {pattern.neckline_slope:.4f}/hour",
        ])
        thesis.component("target_projected").complete(now, 80.0, [
            f"Target price projected at ${pattern.target_price:.2f}",
            f"Pattern height: ${pattern.pattern_height:.2f}",
        ])
        thesis.advance_phase()

    @staticmethod
    def quality(pattern: InverseHeadShouldersPattern) -> float:
        """Pattern quality 0-100.

        symmetry (25) + duration (15, best at one week) + depth (20)
        + volume (15) + thesis completion (25).
        """
        score = pattern.symmetry_score / 100 * 25

        deviation = abs(pattern.duration_hours - IDEAL_DURATION_HOURS) / IDEAL_DURATION_HOURS
        score += max(0.0, 15.0 - deviation * 15.0)

        depth_percent = pattern.pattern_height / pattern.neckline_level * 100
        score += min(20.0, depth_percent * 4)

        if pattern.head.volume_ratio > 1.2:
            score += 8.0
        if pattern.left_shoulder.volume_ratio > 1.0:
            score += 3.5
        if pattern.right_shoulder.volume_ratio > 1.0:
            score += 3.5

        score += pattern.thesis.completion_percent / 100 * 25
        return min(100.0, score)

