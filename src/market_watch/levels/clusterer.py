"""Support/resistance level clustering, scoring and reconciliation.

Pivots are swept in price order into clusters, each cluster is replayed
against the full bar series to measure touches, bounces and volume, and the
resulting candidates are merged into the levels already on record.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from market_watch.config import LevelConfig
from market_watch.models import LevelType, PivotKind, PivotPoint, PriceBar, SupportResistanceLevel

logger = logging.getLogger(__name__)


def levels_overlap(a: float, b: float, tolerance_percent: float) -> bool:
    """Check whether two prices are within tolerance of each other.

    Distance is measured against the lower price, so the check is symmetric.
    """
    low = min(a, b)
    if low <= 0:
        return False
    return abs(a - b) / low * 100 <= tolerance_percent


@dataclass
class PivotCluster:
    """Pivots whose prices sit within tolerance of the cluster anchor."""
    pivots: List[PivotPoint]

    @property
    def price(self) -> float:
        return sum(p.price for p in self.pivots) / len(self.pivots)

    @property
    def level_type(self) -> LevelType:
        highs = sum(1 for p in self.pivots if p.kind == PivotKind.HIGH)
        lows = len(self.pivots) - highs
        return LevelType.RESISTANCE if highs > lows else LevelType.SUPPORT


@dataclass
class TouchStats:
    """Result of replaying the bar series against one price."""
    touch_count: int = 0
    first_touch: Optional[datetime] = None
    last_touch: Optional[datetime] = None
    avg_bounce_percent: float = 0.0
    max_bounce_percent: float = 0.0
    volume_confirmed: bool = False


@dataclass
class ReconcileResult:
    """Levels changed by a reconciliation pass."""
    levels: List[SupportResistanceLevel] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    deactivated: int = 0


class LevelClusterer:
    """Groups nearby pivots into scored support/resistance levels."""

    def __init__(self, config: Optional[LevelConfig] = None):
        self.config = config or LevelConfig()

    def cluster(self, pivots: List[PivotPoint]) -> List[PivotCluster]:
        """Sweep pivots in price order into clusters.

        A pivot joins the current cluster while it is within tolerance of
        the cluster's first (anchor) pivot. Only clusters with at least
        min_touches pivots are returned.
        """
        ordered = sorted(pivots, key=lambda p: (p.price, p.timestamp))
        tolerance = self.config.cluster_tolerance_percent
        clusters = []

        i = 0
        while i < len(ordered):
            anchor = ordered[i]
            j = i + 1
            while j < len(ordered) and anchor.price > 0 and \
                    (ordered[j].price - anchor.price) / anchor.price * 100 <= tolerance:
                j += 1
            members = ordered[i:j]
            if len(members) >= self.config.min_touches:
                clusters.append(PivotCluster(pivots=members))
            i = j

        return clusters

    def replay(self, price: float, level_type: LevelType, bars: List[PriceBar]) -> TouchStats:
        """Measure touches, bounces and volume for a price over the bar series.

        A touch starts at a bar whose close is within the penetration
        tolerance of the price; consecutive touching bars count once. The
        bounce of a touch is the best favourable excursion over the next
        bounce_window bars.
        """
        cfg = self.config
        stats = TouchStats()
        if not bars or price <= 0:
            return stats

        window = cfg.bounce_window
        touch_indices = []
        in_touch = False
        for i, bar in enumerate(bars):
            touching = abs(bar.close - price) / price * 100 <= cfg.penetration_tolerance_percent
            if touching and not in_touch:
                touch_indices.append(i)
            in_touch = touching

        if not touch_indices:
            return stats

        bounces = []
        for i in touch_indices:
            if i >= len(bars) - window:
                continue
            following = bars[i + 1:i + 1 + window]
            if level_type == LevelType.SUPPORT:
                bounce = max((b.high - price) / price * 100 for b in following)
            else:
                bounce = max((price - b.low) / price * 100 for b in following)
            if bounce > 0:
                bounces.append(bounce)

        avg_volume = sum(b.volume for b in bars) / len(bars)
        touch_volume = sum(bars[i].volume for i in touch_indices) / len(touch_indices)

        stats.touch_count = len(touch_indices)
        stats.first_touch = bars[touch_indices[0]].timestamp
        stats.last_touch = bars[touch_indices[-1]].timestamp
        if bounces:
            stats.avg_bounce_percent = sum(bounces) / len(bounces)
            stats.max_bounce_percent = max(bounces)
        stats.volume_confirmed = avg_volume > 0 and touch_volume >= avg_volume * cfg.volume_confirmation_ratio
        return stats

    @staticmethod
    def strength_score(
        touch_count: int,
        avg_bounce_percent: float,
        volume_confirmed: bool,
        first_touch: datetime,
        last_touch: datetime,
        now: datetime,
    ) -> float:
        """Score a level 0-100.

        touches (max 30, 5 each) + bounce (max 25, 2.5 per %) + volume (20)
        + age (max 15, minus 0.25 per day since first touch)
        + recency (10 within a day, 5 within a week).
        """
        touch_score = min(30.0, touch_count * 5.0)
        bounce_score = min(25.0, max(0.0, avg_bounce_percent) * 2.5)
        volume_bonus = 20.0 if volume_confirmed else 0.0

        age_days = max(0.0, (now - first_touch).total_seconds() / 86400)
        age_score = max(0.0, 15.0 - age_days * 0.25)

        since_last = now - last_touch
        if since_last <= timedelta(hours=24):
            recency_bonus = 10.0
        elif since_last <= timedelta(days=7):
            recency_bonus = 5.0
        else:
            recency_bonus = 0.0

        return max(0.0, min(100.0, touch_score + bounce_score + volume_bonus + age_score + recency_bonus))

    def detect(
        self,
        symbol: str,
        bars: List[PriceBar],
        pivots: List[PivotPoint],
        now: Optional[datetime] = None,
    ) -> List[SupportResistanceLevel]:
        """Build scored candidate levels from pivots.

        Args:
            symbol: Instrument symbol
            bars: Full bar series used for replay
            pivots: Pivot highs and lows from the same bars
            now: Reference time for age and recency

        Returns:
            Candidate levels, strongest first, no two of the same type
            within tolerance of each other
        """
        cfg = self.config
        now = now or (bars[-1].timestamp if bars else datetime.now())
        candidates = []

        for cluster in self.cluster(pivots):
            price = cluster.price
            level_type = cluster.level_type
            stats = self.replay(price, level_type, bars)

            pivot_times = [p.timestamp for p in cluster.pivots]
            touch_count = max(len(cluster.pivots), stats.touch_count)
            first_touch = min(pivot_times + ([stats.first_touch] if stats.first_touch else []))
            last_touch = max(pivot_times + ([stats.last_touch] if stats.last_touch else []))
            volume_confirmed = stats.volume_confirmed
            if not stats.touch_count and bars:
                avg_volume = sum(b.volume for b in bars) / len(bars)
                pivot_volume = sum(p.volume for p in cluster.pivots) / len(cluster.pivots)
                volume_confirmed = avg_volume > 0 and pivot_volume >= avg_volume * cfg.volume_confirmation_ratio

            score = self.strength_score(
                touch_count, stats.avg_bounce_percent, volume_confirmed, first_touch, last_touch, now
            )
            if score < cfg.min_strength_score or touch_count < cfg.min_touches:
                continue

            candidates.append(SupportResistanceLevel(
                symbol=symbol,
                price=price,
                level_type=level_type,
                touch_count=touch_count,
                first_touch=first_touch,
                last_touch=last_touch,
                avg_bounce_percent=stats.avg_bounce_percent,
                max_bounce_percent=stats.max_bounce_percent,
                volume_confirmed=volume_confirmed,
                strength_score=score,
            ))

        levels = self._separate(candidates)
        logger.debug(f"{symbol}: {len(levels)} candidate levels from {len(pivots)} pivots")
        return levels

    def _separate(self, levels: List[SupportResistanceLevel]) -> List[SupportResistanceLevel]:
        """Keep the strongest of any same-type levels within tolerance."""
        kept: List[SupportResistanceLevel] = []
        for level in sorted(levels, key=lambda lv: (-lv.strength_score, lv.price)):
            if any(
                other.level_type == level.level_type
                and levels_overlap(other.price, level.price, self.config.cluster_tolerance_percent)
                for other in kept
            ):
                continue
            kept.append(level)
        return kept

    def reconcile(
        self,
        candidates: List[SupportResistanceLevel],
        existing: List[SupportResistanceLevel],
        now: datetime,
    ) -> ReconcileResult:
        """Merge candidate levels into existing ones.

        A candidate matching an active same-type level within tolerance
        updates it in place; otherwise it is inserted. Touch counts never
        decrease, so merging the same candidates twice is a no-op. Stale
        levels and weaker overlapping duplicates are deactivated.

        Args:
            candidates: Freshly detected levels
            existing: Levels on record for the symbol (mutated in place)
            now: Reference time for scoring and staleness

        Returns:
            ReconcileResult with every level that needs to be written
        """
        cfg = self.config
        result = ReconcileResult()
        changed: dict[int, SupportResistanceLevel] = {}
        active = [lv for lv in existing if lv.active]

        for candidate in candidates:
            match = self._find_match(candidate, active)
            if match is None:
                active.append(candidate)
                changed[id(candidate)] = candidate
                result.inserted += 1
                continue

            match.touch_count = max(match.touch_count, candidate.touch_count)
            match.first_touch = min(match.first_touch, candidate.first_touch)
            match.last_touch = max(match.last_touch, candidate.last_touch)
            match.avg_bounce_percent = candidate.avg_bounce_percent
            match.max_bounce_percent = max(match.max_bounce_percent, candidate.max_bounce_percent)
            match.volume_confirmed = match.volume_confirmed or candidate.volume_confirmed
            match.strength_score = self.strength_score(
                match.touch_count, match.avg_bounce_percent, match.volume_confirmed,
                match.first_touch, match.last_touch, now,
            )
            changed[id(match)] = match
            result.updated += 1

        stale_before = now - timedelta(days=cfg.max_level_age_days)
        for level in active:
            if level.last_touch < stale_before:
                level.active = False
                changed[id(level)] = level
                result.deactivated += 1

        survivors = sorted(
            (lv for lv in active if lv.active), key=lambda lv: (-lv.strength_score, lv.price)
        )
        kept: List[SupportResistanceLevel] = []
        for level in survivors:
            if any(
                other.level_type == level.level_type
                and levels_overlap(other.price, level.price, cfg.cluster_tolerance_percent)
                for other in kept
            ):
                level.active = False
                changed[id(level)] = level
                result.deactivated += 1
                continue
            kept.append(level)

        # A brand new level that was immediately superseded is not worth writing
        result.levels = [lv for lv in changed.values() if lv.active or lv.id is not None]
        if result.inserted or result.updated or result.deactivated:
            logger.info(
                f"Levels reconciled: {result.inserted} new, {result.updated} updated, "
                f"{result.deactivated} deactivated"
            )
        return result

    def _find_match(
        self,
        candidate: SupportResistanceLevel,
        levels: List[SupportResistanceLevel],
    ) -> Optional[SupportResistanceLevel]:
        """Closest active same-type level within tolerance of the candidate."""
        matches = [
            lv for lv in levels
            if lv.active
            and lv.symbol == candidate.symbol
            and lv.level_type == candidate.level_type
            and levels_overlap(lv.price, candidate.price, self.config.cluster_tolerance_percent)
        ]
        if not matches:
            return None
        return min(matches, key=lambda lv: abs(lv.price - candidate.price))
