"""Tests for support/resistance clustering and reconciliation.

**Feature: market-watch, Property 6: Level Separation**
**Feature: market-watch, Property 7: Idempotent Merge**
**Feature: market-watch, Property 8: Strength Bounds**
"""

from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from market_watch.config import LevelConfig
from market_watch.levels import LevelClusterer, PivotExtractor, levels_overlap
from market_watch.models import LevelType, PivotKind, PivotPoint
from tests.conftest import T0, bars_from_closes, make_level


CYCLE = [11.0, 10.8, 10.6, 10.4, 10.2, 10.0, 10.2, 10.4, 10.6, 10.8]


def oscillating_bars():
    """Five V cycles between 11.0 and 10.0, hourly."""
    return bars_from_closes(CYCLE * 5, symbol="TEST")


def pivot(price: float, hours: int, kind: PivotKind = PivotKind.LOW) -> PivotPoint:
    return PivotPoint("TEST", T0 + timedelta(hours=hours), price, kind, 5, 1000.0, hours)


class TestOverlap:
    def test_symmetric(self):
        assert levels_overlap(100.0, 101.0, 1.0)
        assert levels_overlap(101.0, 100.0, 1.0)
        assert not levels_overlap(100.0, 101.5, 1.0)

    def test_non_positive_prices_never_overlap(self):
        assert not levels_overlap(0.0, 0.0, 1.0)


class TestClustering:
    def test_pivots_within_tolerance_cluster(self):
        pivots = [pivot(10.0, 1), pivot(10.05, 20), pivot(10.08, 40), pivot(12.0, 60)]
        clusters = LevelClusterer().cluster(pivots)

        assert len(clusters) == 1
        assert len(clusters[0].pivots) == 3
        assert clusters[0].price == pytest.approx((10.0 + 10.05 + 10.08) / 3)
        assert clusters[0].level_type == LevelType.SUPPORT

    def test_majority_highs_make_resistance(self):
        pivots = [pivot(10.0, 1, PivotKind.HIGH), pivot(10.02, 2, PivotKind.HIGH), pivot(10.04, 3)]
        clusters = LevelClusterer().cluster(pivots)
        assert clusters[0].level_type == LevelType.RESISTANCE

    def test_small_clusters_dropped(self):
        assert LevelClusterer().cluster([pivot(10.0, 1), pivot(10.01, 2)]) == []


class TestStrengthScore:
    def test_known_level(self):
        now = T0 + timedelta(days=10)
        score = LevelClusterer.strength_score(
            touch_count=4, avg_bounce_percent=3.2, volume_confirmed=True,
            first_touch=T0, last_touch=now - timedelta(hours=2), now=now,
        )
        # 20 touches + 8 bounce + 20 volume + 12.5 age + 10 recency
        assert score == pytest.approx(70.5)

    @given(
        touches=st.integers(min_value=0, max_value=50),
        bounce=st.floats(min_value=-10, max_value=100, allow_nan=False),
        volume=st.booleans(),
        age_days=st.floats(min_value=0, max_value=400, allow_nan=False),
    )
    @settings(max_examples=100)
    def test_score_bounded(self, touches, bounce, volume, age_days):
        """
        **Feature: market-watch, Property 8: Strength Bounds**

        *For any* inputs, strength SHALL lie within [0, 100].
        """
        now = T0 + timedelta(days=age_days)
        score = LevelClusterer.strength_score(touches, bounce, volume, T0, T0, now)
        assert 0.0 <= score <= 100.0


class TestLevelDetection:
    def test_oscillation_yields_support_and_resistance(self):
        bars = oscillating_bars()
        clusterer = LevelClusterer()
        pivots = PivotExtractor(strength=5).extract_all(bars)
        levels = clusterer.detect("TEST", bars, pivots)

        by_type = {lv.level_type: lv for lv in levels}
        assert set(by_type) == {LevelType.SUPPORT, LevelType.RESISTANCE}

        support = by_type[LevelType.SUPPORT]
        assert support.price == pytest.approx(9.99)
        assert support.touch_count == 5
        assert support.avg_bounce_percent > 2.0
        assert support.volume_confirmed is False
        assert 0 < support.strength_score <= 100

    def test_too_few_touches_gives_nothing(self):
        bars = bars_from_closes(CYCLE * 2)
        pivots = PivotExtractor(strength=5).extract_all(bars)
        assert LevelClusterer().detect("TEST", bars, pivots) == []

    @given(closes=st.lists(st.floats(min_value=5.0, max_value=15.0, allow_nan=False), min_size=20, max_size=150))
    @settings(max_examples=50, deadline=None)
    def test_same_type_levels_are_separated(self, closes):
        """
        **Feature: market-watch, Property 6: Level Separation**

        *For any* bar series, no two detected levels of the same type SHALL
        lie within the cluster tolerance of each other.
        """
        cfg = LevelConfig()
        bars = bars_from_closes(closes)
        clusterer = LevelClusterer(cfg)
        levels = clusterer.detect("TEST", bars, PivotExtractor(cfg.pivot_strength).extract_all(bars))

        for i, a in enumerate(levels):
            for b in levels[i + 1:]:
                if a.level_type == b.level_type:
                    assert not levels_overlap(a.price, b.price, cfg.cluster_tolerance_percent)


class TestReconcile:
    def test_merge_is_idempotent(self):
        """
        **Feature: market-watch, Property 7: Idempotent Merge**
        """
        bars = oscillating_bars()
        now = bars[-1].timestamp
        clusterer = LevelClusterer()
        pivots = PivotExtractor(strength=5).extract_all(bars)

        first = clusterer.reconcile(clusterer.detect("TEST", bars, pivots), [], now)
        assert first.inserted == 2
        for i, level in enumerate(first.levels, start=1):
            level.id = i
        snapshot = [lv.to_dict() for lv in first.levels]

        second = clusterer.reconcile(clusterer.detect("TEST", bars, pivots), first.levels, now)
        assert second.inserted == 0
        assert second.updated == 2
        assert second.deactivated == 0
        assert [lv.to_dict() for lv in first.levels] == snapshot

    def test_touch_count_never_decreases(self):
        existing = make_level(10.0, touches=9)
        existing.id = 1
        candidate = make_level(10.02, touches=4)
        result = LevelClusterer().reconcile([candidate], [existing], T0)

        assert result.updated == 1
        assert existing.touch_count == 9
        assert existing.price == 10.0

    def test_stale_levels_deactivated(self):
        stale = make_level(10.0, now=T0 - timedelta(days=90))
        stale.id = 7
        result = LevelClusterer().reconcile([], [stale], T0)

        assert result.deactivated == 1
        assert stale.active is False
        assert result.levels == [stale]

    def test_weaker_duplicate_deactivated(self):
        strong = make_level(10.0, score=80)
        weak = make_level(10.05, score=40)
        strong.id, weak.id = 1, 2
        result = LevelClusterer().reconcile([], [strong, weak], T0)

        assert strong.active is True
        assert weak.active is False
        assert result.deactivated == 1
