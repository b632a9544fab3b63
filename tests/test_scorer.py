"""Tests for setup scoring.

**Feature: market-watch, Property 10: Quality Is The Sum Of Category Subtotals**
**Feature: market-watch, Property 11: Confidence Boundaries**
"""

import pytest
from hypothesis import given, settings, strategies as st

from market_watch.config import SetupConfig
from market_watch.indicators import IndicatorSnapshot
from market_watch.models import ChecklistCategory, Confidence, Direction, PriceBar
from market_watch.setups import CHECKLIST_TEMPLATE, SetupDetector, SetupScorer, confidence_for, new_checklist
from market_watch.setups.scorer import has_divergence, is_rejection_candle
from tests.conftest import T0, bars_from_closes, make_level


def bounce_setup():
    return SetupDetector().detect("TEST", 23.45, [make_level(22.96)], now=T0)[0]


def supportive_indicators() -> IndicatorSnapshot:
    return IndicatorSnapshot(
        symbol="TEST",
        price=23.45,
        rsi_14=35.0,
        sma_20=22.0,
        macd_line=0.1,
        macd_signal=0.05,
        macd_histogram=0.05,
        bb_upper=26.0,
        bb_middle=24.5,
        bb_lower=23.0,
        vwap=23.0,
        volume_ratio=2.0,
    )


BARS = bars_from_closes([23.0] * 30)


class TestChecklist:
    def test_twenty_items_five_per_category(self):
        checklist = new_checklist()
        assert len(checklist.items) == 20
        for category in ChecklistCategory:
            assert len(checklist.category_items(category)) == 5

    def test_required_items(self):
        required = {key for key, _, _, req in CHECKLIST_TEMPLATE if req}
        assert required == {
            "min_level_touches", "bounce_strength", "volume_spike",
            "stop_loss_defined", "risk_reward_ratio",
        }


class TestScoring:
    def test_supportive_setup_scores_high(self):
        setup = SetupScorer().score(bounce_setup(), supportive_indicators(), BARS)

        assert setup.price_action_score == 25.0
        assert setup.volume_score == 20.0
        assert setup.technical_score == 20.0
        assert setup.risk_score == 20.0
        assert setup.quality_score == 85.0
        assert setup.confidence == Confidence.HIGH
        assert setup.checklist.missing_required() == []
        assert setup.rsi == 35.0
        assert setup.volume_ratio == 2.0

    def test_category_weight_scales_subtotal(self):
        config = SetupConfig(technical_weight=12.5)
        setup = SetupScorer(config).score(bounce_setup(), supportive_indicators(), BARS)

        assert setup.technical_score == pytest.approx(10.0)
        assert setup.quality_score == pytest.approx(75.0)
        assert setup.confidence == Confidence.MEDIUM

    def test_zero_indicators_count_as_insufficient(self):
        setup = SetupScorer().score(bounce_setup(), IndicatorSnapshot(symbol="TEST"), BARS)

        assert not setup.checklist.get("rsi_condition").completed
        assert not setup.checklist.get("moving_average").completed
        assert not setup.checklist.get("macd_signal").completed
        assert not setup.checklist.get("bollinger_bands").completed
        assert setup.technical_score == 0.0
        assert "volume_spike" in setup.checklist.missing_required()

    def test_score_all_drops_below_floor_and_sorts(self):
        strong = bounce_setup()
        weak = bounce_setup()
        weak.key_level = None
        weak.stop_loss = 0.0

        scored = SetupScorer().score_all([weak, strong], IndicatorSnapshot(symbol="TEST"), BARS)
        assert len(scored) == 1 and scored[0] is strong
        assert strong.quality_score == 50.0
        assert weak.quality_score < 40

    @given(
        completed=st.lists(st.booleans(), min_size=20, max_size=20),
        weights=st.lists(st.floats(min_value=0, max_value=25, allow_nan=False), min_size=4, max_size=4),
    )
    @settings(max_examples=100)
    def test_quality_is_sum_of_subtotals(self, completed, weights):
        """
        **Feature: market-watch, Property 10: Quality Is The Sum Of Category Subtotals**

        *For any* checklist state and weights, each subtotal SHALL lie in
        [0, 25] and their sum in [0, 100].
        """
        config = SetupConfig(
            price_action_weight=weights[0], volume_weight=weights[1],
            technical_weight=weights[2], risk_weight=weights[3],
        )
        checklist = new_checklist()
        for item, done in zip(checklist.items, completed):
            item.completed = done

        subtotals = SetupScorer(config).category_subtotals(checklist)
        assert all(0.0 <= v <= 25.0 for v in subtotals.values())
        assert 0.0 <= sum(subtotals.values()) <= 100.0


class TestConfidence:
    @pytest.mark.parametrize("score,expected", [
        (100.0, Confidence.HIGH),
        (80.0, Confidence.HIGH),
        (79.99, Confidence.MEDIUM),
        (60.0, Confidence.MEDIUM),
        (59.99, Confidence.LOW),
        (0.0, Confidence.LOW),
    ])
    def test_boundaries(self, score, expected):
        """
        **Feature: market-watch, Property 11: Confidence Boundaries**
        """
        assert confidence_for(score, SetupConfig()) == expected


class TestCandleHelpers:
    def test_hammer_is_bullish_rejection(self):
        bar = PriceBar("TEST", T0, open=10.0, high=10.1, low=9.5, close=10.05, volume=1)
        assert is_rejection_candle(bar, Direction.BULLISH)
        assert not is_rejection_candle(bar, Direction.BEARISH)

    def test_divergence_needs_history(self):
        assert has_divergence(BARS[:20], Direction.BULLISH) is False

    def test_divergence_returns_plain_bool(self):
        closes = [23.0 + (0.4 if i % 2 else -0.4) - i * 0.01 for i in range(40)]
        for direction in Direction:
            assert type(has_divergence(bars_from_closes(closes), direction)) is bool


class TestScoredSetupStorage:
    def test_scored_setup_with_long_history_persists(self, store):
        closes = [23.0 + (0.4 if i % 2 else -0.4) - i * 0.01 for i in range(40)]
        setup = bounce_setup()
        SetupScorer().score(setup, supportive_indicators(), bars_from_closes(closes))

        assert all(type(item.completed) is bool for item in setup.checklist.items)

        setup_id = store.insert_setup(setup)
        [stored] = store.get_setups("TEST")
        assert stored.id == setup_id
        assert stored.quality_score == pytest.approx(setup.quality_score)
        assert stored.checklist.to_dict() == setup.checklist.to_dict()
