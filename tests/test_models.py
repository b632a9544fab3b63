"""Tests for core data models and pattern theses."""

import json
from datetime import timedelta

import pytest

from market_watch.indicators import IndicatorSnapshot
from market_watch.models import (
    Direction,
    PivotKind,
    PivotPoint,
    PriceBar,
    SetupStatus,
    SetupType,
    SupportResistanceLevel,
    TradingSetup,
)
from market_watch.patterns import (
    ComponentStage,
    FallingWedgeDetector,
    InverseHeadShouldersDetector,
    PatternPhase,
    Thesis,
    ThesisComponent,
    pattern_from_dict,
    pattern_to_json,
)
from market_watch.setups import SetupDetector, SetupScorer
from tests.conftest import T0, bars_from_closes, ihs_bars, make_level


def small_thesis() -> Thesis:
    return Thesis(
        breakout_key="break",
        components=[
            ThesisComponent("form", "Form", "", ComponentStage.FORMATION, 30, required=True),
            ThesisComponent("extra", "Extra", "", ComponentStage.FORMATION, 10),
            ThesisComponent("break", "Break", "", ComponentStage.BREAKOUT, 40, required=True),
            ThesisComponent("full_target", "Full", "", ComponentStage.TARGET, 20),
        ],
    )


class TestPriceBar:
    def test_typical_price(self):
        bar = PriceBar("TEST", T0, 10.0, 12.0, 9.0, 11.0, 500)
        assert bar.typical_price == pytest.approx(32 / 3)

    def test_dict_round_trip(self):
        bar = bars_from_closes([10.0])[0]
        assert PriceBar.from_dict(bar.to_dict()) == bar


class TestLevel:
    def test_within_tolerance(self):
        level = make_level(100.0)
        assert level.is_within(101.0, 1.0)
        assert not level.is_within(101.5, 1.0)

    def test_age(self):
        level = make_level(100.0, age_days=10)
        assert level.age_days(T0) == pytest.approx(10.0)
        assert level.age_days(T0 - timedelta(days=30)) == 0.0

    def test_dict_round_trip(self):
        level = make_level(100.0)
        level.id = 3
        assert SupportResistanceLevel.from_dict(level.to_dict()) == level

    def test_pivot_round_trip(self):
        pivot = PivotPoint("TEST", T0, 10.0, PivotKind.HIGH, 5, 1200.0, 17)
        assert PivotPoint.from_dict(pivot.to_dict()) == pivot


class TestTradingSetup:
    def test_default_expiry_and_targets(self):
        setup = TradingSetup(
            symbol="TEST",
            setup_type=SetupType.BREAKOUT,
            direction=Direction.BULLISH,
            current_price=10.0,
            entry_price=10.0,
            stop_loss=9.5,
            target1=11.0,
            risk_amount=0.5,
            detected_at=T0,
        )
        assert setup.expires_at == T0 + timedelta(hours=24)
        assert setup.targets == [11.0]
        assert setup.status == SetupStatus.ACTIVE
        assert setup.risk_percent == pytest.approx(5.0)

    def test_scored_setup_round_trip(self):
        setup = SetupDetector().detect("TEST", 23.45, [make_level(22.96)], now=T0)[0]
        SetupScorer().score(setup, IndicatorSnapshot(symbol="TEST"), bars_from_closes([23.0] * 30))
        setup.id = 12

        restored = TradingSetup.from_dict(setup.to_dict())
        assert restored.to_dict() == setup.to_dict()
        assert restored.checklist.get("stop_loss_defined").completed


class TestThesis:
    def test_completion_is_weighted(self):
        thesis = small_thesis()
        thesis.component("form").complete(T0, 90.0, ["x"])
        thesis.component("extra").complete(T0, 90.0, ["y"])
        assert thesis.completion_percent == pytest.approx(40.0)
        assert thesis.completed_count == 2

    def test_complete_only_once(self):
        comp = small_thesis().component("form")
        assert comp.complete(T0, 90.0, ["first"]) is True
        assert comp.complete(T0 + timedelta(hours=1), 10.0, ["second"]) is False
        assert comp.evidence == ["first"]
        assert comp.completed_at == T0

    def test_unknown_component(self):
        with pytest.raises(KeyError):
            small_thesis().component("missing")

    def test_phase_derivation(self):
        thesis = small_thesis()
        assert thesis.advance_phase() == PatternPhase.FORMATION

        thesis.component("form").complete(T0, 90.0, [])
        assert thesis.advance_phase() == PatternPhase.BREAKOUT

        thesis.component("break").complete(T0, 90.0, [])
        assert thesis.advance_phase() == PatternPhase.TARGET_PURSUIT

        thesis.component("full_target").complete(T0, 90.0, [])
        assert thesis.advance_phase() == PatternPhase.COMPLETED

    def test_phase_does_not_move_back(self):
        thesis = small_thesis()
        thesis.phase = PatternPhase.TARGET_PURSUIT
        assert thesis.derived_phase() == PatternPhase.FORMATION
        assert thesis.advance_phase() == PatternPhase.TARGET_PURSUIT

    def test_phase_rank_ordered(self):
        ranks = [phase.rank for phase in PatternPhase]
        assert ranks == sorted(ranks)

    def test_pending_notifications(self):
        thesis = small_thesis()
        thesis.component("form").complete(T0, 90.0, [])
        assert [c.key for c in thesis.pending_notifications()] == ["form"]
        thesis.component("form").notification_sent = True
        assert thesis.pending_notifications() == []


class TestPatternSerialization:
    def test_head_shoulders_json_round_trip(self):
        pattern = InverseHeadShouldersDetector().detect("PLTR", ihs_bars())
        restored = pattern_from_dict(json.loads(pattern_to_json(pattern)))
        assert type(restored) is type(pattern)
        assert restored.to_dict() == pattern.to_dict()
        assert restored.signature == pattern.signature

    def test_wedge_round_trip(self):
        def pivot(hours, price, kind):
            return PivotPoint("NVDA", T0 + timedelta(hours=hours), price, kind, 5, 1000.0)

        pattern = FallingWedgeDetector().evaluate(
            "NVDA",
            pivot(0, 120.0, PivotKind.HIGH), pivot(48, 117.6, PivotKind.HIGH),
            pivot(0, 95.0, PivotKind.LOW), pivot(48, 95.96, PivotKind.LOW),
            [], T0 + timedelta(hours=48),
        )
        restored = pattern_from_dict(pattern.to_dict())
        assert restored.to_dict() == pattern.to_dict()
        assert restored.upper_line_at(T0) == pytest.approx(120.0)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            pattern_from_dict({"pattern_type": "cup_and_handle"})
