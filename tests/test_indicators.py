"""Tests for indicator calculations and the indicator cache.

**Feature: market-watch, Property 2: Indicator Neutral Defaults**
**Feature: market-watch, Property 3: RSI Bounds**
**Feature: market-watch, Property 4: Cache Expiry**
"""

from datetime import timedelta

import pandas as pd
import pytest
from hypothesis import given, settings, strategies as st

from market_watch.indicators import IndicatorCache, IndicatorEngine, IndicatorSnapshot, rsi_series
from tests.conftest import T0, bars_from_closes, make_bar


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestNeutralDefaults:
    """Short histories produce neutral values, never NaN."""

    def test_empty_bars(self):
        snapshot = IndicatorEngine().compute([], symbol="TEST")
        assert snapshot.bar_count == 0
        assert snapshot.rsi_14 == 0.0
        assert snapshot.volume_ratio == 1.0

    def test_short_history_defaults(self):
        bars = bars_from_closes([10, 11, 12, 11, 10])
        snapshot = IndicatorEngine().compute(bars)

        assert snapshot.symbol == "TEST"
        assert snapshot.price == 10
        assert snapshot.rsi_14 == 0.0
        assert snapshot.sma_20 == 0.0
        assert snapshot.ema_20 == 0.0
        assert (snapshot.macd_line, snapshot.macd_signal, snapshot.macd_histogram) == (0.0, 0.0, 0.0)
        assert (snapshot.bb_upper, snapshot.bb_middle, snapshot.bb_lower) == (0.0, 0.0, 0.0)
        assert snapshot.vwap == 0.0
        assert snapshot.volume_ratio == 1.0
        assert snapshot.trend_direction == "neutral"
        assert snapshot.sentiment == "neutral"

    @given(n=st.integers(min_value=1, max_value=260))
    @settings(max_examples=30, deadline=None)
    def test_no_nan_for_any_length(self, n: int):
        """
        **Feature: market-watch, Property 2: Indicator Neutral Defaults**

        *For any* history length, every snapshot value SHALL be finite.
        """
        closes = [100 + (i % 7) - 3 for i in range(n)]
        snapshot = IndicatorEngine().compute(bars_from_closes(closes))
        for key, value in snapshot.to_dict().items():
            if isinstance(value, float):
                assert pd.notna(value), key


class TestIndicatorValues:
    """Known values on simple series."""

    def test_sma(self):
        engine = IndicatorEngine()
        closes = pd.Series([float(i) for i in range(1, 21)])
        assert engine.calculate_sma(closes, 20) == pytest.approx(10.5)

    def test_rsi_rising_series_is_100(self):
        engine = IndicatorEngine()
        closes = pd.Series([float(i) for i in range(1, 30)])
        assert engine.calculate_rsi(closes, 14) == 100.0

    def test_rsi_flat_series_is_50(self):
        engine = IndicatorEngine()
        closes = pd.Series([10.0] * 30)
        assert engine.calculate_rsi(closes, 14) == 50.0

    def test_bollinger_flat_series_collapses(self):
        engine = IndicatorEngine()
        upper, middle, lower = engine.calculate_bollinger(pd.Series([5.0] * 20), 20, 2.0)
        assert upper == middle == lower == pytest.approx(5.0)

    def test_volume_ratio(self):
        bars = [make_bar("TEST", T0 + timedelta(hours=i), 10.0, volume=100.0) for i in range(19)]
        bars.append(make_bar("TEST", T0 + timedelta(hours=19), 10.0, volume=300.0))
        snapshot = IndicatorEngine().compute(bars)
        assert snapshot.volume_ratio == pytest.approx(3.0)

    def test_vwap_flat_price(self):
        snapshot = IndicatorEngine().compute(bars_from_closes([20.0] * 25))
        assert snapshot.vwap == pytest.approx(20.0)

    def test_macd_positive_in_uptrend(self):
        closes = [100 * 1.01 ** i for i in range(60)]
        snapshot = IndicatorEngine().compute(bars_from_closes(closes))
        assert snapshot.macd_line > 0
        assert snapshot.trend_direction == "bullish"

    def test_alerts(self):
        snapshot = IndicatorSnapshot(symbol="TSLA", rsi_14=25.0, volume_ratio=2.5)
        types = {a.alert_type for a in IndicatorEngine().alerts(snapshot)}
        assert types == {"rsi_oversold", "volume_spike"}


class TestRSIBounds:
    """Property-based tests for RSI bounds."""

    @given(closes=st.lists(st.floats(min_value=1.0, max_value=1000.0, allow_nan=False), min_size=16, max_size=80))
    @settings(max_examples=50)
    def test_rsi_within_bounds(self, closes):
        """
        **Feature: market-watch, Property 3: RSI Bounds**

        *For any* close series, RSI SHALL lie within [0, 100].
        """
        value = IndicatorEngine().calculate_rsi(pd.Series(closes), 14)
        assert 0.0 <= value <= 100.0

        series = rsi_series(pd.Series(closes), 14)
        assert ((series >= 0) & (series <= 100)).all()

    def test_rsi_series_matches_point_value(self):
        closes = pd.Series([10, 11, 10.5, 12, 11.8, 12.5, 12.1, 13, 12.4, 12.9,
                            13.5, 13.1, 14, 13.6, 14.2, 13.9, 14.8], dtype=float)
        engine = IndicatorEngine()
        assert rsi_series(closes, 14).iloc[-1] == pytest.approx(engine.calculate_rsi(closes, 14))


class TestIndicatorCache:
    """TTL cache behaviour."""

    def test_entry_expires_after_ttl(self):
        """
        **Feature: market-watch, Property 4: Cache Expiry**
        """
        clock = FakeClock()
        cache = IndicatorCache(ttl_seconds=300, clock=clock)
        cache.put("PLTR", "snapshot")

        clock.now += 299
        assert cache.get("PLTR") == "snapshot"

        clock.now += 1
        assert cache.get("PLTR") is None
        assert cache.status()["total_entries"] == 0

    def test_invalidate(self):
        cache = IndicatorCache()
        cache.put("PLTR", 1)
        assert cache.invalidate("PLTR") is True
        assert cache.invalidate("PLTR") is False
        assert cache.get("PLTR") is None

    def test_clear_expired_and_status(self):
        clock = FakeClock()
        cache = IndicatorCache(ttl_seconds=10, clock=clock)
        cache.put("A", 1)
        clock.now += 20
        cache.put("B", 2)

        status = cache.status()
        assert status == {"total_entries": 2, "valid_entries": 1, "expired_entries": 1, "ttl_seconds": 10}
        assert cache.clear_expired() == 1
        assert cache.get("B") == 2

    def test_engine_serves_cached_snapshot(self):
        engine = IndicatorEngine()
        bars = bars_from_closes([10.0] * 30)
        first = engine.get_indicators("TEST", bars)
        second = engine.get_indicators("TEST", bars_from_closes([50.0] * 30))
        assert second is first

        engine.invalidate("TEST")
        third = engine.get_indicators("TEST", bars_from_closes([50.0] * 30))
        assert third.price == 50.0
