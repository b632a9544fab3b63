"""Property-based tests for market data persistence.

Tests validate:
- Property 16: Bar Storage Is Idempotent
- Property 17: Pattern Round Trip
"""

from datetime import timedelta

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from market_watch.models import Confidence, LevelType, SetupStatus
from market_watch.patterns import InverseHeadShouldersDetector, PatternPhase
from market_watch.persistence import MarketStore, StoreError
from market_watch.setups import SetupDetector
from tests.conftest import T0, bars_from_closes, ihs_bars, make_level


class TestBars:
    def test_insert_ignores_duplicates(self, store):
        bars = bars_from_closes([10.0, 10.5, 11.0])
        assert store.insert_bars(bars) == 3
        assert store.insert_bars(bars) == 0
        assert len(store.get_bars("TEST")) == 3

    def test_range_is_inclusive_and_ordered(self, store):
        bars = bars_from_closes([float(i) for i in range(1, 11)])
        store.insert_bars(list(reversed(bars)))

        window = store.get_bars("TEST", T0 + timedelta(hours=2), T0 + timedelta(hours=5))
        assert [b.close for b in window] == [3.0, 4.0, 5.0, 6.0]
        assert window[0] == bars[2]

    def test_symbols_are_separate(self, store):
        store.insert_bars(bars_from_closes([1.0, 2.0], symbol="AAA"))
        store.insert_bars(bars_from_closes([3.0], symbol="BBB"))
        assert [b.close for b in store.get_bars("BBB")] == [3.0]

    @given(closes=st.lists(st.floats(min_value=0.01, max_value=1e6, allow_nan=False), min_size=1, max_size=40))
    @settings(max_examples=30, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_repeated_insert_stores_each_bar_once(self, temp_db_path, closes):
        """
        **Feature: market-watch, Property 16: Bar Storage Is Idempotent**
        """
        store = MarketStore(temp_db_path)
        bars = bars_from_closes(closes, symbol="PROP")
        store.insert_bars(bars)
        store.insert_bars(bars)

        stored = store.get_bars("PROP")
        assert len(stored) == len(closes)
        store.insert_bars(bars)
        assert store.get_bars("PROP") == stored
        with store._connection() as conn:
            conn.execute("DELETE FROM price_bars")


class TestLevels:
    def test_upsert_assigns_id_then_updates(self, store):
        level = make_level(22.96)
        level_id = store.upsert_level(level)
        assert level.id == level_id

        level.touch_count = 7
        store.upsert_level(level)
        [stored] = store.get_active_levels("TEST")
        assert stored.id == level_id
        assert stored.touch_count == 7
        assert stored.level_type == LevelType.SUPPORT
        assert stored.volume_confirmed is True

    def test_inactive_levels_hidden(self, store):
        level = make_level(22.96)
        store.upsert_level(level)
        level.active = False
        store.upsert_level(level)
        assert store.get_active_levels("TEST") == []


class TestSetups:
    def make_setup(self):
        return SetupDetector().detect("TEST", 23.45, [make_level(22.96)], now=T0)[0]

    def test_insert_and_get(self, store):
        setup = self.make_setup()
        setup.quality_score = 72.0
        setup.confidence = Confidence.MEDIUM
        setup_id = store.insert_setup(setup)

        [stored] = store.get_setups("TEST")
        assert stored.id == setup_id
        assert stored.entry_price == pytest.approx(setup.entry_price)
        assert stored.confidence == Confidence.MEDIUM
        assert stored.key_level.price == 22.96
        assert stored.checklist.to_dict() == setup.checklist.to_dict()

    def test_update_status(self, store):
        setup = self.make_setup()
        store.insert_setup(setup)
        setup.status = SetupStatus.EXPIRED
        store.update_setup(setup)

        assert store.get_setups(status=SetupStatus.ACTIVE) == []
        assert store.get_setups(status=SetupStatus.EXPIRED)[0].id == setup.id

    def test_update_requires_id(self, store):
        with pytest.raises(StoreError):
            store.update_setup(self.make_setup())

    def test_most_recent_first_with_limit(self, store):
        for hours in range(3):
            setup = SetupDetector().detect("TEST", 23.45, [make_level(22.96)], now=T0 + timedelta(hours=hours))[0]
            store.insert_setup(setup)

        setups = store.get_setups(limit=2)
        assert len(setups) == 2
        assert setups[0].detected_at == T0 + timedelta(hours=2)


class TestPatterns:
    def test_round_trip(self, store):
        """
        **Feature: market-watch, Property 17: Pattern Round Trip**
        """
        pattern = InverseHeadShouldersDetector().detect("PLTR", ihs_bars())
        store.upsert_pattern(pattern)

        stored = store.get_pattern(pattern.id)
        assert stored.to_dict() == pattern.to_dict()
        assert store.has_pattern(pattern.signature)
        assert not store.has_pattern("inverse_head_shoulders:PLTR:other")

    def test_upsert_overwrites_and_completion_hides(self, store):
        pattern = InverseHeadShouldersDetector().detect("PLTR", ihs_bars())
        store.upsert_pattern(pattern)
        assert [p.id for p in store.get_active_patterns("PLTR")] == [pattern.id]

        pattern.thesis.phase = PatternPhase.COMPLETED
        pattern.is_complete = True
        store.upsert_pattern(pattern)

        assert store.get_active_patterns() == []
        assert store.get_pattern(pattern.id).thesis.phase == PatternPhase.COMPLETED

    def test_missing_pattern(self, store):
        assert store.get_pattern("nope") is None


class TestErrors:
    def test_unopenable_database_raises_store_error(self, tmp_path):
        # A directory cannot be opened as a database file
        with pytest.raises(StoreError):
            MarketStore(str(tmp_path))
