"""Per-symbol analysis pass.

Runs one symbol through the full chain: indicators, pivots, levels,
setups and geometric patterns, persisting what it finds.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from market_watch.config import Config
from market_watch.indicators import IndicatorEngine, IndicatorSnapshot
from market_watch.levels import LevelClusterer, PivotExtractor
from market_watch.models import SetupStatus, SupportResistanceLevel, TradingSetup
from market_watch.patterns import (
    FallingWedgeDetector,
    GeometricPattern,
    InverseHeadShouldersDetector,
    ThesisTracker,
    trading_setup_from_pattern,
)
from market_watch.persistence import MarketStore
from market_watch.setups import SetupDetector, SetupScorer

logger = logging.getLogger(__name__)


@dataclass
class SymbolReport:
    """What one analysis pass produced for a symbol."""
    symbol: str
    bar_count: int = 0
    indicators: Optional[IndicatorSnapshot] = None
    levels: List[SupportResistanceLevel] = field(default_factory=list)
    setups: List[TradingSetup] = field(default_factory=list)
    patterns: List[GeometricPattern] = field(default_factory=list)
    setups_closed: int = 0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "bar_count": self.bar_count,
            "indicators": self.indicators.to_dict() if self.indicators else None,
            "levels": len(self.levels),
            "setups": [s.to_dict() for s in self.setups],
            "patterns": [p.id for p in self.patterns],
            "setups_closed": self.setups_closed,
        }


@dataclass
class BatchResult:
    """Reports for the symbols that succeeded and errors for the rest."""
    reports: Dict[str, SymbolReport] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    stopped: bool = False

    @property
    def success_count(self) -> int:
        return len(self.reports)


class SymbolAnalyzer:
    """Wires the detection components together for one symbol at a time."""

    def __init__(
        self,
        config: Config,
        store: MarketStore,
        tracker: ThesisTracker,
        engine: Optional[IndicatorEngine] = None,
    ):
        """Initialize analyzer.

        Args:
            config: Loaded configuration
            store: Bar, level, setup and pattern store
            tracker: Arena new patterns are handed to
            engine: Indicator engine, defaults to one built from the config
        """
        self.config = config
        self.store = store
        self.tracker = tracker
        self.engine = engine or IndicatorEngine(config.indicators)
        self.extractor = PivotExtractor(strength=config.levels.pivot_strength)
        self.clusterer = LevelClusterer(config.levels)
        self.detector = SetupDetector(config.setups)
        self.scorer = SetupScorer(config.setups)
        self.pattern_detectors = [
            InverseHeadShouldersDetector(config.head_shoulders),
            FallingWedgeDetector(config.falling_wedge),
        ]

    @property
    def history_days(self) -> int:
        """Days of bars needed by the longest lookback."""
        return max(
            self.config.scheduler.bar_history_days,
            self.config.levels.lookback_days,
            self.config.head_shoulders.lookback_days,
            self.config.falling_wedge.lookback_days,
        )

    def analyze_symbol(self, symbol: str, now: Optional[datetime] = None) -> SymbolReport:
        """Run the full detection chain for one symbol.

        Args:
            symbol: Instrument symbol
            now: Analysis time, defaults to the last stored bar

        Returns:
            SymbolReport with everything detected in this pass
        """
        report = SymbolReport(symbol=symbol)
        bars = self.store.get_bars(symbol, start=(now - timedelta(days=self.history_days)) if now else None, end=now)
        report.bar_count = len(bars)
        if not bars:
            logger.warning(f"⚠️ {symbol}: no bars stored, skipping")
            return report

        now = now or bars[-1].timestamp
        recent_start = now - timedelta(days=self.config.scheduler.bar_history_days)
        recent = [b for b in bars if b.timestamp >= recent_start]
        price = bars[-1].close

        # New bars make any cached snapshot stale
        self.engine.invalidate(symbol)
        report.indicators = self.engine.get_indicators(symbol, recent)

        report.levels = self._update_levels(symbol, bars, now)
        report.setups_closed = self._refresh_setups(symbol, price, now)
        report.patterns = self._detect_patterns(symbol, bars, now)
        report.setups = self._detect_setups(symbol, price, report, recent, now)

        logger.info(
            f"📊 {symbol}: {len(report.levels)} levels, {len(report.setups)} setups, "
            f"{len(report.patterns)} new patterns"
        )
        return report

    def _update_levels(self, symbol: str, bars, now: datetime) -> List[SupportResistanceLevel]:
        start = now - timedelta(days=self.config.levels.lookback_days)
        window = [b for b in bars if b.timestamp >= start]
        pivots = self.extractor.extract_all(window)
        candidates = self.clusterer.detect(symbol, window, pivots, now)

        existing = self.store.get_active_levels(symbol)
        result = self.clusterer.reconcile(candidates, existing, now)
        for level in result.levels:
            self.store.upsert_level(level)
        return self.store.get_active_levels(symbol)

    def _refresh_setups(self, symbol: str, price: float, now: datetime) -> int:
        """Expire, invalidate or trigger the symbol's open setups."""
        closed = 0
        for setup in self.store.get_setups(symbol, SetupStatus.ACTIVE, limit=1000):
            if self.detector.refresh_status(setup, price, now) != SetupStatus.ACTIVE:
                self.store.update_setup(setup)
                closed += 1
        return closed

    def _detect_setups(self, symbol: str, price: float, report: SymbolReport, bars, now: datetime) -> List[TradingSetup]:
        setups = self.detector.detect(symbol, price, report.levels, now)
        for pattern in report.patterns:
            setup = trading_setup_from_pattern(pattern, price, now, self.config.setups.expiration_hours)
            if setup is not None:
                setups.append(setup)

        scored = self.scorer.score_all(setups, report.indicators, bars, now)
        for setup in scored:
            self.store.insert_setup(setup)
            logger.info(
                f"🎯 {symbol} {setup.setup_type.value} {setup.direction.value}: "
                f"quality {setup.quality_score:.0f} ({setup.confidence.value}), "
                f"entry ${setup.entry_price:.2f}, R:R {setup.risk_reward_ratio:.2f}"
            )
        return scored

    def _detect_patterns(self, symbol: str, bars, now: datetime) -> List[GeometricPattern]:
        """Detect both pattern types and track any that are new."""
        found = []
        for detector in self.pattern_detectors:
            pattern = detector.detect(symbol, bars, now)
            if pattern is None:
                continue
            if self.store.has_pattern(pattern.signature):
                logger.debug(f"{symbol}: {detector.name} already recorded")
                continue
            self.store.upsert_pattern(pattern)
            self.tracker.track(pattern)
            found.append(pattern)
        return found

    def analyze_batch(self, symbols: List[str], stop_event: Optional[threading.Event] = None,
                      now: Optional[datetime] = None) -> BatchResult:
        """Analyze symbols in order; a failing symbol does not abort the batch.

        Args:
            symbols: Symbols to analyze
            stop_event: Checked between symbols
            now: Analysis time shared by every symbol

        Returns:
            BatchResult with per-symbol reports and errors
        """
        result = BatchResult()
        for symbol in symbols:
            if stop_event is not None and stop_event.is_set():
                logger.info(f"🛑 Batch stopped before {symbol}")
                result.stopped = True
                break
            try:
                result.reports[symbol] = self.analyze_symbol(symbol, now)
            except Exception as e:
                logger.exception(f"❌ {symbol}: analysis failed")
                result.errors[symbol] = str(e)

        logger.info(f"Batch complete: {result.success_count} ok, {len(result.errors)} failed")
        return result
