"""Async scheduler for the analysis pipeline."""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from market_watch.config import SchedulerConfig
from market_watch.patterns import CheckResult, ThesisTracker
from market_watch.persistence import MarketStore
from market_watch.pipeline.analyzer import BatchResult, SymbolAnalyzer

logger = logging.getLogger(__name__)


class PipelineScheduler:
    """Runs the watchlist batch and pattern monitoring on an interval.

    The batch itself is synchronous and runs in a worker thread; pattern
    checks fan out over threads with asyncio.gather.
    """

    def __init__(
        self,
        analyzer: SymbolAnalyzer,
        tracker: ThesisTracker,
        store: MarketStore,
        config: Optional[SchedulerConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize scheduler.

        Args:
            analyzer: Per-symbol analysis pass
            tracker: Pattern arena to monitor
            store: Store patterns are persisted to
            config: Interval and watchlist
            clock: Source of the analysis time
        """
        self.analyzer = analyzer
        self.tracker = tracker
        self.store = store
        self.config = config or SchedulerConfig()
        self.clock = clock
        self._stop_event = threading.Event()
        self._wakeup: Optional[asyncio.Event] = None
        self._running = False
        self.cycles = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self, symbols: Optional[List[str]] = None) -> BatchResult:
        """Analyze the watchlist once, then check every active pattern.

        Args:
            symbols: Override the configured watchlist

        Returns:
            BatchResult of the analysis step
        """
        symbols = symbols or self.config.watchlist
        now = self.clock()
        result = await asyncio.to_thread(self.analyzer.analyze_batch, symbols, self._stop_event, now)
        if not self._stop_event.is_set():
            await self.monitor_patterns(now)
        self.cycles += 1
        return result

    async def monitor_patterns(self, now: Optional[datetime] = None) -> List[CheckResult]:
        """Check all active patterns concurrently."""
        now = now or self.clock()
        await asyncio.to_thread(self.tracker.load_active, self.store)
        pattern_ids = self.tracker.active_ids()
        if not pattern_ids:
            return []

        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self.tracker.monitor_pattern, pid, self.store, now) for pid in pattern_ids),
            return_exceptions=True,
        )
        results = []
        for pattern_id, outcome in zip(pattern_ids, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Pattern {pattern_id} check failed: {outcome}")
                continue
            results.append(outcome)
            if outcome.newly_completed:
                logger.info(
                    f"🧩 Pattern {pattern_id}: {', '.join(outcome.newly_completed)} "
                    f"({outcome.phase.value}, {outcome.completion_percent:.0f}%)"
                )
        return results

    async def run_forever(self) -> None:
        """Run cycles every interval_minutes until stop() is called."""
        self._running = True
        self._wakeup = asyncio.Event()
        interval = self.config.interval_minutes * 60
        logger.info(f"🚀 Pipeline started: {len(self.config.watchlist)} symbols every {self.config.interval_minutes}m")

        while not self._stop_event.is_set():
            try:
                result = await self.run_once()
                if result.errors:
                    logger.warning(f"⚠️ Cycle {self.cycles}: {len(result.errors)} symbols failed")
            except Exception as e:
                logger.error(f"Pipeline cycle error: {e}")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        self._running = False
        logger.info("🛑 Pipeline stopped")

    def stop(self) -> None:
        """Stop after the current symbol; wakes a sleeping loop."""
        self._stop_event.set()
        if self._wakeup is not None:
            self._wakeup.set()
