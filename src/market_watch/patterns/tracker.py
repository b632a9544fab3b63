"""Thesis tracking for active geometric patterns.

The tracker owns an arena of patterns keyed by id and is the only code that
mutates them. Everything else works on deep-copied snapshots and asks for
changes by submitting ComponentIntents.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from market_watch.models import PriceBar
from market_watch.notifications.telegram import AlertSink, ThesisAlert
from market_watch.patterns.base import volume_ratio_at
from market_watch.patterns.models import (
    FULL_TARGET_KEY,
    GeometricPattern,
    PatternPhase,
    PatternType,
)

logger = logging.getLogger(__name__)


MONITOR_LOOKBACK = timedelta(days=5)

# (component key, fraction of the projected move, confidence)
TARGET_MILESTONES = (
    ("partial_target_1", 0.5, 90.0),
    ("partial_target_2", 0.75, 95.0),
    (FULL_TARGET_KEY, 1.0, 100.0),
)


@dataclass
class ComponentIntent:
    """Request to mark one thesis component complete."""
    pattern_id: str
    component_key: str
    at: datetime
    confidence: float
    evidence: list[str] = field(default_factory=list)


@dataclass
class CheckResult:
    """Outcome of re-evaluating one pattern."""
    pattern_id: str
    phase: PatternPhase
    completion_percent: float
    newly_completed: list[str] = field(default_factory=list)
    alerts_sent: int = 0


class ThesisTracker:
    """Re-evaluates pattern theses against new bars and advances their phase."""

    def __init__(
        self,
        sink: Optional[AlertSink] = None,
        breakout_volume_ratio: float = 1.5,
        retest_tolerance: float = 0.01,
    ):
        """Initialize tracker.

        Args:
            sink: Where completed-component alerts are delivered
            breakout_volume_ratio: Volume ratio that confirms a breakout
            retest_tolerance: How close a pullback must come to the neckline
        """
        self.sink = sink
        self.breakout_volume_ratio = breakout_volume_ratio
        self.retest_tolerance = retest_tolerance
        self._patterns: dict[str, GeometricPattern] = {}
        self._pattern_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    # Arena

    def track(self, pattern: GeometricPattern) -> None:
        """Add or replace a pattern in the arena."""
        with self._lock:
            self._patterns[pattern.id] = pattern
            self._pattern_locks.setdefault(pattern.id, threading.Lock())

    def forget(self, pattern_id: str) -> None:
        with self._lock:
            self._patterns.pop(pattern_id, None)
            self._pattern_locks.pop(pattern_id, None)

    def snapshot(self, pattern_id: str) -> GeometricPattern:
        """Deep copy of a tracked pattern."""
        pattern, lock = self._get(pattern_id)
        with lock:
            return copy.deepcopy(pattern)

    def active_ids(self) -> list[str]:
        with self._lock:
            return [pid for pid, p in self._patterns.items() if not p.is_complete]

    def _get(self, pattern_id: str) -> tuple[GeometricPattern, threading.Lock]:
        with self._lock:
            if pattern_id not in self._patterns:
                raise KeyError(f"Pattern {pattern_id} is not tracked")
            return self._patterns[pattern_id], self._pattern_locks[pattern_id]

    def submit(self, intent: ComponentIntent) -> bool:
        """Apply a completion intent.

        Returns:
            True if the component was newly completed
        """
        pattern, lock = self._get(intent.pattern_id)
        with lock:
            changed = self._apply(pattern, intent)
            self._settle(pattern, intent.at)
        return changed

    def _apply(self, pattern: GeometricPattern, intent: ComponentIntent) -> bool:
        component = pattern.thesis.component(intent.component_key)
        changed = component.complete(intent.at, intent.confidence, intent.evidence)
        if changed:
            logger.info(f"✅ {pattern.symbol} {pattern.pattern_type.value}: {component.name} completed")
        return changed

    def _settle(self, pattern: GeometricPattern, now: datetime) -> None:
        """Recompute phase and completion flag after changes."""
        phase = pattern.thesis.advance_phase()
        if phase == PatternPhase.COMPLETED:
            pattern.is_complete = True
        pattern.last_updated = now

    # Evaluation

    def check(self, pattern_id: str, bars: list[PriceBar], now: datetime) -> CheckResult:
        """Re-evaluate one pattern against the latest bars.

        Args:
            pattern_id: Tracked pattern id
            bars: Recent bars for the pattern's symbol, ascending
            now: Evaluation time

        Returns:
            CheckResult describing what changed
        """
        pattern, lock = self._get(pattern_id)
        with lock:
            result = CheckResult(pattern_id, pattern.thesis.phase, pattern.thesis.completion_percent)
            if pattern.is_complete or not bars:
                return result

            if pattern.thesis.phase in (PatternPhase.FORMATION, PatternPhase.BREAKOUT):
                for intent in self._breakout_intents(pattern, bars, now):
                    if self._apply(pattern, intent):
                        result.newly_completed.append(intent.component_key)
                self._settle(pattern, now)

            if pattern.thesis.phase == PatternPhase.TARGET_PURSUIT:
                for intent in self._target_intents(pattern, bars, now):
                    if self._apply(pattern, intent):
                        result.newly_completed.append(intent.component_key)
                self._settle(pattern, now)

            pattern.last_updated = now
            result.alerts_sent = self._notify(pattern, now)
            result.phase = pattern.thesis.phase
            result.completion_percent = pattern.thesis.completion_percent
        return result

    def _breakout_intents(self, pattern: GeometricPattern, bars: list[PriceBar], now: datetime) -> list[ComponentIntent]:
        latest = bars[-1]
        line = pattern.breakout_line_at(now)
        if line <= 0:
            return []
        volume_ratio = volume_ratio_at(bars, len(bars) - 1)
        pct = (latest.close - line) / line * 100
        intents = []

        if pattern.pattern_type == PatternType.INVERSE_HEAD_SHOULDERS:
            if latest.close > line:
                intents.append(ComponentIntent(pattern.id, "neckline_breakout", now, 85.0, [
                    f"Price ${latest.close:.2f} closed above neckline ${line:.2f}",
                    f"Breakout {pct:.1f}% above neckline",
                ]))
        elif pattern.pattern_type == PatternType.FALLING_WEDGE:
            if latest.high > line:
                intents.append(ComponentIntent(pattern.id, "upper_trendline_break", now, 85.0, [
                    f"High ${latest.high:.2f} above upper trend line ${line:.2f}",
                ]))
            if latest.close > line:
                intents.append(ComponentIntent(pattern.id, "close_above_trendline", now, 85.0, [
                    f"Close ${latest.close:.2f} is {pct:.1f}% above upper trend line",
                ]))
        else:
            raise ValueError(f"Unknown pattern type: {pattern.pattern_type}")

        if latest.close > line and volume_ratio >= self.breakout_volume_ratio:
            intents.append(ComponentIntent(pattern.id, "breakout_volume", now, 80.0, [
                f"Breakout volume {volume_ratio:.2f}x average",
            ]))
        return intents

    def _target_intents(self, pattern: GeometricPattern, bars: list[PriceBar], now: datetime) -> list[ComponentIntent]:
        latest = bars[-1]
        intents = []

        if pattern.pattern_type == PatternType.INVERSE_HEAD_SHOULDERS:
            neckline = pattern.neckline_level
            if latest.low <= neckline * (1 + self.retest_tolerance) and latest.close > neckline:
                intents.append(ComponentIntent(pattern.id, "neckline_retest", now, 75.0, [
                    f"Low ${latest.low:.2f} retested neckline ${neckline:.2f} and held",
                ]))
        elif pattern.pattern_type != PatternType.FALLING_WEDGE:
            raise ValueError(f"Unknown pattern type: {pattern.pattern_type}")

        for key, fraction, confidence in TARGET_MILESTONES:
            target = pattern.target_at(fraction)
            if latest.close >= target:
                intents.append(ComponentIntent(pattern.id, key, now, confidence, [
                    f"Price ${latest.close:.2f} reached {fraction:.0%} target ${target:.2f}",
                ]))
        return intents

    def _notify(self, pattern: GeometricPattern, now: datetime) -> int:
        """Send one alert per completed, not yet notified component."""
        sent = 0
        for component in pattern.thesis.pending_notifications():
            alert = ThesisAlert(
                symbol=pattern.symbol,
                pattern_id=pattern.id,
                pattern_type=pattern.pattern_type.value,
                component_name=component.name,
                evidence=list(component.evidence),
                phase=pattern.thesis.phase.value,
                completion_percent=pattern.thesis.completion_percent,
                target_price=pattern.target_price,
                neckline_price=pattern.breakout_level,
                timestamp=now,
            )
            if self.sink is not None:
                if not self.sink.send_thesis_alert(alert):
                    logger.warning(f"Alert delivery failed for {pattern.symbol} {component.name}")
            else:
                logger.info(f"📣 {pattern.symbol}: {component.name} ({alert.completion_percent:.0f}% complete)")
            # Marked sent regardless of delivery; retries belong to the sink
            component.notification_sent = True
            sent += 1
        return sent

    # Persistence round trip

    def monitor_pattern(self, pattern_id: str, store, now: Optional[datetime] = None) -> CheckResult:
        """Load fresh bars, check one pattern and persist it.

        Args:
            pattern_id: Tracked pattern id
            store: Object providing get_bars and upsert_pattern
            now: Evaluation time
        """
        now = now or datetime.now()
        pattern = self.snapshot(pattern_id)
        bars = store.get_bars(pattern.symbol, now - MONITOR_LOOKBACK, now)
        result = self.check(pattern_id, bars, now)
        snapshot = self.snapshot(pattern_id)
        store.upsert_pattern(snapshot)
        if snapshot.is_complete:
            self.forget(pattern_id)
            logger.info(f"🏁 {snapshot.symbol} {snapshot.pattern_type.value} complete, no longer tracked")
        return result

    def load_active(self, store) -> int:
        """Sync the arena with the store.

        Completed patterns still in the arena are persisted and dropped.
        Every incomplete stored pattern is then tracked. Patterns already in
        the arena are kept, so in-memory state is not overwritten by an older
        persisted copy.

        Returns:
            Number of patterns newly loaded from the store
        """
        with self._lock:
            finished = [pid for pid, p in self._patterns.items() if p.is_complete]
        for pattern_id in finished:
            store.upsert_pattern(self.snapshot(pattern_id))
            self.forget(pattern_id)

        loaded = 0
        for pattern in store.get_active_patterns():
            with self._lock:
                known = pattern.id in self._patterns
            if not known:
                self.track(pattern)
                loaded += 1
        return loaded

    def monitor_all(self, store, now: Optional[datetime] = None) -> tuple[list[CheckResult], dict[str, str]]:
        """Check every active pattern; one failure does not stop the rest.

        Returns:
            (results, errors keyed by pattern id)
        """
        self.load_active(store)
        results, errors = [], {}
        for pattern_id in self.active_ids():
            try:
                results.append(self.monitor_pattern(pattern_id, store, now))
            except Exception as e:
                logger.exception(f"Failed to monitor pattern {pattern_id}")
                errors[pattern_id] = str(e)
        return results, errors
