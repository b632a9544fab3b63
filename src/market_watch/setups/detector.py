"""Trade setup detection from price and support/resistance levels."""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from market_watch.config import SetupConfig
from market_watch.models import (
    Direction,
    LevelType,
    SetupStatus,
    SetupType,
    SupportResistanceLevel,
    TradingSetup,
)

logger = logging.getLogger(__name__)


# Entry and stop offsets relative to the key level
BOUNCE_ENTRY_OFFSET = 0.002
BOUNCE_STOP_OFFSET = 0.005
BREAK_THRESHOLD = 0.002
BREAK_STOP_OFFSET = 0.002

DEFAULT_EXTENSIONS = (0.03, 0.06, 0.09)
ENTRY_HIT_PERCENT = 0.2


class SetupDetector:
    """Turns active levels near the current price into trade setups.

    Four shapes are recognised:
    - support_bounce: price holding above a nearby support (bullish)
    - resistance_bounce: price holding below a nearby resistance (bearish)
    - breakout: close at least 0.2% above a resistance (bullish)
    - breakdown: close at least 0.2% below a support (bearish)
    """

    def __init__(self, config: Optional[SetupConfig] = None):
        self.config = config or SetupConfig()

    def detect(
        self,
        symbol: str,
        current_price: float,
        levels: List[SupportResistanceLevel],
        now: Optional[datetime] = None,
    ) -> List[TradingSetup]:
        """Detect setups for one symbol.

        Args:
            symbol: Instrument symbol
            current_price: Latest close
            levels: Levels on record for the symbol
            now: Detection time

        Returns:
            Unscored setups with entry, stop, targets and risk/reward filled in
        """
        now = now or datetime.now()
        if current_price <= 0:
            return []

        active = [lv for lv in levels if lv.active and lv.symbol == symbol and lv.price > 0]
        setups = []
        for level in active:
            setup = self._setup_for_level(symbol, current_price, level, active, now)
            if setup is not None:
                setups.append(setup)

        logger.debug(f"{symbol}: {len(setups)} setups from {len(active)} active levels")
        return setups

    def _setup_for_level(
        self,
        symbol: str,
        price: float,
        level: SupportResistanceLevel,
        levels: List[SupportResistanceLevel],
        now: datetime,
    ) -> Optional[TradingSetup]:
        proximity = self.config.proximity_percent
        lp = level.price

        if level.level_type == LevelType.SUPPORT:
            if price > lp * (1 - BREAK_THRESHOLD):
                entry = lp * (1 + BOUNCE_ENTRY_OFFSET)
                if abs(price - entry) / entry * 100 > proximity:
                    return None
                return self._build(symbol, SetupType.SUPPORT_BOUNCE, Direction.BULLISH, price,
                                   entry, lp * (1 - BOUNCE_STOP_OFFSET), level, levels, now)
            return self._build(symbol, SetupType.BREAKDOWN, Direction.BEARISH, price,
                               price, lp * (1 + BREAK_STOP_OFFSET), level, levels, now)

        if level.level_type == LevelType.RESISTANCE:
            if price < lp * (1 + BREAK_THRESHOLD):
                entry = lp * (1 - BOUNCE_ENTRY_OFFSET)
                if abs(price - entry) / entry * 100 > proximity:
                    return None
                return self._build(symbol, SetupType.RESISTANCE_BOUNCE, Direction.BEARISH, price,
                                   entry, lp * (1 + BOUNCE_STOP_OFFSET), level, levels, now)
            return self._build(symbol, SetupType.BREAKOUT, Direction.BULLISH, price,
                               price, lp * (1 - BREAK_STOP_OFFSET), level, levels, now)

        raise ValueError(f"Unknown level type: {level.level_type}")

    def _build(
        self,
        symbol: str,
        setup_type: SetupType,
        direction: Direction,
        price: float,
        entry: float,
        stop: float,
        level: SupportResistanceLevel,
        levels: List[SupportResistanceLevel],
        now: datetime,
    ) -> Optional[TradingSetup]:
        targets = self.targets(direction, entry, levels, exclude=level)
        risk, reward = risk_and_reward(direction, entry, stop, targets[0])
        if risk <= 0 or reward <= 0:
            logger.debug(f"{symbol}: discarded {setup_type.value} at {level.price:.4f} (risk {risk:.4f})")
            return None

        return TradingSetup(
            symbol=symbol,
            setup_type=setup_type,
            direction=direction,
            current_price=price,
            entry_price=entry,
            stop_loss=stop,
            target1=targets[0],
            target2=targets[1] if len(targets) > 1 else None,
            target3=targets[2] if len(targets) > 2 else None,
            risk_amount=risk,
            reward_amount=reward,
            risk_reward_ratio=reward / risk,
            key_level=level,
            detected_at=now,
            expires_at=now + timedelta(hours=self.config.expiration_hours),
        )

    def targets(
        self,
        direction: Direction,
        entry: float,
        levels: List[SupportResistanceLevel],
        exclude: Optional[SupportResistanceLevel] = None,
    ) -> List[float]:
        """Up to three opposing level prices beyond the entry.

        Falls back to fixed 3/6/9% extensions when no level qualifies.
        """
        if direction == Direction.BULLISH:
            prices = sorted(
                lv.price for lv in levels
                if lv is not exclude and lv.level_type == LevelType.RESISTANCE and lv.price > entry
            )
            fallback = [entry * (1 + ext) for ext in DEFAULT_EXTENSIONS]
        elif direction == Direction.BEARISH:
            prices = sorted(
                (lv.price for lv in levels
                 if lv is not exclude and lv.level_type == LevelType.SUPPORT and lv.price < entry),
                reverse=True,
            )
            fallback = [entry * (1 - ext) for ext in DEFAULT_EXTENSIONS]
        else:
            raise ValueError(f"Unknown direction: {direction}")

        return prices[:3] if prices else fallback

    def refresh_status(self, setup: TradingSetup, price: float, now: datetime) -> SetupStatus:
        """Advance an active setup's status from the latest price.

        Expired after expires_at, invalidated once price crosses the stop,
        triggered when price trades at the entry.
        """
        if setup.status != SetupStatus.ACTIVE:
            return setup.status

        if setup.expires_at is not None and now >= setup.expires_at:
            setup.status = SetupStatus.EXPIRED
        elif setup.direction == Direction.BULLISH and price <= setup.stop_loss:
            setup.status = SetupStatus.INVALIDATED
        elif setup.direction == Direction.BEARISH and price >= setup.stop_loss:
            setup.status = SetupStatus.INVALIDATED
        elif abs(price - setup.entry_price) / setup.entry_price * 100 <= ENTRY_HIT_PERCENT:
            setup.status = SetupStatus.TRIGGERED

        if setup.status != SetupStatus.ACTIVE:
            logger.info(f"{setup.symbol} {setup.setup_type.value} setup {setup.status.value} at {price:.4f}")
        return setup.status


def risk_and_reward(direction: Direction, entry: float, stop: float, target: float) -> tuple[float, float]:
    """Risk to the stop and reward to the target, positive when well formed."""
    if direction == Direction.BULLISH:
        return entry - stop, target - entry
    if direction == Direction.BEARISH:
        return stop - entry, entry - target
    raise ValueError(f"Unknown direction: {direction}")


def summarize(setups: List[TradingSetup]) -> dict:
    """Counts by type, direction and confidence plus mean quality."""
    if not setups:
        return {"total": 0, "by_type": {}, "by_direction": {}, "by_confidence": {}, "avg_quality": 0.0}
    return {
        "total": len(setups),
        "by_type": dict(Counter(s.setup_type.value for s in setups)),
        "by_direction": dict(Counter(s.direction.value for s in setups)),
        "by_confidence": dict(Counter(s.confidence.value for s in setups)),
        "avg_quality": sum(s.quality_score for s in setups) / len(setups),
    }
