"""Trade setups derived from geometric patterns."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from market_watch.models import Direction, SetupType, TradingSetup
from market_watch.patterns.models import GeometricPattern
from market_watch.setups.detector import risk_and_reward

logger = logging.getLogger(__name__)


ENTRY_OFFSET = 0.002
STOP_OFFSET = 0.02
TARGET_FRACTIONS = (0.5, 0.75, 1.0)


def trading_setup_from_pattern(
    pattern: GeometricPattern,
    current_price: float,
    now: Optional[datetime] = None,
    expiration_hours: float = 24,
) -> Optional[TradingSetup]:
    """Bullish breakout setup at the pattern's breakout level.

    Entry sits just above the neckline (or the upper trend line at the
    pattern end), the stop just below the invalidation level, and the three
    targets at 50/75/100% of the measured move.

    Args:
        pattern: Detected pattern
        current_price: Latest close
        now: Detection time
        expiration_hours: Setup lifetime

    Returns:
        Unscored setup, or None if the geometry gives no positive risk/reward
    """
    now = now or datetime.now()
    entry = pattern.breakout_level * (1 + ENTRY_OFFSET)
    stop = pattern.invalidation_level * (1 - STOP_OFFSET)
    targets = [pattern.target_at(f) for f in TARGET_FRACTIONS]

    risk, reward = risk_and_reward(Direction.BULLISH, entry, stop, targets[0])
    if risk <= 0 or reward <= 0:
        logger.debug(f"{pattern.symbol}: no setup from {pattern.pattern_type.value} (risk {risk:.4f}, reward {reward:.4f})")
        return None

    return TradingSetup(
        symbol=pattern.symbol,
        setup_type=SetupType.BREAKOUT,
        direction=Direction.BULLISH,
        current_price=current_price,
        entry_price=entry,
        stop_loss=stop,
        target1=targets[0],
        target2=targets[1],
        target3=targets[2],
        risk_amount=risk,
        reward_amount=reward,
        risk_reward_ratio=reward / risk,
        detected_at=now,
        expires_at=now + timedelta(hours=expiration_hours),
    )
