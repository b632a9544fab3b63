"""Twenty item setup checklist and quality scoring.

Each of the four categories holds five items worth 5 points, so every
category subtotal lies in [0, 25] and the quality score is their sum.
Category weights (default 25) scale a subtotal by weight / 25.
"""

import logging
from datetime import datetime
from typing import List, Optional

from market_watch.config import SetupConfig
from market_watch.indicators.calculator import IndicatorSnapshot, bars_to_frame, rsi_series
from market_watch.models import (
    ChecklistCategory,
    ChecklistItem,
    Confidence,
    Direction,
    PriceBar,
    SetupChecklist,
    SetupType,
    TradingSetup,
)

logger = logging.getLogger(__name__)


CATEGORY_CAP = 25.0
ITEM_POINTS = 5.0
DIVERGENCE_LOOKBACK = 10

# (key, category, description, required)
CHECKLIST_TEMPLATE = [
    ("min_level_touches", ChecklistCategory.PRICE_ACTION, "Level touched at least 3 times", True),
    ("bounce_strength", ChecklistCategory.PRICE_ACTION, "Average bounce of at least 2%", True),
    ("time_at_level", ChecklistCategory.PRICE_ACTION, "Price has spent time at the level", False),
    ("rejection_candle", ChecklistCategory.PRICE_ACTION, "Last candle rejects the level", False),
    ("level_duration", ChecklistCategory.PRICE_ACTION, "Level age within the valid range", False),
    ("volume_spike", ChecklistCategory.VOLUME, "Volume at least 1.5x average", True),
    ("volume_confirmation", ChecklistCategory.VOLUME, "Level touches came on heavy volume", False),
    ("approach_volume", ChecklistCategory.VOLUME, "Volume behaves as expected into the level", False),
    ("vwap_relationship", ChecklistCategory.VOLUME, "Price on the right side of VWAP", False),
    ("relative_volume", ChecklistCategory.VOLUME, "Relative volume at least 1.2x", False),
    ("rsi_condition", ChecklistCategory.TECHNICAL, "RSI supports the direction", False),
    ("moving_average", ChecklistCategory.TECHNICAL, "Price on the right side of SMA20", False),
    ("macd_signal", ChecklistCategory.TECHNICAL, "MACD histogram agrees", False),
    ("momentum_divergence", ChecklistCategory.TECHNICAL, "Price/RSI divergence in favour", False),
    ("bollinger_bands", ChecklistCategory.TECHNICAL, "Price at the favourable band", False),
    ("stop_loss_defined", ChecklistCategory.RISK, "Stop loss defined", True),
    ("risk_reward_ratio", ChecklistCategory.RISK, "Risk/reward at least 1.5", True),
    ("position_size", ChecklistCategory.RISK, "Risk within the per-trade limit", False),
    ("entry_precision", ChecklistCategory.RISK, "Price close to the entry", False),
    ("exit_strategy", ChecklistCategory.RISK, "Target defined", False),
]


def new_checklist() -> SetupChecklist:
    """Fresh checklist with every item incomplete."""
    return SetupChecklist(items=[
        ChecklistItem(key=key, category=category, description=description,
                      required=required, points=ITEM_POINTS)
        for key, category, description, required in CHECKLIST_TEMPLATE
    ])


def mark(checklist: SetupChecklist, key: str, condition) -> None:
    """Set a checklist item, storing a plain bool."""
    checklist.get(key).completed = bool(condition)


def confidence_for(score: float, config: SetupConfig) -> Confidence:
    """Confidence bucket. Lower edges are inclusive."""
    if score >= config.high_quality_threshold:
        return Confidence.HIGH
    if score >= config.medium_quality_threshold:
        return Confidence.MEDIUM
    return Confidence.LOW


class SetupScorer:
    """Evaluates setups against the checklist and assigns quality/confidence."""

    def __init__(self, config: Optional[SetupConfig] = None):
        self.config = config or SetupConfig()

    @property
    def weights(self) -> dict[ChecklistCategory, float]:
        cfg = self.config
        return {
            ChecklistCategory.PRICE_ACTION: cfg.price_action_weight,
            ChecklistCategory.VOLUME: cfg.volume_weight,
            ChecklistCategory.TECHNICAL: cfg.technical_weight,
            ChecklistCategory.RISK: cfg.risk_weight,
        }

    def score(
        self,
        setup: TradingSetup,
        indicators: IndicatorSnapshot,
        bars: List[PriceBar],
        now: Optional[datetime] = None,
    ) -> TradingSetup:
        """Fill the checklist, category subtotals, quality and confidence.

        Args:
            setup: Setup to score (updated in place)
            indicators: Indicator snapshot for the symbol
            bars: Recent bars, ascending
            now: Reference time for level age

        Returns:
            The same setup
        """
        now = now or setup.detected_at
        checklist = new_checklist()
        self._evaluate_price_action(checklist, setup, bars, now)
        self._evaluate_volume(checklist, setup, indicators, bars)
        self._evaluate_technical(checklist, setup, indicators, bars)
        self._evaluate_risk(checklist, setup)

        subtotals = self.category_subtotals(checklist)
        setup.checklist = checklist
        setup.price_action_score = subtotals[ChecklistCategory.PRICE_ACTION]
        setup.volume_score = subtotals[ChecklistCategory.VOLUME]
        setup.technical_score = subtotals[ChecklistCategory.TECHNICAL]
        setup.risk_score = subtotals[ChecklistCategory.RISK]
        setup.quality_score = sum(subtotals.values())
        setup.confidence = confidence_for(setup.quality_score, self.config)
        setup.rsi = indicators.rsi_14
        setup.volume_ratio = indicators.volume_ratio

        missing = checklist.missing_required()
        if missing:
            logger.debug(f"{setup.symbol} {setup.setup_type.value}: missing required {', '.join(missing)}")
        return setup

    def score_all(
        self,
        setups: List[TradingSetup],
        indicators: IndicatorSnapshot,
        bars: List[PriceBar],
        now: Optional[datetime] = None,
    ) -> List[TradingSetup]:
        """Score setups and drop those below the quality floor.

        Returns:
            Surviving setups, best first
        """
        scored = [self.score(setup, indicators, bars, now) for setup in setups]
        kept = [s for s in scored if s.quality_score >= self.config.low_quality_threshold]
        dropped = len(scored) - len(kept)
        if dropped:
            logger.debug(f"Dropped {dropped} setups below quality floor {self.config.low_quality_threshold}")
        return sorted(kept, key=lambda s: s.quality_score, reverse=True)

    def category_subtotals(self, checklist: SetupChecklist) -> dict[ChecklistCategory, float]:
        """Weighted points per category, each capped at 25."""
        subtotals = {}
        for category, weight in self.weights.items():
            raw = checklist.category_points(category)
            subtotals[category] = min(CATEGORY_CAP, raw * weight / CATEGORY_CAP)
        return subtotals

    # Price action

    def _evaluate_price_action(self, checklist: SetupChecklist, setup: TradingSetup,
                               bars: List[PriceBar], now: datetime) -> None:
        cfg = self.config
        level = setup.key_level
        if level is None:
            return

        mark(checklist, "min_level_touches", level.touch_count >= cfg.min_level_touches)
        mark(checklist, "bounce_strength", level.avg_bounce_percent >= cfg.min_bounce_percent)

        recent = bars[-20:]
        at_level = sum(1 for b in recent if level.is_within(b.close, cfg.level_tolerance_percent))
        item = checklist.get("time_at_level")
        item.completed = bool(at_level >= cfg.min_bars_at_level)
        item.notes = f"{at_level} recent bars at level"

        if bars:
            mark(checklist, "rejection_candle", is_rejection_candle(bars[-1], setup.direction))

        age = level.age_days(now)
        item = checklist.get("level_duration")
        item.completed = bool(cfg.min_level_age_days <= age <= cfg.max_level_age_days)
        item.notes = f"{age:.1f} days"

    # Volume

    def _evaluate_volume(self, checklist: SetupChecklist, setup: TradingSetup,
                         ind: IndicatorSnapshot, bars: List[PriceBar]) -> None:
        cfg = self.config
        bullish = setup.direction == Direction.BULLISH

        mark(checklist, "volume_spike", ind.volume_ratio >= cfg.volume_spike_ratio)
        mark(checklist, "relative_volume", ind.volume_ratio >= cfg.relative_volume_ratio)
        mark(checklist, "volume_confirmation", setup.key_level is not None and setup.key_level.volume_confirmed)

        if len(bars) >= 20:
            recent = sum(b.volume for b in bars[-5:]) / 5
            prior = sum(b.volume for b in bars[-20:-5]) / 15
            if setup.setup_type in (SetupType.SUPPORT_BOUNCE, SetupType.RESISTANCE_BOUNCE):
                expected = recent < prior
            else:
                expected = recent > prior
            mark(checklist, "approach_volume", prior > 0 and expected)

        if ind.vwap > 0:
            price = setup.current_price
            mark(checklist, "vwap_relationship", price >= ind.vwap if bullish else price <= ind.vwap)

    # Technical

    def _evaluate_technical(self, checklist: SetupChecklist, setup: TradingSetup,
                            ind: IndicatorSnapshot, bars: List[PriceBar]) -> None:
        bullish = setup.direction == Direction.BULLISH
        price = setup.current_price

        if ind.rsi_14 > 0:
            mark(checklist, "rsi_condition", ind.rsi_14 <= 40 if bullish else ind.rsi_14 >= 60)

        if ind.sma_20 > 0:
            mark(checklist, "moving_average", price > ind.sma_20 if bullish else price < ind.sma_20)

        if ind.macd_line != 0 or ind.macd_signal != 0:
            mark(checklist, "macd_signal", ind.macd_histogram > 0 if bullish else ind.macd_histogram < 0)

        mark(checklist, "momentum_divergence", has_divergence(bars, setup.direction))

        width = ind.bb_upper - ind.bb_lower
        if ind.bb_lower > 0 and width > 0:
            position = (price - ind.bb_lower) / width
            mark(checklist, "bollinger_bands", position <= 0.25 if bullish else position >= 0.75)

    # Risk

    def _evaluate_risk(self, checklist: SetupChecklist, setup: TradingSetup) -> None:
        cfg = self.config
        mark(checklist, "stop_loss_defined", setup.stop_loss > 0)
        mark(checklist, "risk_reward_ratio", setup.risk_reward_ratio >= cfg.min_risk_reward)

        item = checklist.get("position_size")
        item.completed = bool(0 < setup.risk_percent <= cfg.max_risk_percent)
        item.notes = f"risk {setup.risk_percent:.2f}%"

        if setup.entry_price > 0:
            distance = abs(setup.current_price - setup.entry_price) / setup.entry_price * 100
            mark(checklist, "entry_precision", distance <= cfg.entry_precision_percent)

        mark(checklist, "exit_strategy", setup.target1 is not None and setup.target1 > 0)


def is_rejection_candle(bar: PriceBar, direction: Direction) -> bool:
    """Wick toward the level at least twice the body."""
    body = abs(bar.close - bar.open)
    if direction == Direction.BULLISH:
        wick = min(bar.open, bar.close) - bar.low
    else:
        wick = bar.high - max(bar.open, bar.close)
    return wick > 0 and wick >= 2 * body


def has_divergence(bars: List[PriceBar], direction: Direction, period: int = 14) -> bool:
    """Price and RSI moved in opposite directions over the lookback.

    Bullish: lower close with rising RSI. Bearish: higher close with falling RSI.
    """
    if len(bars) < period + DIVERGENCE_LOOKBACK + 1:
        return False
    closes = bars_to_frame(bars)["close"]
    rsi = rsi_series(closes, period)
    then, now = -(DIVERGENCE_LOOKBACK + 1), -1
    if rsi.iloc[then] <= 0 or rsi.iloc[now] <= 0:
        return False
    price_change = closes.iloc[now] - closes.iloc[then]
    rsi_change = rsi.iloc[now] - rsi.iloc[then]
    if direction == Direction.BULLISH:
        return bool(price_change < 0 and rsi_change > 0)
    return bool(price_change > 0 and rsi_change < 0)
