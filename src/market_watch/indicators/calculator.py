"""Technical indicator calculation module for Market Watch.

Every indicator that needs more history than the window provides yields its
neutral default (0.0, or 1.0 for the volume ratio) instead of NaN.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd

from market_watch.config import IndicatorConfig
from market_watch.indicators.cache import IndicatorCache
from market_watch.models import PriceBar

logger = logging.getLogger(__name__)


NEUTRAL_VOLUME_RATIO = 1.0


@dataclass
class IndicatorSnapshot:
    """Indicator values for the last bar of a window."""
    symbol: str
    price: float = 0.0
    rsi_14: float = 0.0
    rsi_30: float = 0.0
    macd_line: float = 0.0
    macd_signal: float = 0.0
    macd_histogram: float = 0.0
    sma_20: float = 0.0
    sma_50: float = 0.0
    sma_200: float = 0.0
    ema_20: float = 0.0
    ema_50: float = 0.0
    vwap: float = 0.0
    bb_upper: float = 0.0
    bb_middle: float = 0.0
    bb_lower: float = 0.0
    volume_ratio: float = NEUTRAL_VOLUME_RATIO
    trend_direction: str = "neutral"
    sentiment: str = "neutral"
    bar_count: int = 0
    calculated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "rsi_14": self.rsi_14,
            "rsi_30": self.rsi_30,
            "macd_line": self.macd_line,
            "macd_signal": self.macd_signal,
            "macd_histogram": self.macd_histogram,
            "sma_20": self.sma_20,
            "sma_50": self.sma_50,
            "sma_200": self.sma_200,
            "ema_20": self.ema_20,
            "ema_50": self.ema_50,
            "vwap": self.vwap,
            "bb_upper": self.bb_upper,
            "bb_middle": self.bb_middle,
            "bb_lower": self.bb_lower,
            "volume_ratio": self.volume_ratio,
            "trend_direction": self.trend_direction,
            "sentiment": self.sentiment,
            "bar_count": self.bar_count,
            "calculated_at": self.calculated_at.isoformat(),
        }


@dataclass
class IndicatorAlert:
    """Notable indicator condition on the latest bar."""
    symbol: str
    alert_type: str
    message: str
    value: float


def bars_to_frame(bars: list[PriceBar]) -> pd.DataFrame:
    """Convert bars to an OHLCV dataframe indexed by timestamp."""
    if not bars:
        return pd.DataFrame(columns=["open", "high", "low", "close", "volume"], dtype=float)
    return pd.DataFrame(
        {
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        },
        index=pd.DatetimeIndex([b.timestamp for b in bars], name="timestamp"),
        dtype=float,
    )


def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


def seeded_ema(series: pd.Series, period: int) -> pd.Series:
    """EMA seeded with the SMA of the first `period` values.

    Returns an empty series when there are fewer than `period` values.
    """
    if len(series) < period:
        return pd.Series(dtype=float)
    seed = series.iloc[:period].mean()
    seeded = pd.concat([pd.Series([seed]), series.iloc[period:]], ignore_index=True)
    return seeded.ewm(span=period, adjust=False).mean()


def rsi_series(closes: pd.Series, period: int = 14) -> pd.Series:
    """Rolling RSI using a simple average of the last `period` changes.

    Positions without enough history are 0.0.
    """
    deltas = closes.diff()
    # Rolling sums can leave tiny negative residues
    gains = deltas.clip(lower=0).rolling(window=period).mean().clip(lower=0)
    losses = (-deltas.clip(upper=0)).rolling(window=period).mean().clip(lower=0)

    with np.errstate(divide="ignore", invalid="ignore"):
        rsi = 100 - 100 / (1 + gains / losses)
    rsi = rsi.where(losses != 0, np.where(gains > 0, 100.0, 50.0))
    return rsi.where(gains.notna(), 0.0).clip(0.0, 100.0).astype(float)


class IndicatorEngine:
    """Calculates trend and momentum indicators from a bar window.

    Results are cached per symbol in an IndicatorCache owned by the engine.
    """

    def __init__(self, config: Optional[IndicatorConfig] = None, cache: Optional[IndicatorCache] = None):
        """Initialize indicator engine.

        Args:
            config: Indicator periods
            cache: Cache to use. Defaults to one with the configured TTL.
        """
        self.config = config or IndicatorConfig()
        self.cache = cache or IndicatorCache(ttl_seconds=self.config.cache_ttl_seconds)

    def get_indicators(self, symbol: str, bars: list[PriceBar]) -> IndicatorSnapshot:
        """Cache-through indicator lookup for a symbol."""
        cached = self.cache.get(symbol)
        if cached is not None:
            return cached
        snapshot = self.compute(bars, symbol=symbol)
        self.cache.put(symbol, snapshot)
        return snapshot

    def invalidate(self, symbol: str) -> bool:
        return self.cache.invalidate(symbol)

    def clear_expired(self) -> int:
        return self.cache.clear_expired()

    def cache_status(self) -> dict:
        return self.cache.status()

    def compute(self, bars: list[PriceBar], symbol: Optional[str] = None) -> IndicatorSnapshot:
        """Calculate all indicators for the last bar of the window.

        Args:
            bars: Bars in ascending time order
            symbol: Symbol name, defaults to the bars' symbol

        Returns:
            IndicatorSnapshot with neutral defaults where history is short
        """
        cfg = self.config
        symbol = symbol or (bars[0].symbol if bars else "")
        df = bars_to_frame(bars)
        snapshot = IndicatorSnapshot(symbol=symbol, bar_count=len(df))
        if df.empty:
            return snapshot

        closes = df["close"]
        snapshot.price = _finite(closes.iloc[-1])
        snapshot.rsi_14 = self.calculate_rsi(closes, cfg.rsi_period)
        snapshot.rsi_30 = self.calculate_rsi(closes, cfg.rsi_long_period)
        snapshot.macd_line, snapshot.macd_signal, snapshot.macd_histogram = self.calculate_macd(closes)
        snapshot.sma_20 = self.calculate_sma(closes, cfg.sma_short)
        snapshot.sma_50 = self.calculate_sma(closes, cfg.sma_medium)
        snapshot.sma_200 = self.calculate_sma(closes, cfg.sma_long)
        snapshot.ema_20 = self.calculate_ema(closes, cfg.ema_short)
        snapshot.ema_50 = self.calculate_ema(closes, cfg.ema_medium)
        snapshot.vwap = self.calculate_vwap(df, cfg.vwap_period)
        snapshot.bb_upper, snapshot.bb_middle, snapshot.bb_lower = self.calculate_bollinger(
            closes, cfg.bollinger_period, cfg.bollinger_std
        )
        snapshot.volume_ratio = self.calculate_volume_ratio(df["volume"], cfg.volume_period)
        snapshot.trend_direction = self.trend_direction(snapshot)
        snapshot.sentiment = self.sentiment(snapshot)
        return snapshot

    def calculate_sma(self, closes: pd.Series, period: int) -> float:
        if len(closes) < period:
            return 0.0
        return _finite(closes.rolling(window=period).mean().iloc[-1])

    def calculate_ema(self, closes: pd.Series, period: int) -> float:
        ema = seeded_ema(closes, period)
        if ema.empty:
            return 0.0
        return _finite(ema.iloc[-1])

    def calculate_rsi(self, closes: pd.Series, period: int) -> float:
        """RSI from the simple average of the last `period` gains and losses.

        Returns 0.0 with fewer than period + 1 closes, 50.0 for a flat series
        and 100.0 when there were no losses.
        """
        if len(closes) < period + 1:
            return 0.0
        deltas = closes.diff().iloc[-period:]
        avg_gain = deltas.clip(lower=0).mean()
        avg_loss = (-deltas.clip(upper=0)).mean()
        if avg_loss == 0:
            return 50.0 if avg_gain == 0 else 100.0
        rs = avg_gain / avg_loss
        return _finite(100 - 100 / (1 + rs))

    def calculate_macd(self, closes: pd.Series) -> tuple[float, float, float]:
        """MACD line, signal line and histogram. Zeros before slow period."""
        cfg = self.config
        if len(closes) < cfg.macd_slow:
            return 0.0, 0.0, 0.0

        fast = seeded_ema(closes, cfg.macd_fast)
        slow = seeded_ema(closes, cfg.macd_slow)
        # Align fast EMA to the slow one (both end on the last close)
        fast = fast.iloc[cfg.macd_slow - cfg.macd_fast:].reset_index(drop=True)
        macd = fast - slow.reset_index(drop=True)

        if len(macd) >= cfg.macd_signal:
            signal = seeded_ema(macd, cfg.macd_signal).iloc[-1]
        else:
            signal = macd.mean()

        line = _finite(macd.iloc[-1])
        signal = _finite(signal)
        return line, signal, line - signal

    def calculate_vwap(self, df: pd.DataFrame, period: int) -> float:
        if len(df) < period:
            return 0.0
        window = df.tail(period)
        typical = (window["high"] + window["low"] + window["close"]) / 3
        total_volume = window["volume"].sum()
        if total_volume <= 0:
            return 0.0
        return _finite((typical * window["volume"]).sum() / total_volume)

    def calculate_bollinger(self, closes: pd.Series, period: int, num_std: float) -> tuple[float, float, float]:
        """Upper, middle and lower bands using population standard deviation."""
        if len(closes) < period:
            return 0.0, 0.0, 0.0
        window = closes.tail(period)
        middle = window.mean()
        std = window.std(ddof=0)
        return _finite(middle + num_std * std), _finite(middle), _finite(middle - num_std * std)

    def calculate_volume_ratio(self, volumes: pd.Series, period: int) -> float:
        """Last bar volume against the mean of the preceding period - 1 bars."""
        if len(volumes) < period:
            return NEUTRAL_VOLUME_RATIO
        previous = volumes.iloc[-period:-1].mean()
        if previous <= 0:
            return NEUTRAL_VOLUME_RATIO
        return _finite(volumes.iloc[-1] / previous, NEUTRAL_VOLUME_RATIO)

    @staticmethod
    def trend_direction(snapshot: IndicatorSnapshot) -> str:
        if snapshot.sma_20 <= 0 or snapshot.sma_50 <= 0:
            return "neutral"
        if snapshot.price > snapshot.sma_20 > snapshot.sma_50:
            return "bullish"
        if snapshot.price < snapshot.sma_20 < snapshot.sma_50:
            return "bearish"
        return "neutral"

    @staticmethod
    def sentiment(snapshot: IndicatorSnapshot) -> str:
        if snapshot.rsi_14 <= 0:
            return "neutral"
        if snapshot.rsi_14 > 70:
            return "overbought"
        if snapshot.rsi_14 < 30:
            return "oversold"
        return "neutral"

    def alerts(self, snapshot: IndicatorSnapshot) -> list[IndicatorAlert]:
        """Indicator alerts for the latest bar.

        RSI oversold/overbought, MACD histogram sign and volume spikes.
        Zero values are treated as insufficient history and skipped.
        """
        alerts = []
        symbol = snapshot.symbol

        if 0 < snapshot.rsi_14 < 30:
            alerts.append(IndicatorAlert(symbol, "rsi_oversold",
                                         f"{symbol} RSI oversold at {snapshot.rsi_14:.1f}", snapshot.rsi_14))
        elif snapshot.rsi_14 > 70:
            alerts.append(IndicatorAlert(symbol, "rsi_overbought",
                                         f"{symbol} RSI overbought at {snapshot.rsi_14:.1f}", snapshot.rsi_14))

        if snapshot.macd_line != 0 or snapshot.macd_signal != 0:
            if snapshot.macd_histogram > 0:
                alerts.append(IndicatorAlert(symbol, "macd_bullish",
                                             f"{symbol} MACD above signal", snapshot.macd_histogram))
            elif snapshot.macd_histogram < 0:
                alerts.append(IndicatorAlert(symbol, "macd_bearish",
                                             f"{symbol} MACD below signal", snapshot.macd_histogram))

        if snapshot.volume_ratio >= 2.0:
            alerts.append(IndicatorAlert(symbol, "volume_spike",
                                         f"{symbol} volume {snapshot.volume_ratio:.1f}x average",
                                         snapshot.volume_ratio))
        return alerts
