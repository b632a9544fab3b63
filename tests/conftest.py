"""Pytest configuration and shared fixtures."""

import os
import tempfile
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

import pytest

from market_watch.config import Config
from market_watch.models import LevelType, PriceBar, SupportResistanceLevel
from market_watch.persistence import MarketStore


T0 = datetime(2025, 1, 6, 9, 0)


def make_bar(symbol: str, ts: datetime, close: float, volume: float = 1000.0,
             spread: float = 0.001, open_: float = None) -> PriceBar:
    """Bar around a close with a symmetric high/low spread."""
    return PriceBar(
        symbol=symbol,
        timestamp=ts,
        open=close if open_ is None else open_,
        high=close * (1 + spread),
        low=close * (1 - spread),
        close=close,
        volume=volume,
    )


def bars_from_closes(closes: Sequence[float], symbol: str = "TEST", start: datetime = T0,
                     step: timedelta = timedelta(hours=1), volume: float = 1000.0) -> List[PriceBar]:
    """One bar per close, evenly spaced."""
    return [make_bar(symbol, start + step * i, c, volume) for i, c in enumerate(closes)]


def interpolate(waypoints: Sequence[Tuple[int, float]]) -> List[float]:
    """Linear path through (hour, price) waypoints, one value per hour."""
    closes = []
    for (h0, p0), (h1, p1) in zip(waypoints, waypoints[1:]):
        for h in range(h0, h1):
            closes.append(p0 + (p1 - p0) * (h - h0) / (h1 - h0))
    closes.append(waypoints[-1][1])
    return closes


# Hourly path with three lows (left shoulder, head, right shoulder) and two
# peaks between them; the only low triple in the series.
IHS_WAYPOINTS = [
    (0, 11.0), (24, 10.0), (66, 11.0), (108, 9.0), (150, 11.0), (192, 10.05), (230, 10.8),
]


def ihs_bars(symbol: str = "PLTR") -> List[PriceBar]:
    return bars_from_closes(interpolate(IHS_WAYPOINTS), symbol=symbol)


def make_level(price: float, level_type: LevelType = LevelType.SUPPORT, symbol: str = "TEST",
               touches: int = 4, now: datetime = T0, age_days: float = 10.0,
               bounce: float = 3.2, volume_confirmed: bool = True, score: float = 70.0) -> SupportResistanceLevel:
    return SupportResistanceLevel(
        symbol=symbol,
        price=price,
        level_type=level_type,
        touch_count=touches,
        first_touch=now - timedelta(days=age_days),
        last_touch=now - timedelta(hours=2),
        avg_bounce_percent=bounce,
        max_bounce_percent=bounce * 1.5,
        volume_confirmed=volume_confirmed,
        strength_score=score,
    )


@pytest.fixture
def temp_db_path():
    """Path to a temporary SQLite file, removed afterwards."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "market_watch.db")


@pytest.fixture
def store(temp_db_path):
    return MarketStore(temp_db_path)


@pytest.fixture
def config(temp_db_path):
    cfg = Config()
    cfg.database_path = temp_db_path
    return cfg
