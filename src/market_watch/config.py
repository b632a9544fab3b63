"""Configuration management module for Market Watch."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv


DEFAULT_WATCHLIST = ["PLTR", "TSLA", "BBAI", "MSFT", "NPWR"]


@dataclass
class IndicatorConfig:
    """Indicator periods and cache lifetime."""
    rsi_period: int = 14
    rsi_long_period: int = 30
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    sma_short: int = 20
    sma_medium: int = 50
    sma_long: int = 200
    ema_short: int = 20
    ema_medium: int = 50
    vwap_period: int = 20
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    volume_period: int = 20
    cache_ttl_seconds: int = 300  # 5 minutes


@dataclass
class LevelConfig:
    """Support/resistance clustering parameters."""
    min_touches: int = 3
    lookback_days: int = 30
    cluster_tolerance_percent: float = 1.0
    penetration_tolerance_percent: float = 0.5
    pivot_strength: int = 5
    volume_confirmation_ratio: float = 1.5
    max_level_age_days: int = 60
    min_bounce_percent: float = 2.0
    min_strength_score: float = 20.0
    bounce_window: int = 5


@dataclass
class SetupConfig:
    """Setup detection and scoring parameters."""
    high_quality_threshold: float = 80.0
    medium_quality_threshold: float = 60.0
    low_quality_threshold: float = 40.0  # Floor, setups below are dropped
    price_action_weight: float = 25.0
    volume_weight: float = 25.0
    technical_weight: float = 25.0
    risk_weight: float = 25.0
    min_level_touches: int = 3
    min_bounce_percent: float = 2.0
    min_bars_at_level: int = 3
    level_tolerance_percent: float = 0.5
    volume_spike_ratio: float = 1.5
    relative_volume_ratio: float = 1.2
    max_level_age_days: int = 60
    min_level_age_days: int = 5
    min_risk_reward: float = 1.5
    max_risk_percent: float = 2.0
    proximity_percent: float = 2.0
    entry_precision_percent: float = 1.0
    expiration_hours: int = 24


@dataclass
class HeadShouldersConfig:
    """Inverse head-and-shoulders geometry bounds."""
    lookback_days: int = 180
    min_bars: int = 50
    pivot_strength: int = 5
    min_duration_hours: float = 72.0  # 3 days
    max_duration_hours: float = 720.0  # 30 days
    min_symmetry_score: float = 60.0
    min_volume_increase: float = 1.2
    neckline_deviation: float = 0.02
    target_multiplier: float = 1.0
    min_head_depth: float = 0.05
    max_shoulder_asymmetry: float = 0.30


@dataclass
class FallingWedgeConfig:
    """Falling wedge geometry bounds."""
    lookback_days: int = 90
    min_bars: int = 30
    pivot_strength: int = 5
    min_duration_hours: float = 48.0  # 2 days
    max_duration_hours: float = 480.0  # 20 days
    min_convergence: float = 0.005
    max_convergence: float = 0.15
    min_touch_points: int = 4
    volume_decrease_ratio: float = 0.8
    breakout_volume_ratio: float = 1.5
    min_wedge_height: float = 0.03


@dataclass
class SchedulerConfig:
    """Background pipeline schedule."""
    interval_minutes: int = 30
    watchlist: list[str] = field(default_factory=lambda: list(DEFAULT_WATCHLIST))
    bar_history_days: int = 30


@dataclass
class TelegramConfig:
    """Telegram bot configuration."""
    enabled: bool = False
    token: str = ""
    chat_id: str = ""
    timeout_seconds: int = 10


@dataclass
class Config:
    """Main configuration container."""
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    levels: LevelConfig = field(default_factory=LevelConfig)
    setups: SetupConfig = field(default_factory=SetupConfig)
    head_shoulders: HeadShouldersConfig = field(default_factory=HeadShouldersConfig)
    falling_wedge: FallingWedgeConfig = field(default_factory=FallingWedgeConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    database_path: str = "data/market_watch.db"


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def _section(cls, data: dict[str, Any]):
    """Build a config section, ignoring unknown keys."""
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    return cls(**known)


class ConfigManager:
    """Manages loading and validation of configuration."""

    def __init__(self, config_path: str | Path | None = None, load_env: bool = True):
        """Initialize configuration manager.

        Args:
            config_path: Path to config.json file. If None, uses default location.
            load_env: Whether to load .env file. Set to False for testing.
        """
        self.config_path = Path(config_path) if config_path else Path("config/config.json")
        self._config: Config | None = None
        self._load_env = load_env
        if load_env:
            load_dotenv()

    def load(self) -> Config:
        """Load configuration from file and environment variables.

        Returns:
            Loaded and validated Config object.

        Raises:
            ConfigValidationError: If any field is invalid.
        """
        config_data = self._load_json()
        self._config = self._parse_config(config_data)
        self._override_from_env()
        self._validate()
        return self._config

    def _load_json(self) -> dict[str, Any]:
        """Load JSON configuration file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path) as f:
            try:
                return json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigValidationError(f"Invalid JSON in {self.config_path}: {e}")

    def _parse_config(self, data: dict[str, Any]) -> Config:
        """Parse configuration dictionary into Config object."""
        return Config(
            indicators=_section(IndicatorConfig, data.get("indicators", {})),
            levels=_section(LevelConfig, data.get("levels", {})),
            setups=_section(SetupConfig, data.get("setups", {})),
            head_shoulders=_section(HeadShouldersConfig, data.get("head_shoulders", {})),
            falling_wedge=_section(FallingWedgeConfig, data.get("falling_wedge", {})),
            scheduler=_section(SchedulerConfig, data.get("scheduler", {})),
            telegram=_section(TelegramConfig, data.get("telegram", {})),
            database_path=data.get("database_path", "data/market_watch.db"),
        )

    def _override_from_env(self) -> None:
        """Override configuration values from environment variables."""
        if not self._config:
            return

        # Skip env overrides if load_env is False (for testing)
        if not self._load_env:
            return

        # Scheduler
        if watchlist := os.getenv("MARKET_WATCH_WATCHLIST"):
            self._config.scheduler.watchlist = [
                s.strip().upper() for s in watchlist.split(",") if s.strip()
            ]
        if interval := os.getenv("MARKET_WATCH_INTERVAL"):
            self._config.scheduler.interval_minutes = int(interval)

        # Telegram
        if token := os.getenv("TELEGRAM_BOT_TOKEN"):
            self._config.telegram.token = token
            self._config.telegram.enabled = True
        if chat_id := os.getenv("TELEGRAM_CHAT_ID"):
            self._config.telegram.chat_id = chat_id

        # Database
        if db_path := os.getenv("MARKET_WATCH_DB"):
            self._config.database_path = db_path

    def _validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigValidationError: If validation fails.
        """
        if not self._config:
            raise ConfigValidationError("Configuration not loaded")

        cfg = self._config
        invalid = []

        ind = cfg.indicators
        for name in ("rsi_period", "rsi_long_period", "macd_fast", "macd_slow", "macd_signal",
                     "sma_short", "sma_medium", "sma_long", "ema_short", "ema_medium",
                     "vwap_period", "bollinger_period", "volume_period"):
            if getattr(ind, name) <= 0:
                invalid.append(f"indicators.{name} (must be > 0)")
        if ind.macd_fast >= ind.macd_slow:
            invalid.append("indicators.macd_fast (must be < macd_slow)")
        if ind.cache_ttl_seconds < 0:
            invalid.append("indicators.cache_ttl_seconds (must be >= 0)")

        lv = cfg.levels
        if lv.min_touches < 1:
            invalid.append("levels.min_touches (must be >= 1)")
        if lv.cluster_tolerance_percent <= 0:
            invalid.append("levels.cluster_tolerance_percent (must be > 0)")
        if lv.penetration_tolerance_percent <= 0:
            invalid.append("levels.penetration_tolerance_percent (must be > 0)")
        if lv.pivot_strength < 1:
            invalid.append("levels.pivot_strength (must be >= 1)")

        st = cfg.setups
        for name in ("price_action_weight", "volume_weight", "technical_weight", "risk_weight"):
            weight = getattr(st, name)
            if not 0 <= weight <= 25:
                invalid.append(f"setups.{name} (must be within 0-25)")
        if not (0 <= st.low_quality_threshold < st.medium_quality_threshold
                < st.high_quality_threshold <= 100):
            invalid.append("setups thresholds (must satisfy 0 <= low < medium < high <= 100)")
        if st.proximity_percent <= 0:
            invalid.append("setups.proximity_percent (must be > 0)")
        if st.min_risk_reward <= 0:
            invalid.append("setups.min_risk_reward (must be > 0)")

        hs = cfg.head_shoulders
        if hs.min_duration_hours >= hs.max_duration_hours:
            invalid.append("head_shoulders.min_duration_hours (must be < max_duration_hours)")
        if not 0 < hs.min_head_depth < 1:
            invalid.append("head_shoulders.min_head_depth (must be within 0-1)")

        fw = cfg.falling_wedge
        if fw.min_duration_hours >= fw.max_duration_hours:
            invalid.append("falling_wedge.min_duration_hours (must be < max_duration_hours)")
        if not 0 <= fw.min_convergence < fw.max_convergence:
            invalid.append("falling_wedge.min_convergence (must be < max_convergence)")

        if cfg.scheduler.interval_minutes <= 0:
            invalid.append("scheduler.interval_minutes (must be > 0)")
        if not cfg.scheduler.watchlist:
            invalid.append("scheduler.watchlist (must not be empty)")

        if cfg.telegram.enabled and (not cfg.telegram.token or not cfg.telegram.chat_id):
            invalid.append("telegram.token/chat_id (required when telegram is enabled)")

        if invalid:
            raise ConfigValidationError(
                f"Invalid configuration fields: {', '.join(invalid)}"
            )

    @property
    def config(self) -> Config:
        """Get loaded configuration."""
        if not self._config:
            raise ConfigValidationError("Configuration not loaded. Call load() first.")
        return self._config
