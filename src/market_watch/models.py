"""Core data models for Market Watch."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
import json


class PivotKind(Enum):
    """Side of a local price extremum."""
    HIGH = "high"
    LOW = "low"


class LevelType(Enum):
    """Role a price level plays for the instrument."""
    SUPPORT = "support"
    RESISTANCE = "resistance"


class SetupType(Enum):
    """Kind of trade opportunity."""
    SUPPORT_BOUNCE = "support_bounce"
    RESISTANCE_BOUNCE = "resistance_bounce"
    BREAKOUT = "breakout"
    BREAKDOWN = "breakdown"


class Direction(Enum):
    """Expected direction of the trade."""
    BULLISH = "bullish"
    BEARISH = "bearish"


class Confidence(Enum):
    """Confidence bucket derived from the quality score."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SetupStatus(Enum):
    """Lifecycle of a trading setup."""
    ACTIVE = "active"
    TRIGGERED = "triggered"
    EXPIRED = "expired"
    INVALIDATED = "invalidated"


class ChecklistCategory(Enum):
    """The four checklist categories, five items each."""
    PRICE_ACTION = "price_action"
    VOLUME = "volume"
    TECHNICAL = "technical"
    RISK = "risk"


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class PriceBar:
    """One OHLCV observation. Unique on (symbol, timestamp)."""
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PriceBar":
        """Create from dictionary."""
        return cls(
            symbol=data["symbol"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data["volume"]),
        )


@dataclass
class PivotPoint:
    """Local extremum found in a bar window. Regenerated on every run."""
    symbol: str
    timestamp: datetime
    price: float
    kind: PivotKind
    window_strength: int
    volume: float
    index: int = -1  # Position in the bar window it was extracted from

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "price": self.price,
            "kind": self.kind.value,
            "window_strength": self.window_strength,
            "volume": self.volume,
            "index": self.index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PivotPoint":
        return cls(
            symbol=data["symbol"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            price=data["price"],
            kind=PivotKind(data["kind"]),
            window_strength=data["window_strength"],
            volume=data["volume"],
            index=data.get("index", -1),
        )


@dataclass
class SupportResistanceLevel:
    """A clustered price zone that has repeatedly reversed price."""
    symbol: str
    price: float
    level_type: LevelType
    touch_count: int
    first_touch: datetime
    last_touch: datetime
    avg_bounce_percent: float = 0.0
    max_bounce_percent: float = 0.0
    volume_confirmed: bool = False
    strength_score: float = 0.0
    active: bool = True
    id: Optional[int] = None

    def age_days(self, now: datetime) -> float:
        """Days elapsed since the first touch."""
        return max(0.0, (now - self.first_touch).total_seconds() / 86400)

    def is_within(self, price: float, tolerance_percent: float) -> bool:
        """Check whether a price sits within tolerance of this level."""
        if self.price <= 0:
            return False
        return abs(price - self.price) / self.price * 100 <= tolerance_percent

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "price": self.price,
            "level_type": self.level_type.value,
            "touch_count": self.touch_count,
            "first_touch": self.first_touch.isoformat(),
            "last_touch": self.last_touch.isoformat(),
            "avg_bounce_percent": self.avg_bounce_percent,
            "max_bounce_percent": self.max_bounce_percent,
            "volume_confirmed": self.volume_confirmed,
            "strength_score": self.strength_score,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SupportResistanceLevel":
        """Create from dictionary."""
        return cls(
            id=data.get("id"),
            symbol=data["symbol"],
            price=data["price"],
            level_type=LevelType(data["level_type"]),
            touch_count=data["touch_count"],
            first_touch=datetime.fromisoformat(data["first_touch"]),
            last_touch=datetime.fromisoformat(data["last_touch"]),
            avg_bounce_percent=data.get("avg_bounce_percent", 0.0),
            max_bounce_percent=data.get("max_bounce_percent", 0.0),
            volume_confirmed=bool(data.get("volume_confirmed", False)),
            strength_score=data.get("strength_score", 0.0),
            active=bool(data.get("active", True)),
        )


@dataclass
class ChecklistItem:
    """One rubric line worth a fixed number of points."""
    key: str
    category: ChecklistCategory
    description: str
    required: bool = False
    completed: bool = False
    points: float = 5.0
    notes: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "category": self.category.value,
            "description": self.description,
            "required": self.required,
            "completed": bool(self.completed),
            "points": self.points,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChecklistItem":
        return cls(
            key=data["key"],
            category=ChecklistCategory(data["category"]),
            description=data.get("description", ""),
            required=data.get("required", False),
            completed=data.get("completed", False),
            points=data.get("points", 5.0),
            notes=data.get("notes", ""),
        )


@dataclass
class SetupChecklist:
    """Twenty item rubric, five items per category."""
    items: list[ChecklistItem] = field(default_factory=list)

    def get(self, key: str) -> ChecklistItem:
        for item in self.items:
            if item.key == key:
                return item
        raise KeyError(key)

    def category_items(self, category: ChecklistCategory) -> list[ChecklistItem]:
        return [item for item in self.items if item.category == category]

    def category_points(self, category: ChecklistCategory) -> float:
        """Raw points earned in one category."""
        return sum(item.points for item in self.category_items(category) if item.completed)

    @property
    def total_points(self) -> float:
        return sum(item.points for item in self.items if item.completed)

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.items if item.completed)

    def missing_required(self) -> list[str]:
        """Keys of required items that were not met."""
        return [item.key for item in self.items if item.required and not item.completed]

    def to_dict(self) -> dict:
        return {"items": [item.to_dict() for item in self.items]}

    @classmethod
    def from_dict(cls, data: dict) -> "SetupChecklist":
        return cls(items=[ChecklistItem.from_dict(item) for item in data.get("items", [])])


@dataclass
class TradingSetup:
    """A proposed trade with entry, stop, targets and a 0-100 quality score."""
    symbol: str
    setup_type: SetupType
    direction: Direction
    current_price: float
    entry_price: float
    stop_loss: float
    target1: float
    target2: Optional[float] = None
    target3: Optional[float] = None
    risk_amount: float = 0.0
    reward_amount: float = 0.0
    risk_reward_ratio: float = 0.0
    quality_score: float = 0.0
    confidence: Confidence = Confidence.LOW
    status: SetupStatus = SetupStatus.ACTIVE
    checklist: SetupChecklist = field(default_factory=SetupChecklist)
    key_level: Optional[SupportResistanceLevel] = None
    detected_at: datetime = field(default_factory=datetime.now)
    expires_at: Optional[datetime] = None
    price_action_score: float = 0.0
    volume_score: float = 0.0
    technical_score: float = 0.0
    risk_score: float = 0.0
    rsi: float = 0.0
    volume_ratio: float = 0.0
    id: Optional[int] = None

    def __post_init__(self):
        if self.expires_at is None:
            self.expires_at = self.detected_at + timedelta(hours=24)

    @property
    def targets(self) -> list[float]:
        return [t for t in (self.target1, self.target2, self.target3) if t is not None]

    @property
    def risk_percent(self) -> float:
        """Risk as a percentage of the entry price."""
        if self.entry_price <= 0:
            return 0.0
        return self.risk_amount / self.entry_price * 100

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "symbol": self.symbol,
            "setup_type": self.setup_type.value,
            "direction": self.direction.value,
            "current_price": self.current_price,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "target1": self.target1,
            "target2": self.target2,
            "target3": self.target3,
            "risk_amount": self.risk_amount,
            "reward_amount": self.reward_amount,
            "risk_reward_ratio": self.risk_reward_ratio,
            "quality_score": self.quality_score,
            "confidence": self.confidence.value,
            "status": self.status.value,
            "checklist": self.checklist.to_dict(),
            "key_level": self.key_level.to_dict() if self.key_level else None,
            "detected_at": self.detected_at.isoformat(),
            "expires_at": _format_dt(self.expires_at),
            "price_action_score": self.price_action_score,
            "volume_score": self.volume_score,
            "technical_score": self.technical_score,
            "risk_score": self.risk_score,
            "rsi": self.rsi,
            "volume_ratio": self.volume_ratio,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "TradingSetup":
        """Create from dictionary."""
        key_level = data.get("key_level")
        return cls(
            id=data.get("id"),
            symbol=data["symbol"],
            setup_type=SetupType(data["setup_type"]),
            direction=Direction(data["direction"]),
            current_price=data["current_price"],
            entry_price=data["entry_price"],
            stop_loss=data["stop_loss"],
            target1=data["target1"],
            target2=data.get("target2"),
            target3=data.get("target3"),
            risk_amount=data.get("risk_amount", 0.0),
            reward_amount=data.get("reward_amount", 0.0),
            risk_reward_ratio=data.get("risk_reward_ratio", 0.0),
            quality_score=data.get("quality_score", 0.0),
            confidence=Confidence(data.get("confidence", "low")),
            status=SetupStatus(data.get("status", "active")),
            checklist=SetupChecklist.from_dict(data.get("checklist") or {}),
            key_level=SupportResistanceLevel.from_dict(key_level) if key_level else None,
            detected_at=datetime.fromisoformat(data["detected_at"]),
            expires_at=_parse_dt(data.get("expires_at")),
            price_action_score=data.get("price_action_score", 0.0),
            volume_score=data.get("volume_score", 0.0),
            technical_score=data.get("technical_score", 0.0),
            risk_score=data.get("risk_score", 0.0),
            rsi=data.get("rsi", 0.0),
            volume_ratio=data.get("volume_ratio", 0.0),
        )
