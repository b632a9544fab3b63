"""Data models for geometric chart patterns and their theses."""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class PatternType(Enum):
    """Supported geometric patterns."""
    INVERSE_HEAD_SHOULDERS = "inverse_head_shoulders"
    FALLING_WEDGE = "falling_wedge"


class PatternPhase(Enum):
    """Thesis progression. Ordered: a phase never moves backwards."""
    FORMATION = "formation"
    BREAKOUT = "breakout"
    TARGET_PURSUIT = "target_pursuit"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _PHASE_RANK[self]


_PHASE_RANK = {
    PatternPhase.FORMATION: 0,
    PatternPhase.BREAKOUT: 1,
    PatternPhase.TARGET_PURSUIT: 2,
    PatternPhase.COMPLETED: 3,
}


class ComponentStage(Enum):
    """Which part of the pattern lifecycle a component confirms."""
    FORMATION = "formation"
    BREAKOUT = "breakout"
    TARGET = "target"


FULL_TARGET_KEY = "full_target"


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class PatternPoint:
    """Labelled pattern vertex."""
    label: str
    timestamp: datetime
    price: float
    volume: float = 0.0
    volume_ratio: float = 1.0
    index: int = -1

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "timestamp": self.timestamp.isoformat(),
            "price": self.price,
            "volume": self.volume,
            "volume_ratio": self.volume_ratio,
            "index": self.index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PatternPoint":
        return cls(
            label=data["label"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            price=data["price"],
            volume=data.get("volume", 0.0),
            volume_ratio=data.get("volume_ratio", 1.0),
            index=data.get("index", -1),
        )


@dataclass
class ThesisComponent:
    """One milestone of a pattern thesis."""
    key: str
    name: str
    description: str
    stage: ComponentStage
    weight: float
    required: bool = False
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    confidence: float = 0.0
    evidence: list[str] = field(default_factory=list)
    notification_sent: bool = False

    def complete(self, at: datetime, confidence: float, evidence: list[str]) -> bool:
        """Mark complete. Returns False if it already was."""
        if self.is_completed:
            return False
        self.is_completed = True
        self.completed_at = at
        self.confidence = confidence
        self.evidence = list(evidence)
        return True

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "stage": self.stage.value,
            "weight": self.weight,
            "required": self.required,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "confidence": self.confidence,
            "evidence": list(self.evidence),
            "notification_sent": self.notification_sent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ThesisComponent":
        return cls(
            key=data["key"],
            name=data["name"],
            description=data.get("description", ""),
            stage=ComponentStage(data["stage"]),
            weight=data["weight"],
            required=data.get("required", False),
            is_completed=data.get("is_completed", False),
            completed_at=_dt(data.get("completed_at")),
            confidence=data.get("confidence", 0.0),
            evidence=list(data.get("evidence", [])),
            notification_sent=data.get("notification_sent", False),
        )


@dataclass
class Thesis:
    """Ordered milestone conditions for a pattern."""
    components: list[ThesisComponent]
    breakout_key: str
    phase: PatternPhase = PatternPhase.FORMATION

    def component(self, key: str) -> ThesisComponent:
        for comp in self.components:
            if comp.key == key:
                return comp
        raise KeyError(key)

    @property
    def completion_percent(self) -> float:
        """Weighted share of completed components, 0-100."""
        total = sum(c.weight for c in self.components)
        if total <= 0:
            return 0.0
        done = sum(c.weight for c in self.components if c.is_completed)
        return done / total * 100

    @property
    def completed_count(self) -> int:
        return sum(1 for c in self.components if c.is_completed)

    def derived_phase(self) -> PatternPhase:
        """Phase implied by the completed components alone."""
        full_target = [c for c in self.components if c.key == FULL_TARGET_KEY]
        if full_target and full_target[0].is_completed:
            return PatternPhase.COMPLETED
        if self.component(self.breakout_key).is_completed:
            return PatternPhase.TARGET_PURSUIT
        formation_done = all(
            c.is_completed for c in self.components
            if c.stage == ComponentStage.FORMATION and c.required
        )
        return PatternPhase.BREAKOUT if formation_done else PatternPhase.FORMATION

    def advance_phase(self) -> PatternPhase:
        """Move to the derived phase if it is later than the current one."""
        derived = self.derived_phase()
        if derived.rank > self.phase.rank:
            self.phase = derived
        return self.phase

    def pending_notifications(self) -> list[ThesisComponent]:
        return [c for c in self.components if c.is_completed and not c.notification_sent]

    def to_dict(self) -> dict:
        return {
            "components": [c.to_dict() for c in self.components],
            "breakout_key": self.breakout_key,
            "phase": self.phase.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Thesis":
        return cls(
            components=[ThesisComponent.from_dict(c) for c in data["components"]],
            breakout_key=data["breakout_key"],
            phase=PatternPhase(data.get("phase", "formation")),
        )


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


@dataclass
class InverseHeadShouldersPattern:
    """Inverse head-and-shoulders: three lows with a neckline across two peaks."""
    symbol: str
    left_shoulder: PatternPoint
    head: PatternPoint
    right_shoulder: PatternPoint
    left_peak: PatternPoint
    right_peak: PatternPoint
    neckline_level: float
    neckline_slope: float  # price change per hour
    pattern_height: float
    target_price: float
    symmetry_score: float
    duration_hours: float
    thesis: Thesis
    quality_score: float = 0.0
    is_complete: bool = False
    detected_at: datetime = field(default_factory=datetime.now)
    last_updated: Optional[datetime] = None
    id: str = field(default_factory=_new_id)

    pattern_type = PatternType.INVERSE_HEAD_SHOULDERS

    @property
    def breakout_level(self) -> float:
        return self.neckline_level

    @property
    def invalidation_level(self) -> float:
        return self.head.price

    @property
    def signature(self) -> str:
        """Pattern identity based on its vertices."""
        points = (self.left_shoulder, self.head, self.right_shoulder)
        return f"{self.pattern_type.value}:{self.symbol}:" + ",".join(p.timestamp.isoformat() for p in points)

    def breakout_line_at(self, when: datetime) -> float:
        """Breakout trigger at a given time. The neckline is treated as flat."""
        return self.neckline_level

    def target_at(self, fraction: float) -> float:
        """Price at a fraction of the projected move from the neckline."""
        return self.neckline_level + (self.target_price - self.neckline_level) * fraction

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pattern_type": self.pattern_type.value,
            "symbol": self.symbol,
            "left_shoulder": self.left_shoulder.to_dict(),
            "head": self.head.to_dict(),
            "right_shoulder": self.right_shoulder.to_dict(),
            "left_peak": self.left_peak.to_dict(),
            "right_peak": self.right_peak.to_dict(),
            "neckline_level": self.neckline_level,
            "neckline_slope": self.neckline_slope,
            "pattern_height": self.pattern_height,
            "target_price": self.target_price,
            "symmetry_score": self.symmetry_score,
            "duration_hours": self.duration_hours,
            "thesis": self.thesis.to_dict(),
            "quality_score": self.quality_score,
            "is_complete": self.is_complete,
            "detected_at": self.detected_at.isoformat(),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InverseHeadShouldersPattern":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            left_shoulder=PatternPoint.from_dict(data["left_shoulder"]),
            head=PatternPoint.from_dict(data["head"]),
            right_shoulder=PatternPoint.from_dict(data["right_shoulder"]),
            left_peak=PatternPoint.from_dict(data["left_peak"]),
            right_peak=PatternPoint.from_dict(data["right_peak"]),
            neckline_level=data["neckline_level"],
            neckline_slope=data["neckline_slope"],
            pattern_height=data["pattern_height"],
            target_price=data["target_price"],
            symmetry_score=data["symmetry_score"],
            duration_hours=data["duration_hours"],
            thesis=Thesis.from_dict(data["thesis"]),
            quality_score=data.get("quality_score", 0.0),
            is_complete=data.get("is_complete", False),
            detected_at=datetime.fromisoformat(data["detected_at"]),
            last_updated=_dt(data.get("last_updated")),
        )


@dataclass
class FallingWedgePattern:
    """Falling wedge: two descending, converging trend lines."""
    symbol: str
    upper_start: PatternPoint
    upper_end: PatternPoint
    lower_start: PatternPoint
    lower_end: PatternPoint
    upper_slope: float  # price change per hour
    lower_slope: float  # price change per hour
    convergence_percent: float
    height_percent: float
    pattern_height: float
    breakout_level: float
    target_price: float
    volume_profile: str
    duration_hours: float
    start_time: datetime
    end_time: datetime
    thesis: Thesis
    quality_score: float = 0.0
    is_complete: bool = False
    detected_at: datetime = field(default_factory=datetime.now)
    last_updated: Optional[datetime] = None
    id: str = field(default_factory=_new_id)

    pattern_type = PatternType.FALLING_WEDGE

    @property
    def invalidation_level(self) -> float:
        return self.lower_end.price

    @property
    def signature(self) -> str:
        points = (self.upper_start, self.upper_end, self.lower_start, self.lower_end)
        return f"{self.pattern_type.value}:{self.symbol}:" + ",".join(p.timestamp.isoformat() for p in points)

    def upper_line_at(self, when: datetime) -> float:
        hours = (when - self.upper_start.timestamp).total_seconds() / 3600
        return self.upper_start.price + self.upper_slope * hours

    def lower_line_at(self, when: datetime) -> float:
        hours = (when - self.lower_start.timestamp).total_seconds() / 3600
        return self.lower_start.price + self.lower_slope * hours

    def breakout_line_at(self, when: datetime) -> float:
        """Upper trend line projected to a given time."""
        return self.upper_line_at(when)

    def target_at(self, fraction: float) -> float:
        """Price at a fraction of the projected move from the breakout level."""
        return self.breakout_level + (self.target_price - self.breakout_level) * fraction

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pattern_type": self.pattern_type.value,
            "symbol": self.symbol,
            "upper_start": self.upper_start.to_dict(),
            "upper_end": self.upper_end.to_dict(),
            "lower_start": self.lower_start.to_dict(),
            "lower_end": self.lower_end.to_dict(),
            "upper_slope": self.upper_slope,
            "lower_slope": self.lower_slope,
            "convergence_percent": self.convergence_percent,
            "height_percent": self.height_percent,
            "pattern_height": self.pattern_height,
            "breakout_level": self.breakout_level,
            "target_price": self.target_price,
            "volume_profile": self.volume_profile,
            "duration_hours": self.duration_hours,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "thesis": self.thesis.to_dict(),
            "quality_score": self.quality_score,
            "is_complete": self.is_complete,
            "detected_at": self.detected_at.isoformat(),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FallingWedgePattern":
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            upper_start=PatternPoint.from_dict(data["upper_start"]),
            upper_end=PatternPoint.from_dict(data["upper_end"]),
            lower_start=PatternPoint.from_dict(data["lower_start"]),
            lower_end=PatternPoint.from_dict(data["lower_end"]),
            upper_slope=data["upper_slope"],
            lower_slope=data["lower_slope"],
            convergence_percent=data["convergence_percent"],
            height_percent=data["height_percent"],
            pattern_height=data["pattern_height"],
            breakout_level=data["breakout_level"],
            target_price=data["target_price"],
            volume_profile=data["volume_profile"],
            duration_hours=data["duration_hours"],
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            thesis=Thesis.from_dict(data["thesis"]),
            quality_score=data.get("quality_score", 0.0),
            is_complete=data.get("is_complete", False),
            detected_at=datetime.fromisoformat(data["detected_at"]),
            last_updated=_dt(data.get("last_updated")),
        )


GeometricPattern = Union[InverseHeadShouldersPattern, FallingWedgePattern]


def pattern_from_dict(data: dict) -> GeometricPattern:
    """Rebuild a pattern of the right type from its dictionary form."""
    pattern_type = PatternType(data["pattern_type"])
    if pattern_type == PatternType.INVERSE_HEAD_SHOULDERS:
        return InverseHeadShouldersPattern.from_dict(data)
    if pattern_type == PatternType.FALLING_WEDGE:
        return FallingWedgePattern.from_dict(data)
    raise ValueError(f"Unknown pattern type: {pattern_type}")


def pattern_to_json(pattern: GeometricPattern) -> str:
    return json.dumps(pattern.to_dict())
