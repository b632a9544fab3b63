"""Geometric pattern detection and thesis tracking."""

from .falling_wedge import FallingWedgeDetector
from .head_shoulders import InverseHeadShouldersDetector
from .models import (
    ComponentStage,
    FallingWedgePattern,
    GeometricPattern,
    InverseHeadShouldersPattern,
    PatternPhase,
    PatternPoint,
    PatternType,
    Thesis,
    ThesisComponent,
    pattern_from_dict,
    pattern_to_json,
)
from .tracker import CheckResult, ComponentIntent, ThesisTracker
from .trade import trading_setup_from_pattern

__all__ = [
    "CheckResult",
    "ComponentIntent",
    "ComponentStage",
    "FallingWedgeDetector",
    "FallingWedgePattern",
    "GeometricPattern",
    "InverseHeadShouldersDetector",
    "InverseHeadShouldersPattern",
    "PatternPhase",
    "PatternPoint",
    "PatternType",
    "Thesis",
    "ThesisComponent",
    "ThesisTracker",
    "pattern_from_dict",
    "pattern_to_json",
    "trading_setup_from_pattern",
]
