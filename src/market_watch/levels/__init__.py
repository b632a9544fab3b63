"""Pivot extraction and support/resistance levels."""

from .clusterer import LevelClusterer, PivotCluster, ReconcileResult, TouchStats, levels_overlap
from .pivots import PivotExtractor

__all__ = [
    "LevelClusterer",
    "PivotCluster",
    "PivotExtractor",
    "ReconcileResult",
    "TouchStats",
    "levels_overlap",
]
