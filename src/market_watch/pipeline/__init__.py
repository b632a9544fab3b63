"""Per-symbol analysis and scheduling."""

from .analyzer import BatchResult, SymbolAnalyzer, SymbolReport
from .scheduler import PipelineScheduler

__all__ = ["BatchResult", "PipelineScheduler", "SymbolAnalyzer", "SymbolReport"]
