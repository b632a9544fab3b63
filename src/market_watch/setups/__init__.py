"""Trade setup detection and scoring."""

from .detector import SetupDetector, risk_and_reward, summarize
from .scorer import CHECKLIST_TEMPLATE, SetupScorer, confidence_for, new_checklist

__all__ = [
    "CHECKLIST_TEMPLATE",
    "SetupDetector",
    "SetupScorer",
    "confidence_for",
    "new_checklist",
    "risk_and_reward",
    "summarize",
]
