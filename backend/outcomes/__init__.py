"""Outcome log and effectiveness metrics."""

from .effectiveness import EffectivenessAggregator, parse_time_range
from .models import (
    AgentPerformance,
    EffectivenessMetric,
    LearningMetrics,
    MetricScope,
    Outcome,
    OutcomeResult,
    RuleEffectiveness,
)
from .recorder import OutcomeRecorder

__all__ = [
    "AgentPerformance",
    "EffectivenessAggregator",
    "EffectivenessMetric",
    "LearningMetrics",
    "MetricScope",
    "Outcome",
    "OutcomeRecorder",
    "OutcomeResult",
    "RuleEffectiveness",
    "parse_time_range",
]
