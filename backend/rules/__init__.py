"""Rules engine for claim decisioning."""

from .engine import evaluate_rules
from .errors import (
    DecisionEngineError,
    DuplicateOutcomeError,
    NotFoundError,
    PartialDataError,
    RuleValidationError,
    TenantIsolationViolation,
)
from .facts import extract_facts
from .models import ABSENT, ActionSpec, EvaluationReport, FactMap, FiredAction, Rule
from .registry import RuleSet
from .thresholds import ThresholdConfig
from .triggers import evaluate

__all__ = [
    "ABSENT",
    "ActionSpec",
    "DecisionEngineError",
    "DuplicateOutcomeError",
    "EvaluationReport",
    "FactMap",
    "FiredAction",
    "NotFoundError",
    "PartialDataError",
    "Rule",
    "RuleSet",
    "RuleValidationError",
    "TenantIsolationViolation",
    "ThresholdConfig",
    "evaluate",
    "evaluate_rules",
    "extract_facts",
]
