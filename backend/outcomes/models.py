"""Data models for outcomes and derived effectiveness metrics."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class OutcomeResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NEUTRAL = "neutral"


class MetricScope(str, Enum):
    RULE = "rule"
    AGENT = "agent"


@dataclass(frozen=True)
class Outcome:
    """An observed result attributed to a recommendation, rule or agent.

    Outcomes are append-only. A correction is a new outcome whose
    ``compensates_id`` points at the outcome it corrects.
    """

    id: str
    org_id: str
    claim_id: str
    observed_result: OutcomeResult
    observed_at: str
    dedup_key: str
    created_at: str
    recommendation_id: str | None = None
    rule_id: str | None = None
    rule_ids: tuple[str, ...] = ()
    agent_id: str | None = None
    agent_name: str | None = None
    carrier: str | None = None
    confidence_score: float | None = None
    compensates_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["observed_result"] = self.observed_result.value
        data["rule_ids"] = list(self.rule_ids)
        return data


@dataclass(frozen=True)
class EffectivenessMetric:
    scope: MetricScope
    id: str
    triggered_count: int
    successful_outcomes: int
    effectiveness_score: float
    improvement_trend: float

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["scope"] = self.scope.value
        return data


@dataclass(frozen=True)
class RuleEffectiveness:
    rule_id: str
    rule_name: str
    triggered_count: int
    successful_outcomes: int
    effectiveness_score: float
    improvement_trend: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AgentPerformance:
    agent_id: str
    agent_name: str
    actions_count: int
    success_rate: float
    avg_confidence: float
    improvement_trend: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LearningMetrics:
    total_actions: int
    total_outcomes: int
    overall_success_rate: float
    week_over_week_growth: float
    top_performing_agent: str | None
    most_effective_rule: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
