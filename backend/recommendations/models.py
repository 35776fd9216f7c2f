"""Data models for synthesized recommendations."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class RecommendationKind(str, Enum):
    NEXT_BEST_ACTION = "next_best_action"
    NEGOTIATION_STRATEGY = "negotiation_strategy"
    FLAG = "flag"


@dataclass(frozen=True)
class SimilarCase:
    """A historical claim returned by similar-case retrieval.

    ``outcome`` is None when the case has not been resolved yet; ``action``
    is the suggested action that was taken on it, when known.
    """

    claim_id: str
    score: float
    outcome: str | None = None
    action: str | None = None


@dataclass(frozen=True)
class Recommendation:
    """A user-facing suggestion. Never mutated once created."""

    id: str
    claim_id: str
    org_id: str
    kind: RecommendationKind
    label: str
    description: str
    priority: str
    category: str
    confidence_score: float
    created_at: str
    risk_level: str | None = None
    suggested_action: str | None = None
    carrier: str | None = None
    source_rule_ids: tuple[str, ...] = ()
    similar_case_ids: tuple[str, ...] = ()
    rationale: tuple[str, ...] = ()
    evaluation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["source_rule_ids"] = list(self.source_rule_ids)
        data["similar_case_ids"] = list(self.similar_case_ids)
        data["rationale"] = list(self.rationale)
        return data


@dataclass(frozen=True)
class Explanation:
    recommendation_id: str
    claim_id: str
    reasoning: str
    confidence_score: float
    created_at: str
    rules_used: list[dict[str, Any]] = field(default_factory=list)
    similar_cases: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
