"""Threshold configuration for confidence blending and risk levels."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ThresholdConfig:
    rule_prior_weight: float = 0.6
    similar_case_weight: float = 0.4
    low_risk_min: float = 0.7
    medium_risk_min: float = 0.4

    def blend_confidence(self, rule_prior: float, agreement_ratio: float | None) -> float:
        if agreement_ratio is None:
            return self.clamp_score(rule_prior)
        score = (
            self.rule_prior_weight * rule_prior
            + self.similar_case_weight * agreement_ratio
        )
        return self.clamp_score(score)

    def risk_level(self, historical_success_rate: float | None) -> str:
        if historical_success_rate is None:
            return "medium"
        if historical_success_rate >= self.low_risk_min:
            return "low"
        if historical_success_rate >= self.medium_risk_min:
            return "medium"
        return "high"

    @staticmethod
    def clamp_score(score: float) -> float:
        if score < 0.0:
            return 0.0
        if score > 1.0:
            return 1.0
        return score
