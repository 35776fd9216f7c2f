"""Tests for recommendation synthesis."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest

from recommendations import RecommendationKind, SimilarCase, synthesize
from recommendations.synthesizer import agreement_ratio
from rules.models import ActionSpec, ActionType, FiredAction
from rules.thresholds import ThresholdConfig

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _fired(
    rule_id: str,
    priority: int = 5,
    category: str = "quality_checks",
    action_type: ActionType = ActionType.RECOMMEND,
    suggested_action: str | None = "submit_to_carrier",
    confidence: float | None = None,
    payload: dict[str, Any] | None = None,
) -> FiredAction:
    return FiredAction(
        rule_id=rule_id,
        rule_name=f"Rule {rule_id}",
        priority=priority,
        category=category,
        action=ActionSpec(
            type=action_type,
            message=f"Message from {rule_id}",
            category=category,
            priority="high",
            suggested_action=suggested_action,
            confidence=confidence,
            payload=payload or {},
        ),
        fired_at=NOW.isoformat(),
        facts_snapshot={"claim.status": "new"},
    )


def _synthesize(fired, similar=(), carrier_history=None, **kwargs):
    return synthesize(
        fired,
        list(similar),
        carrier_history,
        claim_id="CLM-1",
        org_id="org-alpha",
        now=NOW,
        **kwargs,
    )


class TestConfidence:
    def test_no_similar_cases_falls_back_to_rule_prior(self):
        recommendations = _synthesize([_fired("rule-1", confidence=0.8)])

        assert len(recommendations) == 1
        assert recommendations[0].confidence_score == 0.8

    def test_blends_prior_with_similar_case_agreement(self):
        similar = [
            SimilarCase("CLM-2", 0.95, outcome="success", action="submit_to_carrier"),
            SimilarCase("CLM-3", 0.9, outcome="success"),
            SimilarCase("CLM-4", 0.85, outcome="failure", action="submit_to_carrier"),
            SimilarCase("CLM-5", 0.8),
        ]

        recommendations = _synthesize([_fired("rule-1", confidence=0.8)], similar)

        assert recommendations[0].confidence_score == pytest.approx(0.6 * 0.8 + 0.4 * (2 / 3))
        assert recommendations[0].similar_case_ids == ("CLM-2", "CLM-3", "CLM-4", "CLM-5")

    def test_successful_case_with_other_action_does_not_agree(self):
        similar = [SimilarCase("CLM-2", 0.9, outcome="success", action="initiate_negotiation")]

        ratio, agreeing, known = agreement_ratio(similar, "submit_to_carrier")

        assert (ratio, agreeing, known) == (0.0, 0, 1)

    def test_observed_effectiveness_overrides_authored_confidence(self):
        recommendations = _synthesize(
            [_fired("rule-1", confidence=0.8)], rule_priors={"rule-1": 0.3}
        )

        assert recommendations[0].confidence_score == pytest.approx(0.3)

    def test_default_prior_without_authored_confidence(self):
        recommendations = _synthesize([_fired("rule-1")])

        assert recommendations[0].confidence_score == pytest.approx(0.6)

    def test_score_adjust_shifts_and_clamps_confidence(self):
        fired = [
            _fired("rule-1", confidence=0.9),
            _fired(
                "rule-boost",
                priority=2,
                action_type=ActionType.SCORE_ADJUST,
                suggested_action=None,
                payload={"delta": 0.3},
            ),
        ]

        recommendations = _synthesize(fired)

        assert len(recommendations) == 1
        assert recommendations[0].confidence_score == 1.0
        assert "rule-boost" in recommendations[0].source_rule_ids


class TestRiskLevel:
    @pytest.mark.parametrize(
        "rate, expected",
        [(0.75, "low"), (0.5, "medium"), (0.2, "high"), (None, "medium")],
    )
    def test_negotiation_risk_from_carrier_history(self, rate, expected):
        fired = [_fired("rule-neg", category="negotiation", suggested_action="initiate_negotiation")]
        history = {"rule-neg": rate} if rate is not None else {}

        recommendations = _synthesize(fired, carrier_history=history, carrier="Acme Mutual")

        assert recommendations[0].kind is RecommendationKind.NEGOTIATION_STRATEGY
        assert recommendations[0].risk_level == expected

    def test_next_best_action_has_no_risk_level(self):
        recommendations = _synthesize([_fired("rule-1")], carrier_history={"rule-1": 0.1})

        assert recommendations[0].kind is RecommendationKind.NEXT_BEST_ACTION
        assert recommendations[0].risk_level is None


class TestGrouping:
    def test_empty_input_yields_no_recommendations(self):
        assert _synthesize([]) == []

    def test_one_recommendation_per_category(self):
        fired = [
            _fired("rule-primary", priority=9),
            _fired("rule-support", priority=6),
            _fired("rule-other", priority=4, suggested_action="schedule_engineering"),
        ]

        recommendations = _synthesize(fired)

        assert len(recommendations) == 1
        recommendation = recommendations[0]
        assert recommendation.source_rule_ids == ("rule-primary", "rule-support")
        assert recommendation.label == "Submit to carrier"
        assert any("Superseded rule 'Rule rule-other'" in line for line in recommendation.rationale)

    def test_flags_are_kept_individually_in_firing_order(self):
        fired = [
            _fired("rule-flag-low", priority=2, category="documentation", action_type=ActionType.FLAG),
            _fired("rule-rec", priority=7),
            _fired("rule-flag-high", priority=8, category="documentation", action_type=ActionType.FLAG),
        ]

        recommendations = _synthesize(fired)

        assert [rec.source_rule_ids[0] for rec in recommendations] == [
            "rule-flag-high",
            "rule-rec",
            "rule-flag-low",
        ]
        assert recommendations[0].kind is RecommendationKind.FLAG

    def test_confidence_always_within_bounds(self):
        thresholds = ThresholdConfig(rule_prior_weight=2.0, similar_case_weight=2.0)
        similar = [SimilarCase("CLM-2", 0.9, outcome="success")]

        recommendations = _synthesize(
            [_fired("rule-1", confidence=1.0)], similar, thresholds=thresholds
        )

        assert 0.0 <= recommendations[0].confidence_score <= 1.0
