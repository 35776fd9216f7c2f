"""End-to-end tests for claim evaluation."""

from __future__ import annotations

import time

import pytest

from claims import ClaimSource
from recommendations import Recommendation, RecommendationKind
from recommendations.explain import explain
from recommendations.pipeline import DecisionPipeline
from rules.errors import NotFoundError, TenantIsolationViolation
from rules.models import ActionSpec, ActionType, FiredAction
from rules.ruleset import install_pack

from conftest import ORG_ID, OTHER_ORG_ID


def _pipeline_with_source(services, claim_source: ClaimSource, **kwargs) -> DecisionPipeline:
    return DecisionPipeline(
        rule_store=services.rule_store,
        claim_source=claim_source,
        recommendation_store=services.recommendation_store,
        recorder=services.recorder,
        aggregator=services.aggregator,
        **kwargs,
    )


class TestEvaluateClaim:
    def test_end_to_end(self, services, sample_claim, sample_related):
        services.claim_source.upsert_claim("CLM-1", ORG_ID, sample_claim, sample_related)
        install_pack(services.rule_store, ORG_ID, "default")

        result = services.pipeline.evaluate_claim("CLM-1", ORG_ID)

        fired_names = [fired.rule_name for fired in result.fired_actions]
        assert "EstimateRequiredBeforeSubmission" in fired_names
        assert "PhotoDocumentationRequired" in fired_names
        assert result.unavailable == []
        assert result.evaluated_count > 0

        submit = next(
            rec for rec in result.recommendations if rec.suggested_action == "submit_to_carrier"
        )
        assert submit.evaluation_id == result.evaluation_id
        assert submit.carrier == "Acme Mutual"
        assert 0.0 <= submit.confidence_score <= 1.0

    def test_explanation_matches_stored_recommendation(
        self, services, sample_claim, sample_related
    ):
        services.claim_source.upsert_claim("CLM-1", ORG_ID, sample_claim, sample_related)
        install_pack(services.rule_store, ORG_ID, "default")
        result = services.pipeline.evaluate_claim("CLM-1", ORG_ID)
        recommendation = result.recommendations[0]

        explanation = explain(services.recommendation_store, recommendation.id, org_id=ORG_ID)

        assert explanation.confidence_score == recommendation.confidence_score
        assert explanation.reasoning == "\n".join(recommendation.rationale)
        assert [rule["rule_id"] for rule in explanation.rules_used] == list(
            recommendation.source_rule_ids
        )
        assert explanation.rules_used[0]["role"] == "primary"

    def test_explain_is_tenant_scoped(self, services, sample_claim):
        services.claim_source.upsert_claim("CLM-1", ORG_ID, sample_claim)
        install_pack(services.rule_store, ORG_ID, "default")
        result = services.pipeline.evaluate_claim("CLM-1", ORG_ID)

        with pytest.raises(TenantIsolationViolation):
            explain(services.recommendation_store, result.recommendations[0].id, org_id=OTHER_ORG_ID)

    def test_no_rules_yields_no_recommendations(self, services, sample_claim):
        services.claim_source.upsert_claim("CLM-1", ORG_ID, sample_claim)

        result = services.pipeline.evaluate_claim("CLM-1", ORG_ID)

        assert result.recommendations == []
        assert result.fired_actions == []
        assert services.recommendation_store.latest_evaluation("CLM-1", ORG_ID) is not None

    def test_evaluated_claims_become_similar_cases(self, services, sample_claim, sample_related):
        install_pack(services.rule_store, ORG_ID, "default")
        services.claim_source.upsert_claim("CLM-1", ORG_ID, sample_claim, sample_related)
        services.claim_source.upsert_claim("CLM-2", ORG_ID, sample_claim, sample_related)

        services.pipeline.evaluate_claim("CLM-1", ORG_ID)
        result = services.pipeline.evaluate_claim("CLM-2", ORG_ID)

        assert [case.claim_id for case in result.similar_cases] == ["CLM-1"]


class TestTenantAndMissingClaims:
    def test_claim_of_another_org(self, services, sample_claim):
        services.claim_source.upsert_claim("CLM-1", OTHER_ORG_ID, sample_claim)

        with pytest.raises(TenantIsolationViolation):
            services.pipeline.evaluate_claim("CLM-1", ORG_ID)

    def test_missing_claim(self, services):
        with pytest.raises(NotFoundError):
            services.pipeline.evaluate_claim("CLM-missing", ORG_ID)

    def test_upsert_cannot_move_claim_between_orgs(self, services, sample_claim):
        services.claim_source.upsert_claim("CLM-1", ORG_ID, sample_claim)

        with pytest.raises(TenantIsolationViolation):
            services.claim_source.upsert_claim("CLM-1", OTHER_ORG_ID, sample_claim)


class TestPartialData:
    def test_failed_entity_is_unavailable(self, services, db_path, sample_claim, sample_related):
        def broken_photos(claim_id):
            raise ValueError("file service returned garbage")

        source = ClaimSource(db_path, entity_loaders={"photos": broken_photos})
        source.upsert_claim("CLM-1", ORG_ID, sample_claim, sample_related)
        install_pack(services.rule_store, ORG_ID, "default")
        pipeline = _pipeline_with_source(services, source)

        try:
            result = pipeline.evaluate_claim("CLM-1", ORG_ID)
        finally:
            pipeline.shutdown()

        assert result.unavailable == ["photos"]
        fired_names = [fired.rule_name for fired in result.fired_actions]
        # Photo rules cannot fire without photo data.
        assert "PhotoDocumentationRequired" not in fired_names
        assert "EstimateRequiredBeforeSubmission" in fired_names

    def test_fetch_timeout_degrades_to_claim_fields(self, services, db_path, sample_claim):
        def slow_supplements(claim_id):
            time.sleep(0.5)
            return []

        source = ClaimSource(db_path, entity_loaders={"supplements": slow_supplements})
        source.upsert_claim("CLM-1", ORG_ID, sample_claim)
        install_pack(services.rule_store, ORG_ID, "default")
        pipeline = _pipeline_with_source(services, source, fetch_timeout=0.05)

        try:
            result = pipeline.evaluate_claim("CLM-1", ORG_ID)
        finally:
            pipeline.shutdown()

        assert result.unavailable == ["inspections", "photos", "supplements"]
        assert "EstimateRequiredBeforeSubmission" in [
            fired.rule_name for fired in result.fired_actions
        ]


class TestClaimSource:
    def test_any_loader_failure_marks_entity_unavailable(self, db_path, sample_claim, sample_related):
        def file_service_down(claim_id):
            raise RuntimeError("file service unavailable")

        source = ClaimSource(db_path, entity_loaders={"photos": file_service_down})
        source.upsert_claim("CLM-9", ORG_ID, sample_claim, sample_related)

        bundle = source.get_claim_facts("CLM-9")

        assert bundle.unavailable == {"photos"}
        assert "photos" not in bundle.related
        assert bundle.related["inspections"] == [{"type": "drone"}]

    def test_loader_error_does_not_fail_evaluation(self, services, db_path, sample_claim):
        def missing_key(claim_id):
            raise KeyError("inspections")

        source = ClaimSource(db_path, entity_loaders={"inspections": missing_key})
        source.upsert_claim("CLM-9", ORG_ID, sample_claim)
        install_pack(services.rule_store, ORG_ID, "default")
        pipeline = _pipeline_with_source(services, source)

        try:
            result = pipeline.evaluate_claim("CLM-9", ORG_ID)
        finally:
            pipeline.shutdown()

        assert result.unavailable == ["inspections"]
        assert result.recommendations


def _fired(rule_id: str, action_type: ActionType, fired_at: str) -> FiredAction:
    return FiredAction(
        rule_id=rule_id,
        rule_name=rule_id.title(),
        priority=5,
        category="quality_checks",
        action=ActionSpec(type=action_type, message=f"{rule_id} fired", category="quality_checks"),
        fired_at=fired_at,
    )


class TestExplainRoles:
    def test_score_adjust_rules_are_labelled_adjustments(self, services):
        fired_at = "2026-05-01T12:00:00+00:00"
        recommendation = Recommendation(
            id="rec-roles",
            claim_id="CLM-1",
            org_id=ORG_ID,
            kind=RecommendationKind.NEXT_BEST_ACTION,
            label="Submit to carrier",
            description="Estimate is ready",
            priority="high",
            category="quality_checks",
            confidence_score=0.9,
            created_at=fired_at,
            source_rule_ids=("estimate", "photos", "boost"),
        )
        services.recommendation_store.save_evaluation(
            org_id=ORG_ID,
            claim_id="CLM-1",
            carrier=None,
            fired_actions=[
                _fired("estimate", ActionType.RECOMMEND, fired_at),
                _fired("photos", ActionType.FLAG, fired_at),
                _fired("boost", ActionType.SCORE_ADJUST, fired_at),
            ],
            recommendations=[recommendation],
            similar_cases=[],
        )

        explanation = explain(services.recommendation_store, "rec-roles", org_id=ORG_ID)

        roles = {rule["rule_id"]: rule["role"] for rule in explanation.rules_used}
        assert roles == {"estimate": "primary", "photos": "supporting", "boost": "adjustment"}
