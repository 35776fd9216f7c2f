"""Claim evaluation pipeline.

All I/O happens up front, at the fetch boundary: the claim bundle, the
similar cases, carrier history and rule priors. Each fetch runs in a
worker thread under ``FETCH_TIMEOUT_SECONDS``; a timeout degrades the
evaluation (related entities unavailable, no similar cases) instead of
failing it. Fact extraction, rule evaluation and synthesis then run with
no further I/O, and the result is persisted in one write.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from typing import Any

from claims.source import ClaimBundle, ClaimSource
from config import FETCH_TIMEOUT_SECONDS, SIMILAR_CASES_K
from outcomes.effectiveness import EffectivenessAggregator
from outcomes.recorder import OutcomeRecorder
from rules.engine import evaluate_rules
from rules.errors import TenantIsolationViolation
from rules.facts import extract_facts
from rules.models import FactMap, FiredAction, RuleWarning
from rules.registry import RuleSet
from rules.store import RuleStore
from rules.thresholds import ThresholdConfig

from .models import Recommendation, SimilarCase
from .store import RecommendationStore
from .synthesizer import synthesize

logger = logging.getLogger(__name__)


@dataclass
class EvaluationResult:
    evaluation_id: str
    claim_id: str
    org_id: str
    recommendations: list[Recommendation]
    fired_actions: list[FiredAction]
    warnings: list[RuleWarning] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)
    similar_cases: list[SimilarCase] = field(default_factory=list)
    evaluated_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluation_id": self.evaluation_id,
            "claim_id": self.claim_id,
            "org_id": self.org_id,
            "recommendations": [rec.to_dict() for rec in self.recommendations],
            "fired_rule_ids": [fired.rule_id for fired in self.fired_actions],
            "warnings": [{"rule_id": w.rule_id, "message": w.message} for w in self.warnings],
            "unavailable": self.unavailable,
            "evaluated_count": self.evaluated_count,
        }


class DecisionPipeline:
    """Evaluates one claim end to end: fetch, evaluate, synthesize, persist."""

    def __init__(
        self,
        rule_store: RuleStore,
        claim_source: ClaimSource,
        recommendation_store: RecommendationStore,
        recorder: OutcomeRecorder,
        aggregator: EffectivenessAggregator | None = None,
        case_index: Any | None = None,
        thresholds: ThresholdConfig | None = None,
        fetch_timeout: float = FETCH_TIMEOUT_SECONDS,
        similar_cases_k: int = SIMILAR_CASES_K,
        max_fetch_workers: int = 4,
    ) -> None:
        self.rule_store = rule_store
        self.claim_source = claim_source
        self.recommendation_store = recommendation_store
        self.recorder = recorder
        self.aggregator = aggregator
        self.case_index = case_index
        self.thresholds = thresholds or ThresholdConfig()
        self.fetch_timeout = fetch_timeout
        self.similar_cases_k = similar_cases_k
        self._executor = ThreadPoolExecutor(
            max_workers=max_fetch_workers, thread_name_prefix="claim-fetch"
        )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _fetch_bundle(self, claim_id: str) -> ClaimBundle:
        future = self._executor.submit(self.claim_source.get_claim_facts, claim_id)
        try:
            return future.result(timeout=self.fetch_timeout)
        except FutureTimeoutError:
            logger.warning(
                f"Timed out loading related entities for claim {claim_id}; "
                "evaluating with claim fields only",
                extra={"claim_id": claim_id},
            )
            return self.claim_source.get_claim_facts(claim_id, entities=())

    def _fetch_similar(self, facts: FactMap, claim_id: str, org_id: str) -> list[SimilarCase]:
        if self.case_index is None:
            return []
        future = self._executor.submit(
            self.case_index.find_similar,
            facts,
            self.similar_cases_k,
            org_id,
            claim_id,
        )
        try:
            return list(future.result(timeout=self.fetch_timeout))
        except FutureTimeoutError:
            logger.warning(
                f"Timed out finding similar cases for claim {claim_id}",
                extra={"claim_id": claim_id},
            )
        except Exception as e:
            logger.warning(
                f"Similar case lookup failed for claim {claim_id}: {e}",
                extra={"claim_id": claim_id},
            )
        return []

    def _index_case(self, claim_id: str, org_id: str, facts: FactMap) -> None:
        if self.case_index is None:
            return
        try:
            self.case_index.index_case(claim_id, org_id, facts)
        except Exception as e:
            logger.warning(f"Failed to index claim {claim_id}: {e}")

    def evaluate_claim(self, claim_id: str, org_id: str) -> EvaluationResult:
        """Evaluate a claim against its organization's enabled rules.

        Raises:
            NotFoundError: If the claim doesn't exist
            TenantIsolationViolation: If the claim belongs to another organization
        """
        claim_org = self.claim_source.get_claim_org(claim_id)
        if claim_org != org_id:
            raise TenantIsolationViolation(
                f"Claim {claim_id} belongs to another organization",
                expected_org=org_id,
                actual_org=claim_org,
            )

        bundle = self._fetch_bundle(claim_id)
        facts = extract_facts(
            bundle.claim,
            bundle.related,
            org_id=bundle.org_id,
            unavailable=bundle.unavailable,
        )
        similar_cases = self._fetch_similar(facts, claim_id, org_id)
        carrier_history = self.recorder.carrier_history(org_id, bundle.carrier)
        rule_priors = self.aggregator.rule_priors(org_id) if self.aggregator else None
        rule_set = RuleSet(org_id, self.rule_store.list_enabled_rules(org_id))

        report = evaluate_rules(rule_set, facts)
        recommendations = synthesize(
            report.fired_actions,
            similar_cases,
            carrier_history,
            claim_id=claim_id,
            org_id=org_id,
            carrier=bundle.carrier,
            rule_priors=rule_priors,
            thresholds=self.thresholds,
        )

        evaluation_id = self.recommendation_store.save_evaluation(
            org_id=org_id,
            claim_id=claim_id,
            carrier=bundle.carrier,
            fired_actions=report.fired_actions,
            recommendations=recommendations,
            similar_cases=similar_cases,
            warnings=report.warnings,
            unavailable=sorted(bundle.unavailable),
            evaluated_count=report.evaluated_count,
        )
        self._index_case(claim_id, org_id, facts)

        return EvaluationResult(
            evaluation_id=evaluation_id,
            claim_id=claim_id,
            org_id=org_id,
            recommendations=[
                replace(rec, evaluation_id=evaluation_id) for rec in recommendations
            ],
            fired_actions=list(report.fired_actions),
            warnings=list(report.warnings),
            unavailable=sorted(bundle.unavailable),
            similar_cases=similar_cases,
            evaluated_count=report.evaluated_count,
        )
