"""Explanation of past recommendations.

Explanations are rebuilt only from what was stored when the
recommendation was created. Confidence is read back, never recomputed,
so the value shown matches the one the user originally saw.
"""
from __future__ import annotations

from rules.models import ActionType

from .models import Explanation
from .store import RecommendationStore


def explain(
    store: RecommendationStore, recommendation_id: str, org_id: str | None = None
) -> Explanation:
    """Reconstruct why a recommendation was made.

    Raises:
        NotFoundError: If the recommendation doesn't exist
        TenantIsolationViolation: If it belongs to another organization
    """
    recommendation = store.get_recommendation(recommendation_id, org_id=org_id)
    fired = store.get_fired_actions(recommendation.evaluation_id)
    by_rule = {action["rule_id"]: action for action in fired}

    rules_used = []
    for index, rule_id in enumerate(recommendation.source_rule_ids):
        action = by_rule.get(rule_id)
        if action is None:
            continue
        if action["action"].get("type") == ActionType.SCORE_ADJUST.value:
            role = "adjustment"
        else:
            role = "primary" if index == 0 else "supporting"
        rules_used.append(
            {
                "rule_id": rule_id,
                "rule_name": action["rule_name"],
                "priority": action["priority"],
                "category": action["category"],
                "role": role,
                "message": action["action"].get("message"),
                "facts": action["facts_snapshot"],
                "fired_at": action["fired_at"],
            }
        )

    consulted = set(recommendation.similar_case_ids)
    similar_cases = [
        {
            "claim_id": case.claim_id,
            "score": case.score,
            "outcome": case.outcome,
            "action": case.action,
        }
        for case in store.get_similar_cases(recommendation.evaluation_id)
        if case.claim_id in consulted
    ]

    return Explanation(
        recommendation_id=recommendation.id,
        claim_id=recommendation.claim_id,
        reasoning="\n".join(recommendation.rationale),
        confidence_score=recommendation.confidence_score,
        created_at=recommendation.created_at,
        rules_used=rules_used,
        similar_cases=similar_cases,
    )
