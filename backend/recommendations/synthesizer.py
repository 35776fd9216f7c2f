"""Action synthesis: fired rule actions to user-facing recommendations.

Confidence for a recommendation blends the rule's prior with how often
similar historical cases succeeded with the same action::

    confidence = 0.6 * rule_prior + 0.4 * agreement_ratio

The rule prior is the rule's observed effectiveness when enough outcomes
exist, else the confidence authored on the rule, else
``DEFAULT_RULE_PRIOR``. When no similar case has a known outcome the
confidence is the rule prior alone.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from config import DEFAULT_RULE_PRIOR
from rules.engine import firing_order
from rules.models import ActionType, FiredAction
from rules.thresholds import ThresholdConfig

from .models import Recommendation, RecommendationKind, SimilarCase

logger = logging.getLogger(__name__)

NEGOTIATION_CATEGORY = "negotiation"
SUCCESS = "success"


def _label(action: FiredAction) -> str:
    if action.action.suggested_action:
        return action.action.suggested_action.replace("_", " ").capitalize()
    return action.rule_name


def _describe_facts(action: FiredAction) -> str:
    if not action.facts_snapshot:
        return "no facts"
    return ", ".join(f"{path}={value!r}" for path, value in action.facts_snapshot.items())


def rule_prior(action: FiredAction, rule_priors: Mapping[str, float] | None) -> tuple[float, str]:
    """Return the prior for a fired rule and where it came from."""
    if rule_priors and action.rule_id in rule_priors:
        return rule_priors[action.rule_id], "observed effectiveness"
    if action.action.confidence is not None:
        return action.action.confidence, "authored confidence"
    return DEFAULT_RULE_PRIOR, "default prior"


def agreement_ratio(
    similar_cases: Sequence[SimilarCase], suggested_action: str | None
) -> tuple[float | None, int, int]:
    """Fraction of similar cases with a known outcome that succeeded.

    A case counts as agreeing when it succeeded and either took the same
    suggested action or carries no action label.

    Returns:
        (ratio or None, agreeing count, known count)
    """
    known = [case for case in similar_cases if case.outcome is not None]
    if not known:
        return None, 0, 0
    agreeing = sum(
        1
        for case in known
        if case.outcome == SUCCESS
        and (case.action is None or case.action == suggested_action)
    )
    return agreeing / len(known), agreeing, len(known)


def synthesize(
    fired_actions: Sequence[FiredAction],
    similar_cases: Sequence[SimilarCase],
    carrier_history: Mapping[str, float] | None,
    *,
    claim_id: str,
    org_id: str,
    carrier: str | None = None,
    rule_priors: Mapping[str, float] | None = None,
    thresholds: ThresholdConfig | None = None,
    now: datetime | None = None,
) -> list[Recommendation]:
    """Turn fired actions into recommendations.

    ``recommend`` actions are grouped by category; the first action of each
    category in firing order is the primary one. ``flag`` actions become one
    recommendation each. ``score_adjust`` actions shift the confidence of
    the recommendation in their category.

    Args:
        fired_actions: Output of the rule engine.
        similar_cases: Historical cases most similar to this claim.
        carrier_history: Historical success rate per rule id for this
            claim's carrier.

    Returns:
        Recommendations in rule firing order; empty when nothing fired.
    """
    if not fired_actions:
        return []

    thresholds = thresholds or ThresholdConfig()
    carrier_history = carrier_history or {}
    created_at = (now or datetime.now(timezone.utc)).isoformat()
    ordered = sorted(fired_actions, key=firing_order)

    groups: dict[str, list[FiredAction]] = {}
    adjustments: dict[str, list[FiredAction]] = {}
    for fired in ordered:
        if fired.action.type is ActionType.RECOMMEND:
            groups.setdefault(fired.category, []).append(fired)
        elif fired.action.type is ActionType.SCORE_ADJUST:
            adjustments.setdefault(fired.category, []).append(fired)

    for category in sorted(set(adjustments) - set(groups)):
        logger.debug(
            f"No recommendation in category {category} to adjust",
            extra={"claim_id": claim_id},
        )

    recommendations: list[Recommendation] = []
    for fired in ordered:
        if fired.action.type is ActionType.FLAG:
            recommendations.append(
                _flag_recommendation(fired, claim_id, org_id, carrier, rule_priors, created_at)
            )
        elif fired.action.type is ActionType.RECOMMEND and groups[fired.category][0] is fired:
            recommendations.append(
                _group_recommendation(
                    groups[fired.category],
                    adjustments.get(fired.category, []),
                    similar_cases,
                    carrier_history,
                    claim_id=claim_id,
                    org_id=org_id,
                    carrier=carrier,
                    rule_priors=rule_priors,
                    thresholds=thresholds,
                    created_at=created_at,
                )
            )

    return recommendations


def _flag_recommendation(
    fired: FiredAction,
    claim_id: str,
    org_id: str,
    carrier: str | None,
    rule_priors: Mapping[str, float] | None,
    created_at: str,
) -> Recommendation:
    prior, prior_source = rule_prior(fired, rule_priors)
    rationale = (
        f"Rule '{fired.rule_name}' (priority {fired.priority}) fired on {_describe_facts(fired)}",
        f"Confidence {ThresholdConfig.clamp_score(prior):.2f} from {prior_source}",
    )
    return Recommendation(
        id=str(uuid.uuid4()),
        claim_id=claim_id,
        org_id=org_id,
        kind=RecommendationKind.FLAG,
        label=_label(fired),
        description=fired.action.message,
        priority=fired.action.priority,
        category=fired.category,
        confidence_score=ThresholdConfig.clamp_score(prior),
        created_at=created_at,
        suggested_action=fired.action.suggested_action,
        carrier=carrier,
        source_rule_ids=(fired.rule_id,),
        rationale=rationale,
    )


def _group_recommendation(
    group: list[FiredAction],
    adjustments: list[FiredAction],
    similar_cases: Sequence[SimilarCase],
    carrier_history: Mapping[str, float],
    *,
    claim_id: str,
    org_id: str,
    carrier: str | None,
    rule_priors: Mapping[str, float] | None,
    thresholds: ThresholdConfig,
    created_at: str,
) -> Recommendation:
    primary = group[0]
    suggested = primary.action.suggested_action
    rationale = [
        f"Rule '{primary.rule_name}' (priority {primary.priority}) fired on {_describe_facts(primary)}"
    ]

    supporting = [
        fired
        for fired in group[1:]
        if suggested is not None and fired.action.suggested_action == suggested
    ]
    for fired in supporting:
        rationale.append(f"Supported by rule '{fired.rule_name}' (priority {fired.priority})")
    for fired in group[1:]:
        if fired not in supporting:
            rationale.append(
                f"Superseded rule '{fired.rule_name}' (priority {fired.priority}): "
                f"{fired.action.message}"
            )

    prior, prior_source = rule_prior(primary, rule_priors)
    rationale.append(f"Rule prior {prior:.2f} from {prior_source}")

    ratio, agreeing, known = agreement_ratio(similar_cases, suggested)
    if ratio is None:
        rationale.append("No similar cases with known outcomes; confidence is the rule prior")
    else:
        rationale.append(f"{agreeing} of {known} similar cases succeeded with this action")
    confidence = thresholds.blend_confidence(prior, ratio)

    for fired in adjustments:
        delta = float(fired.action.payload.get("delta", 0.0))
        confidence = thresholds.clamp_score(confidence + delta)
        rationale.append(f"Rule '{fired.rule_name}' adjusted confidence by {delta:+.2f}")

    kind = RecommendationKind.NEXT_BEST_ACTION
    risk_level = None
    if primary.category == NEGOTIATION_CATEGORY:
        kind = RecommendationKind.NEGOTIATION_STRATEGY
        rate = carrier_history.get(primary.rule_id)
        risk_level = thresholds.risk_level(rate)
        if rate is None:
            rationale.append(f"No carrier history; risk level {risk_level}")
        else:
            rationale.append(
                f"Historical success rate {rate:.0%} with {carrier or 'this carrier'}; "
                f"risk level {risk_level}"
            )

    source_rule_ids = tuple([primary.rule_id] + [fired.rule_id for fired in supporting])
    source_rule_ids += tuple(fired.rule_id for fired in adjustments)

    return Recommendation(
        id=str(uuid.uuid4()),
        claim_id=claim_id,
        org_id=org_id,
        kind=kind,
        label=_label(primary),
        description=primary.action.message,
        priority=primary.action.priority,
        category=primary.category,
        confidence_score=confidence,
        created_at=created_at,
        risk_level=risk_level,
        suggested_action=suggested,
        carrier=carrier,
        source_rule_ids=source_rule_ids,
        similar_case_ids=tuple(case.claim_id for case in similar_cases),
        rationale=tuple(rationale),
    )
