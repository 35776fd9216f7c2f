"""Core rules evaluation engine."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from config import PARALLEL_RULE_THRESHOLD, RULE_EVAL_WORKERS

from .dsl import trigger_paths
from .errors import TenantIsolationViolation
from .models import EvaluationReport, FactMap, FiredAction, Rule, RuleWarning
from .registry import RuleSet
from .triggers import evaluate

logger = logging.getLogger(__name__)


def firing_order(action: FiredAction) -> tuple[int, str, str]:
    """Conflict-resolution order: priority desc, then category, then rule id."""
    return (-action.priority, action.category, action.rule_id)


def _check_rule(rule: Rule, facts: FactMap) -> bool:
    return evaluate(rule.trigger, facts)


def evaluate_rules(
    rule_set: RuleSet,
    facts: FactMap,
    now: datetime | None = None,
    max_workers: int = RULE_EVAL_WORKERS,
    parallel_threshold: int = PARALLEL_RULE_THRESHOLD,
) -> EvaluationReport:
    """Evaluate every enabled rule of ``rule_set`` against ``facts``.

    Every rule is evaluated; there is no short-circuit on first match.
    Rules whose trigger tree is empty or failed to parse are skipped and
    reported as warnings.

    Raises:
        TenantIsolationViolation: If the facts belong to another organization.
    """
    if facts.org_id is not None and facts.org_id != rule_set.org_id:
        raise TenantIsolationViolation(
            "Claim and rule set belong to different organizations",
            expected_org=rule_set.org_id,
            actual_org=facts.org_id,
        )

    fired_at = (now or datetime.now(timezone.utc)).isoformat()
    warnings: list[RuleWarning] = []
    candidates: list[Rule] = []

    for rule in rule_set.active_rules():
        if rule.trigger_error:
            warnings.append(RuleWarning(rule.id, f"invalid trigger: {rule.trigger_error}"))
        elif rule.trigger is None or not trigger_paths(rule.trigger):
            warnings.append(RuleWarning(rule.id, "empty trigger tree"))
        else:
            candidates.append(rule)

    for warning in warnings:
        logger.warning(
            f"Skipping rule {warning.rule_id}: {warning.message}",
            extra={"org_id": rule_set.org_id, "rule_id": warning.rule_id},
        )

    if len(candidates) >= parallel_threshold and max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            matches = list(pool.map(lambda rule: _check_rule(rule, facts), candidates))
    else:
        matches = [_check_rule(rule, facts) for rule in candidates]

    fired = [
        FiredAction(
            rule_id=rule.id,
            rule_name=rule.name,
            priority=rule.priority,
            category=rule.category,
            action=rule.action,
            fired_at=fired_at,
            facts_snapshot=facts.snapshot(trigger_paths(rule.trigger)),
        )
        for rule, matched in zip(candidates, matches)
        if matched
    ]
    fired.sort(key=firing_order)

    logger.debug(
        f"Evaluated {len(candidates)} rules, {len(fired)} fired",
        extra={"org_id": rule_set.org_id},
    )

    return EvaluationReport(
        fired_actions=tuple(fired),
        warnings=tuple(warnings),
        evaluated_count=len(candidates),
    )
