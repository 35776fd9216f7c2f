"""Effectiveness aggregation over the outcome log.

Every metric here is derived: it can be rebuilt from the outcome log at
any time. Dashboard payloads are cached as short-lived snapshots so reads
never contend with outcome writes; a snapshot may be a few seconds stale.

Attribution is independent: an outcome counts toward every rule it is
attributed to and toward its agent.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from config import FEEDBACK_MIN_SAMPLES, METRICS_SNAPSHOT_TTL_SECONDS
from recommendations.store import RecommendationStore
from rules.store import RuleStore

from .models import (
    AgentPerformance,
    EffectivenessMetric,
    LearningMetrics,
    MetricScope,
    Outcome,
    OutcomeResult,
    RuleEffectiveness,
)
from .recorder import OutcomeRecorder, effective_outcomes, parse_timestamp

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, timedelta | None] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "all": None,
}

WEEK = timedelta(days=7)
FEEDBACK_WINDOW = timedelta(days=90)

_Timed = tuple[Outcome, datetime]


def parse_time_range(value: str | timedelta | None) -> timedelta | None:
    """Parse a dashboard time range (``7d``, ``30d``, ``90d``, ``all``).

    Raises:
        ValueError: If the range is not one of the supported values
    """
    if value is None or isinstance(value, timedelta):
        return value
    if value not in TIME_RANGES:
        raise ValueError(f"time_range must be one of {list(TIME_RANGES)}")
    return TIME_RANGES[value]


def effectiveness_score(successful: int, triggered: int) -> float:
    return successful / max(triggered, 1)


def _counts(outcomes: Iterable[_Timed]) -> tuple[int, int]:
    triggered = 0
    successful = 0
    for outcome, _ in outcomes:
        triggered += 1
        if outcome.observed_result is OutcomeResult.SUCCESS:
            successful += 1
    return triggered, successful


def _between(outcomes: Iterable[_Timed], start: datetime | None, end: datetime, inclusive_end: bool) -> list[_Timed]:
    selected = []
    for item in outcomes:
        observed = item[1]
        if start is not None and observed < start:
            continue
        if observed > end or (observed == end and not inclusive_end):
            continue
        selected.append(item)
    return selected


def in_window(outcomes: Iterable[_Timed], window: timedelta | None, now: datetime) -> list[_Timed]:
    start = now - window if window is not None else None
    return _between(outcomes, start, now, inclusive_end=True)


def improvement_trend(outcomes: list[_Timed], window: timedelta | None, now: datetime) -> float:
    """Score change against the preceding window, in percentage points.

    Unbounded windows trend week over week. Returns 0 when either window
    has no outcomes.
    """
    length = window or WEEK
    current = _between(outcomes, now - length, now, inclusive_end=True)
    previous = _between(outcomes, now - 2 * length, now - length, inclusive_end=False)
    current_triggered, current_successful = _counts(current)
    previous_triggered, previous_successful = _counts(previous)
    if current_triggered == 0 or previous_triggered == 0:
        return 0.0
    delta = effectiveness_score(current_successful, current_triggered) - effectiveness_score(
        previous_successful, previous_triggered
    )
    return round(delta * 100, 2)


class EffectivenessAggregator:
    """Computes rule and agent effectiveness from the outcome log."""

    def __init__(
        self,
        recorder: OutcomeRecorder,
        rule_store: RuleStore | None = None,
        recommendation_store: RecommendationStore | None = None,
        snapshot_ttl_seconds: int = METRICS_SNAPSHOT_TTL_SECONDS,
        feedback_min_samples: int = FEEDBACK_MIN_SAMPLES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.recorder = recorder
        self.rule_store = rule_store
        self.recommendation_store = recommendation_store
        self.snapshot_ttl_seconds = snapshot_ttl_seconds
        self.feedback_min_samples = feedback_min_samples
        self._clock = clock
        self._snapshots: dict[tuple[str, str], tuple[float, dict[str, Any]]] = {}
        self._snapshot_lock = threading.Lock()

    def _timed_outcomes(self, org_id: str) -> list[_Timed]:
        return [
            (outcome, parse_timestamp(outcome.observed_at))
            for outcome in effective_outcomes(self.recorder.list_outcomes(org_id))
        ]

    @staticmethod
    def _matches(scope: MetricScope, scope_id: str, outcome: Outcome) -> bool:
        if scope is MetricScope.RULE:
            return scope_id in outcome.rule_ids
        return outcome.agent_id == scope_id

    def recompute(
        self,
        scope: MetricScope | str,
        scope_id: str,
        window: str | timedelta | None = "7d",
        *,
        org_id: str,
        now: datetime | None = None,
    ) -> EffectivenessMetric:
        """Recompute one rule's or agent's metric from the outcome log."""
        scope = MetricScope(scope)
        window = parse_time_range(window)
        now = now or datetime.now(timezone.utc)
        scoped = [
            item for item in self._timed_outcomes(org_id) if self._matches(scope, scope_id, item[0])
        ]
        return self._metric(scope, scope_id, scoped, window, now)

    def _metric(
        self,
        scope: MetricScope,
        scope_id: str,
        scoped: list[_Timed],
        window: timedelta | None,
        now: datetime,
    ) -> EffectivenessMetric:
        triggered, successful = _counts(in_window(scoped, window, now))
        return EffectivenessMetric(
            scope=scope,
            id=scope_id,
            triggered_count=triggered,
            successful_outcomes=successful,
            effectiveness_score=effectiveness_score(successful, triggered),
            improvement_trend=improvement_trend(scoped, window, now),
        )

    def rule_effectiveness(
        self,
        org_id: str,
        window: str | timedelta | None = "30d",
        now: datetime | None = None,
        outcomes: list[_Timed] | None = None,
    ) -> list[RuleEffectiveness]:
        """Per-rule effectiveness, best first. Rules without outcomes score 0."""
        window = parse_time_range(window)
        now = now or datetime.now(timezone.utc)
        outcomes = self._timed_outcomes(org_id) if outcomes is None else outcomes

        by_rule: dict[str, list[_Timed]] = {}
        for item in outcomes:
            for rule_id in item[0].rule_ids:
                by_rule.setdefault(rule_id, []).append(item)

        names: dict[str, str] = {}
        if self.rule_store is not None:
            for rule in self.rule_store.list_rules(org_id):
                names[rule.id] = rule.name
                by_rule.setdefault(rule.id, [])
            missing = [rule_id for rule_id in by_rule if rule_id not in names]
            names.update(self.rule_store.rule_names(org_id, missing))

        results = []
        for rule_id, scoped in by_rule.items():
            metric = self._metric(MetricScope.RULE, rule_id, scoped, window, now)
            results.append(
                RuleEffectiveness(
                    rule_id=rule_id,
                    rule_name=names.get(rule_id, rule_id),
                    triggered_count=metric.triggered_count,
                    successful_outcomes=metric.successful_outcomes,
                    effectiveness_score=round(metric.effectiveness_score, 4),
                    improvement_trend=metric.improvement_trend,
                )
            )
        results.sort(key=lambda r: (-r.effectiveness_score, -r.triggered_count, r.rule_id))
        return results

    def agent_leaderboard(
        self,
        org_id: str,
        window: str | timedelta | None = "30d",
        now: datetime | None = None,
        outcomes: list[_Timed] | None = None,
    ) -> list[AgentPerformance]:
        """Agents ranked by success rate, then by volume, then by id."""
        window = parse_time_range(window)
        now = now or datetime.now(timezone.utc)
        outcomes = self._timed_outcomes(org_id) if outcomes is None else outcomes

        by_agent: dict[str, list[_Timed]] = {}
        for item in outcomes:
            if item[0].agent_id:
                by_agent.setdefault(item[0].agent_id, []).append(item)

        leaderboard = []
        for agent_id, scoped in by_agent.items():
            current = in_window(scoped, window, now)
            if not current:
                continue
            actions, successful = _counts(current)
            confidences = [o.confidence_score for o, _ in current if o.confidence_score is not None]
            names = [o.agent_name for o, _ in scoped if o.agent_name]
            leaderboard.append(
                AgentPerformance(
                    agent_id=agent_id,
                    agent_name=names[-1] if names else agent_id,
                    actions_count=actions,
                    success_rate=round(effectiveness_score(successful, actions), 4),
                    avg_confidence=round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
                    improvement_trend=improvement_trend(scoped, window, now),
                )
            )
        leaderboard.sort(key=lambda a: (-a.success_rate, -a.actions_count, a.agent_id))
        return leaderboard

    def learning_metrics(
        self,
        org_id: str,
        window: str | timedelta | None = "30d",
        now: datetime | None = None,
        outcomes: list[_Timed] | None = None,
        leaderboard: list[AgentPerformance] | None = None,
        rules: list[RuleEffectiveness] | None = None,
    ) -> LearningMetrics:
        window = parse_time_range(window)
        now = now or datetime.now(timezone.utc)
        outcomes = self._timed_outcomes(org_id) if outcomes is None else outcomes
        if leaderboard is None:
            leaderboard = self.agent_leaderboard(org_id, window, now, outcomes)
        if rules is None:
            rules = self.rule_effectiveness(org_id, window, now, outcomes)

        current = in_window(outcomes, window, now)
        total, successful = _counts(current)

        if self.recommendation_store is not None:
            since = (now - window).isoformat() if window is not None else None
            total_actions = self.recommendation_store.count_recommendations(org_id, since=since)
        else:
            total_actions = len({o.recommendation_id for o, _ in current if o.recommendation_id})

        this_week = len(_between(outcomes, now - WEEK, now, inclusive_end=True))
        last_week = len(_between(outcomes, now - 2 * WEEK, now - WEEK, inclusive_end=False))
        growth = round((this_week - last_week) / last_week * 100, 2) if last_week else 0.0

        top_rule = next((r for r in rules if r.triggered_count > 0), None)
        return LearningMetrics(
            total_actions=total_actions,
            total_outcomes=total,
            overall_success_rate=round(effectiveness_score(successful, total), 4),
            week_over_week_growth=growth,
            top_performing_agent=leaderboard[0].agent_name if leaderboard else None,
            most_effective_rule=top_rule.rule_name if top_rule else None,
        )

    def build_analytics(self, org_id: str, time_range: str = "30d", now: datetime | None = None) -> dict[str, Any]:
        window = parse_time_range(time_range)
        now = now or datetime.now(timezone.utc)
        outcomes = self._timed_outcomes(org_id)
        leaderboard = self.agent_leaderboard(org_id, window, now, outcomes)
        rules = self.rule_effectiveness(org_id, window, now, outcomes)
        metrics = self.learning_metrics(org_id, window, now, outcomes, leaderboard, rules)
        return {
            "org_id": org_id,
            "time_range": time_range,
            "generated_at": now.isoformat(),
            "metrics": metrics.to_dict(),
            "agent_performance": [agent.to_dict() for agent in leaderboard],
            "rule_effectiveness": [rule.to_dict() for rule in rules],
        }

    def analytics(self, org_id: str, time_range: str = "30d", refresh: bool = False) -> dict[str, Any]:
        """Dashboard payload, served from a snapshot younger than the TTL."""
        parse_time_range(time_range)
        key = (org_id, time_range)
        if not refresh:
            with self._snapshot_lock:
                cached = self._snapshots.get(key)
            if cached is not None and self._clock() - cached[0] < self.snapshot_ttl_seconds:
                return cached[1]

        payload = self.build_analytics(org_id, time_range)
        with self._snapshot_lock:
            self._snapshots[key] = (self._clock(), payload)
        return payload

    def refresh_snapshots(self, org_ids: Iterable[str] | None = None) -> int:
        """Rebuild cached snapshots for the given (or all known) organizations."""
        if org_ids is None:
            org_ids = set(self.recorder.list_org_ids())
            if self.rule_store is not None:
                org_ids.update(self.rule_store.list_org_ids())
        refreshed = 0
        for org_id in sorted(org_ids):
            for time_range in TIME_RANGES:
                self.analytics(org_id, time_range, refresh=True)
                refreshed += 1
        logger.debug(f"Refreshed {refreshed} analytics snapshots")
        return refreshed

    def rule_priors(self, org_id: str, now: datetime | None = None) -> dict[str, float]:
        """Observed effectiveness of rules with enough recent outcomes."""
        now = now or datetime.now(timezone.utc)
        recent = in_window(self._timed_outcomes(org_id), FEEDBACK_WINDOW, now)
        totals: dict[str, int] = {}
        successes: dict[str, int] = {}
        for outcome, _ in recent:
            for rule_id in outcome.rule_ids:
                totals[rule_id] = totals.get(rule_id, 0) + 1
                if outcome.observed_result is OutcomeResult.SUCCESS:
                    successes[rule_id] = successes.get(rule_id, 0) + 1
        return {
            rule_id: effectiveness_score(successes.get(rule_id, 0), count)
            for rule_id, count in totals.items()
            if count >= self.feedback_min_samples
        }
