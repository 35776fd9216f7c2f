"""Immutable per-organization rule-set snapshots."""

from __future__ import annotations

from collections.abc import Iterable

from .errors import TenantIsolationViolation
from .models import Rule


class RuleSet:
    """Rules of one organization, frozen for the duration of an evaluation.

    A fresh snapshot is loaded from the rule store for every evaluation;
    nothing here is shared or mutated between requests.
    """

    __slots__ = ("org_id", "_rules")

    def __init__(self, org_id: str, rules: Iterable[Rule]) -> None:
        rules = tuple(rules)
        for rule in rules:
            if rule.org_id != org_id:
                raise TenantIsolationViolation(
                    f"Rule {rule.id} belongs to another organization",
                    expected_org=org_id,
                    actual_org=rule.org_id,
                )
        self.org_id = org_id
        self._rules = rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    def active_rules(self) -> tuple[Rule, ...]:
        return tuple(
            rule for rule in self._rules if rule.enabled and rule.archived_at is None
        )
