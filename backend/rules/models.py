"""Data models for the rules engine."""
from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class _Absent:
    """Sentinel for fact paths that were never resolved."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class FactMap(Mapping[str, Any]):
    """Flat, path-addressable view of a claim and its related entities.

    Lookups of unknown paths return ``ABSENT`` through :meth:`resolve`;
    ``None`` is never stored as a value.
    """

    def __init__(
        self,
        facts: Mapping[str, Any],
        org_id: str | None = None,
        unavailable: frozenset[str] | set[str] | tuple[str, ...] = frozenset(),
    ) -> None:
        self._facts = dict(facts)
        self.org_id = org_id
        self.unavailable = frozenset(unavailable)

    def __getitem__(self, path: str) -> Any:
        return self._facts[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._facts)

    def __len__(self) -> int:
        return len(self._facts)

    def resolve(self, path: str) -> Any:
        return self._facts.get(path, ABSENT)

    def is_unavailable(self, path: str) -> bool:
        if not self.unavailable:
            return False
        root = path.split(".", 1)[0].split("[", 1)[0]
        return root in self.unavailable

    def snapshot(self, paths: set[str] | frozenset[str]) -> dict[str, Any]:
        """Return the present facts among ``paths``, in sorted order."""
        return {p: self._facts[p] for p in sorted(paths) if p in self._facts}


class Operator(str, Enum):
    """Predicate operators supported by the trigger DSL."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"


@dataclass(frozen=True)
class Predicate:
    path: str
    op: Operator
    value: Any = None


@dataclass(frozen=True)
class AllNode:
    children: tuple[TriggerNode, ...] = ()


@dataclass(frozen=True)
class AnyNode:
    children: tuple[TriggerNode, ...] = ()


@dataclass(frozen=True)
class NotNode:
    child: TriggerNode


TriggerNode = Union[AllNode, AnyNode, NotNode, Predicate]


class ActionType(str, Enum):
    RECOMMEND = "recommend"
    FLAG = "flag"
    SCORE_ADJUST = "score_adjust"


@dataclass(frozen=True)
class ActionSpec:
    """What a rule does when its trigger matches."""

    type: ActionType
    message: str
    category: str
    priority: str = "medium"
    suggested_action: str | None = None
    confidence: float | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rule:
    """A persisted business rule owned by an organization."""

    id: str
    org_id: str
    name: str
    category: str
    priority: int
    trigger: TriggerNode | None
    action: ActionSpec
    description: str = ""
    enabled: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    archived_at: str | None = None
    # Set when the stored trigger document could not be parsed.
    trigger_error: str | None = None


@dataclass(frozen=True)
class FiredAction:
    """One rule whose trigger matched during an evaluation."""

    rule_id: str
    rule_name: str
    priority: int
    category: str
    action: ActionSpec
    fired_at: str
    facts_snapshot: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RuleWarning:
    rule_id: str
    message: str


@dataclass(frozen=True)
class EvaluationReport:
    """Result of evaluating a rule set against one FactMap."""

    fired_actions: tuple[FiredAction, ...]
    warnings: tuple[RuleWarning, ...] = ()
    evaluated_count: int = 0
