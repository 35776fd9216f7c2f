"""Trigger and action DSL parsing.

Rules arrive from the admin panel and from YAML rule packs as untyped
JSON documents. This module validates them once, at the persistence
boundary, and turns them into the closed set of node types in
``rules.models``. The evaluator never sees raw JSON.

Trigger documents look like::

    {"all": [
        {"path": "claim.status", "op": "equals", "value": "new"},
        {"not": {"path": "photos.length", "op": ">=", "value": 5}}
    ]}

Operator spellings used by older seeded rules (``==``, ``>``,
``not_contains`` ...) are normalised to the canonical operator names.
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from config import MAX_TRIGGER_DEPTH, MAX_TRIGGER_NODES

from .errors import RuleValidationError
from .models import (
    ActionSpec,
    ActionType,
    AllNode,
    AnyNode,
    NotNode,
    Operator,
    Predicate,
    Rule,
    TriggerNode,
)
from .triggers import as_number

KNOWN_CATEGORIES = frozenset(
    {
        "code_compliance",
        "carrier_patterns",
        "quality_checks",
        "risk_flags",
        "negotiation",
        "documentation",
        "follow_up",
    }
)

ACTION_PRIORITIES = ("critical", "high", "medium", "low")

RULE_PRIORITY_MIN = 1
RULE_PRIORITY_MAX = 10

PATH_PATTERN = re.compile(r"^[A-Za-z_]\w*(\[\d+\])*(\.[A-Za-z_]\w*(\[\d+\])*)*$")

_OPERATOR_ALIASES: dict[str, Operator] = {
    "equals": Operator.EQUALS,
    "eq": Operator.EQUALS,
    "==": Operator.EQUALS,
    "===": Operator.EQUALS,
    "notEquals": Operator.NOT_EQUALS,
    "not_equals": Operator.NOT_EQUALS,
    "ne": Operator.NOT_EQUALS,
    "!=": Operator.NOT_EQUALS,
    "!==": Operator.NOT_EQUALS,
    "gt": Operator.GT,
    ">": Operator.GT,
    "gte": Operator.GTE,
    ">=": Operator.GTE,
    "lt": Operator.LT,
    "<": Operator.LT,
    "lte": Operator.LTE,
    "<=": Operator.LTE,
    "contains": Operator.CONTAINS,
    "exists": Operator.EXISTS,
    "notExists": Operator.NOT_EXISTS,
    "not_exists": Operator.NOT_EXISTS,
}

# Operators expressed as the negation of a canonical operator.
_NEGATED_ALIASES: dict[str, Operator] = {
    "not_contains": Operator.CONTAINS,
    "notContains": Operator.CONTAINS,
}

_NUMERIC_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
_PRESENCE_OPERATORS = frozenset({Operator.EXISTS, Operator.NOT_EXISTS})

_ACTION_FIELDS = frozenset(
    {
        "type",
        "message",
        "category",
        "priority",
        "severity",
        "suggestedAction",
        "suggested_action",
        "confidence",
        "payload",
    }
)


class _TriggerParser:
    def __init__(self, max_depth: int, max_nodes: int) -> None:
        self.max_depth = max_depth
        self.max_nodes = max_nodes
        self._node_count = 0
        self._active: set[int] = set()

    def parse(self, node: Any, path: str, depth: int) -> TriggerNode:
        if depth > self.max_depth:
            raise RuleValidationError(
                f"trigger exceeds maximum depth of {self.max_depth}", path
            )
        self._node_count += 1
        if self._node_count > self.max_nodes:
            raise RuleValidationError(
                f"trigger exceeds maximum size of {self.max_nodes} nodes", path
            )
        if not isinstance(node, Mapping):
            raise RuleValidationError("expected an object", path)
        if id(node) in self._active:
            raise RuleValidationError("cyclic trigger reference", path)

        self._active.add(id(node))
        try:
            return self._parse_mapping(node, path, depth)
        finally:
            self._active.discard(id(node))

    def _parse_mapping(self, node: Mapping[str, Any], path: str, depth: int) -> TriggerNode:
        combinators = [key for key in ("all", "any", "not") if key in node]
        if len(combinators) > 1:
            raise RuleValidationError(
                "node must use exactly one of 'all', 'any' or 'not'", path
            )
        if combinators:
            key = combinators[0]
            extra = set(node) - {key}
            if extra:
                raise RuleValidationError(
                    f"unexpected keys alongside '{key}': {sorted(extra)}", path
                )
            if key == "not":
                return NotNode(self.parse(node["not"], f"{path}.not", depth + 1))
            return self._parse_group(key, node[key], f"{path}.{key}", depth)
        return self._parse_predicate(node, path)

    def _parse_group(self, key: str, children: Any, path: str, depth: int) -> TriggerNode:
        if not isinstance(children, list):
            raise RuleValidationError("expected a list of conditions", path)
        if id(children) in self._active:
            raise RuleValidationError("cyclic trigger reference", path)
        self._active.add(id(children))
        try:
            parsed = tuple(
                self.parse(child, f"{path}[{index}]", depth + 1)
                for index, child in enumerate(children)
            )
        finally:
            self._active.discard(id(children))
        return AllNode(parsed) if key == "all" else AnyNode(parsed)

    def _parse_predicate(self, node: Mapping[str, Any], path: str) -> TriggerNode:
        extra = set(node) - {"path", "op", "value"}
        if extra:
            raise RuleValidationError(f"unexpected predicate keys: {sorted(extra)}", path)

        fact_path = node.get("path")
        if not isinstance(fact_path, str) or not PATH_PATTERN.match(fact_path):
            raise RuleValidationError(f"invalid fact path: {fact_path!r}", f"{path}.path")

        raw_op = node.get("op")
        negated = False
        if isinstance(raw_op, str) and raw_op in _NEGATED_ALIASES:
            op = _NEGATED_ALIASES[raw_op]
            negated = True
        elif isinstance(raw_op, str) and raw_op in _OPERATOR_ALIASES:
            op = _OPERATOR_ALIASES[raw_op]
        else:
            raise RuleValidationError(f"unknown operator: {raw_op!r}", f"{path}.op")

        if op in _PRESENCE_OPERATORS:
            value = None
        else:
            if "value" not in node:
                raise RuleValidationError(
                    f"operator '{op.value}' requires a value", f"{path}.value"
                )
            value = _validate_value(node["value"], f"{path}.value")
            if op in _NUMERIC_OPERATORS and as_number(value) is None:
                raise RuleValidationError(
                    f"operator '{op.value}' requires a numeric value", f"{path}.value"
                )
            if op is Operator.CONTAINS and isinstance(value, tuple):
                raise RuleValidationError(
                    "operator 'contains' requires a scalar value", f"{path}.value"
                )

        predicate = Predicate(path=fact_path, op=op, value=value)
        return NotNode(predicate) if negated else predicate


def _validate_value(value: Any, path: str) -> Any:
    if value is None:
        raise RuleValidationError("null is not a comparable value; use 'notExists'", path)
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, list):
        for index, item in enumerate(value):
            if item is None or not isinstance(item, (str, int, float, bool)):
                raise RuleValidationError("list values must be scalars", f"{path}[{index}]")
        return tuple(value)
    raise RuleValidationError(f"unsupported value type: {type(value).__name__}", path)


def parse_trigger(
    document: Any,
    *,
    max_depth: int = MAX_TRIGGER_DEPTH,
    max_nodes: int = MAX_TRIGGER_NODES,
) -> TriggerNode | None:
    """Parse a trigger document into a trigger tree.

    Returns ``None`` for an empty document; the engine skips such rules.

    Raises:
        RuleValidationError: If the document is malformed, cyclic, or too large.
    """
    if document is None or (isinstance(document, Mapping) and not document):
        return None
    return _TriggerParser(max_depth, max_nodes).parse(document, "trigger", 0)


def validate_category(category: Any, path: str = "category") -> str:
    if not isinstance(category, str) or category not in KNOWN_CATEGORIES:
        raise RuleValidationError(
            f"unknown category {category!r}; expected one of {sorted(KNOWN_CATEGORIES)}",
            path,
        )
    return category


def validate_rule_priority(priority: Any, path: str = "priority") -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise RuleValidationError("priority must be an integer", path)
    if not RULE_PRIORITY_MIN <= priority <= RULE_PRIORITY_MAX:
        raise RuleValidationError(
            f"priority must be between {RULE_PRIORITY_MIN} and {RULE_PRIORITY_MAX}", path
        )
    return priority


def parse_action(
    document: Any, default_category: str | None = None, path: str = "action"
) -> ActionSpec:
    """Parse an action document into an :class:`ActionSpec`.

    Raises:
        RuleValidationError: On unknown types, categories or fields.
    """
    if not isinstance(document, Mapping):
        raise RuleValidationError("expected an object", path)

    extra = set(document) - _ACTION_FIELDS
    if extra:
        raise RuleValidationError(f"unknown action fields: {sorted(extra)}", path)

    try:
        action_type = ActionType(document.get("type"))
    except ValueError:
        raise RuleValidationError(
            f"unknown action type: {document.get('type')!r}", f"{path}.type"
        ) from None

    message = document.get("message")
    if not isinstance(message, str) or not message.strip():
        raise RuleValidationError("message is required", f"{path}.message")

    category = validate_category(
        document.get("category", default_category), f"{path}.category"
    )

    priority = document.get("priority", document.get("severity", "medium"))
    if priority not in ACTION_PRIORITIES:
        raise RuleValidationError(
            f"priority must be one of {list(ACTION_PRIORITIES)}", f"{path}.priority"
        )

    suggested_action = document.get("suggestedAction", document.get("suggested_action"))
    if suggested_action is not None and not isinstance(suggested_action, str):
        raise RuleValidationError("suggestedAction must be a string", f"{path}.suggestedAction")

    confidence = document.get("confidence")
    if confidence is not None:
        confidence = as_number(confidence)
        if confidence is None or not 0.0 <= confidence <= 1.0:
            raise RuleValidationError(
                "confidence must be a number between 0 and 1", f"{path}.confidence"
            )

    payload = document.get("payload") or {}
    if not isinstance(payload, Mapping):
        raise RuleValidationError("payload must be an object", f"{path}.payload")
    if action_type is ActionType.SCORE_ADJUST:
        delta = as_number(payload.get("delta"))
        if delta is None or not -1.0 <= delta <= 1.0:
            raise RuleValidationError(
                "score_adjust requires a numeric payload.delta between -1 and 1",
                f"{path}.payload.delta",
            )

    return ActionSpec(
        type=action_type,
        message=message.strip(),
        category=category,
        priority=priority,
        suggested_action=suggested_action,
        confidence=confidence,
        payload=dict(payload),
    )


def trigger_to_dict(node: TriggerNode | None) -> dict[str, Any]:
    """Serialize a trigger tree back to its canonical JSON document."""
    if node is None:
        return {}
    if isinstance(node, AllNode):
        return {"all": [trigger_to_dict(child) for child in node.children]}
    if isinstance(node, AnyNode):
        return {"any": [trigger_to_dict(child) for child in node.children]}
    if isinstance(node, NotNode):
        return {"not": trigger_to_dict(node.child)}
    document: dict[str, Any] = {"path": node.path, "op": node.op.value}
    if node.op not in _PRESENCE_OPERATORS:
        document["value"] = list(node.value) if isinstance(node.value, tuple) else node.value
    return document


def action_to_dict(action: ActionSpec) -> dict[str, Any]:
    document: dict[str, Any] = {
        "type": action.type.value,
        "message": action.message,
        "category": action.category,
        "priority": action.priority,
    }
    if action.suggested_action is not None:
        document["suggestedAction"] = action.suggested_action
    if action.confidence is not None:
        document["confidence"] = action.confidence
    if action.payload:
        document["payload"] = dict(action.payload)
    return document


def trigger_paths(node: TriggerNode | None) -> frozenset[str]:
    """Collect every fact path a trigger tree references."""
    paths: set[str] = set()
    stack: list[TriggerNode] = [node] if node is not None else []
    while stack:
        current = stack.pop()
        if isinstance(current, Predicate):
            paths.add(current.path)
        elif isinstance(current, NotNode):
            stack.append(current.child)
        else:
            stack.extend(current.children)
    return frozenset(paths)


def validate_rule_document(document: Any) -> dict[str, Any]:
    """Validate a complete rule document as submitted by the admin panel.

    Returns the parsed fields ready for persistence.

    Raises:
        RuleValidationError: With the path of the first offending field.
    """
    if not isinstance(document, Mapping):
        raise RuleValidationError("expected an object")

    name = document.get("name")
    if not isinstance(name, str) or not name.strip():
        raise RuleValidationError("name is required", "name")
    if len(name) > 200:
        raise RuleValidationError("name must be at most 200 characters", "name")

    description = document.get("description") or ""
    if not isinstance(description, str):
        raise RuleValidationError("description must be a string", "description")

    category = validate_category(document.get("category"))
    priority = validate_rule_priority(document.get("priority", 5))

    trigger = parse_trigger(document.get("trigger"))
    if trigger is None or not trigger_paths(trigger):
        raise RuleValidationError("trigger must contain at least one condition", "trigger")

    action = parse_action(document.get("action"), default_category=category)

    enabled = document.get("enabled", True)
    if not isinstance(enabled, bool):
        raise RuleValidationError("enabled must be a boolean", "enabled")

    return {
        "name": name.strip(),
        "description": description,
        "category": category,
        "priority": priority,
        "trigger": trigger,
        "action": action,
        "enabled": enabled,
    }


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "org_id": rule.org_id,
        "name": rule.name,
        "description": rule.description,
        "category": rule.category,
        "priority": rule.priority,
        "trigger": trigger_to_dict(rule.trigger),
        "action": action_to_dict(rule.action),
        "enabled": rule.enabled,
        "created_at": rule.created_at,
        "updated_at": rule.updated_at,
        "archived_at": rule.archived_at,
        "trigger_error": rule.trigger_error,
    }
