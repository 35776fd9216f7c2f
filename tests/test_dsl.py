"""Tests for rule document validation."""

from __future__ import annotations

import copy

import pytest

from rules.dsl import parse_action, parse_trigger, trigger_to_dict, validate_rule_document
from rules.errors import RuleValidationError
from rules.models import ActionType, AllNode, NotNode, Operator, Predicate


class TestParseTrigger:
    def test_operator_aliases_are_normalized(self):
        node = parse_trigger(
            {
                "all": [
                    {"path": "claim.state", "op": "==", "value": "NEW"},
                    {"path": "photos.length", "op": ">=", "value": 5},
                    {"path": "claim.adjusterEmail", "op": "not_exists"},
                ]
            }
        )

        assert isinstance(node, AllNode)
        assert [child.op for child in node.children] == [
            Operator.EQUALS,
            Operator.GTE,
            Operator.NOT_EXISTS,
        ]

    def test_negated_alias_becomes_not_node(self):
        node = parse_trigger({"path": "inspections.type", "op": "not_contains", "value": "engineering"})

        assert node == NotNode(Predicate("inspections.type", Operator.CONTAINS, "engineering"))

    def test_empty_trigger_parses_to_none(self):
        assert parse_trigger({}) is None
        assert parse_trigger(None) is None

    def test_unknown_operator_reports_path(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_trigger(
                {
                    "all": [
                        {"path": "claim.state", "op": "equals", "value": "NEW"},
                        {"path": "claim.total", "op": "roughly", "value": 3},
                    ]
                }
            )

        assert exc_info.value.path == "trigger.all[1].op"

    def test_numeric_operator_requires_numeric_value(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_trigger({"any": [{"not": {"path": "claim.total", "op": "gt", "value": "lots"}}]})

        assert exc_info.value.path == "trigger.any[0].not.value"

    def test_null_value_rejected(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_trigger({"path": "claim.total", "op": "equals", "value": None})

        assert exc_info.value.path == "trigger.value"

    def test_invalid_path_rejected(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_trigger({"path": "claim..total", "op": "exists"})

        assert exc_info.value.path == "trigger.path"

    def test_mixed_combinators_rejected(self):
        with pytest.raises(RuleValidationError):
            parse_trigger({"all": [], "any": []})

    def test_depth_limit(self):
        node = {"path": "claim.status", "op": "exists"}
        for _ in range(5):
            node = {"not": node}

        with pytest.raises(RuleValidationError, match="maximum depth"):
            parse_trigger(node, max_depth=3)

    def test_node_limit(self):
        children = [{"path": f"claim.f{i}", "op": "exists"} for i in range(10)]

        with pytest.raises(RuleValidationError, match="maximum size"):
            parse_trigger({"any": children}, max_nodes=5)

    def test_cyclic_document_rejected(self):
        group: dict = {"all": []}
        group["all"].append(group)

        with pytest.raises(RuleValidationError, match="cyclic"):
            parse_trigger(group)

    def test_serializes_back_to_canonical_document(self):
        document = {
            "all": [
                {"path": "claim.state", "op": "equals", "value": "NEW"},
                {"not": {"path": "photos.annotated", "op": "contains", "value": False}},
            ]
        }

        assert parse_trigger(trigger_to_dict(parse_trigger(document))) == parse_trigger(document)


class TestParseAction:
    def test_severity_and_suggested_action_aliases(self):
        action = parse_action(
            {
                "type": "flag",
                "severity": "high",
                "message": "Add photos",
                "suggestedAction": "schedule_photo_session",
            },
            default_category="documentation",
        )

        assert action.type is ActionType.FLAG
        assert action.priority == "high"
        assert action.category == "documentation"
        assert action.suggested_action == "schedule_photo_session"

    def test_unknown_type_reports_path(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_action({"type": "email", "message": "x"}, default_category="follow_up")

        assert exc_info.value.path == "action.type"

    def test_score_adjust_requires_delta(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_action(
                {"type": "score_adjust", "message": "boost"}, default_category="negotiation"
            )

        assert exc_info.value.path == "action.payload.delta"

    def test_confidence_range(self):
        with pytest.raises(RuleValidationError) as exc_info:
            parse_action(
                {"type": "recommend", "message": "x", "confidence": 1.5},
                default_category="follow_up",
            )

        assert exc_info.value.path == "action.confidence"


class TestValidateRuleDocument:
    def test_valid_document(self, rule_document: dict):
        fields = validate_rule_document(rule_document)

        assert fields["name"] == "EstimateReady"
        assert fields["priority"] == 8
        assert fields["action"].confidence == 0.8

    def test_unknown_category(self, rule_document: dict):
        document = copy.deepcopy(rule_document)
        document["category"] = "qualty_checks"

        with pytest.raises(RuleValidationError) as exc_info:
            validate_rule_document(document)

        assert exc_info.value.path == "category"

    def test_priority_out_of_range(self, rule_document: dict):
        document = copy.deepcopy(rule_document)
        document["priority"] = 11

        with pytest.raises(RuleValidationError) as exc_info:
            validate_rule_document(document)

        assert exc_info.value.path == "priority"

    def test_empty_trigger_rejected_on_save(self, rule_document: dict):
        document = copy.deepcopy(rule_document)
        document["trigger"] = {}

        with pytest.raises(RuleValidationError) as exc_info:
            validate_rule_document(document)

        assert exc_info.value.path == "trigger"

    @pytest.mark.parametrize(
        "trigger",
        [{"all": []}, {"any": []}, {"not": {"all": []}}, {"any": [{"all": []}, {"any": []}]}],
    )
    def test_trigger_without_conditions_rejected_on_save(self, rule_document: dict, trigger):
        document = copy.deepcopy(rule_document)
        document["trigger"] = trigger

        with pytest.raises(RuleValidationError, match="at least one condition") as exc_info:
            validate_rule_document(document)

        assert exc_info.value.path == "trigger"

    def test_empty_nested_group_allowed_beside_conditions(self, rule_document: dict):
        document = copy.deepcopy(rule_document)
        document["trigger"] = {"any": [{"all": []}, {"path": "claim.state", "op": "exists"}]}

        assert validate_rule_document(document)["trigger"] is not None

    def test_nested_action_error_path(self, rule_document: dict):
        document = copy.deepcopy(rule_document)
        document["action"]["priority"] = "urgent"

        with pytest.raises(RuleValidationError) as exc_info:
            validate_rule_document(document)

        assert exc_info.value.path == "action.priority"
