"""Tests for rule persistence and rule packs."""

from __future__ import annotations

import json
import sqlite3

import pytest

from rules.errors import NotFoundError, RuleValidationError, TenantIsolationViolation
from rules.models import ActionType
from rules.ruleset import install_pack, list_packs, load_pack
from rules.store import RuleStore

from conftest import ORG_ID, OTHER_ORG_ID


@pytest.fixture
def store(db_path: str) -> RuleStore:
    return RuleStore(db_path)


class TestRuleStore:
    def test_create_and_get(self, store: RuleStore, rule_document: dict):
        created = store.create_rule(ORG_ID, rule_document)

        fetched = store.get_rule(created.id, org_id=ORG_ID)
        assert fetched.name == "EstimateReady"
        assert fetched.action.type is ActionType.RECOMMEND
        assert fetched.action.suggested_action == "submit_to_carrier"
        assert fetched.trigger is not None

    def test_invalid_document_is_not_stored(self, store: RuleStore, rule_document: dict):
        rule_document["trigger"] = {"all": [{"path": "claim.state", "op": "like", "value": "x"}]}

        with pytest.raises(RuleValidationError) as exc_info:
            store.create_rule(ORG_ID, rule_document)

        assert exc_info.value.path == "trigger.all[0].op"
        assert store.list_rules(ORG_ID) == []

    def test_duplicate_name_rejected(self, store: RuleStore, rule_document: dict):
        store.create_rule(ORG_ID, rule_document)

        with pytest.raises(RuleValidationError) as exc_info:
            store.create_rule(ORG_ID, rule_document)

        assert exc_info.value.path == "name"

    def test_same_name_allowed_in_other_org(self, store: RuleStore, rule_document: dict):
        store.create_rule(ORG_ID, rule_document)
        store.create_rule(OTHER_ORG_ID, rule_document)

        assert len(store.list_rules(OTHER_ORG_ID)) == 1

    def test_update_revalidates_merged_rule(self, store: RuleStore, rule_document: dict):
        rule = store.create_rule(ORG_ID, rule_document)

        updated = store.update_rule(rule.id, {"priority": 3, "enabled": False}, ORG_ID)
        assert updated.priority == 3
        assert updated.enabled is False

        with pytest.raises(RuleValidationError) as exc_info:
            store.update_rule(rule.id, {"category": "nonsense"}, ORG_ID)
        assert exc_info.value.path == "category"

    def test_condition_free_trigger_is_not_stored(self, store: RuleStore, rule_document: dict):
        rule_document["trigger"] = {"all": []}

        with pytest.raises(RuleValidationError) as exc_info:
            store.create_rule(ORG_ID, rule_document)

        assert exc_info.value.path == "trigger"
        assert store.list_rules(ORG_ID) == []

    def test_update_cannot_empty_the_trigger(self, store: RuleStore, rule_document: dict):
        rule = store.create_rule(ORG_ID, rule_document)

        with pytest.raises(RuleValidationError):
            store.update_rule(rule.id, {"trigger": {"any": []}}, ORG_ID)

    def test_update_rejects_unknown_fields(self, store: RuleStore, rule_document: dict):
        rule = store.create_rule(ORG_ID, rule_document)

        with pytest.raises(RuleValidationError):
            store.update_rule(rule.id, {"org_id": OTHER_ORG_ID}, ORG_ID)

    def test_delete_is_soft(self, store: RuleStore, rule_document: dict):
        rule = store.create_rule(ORG_ID, rule_document)

        archived = store.delete_rule(rule.id, ORG_ID)

        assert archived.archived_at is not None
        assert archived.enabled is False
        assert store.list_rules(ORG_ID) == []
        assert [r.id for r in store.list_rules(ORG_ID, include_archived=True)] == [rule.id]
        assert store.list_enabled_rules(ORG_ID) == []
        assert store.rule_names(ORG_ID, [rule.id]) == {rule.id: "EstimateReady"}

    def test_archived_rule_cannot_be_edited(self, store: RuleStore, rule_document: dict):
        rule = store.create_rule(ORG_ID, rule_document)
        store.delete_rule(rule.id, ORG_ID)

        with pytest.raises(RuleValidationError):
            store.update_rule(rule.id, {"priority": 2}, ORG_ID)

    def test_tenant_isolation(self, store: RuleStore, rule_document: dict):
        rule = store.create_rule(ORG_ID, rule_document)

        with pytest.raises(TenantIsolationViolation):
            store.get_rule(rule.id, org_id=OTHER_ORG_ID)
        with pytest.raises(TenantIsolationViolation):
            store.delete_rule(rule.id, OTHER_ORG_ID)
        assert store.list_enabled_rules(OTHER_ORG_ID) == []

    def test_missing_rule(self, store: RuleStore):
        with pytest.raises(NotFoundError):
            store.get_rule("missing")

    def test_corrupt_stored_trigger_loads_with_error(
        self, store: RuleStore, rule_document: dict, db_path: str
    ):
        rule = store.create_rule(ORG_ID, rule_document)
        with sqlite3.connect(db_path) as conn:
            conn.execute(
                "UPDATE rules SET trigger = ? WHERE id = ?",
                (json.dumps({"path": "claim.state", "op": "bogus", "value": 1}), rule.id),
            )

        loaded = store.get_rule(rule.id)

        assert loaded.trigger is None
        assert loaded.trigger_error is not None


class TestRulePacks:
    def test_list_packs(self):
        packs = {pack["id"]: pack for pack in list_packs()}

        assert {"default", "carrier_patterns", "negotiation"} <= set(packs)
        assert packs["default"]["rule_count"] > 0

    def test_every_bundled_pack_validates(self):
        for pack in list_packs():
            assert len(load_pack(pack["id"])) == pack["rule_count"]

    def test_unknown_or_traversing_pack_ids(self):
        with pytest.raises(NotFoundError):
            load_pack("missing")
        with pytest.raises(NotFoundError):
            load_pack("../config")

    def test_install_is_idempotent(self, store: RuleStore):
        first = install_pack(store, ORG_ID, "negotiation")
        second = install_pack(store, ORG_ID, "negotiation")

        assert len(first) == len(second) == len(load_pack("negotiation"))
        assert {rule.id for rule in first} == {rule.id for rule in second}
        assert len(store.list_rules(ORG_ID)) == len(first)

    def test_install_skips_archived_rules(self, store: RuleStore):
        installed = install_pack(store, ORG_ID, "negotiation")
        store.delete_rule(installed[0].id, ORG_ID)

        reinstalled = install_pack(store, ORG_ID, "negotiation")

        assert installed[0].id not in {rule.id for rule in reinstalled}
        assert len(reinstalled) == len(installed) - 1
