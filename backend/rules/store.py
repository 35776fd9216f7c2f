"""Rule persistence.

Provides SQLite storage for organization rules. Rules are validated on
every write; reads are lenient so that a rule stored by an older release
with a malformed trigger is skipped by the engine instead of breaking
evaluation. Rules are never deleted physically because outcome history
references them.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from .dsl import action_to_dict, parse_action, parse_trigger, trigger_to_dict, validate_rule_document
from .errors import NotFoundError, RuleValidationError, TenantIsolationViolation
from .models import ActionSpec, ActionType, Rule

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = frozenset(
    {"name", "description", "category", "priority", "trigger", "action", "enabled"}
)


class RuleStore:
    """SQLite-backed rule repository scoped by organization."""

    def __init__(self, db_path: str) -> None:
        """Initialize the rule store.

        Args:
            db_path: Path to SQLite database
        """
        self.db_path = db_path
        self._ensure_tables()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rules (
                    id TEXT PRIMARY KEY,
                    org_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    category TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    trigger TEXT NOT NULL,
                    action TEXT NOT NULL,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    archived_at TEXT,
                    UNIQUE (org_id, name)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_org_enabled
                ON rules(org_id, enabled)
            """)
            conn.commit()
        finally:
            conn.close()

    def _row_to_rule(self, row: sqlite3.Row) -> Rule:
        trigger = None
        trigger_error = None
        action: ActionSpec | None = None
        try:
            trigger = parse_trigger(json.loads(row["trigger"]))
            action = parse_action(json.loads(row["action"]), default_category=row["category"])
        except (RuleValidationError, json.JSONDecodeError) as e:
            trigger_error = str(e)
            logger.warning(f"Stored rule {row['id']} is invalid: {e}")

        if action is None:
            action = ActionSpec(type=ActionType.FLAG, message=row["name"], category=row["category"])

        return Rule(
            id=row["id"],
            org_id=row["org_id"],
            name=row["name"],
            description=row["description"] or "",
            category=row["category"],
            priority=row["priority"],
            trigger=trigger,
            action=action,
            enabled=bool(row["enabled"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            archived_at=row["archived_at"],
            trigger_error=trigger_error,
        )

    def get_rule(self, rule_id: str, org_id: str | None = None) -> Rule:
        """Get a rule by ID.

        Raises:
            NotFoundError: If the rule doesn't exist
            TenantIsolationViolation: If the rule belongs to another organization
        """
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
        finally:
            conn.close()

        if row is None:
            raise NotFoundError("rule", rule_id)
        if org_id is not None and row["org_id"] != org_id:
            raise TenantIsolationViolation(
                f"Rule {rule_id} belongs to another organization",
                expected_org=org_id,
                actual_org=row["org_id"],
            )
        return self._row_to_rule(row)

    def list_rules(self, org_id: str, include_archived: bool = False) -> list[Rule]:
        query = "SELECT * FROM rules WHERE org_id = ?"
        if not include_archived:
            query += " AND archived_at IS NULL"
        query += " ORDER BY priority DESC, name ASC"

        conn = self._get_conn()
        try:
            rows = conn.execute(query, (org_id,)).fetchall()
        finally:
            conn.close()
        return [self._row_to_rule(row) for row in rows]

    def list_enabled_rules(self, org_id: str) -> list[Rule]:
        """Enabled, non-archived rules of one organization.

        The organization filter is applied in the query itself so rules of
        other tenants are never loaded.
        """
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM rules
                WHERE org_id = ? AND enabled = 1 AND archived_at IS NULL
                ORDER BY id
                """,
                (org_id,),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_rule(row) for row in rows]

    def list_org_ids(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT DISTINCT org_id FROM rules WHERE archived_at IS NULL ORDER BY org_id"
            ).fetchall()
        finally:
            conn.close()
        return [row["org_id"] for row in rows]

    def create_rule(self, org_id: str, document: Mapping[str, Any]) -> Rule:
        """Validate and store a new rule.

        Raises:
            RuleValidationError: If the document is invalid or the name is taken
        """
        fields = validate_rule_document(document)
        rule_id = str(document.get("id") or uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO rules (
                    id, org_id, name, description, category, priority,
                    trigger, action, enabled, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule_id,
                    org_id,
                    fields["name"],
                    fields["description"],
                    fields["category"],
                    fields["priority"],
                    json.dumps(trigger_to_dict(fields["trigger"])),
                    json.dumps(action_to_dict(fields["action"])),
                    int(fields["enabled"]),
                    now,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise RuleValidationError(
                f"a rule named '{fields['name']}' already exists", "name"
            ) from None
        finally:
            conn.close()

        logger.info(f"Created rule {rule_id} ({fields['name']}) for org {org_id}")
        return self.get_rule(rule_id)

    def update_rule(self, rule_id: str, patch: Mapping[str, Any], org_id: str) -> Rule:
        """Apply a partial update; the merged rule is re-validated.

        Raises:
            NotFoundError: If the rule doesn't exist
            RuleValidationError: If the patch is invalid
            TenantIsolationViolation: If the rule belongs to another organization
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise RuleValidationError(f"fields cannot be updated: {sorted(unknown)}")

        current = self.get_rule(rule_id, org_id=org_id)
        if current.archived_at is not None:
            raise RuleValidationError("archived rules cannot be edited", "archived_at")

        merged = {
            "name": current.name,
            "description": current.description,
            "category": current.category,
            "priority": current.priority,
            "trigger": trigger_to_dict(current.trigger),
            "action": action_to_dict(current.action),
            "enabled": current.enabled,
        }
        merged.update(patch)
        fields = validate_rule_document(merged)
        now = datetime.now(timezone.utc).isoformat()

        conn = self._get_conn()
        try:
            conn.execute(
                """
                UPDATE rules SET
                    name = ?, description = ?, category = ?, priority = ?,
                    trigger = ?, action = ?, enabled = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    fields["name"],
                    fields["description"],
                    fields["category"],
                    fields["priority"],
                    json.dumps(trigger_to_dict(fields["trigger"])),
                    json.dumps(action_to_dict(fields["action"])),
                    int(fields["enabled"]),
                    now,
                    rule_id,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise RuleValidationError(
                f"a rule named '{fields['name']}' already exists", "name"
            ) from None
        finally:
            conn.close()

        logger.info(f"Updated rule {rule_id}: {sorted(patch)}")
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id: str, org_id: str) -> Rule:
        """Soft-delete: archive and disable the rule, keeping its history."""
        current = self.get_rule(rule_id, org_id=org_id)
        if current.archived_at is not None:
            return current

        now = datetime.now(timezone.utc).isoformat()
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE rules SET enabled = 0, archived_at = ?, updated_at = ? WHERE id = ?",
                (now, now, rule_id),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Archived rule {rule_id}")
        return self.get_rule(rule_id)

    def find_by_name(self, org_id: str, name: str) -> Rule | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM rules WHERE org_id = ? AND name = ?", (org_id, name)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_rule(row) if row else None

    def rule_names(self, org_id: str, rule_ids: list[str]) -> dict[str, str]:
        """Map rule ids to names, including archived rules."""
        if not rule_ids:
            return {}
        placeholders = ",".join("?" for _ in rule_ids)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT id, name FROM rules WHERE org_id = ? AND id IN ({placeholders})",
                (org_id, *rule_ids),
            ).fetchall()
        finally:
            conn.close()
        return {row["id"]: row["name"] for row in rows}
