"""Recommendation persistence.

Every evaluation is stored with the fired actions that produced it, the
recommendations synthesized from them, and the similar cases consulted.
Rows are only ever inserted; the latest evaluation of a claim supersedes
the earlier ones.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from rules.dsl import action_to_dict
from rules.errors import NotFoundError, TenantIsolationViolation
from rules.models import FiredAction, RuleWarning

from .models import Recommendation, RecommendationKind, SimilarCase

logger = logging.getLogger(__name__)


class RecommendationStore:
    """SQLite-backed store for evaluations and recommendations."""

    def __init__(self, db_path: str) -> None:
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
                CREATE TABLE IF NOT EXISTS evaluations (
                    id TEXT PRIMARY KEY,
                    org_id TEXT NOT NULL,
                    claim_id TEXT NOT NULL,
                    carrier TEXT,
                    evaluated_count INTEGER NOT NULL,
                    warnings TEXT NOT NULL,
                    unavailable TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS fired_actions (
                    evaluation_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    rule_id TEXT NOT NULL,
                    rule_name TEXT NOT NULL,
                    priority INTEGER NOT NULL,
                    category TEXT NOT NULL,
                    action TEXT NOT NULL,
                    fired_at TEXT NOT NULL,
                    facts_snapshot TEXT NOT NULL,
                    PRIMARY KEY (evaluation_id, position)
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS recommendations (
                    id TEXT PRIMARY KEY,
                    evaluation_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    org_id TEXT NOT NULL,
                    claim_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    label TEXT NOT NULL,
                    description TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    category TEXT NOT NULL,
                    suggested_action TEXT,
                    carrier TEXT,
                    confidence_score REAL NOT NULL,
                    risk_level TEXT,
                    source_rule_ids TEXT NOT NULL,
                    similar_case_ids TEXT NOT NULL,
                    rationale TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS recommendation_similar_cases (
                    evaluation_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    claim_id TEXT NOT NULL,
                    score REAL NOT NULL,
                    outcome TEXT,
                    action TEXT,
                    PRIMARY KEY (evaluation_id, position)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_evaluations_claim
                ON evaluations(org_id, claim_id, created_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_recommendations_evaluation
                ON recommendations(evaluation_id)
            """)
            conn.commit()
        finally:
            conn.close()

    def save_evaluation(
        self,
        *,
        org_id: str,
        claim_id: str,
        carrier: str | None,
        fired_actions: Sequence[FiredAction],
        recommendations: Sequence[Recommendation],
        similar_cases: Sequence[SimilarCase],
        warnings: Sequence[RuleWarning] = (),
        unavailable: Sequence[str] = (),
        evaluated_count: int = 0,
    ) -> str:
        """Persist one evaluation atomically and return its id."""
        evaluation_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO evaluations (
                    id, org_id, claim_id, carrier, evaluated_count,
                    warnings, unavailable, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    evaluation_id,
                    org_id,
                    claim_id,
                    carrier,
                    evaluated_count,
                    json.dumps([{"rule_id": w.rule_id, "message": w.message} for w in warnings]),
                    json.dumps(sorted(unavailable)),
                    now,
                ),
            )
            conn.executemany(
                """
                INSERT INTO fired_actions (
                    evaluation_id, position, rule_id, rule_name, priority,
                    category, action, fired_at, facts_snapshot
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        evaluation_id,
                        position,
                        fired.rule_id,
                        fired.rule_name,
                        fired.priority,
                        fired.category,
                        json.dumps(action_to_dict(fired.action)),
                        fired.fired_at,
                        json.dumps(fired.facts_snapshot, default=str),
                    )
                    for position, fired in enumerate(fired_actions)
                ],
            )
            conn.executemany(
                """
                INSERT INTO recommendations (
                    id, evaluation_id, position, org_id, claim_id, kind, label,
                    description, priority, category, suggested_action, carrier,
                    confidence_score, risk_level, source_rule_ids,
                    similar_case_ids, rationale, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        rec.id,
                        evaluation_id,
                        position,
                        rec.org_id,
                        rec.claim_id,
                        rec.kind.value,
                        rec.label,
                        rec.description,
                        rec.priority,
                        rec.category,
                        rec.suggested_action,
                        rec.carrier,
                        rec.confidence_score,
                        rec.risk_level,
                        json.dumps(list(rec.source_rule_ids)),
                        json.dumps(list(rec.similar_case_ids)),
                        json.dumps(list(rec.rationale)),
                        rec.created_at,
                    )
                    for position, rec in enumerate(recommendations)
                ],
            )
            conn.executemany(
                """
                INSERT INTO recommendation_similar_cases (
                    evaluation_id, position, claim_id, score, outcome, action
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (evaluation_id, position, case.claim_id, case.score, case.outcome, case.action)
                    for position, case in enumerate(similar_cases)
                ],
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(
            f"Saved evaluation {evaluation_id}: {len(fired_actions)} fired, "
            f"{len(recommendations)} recommendations",
            extra={"org_id": org_id, "claim_id": claim_id},
        )
        return evaluation_id

    def _row_to_recommendation(self, row: sqlite3.Row) -> Recommendation:
        return Recommendation(
            id=row["id"],
            claim_id=row["claim_id"],
            org_id=row["org_id"],
            kind=RecommendationKind(row["kind"]),
            label=row["label"],
            description=row["description"],
            priority=row["priority"],
            category=row["category"],
            confidence_score=row["confidence_score"],
            created_at=row["created_at"],
            risk_level=row["risk_level"],
            suggested_action=row["suggested_action"],
            carrier=row["carrier"],
            source_rule_ids=tuple(json.loads(row["source_rule_ids"])),
            similar_case_ids=tuple(json.loads(row["similar_case_ids"])),
            rationale=tuple(json.loads(row["rationale"])),
            evaluation_id=row["evaluation_id"],
        )

    def get_recommendation(self, recommendation_id: str, org_id: str | None = None) -> Recommendation:
        """Get a recommendation by ID.

        Raises:
            NotFoundError: If the recommendation doesn't exist
            TenantIsolationViolation: If it belongs to another organization
        """
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM recommendations WHERE id = ?", (recommendation_id,)
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            raise NotFoundError("recommendation", recommendation_id)
        if org_id is not None and row["org_id"] != org_id:
            raise TenantIsolationViolation(
                f"Recommendation {recommendation_id} belongs to another organization",
                expected_org=org_id,
                actual_org=row["org_id"],
            )
        return self._row_to_recommendation(row)

    def get_fired_actions(self, evaluation_id: str) -> list[dict[str, Any]]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM fired_actions WHERE evaluation_id = ? ORDER BY position",
                (evaluation_id,),
            ).fetchall()
        finally:
            conn.close()
        return [
            {
                "rule_id": row["rule_id"],
                "rule_name": row["rule_name"],
                "priority": row["priority"],
                "category": row["category"],
                "action": json.loads(row["action"]),
                "fired_at": row["fired_at"],
                "facts_snapshot": json.loads(row["facts_snapshot"]),
            }
            for row in rows
        ]

    def get_similar_cases(self, evaluation_id: str) -> list[SimilarCase]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT * FROM recommendation_similar_cases
                WHERE evaluation_id = ? ORDER BY position
                """,
                (evaluation_id,),
            ).fetchall()
        finally:
            conn.close()
        return [
            SimilarCase(
                claim_id=row["claim_id"],
                score=row["score"],
                outcome=row["outcome"],
                action=row["action"],
            )
            for row in rows
        ]

    def latest_evaluation(self, claim_id: str, org_id: str) -> dict[str, Any] | None:
        """Return the most recent evaluation of a claim with its recommendations."""
        conn = self._get_conn()
        try:
            evaluation = conn.execute(
                """
                SELECT * FROM evaluations
                WHERE org_id = ? AND claim_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (org_id, claim_id),
            ).fetchone()
            if evaluation is None:
                return None
            rows = conn.execute(
                "SELECT * FROM recommendations WHERE evaluation_id = ? ORDER BY position",
                (evaluation["id"],),
            ).fetchall()
        finally:
            conn.close()

        return {
            "evaluation_id": evaluation["id"],
            "claim_id": claim_id,
            "carrier": evaluation["carrier"],
            "evaluated_count": evaluation["evaluated_count"],
            "warnings": json.loads(evaluation["warnings"]),
            "unavailable": json.loads(evaluation["unavailable"]),
            "created_at": evaluation["created_at"],
            "recommendations": [self._row_to_recommendation(row) for row in rows],
        }

    def count_recommendations(self, org_id: str, since: str | None = None, until: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM recommendations WHERE org_id = ?"
        params: list[Any] = [org_id]
        if since:
            query += " AND created_at >= ?"
            params.append(since)
        if until:
            query += " AND created_at < ?"
            params.append(until)

        conn = self._get_conn()
        try:
            return conn.execute(query, params).fetchone()[0]
        finally:
            conn.close()

    def list_org_ids(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT DISTINCT org_id FROM evaluations ORDER BY org_id").fetchall()
        finally:
            conn.close()
        return [row["org_id"] for row in rows]
