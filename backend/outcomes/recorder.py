"""Append-only outcome log.

Outcomes link a later observed result back to the recommendation, rule
or agent that produced it. The log is never updated or deleted; a
correction is recorded as a compensating outcome.

Recording is idempotent under at-least-once delivery. Each outcome gets a
dedup key hashed from its reference (recommendation id, or rule id when
no recommendation is given), the claim id and the ``observed_at`` bucket.
A second delivery with the same key returns the stored outcome instead of
counting it again.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import sqlite3
import threading
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from config import OUTCOME_DEDUP_BUCKET_SECONDS
from recommendations.store import RecommendationStore
from rules.errors import DuplicateOutcomeError, NotFoundError, TenantIsolationViolation
from rules.store import RuleStore

from .models import Outcome, OutcomeResult

logger = logging.getLogger(__name__)

# Writes for claims that hash to the same stripe share a lock.
LOCK_STRIPES = 64


def parse_timestamp(value: datetime | str | None) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_dedup_key(
    reference: str,
    claim_id: str,
    observed_at: datetime,
    bucket_seconds: int = OUTCOME_DEDUP_BUCKET_SECONDS,
    compensates_id: str | None = None,
    result: str | None = None,
) -> str:
    bucket = int(observed_at.timestamp()) // bucket_seconds
    material = f"{reference}|{claim_id}|{bucket}"
    if compensates_id:
        material += f"|compensates:{compensates_id}|{result}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def effective_outcomes(outcomes: Iterable[Outcome]) -> list[Outcome]:
    """Collapse compensation chains so each original outcome counts once.

    Each original outcome keeps its own attribution and ``observed_at``
    but takes the result of the latest outcome compensating it. Input must
    be in recording order.
    """
    outcomes = list(outcomes)
    by_id = {outcome.id: outcome for outcome in outcomes}

    def root_of(outcome: Outcome) -> Outcome:
        seen = set()
        while outcome.compensates_id and outcome.compensates_id in by_id:
            if outcome.id in seen:
                break
            seen.add(outcome.id)
            outcome = by_id[outcome.compensates_id]
        return outcome

    latest: dict[str, OutcomeResult] = {}
    roots: dict[str, Outcome] = {}
    for outcome in outcomes:
        root = root_of(outcome)
        roots.setdefault(root.id, root)
        latest[root.id] = outcome.observed_result

    return [
        dataclasses.replace(root, observed_result=latest[root_id])
        for root_id, root in roots.items()
    ]


class OutcomeRecorder:
    """SQLite-backed outcome log with per-claim write serialization."""

    def __init__(
        self,
        db_path: str,
        recommendation_store: RecommendationStore,
        rule_store: RuleStore | None = None,
        case_index: Any | None = None,
        bucket_seconds: int = OUTCOME_DEDUP_BUCKET_SECONDS,
        lock_stripes: int = LOCK_STRIPES,
    ) -> None:
        self.db_path = db_path
        self.recommendation_store = recommendation_store
        self.rule_store = rule_store
        self.case_index = case_index
        self.bucket_seconds = bucket_seconds
        self._claim_locks = [threading.Lock() for _ in range(max(1, lock_stripes))]
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
                CREATE TABLE IF NOT EXISTS outcomes (
                    id TEXT PRIMARY KEY,
                    org_id TEXT NOT NULL,
                    claim_id TEXT NOT NULL,
                    recommendation_id TEXT,
                    rule_id TEXT,
                    rule_ids TEXT NOT NULL,
                    agent_id TEXT,
                    agent_name TEXT,
                    carrier TEXT,
                    confidence_score REAL,
                    observed_result TEXT NOT NULL,
                    observed_at TEXT NOT NULL,
                    compensates_id TEXT,
                    dedup_key TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_outcomes_org
                ON outcomes(org_id, observed_at)
            """)
            conn.commit()
        finally:
            conn.close()

    def _claim_lock(self, claim_id: str) -> threading.Lock:
        return self._claim_locks[hash(claim_id) % len(self._claim_locks)]

    def _row_to_outcome(self, row: sqlite3.Row) -> Outcome:
        return Outcome(
            id=row["id"],
            org_id=row["org_id"],
            claim_id=row["claim_id"],
            observed_result=OutcomeResult(row["observed_result"]),
            observed_at=row["observed_at"],
            dedup_key=row["dedup_key"],
            created_at=row["created_at"],
            recommendation_id=row["recommendation_id"],
            rule_id=row["rule_id"],
            rule_ids=tuple(json.loads(row["rule_ids"])),
            agent_id=row["agent_id"],
            agent_name=row["agent_name"],
            carrier=row["carrier"],
            confidence_score=row["confidence_score"],
            compensates_id=row["compensates_id"],
        )

    def get_outcome(self, outcome_id: str, org_id: str | None = None) -> Outcome:
        """Get an outcome by ID.

        Raises:
            NotFoundError: If the outcome doesn't exist
            TenantIsolationViolation: If it belongs to another organization
        """
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM outcomes WHERE id = ?", (outcome_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("outcome", outcome_id)
        if org_id is not None and row["org_id"] != org_id:
            raise TenantIsolationViolation(
                f"Outcome {outcome_id} belongs to another organization",
                expected_org=org_id,
                actual_org=row["org_id"],
            )
        return self._row_to_outcome(row)

    def _get_by_dedup_key(self, dedup_key: str) -> Outcome | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM outcomes WHERE dedup_key = ?", (dedup_key,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_outcome(row) if row else None

    def list_outcomes(self, org_id: str) -> list[Outcome]:
        """All outcomes of an organization, in recording order."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM outcomes WHERE org_id = ? ORDER BY rowid", (org_id,)
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_outcome(row) for row in rows]

    def list_org_ids(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT DISTINCT org_id FROM outcomes ORDER BY org_id").fetchall()
        finally:
            conn.close()
        return [row["org_id"] for row in rows]

    def record_outcome(
        self,
        claim_id: str,
        result: OutcomeResult | str,
        *,
        org_id: str,
        recommendation_id: str | None = None,
        rule_id: str | None = None,
        agent_id: str | None = None,
        agent_name: str | None = None,
        observed_at: datetime | str | None = None,
        compensates_id: str | None = None,
    ) -> tuple[Outcome, bool]:
        """Append an outcome, deduplicating repeated deliveries.

        Returns:
            (outcome, created). ``created`` is False when an outcome with the
            same dedup key already existed; that outcome is returned instead.

        Raises:
            ValueError: If no attribution is given or the result is unknown
            NotFoundError: If a referenced recommendation, rule or outcome doesn't exist
            TenantIsolationViolation: If a reference belongs to another organization
        """
        result = OutcomeResult(result)
        if not (recommendation_id or rule_id or compensates_id):
            raise ValueError("recommendation_id or rule_id is required")
        observed = parse_timestamp(observed_at)

        attribution = self._resolve_attribution(
            claim_id,
            org_id=org_id,
            recommendation_id=recommendation_id,
            rule_id=rule_id,
            agent_id=agent_id,
            agent_name=agent_name,
            compensates_id=compensates_id,
        )
        reference = attribution["recommendation_id"] or f"rule:{attribution['rule_id']}"
        dedup_key = compute_dedup_key(
            reference,
            claim_id,
            observed,
            self.bucket_seconds,
            compensates_id=compensates_id,
            result=result.value,
        )

        with self._claim_lock(claim_id):
            try:
                outcome = self._insert(
                    claim_id=claim_id,
                    org_id=org_id,
                    result=result,
                    observed_at=observed.isoformat(),
                    dedup_key=dedup_key,
                    compensates_id=compensates_id,
                    **attribution,
                )
            except DuplicateOutcomeError as e:
                existing = self._get_by_dedup_key(e.dedup_key)
                logger.info(
                    f"Deduplicated outcome for claim {claim_id}",
                    extra={"org_id": org_id, "dedup_key": e.dedup_key},
                )
                return existing, False

        self._label_case(outcome, attribution.get("suggested_action"))
        return outcome, True

    def _resolve_attribution(
        self,
        claim_id: str,
        *,
        org_id: str,
        recommendation_id: str | None,
        rule_id: str | None,
        agent_id: str | None,
        agent_name: str | None,
        compensates_id: str | None,
    ) -> dict[str, Any]:
        if compensates_id:
            original = self.get_outcome(compensates_id, org_id=org_id)
            if original.claim_id != claim_id:
                raise ValueError("a compensating outcome must reference the same claim")
            suggested_action = None
            if original.recommendation_id:
                suggested_action = self.recommendation_store.get_recommendation(
                    original.recommendation_id
                ).suggested_action
            # Corrections keep the attribution of the outcome they correct.
            return {
                "recommendation_id": original.recommendation_id,
                "rule_id": original.rule_id,
                "rule_ids": original.rule_ids,
                "agent_id": original.agent_id,
                "agent_name": original.agent_name,
                "carrier": original.carrier,
                "confidence_score": original.confidence_score,
                "suggested_action": suggested_action,
            }

        rule_ids: list[str] = []
        carrier = None
        confidence_score = None
        suggested_action = None
        if recommendation_id:
            recommendation = self.recommendation_store.get_recommendation(
                recommendation_id, org_id=org_id
            )
            if recommendation.claim_id != claim_id:
                raise ValueError(
                    f"recommendation {recommendation_id} belongs to claim {recommendation.claim_id}"
                )
            rule_ids.extend(recommendation.source_rule_ids)
            carrier = recommendation.carrier
            confidence_score = recommendation.confidence_score
            suggested_action = recommendation.suggested_action

        if rule_id:
            if self.rule_store is not None:
                self.rule_store.get_rule(rule_id, org_id=org_id)
            if rule_id not in rule_ids:
                rule_ids.append(rule_id)

        return {
            "recommendation_id": recommendation_id,
            "rule_id": rule_id,
            "rule_ids": tuple(rule_ids),
            "agent_id": agent_id,
            "agent_name": agent_name,
            "carrier": carrier,
            "confidence_score": confidence_score,
            "suggested_action": suggested_action,
        }

    def _insert(
        self,
        *,
        claim_id: str,
        org_id: str,
        result: OutcomeResult,
        observed_at: str,
        dedup_key: str,
        compensates_id: str | None,
        recommendation_id: str | None,
        rule_id: str | None,
        rule_ids: tuple[str, ...],
        agent_id: str | None,
        agent_name: str | None,
        carrier: str | None,
        confidence_score: float | None,
        suggested_action: str | None = None,
    ) -> Outcome:
        if self._get_by_dedup_key(dedup_key) is not None:
            raise DuplicateOutcomeError(dedup_key)

        outcome = Outcome(
            id=str(uuid.uuid4()),
            org_id=org_id,
            claim_id=claim_id,
            observed_result=result,
            observed_at=observed_at,
            dedup_key=dedup_key,
            created_at=datetime.now(timezone.utc).isoformat(),
            recommendation_id=recommendation_id,
            rule_id=rule_id,
            rule_ids=rule_ids,
            agent_id=agent_id,
            agent_name=agent_name,
            carrier=carrier,
            confidence_score=confidence_score,
            compensates_id=compensates_id,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO outcomes (
                    id, org_id, claim_id, recommendation_id, rule_id, rule_ids,
                    agent_id, agent_name, carrier, confidence_score,
                    observed_result, observed_at, compensates_id, dedup_key, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    outcome.id,
                    outcome.org_id,
                    outcome.claim_id,
                    outcome.recommendation_id,
                    outcome.rule_id,
                    json.dumps(list(outcome.rule_ids)),
                    outcome.agent_id,
                    outcome.agent_name,
                    outcome.carrier,
                    outcome.confidence_score,
                    outcome.observed_result.value,
                    outcome.observed_at,
                    outcome.compensates_id,
                    outcome.dedup_key,
                    outcome.created_at,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            raise DuplicateOutcomeError(dedup_key) from None
        finally:
            conn.close()

        logger.info(
            f"Recorded {result.value} outcome {outcome.id} for claim {claim_id}",
            extra={"org_id": org_id, "rule_ids": list(rule_ids)},
        )
        return outcome

    def _label_case(self, outcome: Outcome, suggested_action: str | None) -> None:
        if self.case_index is None:
            return
        try:
            self.case_index.label_case(
                outcome.claim_id, outcome.observed_result.value, action=suggested_action
            )
        except Exception as e:
            logger.warning(f"Failed to label case {outcome.claim_id}: {e}")

    def carrier_history(self, org_id: str, carrier: str | None) -> dict[str, float]:
        """Historical success rate per rule for one carrier."""
        if not carrier:
            return {}
        totals: dict[str, int] = {}
        successes: dict[str, int] = {}
        for outcome in effective_outcomes(self.list_outcomes(org_id)):
            if outcome.carrier != carrier:
                continue
            for rule_id in outcome.rule_ids:
                totals[rule_id] = totals.get(rule_id, 0) + 1
                if outcome.observed_result is OutcomeResult.SUCCESS:
                    successes[rule_id] = successes.get(rule_id, 0) + 1
        return {rule_id: successes.get(rule_id, 0) / count for rule_id, count in totals.items()}
