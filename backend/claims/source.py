"""Claim source backed by SQLite.

The CRM pushes claim records and their related entities (supplements,
photos, inspections) through ``PUT /api/claims/{claim_id}``. The engine
reads them back as a :class:`ClaimBundle`. Each related entity is loaded
independently: one that fails to load is reported as unavailable and the
rest of the bundle is still returned.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from rules.errors import NotFoundError, PartialDataError, TenantIsolationViolation

logger = logging.getLogger(__name__)

RELATED_ENTITIES = ("supplements", "photos", "inspections")


@dataclass
class ClaimBundle:
    """A claim plus whichever related entities could be loaded."""

    claim_id: str
    org_id: str
    claim: dict[str, Any]
    related: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    unavailable: set[str] = field(default_factory=set)

    @property
    def carrier(self) -> str | None:
        carrier = self.claim.get("carrier")
        return carrier if isinstance(carrier, str) else None


class ClaimSource:
    """SQLite-backed claim store.

    ``entity_loaders`` lets callers replace how a related entity is read,
    for example to fetch photos from the file service instead of the
    local table.
    """

    def __init__(
        self,
        db_path: str,
        entity_loaders: Mapping[str, Callable[[str], list[dict[str, Any]]]] | None = None,
    ) -> None:
        self.db_path = db_path
        self._entity_loaders = dict(entity_loaders or {})
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
                CREATE TABLE IF NOT EXISTS claims (
                    id TEXT PRIMARY KEY,
                    org_id TEXT NOT NULL,
                    carrier TEXT,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS claim_entities (
                    claim_id TEXT NOT NULL,
                    entity TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (claim_id, entity, position)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_claims_org
                ON claims(org_id)
            """)
            conn.commit()
        finally:
            conn.close()

    def upsert_claim(
        self,
        claim_id: str,
        org_id: str,
        claim: Mapping[str, Any],
        related: Mapping[str, list[Mapping[str, Any]]] | None = None,
    ) -> None:
        """Insert or replace a claim and its related entities.

        Related entities not present in ``related`` keep their stored rows.

        Raises:
            TenantIsolationViolation: If the claim exists under another organization
        """
        now = datetime.now(timezone.utc).isoformat()
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT org_id FROM claims WHERE id = ?", (claim_id,)).fetchone()
            if row is not None and row["org_id"] != org_id:
                raise TenantIsolationViolation(
                    f"Claim {claim_id} belongs to another organization",
                    expected_org=org_id,
                    actual_org=row["org_id"],
                )

            conn.execute(
                """
                INSERT INTO claims (id, org_id, carrier, payload, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    carrier = excluded.carrier,
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (claim_id, org_id, claim.get("carrier"), json.dumps(dict(claim), default=str), now),
            )
            for entity, items in (related or {}).items():
                conn.execute(
                    "DELETE FROM claim_entities WHERE claim_id = ? AND entity = ?",
                    (claim_id, entity),
                )
                conn.executemany(
                    """
                    INSERT INTO claim_entities (claim_id, entity, position, payload)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (claim_id, entity, position, json.dumps(dict(item), default=str))
                        for position, item in enumerate(items)
                    ],
                )
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Stored claim {claim_id} for org {org_id}")

    def get_claim_org(self, claim_id: str) -> str:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT org_id FROM claims WHERE id = ?", (claim_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("claim", claim_id)
        return row["org_id"]

    def _load_entity(self, claim_id: str, entity: str) -> list[dict[str, Any]]:
        loader = self._entity_loaders.get(entity)
        if loader is not None:
            return list(loader(claim_id))

        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT payload FROM claim_entities
                WHERE claim_id = ? AND entity = ?
                ORDER BY position
                """,
                (claim_id, entity),
            ).fetchall()
        finally:
            conn.close()
        return [json.loads(row["payload"]) for row in rows]

    def get_claim_facts(
        self, claim_id: str, entities: tuple[str, ...] = RELATED_ENTITIES
    ) -> ClaimBundle:
        """Load a claim with its supplements, photos and inspections.

        Entities left out of ``entities`` are reported as unavailable.

        Raises:
            NotFoundError: If the claim doesn't exist
        """
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT org_id, payload FROM claims WHERE id = ?", (claim_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("claim", claim_id)

        claim = json.loads(row["payload"])
        claim.setdefault("id", claim_id)
        bundle = ClaimBundle(claim_id=claim_id, org_id=row["org_id"], claim=claim)

        bundle.unavailable.update(set(RELATED_ENTITIES) - set(entities))
        for entity in entities:
            try:
                bundle.related[entity] = self._load_entity(claim_id, entity)
            except Exception as e:
                # Custom loaders may raise anything; only this entity is lost.
                error = PartialDataError(
                    f"Failed to load {entity}: {e}", entity=entity, claim_id=claim_id
                )
                logger.warning(
                    str(error),
                    extra={"claim_id": claim_id, "entity": entity},
                )
                bundle.unavailable.add(entity)

        return bundle
