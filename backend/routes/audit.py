"""Audit logging routes.

Every mutating decision-engine call (rule edits, pack installs, claim
evaluations, outcome recordings) leaves an entry here. Entries are
scoped to the caller's organization.

Provides endpoints for:
- Listing audit log entries
- Summary statistics
- Exporting audit logs as CSV or JSON
"""

from __future__ import annotations

import csv
import io
import json
import logging
import os
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from services import get_services

from .dependencies import get_org_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/audit", tags=["audit"])

# Databases whose audit table has been created in this process
_initialized_paths: set[str] = set()
_audit_table_lock = threading.Lock()

# Maximum rows for export to prevent memory issues
MAX_EXPORT_ROWS = int(os.environ.get("AUDIT_MAX_EXPORT_ROWS", "10000"))

_COLUMNS = (
    "id",
    "timestamp",
    "org_id",
    "action",
    "actor_id",
    "resource_type",
    "resource_id",
    "details",
    "ip_address",
    "status",
    "error_message",
)


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Rule management
    RULE_CREATE = "rule.create"
    RULE_UPDATE = "rule.update"
    RULE_DELETE = "rule.delete"
    RULE_PACK_INSTALL = "rule.pack_install"

    # Claims
    CLAIM_UPSERT = "claim.upsert"
    CLAIM_EVALUATE = "claim.evaluate"

    # Feedback
    OUTCOME_RECORD = "outcome.record"
    OUTCOME_WEBHOOK = "outcome.webhook"

    # System
    EXPORT_AUDIT = "audit.export"


class AuditLogEntry(BaseModel):
    """Single audit log entry."""

    id: str
    timestamp: str
    org_id: str
    action: str
    actor_id: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    status: str = "success"
    error_message: str | None = None


class AuditLogListResponse(BaseModel):
    entries: list[AuditLogEntry]
    total: int
    limit: int
    offset: int
    filters_applied: dict[str, Any]


class AuditStats(BaseModel):
    total_entries: int
    entries_by_action: dict[str, int]
    entries_by_status: dict[str, int]
    date_range: dict[str, str]


def get_db() -> sqlite3.Connection:
    """Open a connection to the services database with the audit table ready."""
    conn = sqlite3.connect(get_services().db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    init_audit_table(conn, get_services().db_path)
    return conn


def init_audit_table(conn: sqlite3.Connection, db_path: str) -> None:
    """Create the audit_logs table once per database per process."""
    if db_path in _initialized_paths:
        return

    with _audit_table_lock:
        if db_path in _initialized_paths:
            return

        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                org_id TEXT NOT NULL,
                action TEXT NOT NULL,
                actor_id TEXT,
                resource_type TEXT,
                resource_id TEXT,
                details TEXT,
                ip_address TEXT,
                status TEXT DEFAULT 'success',
                error_message TEXT
            )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_org_time ON audit_logs(org_id, timestamp)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_resource ON audit_logs(resource_type, resource_id)"
        )
        conn.commit()
        _initialized_paths.add(db_path)


def log_audit_event(
    conn: sqlite3.Connection,
    org_id: str,
    action: str,
    actor_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    ip_address: str | None = None,
    status: str = "success",
    error_message: str | None = None,
) -> str:
    """Log an audit event to the database.

    Returns the audit log entry ID.
    """
    audit_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO audit_logs (
            id, timestamp, org_id, action, actor_id,
            resource_type, resource_id, details,
            ip_address, status, error_message
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            audit_id,
            datetime.now(timezone.utc).isoformat(),
            org_id,
            action,
            actor_id,
            resource_type,
            resource_id,
            json.dumps(details, default=str) if details else None,
            ip_address,
            status,
            error_message,
        ),
    )
    conn.commit()
    return audit_id


def audit(
    org_id: str,
    action: AuditAction,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict[str, Any] | None = None,
    actor_id: str | None = None,
    ip_address: str | None = None,
) -> None:
    """Record an audit event from a route handler.

    Audit failures are logged and never fail the request that triggered them.
    """
    try:
        conn = get_db()
        try:
            log_audit_event(
                conn,
                org_id,
                action.value,
                actor_id=actor_id,
                resource_type=resource_type,
                resource_id=resource_id,
                details=details,
                ip_address=ip_address,
            )
        finally:
            conn.close()
    except sqlite3.Error as e:
        logger.error(f"Failed to write audit event {action.value}: {e}", exc_info=True)


def _row_to_entry(row: sqlite3.Row) -> AuditLogEntry:
    details = None
    if row["details"]:
        try:
            details = json.loads(row["details"])
        except json.JSONDecodeError:
            details = {"raw": row["details"]}
    return AuditLogEntry(
        id=row["id"],
        timestamp=row["timestamp"],
        org_id=row["org_id"],
        action=row["action"],
        actor_id=row["actor_id"],
        resource_type=row["resource_type"],
        resource_id=row["resource_id"],
        details=details,
        ip_address=row["ip_address"],
        status=row["status"] or "success",
        error_message=row["error_message"],
    )


def _build_filters(org_id: str, **filters: str | None) -> tuple[str, list[Any]]:
    conditions = ["org_id = ?"]
    params: list[Any] = [org_id]
    for column in ("action", "actor_id", "resource_type", "resource_id", "status"):
        value = filters.get(column)
        if value:
            conditions.append(f"{column} = ?")
            params.append(value)
    if filters.get("start_date"):
        conditions.append("timestamp >= ?")
        params.append(filters["start_date"])
    if filters.get("end_date"):
        conditions.append("timestamp <= ?")
        params.append(filters["end_date"])
    # Column names are fixed above; user input only reaches params
    return " AND ".join(conditions), params


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    org_id: str = Depends(get_org_id),
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    action: str | None = Query(default=None, description="Filter by action type"),
    actor_id: str | None = Query(default=None, description="Filter by actor"),
    resource_type: str | None = Query(default=None, description="Filter by resource type"),
    resource_id: str | None = Query(default=None, description="Filter by resource ID"),
    status: str | None = Query(default=None, description="Filter by status (success/error)"),
    start_date: str | None = Query(default=None, description="Start date (ISO format)"),
    end_date: str | None = Query(default=None, description="End date (ISO format)"),
) -> AuditLogListResponse:
    """List audit log entries with filtering and pagination."""
    filters = {
        "action": action,
        "actor_id": actor_id,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "status": status,
        "start_date": start_date,
        "end_date": end_date,
    }
    where_clause, params = _build_filters(org_id, **filters)

    conn = get_db()
    try:
        total = conn.execute(
            f"SELECT COUNT(*) FROM audit_logs WHERE {where_clause}", params
        ).fetchone()[0]
        rows = conn.execute(
            f"""
            SELECT {", ".join(_COLUMNS)} FROM audit_logs
            WHERE {where_clause}
            ORDER BY timestamp DESC
            LIMIT ? OFFSET ?
            """,
            params + [limit, offset],
        ).fetchall()
    finally:
        conn.close()

    return AuditLogListResponse(
        entries=[_row_to_entry(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
        filters_applied=filters,
    )


@router.get("/stats", response_model=AuditStats)
async def get_audit_stats(
    org_id: str = Depends(get_org_id),
    start_date: str | None = Query(default=None, description="Start date (ISO format)"),
    end_date: str | None = Query(default=None, description="End date (ISO format)"),
) -> AuditStats:
    """Get summary statistics for audit logs."""
    where_clause, params = _build_filters(org_id, start_date=start_date, end_date=end_date)

    conn = get_db()
    try:
        total_entries = conn.execute(
            f"SELECT COUNT(*) FROM audit_logs WHERE {where_clause}", params
        ).fetchone()[0]
        entries_by_action = {
            row[0]: row[1]
            for row in conn.execute(
                f"SELECT action, COUNT(*) FROM audit_logs WHERE {where_clause} GROUP BY action",
                params,
            )
        }
        entries_by_status = {
            row[0]: row[1]
            for row in conn.execute(
                f"""
                SELECT COALESCE(status, 'success'), COUNT(*) FROM audit_logs
                WHERE {where_clause}
                GROUP BY status
                """,
                params,
            )
        }
        row = conn.execute(
            f"SELECT MIN(timestamp), MAX(timestamp) FROM audit_logs WHERE {where_clause}",
            params,
        ).fetchone()
    finally:
        conn.close()

    return AuditStats(
        total_entries=total_entries,
        entries_by_action=entries_by_action,
        entries_by_status=entries_by_status,
        date_range={"earliest": row[0] or "", "latest": row[1] or ""},
    )


@router.get("/export")
async def export_audit_logs(
    org_id: str = Depends(get_org_id),
    format: str = Query(default="csv", description="Export format: csv or json"),
    start_date: str | None = Query(default=None, description="Start date (ISO format)"),
    end_date: str | None = Query(default=None, description="End date (ISO format)"),
    action: str | None = Query(default=None, description="Filter by action type"),
    limit: int = Query(
        default=MAX_EXPORT_ROWS,
        ge=1,
        le=MAX_EXPORT_ROWS,
        description=f"Maximum rows to export (max {MAX_EXPORT_ROWS})",
    ),
) -> Response:
    """Export audit logs as CSV or JSON.

    Limited to MAX_EXPORT_ROWS rows; use date filters to batch larger exports.
    """
    where_clause, params = _build_filters(
        org_id, action=action, start_date=start_date, end_date=end_date
    )

    conn = get_db()
    try:
        # Log the export action itself
        log_audit_event(
            conn,
            org_id,
            AuditAction.EXPORT_AUDIT.value,
            resource_type="audit_logs",
            details={
                "format": format,
                "start_date": start_date,
                "end_date": end_date,
                "action_filter": action,
            },
        )
        rows = conn.execute(
            f"""
            SELECT {", ".join(_COLUMNS)} FROM audit_logs
            WHERE {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
            """,
            params + [limit],
        ).fetchall()
    finally:
        conn.close()

    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")

    if format == "json":
        content = json.dumps(
            {
                "audit_logs": [_row_to_entry(row).model_dump() for row in rows],
                "exported_at": datetime.now(timezone.utc).isoformat(),
            },
            indent=2,
        )
        return Response(
            content=content,
            media_type="application/json",
            headers={"Content-Disposition": f"attachment; filename=audit_export_{stamp}.json"},
        )

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([column.replace("_", " ").title() for column in _COLUMNS])
    for row in rows:
        writer.writerow(tuple(row))

    return Response(
        content=output.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=audit_export_{stamp}.csv"},
    )


@router.get("/actions")
async def list_audit_actions() -> dict[str, Any]:
    """List all available audit action types."""
    categories: dict[str, list[str]] = {}
    for action in AuditAction:
        categories.setdefault(action.value.split(".", 1)[0], []).append(action.value)
    return {
        "actions": [action.value for action in AuditAction],
        "categories": categories,
    }
