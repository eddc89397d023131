"""Audit logger: PHI-free trail of workflow attempts and permission changes.

Records every workflow attempt, grant and revocation in the ``audit_log``
table. Step counts never enter the trail; only the mode, the terminal state,
the error kind and timing are stored.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from steplink.core.storage.database import StepsDatabase

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'workflow_attempt' | 'permission_grant' | 'permission_revoke'
    mode: str | None = None              # 'query' | 'insert'
    outcome: str | None = None           # terminal WorkflowState value
    error_kind: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no entry is lost on crash.

    Usage::

        audit = AuditLogger(steps_db)
        audit.log_workflow_attempt(mode="query", outcome="succeeded", duration_ms=12.5)
    """

    def __init__(self, database: StepsDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID.

        A failed write is logged and reported as an empty ID; auditing never
        breaks the workflow it observes.
        """
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, mode, outcome, error_kind,
                    duration_ms, status, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.mode,
                    event.outcome,
                    event.error_kind,
                    event.duration_ms,
                    event.status,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_workflow_attempt(
        self,
        *,
        mode: str,
        outcome: str,
        error_kind: str | None = None,
        duration_ms: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log one finished workflow attempt.

        Args:
            mode: 'query' or 'insert'.
            outcome: Terminal workflow state reached.
            error_kind: Taxonomy kind if the attempt failed.
            duration_ms: Wall time from trigger to terminal state.
            metadata: Additional non-PHI metadata.
        """
        return self.log_event(AuditEvent(
            action="workflow_attempt",
            mode=mode,
            outcome=outcome,
            error_kind=error_kind,
            duration_ms=duration_ms,
            status="failure" if error_kind else "success",
            metadata=metadata or {},
        ))

    def log_permission_change(
        self,
        *,
        granted: list[str] | None = None,
        revoked: list[str] | None = None,
    ) -> str:
        """Log a grant or revocation of capabilities."""
        if revoked is not None:
            return self.log_event(AuditEvent(
                action="permission_revoke",
                metadata={"permissions": sorted(revoked)},
            ))
        return self.log_event(AuditEvent(
            action="permission_grant",
            metadata={"permissions": sorted(granted or [])},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        """Count total audit events, optionally since a timestamp."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log"
            ).fetchone()
        return row[0]

    def count_failures(self, *, since: str | None = None) -> int:
        """Count workflow attempts that ended with an error kind."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE status = 'failure' AND timestamp >= ?",
                (since,),
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE status = 'failure'"
            ).fetchone()
        return row[0]
