"""
Append-only audit trail of job and document state transitions.

The recorder is a side channel: callers hand it an ``AuditEvent`` and never
read it back. Failures are visible to users only through job/document status
and this trail.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Protocol

from .database import _deserialize_datetime, _ensure_db_dir, _serialize_datetime, connect
from .models import AuditEvent

logger = logging.getLogger(__name__)


class AuditRecorder(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class LoggingAuditRecorder:
    """Writes audit events to the application log only."""

    def record(self, event: AuditEvent) -> None:
        logger.info(
            f"audit action={event.action} document={event.document_id} "
            f"job={event.job_id} details={event.details!r}"
        )


class SqliteAuditLog:
    """Audit events persisted in an ``audit_log`` table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    action TEXT NOT NULL,
                    document_id TEXT,
                    job_id TEXT,
                    details TEXT,
                    created_at TEXT NOT NULL
                )
            """)

    def record(self, event: AuditEvent) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO audit_log (action, document_id, job_id, details, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.action,
                    event.document_id,
                    event.job_id,
                    event.details,
                    _serialize_datetime(event.timestamp),
                ),
            )

    def events(self, document_id: Optional[str] = None, job_id: Optional[str] = None) -> List[AuditEvent]:
        """Return recorded events in insertion order, optionally filtered."""
        query = "SELECT * FROM audit_log"
        clauses, params = [], []
        if document_id is not None:
            clauses.append("document_id = ?")
            params.append(document_id)
        if job_id is not None:
            clauses.append("job_id = ?")
            params.append(job_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id ASC"

        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            AuditEvent(
                action=row["action"],
                document_id=row["document_id"],
                job_id=row["job_id"],
                details=row["details"],
                timestamp=_deserialize_datetime(row["created_at"]),
            )
            for row in rows
        ]
