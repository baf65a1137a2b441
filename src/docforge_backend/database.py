"""
SQLite database for persistent job storage.

This module provides the durable job queue: jobs are inserted as PENDING,
claimed atomically by exactly one worker, and terminated exactly once.
The claim is the only synchronization primitive shared between worker
processes, so it has to hold up with any number of them polling the same
database file.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from .exceptions import ClaimConflict, JobStateError
from .models import Job, JobStatus, JobType

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/docforge.db")
DEFAULT_BUSY_TIMEOUT = 5.0


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to a fixed-width ISO string so text order is time order."""
    return dt.isoformat(timespec="microseconds") if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


@contextmanager
def connect(db_path: Path, timeout: float = 30.0) -> Iterator[sqlite3.Connection]:
    """Open a connection with WAL enabled; commit on success, roll back on error."""
    conn = sqlite3.connect(str(db_path), timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


CLAIM_SQL = """
    UPDATE jobs
    SET status = :processing,
        updated_at = :now,
        claimed_at = :now,
        worker_id = :worker_id,
        attempts = attempts + 1
    WHERE id = (
        SELECT id FROM jobs
        WHERE status = :pending
        ORDER BY created_at ASC, rowid ASC
        LIMIT 1
    )
    AND status = :pending
    RETURNING *
"""


class JobDatabase:
    """
    SQLite-backed job queue.

    Every operation opens its own short-lived connection, so one instance can
    be shared by threads and separate processes can point at the same file.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, busy_timeout: float = DEFAULT_BUSY_TIMEOUT):
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        _ensure_db_dir(self.db_path)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    result TEXT,
                    error TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    worker_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    claimed_at TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_created
                ON jobs(status, created_at)
            """)

    def enqueue(self, job_type: JobType, payload: Optional[Dict[str, Any]] = None) -> str:
        """
        Insert a PENDING job.

        Args:
            job_type: Which handler will process the job
            payload: Opaque structured data, validated only by the handler

        Returns:
            The new job ID
        """
        job_id = uuid4().hex
        now = _serialize_datetime(_now())
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO jobs (id, type, status, payload, attempts, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (job_id, JobType(job_type).value, JobStatus.PENDING.value, json.dumps(payload or {}), now, now),
            )
        logger.info(f"Enqueued job {job_id} ({JobType(job_type).value})")
        return job_id

    def claim_next(self, worker_id: Optional[str] = None) -> Optional[Job]:
        """
        Atomically claim the oldest PENDING job.

        The select-and-flip runs as one UPDATE ... RETURNING statement inside an
        immediate write transaction, so two callers can never both see the same
        row as PENDING. A caller that cannot get the write lock within
        ``busy_timeout`` skips instead of blocking further.

        Returns:
            The claimed job, now PROCESSING, or None when nothing is available
        """
        try:
            return self._claim(worker_id)
        except ClaimConflict:
            logger.debug("Claim lock busy; skipping this poll")
            return None

    def _claim(self, worker_id: Optional[str]) -> Optional[Job]:
        try:
            with connect(self.db_path, timeout=self.busy_timeout) as conn:
                conn.execute("BEGIN IMMEDIATE")
                rows = conn.execute(
                    CLAIM_SQL,
                    {
                        "processing": JobStatus.PROCESSING.value,
                        "pending": JobStatus.PENDING.value,
                        "now": _serialize_datetime(_now()),
                        "worker_id": worker_id,
                    },
                ).fetchall()
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc) or "busy" in str(exc):
                raise ClaimConflict(str(exc)) from exc
            raise

        if not rows:
            return None
        return self._row_to_job(rows[0])

    def complete(
        self, job_id: str, result: Optional[Dict[str, Any]] = None, worker_id: Optional[str] = None
    ) -> None:
        """
        Mark a PROCESSING job COMPLETED with its result.

        With ``worker_id`` the transition only succeeds while that worker
        still holds the claim.
        """
        self._finish(job_id, JobStatus.COMPLETED, result=result or {}, worker_id=worker_id)

    def fail(self, job_id: str, error: str, worker_id: Optional[str] = None) -> None:
        """Mark a PROCESSING job FAILED with an error message."""
        self._finish(job_id, JobStatus.FAILED, error=error, worker_id=worker_id)

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        worker_id: Optional[str] = None,
    ) -> None:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = ?, result = ?, error = ?, updated_at = ?
                WHERE id = ? AND status = ? AND (? IS NULL OR worker_id = ?)
                """,
                (
                    status.value,
                    json.dumps(result) if result is not None else None,
                    error,
                    _serialize_datetime(_now()),
                    job_id,
                    JobStatus.PROCESSING.value,
                    worker_id,
                    worker_id,
                ),
            )
            if cursor.rowcount == 0:
                row = conn.execute("SELECT status, worker_id FROM jobs WHERE id = ?", (job_id,)).fetchone()
                if row is None:
                    raise JobStateError(f"Job {job_id} does not exist")
                if row["status"] == JobStatus.PROCESSING.value:
                    raise JobStateError(f"Job {job_id} is claimed by {row['worker_id']}, not {worker_id}")
                raise JobStateError(f"Job {job_id} is {row['status']}, expected {JobStatus.PROCESSING.value}")

    def fail_stale(self, older_than: float, reason: str = "Abandoned by worker (claim lease expired)") -> List[str]:
        """
        Fail PROCESSING jobs that have not been touched for ``older_than`` seconds.

        Stale jobs go to FAILED rather than back to PENDING: status never
        moves backwards, so a resubmission is a new job. Only the job row
        changes here; ``worker.sweep_stale`` mirrors the outcome onto the
        referenced documents.

        Returns:
            IDs of the jobs that were failed
        """
        cutoff = _serialize_datetime(_now() - timedelta(seconds=older_than))
        with connect(self.db_path) as conn:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                """
                UPDATE jobs
                SET status = ?, error = ?, updated_at = ?
                WHERE status = ? AND updated_at <= ?
                RETURNING id
                """,
                (
                    JobStatus.FAILED.value,
                    reason,
                    _serialize_datetime(_now()),
                    JobStatus.PROCESSING.value,
                    cutoff,
                ),
            ).fetchall()
        stale = [row["id"] for row in rows]
        if stale:
            logger.warning(f"Failed {len(stale)} stale job(s): {', '.join(stale)}")
        return stale

    def get_job(self, job_id: str) -> Optional[Job]:
        """
        Retrieve a job by ID.

        Returns:
            The job or None if not found
        """
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            if not row:
                return None
            return self._row_to_job(row)

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[Job]:
        """
        List jobs ordered by creation time (newest first).

        Args:
            status: Only return jobs in this status
            limit: Maximum number of jobs returned
        """
        query = "SELECT * FROM jobs"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(JobStatus(status).value)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_job(row) for row in rows]

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        """Convert a database row to a Job."""
        return Job(
            id=row["id"],
            type=row["type"],
            status=JobStatus(row["status"]),
            payload=json.loads(row["payload"] or "{}"),
            result=json.loads(row["result"]) if row["result"] else None,
            error=row["error"],
            attempts=row["attempts"],
            worker_id=row["worker_id"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
            claimed_at=_deserialize_datetime(row["claimed_at"]),
        )
