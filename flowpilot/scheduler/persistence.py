"""
Persistence Adapter for the Job Store.

- SQLite storage with WAL mode
- Jobs survive restarts; RecoveryManager reconciles in-flight jobs on startup
- Status changes go through transition_job(), a guarded UPDATE that checks
  both the state machine and the current stored status in one statement

The adapter does NOT contain scheduling logic and is only written to by the
scheduler.
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from ..errors import ConcurrencyViolationError, InvalidOperationError, JobNotFoundError
from .entities import DistributionRecord, Job, JobStatus, ProductionSpec, now_iso
from .state_machine import validate_transition


# Columns stored as JSON text
_JSON_COLUMNS = frozenset({"spec", "targets", "hashtags", "distribution_failures"})

# Columns update_job() may patch; status is excluded on purpose
_PATCHABLE_COLUMNS = frozenset({
    "caption",
    "hashtags",
    "progress",
    "artifact_url",
    "error",
    "error_code",
    "retry_count",
    "max_retries",
    "attempt",
    "distribution_failures",
    "started_at",
    "completed_at",
    "scheduled_at",
})


class PersistenceAdapter:
    """
    SQLite-based persistence for jobs and distribution records.

    Use ":memory:" for tests; a single shared connection is kept in that case
    because every new connection would see an empty database.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize persistence adapter.

        Args:
            db_path: Path to SQLite database file. Use ":memory:" for testing.
        """
        self.db_path = str(db_path)
        self._shared_conn: Optional[sqlite3.Connection] = None

        if self.db_path == ":memory:":
            self._shared_conn = self._get_connection()
        else:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        if self._shared_conn is not None:
            yield self._shared_conn
            return

        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        with self._connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    spec TEXT NOT NULL,
                    targets TEXT NOT NULL DEFAULT '[]',
                    caption TEXT,
                    hashtags TEXT NOT NULL DEFAULT '[]',
                    progress INTEGER NOT NULL DEFAULT 0,
                    artifact_url TEXT,
                    error TEXT,
                    error_code TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    attempt INTEGER NOT NULL DEFAULT 0,
                    distribution_failures TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    scheduled_at TEXT
                )
            """)

            # FIFO pending lookup
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_status_created
                ON jobs (status, created_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS distribution_records (
                    job_id TEXT NOT NULL,
                    target TEXT NOT NULL,
                    delivery_id TEXT NOT NULL,
                    delivered_at TEXT NOT NULL,
                    PRIMARY KEY (job_id, target),
                    FOREIGN KEY (job_id) REFERENCES jobs(job_id)
                )
            """)

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column in _JSON_COLUMNS:
            return json.dumps(value if value is not None else ({} if column == "distribution_failures" else []))
        if isinstance(value, JobStatus):
            return value.value
        return value

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        return Job(
            job_id=row["job_id"],
            status=JobStatus(row["status"]),
            spec=ProductionSpec.from_dict(json.loads(row["spec"])),
            targets=json.loads(row["targets"]),
            caption=row["caption"],
            hashtags=json.loads(row["hashtags"]),
            progress=row["progress"],
            artifact_url=row["artifact_url"],
            error=row["error"],
            error_code=row["error_code"],
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            attempt=row["attempt"],
            distribution_failures=json.loads(row["distribution_failures"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            scheduled_at=row["scheduled_at"],
        )

    def _attach_records(self, conn: sqlite3.Connection, job: Job) -> Job:
        rows = conn.execute(
            "SELECT * FROM distribution_records WHERE job_id = ? ORDER BY delivered_at",
            (job.job_id,),
        ).fetchall()
        job.distributions = [
            DistributionRecord(
                job_id=row["job_id"],
                target=row["target"],
                delivery_id=row["delivery_id"],
                delivered_at=row["delivered_at"],
            )
            for row in rows
        ]
        return job

    # =========================================================================
    # Job Operations
    # =========================================================================

    def create_job(self, job: Job) -> Job:
        """Insert a new job."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO jobs
                (job_id, status, spec, targets, caption, hashtags, progress, artifact_url,
                 error, error_code, retry_count, max_retries, attempt, distribution_failures,
                 created_at, updated_at, started_at, completed_at, scheduled_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.job_id,
                    job.status.value,
                    json.dumps(job.spec.to_dict()),
                    json.dumps(job.targets),
                    job.caption,
                    json.dumps(job.hashtags),
                    job.progress,
                    job.artifact_url,
                    job.error,
                    job.error_code,
                    job.retry_count,
                    job.max_retries,
                    job.attempt,
                    json.dumps(job.distribution_failures),
                    job.created_at,
                    job.updated_at,
                    job.started_at,
                    job.completed_at,
                    job.scheduled_at,
                ),
            )
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID, including its distribution records."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                return None
            return self._attach_records(conn, self._row_to_job(row))

    def require_job(self, job_id: str) -> Job:
        """Get a job by ID or raise JobNotFoundError."""
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_pending(self, now: Optional[str] = None, limit: Optional[int] = None) -> list[Job]:
        """
        Pending jobs eligible for dispatch, oldest first.

        Jobs whose scheduled_at lies in the future are skipped.
        """
        now = now or now_iso()
        query = """
            SELECT * FROM jobs
            WHERE status = ? AND (scheduled_at IS NULL OR scheduled_at <= ?)
            ORDER BY created_at ASC, rowid ASC
        """
        params: list[Any] = [JobStatus.PENDING.value, now]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Job]:
        """List jobs, newest first, optionally filtered by status."""
        with self._connection() as conn:
            if status is not None:
                rows = conn.execute(
                    "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                    (JobStatus(status).value, limit, offset),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                    (limit, offset),
                ).fetchall()
            return [self._attach_records(conn, self._row_to_job(row)) for row in rows]

    def list_jobs_by_status(self, status: JobStatus) -> list[Job]:
        """All jobs in a status, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at ASC, rowid ASC",
                (JobStatus(status).value,),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def update_job(self, job_id: str, **patch: Any) -> Job:
        """
        Patch non-status fields of a job.

        Raises:
            JobNotFoundError: If job doesn't exist
            InvalidOperationError: If the patch touches status or unknown fields
        """
        if "status" in patch:
            raise InvalidOperationError("Status changes must go through transition_job()")
        unknown = set(patch) - _PATCHABLE_COLUMNS
        if unknown:
            raise InvalidOperationError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        updates = ["updated_at = ?"]
        values: list[Any] = [now_iso()]
        for column, value in patch.items():
            updates.append(f"{column} = ?")
            values.append(self._encode(column, value))
        values.append(job_id)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {', '.join(updates)} WHERE job_id = ?",
                values,
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

        return self.require_job(job_id)

    def transition_job(
        self,
        job_id: str,
        from_status: JobStatus,
        to_status: JobStatus,
        **patch: Any,
    ) -> Job:
        """
        Guarded status change.

        The UPDATE only applies when the stored status still equals
        from_status, so two writers can never both succeed.

        Raises:
            InvalidTransitionError: If the state machine forbids the change
            JobNotFoundError: If job doesn't exist
            ConcurrencyViolationError: If the job is no longer in from_status
        """
        validate_transition(job_id, from_status, to_status)
        unknown = set(patch) - _PATCHABLE_COLUMNS
        if unknown:
            raise InvalidOperationError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        updates = ["status = ?", "updated_at = ?"]
        values: list[Any] = [JobStatus(to_status).value, now_iso()]
        for column, value in patch.items():
            updates.append(f"{column} = ?")
            values.append(self._encode(column, value))
        values.extend([job_id, JobStatus(from_status).value])

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE jobs SET {', '.join(updates)} WHERE job_id = ? AND status = ?",
                values,
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM jobs WHERE job_id = ?",
                    (job_id,),
                ).fetchone()
                if row is None:
                    raise JobNotFoundError(job_id)
                raise ConcurrencyViolationError(
                    job_id, JobStatus(from_status).value, row["status"]
                )

        return self.require_job(job_id)

    def atomic_claim_job(self, job_id: str) -> Job:
        """
        Claim a pending job for dispatch: PENDING -> PROCESSING.

        Resets progress, records started_at and bumps the attempt counter.

        Raises:
            JobNotFoundError: If job doesn't exist
            ConcurrencyViolationError: If job is not PENDING
        """
        job = self.require_job(job_id)
        if job.status != JobStatus.PENDING:
            raise ConcurrencyViolationError(job_id, JobStatus.PENDING.value, job.status.value)

        return self.transition_job(
            job_id,
            JobStatus.PENDING,
            JobStatus.PROCESSING,
            progress=0,
            started_at=now_iso(),
            attempt=job.attempt + 1,
        )

    def advance_progress(self, job_id: str, progress: int) -> bool:
        """
        Raise progress of a processing job; never lowers it.

        Returns:
            True if the stored progress changed
        """
        progress = max(0, min(100, int(progress)))
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs SET progress = ?, updated_at = ?
                WHERE job_id = ? AND status = ? AND progress < ?
                """,
                (progress, now_iso(), job_id, JobStatus.PROCESSING.value, progress),
            )
            return cursor.rowcount > 0

    # =========================================================================
    # Distribution
    # =========================================================================

    def add_distribution_record(self, record: DistributionRecord) -> DistributionRecord:
        """Store a successful delivery for a completed job."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT status FROM jobs WHERE job_id = ?",
                (record.job_id,),
            ).fetchone()
            if row is None:
                raise JobNotFoundError(record.job_id)
            if row["status"] != JobStatus.COMPLETED.value:
                raise InvalidOperationError(
                    f"Cannot record distribution for job {record.job_id} in {row['status']} status"
                )
            conn.execute(
                """
                INSERT OR REPLACE INTO distribution_records (job_id, target, delivery_id, delivered_at)
                VALUES (?, ?, ?, ?)
                """,
                (record.job_id, record.target, record.delivery_id, record.delivered_at),
            )
        return record

    def list_distribution_records(self, job_id: str) -> list[DistributionRecord]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM distribution_records WHERE job_id = ? ORDER BY delivered_at",
                (job_id,),
            ).fetchall()
        return [
            DistributionRecord(
                job_id=row["job_id"],
                target=row["target"],
                delivery_id=row["delivery_id"],
                delivered_at=row["delivered_at"],
            )
            for row in rows
        ]

    def record_distribution_failure(self, job_id: str, target: str, reason: str) -> Job:
        """Remember a failed delivery without touching the job's status."""
        job = self.require_job(job_id)
        failures = dict(job.distribution_failures)
        failures[target] = reason
        return self.update_job(job_id, distribution_failures=failures)

    # =========================================================================
    # Statistics
    # =========================================================================

    def count_jobs_by_status(self) -> dict[str, int]:
        """Count jobs grouped by status (every status present, zero if none)."""
        counts = {status.value: 0 for status in JobStatus}
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    def count_active(self) -> int:
        """Pending + processing jobs; the quantity bounded by the queue size."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM jobs WHERE status IN (?, ?)",
                (JobStatus.PENDING.value, JobStatus.PROCESSING.value),
            ).fetchone()
        return row["n"]

    def count_completed_since(self, since_iso: str) -> int:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM jobs WHERE status = ? AND completed_at >= ?",
                (JobStatus.COMPLETED.value, since_iso),
            ).fetchone()
        return row["n"]
