"""SQLite job store for local development and tests.

Implements the ``ai_jobs`` table and ``JobStatusFetcher`` on a local file.
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Any
from uuid import uuid4

from stylist_jobs.adapters.job_rows import AI_JOBS_TABLE, dump_json, job_from_row, utc_now
from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import InvalidJobTransitionError, RepositoryError
from stylist_jobs.domain.models import Job, JobStatus, JobType

logger = get_logger(__name__)


class SQLiteJobStore:
    """SQLite-backed ``ai_jobs`` store."""

    def __init__(self, db_path: str) -> None:
        """Initialize store and ensure schema.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self) -> None:
        logger.info("sqlite_schema_creation_started", db_path=str(self.db_path))
        conn = self._get_connection()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {AI_JOBS_TABLE} (
                    id TEXT PRIMARY KEY,
                    owner_user_id TEXT,
                    job_type TEXT,
                    input TEXT NOT NULL DEFAULT '{{}}',
                    status TEXT NOT NULL,
                    result TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{AI_JOBS_TABLE}_owner "
                f"ON {AI_JOBS_TABLE} (owner_user_id)"
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create SQLite schema: {exc}") from exc
        finally:
            conn.close()

    def create_job(
        self,
        job_type: JobType,
        input: dict[str, Any],
        owner_user_id: str,
        *,
        job_id: str | None = None,
    ) -> Job:
        """Insert a new job in ``queued`` status."""

        job_id = job_id or str(uuid4())
        now = utc_now().isoformat()
        conn = self._get_connection()
        try:
            conn.execute(
                f"""
                INSERT INTO {AI_JOBS_TABLE}
                    (id, owner_user_id, job_type, input, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    owner_user_id,
                    job_type.value,
                    dump_json(input) or "{}",
                    JobStatus.QUEUED.value,
                    now,
                    now,
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to create job: {exc}") from exc
        finally:
            conn.close()

        logger.info("job_created", job_id=job_id, job_type=job_type.value)
        return self._require_job(job_id)

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Job:
        """Move a job to ``status``; terminal jobs never change again.

        Raises:
            RepositoryError: If the job does not exist or the write fails
            InvalidJobTransitionError: If the job is already terminal
        """

        conn = self._get_connection()
        try:
            row = conn.execute(
                f"SELECT status FROM {AI_JOBS_TABLE} WHERE id = ?", (job_id,)
            ).fetchone()
            if row is None:
                raise RepositoryError(f"Unknown job_id: {job_id}")

            current = JobStatus(row["status"])
            if current.is_terminal:
                raise InvalidJobTransitionError(job_id, current.value, status.value)

            conn.execute(
                f"""
                UPDATE {AI_JOBS_TABLE}
                SET status = ?, result = ?, error = ?, updated_at = ?
                WHERE id = ?
                """,
                (status.value, dump_json(result), error, utc_now().isoformat(), job_id),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to update job {job_id}: {exc}") from exc
        finally:
            conn.close()

        logger.debug("job_updated", job_id=job_id, status=status.value)
        return self._require_job(job_id)

    def get_job(self, job_id: str) -> Job | None:
        """Return the job or None when it does not exist."""

        conn = self._get_connection()
        try:
            row = conn.execute(
                f"SELECT * FROM {AI_JOBS_TABLE} WHERE id = ?", (job_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Failed to load job {job_id}: {exc}") from exc
        finally:
            conn.close()

        if row is None:
            return None
        return job_from_row(dict(row))

    async def fetch_job_status(self, job_id: str) -> Job | None:
        return await asyncio.to_thread(self.get_job, job_id)

    def _require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise RepositoryError(f"Job {job_id} disappeared after write")
        return job


__all__ = ["SQLiteJobStore"]
