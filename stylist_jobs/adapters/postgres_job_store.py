"""PostgreSQL job store using psycopg2 with connection pooling."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from time import sleep
from typing import TYPE_CHECKING, Any, Final
from uuid import uuid4

from psycopg2 import Error as PsycopgError
from psycopg2 import extensions
from psycopg2 import pool as psycopg2_pool
from psycopg2.extras import Json, RealDictCursor

from stylist_jobs.adapters.job_rows import AI_JOBS_TABLE, job_from_row, utc_now
from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import InvalidJobTransitionError, RepositoryError
from stylist_jobs.domain.models import Job, JobStatus, JobType

if TYPE_CHECKING:
    from stylist_jobs.config.settings import Settings

POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT: Final[int] = 5
POOL_ACQUIRE_BASE_DELAY_SECONDS: Final[float] = 0.1
POOL_ACQUIRE_MAX_DELAY_SECONDS: Final[float] = 2.0

logger = get_logger(__name__)


class PostgresJobStore:
    """PostgreSQL ``ai_jobs`` store backed by a connection pool."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        settings: Settings | None = None,
        *,
        ensure_schema: bool = True,
    ) -> None:
        """Initialize the store with pooled connections."""
        self._host = host
        self._port = port
        self._database = database
        self._user = user
        self._password = password
        self._statement_timeout_ms = (
            settings.postgres_statement_timeout_ms if settings else 10_000
        )
        self._connect_timeout_seconds = (
            settings.postgres_connect_timeout_seconds if settings else 10
        )
        self._application_name = (
            settings.postgres_application_name if settings else "stylist_jobs"
        )
        self._pool_min_connections = settings.postgres_min_connections if settings else 1
        self._pool_max_connections = settings.postgres_max_connections if settings else 10

        if self._pool_min_connections <= 0:
            raise RepositoryError("postgres_min_connections must be positive")
        if self._pool_max_connections < self._pool_min_connections:
            raise RepositoryError(
                "postgres_max_connections must be greater than or equal to postgres_min_connections"
            )

        self._pool = self._create_pool()
        if ensure_schema:
            self._create_schema()

    def _create_pool(self) -> psycopg2_pool.ThreadedConnectionPool:
        """Create a PostgreSQL connection pool with validation."""
        options = (
            f"-c statement_timeout={self._statement_timeout_ms} "
            f"-c application_name={self._application_name}"
        )
        try:
            pool = psycopg2_pool.ThreadedConnectionPool(
                self._pool_min_connections,
                self._pool_max_connections,
                host=self._host,
                port=self._port,
                database=self._database,
                user=self._user,
                password=self._password,
                connect_timeout=self._connect_timeout_seconds,
                options=options,
            )
        except PsycopgError as exc:
            raise RepositoryError(
                f"Failed to initialize PostgreSQL pool: {exc}"
            ) from exc

        logger.info(
            "postgres_pool_initialized",
            host=self._host,
            port=self._port,
            database=self._database,
            min_connections=self._pool_min_connections,
            max_connections=self._pool_max_connections,
        )
        return pool

    def _acquire_connection_with_retry(self) -> extensions.connection:
        """Acquire a connection from the pool with exponential backoff."""
        attempt = 0
        delay = POOL_ACQUIRE_BASE_DELAY_SECONDS
        while True:
            attempt += 1
            try:
                return self._pool.getconn()
            except psycopg2_pool.PoolError as exc:
                if attempt >= POOL_ACQUIRE_MAX_ATTEMPTS_DEFAULT:
                    logger.error("postgres_pool_acquire_failed", attempts=attempt)
                    raise RepositoryError(
                        "Failed to acquire PostgreSQL connection from pool"
                    ) from exc

                logger.warning(
                    "postgres_pool_exhausted_retry",
                    attempt=attempt,
                    wait_seconds=delay,
                )
                sleep(delay)
                delay = min(delay * 2, POOL_ACQUIRE_MAX_DELAY_SECONDS)

    @contextmanager
    def _connection(self) -> Iterator[extensions.connection]:
        conn = self._acquire_connection_with_retry()
        try:
            yield conn
            conn.commit()
        except PsycopgError as exc:
            conn.rollback()
            raise RepositoryError(f"PostgreSQL operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    def _create_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {AI_JOBS_TABLE} (
                    id TEXT PRIMARY KEY,
                    owner_user_id TEXT,
                    job_type TEXT,
                    input JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                    status TEXT NOT NULL,
                    result JSONB,
                    error TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """
            )

    def close(self) -> None:
        self._pool.closeall()

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
        now = utc_now()
        with self._connection() as conn, conn.cursor(
            cursor_factory=RealDictCursor
        ) as cur:
            cur.execute(
                f"""
                INSERT INTO {AI_JOBS_TABLE}
                    (id, owner_user_id, job_type, input, status, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    job_id,
                    owner_user_id,
                    job_type.value,
                    Json(input),
                    JobStatus.QUEUED.value,
                    now,
                    now,
                ),
            )
            row = cur.fetchone()

        logger.info("job_created", job_id=job_id, job_type=job_type.value)
        return job_from_row(row)

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Job:
        """Move a job to ``status``; terminal jobs never change again."""

        with self._connection() as conn, conn.cursor(
            cursor_factory=RealDictCursor
        ) as cur:
            cur.execute(
                f"SELECT status FROM {AI_JOBS_TABLE} WHERE id = %s FOR UPDATE",
                (job_id,),
            )
            current_row = cur.fetchone()
            if current_row is None:
                raise RepositoryError(f"Unknown job_id: {job_id}")

            current = JobStatus(current_row["status"])
            if current.is_terminal:
                raise InvalidJobTransitionError(job_id, current.value, status.value)

            cur.execute(
                f"""
                UPDATE {AI_JOBS_TABLE}
                SET status = %s, result = %s, error = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (
                    status.value,
                    Json(result) if result is not None else None,
                    error,
                    utc_now(),
                    job_id,
                ),
            )
            row = cur.fetchone()

        logger.debug("job_updated", job_id=job_id, status=status.value)
        return job_from_row(row)

    def get_job(self, job_id: str) -> Job | None:
        """Return the job or None when it does not exist."""

        with self._connection() as conn, conn.cursor(
            cursor_factory=RealDictCursor
        ) as cur:
            cur.execute(f"SELECT * FROM {AI_JOBS_TABLE} WHERE id = %s", (job_id,))
            row = cur.fetchone()

        if row is None:
            return None
        return job_from_row(row)

    async def fetch_job_status(self, job_id: str) -> Job | None:
        return await asyncio.to_thread(self.get_job, job_id)


__all__ = ["PostgresJobStore"]
