"""In-process job runner for development and testing.

Stands in for the serverless generation worker: submitted jobs are written to a
job store and executed by a registered handler on a worker thread, moving through
``queued -> running -> succeeded | failed`` exactly as the real backend does.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import StylistJobsError
from stylist_jobs.domain.models import Job, JobStatus, JobType
from stylist_jobs.observability.metrics import JOBS_SUBMITTED_TOTAL
from stylist_jobs.ports.job_runner import JobSubmissionPort
from stylist_jobs.ports.job_status import JobStatusFetcher
from stylist_jobs.ports.job_store import JobStorePort

logger = get_logger(__name__)

GenerationHandler = Callable[[dict[str, Any]], dict[str, Any]]

TRACE_ID_INPUT_KEY = "trace_id"


class InProcessJobRunner(JobSubmissionPort, JobStatusFetcher):
    """Simple job runner executing generation handlers on worker threads."""

    def __init__(
        self,
        store: JobStorePort,
        handlers: dict[JobType, GenerationHandler],
    ) -> None:
        if not handlers:
            raise ValueError("handlers must not be empty")
        self._store = store
        self._handlers = handlers
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        job_type: JobType,
        input: dict[str, Any],
        owner_user_id: str,
        trace_id: str | None = None,
    ) -> str:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise KeyError(f"Unknown job type: {job_type.value}")

        job_input = dict(input)
        if trace_id:
            job_input[TRACE_ID_INPUT_KEY] = trace_id

        job_id = str(uuid4())
        self._store.create_job(job_type, job_input, owner_user_id, job_id=job_id)

        logger.info("job_submitted", job_id=job_id, job_type=job_type.value)
        JOBS_SUBMITTED_TOTAL.labels(job_type=job_type.value).inc()

        thread = threading.Thread(
            target=self._execute_job, args=(job_id, handler, job_input), daemon=True
        )
        with self._lock:
            self._threads[job_id] = thread
        thread.start()
        return job_id

    def get_job(self, job_id: str) -> Job | None:
        return self._store.get_job(job_id)

    async def fetch_job_status(self, job_id: str) -> Job | None:
        return await self._store.fetch_job_status(job_id)

    def join(self, job_id: str, timeout: float | None = None) -> None:
        """Block until the worker thread for ``job_id`` finishes (testing helper)."""

        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)

    # Internal helpers -------------------------------------------------

    def _execute_job(
        self, job_id: str, handler: GenerationHandler, job_input: dict[str, Any]
    ) -> None:
        self._store.update_job(job_id, status=JobStatus.RUNNING)
        start_time = time.perf_counter()
        try:
            result = handler(job_input)
            # Includes the result write: an unstorable result fails the job
            self._store.update_job(job_id, status=JobStatus.SUCCEEDED, result=result)
        except Exception as exc:  # noqa: BLE001
            logger.exception("job_failed", job_id=job_id)
            self._mark_failed(job_id, str(exc) or type(exc).__name__)
        else:
            duration = time.perf_counter() - start_time
            logger.info(
                "job_completed",
                job_id=job_id,
                duration_seconds=duration,
            )
        finally:
            with self._lock:
                self._threads.pop(job_id, None)

    def _mark_failed(self, job_id: str, error: str) -> None:
        try:
            self._store.update_job(job_id, status=JobStatus.FAILED, error=error)
        except StylistJobsError:
            logger.exception("job_failure_not_recorded", job_id=job_id)


__all__ = ["GenerationHandler", "InProcessJobRunner"]
