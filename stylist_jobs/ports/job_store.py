"""Port definition for ``ai_jobs`` persistence."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from stylist_jobs.domain.models import Job, JobStatus, JobType


@runtime_checkable
class JobStorePort(Protocol):
    """Abstract interface implemented by job store adapters."""

    def create_job(
        self,
        job_type: JobType,
        input: dict[str, Any],
        owner_user_id: str,
        *,
        job_id: str | None = None,
    ) -> Job:
        """Insert a new job in ``queued`` status."""

    def update_job(
        self,
        job_id: str,
        *,
        status: JobStatus,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> Job:
        """Move a non-terminal job to ``status``."""

    def get_job(self, job_id: str) -> Job | None:
        """Return the job or None when it does not exist."""

    async def fetch_job_status(self, job_id: str) -> Job | None:
        """Non-blocking variant of ``get_job`` for pollers."""


__all__ = ["JobStorePort"]
