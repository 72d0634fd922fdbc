"""Port definition for job status checks."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from stylist_jobs.domain.models import Job


@runtime_checkable
class JobStatusFetcher(Protocol):
    """Interface the poller uses to read the current state of a job."""

    async def fetch_job_status(self, job_id: str) -> Job | None:
        """Return the job snapshot, or ``None`` when the job does not exist.

        Transport or storage failures are raised as exceptions.
        """


__all__ = ["JobStatusFetcher"]
