"""Port definition for submitting generation jobs."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from stylist_jobs.domain.models import JobType


@runtime_checkable
class JobSubmissionPort(Protocol):
    """Interface for creating server-side generation jobs."""

    def submit(
        self,
        job_type: JobType,
        input: dict[str, Any],
        owner_user_id: str,
        trace_id: str | None = None,
    ) -> str:
        """Schedule a job for asynchronous execution.

        Args:
            job_type: Kind of generation work.
            input: Job input forwarded to the generation service.
            owner_user_id: Submitting user.
            trace_id: Client correlation id stored alongside the input.

        Returns:
            Unique identifier for the submitted job.
        """


__all__ = ["JobSubmissionPort"]
