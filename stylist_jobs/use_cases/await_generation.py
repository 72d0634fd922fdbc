"""Generation flow: submit, watch, and hand the fresh result to the next reader.

After a job succeeds, its decoded payload is placed in the result cache before
control returns to the caller, so the view that opens next can render the image
without waiting for storage to catch up.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import JobFailedError, PollingError
from stylist_jobs.domain.models import GenerationPayload, JobStatus, JobType
from stylist_jobs.observability.tracing import trace_scope
from stylist_jobs.ports.job_runner import JobSubmissionPort
from stylist_jobs.ports.job_status import JobStatusFetcher
from stylist_jobs.services.circuit_breaker import PollingCircuitBreaker
from stylist_jobs.services.job_poller import PollSuccess, watch_job
from stylist_jobs.services.result_cache import GenerationResultCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationOutcome:
    """What the generation flow hands back to its caller."""

    job_id: str
    trace_id: str
    status: JobStatus | None
    payload: GenerationPayload | None = None
    error: PollingError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCEEDED and self.error is None


async def await_generation_result(
    submitter: JobSubmissionPort,
    fetcher: JobStatusFetcher,
    cache: GenerationResultCache,
    *,
    subject_id: str,
    job_type: JobType,
    input: dict[str, Any],
    owner_user_id: str,
    interval_ms: int | None = None,
    max_attempts: int | None = None,
    circuit_breaker: PollingCircuitBreaker | None = None,
    trace_id: str | None = None,
) -> GenerationOutcome:
    """Submit a generation job and wait for it to finish.

    On success the payload is cached under ``subject_id`` keyed by trace id, so a
    reader holding either the trace id or just the subject id can consume it.
    A result without a usable image is reported as succeeded with no payload.
    """

    poll_options: dict[str, Any] = {"circuit_breaker": circuit_breaker}
    if interval_ms is not None:
        poll_options["interval_ms"] = interval_ms
    if max_attempts is not None:
        poll_options["max_attempts"] = max_attempts

    with trace_scope(trace_id) as active_trace_id:
        job_id = await asyncio.to_thread(
            submitter.submit,
            job_type,
            input,
            owner_user_id,
            trace_id=active_trace_id,
        )
        logger.info(
            "generation_submitted",
            job_id=job_id,
            job_type=job_type.value,
            subject_id=subject_id,
        )

        outcome = await watch_job(fetcher, job_id, **poll_options)

        if not isinstance(outcome, PollSuccess):
            logger.warning(
                "generation_failed", job_id=job_id, error=str(outcome.error)
            )
            return GenerationOutcome(
                job_id=job_id,
                trace_id=active_trace_id,
                status=(
                    JobStatus.FAILED
                    if isinstance(outcome.error, JobFailedError)
                    else None
                ),
                error=outcome.error,
            )

        succeeded_at = time.time()
        try:
            payload = GenerationPayload.from_job_result(outcome.job.result)
        except ValueError as exc:
            logger.warning(
                "generation_result_unrenderable", job_id=job_id, error=str(exc)
            )
            return GenerationOutcome(
                job_id=job_id,
                trace_id=active_trace_id,
                status=JobStatus.SUCCEEDED,
            )

        cache.put(
            subject_id,
            job_id,
            payload,
            created_at=succeeded_at,
            trace_id=active_trace_id,
        )
        logger.info("generation_result_cached", job_id=job_id, subject_id=subject_id)
        return GenerationOutcome(
            job_id=job_id,
            trace_id=active_trace_id,
            status=JobStatus.SUCCEEDED,
            payload=payload,
        )


async def load_generation_preview(
    cache: GenerationResultCache,
    subject_id: str,
    fallback: Callable[[str], Awaitable[GenerationPayload | None]],
    *,
    job_id: str | None = None,
    trace_id: str | None = None,
) -> GenerationPayload | None:
    """Return the freshly generated payload, or load it from storage on a miss."""

    payload = cache.get(subject_id, job_id=job_id, trace_id=trace_id)
    if payload is not None:
        logger.debug("generation_preview_from_cache", subject_id=subject_id)
        return payload

    logger.debug("generation_preview_from_storage", subject_id=subject_id)
    return await fallback(subject_id)


__all__ = [
    "GenerationOutcome",
    "await_generation_result",
    "load_generation_preview",
]
