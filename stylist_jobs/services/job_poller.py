"""Asynchronous job completion watcher.

A ``JobPoller`` checks one job's status on the running asyncio loop until the job
succeeds, fails, or the attempt budget runs out, and reports exactly one terminal
outcome per session through ``on_complete``/``on_error`` and ``wait()``.

Polls within a session never overlap: the next one is armed only after the
previous response has been handled. ``stop_polling()`` cancels the armed timer
and invalidates the session, so a response still in flight is dropped when it
arrives.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import (
    CircuitOpenError,
    FetchError,
    JobFailedError,
    PollingError,
    PollingTimeoutError,
    ValidationError,
)
from stylist_jobs.domain.models import Job, JobStatus
from stylist_jobs.domain.polling_constants import (
    DEFAULT_POLL_BACKOFF_FACTOR,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_POLL_MAX_ATTEMPTS,
    DEFAULT_POLL_MAX_INTERVAL_MS,
    JOB_FAILED_FALLBACK_MESSAGE,
    JOB_NOT_FOUND_MESSAGE,
)
from stylist_jobs.observability.metrics import (
    JOB_POLLS_TOTAL,
    POLL_SESSION_DURATION_SECONDS,
    POLL_SESSIONS_TOTAL,
)
from stylist_jobs.ports.job_status import JobStatusFetcher
from stylist_jobs.services.circuit_breaker import PollingCircuitBreaker

logger = get_logger(__name__)

OnComplete = Callable[[Job], None]
OnError = Callable[[PollingError], None]


@dataclass(frozen=True)
class PollSuccess:
    """Session ended with the job succeeded."""

    job: Job


@dataclass(frozen=True)
class PollFailure:
    """Session ended with a fetch error, a failed job, or a timeout."""

    error: PollingError


PollOutcome = PollSuccess | PollFailure


class JobPoller:
    """Poll a job's status until it reaches a terminal state."""

    def __init__(
        self,
        fetcher: JobStatusFetcher,
        job_id: str | None = None,
        *,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        backoff_factor: float = DEFAULT_POLL_BACKOFF_FACTOR,
        max_interval_ms: int = DEFAULT_POLL_MAX_INTERVAL_MS,
        on_complete: OnComplete | None = None,
        on_error: OnError | None = None,
        circuit_breaker: PollingCircuitBreaker | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValidationError("interval_ms must be positive")
        if max_attempts <= 0:
            raise ValidationError("max_attempts must be positive")
        if backoff_factor < 1.0:
            raise ValidationError("backoff_factor must be at least 1.0")

        self._fetcher = fetcher
        self._job_id = job_id or None
        self._interval_ms = interval_ms
        self._max_attempts = max_attempts
        self._backoff_factor = backoff_factor
        self._max_interval_ms = max(max_interval_ms, interval_ms)
        self._on_complete = on_complete
        self._on_error = on_error
        self._circuit_breaker = circuit_breaker

        self._session = 0
        self._is_polling = False
        self._attempts = 0
        self._error: PollingError | None = None
        self._job: Job | None = None
        self._next_delay_ms: float = interval_ms
        self._started_at = 0.0
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self._outcome: asyncio.Future[PollOutcome] | None = None

    @property
    def job_id(self) -> str | None:
        return self._job_id

    @property
    def job(self) -> Job | None:
        """Last job snapshot observed."""
        return self._job

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def error(self) -> PollingError | None:
        return self._error

    def set_job_id(self, job_id: str | None, *, auto_start: bool = True) -> None:
        """Point the poller at another job, tearing down the current session."""

        job_id = job_id or None
        if job_id == self._job_id:
            return

        self.stop_polling()
        self._job_id = job_id
        self._job = None
        if job_id and auto_start:
            self.start_polling()

    def start_polling(self) -> None:
        """Begin a session; the first status check runs without waiting.

        Does nothing when no job id is set or a session is already active.
        Must be called from within a running event loop.
        """

        if not self._job_id or self._is_polling:
            logger.debug(
                "job_poll_start_skipped",
                job_id=self._job_id,
                reason="no_job_id" if not self._job_id else "already_polling",
            )
            return

        loop = asyncio.get_running_loop()
        self._session += 1
        session = self._session
        self._is_polling = True
        self._attempts = 0
        self._error = None
        self._next_delay_ms = self._interval_ms
        self._started_at = time.monotonic()
        self._outcome = loop.create_future()

        logger.info(
            "job_poll_started",
            job_id=self._job_id,
            interval_ms=self._interval_ms,
            max_attempts=self._max_attempts,
        )

        breaker = self._circuit_breaker
        if breaker is not None and breaker.is_open(self._job_id):
            error = CircuitOpenError(self._job_id, breaker.failures(self._job_id))
            self._finish(PollFailure(error), outcome="circuit_open")
            return

        self._in_flight = loop.create_task(self._poll(session))

    def stop_polling(self) -> None:
        """Cancel the pending poll; safe to call repeatedly."""

        self._cancel_timer()
        if not self._is_polling:
            return

        self._is_polling = False
        self._session += 1
        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()

        POLL_SESSIONS_TOTAL.labels(outcome="stopped").inc()
        logger.info("job_poll_stopped", job_id=self._job_id, attempts=self._attempts)

    def retry(self) -> None:
        """Start a fresh session for the same job from attempt 1."""

        self.stop_polling()
        self._error = None
        self._attempts = 0
        self.start_polling()

    async def wait(self) -> PollOutcome:
        """Wait for the current session's outcome.

        Raises:
            RuntimeError: If no session was ever started
            asyncio.CancelledError: If the session is stopped before finishing
        """

        if self._outcome is None:
            raise RuntimeError("Polling has not been started")
        return await asyncio.shield(self._outcome)

    # Internal helpers -------------------------------------------------

    def _is_live(self, session: int) -> bool:
        return self._is_polling and session == self._session

    async def _poll(self, session: int) -> None:
        job_id = self._job_id
        if job_id is None or not self._is_live(session):
            return

        self._attempts += 1
        attempt = self._attempts
        logger.debug(
            "job_poll_attempt",
            job_id=job_id,
            attempt=attempt,
            max_attempts=self._max_attempts,
        )

        try:
            job = await self._fetcher.fetch_job_status(job_id)
        except Exception as exc:  # noqa: BLE001
            if not self._is_live(session):
                logger.debug("job_poll_stale_response_ignored", job_id=job_id)
                return
            JOB_POLLS_TOTAL.labels(status="error").inc()
            logger.warning(
                "job_poll_fetch_failed",
                job_id=job_id,
                attempt=attempt,
                error=str(exc),
            )
            fetch_error = FetchError(job_id, str(exc) or type(exc).__name__)
            fetch_error.__cause__ = exc
            self._record_failure(job_id)
            self._finish(PollFailure(fetch_error), outcome="fetch_error")
            return

        if not self._is_live(session):
            logger.debug("job_poll_stale_response_ignored", job_id=job_id)
            return

        if job is None:
            JOB_POLLS_TOTAL.labels(status="not_found").inc()
            self._record_failure(job_id)
            self._finish(
                PollFailure(FetchError(job_id, JOB_NOT_FOUND_MESSAGE)),
                outcome="fetch_error",
            )
            return

        self._job = job
        JOB_POLLS_TOTAL.labels(status=job.status.value).inc()

        if job.status is JobStatus.SUCCEEDED:
            if self._circuit_breaker is not None:
                self._circuit_breaker.record_success(job_id)
            self._finish(PollSuccess(job), outcome="succeeded")
        elif job.status is JobStatus.FAILED:
            self._record_failure(job_id)
            message = job.error_message or JOB_FAILED_FALLBACK_MESSAGE
            self._finish(
                PollFailure(JobFailedError(job_id, message)), outcome="job_failed"
            )
        elif attempt >= self._max_attempts:
            self._finish(
                PollFailure(PollingTimeoutError(job_id, attempt)), outcome="timeout"
            )
        else:
            self._schedule_next(session)

    def _schedule_next(self, session: int) -> None:
        delay_ms = self._next_delay_ms
        self._next_delay_ms = min(delay_ms * self._backoff_factor, self._max_interval_ms)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_ms / 1000, self._on_timer, session)

    def _on_timer(self, session: int) -> None:
        self._timer = None
        if not self._is_live(session):
            return
        self._in_flight = asyncio.get_running_loop().create_task(self._poll(session))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _record_failure(self, job_id: str) -> None:
        if self._circuit_breaker is not None:
            self._circuit_breaker.record_failure(job_id)

    def _finish(self, result: PollOutcome, *, outcome: str) -> None:
        self._cancel_timer()
        self._is_polling = False

        duration = time.monotonic() - self._started_at
        POLL_SESSIONS_TOTAL.labels(outcome=outcome).inc()
        POLL_SESSION_DURATION_SECONDS.labels(outcome=outcome).observe(duration)

        if isinstance(result, PollFailure):
            self._error = result.error

        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(result)

        if isinstance(result, PollSuccess):
            logger.info(
                "job_poll_completed",
                job_id=self._job_id,
                attempts=self._attempts,
                duration_seconds=duration,
            )
            self._invoke(self._on_complete, result.job)
        else:
            logger.warning(
                "job_poll_failed",
                job_id=self._job_id,
                outcome=outcome,
                attempts=self._attempts,
                error=str(result.error),
            )
            self._invoke(self._on_error, result.error)

    def _invoke(self, callback: Callable[[Any], None] | None, argument: Any) -> None:
        if callback is None:
            return
        try:
            callback(argument)
        except Exception:  # noqa: BLE001
            logger.exception("job_poll_callback_failed", job_id=self._job_id)


async def watch_job(
    fetcher: JobStatusFetcher,
    job_id: str,
    *,
    final_check: bool = False,
    **options: Any,
) -> PollOutcome:
    """Run a single polling session for ``job_id`` and return its outcome.

    ``options`` are passed to :class:`JobPoller`. The poller is always torn down,
    including when the caller is cancelled.

    With ``final_check``, a session that times out gets one more status check
    outside the attempt budget; a job found terminal by it decides the outcome.
    """

    if not job_id:
        raise ValidationError("job_id must not be empty")

    poller = JobPoller(fetcher, job_id, **options)
    poller.start_polling()
    try:
        outcome = await poller.wait()
    finally:
        poller.stop_polling()

    if final_check and isinstance(outcome, PollFailure):
        if isinstance(outcome.error, PollingTimeoutError):
            return await _final_status_check(fetcher, job_id, outcome)
    return outcome


async def _final_status_check(
    fetcher: JobStatusFetcher, job_id: str, timed_out: PollFailure
) -> PollOutcome:
    logger.info("job_poll_final_check", job_id=job_id)
    try:
        job = await fetcher.fetch_job_status(job_id)
    except Exception as exc:  # noqa: BLE001
        logger.warning("job_poll_final_check_failed", job_id=job_id, error=str(exc))
        return timed_out

    if job is None or not job.is_terminal:
        return timed_out
    if job.status is JobStatus.SUCCEEDED:
        return PollSuccess(job)
    return PollFailure(
        JobFailedError(job_id, job.error_message or JOB_FAILED_FALLBACK_MESSAGE)
    )


__all__ = [
    "JobPoller",
    "OnComplete",
    "OnError",
    "PollFailure",
    "PollOutcome",
    "PollSuccess",
    "watch_job",
]
