"""Per-job circuit breaker for status polling."""

from __future__ import annotations

import threading

from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.domain.exceptions import ValidationError
from stylist_jobs.domain.polling_constants import DEFAULT_CIRCUIT_BREAKER_THRESHOLD

logger = get_logger(__name__)


class PollingCircuitBreaker:
    """Refuse to keep polling a job that keeps failing.

    Fetch errors and failed jobs count against the job; a success clears it.
    Once the count reaches the threshold the breaker stays open until reset.
    """

    def __init__(self, threshold: int = DEFAULT_CIRCUIT_BREAKER_THRESHOLD) -> None:
        if threshold <= 0:
            raise ValidationError("threshold must be positive")
        self._threshold = threshold
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def threshold(self) -> int:
        return self._threshold

    def failures(self, job_id: str) -> int:
        with self._lock:
            return self._failures.get(job_id, 0)

    def is_open(self, job_id: str) -> bool:
        return self.failures(job_id) >= self._threshold

    def record_failure(self, job_id: str) -> int:
        with self._lock:
            count = self._failures.get(job_id, 0) + 1
            self._failures[job_id] = count

        if count == self._threshold:
            logger.warning(
                "poll_circuit_opened", job_id=job_id, failures=count
            )
        return count

    def record_success(self, job_id: str) -> None:
        with self._lock:
            self._failures.pop(job_id, None)

    def reset(self, job_id: str) -> None:
        with self._lock:
            self._failures.pop(job_id, None)
        logger.info("poll_circuit_reset", job_id=job_id)


__all__ = ["PollingCircuitBreaker"]
