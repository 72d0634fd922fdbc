"""Custom exception hierarchy for the stylist job watcher.

Following error taxonomy: retryable, non-retryable, validation, polling outcomes.
"""


class StylistJobsError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(StylistJobsError):
    """Errors that can be retried (network issues, temporary failures)."""

    pass


class NonRetryableError(StylistJobsError):
    """Errors that should not be retried (validation, state, logic errors)."""

    pass


class ValidationError(NonRetryableError):
    """Invalid options or data."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass


class InvalidJobTransitionError(NonRetryableError):
    """A terminal job was asked to change state."""

    def __init__(self, job_id: str, current: str, requested: str) -> None:
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id} is already {current}; cannot move to {requested}"
        )


class PollingError(StylistJobsError):
    """Terminal outcome of a polling session, delivered through ``on_error``."""

    def __init__(self, job_id: str | None, message: str) -> None:
        self.job_id = job_id
        super().__init__(message)


class FetchError(PollingError):
    """The status call itself failed or the job does not exist."""

    pass


class JobFailedError(PollingError):
    """The job reached the ``failed`` status."""

    pass


class PollingTimeoutError(PollingError):
    """Attempt budget exhausted before the job reached a terminal status."""

    def __init__(self, job_id: str | None, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            job_id, f"Polling timeout - max attempts reached ({attempts})"
        )


class CircuitOpenError(PollingError):
    """Too many failures recorded for the job; polling refused."""

    def __init__(self, job_id: str | None, failures: int) -> None:
        self.failures = failures
        super().__init__(
            job_id, f"Circuit breaker open: too many failures ({failures})"
        )
