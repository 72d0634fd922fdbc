"""Domain constants for job polling and result caching."""

from typing import Final

DEFAULT_POLL_INTERVAL_MS: Final[int] = 2000
DEFAULT_POLL_MAX_ATTEMPTS: Final[int] = 30
DEFAULT_POLL_BACKOFF_FACTOR: Final[float] = 1.0
DEFAULT_POLL_MAX_INTERVAL_MS: Final[int] = 10_000

DEFAULT_RESULT_CACHE_TTL_SECONDS: Final[float] = 5 * 60

DEFAULT_CIRCUIT_BREAKER_THRESHOLD: Final[int] = 5

JOB_FAILED_FALLBACK_MESSAGE: Final[str] = "Job failed"
JOB_NOT_FOUND_MESSAGE: Final[str] = "Job not found"

__all__ = [
    "DEFAULT_CIRCUIT_BREAKER_THRESHOLD",
    "DEFAULT_POLL_BACKOFF_FACTOR",
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_POLL_MAX_ATTEMPTS",
    "DEFAULT_POLL_MAX_INTERVAL_MS",
    "DEFAULT_RESULT_CACHE_TTL_SECONDS",
    "JOB_FAILED_FALLBACK_MESSAGE",
    "JOB_NOT_FOUND_MESSAGE",
]
