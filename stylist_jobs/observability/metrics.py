"""Prometheus metrics for job polling and the result cache.

The exporter is opt-in: set ``METRICS_EXPORTER_AUTO_START=1`` to serve metrics on
``METRICS_PORT`` (default 9000) as soon as this module is imported.
"""

from __future__ import annotations

import os
import signal
import threading
from types import FrameType
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from stylist_jobs.config.logging_config import get_logger

logger = get_logger(__name__)

JOB_POLLS_TOTAL: Final[Counter] = Counter(
    "stylist_job_polls_total",
    "Status checks issued by job pollers, by observed status",
    labelnames=("status",),
)

POLL_SESSIONS_TOTAL: Final[Counter] = Counter(
    "stylist_poll_sessions_total",
    "Polling sessions finished, by outcome",
    labelnames=("outcome",),
)

POLL_SESSION_DURATION_SECONDS: Final[Histogram] = Histogram(
    "stylist_poll_session_duration_seconds",
    "Wall time from session start to terminal outcome",
    labelnames=("outcome",),
)

RESULT_CACHE_LOOKUPS_TOTAL: Final[Counter] = Counter(
    "stylist_result_cache_lookups_total",
    "Result cache reads, by outcome",
    labelnames=("outcome",),
)

JOBS_SUBMITTED_TOTAL: Final[Counter] = Counter(
    "stylist_jobs_submitted_total",
    "Generation jobs submitted through the in-process runner",
    labelnames=("job_type",),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False
_EXPORTER_STOP_EVENT = threading.Event()
_DEFAULT_METRICS_PORT: Final[int] = 9000
_METRICS_PORT_ENV: Final[str] = "METRICS_PORT"
METRICS_EXPORTER_AUTO_START_ENV: Final[str] = "METRICS_EXPORTER_AUTO_START"


def _should_autostart() -> bool:
    """Return True when the metrics exporter should auto-start."""

    raw_value = os.getenv(METRICS_EXPORTER_AUTO_START_ENV, "0")
    normalized = raw_value.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


def _resolve_metrics_port() -> int:
    port_raw = os.getenv(_METRICS_PORT_ENV)
    try:
        return int(port_raw) if port_raw else _DEFAULT_METRICS_PORT
    except ValueError:
        logger.warning("invalid_metrics_port", port=port_raw)
        return _DEFAULT_METRICS_PORT


def ensure_metrics_exporter() -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        port = _resolve_metrics_port()

        try:
            start_http_server(port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=port)


def _handle_shutdown_signal(signum: int, frame: FrameType | None) -> None:
    logger.info("metrics_exporter_shutdown_signal", signal=signum)
    _EXPORTER_STOP_EVENT.set()


def run_metrics_exporter_forever() -> None:
    """Start the exporter and block until a shutdown signal is received."""

    ensure_metrics_exporter()
    for watched_signal in (signal.SIGTERM, signal.SIGINT):
        signal.signal(watched_signal, _handle_shutdown_signal)

    logger.info("metrics_exporter_listening", port=_resolve_metrics_port())
    _EXPORTER_STOP_EVENT.wait()
    logger.info("metrics_exporter_stopped")


__all__ = [
    "JOBS_SUBMITTED_TOTAL",
    "JOB_POLLS_TOTAL",
    "POLL_SESSIONS_TOTAL",
    "POLL_SESSION_DURATION_SECONDS",
    "RESULT_CACHE_LOOKUPS_TOTAL",
    "ensure_metrics_exporter",
    "run_metrics_exporter_forever",
]


if _should_autostart():
    ensure_metrics_exporter()


if __name__ == "__main__":
    run_metrics_exporter_forever()
