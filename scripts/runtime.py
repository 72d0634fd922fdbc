from __future__ import annotations

"""Common runtime helpers for command-line scripts."""

from stylist_jobs.config.logging_config import get_logger, setup_logging
from stylist_jobs.config.settings import Settings

logger = get_logger(__name__)


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    """Initialize structlog-based logging for scripts."""

    setup_logging(log_level=settings.log_level, json_logs=json_logs)
    logger.debug("script_logging_initialized", log_level=settings.log_level)
