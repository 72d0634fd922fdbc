from __future__ import annotations

"""Watch an AI job in the configured job store until it finishes."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import runtime
from stylist_jobs.adapters.job_store_factory import create_job_store
from stylist_jobs.config.logging_config import get_logger
from stylist_jobs.config.settings import get_settings
from stylist_jobs.domain.exceptions import ValidationError
from stylist_jobs.services.circuit_breaker import PollingCircuitBreaker
from stylist_jobs.services.job_poller import PollOutcome, PollSuccess, watch_job

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Poll an AI job to completion")
    parser.add_argument("job_id", help="Identifier of the job to watch")
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=None,
        help="Milliseconds between status checks (defaults to config)",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Status checks before giving up (defaults to config)",
    )
    parser.add_argument(
        "--final-check",
        action="store_true",
        help="Check the job once more after running out of attempts",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def render_outcome(outcome: PollOutcome) -> dict[str, Any]:
    if isinstance(outcome, PollSuccess):
        return {
            "ok": True,
            "job": outcome.job.model_dump(mode="json"),
        }
    return {
        "ok": False,
        "error_type": type(outcome.error).__name__,
        "error": str(outcome.error),
        "job_id": outcome.error.job_id,
    }


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    runtime.initialize_logging(settings, json_logs=args.json_logs)

    try:
        store = create_job_store(settings)
    except Exception:  # noqa: BLE001
        logger.exception("job_store_initialization_failed")
        return 1

    interval_ms = (
        settings.poll_interval_ms if args.interval_ms is None else args.interval_ms
    )
    max_attempts = (
        settings.poll_max_attempts if args.max_attempts is None else args.max_attempts
    )

    try:
        outcome = asyncio.run(
            watch_job(
                store,
                args.job_id,
                interval_ms=interval_ms,
                max_attempts=max_attempts,
                backoff_factor=settings.poll_backoff_factor,
                max_interval_ms=settings.poll_max_interval_ms,
                circuit_breaker=PollingCircuitBreaker(
                    settings.circuit_breaker_threshold
                ),
                final_check=args.final_check,
            )
        )
    except ValidationError as exc:
        logger.error("watch_job_invalid_options", error=str(exc))
        return 1

    print(json.dumps(render_outcome(outcome), indent=2))
    return 0 if isinstance(outcome, PollSuccess) else 1


if __name__ == "__main__":
    raise SystemExit(main())
