"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

import pytest

from stylist_jobs.adapters.sqlite_job_store import SQLiteJobStore
from stylist_jobs.config.settings import reset_settings
from stylist_jobs.domain.models import Job, JobStatus

FetchResponse = Job | BaseException | None


def make_job(
    status: JobStatus,
    job_id: str = "job-1",
    **fields: Any,
) -> Job:
    """Build a job snapshot with the given status."""

    return Job(id=job_id, status=status, **fields)


class ScriptedFetcher:
    """Status fetcher replaying a fixed script of responses.

    Each call consumes the next response; the last one repeats forever.
    Exceptions in the script are raised instead of returned.
    """

    def __init__(self, responses: Sequence[FetchResponse]) -> None:
        if not responses:
            raise ValueError("responses must not be empty")
        self.responses = list(responses)
        self.calls: list[str] = []

    async def fetch_job_status(self, job_id: str) -> Job | None:
        self.calls.append(job_id)
        index = min(len(self.calls), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeClock:
    """Manually advanced wall clock in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> SQLiteJobStore:
    """SQLite job store in a throwaway directory."""

    return SQLiteJobStore(db_path=str(tmp_path / "jobs" / "test.sqlite"))


@pytest.fixture(autouse=True)
def isolated_settings() -> Iterator[None]:
    reset_settings()
    yield
    reset_settings()
