from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from stylist_jobs.domain.exceptions import (
    CircuitOpenError,
    FetchError,
    JobFailedError,
    PollingError,
    PollingTimeoutError,
    ValidationError,
)
from stylist_jobs.domain.models import Job, JobStatus
from stylist_jobs.services.circuit_breaker import PollingCircuitBreaker
from stylist_jobs.services.job_poller import (
    JobPoller,
    PollFailure,
    PollSuccess,
    watch_job,
)
from tests.conftest import ScriptedFetcher, make_job

FAST_INTERVAL_MS = 5


class Recorder:
    def __init__(self) -> None:
        self.completed: list[Job] = []
        self.errors: list[PollingError] = []

    def on_complete(self, job: Job) -> None:
        self.completed.append(job)

    def on_error(self, error: PollingError) -> None:
        self.errors.append(error)


class GatedFetcher:
    """Fetcher whose responses are held until ``release`` is set."""

    def __init__(self, job: Job) -> None:
        self.job = job
        self.calls = 0
        self.release = asyncio.Event()

    async def fetch_job_status(self, job_id: str) -> Job | None:
        self.calls += 1
        await self.release.wait()
        return self.job


def _poller(
    fetcher: object, recorder: Recorder, job_id: str | None = "job-1", **options: object
) -> JobPoller:
    options.setdefault("interval_ms", FAST_INTERVAL_MS)
    return JobPoller(
        fetcher,  # type: ignore[arg-type]
        job_id,
        on_complete=recorder.on_complete,
        on_error=recorder.on_error,
        **options,  # type: ignore[arg-type]
    )


@pytest.mark.parametrize("max_attempts", [1, 3, 5])
def test_non_terminal_job_times_out_after_exactly_max_attempts(
    max_attempts: int,
) -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> object:
        poller = _poller(fetcher, recorder, max_attempts=max_attempts)
        poller.start_polling()
        outcome = await poller.wait()
        await asyncio.sleep(FAST_INTERVAL_MS * 3 / 1000)
        return outcome

    outcome = asyncio.run(scenario())

    assert isinstance(outcome, PollFailure)
    assert isinstance(outcome.error, PollingTimeoutError)
    assert len(fetcher.calls) == max_attempts
    assert recorder.completed == []
    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0], PollingTimeoutError)


@pytest.mark.parametrize("success_on", [1, 2, 4])
def test_completes_on_first_succeeded_status(success_on: int) -> None:
    responses = [make_job(JobStatus.QUEUED)] * (success_on - 1)
    succeeded = make_job(JobStatus.SUCCEEDED, result={"data_uri": "data:x"})
    fetcher = ScriptedFetcher([*responses, succeeded])
    recorder = Recorder()

    async def scenario() -> JobPoller:
        poller = _poller(fetcher, recorder, max_attempts=10)
        poller.start_polling()
        await poller.wait()
        await asyncio.sleep(FAST_INTERVAL_MS * 3 / 1000)
        return poller

    poller = asyncio.run(scenario())

    assert len(fetcher.calls) == success_on
    assert recorder.completed == [succeeded]
    assert recorder.errors == []
    assert poller.job == succeeded
    assert poller.attempts == success_on
    assert not poller.is_polling


def test_failed_job_reports_error_message() -> None:
    fetcher = ScriptedFetcher(
        [make_job(JobStatus.FAILED, error="Generation blocked by safety filter")]
    )
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder)
        poller.start_polling()
        await poller.wait()

    asyncio.run(scenario())

    assert recorder.completed == []
    assert len(recorder.errors) == 1
    error = recorder.errors[0]
    assert isinstance(error, JobFailedError)
    assert str(error) == "Generation blocked by safety filter"
    assert error.job_id == "job-1"


def test_failed_job_without_message_uses_fallback() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.FAILED)])
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder)
        poller.start_polling()
        await poller.wait()

    asyncio.run(scenario())

    assert str(recorder.errors[0]) == "Job failed"


def test_fetch_error_is_terminal_and_not_retried() -> None:
    fetcher = ScriptedFetcher(
        [
            ConnectionError("network unreachable"),
            make_job(JobStatus.RUNNING),
            ConnectionError("network unreachable"),
            make_job(JobStatus.SUCCEEDED),
        ]
    )
    recorder = Recorder()

    async def scenario() -> JobPoller:
        poller = _poller(fetcher, recorder, max_attempts=10)
        poller.start_polling()
        await poller.wait()
        await asyncio.sleep(FAST_INTERVAL_MS * 3 / 1000)
        return poller

    poller = asyncio.run(scenario())

    assert len(fetcher.calls) == 1
    assert recorder.completed == []
    assert len(recorder.errors) == 1
    error = recorder.errors[0]
    assert isinstance(error, FetchError)
    assert str(error) == "network unreachable"
    assert isinstance(error.__cause__, ConnectionError)
    assert poller.error is error


def test_missing_job_is_a_fetch_error() -> None:
    fetcher = ScriptedFetcher([None])
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder)
        poller.start_polling()
        await poller.wait()

    asyncio.run(scenario())

    assert isinstance(recorder.errors[0], FetchError)
    assert str(recorder.errors[0]) == "Job not found"


def test_stop_before_timer_prevents_further_fetches() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> JobPoller:
        poller = _poller(fetcher, recorder, interval_ms=50, max_attempts=10)
        poller.start_polling()
        while not fetcher.calls:
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        poller.stop_polling()
        await asyncio.sleep(0.15)
        return poller

    poller = asyncio.run(scenario())

    assert len(fetcher.calls) == 1
    assert recorder.completed == []
    assert recorder.errors == []
    assert not poller.is_polling


def test_response_in_flight_at_stop_is_ignored() -> None:
    recorder = Recorder()

    async def scenario() -> tuple[GatedFetcher, JobPoller]:
        fetcher = GatedFetcher(make_job(JobStatus.SUCCEEDED))
        poller = _poller(fetcher, recorder)
        poller.start_polling()
        while fetcher.calls == 0:
            await asyncio.sleep(0)
        poller.stop_polling()
        fetcher.release.set()
        await asyncio.sleep(0.02)
        return fetcher, poller

    fetcher, poller = asyncio.run(scenario())

    assert fetcher.calls == 1
    assert recorder.completed == []
    assert recorder.errors == []
    assert poller.job is None


def test_stop_polling_is_idempotent() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder)
        poller.stop_polling()
        poller.start_polling()
        poller.stop_polling()
        poller.stop_polling()

    asyncio.run(scenario())

    assert recorder.errors == []


def test_wait_is_cancelled_when_session_stopped() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder, interval_ms=50)
        poller.start_polling()
        waiter = asyncio.ensure_future(poller.wait())
        await asyncio.sleep(0.01)
        poller.stop_polling()
        with pytest.raises(asyncio.CancelledError):
            await waiter

    asyncio.run(scenario())


def test_completion_after_two_interval_waits() -> None:
    fetcher = ScriptedFetcher(
        [
            make_job(JobStatus.RUNNING),
            make_job(JobStatus.RUNNING),
            make_job(JobStatus.SUCCEEDED),
        ]
    )
    recorder = Recorder()

    async def scenario() -> float:
        loop = asyncio.get_running_loop()
        poller = _poller(fetcher, recorder, interval_ms=100, max_attempts=3)
        started = loop.time()
        poller.start_polling()
        await poller.wait()
        return loop.time() - started

    elapsed = asyncio.run(scenario())

    assert len(fetcher.calls) == 3
    assert len(recorder.completed) == 1
    assert recorder.errors == []
    assert elapsed >= 0.18


def test_retry_after_timeout_starts_fresh_session() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> tuple[JobPoller, int, object]:
        poller = _poller(fetcher, recorder, max_attempts=2)
        poller.start_polling()
        first = await poller.wait()
        assert isinstance(first, PollFailure)
        assert poller.attempts == 2

        fetcher.responses = [make_job(JobStatus.SUCCEEDED)]
        poller.retry()
        attempts_after_retry = poller.attempts
        second = await poller.wait()
        return poller, attempts_after_retry, second

    poller, attempts_after_retry, second = asyncio.run(scenario())

    assert attempts_after_retry == 0
    assert isinstance(second, PollSuccess)
    assert poller.attempts == 1
    assert poller.error is None
    assert poller.job_id == "job-1"
    assert fetcher.calls == ["job-1"] * 3
    assert len(recorder.errors) == 1
    assert len(recorder.completed) == 1


def test_start_without_job_id_is_noop_until_id_arrives() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.SUCCEEDED, job_id="job-7")])
    recorder = Recorder()

    async def scenario() -> JobPoller:
        poller = _poller(fetcher, recorder, job_id=None)
        poller.start_polling()
        assert not poller.is_polling
        await asyncio.sleep(0.01)
        assert fetcher.calls == []

        poller.set_job_id("job-7")
        assert poller.is_polling
        await poller.wait()
        return poller

    poller = asyncio.run(scenario())

    assert fetcher.calls == ["job-7"]
    assert [job.id for job in recorder.completed] == ["job-7"]


def test_changing_job_id_tears_down_previous_session() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder, job_id="job-a", interval_ms=20)
        poller.start_polling()
        await asyncio.sleep(0.01)
        poller.set_job_id("job-b", auto_start=False)
        assert not poller.is_polling
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert fetcher.calls == ["job-a"]
    assert recorder.errors == []


def test_start_while_polling_is_noop() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> None:
        poller = _poller(fetcher, recorder, interval_ms=50, max_attempts=10)
        poller.start_polling()
        poller.start_polling()
        await asyncio.sleep(0.02)
        poller.stop_polling()

    asyncio.run(scenario())

    assert len(fetcher.calls) == 1


def test_backoff_grows_delay_up_to_cap() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING)])
    recorder = Recorder()

    async def scenario() -> list[float]:
        loop = asyncio.get_running_loop()
        delays: list[float] = []
        original_call_later = loop.call_later

        def recording_call_later(delay: float, *args: object) -> asyncio.TimerHandle:
            delays.append(delay)
            return original_call_later(delay, *args)  # type: ignore[arg-type]

        loop.call_later = recording_call_later  # type: ignore[method-assign]
        try:
            poller = _poller(
                fetcher,
                recorder,
                interval_ms=2,
                max_attempts=5,
                backoff_factor=2.0,
                max_interval_ms=10,
            )
            poller.start_polling()
            await poller.wait()
        finally:
            loop.call_later = original_call_later  # type: ignore[method-assign]
        return delays

    delays = asyncio.run(scenario())

    assert delays == pytest.approx([0.002, 0.004, 0.008, 0.010])
    assert len(fetcher.calls) == 5


def test_open_circuit_fails_without_fetching() -> None:
    breaker = PollingCircuitBreaker(threshold=2)
    fetcher = ScriptedFetcher([make_job(JobStatus.FAILED, error="boom")])
    recorder = Recorder()

    async def scenario() -> object:
        poller = _poller(fetcher, recorder, circuit_breaker=breaker)
        poller.start_polling()
        await poller.wait()
        poller.retry()
        await poller.wait()
        poller.retry()
        return await poller.wait()

    outcome = asyncio.run(scenario())

    assert len(fetcher.calls) == 2
    assert isinstance(outcome, PollFailure)
    assert isinstance(outcome.error, CircuitOpenError)
    assert [type(error) for error in recorder.errors] == [
        JobFailedError,
        JobFailedError,
        CircuitOpenError,
    ]


def test_success_clears_circuit_breaker_failures() -> None:
    breaker = PollingCircuitBreaker(threshold=3)
    breaker.record_failure("job-1")
    fetcher = ScriptedFetcher([make_job(JobStatus.SUCCEEDED)])

    outcome = asyncio.run(
        watch_job(fetcher, "job-1", interval_ms=FAST_INTERVAL_MS, circuit_breaker=breaker)
    )

    assert isinstance(outcome, PollSuccess)
    assert breaker.failures("job-1") == 0


def test_raising_callback_does_not_break_session() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.SUCCEEDED)])
    on_complete = Mock(side_effect=RuntimeError("render crashed"))
    on_error = Mock()

    async def scenario() -> object:
        poller = JobPoller(
            fetcher,
            "job-1",
            interval_ms=FAST_INTERVAL_MS,
            on_complete=on_complete,
            on_error=on_error,
        )
        poller.start_polling()
        return await poller.wait()

    outcome = asyncio.run(scenario())

    assert isinstance(outcome, PollSuccess)
    on_complete.assert_called_once()
    on_error.assert_not_called()


def test_watch_job_returns_tagged_outcome() -> None:
    fetcher = ScriptedFetcher(
        [make_job(JobStatus.QUEUED), make_job(JobStatus.SUCCEEDED)]
    )

    outcome = asyncio.run(watch_job(fetcher, "job-1", interval_ms=FAST_INTERVAL_MS))

    assert isinstance(outcome, PollSuccess)
    assert outcome.job.status is JobStatus.SUCCEEDED


def test_final_check_rescues_job_finished_after_timeout() -> None:
    fetcher = ScriptedFetcher(
        [
            make_job(JobStatus.RUNNING),
            make_job(JobStatus.RUNNING),
            make_job(JobStatus.SUCCEEDED),
        ]
    )

    outcome = asyncio.run(
        watch_job(
            fetcher,
            "job-1",
            interval_ms=FAST_INTERVAL_MS,
            max_attempts=2,
            final_check=True,
        )
    )

    assert isinstance(outcome, PollSuccess)
    assert len(fetcher.calls) == 3


def test_final_check_reports_job_failed_after_timeout() -> None:
    fetcher = ScriptedFetcher(
        [make_job(JobStatus.QUEUED), make_job(JobStatus.FAILED, error_message="nsfw")]
    )

    outcome = asyncio.run(
        watch_job(
            fetcher,
            "job-1",
            interval_ms=FAST_INTERVAL_MS,
            max_attempts=1,
            final_check=True,
        )
    )

    assert isinstance(outcome, PollFailure)
    assert isinstance(outcome.error, JobFailedError)
    assert str(outcome.error) == "nsfw"


@pytest.mark.parametrize(
    "last_response",
    [make_job(JobStatus.RUNNING), None, ConnectionError("offline")],
)
def test_final_check_keeps_timeout_when_job_unfinished(
    last_response: Job | BaseException | None,
) -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING), last_response])

    outcome = asyncio.run(
        watch_job(
            fetcher,
            "job-1",
            interval_ms=FAST_INTERVAL_MS,
            max_attempts=1,
            final_check=True,
        )
    )

    assert isinstance(outcome, PollFailure)
    assert isinstance(outcome.error, PollingTimeoutError)
    assert len(fetcher.calls) == 2


def test_timeout_without_final_check_fetches_exactly_max_attempts() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.RUNNING), make_job(JobStatus.SUCCEEDED)])

    outcome = asyncio.run(
        watch_job(fetcher, "job-1", interval_ms=FAST_INTERVAL_MS, max_attempts=1)
    )

    assert isinstance(outcome, PollFailure)
    assert isinstance(outcome.error, PollingTimeoutError)
    assert len(fetcher.calls) == 1


def test_watch_job_rejects_empty_job_id() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.SUCCEEDED)])

    with pytest.raises(ValidationError):
        asyncio.run(watch_job(fetcher, ""))


def test_wait_before_start_raises() -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.SUCCEEDED)])
    poller = JobPoller(fetcher, "job-1")

    with pytest.raises(RuntimeError):
        asyncio.run(poller.wait())


@pytest.mark.parametrize(
    "options",
    [
        {"interval_ms": 0},
        {"max_attempts": 0},
        {"backoff_factor": 0.5},
    ],
)
def test_invalid_options_rejected(options: dict[str, float]) -> None:
    fetcher = ScriptedFetcher([make_job(JobStatus.SUCCEEDED)])

    with pytest.raises(ValidationError):
        JobPoller(fetcher, "job-1", **options)  # type: ignore[arg-type]
