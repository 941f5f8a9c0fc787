from collections.abc import Iterable
from threading import Event

import pytest

from verifier.services.watch.errors import (
    FatalPollError,
    RemoteJobNotFoundError,
    StorageError,
    TransientPollError,
    WatchTimedOutError,
)
from verifier.services.watch.estimator import NoDurations, ProgressEstimator
from verifier.services.watch.history import HistoryStore
from verifier.services.watch.poller import StatusPoller, WatchOutcome
from verifier.services.watch.status import JobStatus
from verifier.services.watch.submitter import JobSubmitter
from verifier.services.watch.types import RemoteJobStatus, SubmissionRequest


class _ScriptedClient:
    """Replays a fixed sequence of statuses or exceptions; the last entry repeats."""

    def __init__(self, script: Iterable[JobStatus | Exception]) -> None:
        self.script = list(script)
        self.calls = 0
        self.submitted: list[SubmissionRequest] = []

    def submit(self, request: SubmissionRequest) -> str:
        self.submitted.append(request)
        return "job-a"

    def get_status(self, job_id: str) -> RemoteJobStatus:
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        message = "bytecode mismatch" if step.is_failure else None
        return RemoteJobStatus(job_id=job_id, status=step, message=message, error_category="verify" if message else None)


class _RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, JobStatus]] = []

    def on_terminal(self, job_id: str, status: JobStatus) -> None:
        self.events.append((job_id, status))


class _ReadOnlyStore(HistoryStore):
    def update_status(self, job_id, new_status, message=None, error_category=None):  # noqa: ANN001, ANN201
        raise StorageError("attempt to write a readonly database")


def _poller(client, store, clock, **kwargs) -> StatusPoller:  # noqa: ANN001, ANN003
    estimator = ProgressEstimator(store if store is not None else NoDurations())
    return StatusPoller(client, store, estimator, clock=clock, sleep=clock.advance, **kwargs)


def test_watch_reaches_success_with_history_based_progress(store, make_job, clock) -> None:
    for index in range(3):
        store.insert(make_job(f"prior-{index}", status=JobStatus.SUCCESS, age_seconds=600 + index, duration_seconds=6))

    client = _ScriptedClient([JobStatus.SUBMITTED, JobStatus.COMPILING, JobStatus.COMPILING, JobStatus.SUCCESS])
    request = SubmissionRequest(
        network="sepolia",
        class_hash="0x044dc2b3",
        contract_name="Token",
        files={"src/lib.cairo": "mod token;"},
    )
    handle = JobSubmitter(client, store, clock=clock).submit(request)
    sink = _RecordingSink()

    snapshots = []
    result = _poller(client, store, clock, sink=sink).watch(
        handle.job_id, handle.network, on_snapshot=snapshots.append
    )

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.succeeded
    assert [snapshot.elapsed_seconds for snapshot in snapshots] == [0.0, 2.0, 4.0, 6.0]
    assert [snapshot.percentage for snapshot in snapshots] == [0, 33, 67, 100]
    final = snapshots[-1]
    assert final.status is JobStatus.SUCCESS
    assert final.estimated_remaining_seconds == 0.0

    job = store.get(handle.job_id)
    assert job is not None
    assert job.status is JobStatus.SUCCESS
    assert job.duration_seconds == pytest.approx(6.0)
    assert [update.status for update in store.status_updates(handle.job_id)] == [
        JobStatus.SUBMITTED,
        JobStatus.COMPILING,
        JobStatus.SUCCESS,
    ]
    assert sink.events == [(handle.job_id, JobStatus.SUCCESS)]


def test_watch_times_out_after_max_attempts(store, make_job, clock) -> None:
    store.insert(make_job("job-b"))
    client = _ScriptedClient([JobStatus.SUBMITTED])

    result = _poller(client, store, clock).watch("job-b", "sepolia")

    assert result.outcome is WatchOutcome.TIMED_OUT
    assert result.attempts == 300
    assert client.calls == 300
    assert result.status is JobStatus.SUBMITTED
    job = store.get("job-b")
    assert job.status is JobStatus.SUBMITTED
    assert job.completed_at is None
    with pytest.raises(WatchTimedOutError) as excinfo:
        result.raise_for_outcome()
    assert excinfo.value.job_id == "job-b"
    assert excinfo.value.last_status is JobStatus.SUBMITTED


def test_watch_stops_at_wall_clock_ceiling(store, make_job, clock) -> None:
    store.insert(make_job("job-slow"))
    client = _ScriptedClient([JobStatus.COMPILING])
    poller = StatusPoller(
        client,
        store,
        ProgressEstimator(store),
        clock=clock,
        sleep=lambda seconds: clock.advance(seconds + 3),
    )

    result = poller.watch("job-slow", "sepolia")

    assert result.outcome is WatchOutcome.TIMED_OUT
    assert result.attempts == 120
    assert store.get("job-slow").status is JobStatus.COMPILING


def test_wall_clock_ceiling_does_not_depend_on_poll_interval(clock) -> None:
    client = _ScriptedClient([JobStatus.COMPILING, JobStatus.VERIFYING, JobStatus.SUCCESS])
    poller = StatusPoller(client, None, ProgressEstimator(NoDurations()), clock=clock, poll_interval=0.0)

    result = poller.watch("job-fast", "sepolia")

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.status is JobStatus.SUCCESS
    assert client.calls == 3


def test_three_consecutive_transient_errors_are_fatal(store, make_job, clock) -> None:
    store.insert(make_job("job-c"))
    outage = [TransientPollError("HTTP 503")] * 4
    client = _ScriptedClient([JobStatus.COMPILING, *outage, JobStatus.SUCCESS])

    result = _poller(client, store, clock).watch("job-c", "sepolia")

    assert result.outcome is WatchOutcome.FATAL
    assert client.calls == 4
    assert store.get("job-c").status is JobStatus.COMPILING
    with pytest.raises(FatalPollError) as excinfo:
        result.raise_for_outcome()
    assert excinfo.value.job_id == "job-c"
    assert excinfo.value.last_status is JobStatus.COMPILING


def test_transient_error_counter_resets_after_success(store, make_job, clock) -> None:
    store.insert(make_job("job-d"))
    blip = TransientPollError("timeout")
    client = _ScriptedClient([blip, blip, JobStatus.COMPILING, blip, blip, JobStatus.SUCCESS])

    result = _poller(client, store, clock).watch("job-d", "sepolia")

    assert result.outcome is WatchOutcome.COMPLETED
    assert result.status is JobStatus.SUCCESS
    assert client.calls == 6


def test_missing_remote_job_fails_immediately(store, make_job, clock) -> None:
    store.insert(make_job("job-e"))
    client = _ScriptedClient([RemoteJobNotFoundError("job job-e not found", job_id="job-e")])

    result = _poller(client, store, clock).watch("job-e", "sepolia")

    assert result.outcome is WatchOutcome.FATAL
    assert isinstance(result.error, RemoteJobNotFoundError)
    assert result.error.network == "sepolia"
    assert client.calls == 1


def test_stale_remote_status_is_ignored(store, make_job, clock, caplog: pytest.LogCaptureFixture) -> None:
    store.insert(make_job("job-f"))
    client = _ScriptedClient([JobStatus.VERIFYING, JobStatus.COMPILING, JobStatus.SUCCESS])

    snapshots = []
    result = _poller(client, store, clock).watch("job-f", "sepolia", on_snapshot=snapshots.append)

    assert [snapshot.status for snapshot in snapshots] == [
        JobStatus.VERIFYING,
        JobStatus.VERIFYING,
        JobStatus.SUCCESS,
    ]
    assert result.status is JobStatus.SUCCESS
    assert "ignoring stale status" in caplog.text
    assert JobStatus.COMPILING not in [update.status for update in store.status_updates("job-f")]


def test_failure_carries_server_message(store, make_job, clock) -> None:
    store.insert(make_job("job-g"))
    sink = _RecordingSink()
    client = _ScriptedClient([JobStatus.COMPILING, JobStatus.FAIL])

    result = _poller(client, store, clock, sink=sink).watch("job-g", "sepolia")

    assert result.outcome is WatchOutcome.COMPLETED
    assert not result.succeeded
    assert result.message == "bytecode mismatch"
    assert result.error_category == "verify"
    job = store.get("job-g")
    assert job.status is JobStatus.FAIL
    assert job.message == "bytecode mismatch"
    assert sink.events == [("job-g", JobStatus.FAIL)]


def test_cancellation_stops_at_poll_boundary(store, make_job, clock) -> None:
    store.insert(make_job("job-h"))
    client = _ScriptedClient([JobStatus.COMPILING])
    stop_event = Event()

    result = _poller(client, store, clock).watch(
        "job-h",
        "sepolia",
        on_snapshot=lambda snapshot: stop_event.set(),
        stop_event=stop_event,
    )

    assert result.outcome is WatchOutcome.CANCELLED
    assert client.calls == 1
    assert store.get("job-h").status is JobStatus.COMPILING
    result.raise_for_outcome()


def test_store_failures_are_counted_unless_persistence_required(tmp_path, clock, make_job) -> None:
    from verifier.db import create_history_engine

    engine = create_history_engine(f"sqlite+pysqlite:///{tmp_path / 'readonly.db'}")
    store = _ReadOnlyStore(engine, clock=clock)
    store.insert(make_job("job-i"))

    lenient = _poller(_ScriptedClient([JobStatus.COMPILING, JobStatus.SUCCESS]), store, clock)
    result = lenient.watch("job-i", "sepolia")
    assert result.outcome is WatchOutcome.COMPLETED
    assert result.storage_errors == 2

    strict = _poller(_ScriptedClient([JobStatus.COMPILING]), store, clock, require_persistence=True)
    result = strict.watch("job-i", "sepolia")
    assert result.outcome is WatchOutcome.FATAL
    assert "could not record status" in str(result.error)
    engine.dispose()


def test_untracked_job_measures_elapsed_from_watch_start(clock) -> None:
    client = _ScriptedClient([JobStatus.SUBMITTED, JobStatus.SUCCESS])

    snapshots = []
    result = _poller(client, None, clock).watch("remote-only", "mainnet", on_snapshot=snapshots.append)

    assert result.succeeded
    assert [snapshot.elapsed_seconds for snapshot in snapshots] == [0.0, 2.0]
    assert snapshots[0].percentage == 10


def test_iter_snapshots_returns_result(store, make_job, clock) -> None:
    store.insert(make_job("job-j"))
    poller = _poller(_ScriptedClient([JobStatus.COMPILED, JobStatus.SUCCESS]), store, clock)

    def consume():  # noqa: ANN202
        result = yield from poller.iter_snapshots("job-j", "sepolia")
        return result

    generator = consume()
    statuses = []
    while True:
        try:
            statuses.append(next(generator).status)
        except StopIteration as finished:
            result = finished.value
            break

    assert statuses == [JobStatus.COMPILED, JobStatus.SUCCESS]
    assert result.outcome is WatchOutcome.COMPLETED


def test_refresh_polls_once_and_records(store, make_job, clock) -> None:
    store.insert(make_job("job-k", age_seconds=30))
    client = _ScriptedClient([JobStatus.VERIFYING])

    snapshot, remote = _poller(client, store, clock).refresh("job-k")

    assert client.calls == 1
    assert snapshot.status is JobStatus.VERIFYING
    assert snapshot.elapsed_seconds == pytest.approx(30.0)
    assert remote.job_id == "job-k"
    assert store.get("job-k").status is JobStatus.VERIFYING
