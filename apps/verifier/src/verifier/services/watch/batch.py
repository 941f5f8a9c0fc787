from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
import logging
from threading import Event, Lock, Thread

from verifier.services.watch.errors import FatalPollError, SubmissionError
from verifier.services.watch.poller import StatusPoller, WatchOutcome, WatchResult
from verifier.services.watch.status import JobStatus
from verifier.services.watch.submitter import JobSubmitter
from verifier.services.watch.types import JobHandle, ProgressSnapshot, SubmissionRequest

logger = logging.getLogger(__name__)

DEFAULT_BATCH_DELAY_SECONDS = 5.0
_JOIN_SLICE_SECONDS = 0.5

SnapshotCallback = Callable[[ProgressSnapshot], None]


@dataclass(frozen=True)
class SubmissionOutcome:
    request: SubmissionRequest
    handle: JobHandle | None = None
    error: SubmissionError | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.handle is not None

    @property
    def job_id(self) -> str | None:
        return self.handle.job_id if self.handle is not None else None


@dataclass(frozen=True)
class BatchTally:
    total: int
    succeeded: int = 0
    failed: int = 0
    pending: int = 0


@dataclass(frozen=True)
class BatchResult:
    submissions: tuple[SubmissionOutcome, ...] = ()
    watches: dict[str, WatchResult] = field(default_factory=dict)
    tally: BatchTally = BatchTally(total=0)
    cancelled: bool = False

    @property
    def submitted(self) -> int:
        return sum(1 for outcome in self.submissions if outcome.ok)

    @property
    def all_succeeded(self) -> bool:
        if any(not outcome.ok for outcome in self.submissions):
            return False
        return all(result.succeeded for result in self.watches.values())


class _TallyTracker:
    """Per-job classification; every read and write holds the lock so totals never drift."""

    def __init__(self, job_ids: Iterable[str], on_tally: Callable[[BatchTally], None] | None) -> None:
        self._lock = Lock()
        self._state = {job_id: "pending" for job_id in job_ids}
        self._on_tally = on_tally

    def _tally(self) -> BatchTally:
        values = list(self._state.values())
        succeeded = values.count("succeeded")
        failed = values.count("failed")
        return BatchTally(
            total=len(values),
            succeeded=succeeded,
            failed=failed,
            pending=len(values) - succeeded - failed,
        )

    def _set(self, job_id: str, state: str) -> None:
        with self._lock:
            self._state[job_id] = state
            tally = self._tally()
        if self._on_tally is not None:
            try:
                self._on_tally(tally)
            except Exception as exc:
                logger.warning("tally callback failed: %s", exc)

    def observe(self, snapshot: ProgressSnapshot) -> None:
        if snapshot.status is JobStatus.SUCCESS:
            self._set(snapshot.job_id, "succeeded")
        elif snapshot.status.is_failure:
            self._set(snapshot.job_id, "failed")
        else:
            self._set(snapshot.job_id, "pending")

    def finish(self, result: WatchResult) -> None:
        # Fatal poll errors are final for this run; timeouts and cancellations stay pending.
        if result.outcome is WatchOutcome.FATAL:
            self._set(result.job_id, "failed")

    def snapshot(self) -> BatchTally:
        with self._lock:
            return self._tally()


class BatchOrchestrator:
    def __init__(
        self,
        submitter: JobSubmitter | None,
        poller: StatusPoller,
        *,
        delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], None] | None = None,
        on_snapshot: SnapshotCallback | None = None,
        on_tally: Callable[[BatchTally], None] | None = None,
    ) -> None:
        self._submitter = submitter
        self._poller = poller
        self._delay_seconds = max(0.0, delay_seconds)
        self._sleep = sleep
        self._on_snapshot = on_snapshot
        self._on_tally = on_tally
        self._stop_event = Event()
        self._threads_lock = Lock()
        self._threads: list[Thread] = []

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Cancel in-flight watches and wait for every poller thread to exit."""
        self._stop_event.set()
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join()

    def _wait_between_submissions(self) -> None:
        if self._sleep is None:
            self._stop_event.wait(self._delay_seconds)
        else:
            self._sleep(self._delay_seconds)

    def submit_all(self, requests: Sequence[SubmissionRequest]) -> list[SubmissionOutcome]:
        if self._submitter is None:
            raise RuntimeError("this orchestrator only watches existing jobs")
        outcomes: list[SubmissionOutcome] = []
        for index, request in enumerate(requests):
            if index > 0 and self._delay_seconds > 0:
                self._wait_between_submissions()
            if self._stop_event.is_set():
                outcomes.extend(SubmissionOutcome(request=pending, skipped=True) for pending in requests[index:])
                logger.info("batch submission cancelled; %s request(s) skipped", len(requests) - index)
                break

            try:
                handle = self._submitter.submit(request)
            except SubmissionError as exc:
                logger.warning(
                    "batch submission failed index=%s contract=%s error=%s",
                    index,
                    request.contract_name,
                    exc,
                )
                outcomes.append(SubmissionOutcome(request=request, error=exc))
                continue
            outcomes.append(SubmissionOutcome(request=request, handle=handle))
        return outcomes

    def _watch_one(
        self,
        job_id: str,
        network: str | None,
        tracker: _TallyTracker,
        results: dict[str, WatchResult],
    ) -> None:
        def on_snapshot(snapshot: ProgressSnapshot) -> None:
            tracker.observe(snapshot)
            if self._on_snapshot is not None:
                self._on_snapshot(snapshot)

        try:
            result = self._poller.watch(job_id, network, on_snapshot=on_snapshot, stop_event=self._stop_event)
        except Exception as exc:
            logger.exception("watch crashed job_id=%s", job_id)
            error = FatalPollError(str(exc), job_id=job_id, network=network)
            result = WatchResult(
                job_id=job_id,
                network=network,
                outcome=WatchOutcome.FATAL,
                status=None,
                attempts=0,
                error=error,
            )
        tracker.finish(result)
        results[job_id] = result

    def watch_jobs(self, jobs: Iterable[tuple[str, str | None]]) -> BatchResult:
        pairs = list(dict.fromkeys(jobs))
        tracker = _TallyTracker((job_id for job_id, _ in pairs), self._on_tally)
        results: dict[str, WatchResult] = {}

        threads = [
            Thread(
                target=self._watch_one,
                args=(job_id, network, tracker, results),
                name=f"watch-{job_id}",
                daemon=True,
            )
            for job_id, network in pairs
        ]
        with self._threads_lock:
            for thread in threads:
                thread.start()
                self._threads.append(thread)
        for thread in threads:
            while thread.is_alive():
                thread.join(_JOIN_SLICE_SECONDS)

        ordered = {job_id: results[job_id] for job_id, _ in pairs if job_id in results}
        return BatchResult(watches=ordered, tally=tracker.snapshot(), cancelled=self._stop_event.is_set())

    def watch_all(self, handles: Iterable[JobHandle]) -> BatchResult:
        return self.watch_jobs((handle.job_id, handle.network) for handle in handles)

    def run(self, requests: Sequence[SubmissionRequest], *, watch: bool = False) -> BatchResult:
        submissions = tuple(self.submit_all(requests))
        handles = [outcome.handle for outcome in submissions if outcome.handle is not None]
        if not watch or not handles:
            return BatchResult(
                submissions=submissions,
                tally=BatchTally(total=len(handles), pending=len(handles)),
                cancelled=self._stop_event.is_set(),
            )

        watched = self.watch_all(handles)
        return BatchResult(
            submissions=submissions,
            watches=watched.watches,
            tally=watched.tally,
            cancelled=watched.cancelled,
        )
