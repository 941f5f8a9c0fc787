"""Per-job watch loop.

A watch polls the verification service every ``POLL_INTERVAL_SECONDS`` until
the job reaches a terminal status, ``MAX_ATTEMPTS`` polls have been made,
``MAX_WAIT_SECONDS`` have passed since the first poll, or
``MAX_CONSECUTIVE_FAILURES`` transient errors happen in a row. The remote job
is never cancelled: a timed out or interrupted watch can be resumed later by
polling the same job id again.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from threading import Event
from typing import Protocol

from verifier.services.watch.errors import (
    FatalPollError,
    NotFoundError,
    PollError,
    StorageError,
    TransientPollError,
    WatchTimedOutError,
)
from verifier.services.watch.estimator import ProgressEstimator
from verifier.services.watch.history import Clock, HistoryStore, as_utc, utc_now
from verifier.services.watch.notifications import TerminalEventSink
from verifier.services.watch.status import JobStatus
from verifier.services.watch.types import ProgressSnapshot, RemoteJobStatus, VerificationJob

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0
MAX_ATTEMPTS = 300
MAX_CONSECUTIVE_FAILURES = 3
MAX_WAIT_SECONDS = 600.0


class StatusClient(Protocol):
    def get_status(self, job_id: str) -> RemoteJobStatus: ...


class WatchOutcome(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FATAL = "fatal"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WatchResult:
    job_id: str
    network: str | None
    outcome: WatchOutcome
    status: JobStatus | None
    attempts: int
    last_snapshot: ProgressSnapshot | None = None
    message: str | None = None
    error_category: str | None = None
    error: FatalPollError | None = None
    storage_errors: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is WatchOutcome.COMPLETED and self.status is JobStatus.SUCCESS

    def raise_for_outcome(self) -> None:
        if self.outcome is WatchOutcome.TIMED_OUT:
            raise WatchTimedOutError(job_id=self.job_id, network=self.network, last_status=self.status)
        if self.outcome is WatchOutcome.FATAL and self.error is not None:
            raise self.error


@dataclass
class _WatchState:
    job_id: str
    network: str | None
    started_at: datetime
    last_status: JobStatus | None
    attempts: int = 0
    failures: int = 0
    storage_errors: int = 0
    last_snapshot: ProgressSnapshot | None = None

    def result(self, outcome: WatchOutcome, **extra: object) -> WatchResult:
        return WatchResult(
            job_id=self.job_id,
            network=self.network,
            outcome=outcome,
            status=self.last_status,
            attempts=self.attempts,
            last_snapshot=self.last_snapshot,
            storage_errors=self.storage_errors,
            **extra,
        )


class StatusPoller:
    def __init__(
        self,
        client: StatusClient,
        store: HistoryStore | None,
        estimator: ProgressEstimator,
        *,
        sink: TerminalEventSink | None = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], None] | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        failure_limit: int = MAX_CONSECUTIVE_FAILURES,
        max_wait_seconds: float = MAX_WAIT_SECONDS,
        require_persistence: bool = False,
    ) -> None:
        self._client = client
        self._store = store
        self._estimator = estimator
        self._sink = sink
        self._clock = clock
        self._sleep = sleep
        self._poll_interval = poll_interval
        self._max_attempts = max(1, max_attempts)
        self._failure_limit = max(1, failure_limit)
        self._max_wait_seconds = max_wait_seconds
        self._require_persistence = require_persistence

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def _pause(self, stop_event: Event) -> bool:
        """Wait one poll interval; returns True when the watch was cancelled meanwhile."""
        if self._sleep is None:
            return stop_event.wait(self._poll_interval)
        self._sleep(self._poll_interval)
        return stop_event.is_set()

    def _load(self, job_id: str) -> VerificationJob | None:
        if self._store is None:
            return None
        try:
            return self._store.get(job_id)
        except StorageError as exc:
            logger.warning("could not read job %s from history: %s", job_id, exc)
            return None

    def _start(self, job_id: str, network: str | None) -> _WatchState:
        tracked = self._load(job_id)
        if tracked is None:
            return _WatchState(job_id=job_id, network=network, started_at=self._now(), last_status=None)
        return _WatchState(
            job_id=job_id,
            network=network or tracked.network,
            started_at=tracked.created_at,
            last_status=tracked.status,
        )

    def _persist(self, state: _WatchState, status: JobStatus, remote: RemoteJobStatus) -> bool:
        if self._store is None:
            return True

        message = error_category = None
        if status.is_failure:
            message = remote.message or remote.status_description
            error_category = remote.error_category
        try:
            self._store.update_status(state.job_id, status, message=message, error_category=error_category)
        except NotFoundError:
            logger.debug("job %s is not tracked locally; skipping history update", state.job_id)
        except StorageError as exc:
            state.storage_errors += 1
            logger.warning("failed to record status %s for job %s: %s", status.value, state.job_id, exc)
            return False
        return True

    def _observe(self, state: _WatchState, remote: RemoteJobStatus) -> ProgressSnapshot:
        observed = remote.status
        if state.last_status is not None and observed.rank < state.last_status.rank:
            logger.warning(
                "ignoring stale status job_id=%s reported=%s last_known=%s",
                state.job_id,
                observed.value,
                state.last_status.value,
            )
            observed = state.last_status
        elif observed is not state.last_status:
            persisted = self._persist(state, observed, remote)
            if not persisted and self._require_persistence:
                raise FatalPollError(
                    f"could not record status {observed.value} in history",
                    job_id=state.job_id,
                    network=state.network,
                    last_status=state.last_status,
                )
            state.last_status = observed

        elapsed = max(0.0, (self._now() - state.started_at).total_seconds())
        estimate = self._estimator.estimate(observed, elapsed, state.network)
        snapshot = ProgressSnapshot(
            job_id=state.job_id,
            status=observed,
            percentage=estimate.percentage,
            estimated_remaining_seconds=estimate.estimated_remaining_seconds,
            elapsed_seconds=elapsed,
            attempt=state.attempts,
        )
        state.last_snapshot = snapshot
        return snapshot

    def _notify(self, job_id: str, status: JobStatus) -> None:
        if self._sink is None:
            return
        try:
            self._sink.on_terminal(job_id, status)
        except Exception as exc:
            logger.warning("terminal notification failed for job %s: %s", job_id, exc)

    def iter_snapshots(
        self,
        job_id: str,
        network: str | None = None,
        *,
        stop_event: Event | None = None,
    ) -> Generator[ProgressSnapshot, None, WatchResult]:
        stop_event = stop_event or Event()
        state = self._start(job_id, network)
        first_poll_at: datetime | None = None

        while state.attempts < self._max_attempts:
            if stop_event.is_set():
                logger.info("watch cancelled job_id=%s", job_id)
                return state.result(WatchOutcome.CANCELLED)

            now = self._now()
            if first_poll_at is None:
                first_poll_at = now
            elif (now - first_poll_at).total_seconds() >= self._max_wait_seconds:
                break

            state.attempts += 1
            try:
                remote = self._client.get_status(job_id)
            except TransientPollError as exc:
                state.failures += 1
                logger.warning(
                    "status poll failed job_id=%s attempt=%s consecutive_failures=%s/%s error=%s",
                    job_id,
                    state.attempts,
                    state.failures,
                    self._failure_limit,
                    exc,
                )
                if state.failures >= self._failure_limit:
                    error = FatalPollError(
                        f"giving up after {state.failures} consecutive failed polls: {exc}",
                        job_id=job_id,
                        network=state.network,
                        last_status=state.last_status,
                    )
                    return state.result(WatchOutcome.FATAL, error=error)
                if state.attempts < self._max_attempts and self._pause(stop_event):
                    return state.result(WatchOutcome.CANCELLED)
                continue
            except PollError as exc:
                error = exc if isinstance(exc, FatalPollError) else FatalPollError(str(exc))
                error.job_id = error.job_id or job_id
                error.network = error.network or state.network
                error.last_status = error.last_status or state.last_status
                logger.error("status poll failed permanently: %s", error)
                return state.result(WatchOutcome.FATAL, error=error)

            state.failures = 0
            try:
                snapshot = self._observe(state, remote)
            except FatalPollError as exc:
                return state.result(WatchOutcome.FATAL, error=exc)
            yield snapshot

            if snapshot.status.is_terminal:
                self._notify(job_id, snapshot.status)
                message = error_category = None
                if snapshot.status.is_failure:
                    message = remote.message or remote.status_description
                    error_category = remote.error_category
                logger.info("watch finished job_id=%s status=%s", job_id, snapshot.status.value)
                return state.result(WatchOutcome.COMPLETED, message=message, error_category=error_category)

            if state.attempts < self._max_attempts and self._pause(stop_event):
                return state.result(WatchOutcome.CANCELLED)

        logger.warning(
            "watch timed out job_id=%s attempts=%s last_status=%s",
            job_id,
            state.attempts,
            state.last_status.value if state.last_status else "unknown",
        )
        return state.result(WatchOutcome.TIMED_OUT)

    def watch(
        self,
        job_id: str,
        network: str | None = None,
        *,
        on_snapshot: Callable[[ProgressSnapshot], None] | None = None,
        stop_event: Event | None = None,
    ) -> WatchResult:
        snapshots = self.iter_snapshots(job_id, network, stop_event=stop_event)
        while True:
            try:
                snapshot = next(snapshots)
            except StopIteration as finished:
                return finished.value
            if on_snapshot is not None:
                on_snapshot(snapshot)

    def refresh(self, job_id: str, network: str | None = None) -> tuple[ProgressSnapshot, RemoteJobStatus]:
        """Poll once and record the result; poll errors propagate to the caller."""
        state = self._start(job_id, network)
        state.attempts = 1
        remote = self._client.get_status(job_id)
        snapshot = self._observe(state, remote)
        if snapshot.status.is_terminal:
            self._notify(job_id, snapshot.status)
        return snapshot, remote
