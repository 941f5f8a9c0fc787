from verifier.services.watch.batch import BatchOrchestrator, BatchResult, BatchTally, SubmissionOutcome
from verifier.services.watch.estimator import ProgressEstimator
from verifier.services.watch.history import HistoryStore, open_history_store
from verifier.services.watch.poller import StatusPoller, WatchOutcome, WatchResult
from verifier.services.watch.status import JobStatus
from verifier.services.watch.submitter import JobSubmitter
from verifier.services.watch.types import (
    HistoryFilter,
    HistoryStats,
    JobHandle,
    ProgressSnapshot,
    SubmissionRequest,
    VerificationJob,
)

__all__ = [
    "BatchOrchestrator",
    "BatchResult",
    "BatchTally",
    "HistoryFilter",
    "HistoryStats",
    "HistoryStore",
    "JobHandle",
    "JobStatus",
    "JobSubmitter",
    "ProgressEstimator",
    "ProgressSnapshot",
    "StatusPoller",
    "SubmissionOutcome",
    "SubmissionRequest",
    "VerificationJob",
    "WatchOutcome",
    "WatchResult",
    "open_history_store",
]
