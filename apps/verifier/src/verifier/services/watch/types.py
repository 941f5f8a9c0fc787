from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from verifier.services.watch.status import JobStatus


@dataclass(frozen=True)
class VerificationJob:
    job_id: str
    network: str
    class_hash: str
    contract_name: str
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    package: str | None = None
    license: str | None = None
    cairo_version: str | None = None
    scarb_version: str | None = None
    dojo_version: str | None = None
    completed_at: datetime | None = None
    message: str | None = None
    error_category: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return max(0.0, (self.completed_at - self.created_at).total_seconds())


@dataclass(frozen=True)
class StatusUpdate:
    job_id: str
    status: JobStatus
    observed_at: datetime


class SortKey(str, Enum):
    TIME = "time"
    DURATION = "duration"
    CONTRACT = "contract"


@dataclass(frozen=True)
class HistoryFilter:
    status: str | JobStatus | None = None
    network: str | None = None
    job_id: str | None = None
    job_id_prefix: bool = False
    contract_name: str | None = None
    class_hash_prefix: str | None = None
    since: date | None = None
    before: date | None = None
    after: date | None = None
    limit: int | None = None
    sort: SortKey = SortKey.TIME
    descending: bool = True


@dataclass(frozen=True)
class DurationSummary:
    total: int
    successful: int
    failed: int
    pending: int
    success_rate: float | None
    average_duration_seconds: float | None
    min_duration_seconds: float | None
    max_duration_seconds: float | None


@dataclass(frozen=True)
class HistoryStats(DurationSummary):
    counts_by_status: dict[str, int] = field(default_factory=dict)
    by_network: dict[str, DurationSummary] = field(default_factory=dict)


@dataclass(frozen=True)
class Estimate:
    percentage: int
    estimated_remaining_seconds: float | None


@dataclass(frozen=True)
class ProgressSnapshot:
    job_id: str
    status: JobStatus
    percentage: int
    estimated_remaining_seconds: float | None
    elapsed_seconds: float
    attempt: int


@dataclass(frozen=True)
class RemoteJobStatus:
    job_id: str
    status: JobStatus
    message: str | None = None
    error_category: str | None = None
    status_description: str | None = None
    class_hash: str | None = None
    contract_name: str | None = None
    cairo_version: str | None = None
    build_tool: str | None = None
    created_timestamp: float | None = None
    updated_timestamp: float | None = None


@dataclass(frozen=True)
class SubmissionRequest:
    """Resolved inputs for one verification request.

    ``files`` maps project-relative paths to file contents as produced by the
    source collector.
    """

    network: str
    class_hash: str
    contract_name: str
    files: dict[str, str]
    package: str | None = None
    license: str | None = None
    cairo_version: str = ""
    scarb_version: str = ""
    build_tool: str = "scarb"
    dojo_version: str | None = None
    contract_file: str = ""
    project_dir_path: str = "."

    @property
    def payload_bytes(self) -> int:
        return sum(len(name.encode("utf-8")) + len(body.encode("utf-8")) for name, body in self.files.items())


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    network: str
    tracked: bool = True


@dataclass(frozen=True)
class ClassVerificationInfo:
    class_hash: str
    verified: bool
    name: str | None = None
    version: str | None = None
    license: str | None = None
    contract_file: str | None = None
    verified_timestamp: float | None = None
