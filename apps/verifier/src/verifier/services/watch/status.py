from __future__ import annotations

from enum import Enum


class JobStatus(str, Enum):
    SUBMITTED = "Submitted"
    PROCESSING = "Processing"
    COMPILING = "Compiling"
    COMPILED = "Compiled"
    VERIFYING = "Verifying"
    SUCCESS = "Success"
    FAIL = "Fail"
    COMPILE_FAILED = "CompileFailed"

    @property
    def rank(self) -> int:
        """Position in the canonical stage ordering; all terminal values share the last rank."""
        return _STAGE_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_failure(self) -> bool:
        return self in FAILED_STATUSES

    @classmethod
    def parse(cls, value: object) -> JobStatus:
        if isinstance(value, JobStatus):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Unknown job status: {value!r}")
        if isinstance(value, int):
            try:
                return _WIRE_CODES[value]
            except KeyError as exc:
                raise ValueError(f"Unknown job status code: {value}") from exc
        if isinstance(value, str):
            normalized = value.strip()
            if normalized.isdigit():
                return cls.parse(int(normalized))
            found = _BY_LOWER_NAME.get(normalized.lower().replace("_", "").replace("-", ""))
            if found is not None:
                return found
        raise ValueError(f"Unknown job status: {value!r}")


_STAGE_RANK = {
    JobStatus.SUBMITTED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPILING: 2,
    JobStatus.COMPILED: 3,
    JobStatus.VERIFYING: 4,
    JobStatus.SUCCESS: 5,
    JobStatus.FAIL: 5,
    JobStatus.COMPILE_FAILED: 5,
}

# Integer codes used by the verification service.
_WIRE_CODES = {
    0: JobStatus.SUBMITTED,
    1: JobStatus.COMPILED,
    2: JobStatus.COMPILE_FAILED,
    3: JobStatus.FAIL,
    4: JobStatus.SUCCESS,
    5: JobStatus.PROCESSING,
    6: JobStatus.COMPILING,
    7: JobStatus.VERIFYING,
}

_BY_LOWER_NAME = {status.value.lower(): status for status in JobStatus}
_BY_LOWER_NAME.update({"inprogress": JobStatus.PROCESSING})

TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAIL, JobStatus.COMPILE_FAILED})
FAILED_STATUSES = frozenset({JobStatus.FAIL, JobStatus.COMPILE_FAILED})
PENDING_STATUSES = frozenset(status for status in JobStatus if status not in TERMINAL_STATUSES)

_STATUS_GROUPS = {
    "success": frozenset({JobStatus.SUCCESS}),
    "succeeded": frozenset({JobStatus.SUCCESS}),
    "failed": FAILED_STATUSES,
    "pending": PENDING_STATUSES,
}


def resolve_status_filter(value: str | JobStatus) -> frozenset[JobStatus]:
    """Expand a status filter (single status or group alias) into concrete statuses."""
    if isinstance(value, JobStatus):
        return frozenset({value})
    group = _STATUS_GROUPS.get(value.strip().lower())
    if group is not None:
        return group
    return frozenset({JobStatus.parse(value)})
