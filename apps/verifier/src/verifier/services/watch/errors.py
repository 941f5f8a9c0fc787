from __future__ import annotations

from enum import Enum

from verifier.services.watch.status import JobStatus


class VerifierError(RuntimeError):
    pass


class SubmissionError(VerifierError):
    """Remote submission was rejected or could not be delivered; never retried automatically."""


class PayloadTooLargeError(SubmissionError):
    pass


class InvalidClassHashError(SubmissionError):
    pass


class ClassNotDeclaredError(InvalidClassHashError):
    pass


class NetworkUnavailableError(SubmissionError):
    pass


class ApiResponseError(SubmissionError):
    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"verification API returned {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class PollError(VerifierError):
    pass


class TransientPollError(PollError):
    pass


class FatalPollError(PollError):
    def __init__(
        self,
        message: str,
        *,
        job_id: str | None = None,
        network: str | None = None,
        last_status: JobStatus | None = None,
    ) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.network = network
        self.last_status = last_status

    def __str__(self) -> str:
        base = super().__str__()
        if self.job_id is None:
            return base
        last = self.last_status.value if self.last_status is not None else "unknown"
        return f"{base} (job_id={self.job_id} network={self.network} last_status={last})"


class RemoteJobNotFoundError(FatalPollError):
    pass


class WatchTimedOutError(VerifierError):
    def __init__(self, *, job_id: str, network: str | None, last_status: JobStatus | None) -> None:
        last = last_status.value if last_status is not None else "unknown"
        super().__init__(
            f"timed out waiting for job {job_id} on {network} (last status: {last}); "
            "the job keeps running remotely and can be polled again later"
        )
        self.job_id = job_id
        self.network = network
        self.last_status = last_status


class StorageErrorKind(str, Enum):
    CORRUPT = "corrupt"
    LOCKED = "locked"
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"


class StorageError(VerifierError):
    def __init__(self, message: str, *, kind: StorageErrorKind = StorageErrorKind.UNAVAILABLE) -> None:
        super().__init__(message)
        self.kind = kind


class NotFoundError(VerifierError):
    pass


class DuplicateJobError(VerifierError):
    pass


class ClassLookupError(VerifierError):
    """Class verification lookup could not be completed."""


class ClassNotFoundError(ClassLookupError):
    def __init__(self, class_hash: str) -> None:
        super().__init__(f"class {class_hash} not found on-chain")
        self.class_hash = class_hash
