from __future__ import annotations

from dataclasses import replace
import logging
import re
from typing import Protocol

from verifier.services.watch.errors import (
    DuplicateJobError,
    InvalidClassHashError,
    PayloadTooLargeError,
    StorageError,
)
from verifier.services.watch.history import Clock, HistoryStore, utc_now
from verifier.services.watch.status import JobStatus
from verifier.services.watch.types import JobHandle, SubmissionRequest, VerificationJob

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 10 * 1024 * 1024
_CLASS_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


class SubmitClient(Protocol):
    def submit(self, request: SubmissionRequest) -> str: ...


def validate_class_hash(class_hash: str) -> str:
    normalized = class_hash.strip()
    if not _CLASS_HASH_PATTERN.match(normalized):
        raise InvalidClassHashError(
            f"Invalid class hash {class_hash!r}: expected 0x followed by up to 64 hex digits"
        )
    return normalized.lower()


class JobSubmitter:
    def __init__(
        self,
        client: SubmitClient,
        store: HistoryStore | None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._client = client
        self._store = store
        self._clock = clock

    def submit(self, request: SubmissionRequest) -> JobHandle:
        request = replace(request, class_hash=validate_class_hash(request.class_hash))
        if request.payload_bytes > MAX_PAYLOAD_BYTES:
            raise PayloadTooLargeError(
                f"Request payload too large ({request.payload_bytes} bytes). "
                f"Maximum allowed size is {MAX_PAYLOAD_BYTES // (1024 * 1024)}MB."
            )

        job_id = self._client.submit(request)
        logger.info(
            "verification submitted job_id=%s network=%s contract=%s",
            job_id,
            request.network,
            request.contract_name,
        )
        return JobHandle(job_id=job_id, network=request.network, tracked=self._record(job_id, request))

    def _record(self, job_id: str, request: SubmissionRequest) -> bool:
        if self._store is None:
            return False

        now = self._clock()
        job = VerificationJob(
            job_id=job_id,
            network=request.network,
            class_hash=request.class_hash,
            contract_name=request.contract_name,
            status=JobStatus.SUBMITTED,
            created_at=now,
            updated_at=now,
            package=request.package,
            license=request.license,
            cairo_version=request.cairo_version or None,
            scarb_version=request.scarb_version or None,
            dojo_version=request.dojo_version,
        )
        try:
            self._store.insert(job)
        except (StorageError, DuplicateJobError) as exc:
            # job_id is returned even when local tracking fails.
            logger.warning("failed to save job %s to history: %s", job_id, exc)
            return False
        return True
