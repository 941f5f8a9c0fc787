from __future__ import annotations

import logging
from typing import Protocol

from verifier.services.watch.errors import StorageError
from verifier.services.watch.status import JobStatus
from verifier.services.watch.types import Estimate

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10
MIN_SAMPLES = 3

# Used until enough successful jobs exist to average over.
STAGE_REMAINING_SECONDS = {
    JobStatus.SUBMITTED: 120.0,
    JobStatus.PROCESSING: 90.0,
    JobStatus.COMPILING: 90.0,
    JobStatus.COMPILED: 45.0,
    JobStatus.VERIFYING: 30.0,
}

STAGE_PERCENTAGE = {
    JobStatus.SUBMITTED: 10,
    JobStatus.PROCESSING: 40,
    JobStatus.COMPILING: 40,
    JobStatus.COMPILED: 85,
    JobStatus.VERIFYING: 85,
}


class DurationSource(Protocol):
    def recent_durations(self, network: str | None = None, sample_size: int = 10) -> list[float]: ...


class NoDurations:
    """Duration source for runs without a history database."""

    def recent_durations(self, network: str | None = None, sample_size: int = 10) -> list[float]:
        return []


class ProgressEstimator:
    def __init__(
        self,
        source: DurationSource,
        *,
        sample_size: int = SAMPLE_SIZE,
        min_samples: int = MIN_SAMPLES,
    ) -> None:
        self._source = source
        self._sample_size = sample_size
        self._min_samples = min_samples

    def estimate(self, status: JobStatus, elapsed_seconds: float, network: str | None = None) -> Estimate:
        if status.is_terminal:
            return Estimate(percentage=100, estimated_remaining_seconds=0.0)

        elapsed = max(0.0, float(elapsed_seconds))
        samples = self._samples(network)
        if len(samples) >= self._min_samples:
            average = sum(samples) / len(samples)
            if average <= 0:
                return Estimate(percentage=99, estimated_remaining_seconds=0.0)
            percentage = min(99, max(0, round(100 * elapsed / average)))
            return Estimate(percentage=percentage, estimated_remaining_seconds=max(0.0, average - elapsed))

        return Estimate(
            percentage=STAGE_PERCENTAGE[status],
            estimated_remaining_seconds=STAGE_REMAINING_SECONDS[status],
        )

    def _samples(self, network: str | None) -> list[float]:
        try:
            return self._source.recent_durations(network, sample_size=self._sample_size)
        except StorageError as exc:
            logger.warning("duration history unavailable, using stage estimates: %s", exc)
            return []
