from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from verifier.config import get_settings
from verifier.db import create_history_engine, get_engine
from verifier.main import get_history_store
from verifier.services.watch.history import HistoryStore
from verifier.services.watch.status import JobStatus
from verifier.services.watch.types import VerificationJob


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def reset_verifier_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_history_store.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_history_store.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> Iterator[HistoryStore]:
    engine = create_history_engine(f"sqlite+pysqlite:///{tmp_path / 'history-tests.db'}")
    yield HistoryStore(engine, clock=clock)
    engine.dispose()


@pytest.fixture
def make_job(clock: FakeClock) -> Callable[..., VerificationJob]:
    def factory(
        job_id: str,
        *,
        status: JobStatus = JobStatus.SUBMITTED,
        network: str = "sepolia",
        contract_name: str = "Token",
        class_hash: str = "0x044dc2b3",
        age_seconds: float = 0.0,
        duration_seconds: float | None = None,
    ) -> VerificationJob:
        created_at = clock() - timedelta(seconds=age_seconds)
        completed_at = None
        if duration_seconds is not None:
            completed_at = created_at + timedelta(seconds=duration_seconds)
        return VerificationJob(
            job_id=job_id,
            network=network,
            class_hash=class_hash,
            contract_name=contract_name,
            status=status,
            created_at=created_at,
            updated_at=created_at,
            completed_at=completed_at,
        )

    return factory
