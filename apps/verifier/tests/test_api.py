from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from verifier.main import app, get_history_store
from verifier.services.watch.status import JobStatus
from verifier.services.watch.types import VerificationJob


def _job(job_id: str, status: JobStatus, *, network: str = "sepolia", age_days: float = 0.0) -> VerificationJob:
    created_at = datetime.now(timezone.utc) - timedelta(days=age_days)
    return VerificationJob(
        job_id=job_id,
        network=network,
        class_hash="0x0123abc",
        contract_name=f"Contract{job_id}",
        status=status,
        created_at=created_at,
        updated_at=created_at,
        completed_at=created_at + timedelta(seconds=45) if status.is_terminal else None,
    )


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    monkeypatch.setenv("VERIFIER_HISTORY_DB_URL", f"sqlite+pysqlite:///{tmp_path / 'api-tests.db'}")
    monkeypatch.setenv("VERIFIER_DB_ECHO", "false")

    store = get_history_store()
    store.insert(_job("1", JobStatus.SUCCESS, age_days=120))
    store.insert(_job("2", JobStatus.FAIL, age_days=100))
    store.insert(_job("3", JobStatus.COMPILING, network="mainnet"))
    store.update_status("3", JobStatus.VERIFYING)

    with TestClient(app) as test_client:
        yield test_client

    store.engine.dispose()


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_jobs_with_filters(client: TestClient) -> None:
    response = client.get("/jobs")
    assert response.status_code == 200
    assert [job["job_id"] for job in response.json()] == ["3", "2", "1"]

    failed = client.get("/jobs", params={"status": "failed"}).json()
    assert [job["job_id"] for job in failed] == ["2"]

    mainnet = client.get("/jobs", params={"network": "mainnet"}).json()
    assert mainnet[0]["status"] == "Verifying"
    assert mainnet[0]["duration_seconds"] is None

    by_duration = client.get("/jobs", params={"sort": "duration", "order": "asc", "limit": 1}).json()
    assert len(by_duration) == 1


def test_list_jobs_rejects_unknown_status(client: TestClient) -> None:
    response = client.get("/jobs", params={"status": "exploded"})

    assert response.status_code == 400


def test_get_job_includes_transitions(client: TestClient) -> None:
    response = client.get("/jobs/3")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "Verifying"
    assert [update["status"] for update in body["status_updates"]] == ["Compiling", "Verifying"]

    missing = client.get("/jobs/unknown")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "job not found"


def test_stats(client: TestClient) -> None:
    body = client.get("/stats").json()

    assert body["total"] == 3
    assert body["successful"] == 1
    assert body["failed"] == 1
    assert body["pending"] == 1
    assert body["average_duration_seconds"] == pytest.approx(45.0)
    assert set(body["by_network"]) == {"mainnet", "sepolia"}

    mainnet = client.get("/stats", params={"network": "mainnet"}).json()
    assert mainnet["total"] == 1


def test_clean_history(client: TestClient) -> None:
    rejected = client.post("/history/clean", json={"older_than_days": 30, "force": True})
    assert rejected.status_code == 422

    missing_age = client.post("/history/clean", json={})
    assert missing_age.status_code == 400

    response = client.post("/history/clean", json={"older_than_days": 90, "status": "failed"})
    assert response.status_code == 200
    assert response.json() == {"deleted": 1}
    assert [job["job_id"] for job in client.get("/jobs").json()] == ["3", "1"]

    response = client.post("/history/clean", json={"all": True})
    assert response.json() == {"deleted": 2}
