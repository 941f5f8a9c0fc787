from dataclasses import asdict
from datetime import date, datetime
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from verifier.services.watch.errors import StorageError
from verifier.services.watch.history import HistoryStore, open_history_store
from verifier.services.watch.status import resolve_status_filter
from verifier.services.watch.types import HistoryFilter, SortKey, VerificationJob

app = FastAPI(title="Contract Verifier History API", version="0.1.0")


class CleanRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    older_than_days: int | None = Field(default=None, ge=0)
    status: str | None = None
    network: str | None = None
    all: bool = False


@lru_cache
def get_history_store() -> HistoryStore:
    return open_history_store()


@app.on_event("startup")
def startup() -> None:
    get_history_store()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _job_summary(job: VerificationJob) -> dict[str, Any]:
    return {
        "job_id": job.job_id,
        "network": job.network,
        "contract_name": job.contract_name,
        "class_hash": job.class_hash,
        "status": job.status.value,
        "created_at": _to_iso(job.created_at),
        "duration_seconds": job.duration_seconds,
    }


def _job_detail(job: VerificationJob) -> dict[str, Any]:
    return {
        **_job_summary(job),
        "package": job.package,
        "license": job.license,
        "cairo_version": job.cairo_version,
        "scarb_version": job.scarb_version,
        "dojo_version": job.dojo_version,
        "updated_at": _to_iso(job.updated_at),
        "completed_at": _to_iso(job.completed_at),
        "message": job.message,
        "error_category": job.error_category,
    }


def _validated_status(status: str | None) -> str | None:
    if status is None:
        return None
    try:
        resolve_status_filter(status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return status


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/jobs")
def list_jobs(
    store: Annotated[HistoryStore, Depends(get_history_store)],
    status: str | None = Query(default=None),
    network: str | None = Query(default=None),
    contract: str | None = Query(default=None),
    since: date | None = Query(default=None),
    sort: SortKey = Query(default=SortKey.TIME),
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=1000),
) -> list[dict[str, Any]]:
    filters = HistoryFilter(
        status=_validated_status(status),
        network=network,
        contract_name=contract,
        since=since,
        limit=limit,
        sort=sort,
        descending=order == "desc",
    )
    try:
        jobs = store.query(filters).all()
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return [_job_summary(job) for job in jobs]


@app.get("/jobs/{job_id}")
def get_job(job_id: str, store: Annotated[HistoryStore, Depends(get_history_store)]) -> dict[str, Any]:
    try:
        job = store.get(job_id)
        updates = store.status_updates(job_id) if job is not None else []
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return {
        **_job_detail(job),
        "status_updates": [
            {"status": update.status.value, "observed_at": _to_iso(update.observed_at)}
            for update in updates
        ],
    }


@app.get("/stats")
def stats(
    store: Annotated[HistoryStore, Depends(get_history_store)],
    network: str | None = Query(default=None),
) -> dict[str, Any]:
    try:
        return asdict(store.stats(HistoryFilter(network=network)))
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.post("/history/clean")
def clean_history(
    request: CleanRequest,
    store: Annotated[HistoryStore, Depends(get_history_store)],
) -> dict[str, int]:
    if not request.all and request.older_than_days is None:
        raise HTTPException(status_code=400, detail="older_than_days is required unless all is true")

    try:
        if request.all:
            deleted = store.clean_all()
        else:
            deleted = store.clean(
                request.older_than_days,
                status=_validated_status(request.status),
                network=request.network,
            )
    except StorageError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"deleted": deleted}


def run() -> None:
    import uvicorn

    uvicorn.run("verifier.main:app", host="127.0.0.1", port=8000, reload=False)


if __name__ == "__main__":
    run()
